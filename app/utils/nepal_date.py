"""
Bikram Sambat (BS) Date Helpers

IRD documents carry BS dates (``YYYY.MM.DD``) and a BS fiscal year that
runs from Shrawan (month 4) to Ashad (month 3), written ``2081.082``.
Internal voucher, stock and purchase numbering uses the Gregorian
July-June year instead.
"""

from datetime import date, datetime
from typing import Optional, Union

import nepali_datetime

NEPALI_MONTHS = [
    "Baishakh", "Jestha", "Ashad", "Shrawan", "Bhadra", "Ashwin",
    "Kartik", "Mangsir", "Poush", "Magh", "Falgun", "Chaitra",
]

SHRAWAN = 4


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def to_bs(value: Union[date, datetime]) -> nepali_datetime.date:
    """Convert an AD date to a ``nepali_datetime.date``."""
    return nepali_datetime.date.from_datetime_date(_as_date(value))


def ad_to_bs(value: Union[date, datetime]) -> str:
    """Format an AD date as a BS ``YYYY.MM.DD`` string."""
    bs = to_bs(value)
    return f"{bs.year:04d}.{bs.month:02d}.{bs.day:02d}"


def bs_to_ad(value: str) -> date:
    """Parse a BS ``YYYY.MM.DD`` (or ``YYYY-MM-DD``) string into an AD date."""
    parts = value.replace("-", ".").split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid BS date: {value}")
    year, month, day = (int(p) for p in parts)
    return nepali_datetime.date(year, month, day).to_datetime_date()


def get_fiscal_year(value: Optional[Union[date, datetime]] = None) -> str:
    """
    BS fiscal year for a date.

    Example:
        >>> get_fiscal_year(date(2024, 10, 1))
        '2081.082'
    """
    bs = to_bs(value or date.today())
    if bs.month >= SHRAWAN:
        start = bs.year
    else:
        start = bs.year - 1
    return f"{start}.{str(start + 1)[-3:]}"


def get_current_fiscal_year() -> str:
    return get_fiscal_year(date.today())


def fiscal_year_display(fiscal_year: str) -> str:
    """``2081.082`` -> ``FY 2081/082``."""
    return "FY " + fiscal_year.replace(".", "/")


def fiscal_year_bounds(fiscal_year: str) -> tuple[date, date]:
    """First and last AD dates of a BS fiscal year."""
    start_year = int(fiscal_year.split(".")[0])
    start = nepali_datetime.date(start_year, SHRAWAN, 1).to_datetime_date()
    next_start = nepali_datetime.date(start_year + 1, SHRAWAN, 1).to_datetime_date()
    return start, date.fromordinal(next_start.toordinal() - 1)


def bs_month(bs_date: str) -> int:
    """Month number from a ``YYYY.MM.DD`` string."""
    return int(bs_date.split(".")[1])


def fiscal_month_order(month: int) -> int:
    """Position of a BS month within its fiscal year (Shrawan first)."""
    return month - SHRAWAN if month >= SHRAWAN else month + 8


def gregorian_fiscal_year(value: Optional[Union[date, datetime]] = None) -> int:
    """July-June year used in voucher, stock and purchase numbers."""
    d = _as_date(value or date.today())
    return d.year if d.month >= 7 else d.year - 1
