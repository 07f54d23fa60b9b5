"""
Table timer helpers: duration colour coding, help timers and kitchen SLA.

Colour bands (minutes seated):
    green  < 30
    yellow < 60
    orange < 90
    red    otherwise (long-stay alert, critical from 120)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

GREEN_MAX = 30
YELLOW_MAX = 60
ORANGE_MAX = 90
LONG_STAY_WARNING = 90
LONG_STAY_CRITICAL = 120

OTP_HELP_MINUTES = 2
ORDER_HELP_MINUTES = 5


@dataclass
class DurationInfo:
    minutes: int
    color: str
    label: str
    is_alert: bool = False
    alert_level: str = "none"

    def to_dict(self) -> dict:
        return {
            "minutes": self.minutes,
            "color": self.color,
            "label": self.label,
            "is_alert": self.is_alert,
            "alert_level": self.alert_level,
        }


@dataclass
class SlaResult:
    actual_minutes: Optional[int]
    is_breached: bool
    breach_minutes: Optional[int]


def minutes_between(start: Optional[datetime], end: Optional[datetime] = None) -> int:
    """Whole minutes from ``start`` to ``end`` (default now); 0 when unset."""
    if start is None:
        return 0
    end = end or datetime.now()
    return int((end - start).total_seconds() // 60)


def get_duration_info(minutes: int) -> DurationInfo:
    if minutes < GREEN_MAX:
        return DurationInfo(minutes, "green", "Normal")
    if minutes < YELLOW_MAX:
        return DurationInfo(minutes, "yellow", "Moderate")
    if minutes < ORANGE_MAX:
        return DurationInfo(minutes, "orange", "Long")

    critical = minutes >= LONG_STAY_CRITICAL
    return DurationInfo(
        minutes,
        "red",
        "Very Long" if critical else "Long Stay",
        is_alert=True,
        alert_level="critical" if critical else "warning",
    )


def get_duration_color(minutes: int) -> str:
    return get_duration_info(minutes).color


def format_duration(minutes: int) -> str:
    if minutes < 1:
        return "Just now"
    if minutes == 1:
        return "1 min"
    if minutes < 60:
        return f"{minutes} mins"

    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def needs_otp_help(
    qr_scanned_at: Optional[datetime],
    otp_verified: bool,
    threshold: int = OTP_HELP_MINUTES,
    now: Optional[datetime] = None,
) -> bool:
    if otp_verified or qr_scanned_at is None:
        return False
    return minutes_between(qr_scanned_at, now) >= threshold


def needs_order_help(
    seated_at: Optional[datetime],
    first_order_at: Optional[datetime],
    threshold: int = ORDER_HELP_MINUTES,
    now: Optional[datetime] = None,
) -> bool:
    if first_order_at is not None or seated_at is None:
        return False
    return minutes_between(seated_at, now) >= threshold


def long_stay_level(seated_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """``none``, ``warning`` or ``critical`` for a seated table."""
    if seated_at is None:
        return "none"
    return get_duration_info(minutes_between(seated_at, now)).alert_level


def calculate_sla_breach(
    expected_prep_minutes: Optional[int],
    started_at: Optional[datetime],
    ready_at: Optional[datetime] = None,
) -> SlaResult:
    """
    Compare actual preparation time with the menu item's expected time.

    ``started_at`` is when the kitchen picked the item up (or when it was
    sent to the kitchen if it never passed through PREPARING).
    """
    if started_at is None:
        return SlaResult(None, False, None)

    actual = minutes_between(started_at, ready_at)
    if not expected_prep_minutes:
        return SlaResult(actual, False, None)

    breached = actual > expected_prep_minutes
    return SlaResult(actual, breached, actual - expected_prep_minutes if breached else None)
