from datetime import date, datetime, timedelta

from app.utils.durations import (
    calculate_sla_breach,
    format_duration,
    get_duration_info,
    long_stay_level,
    needs_order_help,
    needs_otp_help,
)
from app.utils.nepal_date import (
    ad_to_bs,
    bs_to_ad,
    fiscal_month_order,
    fiscal_year_bounds,
    fiscal_year_display,
    get_fiscal_year,
    gregorian_fiscal_year,
)
from app.utils.number_to_words import format_nepali_number, number_to_words, number_to_words_plain


# =============================================================================
# BS DATES
# =============================================================================

def test_fiscal_year_turns_over_on_shrawan_first() -> None:
    assert get_fiscal_year(date(2024, 7, 15)) == "2080.081"
    assert get_fiscal_year(date(2024, 7, 16)) == "2081.082"
    assert get_fiscal_year(datetime(2024, 10, 1, 18, 30)) == "2081.082"


def test_fiscal_year_bounds_start_on_shrawan_first() -> None:
    start, end = fiscal_year_bounds("2081.082")
    assert start == date(2024, 7, 16)
    assert get_fiscal_year(end) == "2081.082"
    assert get_fiscal_year(end + timedelta(days=1)) == "2082.083"


def test_bs_round_trip() -> None:
    for day in (date(2024, 4, 13), date(2024, 12, 31), date(2025, 3, 1)):
        bs = ad_to_bs(day)
        assert len(bs) == 10 and bs.count(".") == 2
        assert bs_to_ad(bs) == day
        assert bs_to_ad(bs.replace(".", "-")) == day


def test_fiscal_year_helpers() -> None:
    assert fiscal_year_display("2081.082") == "FY 2081/082"
    assert fiscal_month_order(4) == 0
    assert fiscal_month_order(3) == 11
    assert gregorian_fiscal_year(date(2024, 7, 1)) == 2024
    assert gregorian_fiscal_year(date(2024, 6, 30)) == 2023


# =============================================================================
# AMOUNTS
# =============================================================================

def test_number_to_words() -> None:
    assert number_to_words(1765.06) == "One Thousand Seven Hundred Sixty Five Rupees and Six Paisa Only"
    assert number_to_words(1500000) == "Fifteen Lakh Rupees Only"
    assert number_to_words(12500000) == "One Crore Twenty Five Lakh Rupees Only"
    assert number_to_words(0.5) == "Fifty Paisa Only"
    assert number_to_words(0) == "Zero Rupees Only"
    assert number_to_words(-20) == "Minus Twenty Rupees Only"


def test_number_to_words_plain() -> None:
    assert number_to_words_plain(0) == "Zero"
    assert number_to_words_plain(101) == "One Hundred One"


def test_format_nepali_number() -> None:
    assert format_nepali_number(12345678) == "1,23,45,678.00"
    assert format_nepali_number(999) == "999.00"
    assert format_nepali_number(100000) == "1,00,000.00"
    assert format_nepali_number(-1500.5) == "-1,500.50"


# =============================================================================
# TIMERS
# =============================================================================

def test_duration_colours() -> None:
    assert get_duration_info(29).color == "green"
    assert get_duration_info(30).color == "yellow"
    assert get_duration_info(60).color == "orange"

    warning = get_duration_info(90)
    assert (warning.color, warning.alert_level, warning.is_alert) == ("red", "warning", True)
    assert get_duration_info(120).alert_level == "critical"


def test_format_duration() -> None:
    assert format_duration(0) == "Just now"
    assert format_duration(1) == "1 min"
    assert format_duration(45) == "45 mins"
    assert format_duration(60) == "1h"
    assert format_duration(95) == "1h 35m"


def test_help_timers() -> None:
    now = datetime(2024, 10, 1, 19, 0)

    assert needs_otp_help(now - timedelta(minutes=2), otp_verified=False, now=now)
    assert not needs_otp_help(now - timedelta(minutes=1), otp_verified=False, now=now)
    assert not needs_otp_help(now - timedelta(minutes=10), otp_verified=True, now=now)

    assert needs_order_help(now - timedelta(minutes=5), None, now=now)
    assert not needs_order_help(now - timedelta(minutes=30), now - timedelta(minutes=20), now=now)

    assert long_stay_level(now - timedelta(minutes=95), now) == "warning"
    assert long_stay_level(None, now) == "none"


def test_sla_breach() -> None:
    started = datetime(2024, 10, 1, 19, 0)

    late = calculate_sla_breach(10, started, started + timedelta(minutes=15))
    assert late.is_breached and late.breach_minutes == 5 and late.actual_minutes == 15

    on_time = calculate_sla_breach(20, started, started + timedelta(minutes=15))
    assert not on_time.is_breached and on_time.breach_minutes is None

    assert calculate_sla_breach(None, started, started + timedelta(minutes=40)).is_breached is False
    assert calculate_sla_breach(10, None).actual_minutes is None
