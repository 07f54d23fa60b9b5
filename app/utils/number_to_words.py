"""
Amount-in-words for IRD invoices, using the Nepali/Indian numbering
system (Thousand, Lakh, Crore).
"""

import re

ONES = [
    "", "One", "Two", "Three", "Four", "Five",
    "Six", "Seven", "Eight", "Nine", "Ten",
    "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen",
    "Sixteen", "Seventeen", "Eighteen", "Nineteen",
]

TENS = [
    "", "", "Twenty", "Thirty", "Forty",
    "Fifty", "Sixty", "Seventy", "Eighty", "Ninety",
]

# (divisor, label), largest first
SCALES = [
    (10_000_000, "Crore"),
    (100_000, "Lakh"),
    (1_000, "Thousand"),
    (100, "Hundred"),
]


def _convert(num: int) -> str:
    if num == 0:
        return ""
    if num < 20:
        return ONES[num]
    if num < 100:
        rest = f" {ONES[num % 10]}" if num % 10 else ""
        return TENS[num // 10] + rest

    for divisor, label in SCALES:
        if num >= divisor:
            head = _convert(num // divisor) if divisor != 100 else ONES[num // divisor]
            rest = num % divisor
            return f"{head} {label}" + (f" {_convert(rest)}" if rest else "")
    return ""


def number_to_words(amount: float) -> str:
    """
    Convert an amount to words.

    Example:
        >>> number_to_words(1765.06)
        'One Thousand Seven Hundred Sixty Five Rupees and Six Paisa Only'
        >>> number_to_words(1500000)
        'Fifteen Lakh Rupees Only'
    """
    if amount == 0:
        return "Zero Rupees Only"

    total_paisa = int(round(abs(amount) * 100))
    rupees, paisa = divmod(total_paisa, 100)

    result = ""
    if rupees > 0:
        result = f"{_convert(rupees)} Rupees"
    if paisa > 0:
        result += (" and " if result else "") + f"{_convert(paisa)} Paisa"

    if amount < 0:
        result = f"Minus {result}"

    return f"{result} Only"


def number_to_words_plain(num: float) -> str:
    """Whole-number words without the currency suffix."""
    if num == 0:
        return "Zero"
    words = _convert(int(abs(num)))
    return f"Minus {words}" if num < 0 else words


def format_nepali_number(amount: float) -> str:
    """
    Group digits the Nepali way with two decimals.

    Example:
        >>> format_nepali_number(12345678)
        '1,23,45,678.00'
    """
    int_part, dec_part = f"{abs(amount):.2f}".split(".")
    last_three = int_part[-3:]
    remaining = int_part[:-3]

    if remaining:
        remaining = re.sub(r"\B(?=(\d{2})+(?!\d))", ",", remaining)
        last_three = f"{remaining},{last_three}"

    sign = "-" if amount < 0 else ""
    return f"{sign}{last_three}.{dec_part}"
