"""
Hospital number (PTHN) formatting and parsing.

Format: PT + YY + XXXX, e.g. PT250043 for sequence 43 issued in 2025.
Only this exact form is accepted by parse_hospital_number(); the legacy
7-character form (PT25043) is handled solely by repair_legacy_hospital_number().
"""

import re

from hn_registry.config import settings
from hn_registry.services.errors import InvalidFormatError

YEAR_DIGITS = 2
SEQUENCE_DIGITS = 4


def _pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}(\d{{{YEAR_DIGITS}}})(\d{{{SEQUENCE_DIGITS}}})$")


def two_digit_year(year: int) -> int:
    """
    Reduce a calendar year to its two-digit form.

    Two-digit years wrap every century; 2025 and 2125 both map to 25.
    """
    if year < 0:
        raise InvalidFormatError(f"Invalid year: {year}")
    return year % 100


def format_hospital_number(year: int, sequence: int, prefix: str | None = None) -> str:
    """
    Build a hospital number from a year and a sequence.

    Args:
        year: Calendar year (2025) or two-digit year (25)
        sequence: Sequence number, 1-9999
        prefix: Override for settings.HN_PREFIX

    Returns:
        Hospital number string

    Raises:
        InvalidFormatError: If the sequence is outside 1-9999

    Example:
        >>> format_hospital_number(2025, 43)
        'PT250043'
    """
    prefix = prefix or settings.HN_PREFIX
    if not 1 <= sequence <= 10**SEQUENCE_DIGITS - 1:
        raise InvalidFormatError(f"Sequence out of range: {sequence}")
    return f"{prefix}{two_digit_year(year):02d}{sequence:04d}"


def parse_hospital_number(value: str, prefix: str | None = None) -> tuple[int, int]:
    """
    Split a hospital number into (two_digit_year, sequence).

    Raises:
        InvalidFormatError: If the value is not exactly PT + 2 digits + 4 digits,
            or the sequence part is 0000

    Example:
        >>> parse_hospital_number("PT250043")
        (25, 43)
    """
    prefix = prefix or settings.HN_PREFIX
    match = _pattern(prefix).match(value or "")
    if not match:
        raise InvalidFormatError(f"Invalid hospital number: {value!r}")

    year, sequence = int(match.group(1)), int(match.group(2))
    if sequence == 0:
        raise InvalidFormatError(f"Invalid hospital number: {value!r}")
    return year, sequence


def is_hospital_number(value: str) -> bool:
    try:
        parse_hospital_number(value)
    except InvalidFormatError:
        return False
    return True


def repair_legacy_hospital_number(value: str, prefix: str | None = None) -> str | None:
    """
    Convert a legacy PTYYXXX number (3-digit sequence) to PTYYXXXX.

    Returns:
        Repaired hospital number, or None if value is not in the legacy form

    Example:
        >>> repair_legacy_hospital_number("PT25043")
        'PT250043'
    """
    prefix = prefix or settings.HN_PREFIX
    match = re.match(rf"^{re.escape(prefix)}(\d{{2}})(\d{{3}})$", value or "")
    if not match:
        return None
    return format_hospital_number(int(match.group(1)), int(match.group(2)), prefix)
