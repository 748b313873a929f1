"""
Identity normalization and validation.

Two identity kinds are accepted:

- **National ID** (Thai national ID): 13 digits with a mod-11 check digit.
  Spaces and dashes are separators and are stripped for both kinds.
- **Passport**: 6 to 20 alphanumeric characters, stored upper-case.

Validation Patterns:
--------------------
- normalize_identity() raises InvalidFormatError (service layer)
- validate_identity() returns (value, errors) (form/route layer)
- is_normalized() answers whether a value can be used for lookup as-is
"""

import re
from typing import Optional

from hn_registry.models.patient_identity import IdentityType
from hn_registry.services.errors import InvalidFormatError

NATIONAL_ID_LENGTH = 13
PASSPORT_MIN_LENGTH = 6
PASSPORT_MAX_LENGTH = 20

_SEPARATORS = re.compile(r"[\s\-]")
_PASSPORT_PATTERN = re.compile(r"^[A-Z0-9]+$")

# Form values sent by older registration pages
_IDENTITY_TYPE_ALIASES = {
    "national_id": IdentityType.NATIONAL_ID,
    "thai_id": IdentityType.NATIONAL_ID,
    "pid": IdentityType.NATIONAL_ID,
    "passport": IdentityType.PASSPORT,
    "passport_no": IdentityType.PASSPORT,
}


def parse_identity_type(value: "str | IdentityType") -> IdentityType:
    """
    Resolve an identity type from its enum or form value.

    Raises:
        InvalidFormatError: If the type is unknown
    """
    if isinstance(value, IdentityType):
        return value
    identity_type = _IDENTITY_TYPE_ALIASES.get((value or "").strip().lower())
    if identity_type is None:
        raise InvalidFormatError(f"Unknown identity type: {value!r}")
    return identity_type


def national_id_checksum(first_twelve: str) -> int:
    """Check digit for the first 12 digits of a Thai national ID."""
    total = sum(int(digit) * (13 - i) for i, digit in enumerate(first_twelve))
    return (11 - total % 11) % 10


def normalize_national_id(value: Optional[str]) -> str:
    digits = _SEPARATORS.sub("", value or "")
    if not digits.isascii() or not digits.isdigit() or len(digits) != NATIONAL_ID_LENGTH:
        raise InvalidFormatError("National ID must contain exactly 13 digits")
    if national_id_checksum(digits[:12]) != int(digits[12]):
        raise InvalidFormatError("Invalid national ID check digit")
    return digits


def normalize_passport(value: Optional[str]) -> str:
    passport = _SEPARATORS.sub("", value or "").upper()
    if not PASSPORT_MIN_LENGTH <= len(passport) <= PASSPORT_MAX_LENGTH:
        raise InvalidFormatError(
            f"Passport number must have {PASSPORT_MIN_LENGTH}-{PASSPORT_MAX_LENGTH} characters"
        )
    if not passport.isascii() or not _PASSPORT_PATTERN.match(passport):
        raise InvalidFormatError("Passport number must be alphanumeric")
    return passport


def normalize_identity(
    identity_type: "str | IdentityType", identity_value: Optional[str]
) -> tuple[IdentityType, str]:
    """
    Normalize an identity for storage and lookup.

    Args:
        identity_type: IdentityType or its form value
        identity_value: Raw value as typed by the user

    Returns:
        Tuple of (identity_type, normalized_value)

    Raises:
        InvalidFormatError: If the type is unknown or the value is malformed

    Example:
        >>> normalize_identity("thai_id", "1-1037-02345-67-9")
        (IdentityType.NATIONAL_ID, '1103702345679')
        >>> normalize_identity("passport", " ab 1234567 ")
        (IdentityType.PASSPORT, 'AB1234567')
    """
    identity_type = parse_identity_type(identity_type)
    if identity_type is IdentityType.NATIONAL_ID:
        return identity_type, normalize_national_id(identity_value)
    return identity_type, normalize_passport(identity_value)


def is_normalized(identity_type: IdentityType, identity_value: Optional[str]) -> bool:
    """True when the value is valid and already in its normalized form."""
    try:
        _, normalized = normalize_identity(identity_type, identity_value)
    except InvalidFormatError:
        return False
    return normalized == identity_value


def validate_identity(
    identity_type: Optional[str], identity_value: Optional[str]
) -> tuple[str, list[str]]:
    """
    Validate identity form fields.

    Pattern: Tuple (value, errors)

    Returns:
        Tuple of (normalized_value_or_original, list_of_errors)
    """
    try:
        _, normalized = normalize_identity(identity_type or "", identity_value)
    except InvalidFormatError as e:
        return identity_value or "", [str(e)]
    return normalized, []


def format_national_id(value: str) -> str:
    """Display form of a national ID: 1-2345-67890-12-3."""
    digits = _SEPARATORS.sub("", value or "")
    if len(digits) != NATIONAL_ID_LENGTH:
        return digits
    return f"{digits[0]}-{digits[1:5]}-{digits[5:10]}-{digits[10:12]}-{digits[12]}"


def mask_identity_value(value: str) -> str:
    """Masked form for logs: first two characters only."""
    if not value:
        return ""
    return f"{value[:2]}***"
