"""
Registration error taxonomy.

Every failure of the registration protocol surfaces as one of these, so the
HTTP layer can render an accurate message. Storage-level constraint and lock
failures are mapped here and never swallowed.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hn_registry.services.registration_service import IdentitySummary


class RegistrationError(Exception):
    """Base class for registration protocol failures."""

    code = "registration_error"
    retryable = False


class InvalidFormatError(RegistrationError, ValueError):
    """Malformed identity or hospital number input. Raised before any storage access."""

    code = "invalid_format"


class DuplicateIdentityError(RegistrationError):
    """The identity already owns a hospital number."""

    code = "duplicate_identity"

    def __init__(self, existing: "IdentitySummary"):
        self.existing = existing
        super().__init__(f"Identity already registered as {existing.hospital_number}")


class SequenceExhaustedError(RegistrationError):
    """All sequence numbers for the year are used. Requires operator intervention."""

    code = "sequence_exhausted"

    def __init__(self, year: int, capacity: int):
        self.year = year
        self.capacity = capacity
        super().__init__(
            f"Hospital number capacity exhausted for year {year:02d} ({capacity} issued)"
        )


class AllocationConflictError(RegistrationError):
    """A concurrent unit of work won a uniqueness or serialization race."""

    code = "allocation_conflict"
    retryable = True


class AllocationTimeoutError(RegistrationError):
    """Waiting for the counter lock exceeded the configured bound."""

    code = "allocation_timeout"
    retryable = True

    def __init__(self, message: str, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        super().__init__(message)
