"""
Registration Service - Atomic identity check and hospital number allocation.

A registration runs as one unit of work:

1. Normalize the identity (InvalidFormatError before any storage access)
2. Open the unit of work with a bounded lock wait
3. Re-read the identity inside the unit; if found, raise DuplicateIdentityError
4. Allocate the next sequence for the current year (locks the counter row)
5. Format the hospital number and insert the identity row
6. Commit

A uniqueness violation or serialization failure at step 5/6 means a
concurrent unit won the race. A clash on the identity constraint is
answered by re-reading the winning identity and raising
DuplicateIdentityError. A clash on the hospital number, a serialization
failure or a lock timeout restarts the whole flow, never just the
allocation, because the identity state must be re-read. After
REGISTRATION_MAX_ATTEMPTS the last transient error is raised.

check_identity() is the advisory counterpart used for previews. Its answer
may be stale by the time the form is submitted and is never trusted by
register_identity().
"""

import enum
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from hn_registry.config import settings
from hn_registry.database import session_scope, apply_lock_timeout
from hn_registry.models.patient_identity import PatientIdentity, IdentityType
from hn_registry.repositories import identity_repository
from hn_registry.repositories.identity_repository import (
    lookup_identity,
    get_by_hospital_number,
    insert_identity,
)
from hn_registry.services.errors import (
    AllocationConflictError,
    AllocationTimeoutError,
    DuplicateIdentityError,
)
from hn_registry.services.sequence_service import allocate_next, peek_next
from hn_registry.utils.date_utils import allocation_year
from hn_registry.utils.hospital_number import (
    format_hospital_number,
    parse_hospital_number,
)
from hn_registry.utils.identity_utils import normalize_identity, mask_identity_value

logger = logging.getLogger(__name__)

# Persists the full patient record (owned by another component) inside the
# same unit of work, once the identity row and its hospital number exist.
PatientRecordHook = Callable[[Session, PatientIdentity], None]

# SQLSTATE / MySQL error codes for transient lock failures
_PG_LOCK_NOT_AVAILABLE = "55P03"
_PG_SERIALIZATION_CODES = ("40001", "40P01")
_MYSQL_LOCK_WAIT_TIMEOUT = 1205
_MYSQL_DEADLOCK = 1213

# Name of the (identity_type, identity_value) unique constraint, and the column
# list SQLite reports instead of the name
_IDENTITY_CONSTRAINT_MARKERS = (
    "uq_patient_identity_value",
    "patient_identities.identity_type, patient_identities.identity_value",
)


class AttemptState(str, enum.Enum):
    STARTED = "started"
    CHECKED_FOUND = "checked_found"
    CHECKED_NOT_FOUND = "checked_not_found"
    RETURNED = "returned"
    ALLOCATED = "allocated"
    COMMITTED = "committed"
    CONFLICTED = "conflicted"
    RETRY_REQUESTED = "retry_requested"


@dataclass
class IdentitySummary:
    """Detached view of an existing identity, safe to use after the session closes."""

    hospital_number: str
    identity_type: IdentityType
    identity_value: str
    display_name: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_identity(cls, identity: PatientIdentity) -> "IdentitySummary":
        return cls(
            hospital_number=identity.hospital_number,
            identity_type=identity.identity_type,
            identity_value=identity.identity_value,
            display_name=identity.display_name,
            created_at=identity.created_at,
        )


@dataclass
class IdentityCheckResult:
    duplicate: bool
    existing: Optional[IdentitySummary] = None
    preview_hospital_number: Optional[str] = None


@dataclass
class RegistrationResult:
    hospital_number: str
    identity_type: IdentityType
    identity_value: str
    year: int
    sequence: int
    attempts: int = 1


def _log_state(attempt: int, state: AttemptState, masked_identity: str) -> None:
    logger.debug(f"Registration attempt {attempt} [{masked_identity}]: {state.value}")


def _classify_operational_error(exc: OperationalError, timeout_ms: int):
    """
    Map a lock-related OperationalError to a retryable registration error.

    Returns:
        AllocationTimeoutError, AllocationConflictError, or None if the error
        is not lock related
    """
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    mysql_code = orig.args[0] if orig is not None and orig.args else None

    if sqlstate == _PG_LOCK_NOT_AVAILABLE or mysql_code == _MYSQL_LOCK_WAIT_TIMEOUT:
        return AllocationTimeoutError(
            f"Timed out after {timeout_ms}ms waiting for the hospital number counter",
            timeout_ms=timeout_ms,
        )
    if sqlstate in _PG_SERIALIZATION_CODES or mysql_code == _MYSQL_DEADLOCK:
        return AllocationConflictError("Concurrent registration conflict")
    if "database is locked" in str(orig):
        return AllocationTimeoutError(
            f"Timed out after {timeout_ms}ms waiting for the database lock",
            timeout_ms=timeout_ms,
        )
    return None


def _is_identity_clash(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _IDENTITY_CONSTRAINT_MARKERS)


def _reread_identity(
    session_factory: Optional[sessionmaker],
    identity_type: IdentityType,
    identity_value: str,
) -> Optional[IdentitySummary]:
    """Read the identity that won a uniqueness race, in a fresh unit of work."""
    with session_scope(session_factory) as db:
        identity = identity_repository.lookup_identity(db, identity_type, identity_value)
        return IdentitySummary.from_identity(identity) if identity else None


def _register_once(
    session_factory: Optional[sessionmaker],
    identity_type: IdentityType,
    identity_value: str,
    year: int,
    attempt: int,
    display_name: Optional[str],
    on_registered: Optional[PatientRecordHook],
    timeout_ms: int,
) -> RegistrationResult:
    masked = mask_identity_value(identity_value)
    _log_state(attempt, AttemptState.STARTED, masked)

    try:
        with session_scope(session_factory) as db:
            apply_lock_timeout(db, timeout_ms)

            existing = lookup_identity(db, identity_type, identity_value)
            if existing:
                _log_state(attempt, AttemptState.CHECKED_FOUND, masked)
                summary = IdentitySummary.from_identity(existing)
                _log_state(attempt, AttemptState.RETURNED, masked)
                raise DuplicateIdentityError(summary)
            _log_state(attempt, AttemptState.CHECKED_NOT_FOUND, masked)

            sequence = allocate_next(db, year)
            hospital_number = format_hospital_number(year, sequence)
            _log_state(attempt, AttemptState.ALLOCATED, masked)

            identity = insert_identity(
                db,
                identity_type=identity_type,
                identity_value=identity_value,
                hospital_number=hospital_number,
                year=year,
                sequence=sequence,
                display_name=display_name,
            )
            if on_registered is not None:
                on_registered(db, identity)

            result = RegistrationResult(
                hospital_number=hospital_number,
                identity_type=identity_type,
                identity_value=identity_value,
                year=year,
                sequence=sequence,
                attempts=attempt,
            )
    except IntegrityError as e:
        _log_state(attempt, AttemptState.CONFLICTED, masked)
        if _is_identity_clash(e):
            existing = _reread_identity(session_factory, identity_type, identity_value)
            if existing is not None:
                _log_state(attempt, AttemptState.RETURNED, masked)
                raise DuplicateIdentityError(existing) from e
        raise AllocationConflictError(
            "Hospital number was registered concurrently"
        ) from e
    except OperationalError as e:
        mapped = _classify_operational_error(e, timeout_ms)
        if mapped is None:
            raise
        _log_state(attempt, AttemptState.CONFLICTED, masked)
        raise mapped from e

    _log_state(attempt, AttemptState.COMMITTED, masked)
    return result


def register_identity(
    identity_type: "str | IdentityType",
    identity_value: str,
    *,
    session_factory: Optional[sessionmaker] = None,
    today: Optional[date] = None,
    display_name: Optional[str] = None,
    on_registered: Optional[PatientRecordHook] = None,
    max_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
    timeout_ms: Optional[int] = None,
) -> RegistrationResult:
    """
    Register an identity and issue its hospital number atomically.

    Args:
        identity_type: IdentityType or form value ("national_id", "thai_id", "passport")
        identity_value: Raw identity value
        session_factory: Factory for the unit of work (default: SessionLocal)
        today: Registration date (default: today in CLINIC_TIMEZONE)
        display_name: Optional denormalized name for duplicate previews
        on_registered: Hook persisting the full patient record in the same unit
        max_attempts: Full-protocol attempts (default: REGISTRATION_MAX_ATTEMPTS)
        retry_delay: Initial backoff in seconds (default: REGISTRATION_RETRY_DELAY)
        timeout_ms: Lock wait bound (default: LOCK_TIMEOUT_MS)

    Returns:
        RegistrationResult with the committed hospital number

    Raises:
        InvalidFormatError: Malformed identity; nothing was read or written
        DuplicateIdentityError: Identity already registered; carries the existing record
        SequenceExhaustedError: No numbers left for the year; counter unchanged
        AllocationConflictError: Lost concurrent races on every attempt
        AllocationTimeoutError: Lock wait exceeded on every attempt

    Example:
        >>> register_identity("passport", "ab1234567", today=date(2025, 3, 1))
        RegistrationResult(hospital_number='PT250001', ...)
    """
    identity_type, identity_value = normalize_identity(identity_type, identity_value)
    year = allocation_year(today)

    if max_attempts is None:
        max_attempts = settings.REGISTRATION_MAX_ATTEMPTS
    if timeout_ms is None:
        timeout_ms = settings.LOCK_TIMEOUT_MS
    delay = settings.REGISTRATION_RETRY_DELAY if retry_delay is None else retry_delay

    for attempt in range(1, max_attempts + 1):
        try:
            result = _register_once(
                session_factory,
                identity_type,
                identity_value,
                year,
                attempt,
                display_name,
                on_registered,
                timeout_ms,
            )
        except (AllocationConflictError, AllocationTimeoutError) as e:
            if attempt == max_attempts:
                logger.error(
                    f"Registration failed after {max_attempts} attempts "
                    f"[{mask_identity_value(identity_value)}]: {e}"
                )
                raise

            _log_state(
                attempt, AttemptState.RETRY_REQUESTED, mask_identity_value(identity_value)
            )
            logger.warning(
                f"Registration attempt {attempt}/{max_attempts} failed, "
                f"retrying in {delay:.2f}s: {e}"
            )
            time.sleep(delay)
            delay *= 2
            continue

        logger.info(f"Issued hospital number {result.hospital_number}")
        return result

    raise AllocationConflictError("Registration retry loop exited without a result")


def check_identity(
    db: Session,
    identity_type: "str | IdentityType",
    identity_value: str,
    today: Optional[date] = None,
) -> IdentityCheckResult:
    """
    Advisory duplicate check with a preview of the next hospital number.

    Non-transactional and safe to call freely. The preview is the number the
    next registration would get right now; another registration may take it
    first, and register_identity() re-validates everything.

    Raises:
        InvalidFormatError: Malformed identity
    """
    identity_type, identity_value = normalize_identity(identity_type, identity_value)

    existing = lookup_identity(db, identity_type, identity_value)
    if existing:
        return IdentityCheckResult(
            duplicate=True, existing=IdentitySummary.from_identity(existing)
        )

    year = allocation_year(today)
    next_sequence = peek_next(db, year)
    preview = format_hospital_number(year, next_sequence) if next_sequence else None

    return IdentityCheckResult(duplicate=False, preview_hospital_number=preview)


def find_by_hospital_number(db: Session, hospital_number: str) -> Optional[IdentitySummary]:
    """
    Look up an issued hospital number.

    Raises:
        InvalidFormatError: If hospital_number is not PT + YY + XXXX
    """
    hospital_number = (hospital_number or "").strip().upper()
    parse_hospital_number(hospital_number)

    identity = get_by_hospital_number(db, hospital_number)
    return IdentitySummary.from_identity(identity) if identity else None
