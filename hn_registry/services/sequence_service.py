"""
Sequence Service

Allocates hospital number sequences per two-digit year.
Uses database-level locking to prevent race conditions.

The counter row for a year is the only shared state: it is read with
SELECT ... FOR UPDATE, so concurrent allocations for the same year are
serialized by the database and receive consecutive numbers. Nothing here
commits; the increment becomes visible only when the caller's unit of work
commits, and disappears with it on rollback.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hn_registry.config import settings
from hn_registry.models.hospital_number_counter import HospitalNumberCounter
from hn_registry.repositories.identity_repository import get_max_issued_sequence
from hn_registry.services.errors import AllocationConflictError, SequenceExhaustedError

logger = logging.getLogger(__name__)


def _lock_counter(db: Session, year: int) -> Optional[HospitalNumberCounter]:
    return (
        db.query(HospitalNumberCounter)
        .filter_by(year=year)
        .with_for_update()
        .populate_existing()
        .first()
    )


def get_or_create_counter(db: Session, year: int) -> HospitalNumberCounter:
    """
    Get the locked counter for a year, creating it at 0 if absent.

    The insert runs in a savepoint: if a concurrent transaction created the
    same year first, only the savepoint is rolled back and the row it
    committed is locked and returned instead.

    Args:
        db: Database session inside the caller's unit of work
        year: Two-digit year

    Returns:
        HospitalNumberCounter row, locked until the caller's transaction ends

    Raises:
        AllocationConflictError: If the row can neither be created nor read
    """
    counter = _lock_counter(db, year)

    if not counter:
        try:
            with db.begin_nested():
                counter = HospitalNumberCounter(year=year, last_sequence=0)
                db.add(counter)
            logger.info(f"Created hospital number counter for year {year:02d}")
        except IntegrityError as e:
            counter = _lock_counter(db, year)
            if not counter:
                raise AllocationConflictError(
                    f"Failed to create hospital number counter for year {year:02d}"
                ) from e

    return counter


def allocate_next(db: Session, year: int, capacity: Optional[int] = None) -> int:
    """
    Reserve the next sequence number for a year.

    Must be called inside the same unit of work that stores the identity
    owning the number; never commit the counter on its own.

    Args:
        db: Database session inside the caller's unit of work
        year: Two-digit year (0-99)
        capacity: Highest allowed sequence (default: settings.HN_MAX_SEQUENCE)

    Returns:
        The new last_sequence, exactly one above the previous value

    Raises:
        SequenceExhaustedError: If the year has no numbers left. The counter
            is left unchanged.

    Example:
        >>> allocate_next(db, 25)
        1
        >>> allocate_next(db, 25)
        2
    """
    if capacity is None:
        capacity = settings.HN_MAX_SEQUENCE
    if not 0 <= year <= 99:
        raise ValueError(f"Year must be a two-digit year, got {year}")

    counter = get_or_create_counter(db, year)

    next_sequence = counter.last_sequence + 1
    if next_sequence > capacity:
        logger.error(
            f"Hospital number capacity exhausted for year {year:02d} "
            f"(last_sequence={counter.last_sequence})"
        )
        raise SequenceExhaustedError(year, capacity)

    counter.last_sequence = next_sequence
    db.flush()

    return next_sequence


def peek_next(db: Session, year: int, capacity: Optional[int] = None) -> Optional[int]:
    """
    Sequence the next allocation would receive, without locking.

    Advisory only: another registration may take this number first.

    Returns:
        Next sequence, or None if the year is exhausted
    """
    if capacity is None:
        capacity = settings.HN_MAX_SEQUENCE

    last_sequence = (
        db.query(HospitalNumberCounter.last_sequence).filter_by(year=year).scalar()
    ) or 0

    if last_sequence >= capacity:
        return None
    return last_sequence + 1


def resync_counter(db: Session, year: int) -> HospitalNumberCounter:
    """
    Raise a year's counter to the highest sequence actually issued.

    Administrative correction after imports or legacy-format repairs. Goes
    through the same locked path as allocation and never lowers the counter,
    so numbers already handed out are never reissued.

    Returns:
        The (possibly updated) counter row
    """
    counter = get_or_create_counter(db, year)
    issued = get_max_issued_sequence(db, year)

    if issued > counter.last_sequence:
        logger.warning(
            f"Counter for year {year:02d} behind issued numbers: "
            f"{counter.last_sequence} -> {issued}"
        )
        counter.last_sequence = issued
        db.flush()

    return counter
