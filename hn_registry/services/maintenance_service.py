"""
Maintenance Service - Administrative corrections for issued hospital numbers.

Repairs identities imported with the legacy 7-character format (PT25043)
and brings the year counters back in line with what was actually issued.
Counter changes go through sequence_service so they are locked and never
lower a counter.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from hn_registry.config import settings
from hn_registry.models.patient_identity import PatientIdentity
from hn_registry.repositories.identity_repository import get_by_hospital_number
from hn_registry.services.errors import InvalidFormatError
from hn_registry.services.sequence_service import resync_counter
from hn_registry.utils.hospital_number import (
    parse_hospital_number,
    repair_legacy_hospital_number,
)

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    repaired: dict[str, str] = field(default_factory=dict)
    conflicts: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)
    counters: dict[int, int] = field(default_factory=dict)


def repair_legacy_hospital_numbers(db: Session, dry_run: bool = False) -> RepairReport:
    """
    Rewrite legacy PTYYXXX hospital numbers to PTYYXXXX and resync counters.

    Args:
        db: Database session (committed by the caller)
        dry_run: Report what would change without writing

    Returns:
        RepairReport with old -> new numbers, skipped conflicts, legacy
        numbers that cannot be repaired (sequence 000) and the resulting
        last_sequence per touched year
    """
    report = RepairReport()
    years: set[int] = set()

    # prefix followed by exactly five characters: YY + XXX
    legacy_pattern = f"{settings.HN_PREFIX}{'_' * 5}"
    legacy = (
        db.query(PatientIdentity)
        .filter(PatientIdentity.hospital_number.like(legacy_pattern))
        .order_by(PatientIdentity.hospital_number)
        .all()
    )

    for identity in legacy:
        old_number = identity.hospital_number
        try:
            new_number = repair_legacy_hospital_number(old_number)
        except InvalidFormatError as e:
            logger.warning(f"Cannot repair {old_number}: {e}")
            report.invalid.append(old_number)
            continue
        if new_number is None:
            continue

        if get_by_hospital_number(db, new_number) is not None:
            logger.warning(f"Cannot repair {old_number}: {new_number} already issued")
            report.conflicts.append(old_number)
            continue

        year, sequence = parse_hospital_number(new_number)
        report.repaired[old_number] = new_number
        years.add(year)

        if not dry_run:
            identity.hospital_number = new_number
            identity.year = year
            identity.sequence = sequence
            db.flush()

    for year in sorted(years):
        if dry_run:
            continue
        counter = resync_counter(db, year)
        report.counters[year] = counter.last_sequence

    logger.info(
        f"Legacy repair: {len(report.repaired)} repaired, "
        f"{len(report.conflicts)} conflicts, {len(report.invalid)} invalid{' (dry run)' if dry_run else ''}"
    )
    return report
