"""
Identity Repository - Centralized patient identity queries.

Answers "does this identity already have a hospital number?". Lookups have
no side effects; the registration protocol calls them twice, once as an
advisory preview and once inside its unit of work as the authoritative check.
"""

from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from hn_registry.models.patient_identity import PatientIdentity, IdentityType
from hn_registry.services.errors import InvalidFormatError
from hn_registry.utils.identity_utils import is_normalized


def lookup_identity(
    db: Session, identity_type: IdentityType, identity_value: str
) -> Optional[PatientIdentity]:
    """
    Get the identity record for a normalized identity.

    Args:
        db: Database session
        identity_type: National ID or passport
        identity_value: Normalized identity value

    Returns:
        PatientIdentity or None if the identity is not registered

    Raises:
        InvalidFormatError: If identity_value is not normalized. No query is issued.
    """
    if not is_normalized(identity_type, identity_value):
        raise InvalidFormatError("Identity value must be normalized before lookup")

    return (
        db.query(PatientIdentity)
        .filter(
            PatientIdentity.identity_type == identity_type,
            PatientIdentity.identity_value == identity_value,
        )
        .first()
    )


def get_by_hospital_number(
    db: Session, hospital_number: str
) -> Optional[PatientIdentity]:
    return (
        db.query(PatientIdentity)
        .filter(PatientIdentity.hospital_number == hospital_number)
        .first()
    )


def get_max_issued_sequence(db: Session, year: int) -> int:
    """Highest sequence actually issued for a two-digit year, 0 if none."""
    return (
        db.query(func.coalesce(func.max(PatientIdentity.sequence), 0))
        .filter(PatientIdentity.year == year)
        .scalar()
    )


def insert_identity(
    db: Session,
    identity_type: IdentityType,
    identity_value: str,
    hospital_number: str,
    year: int,
    sequence: int,
    display_name: Optional[str] = None,
) -> PatientIdentity:
    """
    Stage a new identity row in the caller's transaction.

    The flush sends the INSERT immediately, so a uniqueness violation
    surfaces here as IntegrityError rather than at commit.

    Returns:
        Created PatientIdentity object
    """
    identity = PatientIdentity(
        identity_type=identity_type,
        identity_value=identity_value,
        hospital_number=hospital_number,
        year=year,
        sequence=sequence,
        display_name=display_name,
    )
    db.add(identity)
    db.flush()

    return identity
