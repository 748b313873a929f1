from uuid import UUID as PyUUID
from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum as SQLEnum,
    UniqueConstraint,
    Index,
)
from sqlalchemy.types import Uuid
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
import uuid
import enum
from hn_registry.database import Base


class IdentityType(str, enum.Enum):
    NATIONAL_ID = "national_id"
    PASSPORT = "passport"


class PatientIdentity(Base):
    """
    External identity (national ID or passport) bound to its hospital number.

    Created exactly once per identity when a registration commits and never
    modified afterwards. Later visits reference this row instead of creating
    a new one.
    """

    __tablename__ = "patient_identities"
    __table_args__ = (
        UniqueConstraint(
            "identity_type", "identity_value", name="uq_patient_identity_value"
        ),
        Index("ix_patient_identities_year_sequence", "year", "sequence"),
    )

    id: Mapped[PyUUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_type: Mapped[IdentityType] = mapped_column(
        SQLEnum(
            IdentityType,
            name="identitytype",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    identity_value: Mapped[str] = mapped_column(String(20), nullable=False)
    hospital_number: Mapped[str] = mapped_column(
        String(8), unique=True, nullable=False, index=True
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, nullable=False
    )

    def __repr__(self):
        # Mask identity value for privacy: 11***
        return f"<PatientIdentity {self.hospital_number} {self.identity_value[:2]}***>"
