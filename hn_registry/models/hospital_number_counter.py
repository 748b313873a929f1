"""
Hospital Number Counter Model
Year-partitioned sequence state for PTHN generation using database-level locking.
"""

from sqlalchemy import Integer, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from hn_registry.database import Base


class HospitalNumberCounter(Base):
    """
    Counter for generating hospital numbers, one row per two-digit year.
    Uses row-level locking to prevent race conditions.

    Only hn_registry.services.sequence_service writes to this table.
    """

    __tablename__ = "hospital_number_counters"
    __table_args__ = (
        CheckConstraint("year >= 0 AND year <= 99", name="ck_hn_counter_year"),
        CheckConstraint(
            "last_sequence >= 0 AND last_sequence <= 9999",
            name="ck_hn_counter_last_sequence",
        ),
    )

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    def __repr__(self):
        return f"<HospitalNumberCounter {self.year:02d}: {self.last_sequence}>"
