"""
Date utility functions for allocation years.
"""

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from hn_registry.config import settings


def clinic_today(timezone: Optional[str] = None) -> date:
    """Current date in the clinic's timezone."""
    return datetime.now(ZoneInfo(timezone or settings.CLINIC_TIMEZONE)).date()


def allocation_year(today: Optional[date] = None) -> int:
    """Two-digit year used for the counter row and the hospital number."""
    return (today or clinic_today()).year % 100
