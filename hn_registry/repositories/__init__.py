"""
Repository layer for the PTHN registry.

Repositories encapsulate database query logic. Counter rows are not exposed
here: they are only read and written through services.sequence_service.
"""

from hn_registry.repositories.identity_repository import (
    lookup_identity,
    get_by_hospital_number,
    get_max_issued_sequence,
    insert_identity,
)

__all__ = [
    "lookup_identity",
    "get_by_hospital_number",
    "get_max_issued_sequence",
    "insert_identity",
]
