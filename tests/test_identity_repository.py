import pytest

from hn_registry.database import session_scope
from hn_registry.models.patient_identity import IdentityType
from hn_registry.repositories.identity_repository import (
    lookup_identity,
    get_by_hospital_number,
    get_max_issued_sequence,
    insert_identity,
)
from hn_registry.services.errors import InvalidFormatError


@pytest.fixture
def registered(session_factory):
    with session_scope(session_factory) as db:
        insert_identity(
            db, IdentityType.NATIONAL_ID, "1103702345679", "PT250015", 25, 15, "Malee S."
        )


def test_lookup_hit(session_factory, registered):
    with session_scope(session_factory) as db:
        identity = lookup_identity(db, IdentityType.NATIONAL_ID, "1103702345679")
        assert identity.hospital_number == "PT250015"
        assert identity.display_name == "Malee S."


def test_lookup_miss(session_factory, registered):
    with session_scope(session_factory) as db:
        assert lookup_identity(db, IdentityType.PASSPORT, "AB1234567") is None


@pytest.mark.parametrize(
    "identity_type, value",
    [
        (IdentityType.NATIONAL_ID, "1-1037-02345-67-9"),
        (IdentityType.PASSPORT, "ab1234567"),
        (IdentityType.PASSPORT, "AB 1234567"),
    ],
)
def test_lookup_rejects_unnormalized_value(session_factory, identity_type, value):
    with session_scope(session_factory) as db:
        with pytest.raises(InvalidFormatError):
            lookup_identity(db, identity_type, value)


def test_get_by_hospital_number(session_factory, registered):
    with session_scope(session_factory) as db:
        assert get_by_hospital_number(db, "PT250015").identity_value == "1103702345679"
        assert get_by_hospital_number(db, "PT250016") is None


def test_max_issued_sequence(session_factory, registered):
    with session_scope(session_factory) as db:
        assert get_max_issued_sequence(db, 25) == 15
        assert get_max_issued_sequence(db, 26) == 0
