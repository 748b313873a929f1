import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from hn_registry.database import session_scope
from hn_registry.models import PatientIdentity
from hn_registry.models.patient_identity import IdentityType
from hn_registry.services import registration_service
from hn_registry.services.errors import (
    AllocationConflictError,
    AllocationTimeoutError,
    DuplicateIdentityError,
    InvalidFormatError,
    SequenceExhaustedError,
)
from hn_registry.services.registration_service import check_identity, register_identity
from tests.helpers import make_national_id, make_passport

IN_2025 = date(2025, 6, 1)


def _register(session_factory, identity_type, identity_value, **kwargs):
    kwargs.setdefault("today", IN_2025)
    kwargs.setdefault("retry_delay", 0)
    return register_identity(
        identity_type, identity_value, session_factory=session_factory, **kwargs
    )


def test_first_registration_gets_first_number(session_factory, counter_value):
    result = _register(session_factory, "thai_id", "1-1037-02345-67-9")

    assert result.hospital_number == "PT250001"
    assert result.identity_type is IdentityType.NATIONAL_ID
    assert result.identity_value == "1103702345679"
    assert (result.year, result.sequence, result.attempts) == (25, 1, 1)
    assert counter_value(25) == 1


def test_registered_identity_is_persisted(session_factory):
    _register(session_factory, "passport", "ab1234567", display_name="Somchai J.")

    with session_scope(session_factory) as db:
        identity = db.query(PatientIdentity).one()
        assert identity.hospital_number == "PT250001"
        assert identity.identity_value == "AB1234567"
        assert identity.display_name == "Somchai J."


def test_duplicate_identity_never_allocates(session_factory, seed_counter, counter_value):
    seed_counter(25, 14)
    first = _register(session_factory, "passport", "AB1234567")
    assert first.hospital_number == "PT250015"

    with pytest.raises(DuplicateIdentityError) as exc_info:
        _register(session_factory, "passport", " ab-1234567 ")

    assert exc_info.value.existing.hospital_number == "PT250015"
    assert counter_value(25) == 15


def test_same_value_different_type_is_not_duplicate(session_factory):
    national_id = make_national_id("110370234567")
    _register(session_factory, "national_id", national_id)

    with session_scope(session_factory) as db:
        result = check_identity(db, "passport", national_id, today=IN_2025)
    assert result.duplicate is False


def test_invalid_identity_rejected_before_storage(session_factory, counter_value):
    with pytest.raises(InvalidFormatError):
        _register(session_factory, "national_id", "1103702345670")

    assert counter_value(25) is None


def test_exhausted_year(session_factory, seed_counter, counter_value, identity_count):
    seed_counter(25, 9999)

    with pytest.raises(SequenceExhaustedError):
        _register(session_factory, "passport", "AB1234567")

    assert counter_value(25) == 9999
    assert identity_count() == 0


def test_year_rollover(session_factory, seed_counter, counter_value):
    seed_counter(25, 9999)

    result = _register(session_factory, "passport", "AB1234567", today=date(2026, 1, 1))

    assert result.hospital_number == "PT260001"
    assert counter_value(25) == 9999
    assert counter_value(26) == 1


def test_patient_record_hook_runs_in_same_unit(session_factory):
    seen = []

    def on_registered(db, identity):
        seen.append(identity.hospital_number)
        assert db.query(PatientIdentity).filter_by(id=identity.id).count() == 1

    _register(session_factory, "passport", "AB1234567", on_registered=on_registered)

    assert seen == ["PT250001"]


def test_hook_failure_rolls_back_everything(session_factory, seed_counter, counter_value, identity_count):
    seed_counter(25, 7)

    def on_registered(db, identity):
        raise RuntimeError("patient record store unavailable")

    with pytest.raises(RuntimeError):
        _register(session_factory, "passport", "AB1234567", on_registered=on_registered)

    assert counter_value(25) == 7
    assert identity_count() == 0


def test_lost_race_on_identity_is_reported_as_duplicate(session_factory, counter_value, monkeypatch):
    _register(session_factory, "passport", "AB1234567")

    # In-transaction lookup misses, as if the other unit had not committed yet
    calls = []

    def stale_lookup(db, identity_type, identity_value):
        calls.append(identity_value)
        return None

    monkeypatch.setattr(registration_service, "lookup_identity", stale_lookup)

    with pytest.raises(DuplicateIdentityError) as exc_info:
        _register(session_factory, "passport", "AB1234567")

    assert exc_info.value.existing.hospital_number == "PT250001"
    assert len(calls) == 1
    assert counter_value(25) == 1


def test_identity_clash_is_duplicate_even_with_single_attempt(session_factory, identity_count, monkeypatch):
    _register(session_factory, "passport", "AB1234567")
    monkeypatch.setattr(registration_service, "lookup_identity", lambda *args: None)

    with pytest.raises(DuplicateIdentityError) as exc_info:
        _register(session_factory, "passport", "AB1234567", max_attempts=1)

    assert exc_info.value.existing.identity_value == "AB1234567"
    assert exc_info.value.existing.hospital_number == "PT250001"
    assert identity_count() == 1


def test_hospital_number_clash_surfaces_after_max_attempts(session_factory, monkeypatch, counter_value, identity_count):
    _register(session_factory, "passport", "AB1234567")

    # Every attempt is handed an already issued number
    attempts = []

    def stale_allocate(db, year):
        attempts.append(year)
        return 1

    monkeypatch.setattr(registration_service, "allocate_next", stale_allocate)

    with pytest.raises(AllocationConflictError):
        _register(session_factory, "passport", "CD7654321", max_attempts=3)

    assert len(attempts) == 3
    assert counter_value(25) == 1
    assert identity_count() == 1


def test_lock_timeout(tmp_path):
    from sqlalchemy import text
    from sqlalchemy.orm import sessionmaker
    from hn_registry.database import build_engine, init_db

    engine = build_engine(f"sqlite:///{tmp_path / 'locked.db'}", lock_timeout_ms=100)
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    blocker = factory()
    blocker.execute(text("SELECT 1"))
    try:
        with pytest.raises(AllocationTimeoutError):
            _register(factory, "passport", "AB1234567", max_attempts=2, timeout_ms=100)
    finally:
        blocker.rollback()
        blocker.close()
        engine.dispose()


def test_concurrent_registrations_get_consecutive_numbers(session_factory, seed_counter):
    seed_counter(25, 40)
    n = 20
    barrier = threading.Barrier(n)

    def register(i):
        barrier.wait()
        return _register(session_factory, "passport", make_passport(i)).sequence

    with ThreadPoolExecutor(max_workers=n) as pool:
        sequences = list(pool.map(register, range(n)))

    assert sorted(sequences) == list(range(41, 41 + n))


def test_concurrent_submissions_same_identity(session_factory, counter_value):
    passport = "AB1234567"

    with session_scope(session_factory) as db:
        preview_a = check_identity(db, "passport", passport, today=IN_2025)
    with session_scope(session_factory) as db:
        preview_b = check_identity(db, "passport", passport, today=IN_2025)
    assert not preview_a.duplicate and not preview_b.duplicate

    barrier = threading.Barrier(2)

    def submit(_):
        barrier.wait()
        try:
            return _register(session_factory, "passport", passport).hospital_number
        except DuplicateIdentityError as e:
            return e

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(submit, range(2)))

    successes = [o for o in outcomes if isinstance(o, str)]
    duplicates = [o for o in outcomes if isinstance(o, DuplicateIdentityError)]
    assert successes == ["PT250001"]
    assert len(duplicates) == 1
    assert duplicates[0].existing.hospital_number == "PT250001"
    assert counter_value(25) == 1


def test_check_identity_preview(session_factory, seed_counter):
    seed_counter(25, 42)

    with session_scope(session_factory) as db:
        result = check_identity(db, "passport", "AB1234567", today=IN_2025)

    assert result.duplicate is False
    assert result.existing is None
    assert result.preview_hospital_number == "PT250043"


def test_check_identity_duplicate(session_factory):
    _register(session_factory, "passport", "AB1234567", display_name="Jane D.")

    with session_scope(session_factory) as db:
        result = check_identity(db, "passport", "ab1234567", today=IN_2025)

    assert result.duplicate is True
    assert result.existing.hospital_number == "PT250001"
    assert result.existing.display_name == "Jane D."
    assert result.preview_hospital_number is None


def test_check_identity_exhausted_has_no_preview(session_factory, seed_counter):
    seed_counter(25, 9999)

    with session_scope(session_factory) as db:
        result = check_identity(db, "passport", "AB1234567", today=IN_2025)

    assert result.duplicate is False
    assert result.preview_hospital_number is None
