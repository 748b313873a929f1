import os
import tempfile

# Settings are read at import time; point them at a scratch database.
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'hn_registry_test.db')}"
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from hn_registry.database import build_engine, init_db, session_scope, get_db, get_session_factory
from hn_registry.models import HospitalNumberCounter, PatientIdentity


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'registry.db'}", lock_timeout_ms=10000)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def seed_counter(session_factory):
    def _seed(year, last_sequence):
        with session_scope(session_factory) as db:
            db.merge(HospitalNumberCounter(year=year, last_sequence=last_sequence))

    return _seed


@pytest.fixture
def counter_value(session_factory):
    """last_sequence for a year, or None if the counter does not exist."""

    def _get(year):
        with session_scope(session_factory) as db:
            return (
                db.query(HospitalNumberCounter.last_sequence)
                .filter_by(year=year)
                .scalar()
            )

    return _get


@pytest.fixture
def identity_count(session_factory):
    def _count():
        with session_scope(session_factory) as db:
            return db.query(PatientIdentity).count()

    return _count


@pytest.fixture
def client(session_factory):
    from hn_registry.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
