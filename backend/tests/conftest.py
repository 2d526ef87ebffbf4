"""
Pytest configuration and shared fixtures for the medication registry tests.

This module provides:
- Test database setup (SQLite file per test, so worker threads share it)
- Session factory fixture matching database.SessionLocal
- Patient and medication fixtures
- Fake generative and external collaborators (AsyncMock based)
"""

import pytest
import os
import sys
from datetime import datetime, timedelta
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

# Keep the generative layer and outbound HTTP off unless a test opts in
os.environ.setdefault("ENABLE_AI_SAFETY_CHECKS", "false")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("LOG_OUTPUT", "stdout")

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from database import Base, Patient, Medication, MedicationSafetyCache, init_db


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """Create a test database engine backed by a temporary SQLite file."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'medications.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    """Session factory with the same settings as database.SessionLocal."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================

@pytest.fixture
def patient(test_db) -> Patient:
    """A patient with no documented allergies."""
    record = Patient(external_id="patient-001", allergies=[])
    test_db.add(record)
    test_db.commit()
    test_db.refresh(record)
    return record


@pytest.fixture
def penicillin_allergic_patient(test_db) -> Patient:
    """A patient with a documented penicillin allergy."""
    record = Patient(external_id="patient-002", allergies=["Penicillin"])
    test_db.add(record)
    test_db.commit()
    test_db.refresh(record)
    return record


@pytest.fixture
def processed_at() -> datetime:
    return datetime(2024, 3, 1, 9, 30)


@pytest.fixture
def add_medication(test_db):
    """Factory for stored medication rows."""
    def _add(patient_id: int, name: str, **fields) -> Medication:
        from medication_canonicalizer import canonicalize

        defaults = {
            "name_lower": name.lower(),
            "canonical_name": canonicalize(name) or name.lower(),
            "active": True,
            "started_at": datetime(2024, 1, 1, 8, 0),
            "source": "visit",
        }
        defaults.update(fields)
        record = Medication(patient_id=patient_id, name=name, **defaults)
        test_db.add(record)
        test_db.commit()
        test_db.refresh(record)
        return record

    return _add


@pytest.fixture
def add_cache_row(test_db):
    """Factory for medication_safety_cache rows with a chosen age."""
    def _add(patient_id: int, cache_key: str, source: str, warnings, age: timedelta = timedelta(0)):
        row = MedicationSafetyCache(
            patient_id=patient_id,
            cache_key=cache_key,
            source=source,
            warnings=warnings,
            created_at=datetime.utcnow() - age,
        )
        test_db.add(row)
        test_db.commit()
        return row

    return _add


# =============================================================================
# COLLABORATOR FIXTURES
# =============================================================================

@pytest.fixture
def mock_ai_layer():
    """Generative layer stand-in; returns no warnings by default."""
    layer = MagicMock()
    layer.suggest_additional_warnings = AsyncMock(return_value=[])
    return layer


@pytest.fixture
def mock_rxnav_client():
    """RxNav client stand-in with a small name -> RxCUI table."""
    identifiers = {
        "warfarin": "11289",
        "ibuprofen": "5640",
        "lisinopril": "29046",
        "sertraline": "36437",
    }
    client = MagicMock()
    client.resolve_approximate_identifier = AsyncMock(
        side_effect=lambda name: identifiers.get(name.lower())
    )
    client.fetch_interactions = AsyncMock(return_value=[])
    return client

