from sqlalchemy import create_engine, Column, Integer, String, DateTime, Boolean, Text, JSON, ForeignKey, UniqueConstraint, Index
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from datetime import datetime

import config

DATABASE_URL = config.DATABASE_URL

# Handle PostgreSQL URL format differences
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Create engine with appropriate connection args
connect_args = {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class Patient(Base):
    """
    Patient - owned by the account service; the medication core only reads allergies.
    """
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, index=True)
    allergies = Column(JSON, default=list)  # ["penicillin", "sulfa"]
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    medications = relationship("Medication", back_populates="patient")


class Medication(Base):
    """
    Medication registry record - one row per (patient, logical medication instance).

    Rows are matched by canonical name, then by lower-cased name. Duplicate rows for
    the same canonical drug are allowed. Rows are deactivated, never hard-deleted.
    """
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    # Identity
    name = Column(String, nullable=False)  # as entered
    name_lower = Column(String, nullable=False, index=True)
    canonical_name = Column(String, nullable=False, index=True)

    # Regimen
    dose = Column(String)
    frequency = Column(String)
    notes = Column(Text)
    display = Column(Text)
    original_text = Column(Text)

    # Provenance
    source = Column(String, default="visit")
    source_visit_id = Column(String, index=True)

    # Lifecycle
    active = Column(Boolean, default=True, nullable=False)
    started_at = Column(DateTime)
    stopped_at = Column(DateTime)
    changed_at = Column(DateTime)
    deleted = Column(Boolean, default=False, nullable=False)

    # Safety review
    needs_confirmation = Column(Boolean, default=False, nullable=False)
    medication_status = Column(String)  # matched, fuzzy, unverified
    medication_warning = Column(JSON)  # ordered list of warning dicts, or NULL
    last_safety_check_hash = Column(String)
    last_safety_check_at = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    last_synced_at = Column(DateTime)

    patient = relationship("Patient", back_populates="medications")

    __table_args__ = (
        Index("ix_medications_patient_canonical", "patient_id", "canonical_name"),
        Index("ix_medications_patient_name_lower", "patient_id", "name_lower"),
    )


class MedicationReminder(Base):
    """
    Medication Reminder - daily reminder times for an active medication
    """
    __tablename__ = "medication_reminders"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False, index=True)

    medication_name = Column(String, nullable=False)
    medication_dose = Column(String)
    times = Column(JSON, nullable=False)  # ["08:00", "20:00"]
    enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow)


class MedicationNudge(Base):
    """
    Medication Nudge - scheduled follow-up prompt about a medication
    """
    __tablename__ = "medication_nudges"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False, index=True)

    status = Column(String, default="pending")  # pending, sent, dismissed
    message = Column(Text)
    scheduled_for = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class MedicationSafetyCache(Base):
    """
    Medication Safety Cache - persisted results of the external and generative layers.

    Keyed by (patient, fingerprint, source). Entries are replaced, never edited.
    """
    __tablename__ = "medication_safety_cache"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    cache_key = Column(String, nullable=False)
    source = Column(String, nullable=False)  # external, ai
    warnings = Column(JSON, nullable=False)
    cache_metadata = Column("metadata", JSON)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("patient_id", "cache_key", "source", name="uq_safety_cache_entry"),
    )


def init_db(bind=None):
    """Create all medication tables if they don't exist."""
    Base.metadata.create_all(bind=bind or engine)
