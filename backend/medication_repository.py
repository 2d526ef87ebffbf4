"""
Medication Repository

Query helpers shared by the safety layers, the registry sync and the recheck
jobs, plus the persisted safety-result cache (medication_safety_cache table).
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
from database import Medication, MedicationSafetyCache, Patient, SessionLocal
from medication_canonicalizer import NameCanonicalizer, default_canonicalizer
from medication_safety_rules import CurrentMedication

logger = logging.getLogger(__name__)


def list_patient_medications(db: Session, patient_id: int, include_deleted: bool = False) -> List[Medication]:
    query = db.query(Medication).filter(Medication.patient_id == patient_id)
    if not include_deleted:
        query = query.filter(Medication.deleted.is_(False))
    return query.order_by(Medication.id).all()


def get_patient_allergies(db: Session, patient_id: int) -> List[str]:
    """Documented allergies as plain strings; anything malformed is dropped."""
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient or not isinstance(patient.allergies, list):
        return []
    return [a for a in patient.allergies if isinstance(a, str) and a.strip()]


def record_canonical_name(record: Medication, canonicalizer: NameCanonicalizer = default_canonicalizer) -> str:
    return record.canonical_name or canonicalizer.canonicalize(record.name)


def select_active_for_safety_check(
    records: List[Medication],
    new_canonical: str,
    exclude_medication_id: Optional[int] = None,
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> List[Medication]:
    """
    Medications the new entry should be compared against: active, not
    stopped, not deleted, not the record being replaced and not the same drug.
    """
    selected = []
    for record in records:
        if exclude_medication_id is not None and record.id == exclude_medication_id:
            continue
        if not record.active or record.stopped_at is not None or record.deleted:
            continue
        if new_canonical and record_canonical_name(record, canonicalizer) == new_canonical:
            continue
        selected.append(record)
    return selected


def to_current_medication(record: Medication, canonicalizer: NameCanonicalizer = default_canonicalizer) -> CurrentMedication:
    return CurrentMedication(
        id=record.id,
        name=record.name,
        active=bool(record.active),
        canonical_name=record_canonical_name(record, canonicalizer),
        dose=record.dose,
        frequency=record.frequency,
    )


class SafetyResultCache:
    """
    Read-through store for warnings produced by a slow safety layer.

    One row per (patient, cache_key, source). Rows older than the TTL are
    treated as missing. Writes replace the row. Storage errors are logged and
    degrade to a miss or a skipped write.
    """

    def __init__(self, source: str, session_factory=SessionLocal, ttl: Optional[timedelta] = None):
        self.source = source
        self.session_factory = session_factory
        self.ttl = ttl if ttl is not None else timedelta(days=config.SAFETY_CACHE_TTL_DAYS)

    def get(self, patient_id: int, cache_key: str, now: Optional[datetime] = None) -> Optional[List[Dict[str, Any]]]:
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            row = db.query(MedicationSafetyCache).filter(
                MedicationSafetyCache.patient_id == patient_id,
                MedicationSafetyCache.cache_key == cache_key,
                MedicationSafetyCache.source == self.source,
            ).first()
            if row is None or row.created_at is None:
                return None
            if now - row.created_at > self.ttl:
                logger.debug("Safety cache entry expired", extra={"cache_key": cache_key, "source": self.source})
                return None
            if not isinstance(row.warnings, list):
                return None
            logger.info("Safety cache hit", extra={"cache_key": cache_key, "source": self.source})
            return list(row.warnings)
        except SQLAlchemyError as e:
            logger.warning(f"Safety cache read failed: {e}", extra={"source": self.source})
            return None
        finally:
            db.close()

    def put(
        self,
        patient_id: int,
        cache_key: str,
        warnings: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        db = self.session_factory()
        try:
            db.query(MedicationSafetyCache).filter(
                MedicationSafetyCache.patient_id == patient_id,
                MedicationSafetyCache.cache_key == cache_key,
                MedicationSafetyCache.source == self.source,
            ).delete(synchronize_session=False)
            db.add(MedicationSafetyCache(
                patient_id=patient_id,
                cache_key=cache_key,
                source=self.source,
                warnings=list(warnings),
                cache_metadata=metadata,
                created_at=now or datetime.utcnow(),
            ))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Safety cache write failed: {e}", extra={"source": self.source})
            return False
        finally:
            db.close()


def clear_safety_cache_for_patient(patient_id: int, session_factory=SessionLocal) -> int:
    """Delete every cached safety result for a patient. Returns rows deleted, 0 on failure."""
    db = session_factory()
    try:
        deleted = db.query(MedicationSafetyCache).filter(
            MedicationSafetyCache.patient_id == patient_id
        ).delete(synchronize_session=False)
        db.commit()
        if deleted:
            logger.info("Cleared medication safety cache", extra={"patient_id": patient_id, "deleted": deleted})
        return deleted
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to clear medication safety cache: {e}", extra={"patient_id": patient_id})
        return 0
    finally:
        db.close()
