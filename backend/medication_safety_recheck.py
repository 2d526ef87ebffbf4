"""
Medication Safety Recheck

Re-evaluates stored medications when something they depend on changes:
- recheck_medication: one medication after its own record was edited
- recheck_patient_allergies: every active medication after an allergy update

A fingerprint of the inputs (build_safety_check_hash) is stored on each
record so unchanged medications are skipped. Rechecks run the full hybrid
evaluation, including the generative layer and the external RxNav lookup.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

import config
from database import Medication, SessionLocal
from external_interaction_service import ExternalInteractionCache, ExternalInteractionLookup
from medication_entries import MedicationChangeEntry
from medication_repository import get_patient_allergies, list_patient_medications, to_current_medication
from medication_safety_rules import (
    SafetyWarning,
    deduplicate_warnings,
    has_critical,
    requires_confirmation,
    warnings_to_dicts,
)
from medication_safety_service import HybridSafetyOrchestrator, build_safety_check_hash
from models import SafetyCheckOptions, SafetyRecheckResult
from structured_logging import LogContext

logger = logging.getLogger(__name__)

UNCONFIRMED_STATUSES = ("fuzzy", "unverified")


def record_to_entry(record: Medication) -> MedicationChangeEntry:
    return MedicationChangeEntry(
        name=record.name,
        dose=record.dose,
        frequency=record.frequency,
        note=record.notes,
        display=record.display,
        original=record.original_text,
        status=record.medication_status,
    )


def apply_recheck_result(record: Medication, warnings: List[SafetyWarning], safety_hash: str, checked_at: datetime):
    record.medication_warning = warnings_to_dicts(warnings) or None
    record.needs_confirmation = (
        requires_confirmation(warnings) or record.medication_status in UNCONFIRMED_STATUSES
    )
    record.last_safety_check_at = checked_at
    record.last_safety_check_hash = safety_hash


class MedicationSafetyRecheck:
    """Hash-gated re-evaluation of stored medications"""

    def __init__(
        self,
        session_factory=SessionLocal,
        orchestrator: Optional[HybridSafetyOrchestrator] = None,
        external_lookup: Optional[ExternalInteractionLookup] = None,
        use_external: bool = True,
        batch_size: int = None,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator or HybridSafetyOrchestrator(session_factory=session_factory)
        self.use_external = use_external
        self.external_lookup = external_lookup
        if self.use_external and self.external_lookup is None:
            self.external_lookup = ExternalInteractionLookup(cache=ExternalInteractionCache(session_factory=session_factory))
        self.batch_size = min(batch_size or config.MAX_BATCH_SIZE, config.MAX_BATCH_SIZE)

    async def _evaluate(
        self,
        record_id: int,
        patient_id: int,
        entry: MedicationChangeEntry,
        current,
        allergies: Optional[List[str]] = None,
    ) -> List[SafetyWarning]:
        warnings = await self.orchestrator.evaluate(
            patient_id, entry, SafetyCheckOptions(use_ai=True, exclude_medication_id=record_id), allergies
        )
        if has_critical(warnings):
            return warnings
        if self.use_external and self.external_lookup is not None:
            external = await self.external_lookup.check(patient_id, entry, current)
            if external:
                warnings = deduplicate_warnings(list(warnings) + list(external))
        return warnings

    async def recheck_medication(self, medication_id: int) -> SafetyRecheckResult:
        db = self.session_factory()
        try:
            record = db.get(Medication, medication_id)
            if record is None:
                return SafetyRecheckResult(medication_id=medication_id, skipped=True, reason="not_found")
            if not record.active or record.deleted:
                return SafetyRecheckResult(medication_id=medication_id, skipped=True, reason="inactive")

            patient_id = record.patient_id
            entry = record_to_entry(record)
            canonical = record.canonical_name or self.orchestrator.canonicalizer.canonicalize(record.name)
            previous_hash = record.last_safety_check_hash
        finally:
            db.close()

        with LogContext(patient_id=patient_id, medication_id=medication_id):
            current, allergies = self.orchestrator.fetch_safety_context(patient_id, canonical, medication_id)
            safety_hash = build_safety_check_hash(
                _HashSubject(entry, canonical), current, allergies, self.orchestrator.canonicalizer
            )
            if previous_hash == safety_hash:
                logger.debug("Safety inputs unchanged; skipping recheck")
                return SafetyRecheckResult(medication_id=medication_id, skipped=True, reason="unchanged")

            warnings = await self._evaluate(medication_id, patient_id, entry, current, allergies)

            db = self.session_factory()
            try:
                record = db.get(Medication, medication_id)
                if record is None:
                    return SafetyRecheckResult(medication_id=medication_id, skipped=True, reason="not_found")
                apply_recheck_result(record, warnings, safety_hash, datetime.utcnow())
                db.commit()
                needs_confirmation = bool(record.needs_confirmation)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Failed to store safety recheck result")
                raise
            finally:
                db.close()

            logger.info("Medication safety rechecked", extra={"warning_count": len(warnings)})
            return SafetyRecheckResult(
                medication_id=medication_id,
                warning_count=len(warnings),
                needs_confirmation=needs_confirmation,
            )

    async def recheck_patient_allergies(self, patient_id: int, allergies: Optional[List[str]] = None) -> Dict[str, int]:
        """
        Re-evaluate every active medication for a patient. Writes are committed
        in batches of at most batch_size rows.
        """
        db = self.session_factory()
        try:
            records = [
                r for r in list_patient_medications(db, patient_id)
                if r.active and r.stopped_at is None
            ]
            snapshots = [(r.id, record_to_entry(r), r.canonical_name) for r in records]
            current_all = [to_current_medication(r) for r in records]
            if allergies is None:
                allergies = get_patient_allergies(db, patient_id)
        finally:
            db.close()

        pending = []
        with LogContext(patient_id=patient_id):
            for medication_id, entry, canonical in snapshots:
                others = [
                    m for m in current_all
                    if m.id != medication_id and m.canonical_name != canonical
                ]
                safety_hash = build_safety_check_hash(
                    _HashSubject(entry, canonical), others, allergies, self.orchestrator.canonicalizer
                )
                warnings = await self._evaluate(medication_id, patient_id, entry, others, allergies)
                pending.append((medication_id, warnings, safety_hash))

            batches = self._write_batches(pending)

        logger.info("Allergy recheck complete", extra={"rechecked": len(pending), "batches": batches})
        return {"rechecked": len(pending), "batches": batches}

    def _commit_batch(self, batch, checked_at: datetime, batch_start: int) -> int:
        db = self.session_factory()
        try:
            for medication_id, warnings, safety_hash in batch:
                record = db.get(Medication, medication_id)
                if record is not None:
                    apply_recheck_result(record, warnings, safety_hash, checked_at)
            db.commit()
            return len(batch)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to commit allergy recheck batch", extra={"batch_start": batch_start})
            raise
        finally:
            db.close()

    def _write_batches(self, pending) -> int:
        """Commit batches concurrently, one session each; the first failure is re-raised."""
        checked_at = datetime.utcnow()
        starts = list(range(0, len(pending), self.batch_size))
        if not starts:
            return 0

        with ThreadPoolExecutor(max_workers=min(config.SYNC_MAX_WORKERS, len(starts))) as executor:
            futures = [
                executor.submit(self._commit_batch, pending[start:start + self.batch_size], checked_at, start)
                for start in starts
            ]
            for future in as_completed(futures):
                future.result()
        return len(starts)


class _HashSubject:
    """Adapts an entry to the attribute names build_safety_check_hash reads."""

    def __init__(self, entry: MedicationChangeEntry, canonical_name: Optional[str]):
        self.name = entry.name
        self.canonical_name = canonical_name
        self.dose = entry.dose
        self.frequency = entry.frequency
        self.notes = entry.note
