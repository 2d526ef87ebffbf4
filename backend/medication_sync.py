"""
Medication Registry Sync

Applies the started/stopped/changed medication lists extracted from a visit
to the patient's medication registry.

Per entry:
- started: create or reactivate; keep the first startedAt
- stopped: deactivate; cancel pending nudges and reminders
- changed: stamp changedAt; reactivate a stopped medication

Started and changed entries are safety checked with the rule engine before
the write; warnings only set the advisory needs_confirmation flag. Entries
are upserted concurrently, one database session per entry. Reminder and
nudge side effects never roll back the medication write.
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import config
from database import Medication, MedicationNudge, MedicationReminder, SessionLocal
from medication_canonicalizer import MatchStatus, NameCanonicalizer, correct_medication_name, default_canonicalizer
from medication_entries import MedicationChangeEntry, normalize_medication_summary
from medication_safety_ai import clear_medication_safety_cache_for_patient
from medication_safety_rules import warnings_to_dicts
from medication_safety_service import HybridSafetyOrchestrator, apply_warnings_to_entry
from models import MedicationSyncRequest, MedicationSyncResult, SafetyCheckOptions
from reminder_schedule import derive_reminder_times
from structured_logging import LogContext, log_registry_write

logger = logging.getLogger(__name__)

STARTED = "started"
STOPPED = "stopped"
CHANGED = "changed"


class MedicationLookupCache:
    """
    Bounded, TTL-evicting map of lookup key -> medication id.

    Owned by one sync call. A hit is only a hint: callers re-read the row by
    id before mutating it. Safe to share between the sync's worker threads.
    """

    def __init__(self, max_size: int = None, ttl_seconds: float = None, clock=time.monotonic):
        self.max_size = max_size or config.MEDICATION_LOOKUP_CACHE_SIZE
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.MEDICATION_LOOKUP_CACHE_TTL_SECONDS
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def canonical_key(canonical_name: str) -> str:
        return f"canonical:{canonical_name}"

    @staticmethod
    def name_key(name_lower: str) -> str:
        return f"name_lower:{name_lower}"

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            medication_id, stored_at = item
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return medication_id

    def set(self, key: str, medication_id: int, overwrite: bool = True):
        with self._lock:
            if not overwrite and key in self._entries:
                return
            self._entries[key] = (medication_id, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def remember(self, record: Medication, overwrite: bool = True):
        if record.canonical_name:
            self.set(self.canonical_key(record.canonical_name), record.id, overwrite)
        if record.name_lower:
            self.set(self.name_key(record.name_lower), record.id, overwrite)

    def warm(self, records: List[Medication]):
        """Bulk-load; the first record seen for a key wins."""
        for record in records:
            self.remember(record, overwrite=False)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class UpsertOutcome:
    medication_id: int
    name: str
    status: str
    created: bool
    warnings: List[Dict[str, Any]]


def _naive_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.utcnow()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MedicationRegistrySync:
    """Idempotent visit -> registry reconciliation"""

    def __init__(
        self,
        session_factory=SessionLocal,
        orchestrator: Optional[HybridSafetyOrchestrator] = None,
        canonicalizer: NameCanonicalizer = default_canonicalizer,
        max_workers: int = None,
        correct_names: bool = True,
    ):
        self.session_factory = session_factory
        self.canonicalizer = canonicalizer
        self.orchestrator = orchestrator or HybridSafetyOrchestrator(
            session_factory=session_factory, canonicalizer=canonicalizer
        )
        self.max_workers = max_workers or config.SYNC_MAX_WORKERS
        self.correct_names = correct_names

    async def sync(self, request: Union[MedicationSyncRequest, Dict[str, Any]]) -> MedicationSyncResult:
        if not isinstance(request, MedicationSyncRequest):
            request = MedicationSyncRequest.model_validate(request)

        patient_id = request.patient_id
        visit_id = str(request.visit_id) if request.visit_id is not None else None
        processed_at = _naive_utc(request.processed_at)
        result = MedicationSyncResult(patient_id=patient_id, visit_id=request.visit_id)

        summary = normalize_medication_summary(request.medications.to_raw())
        if summary.is_empty():
            logger.info("No medication changes to sync", extra={"visit_id": visit_id})
            return result

        with LogContext(patient_id=patient_id, visit_id=visit_id):
            lookup_cache = MedicationLookupCache()
            self._warm_cache(patient_id, lookup_cache)

            started = [await self._check_entry(patient_id, self._correct_name(e)) for e in summary.started]
            changed = [await self._check_entry(patient_id, self._correct_name(e)) for e in summary.changed]
            stopped = [self._correct_name(e) for e in summary.stopped]

            jobs = [(entry, STARTED) for entry in started]
            jobs += [(entry, STOPPED) for entry in stopped]
            jobs += [(entry, CHANGED) for entry in changed]

            loop = asyncio.get_running_loop()
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = await asyncio.gather(*[
                    loop.run_in_executor(
                        executor, self.upsert_medication,
                        patient_id, visit_id, entry, status, processed_at, lookup_cache,
                    )
                    for entry, status in jobs
                ])

            clear_medication_safety_cache_for_patient(patient_id, session_factory=self.session_factory)

        result.started = len(started)
        result.stopped = len(stopped)
        result.changed = len(changed)
        for outcome in outcomes:
            if outcome.created:
                result.created += 1
            else:
                result.updated += 1
            result.medication_ids.append(outcome.medication_id)
            if outcome.warnings:
                result.warnings_by_medication[outcome.name] = outcome.warnings

        logger.info("Visit medications synced", extra={
            "started": result.started,
            "stopped": result.stopped,
            "changed": result.changed,
            "created": result.created,
        })
        return result

    def _warm_cache(self, patient_id: int, lookup_cache: MedicationLookupCache):
        db = self.session_factory()
        try:
            lookup_cache.warm(self._candidate_query(db, patient_id).all())
        except SQLAlchemyError as e:
            logger.warning(f"Could not warm medication lookup cache: {e}")
        finally:
            db.close()

    def _correct_name(self, entry: MedicationChangeEntry) -> MedicationChangeEntry:
        """Fuzzy-correct names the extraction step did not already verify."""
        if not self.correct_names or entry.status:
            return entry

        correction = correct_medication_name(entry.name, canonicalizer=self.canonicalizer)
        if correction.status is MatchStatus.MATCHED:
            return replace(entry, status=MatchStatus.MATCHED.value)

        if correction.status is MatchStatus.FUZZY:
            logger.info("Medication name auto-corrected", extra={
                "original_name": correction.original_name,
                "corrected_name": correction.name,
                "distance": correction.distance,
            })

        return replace(
            entry,
            name=correction.name,
            status=correction.status.value,
            needs_confirmation=True,
            original=entry.original or correction.original_name,
        )

    async def _check_entry(self, patient_id: int, entry: MedicationChangeEntry) -> MedicationChangeEntry:
        try:
            warnings = await self.orchestrator.evaluate(patient_id, entry, SafetyCheckOptions(use_ai=False))
        except Exception as e:
            logger.error(f"Safety check failed for {entry.name}: {e}", exc_info=True)
            return entry
        return apply_warnings_to_entry(entry, warnings)

    # ------------------------------------------------------------------
    # Upsert (runs in a worker thread)
    # ------------------------------------------------------------------

    @staticmethod
    def _candidate_query(db: Session, patient_id: int):
        return db.query(Medication).filter(
            Medication.patient_id == patient_id,
            Medication.deleted.is_(False),
        ).order_by(Medication.active.desc(), Medication.id)

    def find_existing(
        self,
        db: Session,
        patient_id: int,
        canonical_name: str,
        name_lower: str,
        lookup_cache: Optional[MedicationLookupCache] = None,
    ) -> Optional[Medication]:
        """Existing record by canonical name, then by lower-cased name."""
        if lookup_cache is not None:
            for key in (lookup_cache.canonical_key(canonical_name), lookup_cache.name_key(name_lower)):
                medication_id = lookup_cache.get(key)
                if medication_id is None:
                    continue
                record = db.get(Medication, medication_id)
                if (record is not None and record.patient_id == patient_id and not record.deleted
                        and (record.canonical_name == canonical_name or record.name_lower == name_lower)):
                    return record

        record = self._candidate_query(db, patient_id).filter(
            Medication.canonical_name == canonical_name
        ).first()
        if record is None:
            record = self._candidate_query(db, patient_id).filter(
                Medication.name_lower == name_lower
            ).first()
        return record

    def upsert_medication(
        self,
        patient_id: int,
        visit_id: Optional[str],
        entry: MedicationChangeEntry,
        status: str,
        processed_at: datetime,
        lookup_cache: Optional[MedicationLookupCache] = None,
    ) -> UpsertOutcome:
        start_time = time.time()
        name_lower = entry.name.lower()
        canonical_name = self.canonicalizer.canonicalize(entry.name) or name_lower.strip()
        warnings = warnings_to_dicts(entry.warnings)

        db = self.session_factory()
        try:
            try:
                record = self.find_existing(db, patient_id, canonical_name, name_lower, lookup_cache)
                created = record is None
                was_active = bool(record.active) if record is not None else False

                if created:
                    record = Medication(patient_id=patient_id, created_at=processed_at)
                    db.add(record)

                self._apply_base_fields(record, entry, canonical_name, visit_id, processed_at, warnings)
                if created:
                    self._apply_new_record_state(record, status, processed_at)
                else:
                    self._apply_transition(record, status, processed_at, was_active)

                db.commit()
                db.refresh(record)
            except SQLAlchemyError:
                db.rollback()
                logger.exception(f"Medication upsert failed for {entry.name}", extra={"transition": status})
                raise

            if lookup_cache is not None:
                lookup_cache.remember(record)

            log_registry_write(
                logger, "insert" if created else "update", record.id, status,
                (time.time() - start_time) * 1000, medication=entry.name,
            )

            if status == STOPPED and was_active:
                self._cancel_notifications(db, record)
            elif status in (STARTED, CHANGED) and record.active:
                self._ensure_reminder(db, record, processed_at)

            return UpsertOutcome(
                medication_id=record.id, name=record.name, status=status,
                created=created, warnings=warnings,
            )
        finally:
            db.close()

    @staticmethod
    def _apply_base_fields(
        record: Medication,
        entry: MedicationChangeEntry,
        canonical_name: str,
        visit_id: Optional[str],
        processed_at: datetime,
        warnings: List[Dict[str, Any]],
    ):
        note = entry.note or entry.display or entry.original
        display = entry.display or (note if note and note != entry.note else None)
        original_text = entry.original or display or note

        record.name = entry.name
        record.name_lower = entry.name.lower()
        record.canonical_name = canonical_name
        record.dose = entry.dose
        record.frequency = entry.frequency
        record.notes = note
        record.display = display
        record.original_text = original_text
        record.source = "visit"
        record.source_visit_id = visit_id
        record.updated_at = processed_at
        record.last_synced_at = processed_at
        record.needs_confirmation = bool(entry.needs_confirmation)
        record.medication_status = entry.status
        record.medication_warning = warnings or None

    @staticmethod
    def _apply_new_record_state(record: Medication, status: str, processed_at: datetime):
        record.active = status != STOPPED
        record.started_at = processed_at
        record.stopped_at = processed_at if status == STOPPED else None
        record.changed_at = processed_at if status == CHANGED else None

    @staticmethod
    def _apply_transition(record: Medication, status: str, processed_at: datetime, was_active: bool):
        if status == STARTED:
            record.active = True
            record.started_at = record.started_at or processed_at
            record.stopped_at = None
            if not was_active:
                record.changed_at = None

        elif status == STOPPED:
            record.active = False
            record.stopped_at = processed_at
            record.started_at = record.started_at or processed_at

        elif status == CHANGED:
            record.changed_at = processed_at
            record.started_at = record.started_at or processed_at
            if not was_active and record.stopped_at is not None:
                record.active = True
                record.stopped_at = None

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    @staticmethod
    def _cancel_notifications(db: Session, record: Medication):
        try:
            nudges = db.query(MedicationNudge).filter(
                MedicationNudge.patient_id == record.patient_id,
                MedicationNudge.medication_id == record.id,
                MedicationNudge.status == "pending",
            ).delete(synchronize_session=False)
            db.commit()
            if nudges:
                logger.info(f"Cleared {nudges} pending nudge(s) for stopped {record.name}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to clear nudges for stopped medication: {e}", extra={"medication_id": record.id})

        try:
            reminders = db.query(MedicationReminder).filter(
                MedicationReminder.patient_id == record.patient_id,
                MedicationReminder.medication_id == record.id,
            ).delete(synchronize_session=False)
            db.commit()
            if reminders:
                logger.info(f"Deleted {reminders} reminder(s) for stopped {record.name}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete reminders for stopped medication: {e}", extra={"medication_id": record.id})

    @staticmethod
    def _ensure_reminder(db: Session, record: Medication, processed_at: datetime):
        try:
            existing = db.query(MedicationReminder).filter(
                MedicationReminder.patient_id == record.patient_id,
                MedicationReminder.medication_id == record.id,
            ).first()
            if existing is not None:
                logger.debug(f"Reminder already exists for {record.name}, skipping auto-create")
                return

            times = derive_reminder_times(record.frequency)
            if times is None:
                logger.info(f"Skipped auto-reminder for {record.name} - PRN/as-needed frequency")
                return

            db.add(MedicationReminder(
                patient_id=record.patient_id,
                medication_id=record.id,
                medication_name=record.name,
                medication_dose=record.dose or None,
                times=times,
                enabled=True,
                created_at=processed_at,
                updated_at=processed_at,
            ))
            db.commit()
            logger.info(f"Auto-created reminder for {record.name} with times: {', '.join(times)}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to auto-create reminder: {e}", extra={"medication_id": record.id})

