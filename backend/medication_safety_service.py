"""
Hybrid Medication Safety Service

Runs the safety layers for a new or changed medication in sequence:
1. Deterministic rule engine (always)
2. Generative layer, only when enabled and the rules found nothing critical

The external interaction lookup is separate and driven by the recheck jobs.
Warnings are advisory: they flag a medication for confirmation, they never
block a registry write.
"""

import hashlib
import json
import logging
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database import SessionLocal
from medication_canonicalizer import NameCanonicalizer, default_canonicalizer
from medication_entries import MedicationChangeEntry
from medication_repository import (
    get_patient_allergies,
    list_patient_medications,
    select_active_for_safety_check,
    to_current_medication,
)
from medication_safety_ai import MedicationSafetyAI
from medication_safety_rules import (
    CurrentMedication,
    SafetyWarning,
    deduplicate_warnings,
    has_critical,
    requires_confirmation,
    run_rule_checks,
    sort_by_severity,
)
from models import SafetyCheckOptions
from structured_logging import log_safety_decision

logger = logging.getLogger(__name__)


class HybridSafetyOrchestrator:
    """Sequences the rule engine and the generative layer for one medication"""

    def __init__(
        self,
        session_factory=SessionLocal,
        ai_layer: Optional[MedicationSafetyAI] = None,
        canonicalizer: NameCanonicalizer = default_canonicalizer,
    ):
        self.session_factory = session_factory
        self.canonicalizer = canonicalizer
        self.ai_layer = ai_layer or MedicationSafetyAI(session_factory=session_factory, canonicalizer=canonicalizer)

    def fetch_safety_context(
        self,
        patient_id: int,
        new_canonical: str,
        exclude_medication_id: Optional[int] = None,
        allergies: Optional[List[str]] = None,
    ) -> Tuple[List[CurrentMedication], List[str]]:
        """
        Active comparison medications and allergies, read fresh from the
        registry. A caller-supplied allergy list replaces the stored one.
        """
        db = self.session_factory()
        try:
            records = list_patient_medications(db, patient_id)
            active = select_active_for_safety_check(records, new_canonical, exclude_medication_id, self.canonicalizer)
            current = [to_current_medication(record, self.canonicalizer) for record in active]
            if allergies is None:
                allergies = get_patient_allergies(db, patient_id)
            else:
                allergies = [a for a in allergies if isinstance(a, str) and a.strip()]
            return current, allergies
        finally:
            db.close()

    async def evaluate(
        self,
        patient_id: int,
        entry: MedicationChangeEntry,
        options: Optional[SafetyCheckOptions] = None,
        allergies: Optional[List[str]] = None,
    ) -> List[SafetyWarning]:
        options = options or SafetyCheckOptions()
        new_canonical = self.canonicalizer.canonicalize(entry.name)

        try:
            current, allergies = self.fetch_safety_context(
                patient_id, new_canonical, options.exclude_medication_id, allergies
            )
        except SQLAlchemyError as e:
            logger.error(f"Could not load safety context: {e}", exc_info=True, extra={"medication": entry.name})
            return []

        rule_warnings = run_rule_checks(entry.name, current, allergies, self.canonicalizer)
        log_safety_decision(logger, entry.name, rule_warnings, layer="hardcoded")

        if has_critical(rule_warnings):
            logger.info("Critical rule warning found; skipping generative layer",
                        extra={"medication": entry.name})
            return rule_warnings

        if not options.ai_enabled:
            return rule_warnings

        try:
            ai_warnings = await self.ai_layer.suggest_additional_warnings(
                patient_id, entry, options.exclude_medication_id
            )
        except Exception as e:
            logger.error(f"Generative safety layer failed: {e}", exc_info=True, extra={"medication": entry.name})
            return rule_warnings

        return deduplicate_warnings(list(rule_warnings) + list(ai_warnings or []))


def apply_warnings_to_entry(entry: MedicationChangeEntry, warnings: Sequence[SafetyWarning]) -> MedicationChangeEntry:
    """
    Attach warnings to an entry. Critical/high findings set the advisory
    confirmation flag and mark the entry unverified.
    """
    if not warnings:
        return entry

    ordered = sort_by_severity(warnings)
    flagged = requires_confirmation(ordered)
    return replace(
        entry,
        warnings=ordered,
        needs_confirmation=flagged or bool(entry.needs_confirmation),
        status="unverified" if flagged else (entry.status or "matched"),
    )


def _normalize_text(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def build_safety_check_hash(
    medication: Any,
    current_medications: Iterable[Any],
    allergies: Optional[Iterable[str]],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> str:
    """
    Fingerprint of everything a safety check depends on. When it matches the
    stored last_safety_check_hash the previous result is still valid.
    """
    canonical = getattr(medication, "canonical_name", None) or canonicalizer.canonicalize(medication.name)
    current_canonical = sorted(
        getattr(m, "canonical_name", None) or canonicalizer.canonicalize(m.name)
        for m in current_medications
    )
    normalized_allergies = sorted(
        _normalize_text(a) for a in (allergies or []) if isinstance(a, str) and a.strip()
    )
    payload = {
        "canonical_name": canonical,
        "name": _normalize_text(medication.name),
        "dose": _normalize_text(getattr(medication, "dose", None)),
        "frequency": _normalize_text(getattr(medication, "frequency", None)),
        "notes": _normalize_text(getattr(medication, "notes", None)),
        "current": current_canonical,
        "allergies": normalized_allergies,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
