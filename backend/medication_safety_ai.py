"""
AI-Powered Medication Safety Layer

Asks an OpenAI chat model, with a clinical-pharmacist prompt, for duplicate
therapy, interaction and allergy problems the static rule table misses.

Results are cached per patient in medication_safety_cache (source "ai") keyed
by the new medication, the current medications and the allergy list. The
layer fails open: any error is logged and yields no warnings.
"""

import hashlib
import json
import logging
import time
from typing import List, Optional

from openai import AsyncOpenAI

import config
from database import SessionLocal
from medication_canonicalizer import NameCanonicalizer, default_canonicalizer
from medication_entries import MedicationChangeEntry
from medication_repository import (
    SafetyResultCache,
    clear_safety_cache_for_patient,
    get_patient_allergies,
    list_patient_medications,
    record_canonical_name,
    select_active_for_safety_check,
)
from medication_safety_rules import SafetyWarning, WarningSource, warnings_from_dicts, warnings_to_dicts
from structured_logging import log_safety_decision

logger = logging.getLogger(__name__)

AI_CACHE_SOURCE = "ai"

SAFETY_PROMPT_TEMPLATE = """You are a clinical pharmacist performing medication safety review.

New Medication: {new_medication}
Current Medications:
{current_medications}
Allergies: {allergies}

Analyze the new medication for:
1. Duplicate therapy (same drug or same therapeutic class already being taken)
2. Drug-drug interactions with any current medication
3. Allergy conflicts, including cross-reactivity

Only report clinically meaningful problems. Do not repeat a problem in more than one warning.

Return JSON: {{"warnings": [{{"type": "duplicate_therapy" | "drug_interaction" | "allergy_alert",
"severity": "critical" | "high" | "moderate" | "low", "message": "...", "details": "...",
"conflictingMedication": "...", "allergen": "...", "recommendation": "...", "clinicalReasoning": "..."}}],
"overallAssessment": {{"safe": true, "requiresUrgentAction": false, "summary": "..."}}}}"""


def get_openai_client() -> Optional[AsyncOpenAI]:
    """Get OpenAI client with API key from config, or None when not configured."""
    api_key = (config.OPENAI_API_KEY or "").strip()
    if not api_key:
        return None
    return AsyncOpenAI(api_key=api_key, timeout=config.AI_SAFETY_TIMEOUT_SECONDS)


def format_medication(name: str, dose: Optional[str] = None, frequency: Optional[str] = None) -> str:
    return " ".join(part for part in (name, dose, frequency) if part)


def build_ai_cache_key(
    new_medication: str,
    current_medications: List[str],
    allergies: List[str],
    new_canonical: str = "",
    current_canonical: Optional[List[str]] = None,
) -> str:
    """md5 over the canonical signature, then the formatted medications and allergies."""
    parts = []
    if new_canonical or current_canonical:
        parts.append(new_canonical.lower().strip())
        parts.extend(sorted(current_canonical or []))
    parts.append(new_medication.lower().strip())
    parts.extend(sorted(m.lower().strip() for m in current_medications))
    parts.extend(sorted(a.lower().strip() for a in allergies))
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


def render_prompt(new_medication: str, current_medications: List[str], allergies: List[str]) -> str:
    current = "\n".join(f"{i}. {m}" for i, m in enumerate(current_medications, start=1)) or "None"
    return SAFETY_PROMPT_TEMPLATE.format(
        new_medication=new_medication,
        current_medications=current,
        allergies=", ".join(allergies) if allergies else "None documented",
    )


def parse_ai_warnings(content: Optional[str]) -> List[SafetyWarning]:
    """Parse the model's JSON reply. Malformed items are skipped, not fatal."""
    if not content:
        raise ValueError("Empty response from OpenAI")

    payload = json.loads(content)
    items = payload.get("warnings") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return []

    warnings = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            warnings.append(SafetyWarning.from_dict(item, source=WarningSource.AI))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed AI warning: {e}")
    return warnings


class MedicationSafetyAI:
    """Generative safety layer backed by the OpenAI chat completions API"""

    def __init__(
        self,
        session_factory=SessionLocal,
        client: Optional[AsyncOpenAI] = None,
        canonicalizer: NameCanonicalizer = default_canonicalizer,
        cache: Optional[SafetyResultCache] = None,
    ):
        self.session_factory = session_factory
        self._client = client
        self.canonicalizer = canonicalizer
        self.cache = cache or SafetyResultCache(AI_CACHE_SOURCE, session_factory=session_factory)
        self._missing_key_logged = False

    @property
    def client(self) -> Optional[AsyncOpenAI]:
        if self._client is None:
            self._client = get_openai_client()
            if self._client is None and not self._missing_key_logged:
                logger.warning("OPENAI_API_KEY not configured; AI safety checks will be skipped")
                self._missing_key_logged = True
        return self._client

    async def suggest_additional_warnings(
        self,
        patient_id: int,
        entry: MedicationChangeEntry,
        exclude_medication_id: Optional[int] = None,
    ) -> List[SafetyWarning]:
        try:
            return await self._suggest(patient_id, entry, exclude_medication_id)
        except Exception as e:
            logger.error(f"Error running AI safety checks: {e}", exc_info=True,
                         extra={"medication": entry.name})
            return []

    async def _suggest(
        self,
        patient_id: int,
        entry: MedicationChangeEntry,
        exclude_medication_id: Optional[int],
    ) -> List[SafetyWarning]:
        new_canonical = self.canonicalizer.canonicalize(entry.name)

        db = self.session_factory()
        try:
            records = list_patient_medications(db, patient_id)
            active = select_active_for_safety_check(records, new_canonical, exclude_medication_id, self.canonicalizer)
            current = [format_medication(r.name, r.dose, r.frequency) for r in active]
            current_canonical = [record_canonical_name(r, self.canonicalizer) for r in active]
            allergies = get_patient_allergies(db, patient_id)
        finally:
            db.close()

        new_medication = format_medication(entry.name, entry.dose, entry.frequency)
        cache_key = build_ai_cache_key(new_medication, current, allergies, new_canonical, current_canonical)

        cached = self.cache.get(patient_id, cache_key)
        if cached is not None:
            return warnings_from_dicts(cached)

        client = self.client
        if client is None:
            return []

        logger.info("Calling OpenAI for safety check", extra={
            "medication": entry.name,
            "current_medication_count": len(current),
            "allergy_count": len(allergies),
        })

        start_time = time.time()
        response = await client.chat.completions.create(
            model=config.OPENAI_SAFETY_MODEL,
            store=False,
            messages=[{"role": "user", "content": render_prompt(new_medication, current, allergies)}],
            response_format={"type": "json_object"},
            temperature=config.AI_SAFETY_TEMPERATURE,
            max_tokens=config.AI_SAFETY_MAX_TOKENS,
        )
        duration_ms = (time.time() - start_time) * 1000

        usage = getattr(response, "usage", None)
        logger.info("OpenAI response received", extra={
            "duration_ms": round(duration_ms, 2),
            "input_tokens": getattr(usage, "prompt_tokens", None),
            "output_tokens": getattr(usage, "completion_tokens", None),
        })

        warnings = parse_ai_warnings(response.choices[0].message.content)

        self.cache.put(patient_id, cache_key, warnings_to_dicts(warnings), metadata={
            "new_medication": new_medication,
            "current_medications": current,
        })

        log_safety_decision(logger, entry.name, warnings, layer=AI_CACHE_SOURCE)
        return warnings


def clear_medication_safety_cache_for_patient(patient_id: int, session_factory=SessionLocal) -> int:
    """Drop cached AI and external results after the patient's medication set changed."""
    return clear_safety_cache_for_patient(patient_id, session_factory=session_factory)
