"""
Unit tests for the generative medication safety layer.

The OpenAI client is replaced with an AsyncMock; nothing leaves the process.
"""

import json
import pytest
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import config
from database import MedicationSafetyCache
from medication_entries import MedicationChangeEntry
from medication_safety_ai import (
    AI_CACHE_SOURCE,
    MedicationSafetyAI,
    build_ai_cache_key,
    clear_medication_safety_cache_for_patient,
    parse_ai_warnings,
    render_prompt,
)
from medication_safety_rules import SeverityLevel, WarningSource, WarningType


AI_REPLY = json.dumps({
    "warnings": [{
        "type": "drug_interaction",
        "severity": "high",
        "message": "Bleeding risk",
        "details": "Ibuprofen increases warfarin bleeding risk.",
        "conflictingMedication": "Warfarin",
        "recommendation": "Use acetaminophen instead.",
        "clinicalReasoning": "NSAID plus anticoagulant.",
    }],
    "overallAssessment": {"safe": False, "requiresUrgentAction": False, "summary": "Review"},
})


def _openai_client(content=AI_REPLY):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=80),
    ))
    return client


class TestParseAIWarnings:
    """Tests for parse_ai_warnings()."""

    def test_parses_warnings_as_ai_source(self):
        warnings = parse_ai_warnings(AI_REPLY)

        assert len(warnings) == 1
        assert warnings[0].type is WarningType.DRUG_INTERACTION
        assert warnings[0].severity is SeverityLevel.HIGH
        assert warnings[0].conflicting_medication == "Warfarin"
        assert warnings[0].source is WarningSource.AI

    def test_malformed_items_are_skipped(self):
        content = json.dumps({"warnings": [
            {"type": "not_a_type", "severity": "high"},
            "text",
            {"message": "missing type"},
            {"type": "allergy_alert", "severity": "critical", "allergen": "Penicillin"},
        ]})

        warnings = parse_ai_warnings(content)

        assert [w.type for w in warnings] == [WarningType.ALLERGY_ALERT]

    def test_missing_warning_list(self):
        assert parse_ai_warnings(json.dumps({"overallAssessment": {}})) == []

    def test_empty_content_raises(self):
        with pytest.raises(ValueError):
            parse_ai_warnings("")


class TestPromptAndCacheKey:
    """Tests for prompt rendering and cache keys."""

    def test_prompt_lists_medications_and_allergies(self):
        prompt = render_prompt("Ibuprofen 200 mg", ["Warfarin 5 mg daily"], ["Penicillin"])

        assert "New Medication: Ibuprofen 200 mg" in prompt
        assert "1. Warfarin 5 mg daily" in prompt
        assert "Allergies: Penicillin" in prompt

    def test_prompt_without_history(self):
        prompt = render_prompt("Ibuprofen", [], [])

        assert "Current Medications:\nNone" in prompt
        assert "Allergies: None documented" in prompt

    def test_cache_key_ignores_order_and_case(self):
        first = build_ai_cache_key("Ibuprofen", ["Warfarin", "Lisinopril"], ["Sulfa", "penicillin"])
        second = build_ai_cache_key("ibuprofen ", ["lisinopril", "warfarin"], ["Penicillin", "sulfa"])

        assert first == second

    def test_cache_key_changes_with_allergies(self):
        assert build_ai_cache_key("Ibuprofen", [], []) != build_ai_cache_key("Ibuprofen", [], ["Penicillin"])


class TestMedicationSafetyAI:
    """Tests for MedicationSafetyAI.suggest_additional_warnings()."""

    @pytest.mark.asyncio
    async def test_calls_model_and_caches_result(self, session_factory, patient, add_medication, test_db):
        add_medication(patient.id, "Warfarin", dose="5 mg")
        client = _openai_client()
        layer = MedicationSafetyAI(session_factory=session_factory, client=client)

        warnings = await layer.suggest_additional_warnings(patient.id, MedicationChangeEntry(name="Ibuprofen"))

        assert [w.conflicting_medication for w in warnings] == ["Warfarin"]
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == config.OPENAI_SAFETY_MODEL
        assert kwargs["store"] is False
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "1. Warfarin 5 mg" in kwargs["messages"][0]["content"]

        rows = test_db.query(MedicationSafetyCache).filter(MedicationSafetyCache.source == AI_CACHE_SOURCE).all()
        assert len(rows) == 1
        assert rows[0].warnings[0]["source"] == "ai"

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, session_factory, patient, add_medication):
        add_medication(patient.id, "Warfarin")
        client = _openai_client()
        layer = MedicationSafetyAI(session_factory=session_factory, client=client)
        entry = MedicationChangeEntry(name="Ibuprofen")

        first = await layer.suggest_additional_warnings(patient.id, entry)
        second = await layer.suggest_additional_warnings(patient.id, entry)

        assert first == second
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_cache_entry_is_refreshed(self, session_factory, patient, add_medication):
        add_medication(patient.id, "Warfarin")
        client = _openai_client()
        layer = MedicationSafetyAI(session_factory=session_factory, client=client)
        layer.cache.ttl = timedelta(seconds=-1)
        entry = MedicationChangeEntry(name="Ibuprofen")

        await layer.suggest_additional_warnings(patient.id, entry)
        await layer.suggest_additional_warnings(patient.id, entry)

        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_excluded_and_same_drug_records_are_left_out(self, session_factory, patient, add_medication):
        warfarin = add_medication(patient.id, "Warfarin")
        add_medication(patient.id, "Advil")
        client = _openai_client(json.dumps({"warnings": []}))
        layer = MedicationSafetyAI(session_factory=session_factory, client=client)

        await layer.suggest_additional_warnings(
            patient.id, MedicationChangeEntry(name="Ibuprofen"), exclude_medication_id=warfarin.id
        )

        prompt = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
        assert "Current Medications:\nNone" in prompt

    @pytest.mark.asyncio
    async def test_without_api_key_returns_nothing(self, session_factory, patient):
        with patch("medication_safety_ai.get_openai_client", return_value=None):
            layer = MedicationSafetyAI(session_factory=session_factory)
            warnings = await layer.suggest_additional_warnings(patient.id, MedicationChangeEntry(name="Ibuprofen"))

        assert warnings == []

    @pytest.mark.asyncio
    async def test_model_failure_fails_open(self, session_factory, patient):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        layer = MedicationSafetyAI(session_factory=session_factory, client=client)

        warnings = await layer.suggest_additional_warnings(patient.id, MedicationChangeEntry(name="Ibuprofen"))

        assert warnings == []

    @pytest.mark.asyncio
    async def test_unparseable_reply_fails_open(self, session_factory, patient):
        layer = MedicationSafetyAI(session_factory=session_factory, client=_openai_client("not json"))

        assert await layer.suggest_additional_warnings(patient.id, MedicationChangeEntry(name="Ibuprofen")) == []


class TestClearCache:
    """Tests for clear_medication_safety_cache_for_patient()."""

    def test_clears_every_source_for_one_patient(self, session_factory, test_db, patient, penicillin_allergic_patient, add_cache_row):
        add_cache_row(patient.id, "a", "ai", [])
        add_cache_row(patient.id, "b", "external", [])
        add_cache_row(penicillin_allergic_patient.id, "c", "ai", [])

        deleted = clear_medication_safety_cache_for_patient(patient.id, session_factory=session_factory)

        assert deleted == 2
        remaining = test_db.query(MedicationSafetyCache).all()
        assert [row.patient_id for row in remaining] == [penicillin_allergic_patient.id]
