"""
Unit tests for normalizing visit medication entries.

Tests:
- Legacy free-text lines ("Started lisinopril 10 mg daily")
- Dict entries with camelCase or snake_case keys
- Dropping unusable entries and splitting combos
"""

import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from medication_entries import (
    UNKNOWN_MEDICATION,
    MedicationChangeEntry,
    entry_to_dict,
    normalize_medication_entry,
    normalize_medication_list,
    normalize_medication_summary,
    parse_legacy_medication_entry,
)


class TestParseLegacyEntry:
    """Tests for parse_legacy_medication_entry()."""

    def test_verb_dose_and_frequency(self):
        entry = parse_legacy_medication_entry("Started lisinopril 10 mg daily")

        assert entry.name == "lisinopril"
        assert entry.dose == "10 mg"
        assert entry.frequency == "daily"
        assert entry.note == "10 mg daily"
        assert entry.original == "Started lisinopril 10 mg daily"
        assert entry.display == entry.original

    def test_name_stops_at_stop_word(self):
        entry = parse_legacy_medication_entry("Increase atorvastatin to 40 mg nightly")

        assert entry.name == "atorvastatin"
        assert entry.dose == "40 mg"
        assert entry.frequency == "nightly"
        assert entry.note == "to 40 mg nightly"

    def test_multi_word_name(self):
        entry = parse_legacy_medication_entry("Vitamin D 1000 units daily")

        assert entry.name == "Vitamin D"
        assert entry.dose == "1000 units"

    def test_trailing_punctuation(self):
        entry = parse_legacy_medication_entry("Stopped metoprolol.")

        assert entry.name == "metoprolol"
        assert entry.note is None
        assert entry.dose is None

    def test_name_containing_unit_letters(self):
        """Only whole-word units end the name."""
        entry = parse_legacy_medication_entry("Gabapentin 300 mg tid")

        assert entry.name == "Gabapentin"
        assert entry.frequency == "tid"

    def test_empty_text(self):
        entry = parse_legacy_medication_entry("   ")

        assert entry.name == UNKNOWN_MEDICATION


class TestNormalizeMedicationEntry:
    """Tests for normalize_medication_entry()."""

    def test_camel_case_dict(self):
        entry = normalize_medication_entry({
            "name": "  Lisinopril ",
            "dose": " 10 mg ",
            "needsConfirmation": True,
            "status": "FUZZY",
        })

        assert entry.name == "Lisinopril"
        assert entry.dose == "10 mg"
        assert entry.needs_confirmation is True
        assert entry.status == "fuzzy"

    def test_snake_case_flag_wins(self):
        entry = normalize_medication_entry({"name": "Lisinopril", "needs_confirmation": False, "needsConfirmation": True})

        assert entry.needs_confirmation is False

    def test_invalid_values_are_dropped(self):
        entry = normalize_medication_entry({
            "name": "Lisinopril", "needsConfirmation": "yes", "status": "bogus", "dose": 10,
        })

        assert entry.needs_confirmation is None
        assert entry.status is None
        assert entry.dose is None

    @pytest.mark.parametrize("value", [None, "", "   ", {"name": "  "}, {"dose": "10 mg"}, 42, ["Lisinopril"]])
    def test_unusable_values(self, value):
        assert normalize_medication_entry(value) is None

    def test_existing_entry_passes_through(self):
        entry = MedicationChangeEntry(name="Lisinopril")

        assert normalize_medication_entry(entry) is entry

    def test_string_uses_legacy_parser(self):
        entry = normalize_medication_entry("Started Plavix 75 mg daily")

        assert entry.name == "Plavix"
        assert entry.dose == "75 mg"


class TestNormalizeSummary:
    """Tests for list and summary normalization."""

    def test_list_drops_unusable_and_splits_combos(self):
        entries = normalize_medication_list([
            {"name": "Aspirin and Plavix", "dose": "81 mg"},
            None,
            "",
            {"name": "Lisinopril"},
        ])

        assert [e.name for e in entries] == ["Aspirin", "Plavix", "Lisinopril"]

    def test_summary(self):
        summary = normalize_medication_summary({
            "started": ["Started lisinopril 10 mg daily"],
            "stopped": [{"name": "Metoprolol"}, None],
        })

        assert [e.name for e in summary.started] == ["lisinopril"]
        assert [e.name for e in summary.stopped] == ["Metoprolol"]
        assert summary.changed == []
        assert not summary.is_empty()

    @pytest.mark.parametrize("value", [None, {}, {"started": [], "stopped": [None]}])
    def test_empty_summary(self, value):
        assert normalize_medication_summary(value).is_empty()

    def test_entry_to_dict(self):
        data = entry_to_dict(MedicationChangeEntry(name="Lisinopril", dose="10 mg", status="matched"))

        assert data["name"] == "Lisinopril"
        assert data["dose"] == "10 mg"
        assert data["status"] == "matched"
        assert "warnings" not in data
