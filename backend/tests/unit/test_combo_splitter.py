"""
Unit tests for splitting co-administered medication strings.
"""

import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from combo_splitter import is_fixed_dose_combination, split_combo_medication, split_combo_name
from medication_entries import MedicationChangeEntry


class TestSplitComboName:
    """Tests for split_combo_name()."""

    @pytest.mark.parametrize("name,expected", [
        ("Aspirin and Plavix", ["Aspirin", "Plavix"]),
        ("Tylenol & Advil", ["Tylenol", "Advil"]),
        ("Metformin + Januvia", ["Metformin", "Januvia"]),
    ])
    def test_co_administered_drugs_are_split(self, name, expected):
        assert split_combo_name(name) == expected

    @pytest.mark.parametrize("name", [
        "HCTZ/Lisinopril 12.5/20 mg",
        "Amlodipine with Benazepril",
    ])
    def test_fixed_dose_products_are_not_split(self, name):
        assert is_fixed_dose_combination(name)
        assert split_combo_name(name) == [name]

    def test_single_drug(self):
        assert split_combo_name("  Lisinopril ") == ["Lisinopril"]

    def test_word_containing_and_is_not_split(self):
        assert split_combo_name("Brandy Extract") == ["Brandy Extract"]

    def test_empty(self):
        assert split_combo_name("") == []
        assert split_combo_name(None) == []


class TestSplitComboMedication:
    """Tests for split_combo_medication()."""

    def test_components_inherit_shared_fields(self):
        entry = MedicationChangeEntry(
            name="Aspirin and Plavix", dose="81 mg", frequency="daily", note="after stent",
        )

        parts = split_combo_medication(entry)

        assert [p.name for p in parts] == ["Aspirin", "Plavix"]
        assert all(p.dose == "81 mg" and p.frequency == "daily" and p.note == "after stent" for p in parts)
        assert parts[0].display == "Aspirin (from: Aspirin and Plavix)"
        assert parts[1].original == "Aspirin and Plavix"

    def test_original_text_is_kept(self):
        entry = MedicationChangeEntry(name="Tylenol & Advil", original="Started Tylenol & Advil")

        parts = split_combo_medication(entry)

        assert {p.original for p in parts} == {"Started Tylenol & Advil"}

    def test_single_drug_entry_is_returned_as_is(self):
        entry = MedicationChangeEntry(name="Lisinopril")

        assert split_combo_medication(entry) == [entry]
