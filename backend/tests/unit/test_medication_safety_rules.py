"""
Unit tests for the deterministic medication safety rules.

Tests:
- Duplicate therapy (same drug, shared specific class, broad classes ignored)
- Drug interaction rules in both orientations
- Allergy conflicts (direct, class, penicillin/cephalosporin cross-reactivity)
- Ordering, de-duplication and serialization of warnings
"""

import pytest
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from medication_safety_rules import (
    DISCUSS_RECOMMENDATION,
    URGENT_RECOMMENDATION,
    CurrentMedication,
    SafetyWarning,
    SeverityLevel,
    WarningSource,
    WarningType,
    check_allergy_conflicts,
    check_drug_interactions,
    check_duplicate_therapy,
    deduplicate_warnings,
    has_critical,
    requires_confirmation,
    run_rule_checks,
    sort_by_severity,
    warnings_from_dicts,
    warnings_to_dicts,
)


def _current(*names, active=True):
    return [CurrentMedication(id=i, name=name, active=active) for i, name in enumerate(names, start=1)]


def _warning(severity, subject="Warfarin", warning_type=WarningType.DRUG_INTERACTION, source=WarningSource.HARDCODED):
    return SafetyWarning(
        type=warning_type,
        severity=severity,
        message="m",
        details="d",
        recommendation="r",
        conflicting_medication=subject,
        source=source,
    )


class TestSeverityLevel:
    """Tests for severity ordering."""

    def test_total_order(self):
        assert SeverityLevel.CRITICAL.rank < SeverityLevel.HIGH.rank < SeverityLevel.MODERATE.rank < SeverityLevel.LOW.rank

    def test_at_least(self):
        assert SeverityLevel.CRITICAL.at_least(SeverityLevel.HIGH)
        assert SeverityLevel.HIGH.at_least(SeverityLevel.HIGH)
        assert not SeverityLevel.MODERATE.at_least(SeverityLevel.HIGH)

    def test_from_value(self):
        assert SeverityLevel.from_value(" High ") is SeverityLevel.HIGH
        assert SeverityLevel.from_value("bogus", default=SeverityLevel.MODERATE) is SeverityLevel.MODERATE
        with pytest.raises(ValueError):
            SeverityLevel.from_value("bogus")


class TestDuplicateTherapy:
    """Tests for check_duplicate_therapy()."""

    def test_same_drug_with_dose_is_high(self):
        """'Lisinopril 20mg' against stored Lisinopril is an exact duplicate."""
        warnings = check_duplicate_therapy("Lisinopril 20mg", _current("Lisinopril"))

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.HIGH
        assert warnings[0].type is WarningType.DUPLICATE_THERAPY
        assert warnings[0].conflicting_medication == "Lisinopril"

    def test_brand_and_generic_are_the_same_drug(self):
        warnings = check_duplicate_therapy("Lipitor", _current("Atorvastatin Calcium"))

        assert [w.severity for w in warnings] == [SeverityLevel.HIGH]

    def test_shared_class_is_moderate(self):
        """Metoprolol and Atenolol share the beta-blocker class."""
        warnings = check_duplicate_therapy("Metoprolol", _current("Atenolol"))

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.MODERATE
        assert "(beta-blocker)" in warnings[0].details

    def test_broad_class_alone_is_not_a_duplicate(self):
        """Warfarin and Amlodipine only share 'cardiovascular'."""
        assert check_duplicate_therapy("Warfarin", _current("Amlodipine")) == []

    def test_inactive_medications_are_ignored(self):
        assert check_duplicate_therapy("Lisinopril", _current("Lisinopril", active=False)) == []

    def test_unknown_drugs_do_not_match_each_other_by_class(self):
        assert check_duplicate_therapy("Unknownium", _current("Otherium")) == []


class TestDrugInteractions:
    """Tests for check_drug_interactions()."""

    def test_warfarin_with_nsaid_is_critical(self):
        warnings = check_drug_interactions("Warfarin", _current("Naproxen"))

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.CRITICAL
        assert warnings[0].recommendation == URGENT_RECOMMENDATION
        assert warnings[0].conflicting_medication == "Naproxen"

    def test_rules_match_in_both_orientations(self):
        """The same pair is found whichever drug is new."""
        forward = check_drug_interactions("Warfarin", _current("Naproxen"))
        backward = check_drug_interactions("Naproxen", _current("Warfarin"))

        assert [w.severity for w in forward] == [w.severity for w in backward] == [SeverityLevel.CRITICAL]

    def test_nsaid_with_ace_inhibitor_is_moderate(self):
        warnings = check_drug_interactions("Advil", _current("Lisinopril"))

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.MODERATE
        assert warnings[0].recommendation == DISCUSS_RECOMMENDATION

    def test_anticoagulant_with_antiplatelet_is_critical(self):
        warnings = check_drug_interactions("Plavix", _current("Coumadin"))

        assert [w.severity for w in warnings] == [SeverityLevel.CRITICAL]

    def test_no_interaction(self):
        assert check_drug_interactions("Warfarin", _current("Amlodipine")) == []

    def test_inactive_medications_are_ignored(self):
        assert check_drug_interactions("Warfarin", _current("Naproxen", active=False)) == []


class TestAllergyConflicts:
    """Tests for check_allergy_conflicts()."""

    def test_direct_allergy_is_critical(self):
        warnings = check_allergy_conflicts("Penicillin VK", ["Penicillin"])

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.CRITICAL
        assert warnings[0].allergen == "Penicillin"

    def test_penicillin_allergy_with_amoxicillin_is_class_critical(self):
        warnings = check_allergy_conflicts("Amoxicillin", ["Penicillin"])

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.CRITICAL
        assert warnings[0].message == "ALLERGY ALERT: Class allergy conflict"

    def test_penicillin_allergy_with_cephalosporin_is_high(self):
        warnings = check_allergy_conflicts("Cephalexin", ["penicillin"])

        assert len(warnings) == 1
        assert warnings[0].severity is SeverityLevel.HIGH
        assert warnings[0].message == "ALLERGY ALERT: Cross-reactivity risk"

    def test_class_named_allergy(self):
        """An allergy recorded as 'NSAIDs' matches any NSAID."""
        warnings = check_allergy_conflicts("Ibuprofen", ["NSAIDs"])

        assert [w.severity for w in warnings] == [SeverityLevel.CRITICAL]

    def test_generic_short_allergy_does_not_match_class(self):
        """A vague entry like 'pain' must not flag every pain reliever."""
        assert check_allergy_conflicts("Ibuprofen", ["pain"]) == []

    def test_allergy_naming_full_class(self):
        warnings = check_allergy_conflicts("Ibuprofen", ["pain-reliever"])

        assert [w.severity for w in warnings] == [SeverityLevel.CRITICAL]

    def test_no_allergies(self):
        assert check_allergy_conflicts("Amoxicillin", []) == []
        assert check_allergy_conflicts("Amoxicillin", None) == []

    def test_malformed_allergies_are_skipped(self):
        assert check_allergy_conflicts("Amoxicillin", [None, 42, "  "]) == []

    def test_one_warning_per_allergy(self):
        warnings = check_allergy_conflicts("Amoxicillin", ["Penicillin", "Amoxicillin"])

        assert len(warnings) == 2
        assert {w.allergen for w in warnings} == {"Penicillin", "Amoxicillin"}


class TestRunRuleChecks:
    """Tests for the combined rule run."""

    def test_results_sorted_most_severe_first(self):
        warnings = run_rule_checks("Aspirin", _current("Warfarin", "Ibuprofen"), ["sulfa"])

        ranks = [w.severity.rank for w in warnings]
        assert ranks == sorted(ranks)
        assert warnings[0].severity is SeverityLevel.CRITICAL

    def test_clean_combination(self):
        assert run_rule_checks("Warfarin", _current("Amlodipine"), []) == []

    def test_rules_matching_same_pair_are_collapsed(self):
        """Warfarin vs Aspirin hits both the NSAID and antiplatelet rules."""
        warnings = run_rule_checks("Warfarin", _current("Aspirin"), [])

        assert [(w.type, w.severity, w.conflicting_medication) for w in warnings] == [
            (WarningType.DRUG_INTERACTION, SeverityLevel.CRITICAL, "Aspirin"),
            (WarningType.DUPLICATE_THERAPY, SeverityLevel.MODERATE, "Aspirin"),
        ]

    def test_allergy_and_interaction(self):
        warnings = run_rule_checks("Cephalexin", _current("Warfarin"), ["Penicillin"])

        assert [w.type for w in warnings] == [WarningType.ALLERGY_ALERT]


class TestWarningHelpers:
    """Tests for sorting, flags, de-duplication and serialization."""

    def test_sort_is_stable(self):
        first = _warning(SeverityLevel.MODERATE, "A")
        second = _warning(SeverityLevel.MODERATE, "B")
        critical = _warning(SeverityLevel.CRITICAL, "C")

        assert sort_by_severity([first, critical, second]) == [critical, first, second]

    def test_flags(self):
        assert has_critical([_warning(SeverityLevel.CRITICAL)])
        assert not has_critical([_warning(SeverityLevel.HIGH)])
        assert requires_confirmation([_warning(SeverityLevel.HIGH)])
        assert not requires_confirmation([_warning(SeverityLevel.MODERATE), _warning(SeverityLevel.LOW)])

    def test_deduplicate_keeps_first_occurrence(self):
        rule = _warning(SeverityLevel.HIGH, "Warfarin")
        ai = _warning(SeverityLevel.HIGH, " warfarin ", source=WarningSource.AI)

        result = deduplicate_warnings([rule, ai])

        assert result == [rule]

    def test_deduplicate_keeps_different_severity(self):
        result = deduplicate_warnings([
            _warning(SeverityLevel.MODERATE, "Warfarin"),
            _warning(SeverityLevel.HIGH, "Warfarin", source=WarningSource.AI),
        ])

        assert [w.severity for w in result] == [SeverityLevel.HIGH, SeverityLevel.MODERATE]

    def test_to_dict_drops_empty_fields(self):
        data = _warning(SeverityLevel.HIGH).to_dict()

        assert data["type"] == "drug_interaction"
        assert data["severity"] == "high"
        assert data["source"] == "hardcoded"
        assert "allergen" not in data
        assert "external_ids" not in data

    def test_from_dict_accepts_camel_case(self):
        warning = SafetyWarning.from_dict({
            "type": "drug_interaction",
            "severity": "HIGH",
            "message": "m",
            "details": "d",
            "recommendation": "r",
            "conflictingMedication": "Warfarin",
            "externalIds": {"rxcui_pair": ["1", "2"]},
            "source": "external",
        })

        assert warning.severity is SeverityLevel.HIGH
        assert warning.conflicting_medication == "Warfarin"
        assert warning.source is WarningSource.EXTERNAL
        assert warning.external_ids == {"rxcui_pair": ["1", "2"]}

    def test_stored_dicts_restore_equal_warnings(self):
        original = [_warning(SeverityLevel.CRITICAL), _warning(SeverityLevel.LOW, "Aspirin")]

        assert warnings_from_dicts(warnings_to_dicts(original)) == original
        assert warnings_from_dicts(None) == []
