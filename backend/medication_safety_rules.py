"""
Medication Safety Rule Engine

Deterministic safety checks for a newly started or changed medication:
- Duplicate therapy (same drug, or same specific therapeutic class)
- Drug-drug interactions from a static, symmetric pair table
- Allergy conflicts, including penicillin/cephalosporin cross-reactivity

All checks are pure functions over canonical names, current medications and
allergy strings. They never touch the database and never raise on bad input.
"""

import re
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from medication_canonicalizer import NameCanonicalizer, default_canonicalizer


class SeverityLevel(Enum):
    """Warning severity, in a strict total order (critical > high > moderate > low)"""
    CRITICAL = "critical"  # Do not take without speaking to the provider
    HIGH = "high"  # Likely problem, confirm with the provider
    MODERATE = "moderate"  # Monitor, discuss at next contact
    LOW = "low"  # Informational

    @property
    def rank(self) -> int:
        """0 for the most severe level; use as an ascending sort key."""
        return _SEVERITY_RANK[self]

    def at_least(self, other: "SeverityLevel") -> bool:
        return self.rank <= other.rank

    @classmethod
    def from_value(cls, value: Any, default: "SeverityLevel" = None) -> "SeverityLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default


_SEVERITY_RANK = {
    SeverityLevel.CRITICAL: 0,
    SeverityLevel.HIGH: 1,
    SeverityLevel.MODERATE: 2,
    SeverityLevel.LOW: 3,
}


class WarningType(Enum):
    DUPLICATE_THERAPY = "duplicate_therapy"
    DRUG_INTERACTION = "drug_interaction"
    ALLERGY_ALERT = "allergy_alert"


class WarningSource(Enum):
    """Which layer produced a warning"""
    HARDCODED = "hardcoded"
    AI = "ai"
    EXTERNAL = "external"


@dataclass(frozen=True)
class SafetyWarning:
    """Immutable advisory warning attached to a medication"""
    type: WarningType
    severity: SeverityLevel
    message: str
    details: str
    recommendation: str
    conflicting_medication: Optional[str] = None
    allergen: Optional[str] = None
    source: WarningSource = WarningSource.HARDCODED
    external_ids: Optional[Dict[str, Any]] = None

    @property
    def is_critical(self) -> bool:
        return self.severity is SeverityLevel.CRITICAL

    @property
    def requires_confirmation(self) -> bool:
        return self.severity.at_least(SeverityLevel.HIGH)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        data["source"] = self.source.value
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: WarningSource = None) -> "SafetyWarning":
        """Build a warning from stored or model-produced data (snake_case or camelCase keys)."""
        raw_source = data.get("source")
        if source is None:
            source = WarningSource(raw_source) if raw_source in {s.value for s in WarningSource} else WarningSource.HARDCODED
        return cls(
            type=WarningType(data["type"]),
            severity=SeverityLevel.from_value(data.get("severity"), default=SeverityLevel.MODERATE),
            message=str(data.get("message") or ""),
            details=str(data.get("details") or ""),
            recommendation=str(data.get("recommendation") or ""),
            conflicting_medication=data.get("conflicting_medication") or data.get("conflictingMedication") or None,
            allergen=data.get("allergen") or None,
            source=source,
            external_ids=data.get("external_ids") or data.get("externalIds") or None,
        )


@dataclass
class CurrentMedication:
    """A medication the patient is currently taking, as seen by the rule engine"""
    id: Optional[int]
    name: str
    active: bool = True
    canonical_name: Optional[str] = None
    dose: Optional[str] = None
    frequency: Optional[str] = None


@dataclass(frozen=True)
class InteractionRule:
    """Symmetric interaction between two drugs or therapeutic classes"""
    drug1: str
    drug2: str
    severity: SeverityLevel
    description: str


# Classes shared by too many unrelated drugs to signal duplicate therapy
BROAD_CLASSES = frozenset({'cardiovascular', 'antibiotic'})

CROSS_REACTIVE_ALLERGENS = ('penicillin', 'beta-lactam')

# Shorter allergy text ("pain", "arb") only matches a class it names exactly
MIN_PARTIAL_CLASS_ALLERGEN = 5

URGENT_RECOMMENDATION = 'URGENT: Contact your provider immediately before taking this medication.'
DISCUSS_RECOMMENDATION = 'Discuss this interaction with your provider to ensure safe use.'

INTERACTION_RULES: Sequence[InteractionRule] = (
    InteractionRule('warfarin', 'nsaid', SeverityLevel.CRITICAL,
                    'Increased bleeding risk. NSAIDs can potentiate anticoagulant effects.'),
    InteractionRule('anticoagulant', 'antiplatelet', SeverityLevel.CRITICAL,
                    'Significantly increased bleeding risk when combining blood thinners.'),
    InteractionRule('ace-inhibitor', 'arb', SeverityLevel.HIGH,
                    'Dual RAAS blockade can cause kidney problems and high potassium levels.'),
    InteractionRule('beta-blocker', 'beta-blocker', SeverityLevel.HIGH,
                    'Duplicate beta-blocker therapy. May cause excessive heart rate slowing.'),
    InteractionRule('statin', 'statin', SeverityLevel.HIGH,
                    'Duplicate statin therapy increases risk of muscle problems.'),
    InteractionRule('nsaid', 'ace-inhibitor', SeverityLevel.MODERATE,
                    'NSAIDs may reduce effectiveness of blood pressure medications and affect kidney function.'),
    InteractionRule('nsaid', 'arb', SeverityLevel.MODERATE,
                    'NSAIDs may reduce effectiveness of blood pressure medications and affect kidney function.'),
    InteractionRule('nsaid', 'diuretic', SeverityLevel.MODERATE,
                    'NSAIDs may reduce effectiveness of diuretics and affect kidney function.'),
    InteractionRule('ssri', 'nsaid', SeverityLevel.MODERATE,
                    'Increased bleeding risk, especially gastrointestinal bleeding.'),
    InteractionRule('aspirin', 'nsaid', SeverityLevel.MODERATE,
                    'Increased risk of stomach ulcers and bleeding.'),
    InteractionRule('ppi', 'ppi', SeverityLevel.LOW,
                    'Duplicate acid-reducing therapy.'),
    InteractionRule('ppi', 'h2-blocker', SeverityLevel.LOW,
                    'Duplicate acid-reducing therapy with different mechanisms.'),
)


def _matches(term: str, canonical: str, classes: Iterable[str]) -> bool:
    return canonical == term or term in classes


def _allergy_names_class(allergen: str, therapeutic_class: str) -> bool:
    if allergen == therapeutic_class:
        return True
    if len(allergen) >= MIN_PARTIAL_CLASS_ALLERGEN and allergen in therapeutic_class:
        return True
    return re.search(rf"\b{re.escape(therapeutic_class)}", allergen) is not None


def check_duplicate_therapy(
    new_name: str,
    current_medications: Sequence[CurrentMedication],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> List[SafetyWarning]:
    """Same canonical drug -> high; shared specific class -> moderate. One warning per current drug."""
    warnings = []
    new_canonical = canonicalizer.canonicalize(new_name)
    new_classes = canonicalizer.get_classes(new_name)

    for current in current_medications:
        if not current.active:
            continue

        current_canonical = current.canonical_name or canonicalizer.canonicalize(current.name)

        if new_canonical and new_canonical == current_canonical:
            warnings.append(SafetyWarning(
                type=WarningType.DUPLICATE_THERAPY,
                severity=SeverityLevel.HIGH,
                message="Duplicate medication detected",
                details=(
                    f"You are already taking {current.name}. This new prescription "
                    f"appears to be the same medication."
                ),
                recommendation=(
                    "Please confirm with your provider that you should be taking both, "
                    "or if this is a dose adjustment."
                ),
                conflicting_medication=current.name,
            ))
            continue

        current_classes = canonicalizer.get_classes(current_canonical)
        shared = [c for c in new_classes if c in current_classes and c not in BROAD_CLASSES]
        if shared:
            warnings.append(SafetyWarning(
                type=WarningType.DUPLICATE_THERAPY,
                severity=SeverityLevel.MODERATE,
                message="Duplicate therapy class detected",
                details=(
                    f"You are already taking {current.name} ({shared[0]}). This new medication "
                    f"{new_name} is in the same class."
                ),
                recommendation=(
                    "Confirm with your provider whether you should take both medications "
                    "or if this is a substitution."
                ),
                conflicting_medication=current.name,
            ))

    return warnings


def check_drug_interactions(
    new_name: str,
    current_medications: Sequence[CurrentMedication],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
    rules: Sequence[InteractionRule] = INTERACTION_RULES,
) -> List[SafetyWarning]:
    """Match each rule in both orientations against every active current drug."""
    warnings = []
    new_canonical = canonicalizer.canonicalize(new_name)
    new_classes = canonicalizer.get_classes(new_name)

    for current in current_medications:
        if not current.active:
            continue

        current_canonical = current.canonical_name or canonicalizer.canonicalize(current.name)
        current_classes = canonicalizer.get_classes(current_canonical)

        for rule in rules:
            forward = (_matches(rule.drug1, new_canonical, new_classes)
                       and _matches(rule.drug2, current_canonical, current_classes))
            backward = (_matches(rule.drug2, new_canonical, new_classes)
                        and _matches(rule.drug1, current_canonical, current_classes))
            if not (forward or backward):
                continue

            warnings.append(SafetyWarning(
                type=WarningType.DRUG_INTERACTION,
                severity=rule.severity,
                message="Potential drug interaction detected",
                details=f"Interaction between {new_name} and {current.name}: {rule.description}",
                recommendation=(
                    URGENT_RECOMMENDATION if rule.severity is SeverityLevel.CRITICAL
                    else DISCUSS_RECOMMENDATION
                ),
                conflicting_medication=current.name,
            ))

    return warnings


def check_allergy_conflicts(
    new_name: str,
    allergies: Optional[Sequence[str]],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> List[SafetyWarning]:
    """
    Direct name match -> critical; class match -> critical;
    penicillin/beta-lactam allergy with a cephalosporin -> high cross-reactivity.
    """
    warnings = []
    if not allergies:
        return warnings

    new_canonical = canonicalizer.canonicalize(new_name)
    new_classes = canonicalizer.get_classes(new_name)

    for allergy in allergies:
        if not isinstance(allergy, str):
            continue
        allergen = allergy.lower().strip()
        if not allergen:
            continue

        if new_canonical and (allergen in new_canonical or new_canonical in allergen):
            warnings.append(SafetyWarning(
                type=WarningType.ALLERGY_ALERT,
                severity=SeverityLevel.CRITICAL,
                message="ALLERGY ALERT: Possible allergy conflict",
                details=(
                    f"You have a documented allergy to {allergy}. This new medication "
                    f"{new_name} may contain or be related to your allergen."
                ),
                recommendation="DO NOT TAKE. Contact your provider immediately before taking this medication.",
                allergen=allergy,
            ))
            continue

        class_match = next(
            (c for c in new_classes if _allergy_names_class(allergen, c)),
            None,
        )
        if class_match:
            warnings.append(SafetyWarning(
                type=WarningType.ALLERGY_ALERT,
                severity=SeverityLevel.CRITICAL,
                message="ALLERGY ALERT: Class allergy conflict",
                details=(
                    f"You have a documented allergy to {allergy}. This new medication {new_name} "
                    f"is in the {class_match} class, which may cause an allergic reaction."
                ),
                recommendation=(
                    "DO NOT TAKE. Contact your provider immediately. "
                    "You may need an alternative medication."
                ),
                allergen=allergy,
            ))
            continue

        if any(term in allergen for term in CROSS_REACTIVE_ALLERGENS) and 'cephalosporin' in new_classes:
            warnings.append(SafetyWarning(
                type=WarningType.ALLERGY_ALERT,
                severity=SeverityLevel.HIGH,
                message="ALLERGY ALERT: Cross-reactivity risk",
                details=(
                    f"You have a penicillin allergy. This new medication {new_name} is a "
                    f"cephalosporin, which may cause a cross-reaction in some patients."
                ),
                recommendation=(
                    "Contact your provider before taking. They may need to prescribe an "
                    "alternative or monitor you closely."
                ),
                allergen=allergy,
            ))

    return warnings


def sort_by_severity(warnings: Iterable[SafetyWarning]) -> List[SafetyWarning]:
    """Most severe first; stable, so equal severities keep their input order."""
    return sorted(warnings, key=lambda w: w.severity.rank)


def has_critical(warnings: Iterable[SafetyWarning]) -> bool:
    return any(w.is_critical for w in warnings)


def requires_confirmation(warnings: Iterable[SafetyWarning]) -> bool:
    return any(w.requires_confirmation for w in warnings)


def dedupe_key(warning: SafetyWarning) -> tuple:
    subject = warning.conflicting_medication or warning.allergen or "general"
    return (warning.type, warning.severity, subject.strip().lower())


def deduplicate_warnings(warnings: Iterable[SafetyWarning]) -> List[SafetyWarning]:
    """Drop repeats by (type, severity, conflicting drug or allergen); first occurrence wins."""
    seen = set()
    unique = []
    for warning in warnings:
        key = dedupe_key(warning)
        if key in seen:
            continue
        seen.add(key)
        unique.append(warning)
    return sort_by_severity(unique)


def run_rule_checks(
    new_name: str,
    current_medications: Sequence[CurrentMedication],
    allergies: Optional[Sequence[str]],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> List[SafetyWarning]:
    """All three checks, allergy warnings first, then interactions, then duplicates; deduplicated and sorted by severity."""
    combined = (
        check_allergy_conflicts(new_name, allergies, canonicalizer)
        + check_drug_interactions(new_name, current_medications, canonicalizer)
        + check_duplicate_therapy(new_name, current_medications, canonicalizer)
    )
    return deduplicate_warnings(combined)


def warnings_to_dicts(warnings: Iterable[SafetyWarning]) -> List[Dict[str, Any]]:
    return [w.to_dict() for w in warnings]


def warnings_from_dicts(data: Optional[Iterable[Dict[str, Any]]]) -> List[SafetyWarning]:
    return [SafetyWarning.from_dict(item) for item in (data or [])]
