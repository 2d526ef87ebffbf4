"""
Medication Name Canonicalizer

Resolves free-text drug names (brand names, salt forms, extended-release
suffixes, dose-qualified strings) to a stable canonical generic name, and
corrects misspelled names against the known medication vocabulary using
Levenshtein distance.

Canonicalization never raises: unknown names fall back to their lower-cased,
trimmed, suffix-stripped text.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Tuple

from canonical_medications import ALIAS_TO_CANONICAL, CANONICAL_MEDICATIONS, CanonicalMedicationEntry


# Salt and formulation suffixes, checked in this order
SALT_SUFFIXES = (
    'succinate', 'tartrate', 'hydrochloride', 'hcl', 'sulfate', 'sodium',
    'potassium', 'calcium', 'maleate', 'fumarate', 'acetate', 'phosphate',
    'citrate', 'er', 'xl', 'xr', 'sr', 'cr', 'la', 'cd',
)

_SUFFIX_PATTERNS = tuple(
    (suffix, re.compile(rf'\s+{re.escape(suffix)}$')) for suffix in SALT_SUFFIXES
)

# Trailing strength such as "20mg", "20 mg", "12.5/20 mg" or a bare "20"
_TRAILING_DOSE = re.compile(
    r'\s+\d+(?:\.\d+)?(?:\s*/\s*\d+(?:\.\d+)?)*\s*(?:mg|mcg|g|ml|units?|iu|%)?$'
)

_WHITESPACE = re.compile(r'\s+')

# Spoken/shorthand names normalised before fuzzy comparison
DRUG_NAME_ALIASES = {
    'hctz': 'hydrochlorothiazide',
    'hct': 'hydrochlorothiazide',
    'hcthydrochlorothiazide': 'hydrochlorothiazide',
    'asa': 'aspirin',
}

FUZZY_TOLERANCE_RATIO = 0.35

# Substring matches shorter than this are too ambiguous to accept
_MIN_SUBSTRING_MATCH = 4

UNVERIFIED_NOTE = (
    'Unable to confidently identify this medication from the transcript. '
    'Confirm the exact name with the prescribing provider before use.'
)
FUZZY_NOTE = 'Medication name auto-corrected from the transcript. Please review.'


class MatchStatus(Enum):
    """How confidently a medication name was identified"""
    MATCHED = "matched"
    FUZZY = "fuzzy"
    UNVERIFIED = "unverified"


@dataclass
class NameCorrection:
    """Result of checking a name against the known medication vocabulary"""
    name: str
    status: MatchStatus
    needs_confirmation: bool
    original_name: str
    distance: Optional[int] = None
    note: Optional[str] = None


class NameCanonicalizer:
    """
    Maps free text to canonical generic names.

    The reverse index (canonical and alias -> canonical) is built once from
    the reference data; all lookups are case-insensitive.
    """

    def __init__(self, reference: Mapping[str, CanonicalMedicationEntry] = CANONICAL_MEDICATIONS):
        self.reference = reference
        if reference is CANONICAL_MEDICATIONS:
            self.index = dict(ALIAS_TO_CANONICAL)
        else:
            self.index = {}
            for canonical, entry in reference.items():
                self.index[canonical.lower()] = canonical
                for alias in entry.aliases:
                    self.index[alias.lower()] = canonical

    def canonicalize(self, name: Optional[str]) -> str:
        """Resolve a drug name to its canonical generic name."""
        if not name or not isinstance(name, str):
            return ""

        text = _WHITESPACE.sub(' ', name.lower()).strip()
        if not text:
            return ""

        if text in self.index:
            return self.index[text]

        stripped = self.strip_suffixes(text)
        return self.index.get(stripped, stripped)

    def strip_suffixes(self, text: str) -> str:
        """Strip trailing strengths and salt/formulation suffixes until none match."""
        current = text.strip()
        while True:
            previous = current

            current = _TRAILING_DOSE.sub('', current).strip()
            if current in self.index:
                return current

            for _suffix, pattern in _SUFFIX_PATTERNS:
                if pattern.search(current):
                    current = pattern.sub('', current).strip()
                    break

            if current == previous or current in self.index:
                return current

    def get_classes(self, name: Optional[str]) -> Tuple[str, ...]:
        """Therapeutic classes of a drug, in reference order; empty if unknown."""
        entry = self.reference.get(self.canonicalize(name))
        return entry.classes if entry else ()

    def is_known(self, name: Optional[str]) -> bool:
        return self.canonicalize(name) in self.reference


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous_row = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current_row = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current_row.append(min(
                previous_row[j] + 1,
                current_row[j - 1] + 1,
                previous_row[j - 1] + cost,
            ))
        previous_row = current_row

    return previous_row[-1]


def fuzzy_tolerance(candidate: str, known: str) -> int:
    return math.ceil(max(len(candidate), len(known)) * FUZZY_TOLERANCE_RATIO)


def normalize_drug_name(name: Optional[str]) -> str:
    """Lowercase alphanumerics only, with shorthand names expanded."""
    if not name:
        return ""
    normalized = re.sub(r'[^a-z0-9]', '', name.lower())
    alias_key = re.sub(r'\d+', '', normalized)
    return DRUG_NAME_ALIASES.get(alias_key) or DRUG_NAME_ALIASES.get(normalized) or normalized


def correct_medication_name(
    name: Optional[str],
    known_names: Optional[Iterable[str]] = None,
    canonicalizer: Optional[NameCanonicalizer] = None,
) -> NameCorrection:
    """
    Check a name against the known vocabulary.

    - exact or substring hit           -> matched, name unchanged
    - best edit distance <= tolerance  -> fuzzy, name replaced, needs confirmation
    - otherwise                        -> unverified, needs confirmation

    Tolerance is ceil(0.35 * longer length).
    """
    canonicalizer = canonicalizer or default_canonicalizer
    original = (name or "").strip()
    normalized = normalize_drug_name(canonicalizer.strip_suffixes(original.lower()) if original else "")

    if not normalized:
        return NameCorrection(
            name=original, status=MatchStatus.UNVERIFIED, needs_confirmation=True,
            original_name=original, note=UNVERIFIED_NOTE,
        )

    if canonicalizer.is_known(original):
        return NameCorrection(
            name=original, status=MatchStatus.MATCHED, needs_confirmation=False,
            original_name=original,
        )

    candidates: List[Tuple[str, str]] = [
        (known, normalize_drug_name(known))
        for known in (known_names if known_names is not None else canonicalizer.reference.keys())
    ]

    for known, known_normalized in candidates:
        if not known_normalized:
            continue
        if known_normalized == normalized:
            return NameCorrection(
                name=original, status=MatchStatus.MATCHED, needs_confirmation=False,
                original_name=original, distance=0,
            )
        shorter = min(len(known_normalized), len(normalized))
        if shorter >= _MIN_SUBSTRING_MATCH and (known_normalized in normalized or normalized in known_normalized):
            return NameCorrection(
                name=original, status=MatchStatus.MATCHED, needs_confirmation=False,
                original_name=original,
            )

    best_name, best_distance = None, None
    for known, known_normalized in candidates:
        if not known_normalized:
            continue
        distance = levenshtein_distance(known_normalized, normalized)
        if best_distance is None or distance < best_distance:
            best_name, best_distance = known, distance

    if best_name is not None and best_distance <= fuzzy_tolerance(normalized, normalize_drug_name(best_name)):
        return NameCorrection(
            name=best_name.title(), status=MatchStatus.FUZZY, needs_confirmation=True,
            original_name=original, distance=best_distance, note=FUZZY_NOTE,
        )

    return NameCorrection(
        name=original, status=MatchStatus.UNVERIFIED, needs_confirmation=True,
        original_name=original, distance=best_distance, note=UNVERIFIED_NOTE,
    )


# Shared instance over the immutable reference data
default_canonicalizer = NameCanonicalizer()


def canonicalize(name: Optional[str]) -> str:
    return default_canonicalizer.canonicalize(name)


def get_medication_classes(name: Optional[str]) -> Tuple[str, ...]:
    return default_canonicalizer.get_classes(name)
