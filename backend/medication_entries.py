"""
Medication change entries

Normalizes the started/stopped/changed medication lists produced by the
visit extraction pipeline. Entries arrive either as dicts (current format,
camelCase or snake_case keys) or as legacy free-text strings such as
"Started lisinopril 10 mg daily".
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from combo_splitter import split_combo_medication

VALID_STATUSES = ("matched", "fuzzy", "unverified")

VERB_WORDS = (
    'started', 'start', 'starting', 'initiated', 'initiating',
    'add', 'added', 'adding', 'begin', 'began',
    'increase', 'increased', 'increasing', 'decrease', 'decreased', 'decreasing',
    'change', 'changed', 'changing', 'titrate', 'titrated', 'titrating',
    'switch', 'switched', 'switching', 'restart', 'restarted', 'restarting',
    'resume', 'resumed', 'resuming', 'hold', 'held', 'holding',
    'stop', 'stopped', 'stopping',
)
_VERB_SET = frozenset(VERB_WORDS)
_LEADING_VERB = re.compile(rf"^({'|'.join(VERB_WORDS)})\s+", re.IGNORECASE)

STOP_WORDS = frozenset({'to', 'at', 'for', 'with', 'and', 'then', 'from', 'on', 'in', 'per'})

UNIT_PATTERN = re.compile(
    r"(mg|mcg|g|gram|tablet|tab|tabs|capsule|cap|caps|ml|units|iu|dose|bid|tid|qid|daily|weekly|nightly|prn)",
    re.IGNORECASE,
)
DOSE_PATTERN = re.compile(r"(\d+(?:\.\d+)?\s*(?:mg|mcg|g|gram|ml|units?|iu))", re.IGNORECASE)
FREQUENCY_PATTERN = re.compile(
    r"\b(daily|weekly|nightly|twice daily|three times daily|once daily|"
    r"every\s+\d+\s*(?:hours|days|weeks)|bid|tid|qid|qod|prn|as needed)\b",
    re.IGNORECASE,
)

UNKNOWN_MEDICATION = "Unknown medication"


@dataclass
class MedicationChangeEntry:
    """One medication mentioned in a visit, as handed to the registry sync"""
    name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    note: Optional[str] = None
    display: Optional[str] = None
    original: Optional[str] = None
    needs_confirmation: Optional[bool] = None
    status: Optional[str] = None  # matched, fuzzy, unverified
    warnings: List[Any] = field(default_factory=list)  # SafetyWarning


@dataclass
class NormalizedMedicationSummary:
    started: List[MedicationChangeEntry] = field(default_factory=list)
    stopped: List[MedicationChangeEntry] = field(default_factory=list)
    changed: List[MedicationChangeEntry] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.started or self.stopped or self.changed)


def _clean_word(word: str) -> str:
    return re.sub(r"[.,;:]", "", word)


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_legacy_medication_entry(text: str) -> MedicationChangeEntry:
    """Pull a name, dose and frequency out of a free-text medication line."""
    original = (text or "").strip()
    if not original:
        return MedicationChangeEntry(name=UNKNOWN_MEDICATION, original=original)

    working = _LEADING_VERB.sub("", original).strip() or original
    words = working.split()

    name_tokens = []
    for word in words:
        cleaned = _clean_word(word)
        if not cleaned:
            continue
        lower = cleaned.lower()
        if lower[0].isdigit():
            break
        if lower in STOP_WORDS or lower in _VERB_SET or UNIT_PATTERN.fullmatch(lower):
            break
        name_tokens.append(cleaned)

    if name_tokens:
        name = " ".join(name_tokens).strip()
    else:
        name = _clean_word(words[0]) if words else working
        name = name or working

    details = working[len(name):].strip(" .,;:") if working.startswith(name) else ""

    dose_match = DOSE_PATTERN.search(original)
    frequency_match = FREQUENCY_PATTERN.search(original)

    return MedicationChangeEntry(
        name=name,
        dose=dose_match.group(0) if dose_match else None,
        frequency=frequency_match.group(0) if frequency_match else None,
        note=details or None,
        display=original,
        original=original,
    )


def normalize_medication_entry(value: Any) -> Optional[MedicationChangeEntry]:
    """
    Normalize one raw entry. Returns None for entries that carry no usable
    name (empty strings, dicts without a name, other types).
    """
    if isinstance(value, MedicationChangeEntry):
        return value if value.name and value.name.strip() else None

    if isinstance(value, str):
        return parse_legacy_medication_entry(value) if value.strip() else None

    if not isinstance(value, dict):
        return None

    name = _clean_str(value.get("name"))
    if not name:
        return None

    needs_confirmation = value.get("needs_confirmation", value.get("needsConfirmation"))
    status = _clean_str(value.get("status"))
    status = status.lower() if status else None

    return MedicationChangeEntry(
        name=name,
        dose=_clean_str(value.get("dose")),
        frequency=_clean_str(value.get("frequency")),
        note=_clean_str(value.get("note")),
        display=_clean_str(value.get("display")),
        original=_clean_str(value.get("original")),
        needs_confirmation=needs_confirmation if isinstance(needs_confirmation, bool) else None,
        status=status if status in VALID_STATUSES else None,
    )


def normalize_medication_list(values: Optional[Iterable[Any]]) -> List[MedicationChangeEntry]:
    """Normalize, drop unusable entries and split co-administered combos."""
    entries = []
    for value in values or []:
        entry = normalize_medication_entry(value)
        if entry is None:
            continue
        entries.extend(split_combo_medication(entry))
    return entries


def normalize_medication_summary(medications: Optional[Dict[str, Any]]) -> NormalizedMedicationSummary:
    if not medications:
        return NormalizedMedicationSummary()

    return NormalizedMedicationSummary(
        started=normalize_medication_list(medications.get("started")),
        stopped=normalize_medication_list(medications.get("stopped")),
        changed=normalize_medication_list(medications.get("changed")),
    )


def entry_to_dict(entry: MedicationChangeEntry) -> Dict[str, Any]:
    """Plain-dict form used for prompts, cache keys and Celery payloads."""
    return {
        "name": entry.name,
        "dose": entry.dose,
        "frequency": entry.frequency,
        "note": entry.note,
        "display": entry.display,
        "original": entry.original,
        "needs_confirmation": entry.needs_confirmation,
        "status": entry.status,
    }
