"""
Combo Splitter

Decides whether a multi-drug medication string is one fixed-dose product
("HCTZ/Lisinopril 12.5/20 mg", "Amlodipine with Benazepril") or several
co-administered drugs ("Aspirin and Plavix", "Tylenol & Advil").

Split components inherit the shared dose, frequency and note verbatim.
Per-component doses are not attempted.
"""

import re
from dataclasses import replace
from typing import List

# Slash notation or "with" marks a single dispensed combination product
_FIXED_DOSE_MARKERS = re.compile(r"/|\bwith\b", re.IGNORECASE)

# Conjunctions joining separately taken drugs
_CO_ADMINISTERED = re.compile(r"\s+(?:and|&|\+)\s+|\s*\+\s*", re.IGNORECASE)


def is_fixed_dose_combination(name: str) -> bool:
    return bool(name and _FIXED_DOSE_MARKERS.search(name))


def split_combo_name(name: str) -> List[str]:
    """Return the component names, or the single trimmed name when nothing should be split."""
    text = (name or "").strip()
    if not text or is_fixed_dose_combination(text):
        return [text] if text else []

    parts = [part.strip() for part in _CO_ADMINISTERED.split(text)]
    parts = [part for part in parts if part]
    return parts if len(parts) > 1 else [text]


def split_combo_medication(entry) -> list:
    """
    Split a medication entry into one entry per co-administered drug.

    Each component keeps the original dose, frequency, note, status and
    warnings; its display notes where it came from.
    """
    parts = split_combo_name(entry.name)
    if len(parts) <= 1:
        return [entry]

    source_label = entry.display or entry.name
    return [
        replace(
            entry,
            name=part,
            display=f"{part} (from: {source_label})",
            original=entry.original or source_label,
        )
        for part in parts
    ]
