"""
Reminder Time Deriver

Classifies a free-text dosing frequency into a fixed set of daily reminder
times ("HH:MM"). As-needed therapy returns None: no reminder should exist.
Only phrases are classified; clock times in the text are not parsed.
"""

import re
from typing import List, Optional, Pattern, Sequence, Tuple

MORNING = "08:00"
NOON = "12:00"
EVENING_MEAL = "18:00"
EVENING = "20:00"
BEDTIME = "21:00"

DEFAULT_TIMES = (MORNING,)


def _phrases(*patterns: str) -> Pattern:
    return re.compile("|".join(patterns))


AS_NEEDED = _phrases(r"\bprn\b", r"as needed", r"when needed", r"as required")

# Meal-relative phrasing, checked in order
MEAL_RULES: Sequence[Tuple[Pattern, Tuple[str, ...]]] = (
    (_phrases(r"with meals", r"with food", r"at meals", r"at mealtimes?"), (MORNING, NOON, EVENING_MEAL)),
    (_phrases(r"breakfast", r"morning meal"), (MORNING,)),
    (_phrases(r"lunch", r"midday", r"\bnoon\b"), (NOON,)),
    (_phrases(r"dinner", r"supper", r"evening meal", r"with evening"), (EVENING_MEAL,)),
)

# Explicit cadences, most frequent first so "twice daily" never reads as "daily"
CADENCE_RULES: Sequence[Tuple[Pattern, Tuple[str, ...]]] = (
    (_phrases(r"four times", r"\bqid\b", r"\b4x\b", r"\bevery\s*6\b", r"\bq6h?\b"), (MORNING, NOON, "16:00", EVENING)),
    (_phrases(r"three times", r"\btid\b", r"\b3x\b", r"\bevery\s*8\b", r"\bq8h?\b"), (MORNING, "14:00", EVENING)),
    (_phrases(r"twice", r"two times", r"\bbid\b", r"\b2x\b", r"\bevery\s*12\b", r"\bq12h?\b"), (MORNING, EVENING)),
    (_phrases(r"bedtime", r"at night", r"before bed", r"nightly", r"\bhs\b", r"\bqhs\b"), (BEDTIME,)),
    (_phrases(r"weekly", r"once a week", r"every week"), (MORNING,)),
)

ONCE_DAILY = _phrases(r"once daily", r"once a day", r"\bqd\b", r"\bqday\b", r"daily", r"every day", r"every morning")
EVENING_HINT = _phrases(r"evening", r"\bpm\b", r"\bp\.m\.", r"night")


def derive_reminder_times(frequency: Optional[str]) -> Optional[List[str]]:
    """
    Map a frequency phrase to reminder times.

    Returns None for as-needed (PRN) therapy, otherwise an ordered list of
    "HH:MM" strings. Unrecognised or missing frequencies get a single
    morning reminder.
    """
    if not frequency or not isinstance(frequency, str):
        return list(DEFAULT_TIMES)

    text = " ".join(frequency.lower().split())
    if not text:
        return list(DEFAULT_TIMES)

    if AS_NEEDED.search(text):
        return None

    for pattern, times in MEAL_RULES:
        if pattern.search(text):
            return list(times)

    for pattern, times in CADENCE_RULES:
        if pattern.search(text):
            return list(times)

    if ONCE_DAILY.search(text):
        return [EVENING] if EVENING_HINT.search(text) else [MORNING]

    # "in the morning" / "every evening" without the word daily
    if EVENING_HINT.search(text):
        return [EVENING]

    return list(DEFAULT_TIMES)


def should_create_reminder(frequency: Optional[str]) -> bool:
    return derive_reminder_times(frequency) is not None
