"""
Canonical Name Backfill

Recomputes canonical_name and name_lower for stored medications after the
reference vocabulary or the canonicalization rules change.

Usage:
    python medication_backfill.py
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

import config
from database import Medication, SessionLocal
from medication_canonicalizer import NameCanonicalizer, default_canonicalizer
from models import BackfillResult

logger = logging.getLogger(__name__)

# (medication_id, canonical_name, name_lower)
PendingUpdate = Tuple[int, str, str]


def compute_stale_updates(
    rows: List[Tuple[int, str, Optional[str], Optional[str]]],
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> List[PendingUpdate]:
    """Rows whose stored canonical_name or name_lower differ from a fresh computation."""
    updates = []
    for medication_id, name, canonical_name, name_lower in rows:
        if not name:
            continue
        expected_lower = name.lower()
        expected_canonical = canonicalizer.canonicalize(name) or expected_lower.strip()
        if canonical_name != expected_canonical or name_lower != expected_lower:
            updates.append((medication_id, expected_canonical, expected_lower))
    return updates


def chunk(items: List[PendingUpdate], size: int) -> List[List[PendingUpdate]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _commit_batch(session_factory, batch: List[PendingUpdate]) -> int:
    db = session_factory()
    try:
        for medication_id, canonical_name, name_lower in batch:
            db.query(Medication).filter(Medication.id == medication_id).update(
                {"canonical_name": canonical_name, "name_lower": name_lower},
                synchronize_session=False,
            )
        db.commit()
        return len(batch)
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def backfill_canonical_names(
    session_factory=SessionLocal,
    batch_size: int = None,
    max_workers: int = None,
    patient_id: Optional[int] = None,
    canonicalizer: NameCanonicalizer = default_canonicalizer,
) -> BackfillResult:
    """
    Fix stale canonical_name / name_lower values. Writes are grouped into
    batches of at most 400 rows per commit; batches commit concurrently, one
    session each. A failed batch is logged and counted, the others still land.
    """
    batch_size = min(batch_size or config.BACKFILL_BATCH_SIZE, config.MAX_BATCH_SIZE)
    max_workers = max_workers or config.SYNC_MAX_WORKERS

    db = session_factory()
    try:
        query = db.query(Medication.id, Medication.name, Medication.canonical_name, Medication.name_lower)
        if patient_id is not None:
            query = query.filter(Medication.patient_id == patient_id)
        rows = query.order_by(Medication.id).all()
    finally:
        db.close()

    updates = compute_stale_updates(rows, canonicalizer)
    batches = chunk(updates, batch_size)
    result = BackfillResult(scanned=len(rows), batches=len(batches))

    if not batches:
        logger.info("Canonical name backfill: nothing to update", extra={"scanned": len(rows)})
        return result

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(_commit_batch, session_factory, batch): i for i, batch in enumerate(batches)}
        for future in as_completed(futures):
            try:
                result.updated += future.result()
            except SQLAlchemyError as e:
                result.failed_batches += 1
                logger.error(f"Backfill batch {futures[future]} failed: {e}")

    logger.info("Canonical name backfill complete", extra=result.model_dump())
    return result


if __name__ == "__main__":
    from structured_logging import configure_logging

    configure_logging()
    logger.info("Starting canonical name backfill", extra=config.get_config_summary())
    print(backfill_canonical_names().model_dump())
