"""
Celery Tasks for the Medication Registry

- sync_visit_medications_task: apply a visit's started/stopped/changed lists
- recheck_medication_safety_task: re-evaluate one stored medication
- recheck_patient_allergies_task: re-evaluate a patient's active medications
- backfill_canonical_names_task: repair stale canonical names

Each task runs in its own logging context keyed by the Celery task id.
Primary write failures in the visit sync are retried; everything else
reports an error result.
"""

import asyncio
import time
import traceback
from typing import Any, Dict, List, Optional

from celery.exceptions import SoftTimeLimitExceeded
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

# Import app components
from celery_app import celery_app
import config
from structured_logging import LogContext, get_logger

logger = get_logger(__name__)


def run_async(coro):
    """Run a coroutine to completion from a synchronous Celery worker."""
    return asyncio.run(coro)


@celery_app.task(
    bind=True,
    name="tasks.sync_visit_medications_task",
    max_retries=config.SYNC_TASK_MAX_RETRIES,
    default_retry_delay=config.SYNC_TASK_RETRY_DELAY_SECONDS,
)
def sync_visit_medications_task(self, payload: Dict[str, Any]):
    """
    Apply one visit's medication changes to the registry.

    Args:
        payload: {patient_id, visit_id, medications: {started, stopped, changed}, processed_at}
    """
    from medication_sync import MedicationRegistrySync
    from models import MedicationSyncRequest

    with LogContext(task_id=self.request.id):
        try:
            start_time = time.time()
            request = MedicationSyncRequest.model_validate(payload)
            result = run_async(MedicationRegistrySync().sync(request))

            return {
                "task_id": self.request.id,
                "status": "success",
                "processing_time": time.time() - start_time,
                **result.model_dump(),
            }

        except ValidationError as e:
            logger.error(f"Invalid visit sync payload: {e}")
            return {
                "status": "error",
                "error": "Invalid payload",
                "details": str(e),
                "task_id": self.request.id,
            }
        except SQLAlchemyError as e:
            logger.exception("Visit medication sync failed; retrying")
            raise self.retry(exc=e)
        except SoftTimeLimitExceeded:
            return {
                "status": "error",
                "error": "Task timed out",
                "task_id": self.request.id,
            }


@celery_app.task(bind=True, name="tasks.recheck_medication_safety_task")
def recheck_medication_safety_task(self, medication_id: int):
    """Re-run safety checks for one medication if its inputs changed."""
    from medication_safety_recheck import MedicationSafetyRecheck

    if not config.SAFETY_RECHECK_ENABLED:
        return {"status": "skipped", "reason": "disabled", "task_id": self.request.id}

    with LogContext(task_id=self.request.id, medication_id=medication_id):
        try:
            result = run_async(MedicationSafetyRecheck().recheck_medication(medication_id))
            return {"status": "success", "task_id": self.request.id, **result.model_dump()}

        except SoftTimeLimitExceeded:
            return {
                "status": "error",
                "error": "Task timed out",
                "task_id": self.request.id,
            }
        except Exception as e:
            logger.exception("Medication safety recheck failed")
            return {
                "status": "error",
                "error": str(e),
                "traceback": traceback.format_exc(),
                "task_id": self.request.id,
            }


@celery_app.task(bind=True, name="tasks.recheck_patient_allergies_task")
def recheck_patient_allergies_task(self, patient_id: int, allergies: Optional[List[str]] = None):
    """Re-run safety checks for every active medication after an allergy update."""
    from medication_safety_recheck import MedicationSafetyRecheck

    if not config.SAFETY_RECHECK_ENABLED:
        return {"status": "skipped", "reason": "disabled", "task_id": self.request.id}

    with LogContext(task_id=self.request.id, patient_id=patient_id):
        try:
            counts = run_async(MedicationSafetyRecheck().recheck_patient_allergies(patient_id, allergies))
            return {"status": "success", "task_id": self.request.id, "patient_id": patient_id, **counts}

        except SoftTimeLimitExceeded:
            return {
                "status": "error",
                "error": "Task timed out",
                "task_id": self.request.id,
            }
        except Exception as e:
            logger.exception("Allergy recheck failed")
            return {
                "status": "error",
                "error": str(e),
                "traceback": traceback.format_exc(),
                "task_id": self.request.id,
            }


@celery_app.task(bind=True, name="tasks.backfill_canonical_names_task")
def backfill_canonical_names_task(self, patient_id: Optional[int] = None):
    """Recompute stale canonical names, optionally for one patient."""
    from medication_backfill import backfill_canonical_names

    with LogContext(task_id=self.request.id):
        try:
            result = backfill_canonical_names(patient_id=patient_id)
            return {"status": "success", "task_id": self.request.id, **result.model_dump()}
        except SoftTimeLimitExceeded:
            return {
                "status": "error",
                "error": "Task timed out",
                "task_id": self.request.id,
            }
