"""
Celery application for the medication registry workers.

Visit syncs and safety rechecks run on separate queues so that a burst of
allergy rechecks never delays the sync of a freshly processed visit.

    celery -A celery_app worker -Q sync,recheck,default --loglevel=info
"""

from celery import Celery

import config

QUEUE_NAMES = ("default", "sync", "recheck")

TASK_ROUTES = {
    "tasks.sync_visit_medications_task": {"queue": "sync"},
    "tasks.recheck_medication_safety_task": {"queue": "recheck"},
    "tasks.recheck_patient_allergies_task": {"queue": "recheck"},
    "tasks.backfill_canonical_names_task": {"queue": "default"},
}

celery_app = Celery(
    "medication_safety",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    result_expires=config.CELERY_TASK_RESULT_EXPIRES,
    task_soft_time_limit=config.CELERY_TASK_SOFT_TIME_LIMIT,
    task_time_limit=config.CELERY_TASK_TIME_LIMIT,
    worker_concurrency=config.CELERY_WORKER_CONCURRENCY,
    worker_prefetch_multiplier=config.CELERY_WORKER_PREFETCH_MULTIPLIER,
    task_queues={
        name: {"exchange": name, "routing_key": name if name == "default" else f"{name}.#"}
        for name in QUEUE_NAMES
    },
    task_default_queue="default",
    task_routes=TASK_ROUTES,
    task_track_started=True,
    # A sync is only acknowledged once its registry writes are done
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_backend_transport_options={"retry_policy": {"timeout": 5.0}},
)


if __name__ == "__main__":
    celery_app.start()
