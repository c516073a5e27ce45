# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    INTEGRITY_REPAIR_INTERVAL_SECONDS,
)

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# explicit task modules so the worker registers them
celery_app.conf.imports = (
    "storefront.tasks.maintenance",
    "storefront.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "repair-carts": {
        "task": "storefront.tasks.maintenance.repair_carts_task",
        "schedule": INTEGRITY_REPAIR_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
