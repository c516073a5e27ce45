# storefront/tasks/maintenance.py
from returns.pipeline import is_successful

from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.domain.values import RepairOptions, RepairReport
from storefront.services.integrity_service import IntegrityService
from storefront.services.lock_service import LockService
from storefront.services.product_client import ProductClient
from storefront.utils.settings import GUEST_CART_RETENTION_HOURS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def run_repair(
    db,
    product_client,
    lock_service,
    options: RepairOptions | None = None,
    retention_hours: int = GUEST_CART_RETENTION_HOURS,
) -> RepairReport | None:
    svc = IntegrityService(db, product_client, lock_service, retention_hours=retention_hours)
    result = svc.repair(None, options or RepairOptions())
    if not is_successful(result):
        logger.error(f"Scheduled cart repair failed: {result.failure().to_dict()}")
        return None
    return result.unwrap()


@celery_app.task(name="storefront.tasks.maintenance.repair_carts_task")
def repair_carts_task():
    logger.info("Cart repair task started")

    db = SessionLocal()
    try:
        report = run_repair(db, ProductClient(), LockService())
    finally:
        db.close()

    if report is None:
        return {"status": "failed"}
    return {
        "status": "ok",
        "fixes_applied": {kind.value: count for kind, count in report.fixes_applied.items()},
        "errors": report.errors,
    }
