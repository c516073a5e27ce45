# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Order confirmations, processed asynchronously by Celery.
    """

    @staticmethod
    def send_order_confirmation(customer_id: int, order_id: int, invoice_number: str):
        send_order_notification_task.delay(customer_id, order_id, invoice_number)


@celery_app.task(name="storefront.services.notification_service.send_order_notification_task")
def send_order_notification_task(customer_id: int, order_id: int, invoice_number: str):
    """
    Celery task. A real deployment would hand this to an email/SMS provider,
    here it is only logged.
    """
    logger.info(
        f"[NOTIFICATION] Customer {customer_id}: order {order_id} confirmed, invoice {invoice_number}"
    )
    return {
        "customer_id": customer_id,
        "order_id": order_id,
        "invoice_number": invoice_number,
        "status": "sent",
    }
