"""
Celery Tasks
Background delivery of customer status notifications.

Notifications are queued after a transition has committed; the HTTP
request never waits on Twilio or SendGrid.
"""

import asyncio
import logging
import time
from typing import Optional

from orderflow.celery_worker import celery_app
from orderflow.core.config import get_settings
from orderflow.domain.status import OrderStatus
from orderflow.models import Order
from orderflow.services.notifications import get_notification_service

logger = logging.getLogger(__name__)


class NotificationUndelivered(Exception):
    """Raised inside the task so Celery's retry policy kicks in."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(NotificationUndelivered,),
    retry_backoff=True
)
def send_status_notification(
    self,
    order_id: str,
    status: str,
    customer_phone: Optional[str] = None,
    customer_email: Optional[str] = None,
) -> dict:
    """
    Send the customer an SMS/email about an order status change.

    Args:
        order_id: Order that changed
        status: New status value
        customer_phone: SMS destination, if known
        customer_email: Email destination, if known

    Returns:
        dict: Result of the send
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: notifying customer of order {order_id} -> {status}")
    start_time = time.time()

    service = get_notification_service()
    result = asyncio.run(
        service.send_status_update(order_id, OrderStatus(status), customer_phone, customer_email)
    )
    elapsed = round(time.time() - start_time, 3)

    if not result.success and result.error_message != "No contact details on order":
        logger.warning(f"Task {task_id}: order {order_id} notification failed - {result.error_message}")
        raise NotificationUndelivered(result.error_message)

    logger.info(f"Task {task_id}: order {order_id} handled in {elapsed}s")
    return {
        "success": result.success,
        "order_id": order_id,
        "status": status,
        "message_id": result.message_id,
        "provider": result.provider,
        "task_id": task_id,
        "processing_time_seconds": elapsed,
    }


def queue_status_notification(order: Order, previous: OrderStatus) -> None:
    """
    Notifier hook for the TransitionEngine.

    Enqueues `send_status_notification` unless notifications are switched
    off or the order carries no contact details.
    """
    if not get_settings().notifications_enabled:
        return
    if not order.customer_phone and not order.customer_email:
        return

    send_status_notification.delay(
        order.id,
        OrderStatus(order.status).value,
        order.customer_phone,
        order.customer_email,
    )
    logger.debug(f"Queued notification for order {order.id} ({previous.value} -> {order.status.value})")
