"""
Notification Service Abstract Base Class

Defines interface for sending SMS and Email notifications to customers
as their order moves through its lifecycle. Supports both Mock
(development) and Real (production) implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from orderflow.domain.status import OrderStatus

# Customer-facing wording per status
STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "has been confirmed by the restaurant",
    OrderStatus.PREPARING: "is being prepared",
    OrderStatus.READY_FOR_PICKUP: "is ready and waiting for a courier",
    OrderStatus.OUT_FOR_DELIVERY: "is on its way",
    OrderStatus.DELIVERED: "has been delivered. Enjoy your meal!",
    OrderStatus.CANCELLED: "has been cancelled",
}


def status_message(order_id: str, status: OrderStatus) -> str:
    status = OrderStatus(status)
    wording = STATUS_MESSAGES.get(status, f"is now {status.value}")
    return f"Your order #{order_id[:8]} {wording}."


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    async def send_status_update(
        self,
        order_id: str,
        status: OrderStatus,
        customer_phone: Optional[str],
        customer_email: Optional[str],
    ) -> NotificationResult:
        """Tell the customer their order changed status, by SMS and/or email."""
        message = status_message(order_id, status)

        sms_result = None
        if customer_phone:
            sms_result = await self.send_sms(customer_phone, message)

        email_result = None
        if customer_email:
            email_result = await self.send_email(
                to_email=customer_email,
                subject=f"Order #{order_id[:8]}: {OrderStatus(status).value.replace('_', ' ')}",
                body_html=f"<p>{message}</p>",
                body_text=message,
            )

        if sms_result is None and email_result is None:
            return NotificationResult(
                success=False,
                error_message="No contact details on order",
                provider=self.provider_name,
            )

        return NotificationResult(
            success=bool(
                (sms_result and sms_result.success) or (email_result and email_result.success)
            ),
            message_id=(sms_result or email_result).message_id,
            provider=self.provider_name,
        )

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
