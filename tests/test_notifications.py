"""Tests for customer status notifications and their Celery wiring."""

from types import SimpleNamespace

import pytest

from orderflow import tasks
from orderflow.domain.status import OrderStatus
from orderflow.models import Order
from orderflow.services.notifications.base import status_message
from orderflow.services.notifications.mock import MockNotificationService


@pytest.fixture
def mock_service():
    return MockNotificationService(failure_rate=0, latency=(0, 0))


class TestStatusUpdate:
    def test_message_wording(self):
        assert status_message("abcdef123456", OrderStatus.OUT_FOR_DELIVERY) == (
            "Your order #abcdef12 is on its way."
        )

    async def test_sends_sms_and_email(self, mock_service):
        result = await mock_service.send_status_update(
            "order-1", OrderStatus.CONFIRMED, "+15550100", "jane@example.com"
        )

        assert result.success
        assert [m["channel"] for m in mock_service.sent] == ["sms", "email"]

    async def test_no_contact_details(self, mock_service):
        result = await mock_service.send_status_update("order-1", OrderStatus.CONFIRMED, None, None)

        assert not result.success
        assert mock_service.sent == []

    async def test_simulated_failure_reported(self):
        service = MockNotificationService(failure_rate=1, latency=(0, 0))
        result = await service.send_status_update("order-1", OrderStatus.PREPARING, "+15550100", None)
        assert not result.success


class TestQueueing:
    @pytest.fixture
    def queued(self, monkeypatch):
        calls = []
        monkeypatch.setattr(tasks, "get_settings", lambda: SimpleNamespace(notifications_enabled=True))
        monkeypatch.setattr(tasks.send_status_notification, "delay", lambda *args: calls.append(args))
        return calls

    def test_queues_for_reachable_customer(self, queued):
        order = Order(id="order-1", status=OrderStatus.CONFIRMED, customer_phone="+15550100")

        tasks.queue_status_notification(order, OrderStatus.PENDING)

        assert queued == [("order-1", "confirmed", "+15550100", None)]

    def test_skips_order_without_contact(self, queued):
        order = Order(id="order-1", status=OrderStatus.CONFIRMED)
        tasks.queue_status_notification(order, OrderStatus.PENDING)
        assert queued == []

    def test_disabled_by_settings(self, monkeypatch, queued):
        monkeypatch.setattr(tasks, "get_settings", lambda: SimpleNamespace(notifications_enabled=False))
        order = Order(id="order-1", status=OrderStatus.CONFIRMED, customer_email="jane@example.com")

        tasks.queue_status_notification(order, OrderStatus.PENDING)

        assert queued == []


def test_task_runs_eagerly(monkeypatch, mock_service):
    monkeypatch.setattr(tasks, "get_notification_service", lambda: mock_service)

    result = tasks.send_status_notification.apply(
        args=("order-1", "delivered", None, "jane@example.com")
    ).get()

    assert result["success"]
    assert result["provider"] == "mock"
    assert mock_service.sent[0]["to"] == "jane@example.com"
