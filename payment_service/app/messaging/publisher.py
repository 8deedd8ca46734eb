from __future__ import annotations

import logging
from typing import Optional, Protocol

from libs.event_contracts.fee_v1 import FeeReminderRequested
from libs.event_contracts.payment_v1 import PaymentCompleted, PaymentFailed
from libs.rmq.publisher import publish_event
from payment_service.app.settings import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Post-commit hook: what the payment service tells the outside world."""

    def payment_completed(self, event: PaymentCompleted) -> None:
        ...

    def payment_failed(self, event: PaymentFailed) -> None:
        ...

    def fee_reminder(self, event: FeeReminderRequested) -> None:
        ...


def publish_payment_completed(event: PaymentCompleted, *, correlation_id: Optional[str] = None) -> None:
    publish_event(
        routing_key=settings.RK_PAYMENT_COMPLETED,
        payload=event.model_dump(mode="json"),
        event_type="payment_completed",
        idempotency_key=f"payment_completed:{event.payment_id}",
        correlation_id=correlation_id,
    )
    logger.info("event payment_completed payment_id=%s student_id=%s amount=%s", event.payment_id, event.student_id, event.amount)


def publish_payment_failed(event: PaymentFailed, *, correlation_id: Optional[str] = None) -> None:
    publish_event(
        routing_key=settings.RK_PAYMENT_FAILED,
        payload=event.model_dump(mode="json"),
        event_type="payment_failed",
        idempotency_key=f"payment_failed:{event.payment_id}",
        correlation_id=correlation_id,
    )
    logger.warning("event payment_failed payment_id=%s reason=%s", event.payment_id, event.reason_message)


def publish_fee_reminder(event: FeeReminderRequested, *, correlation_id: Optional[str] = None) -> None:
    publish_event(
        routing_key=settings.RK_FEE_REMINDER,
        payload=event.model_dump(mode="json"),
        event_type="fee_reminder",
        correlation_id=correlation_id,
    )
    logger.info("event fee_reminder fee_record_id=%s balance=%s", event.fee_record_id, event.balance)


class EventNotifier:
    """Notifier backed by the RabbitMQ event bus."""

    def payment_completed(self, event: PaymentCompleted) -> None:
        publish_payment_completed(event)

    def payment_failed(self, event: PaymentFailed) -> None:
        publish_payment_failed(event)

    def fee_reminder(self, event: FeeReminderRequested) -> None:
        publish_fee_reminder(event)


__all__ = [
    "Notifier",
    "EventNotifier",
    "publish_payment_completed",
    "publish_payment_failed",
    "publish_fee_reminder",
]
