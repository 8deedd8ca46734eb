from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from libs.event_contracts.fee_v1 import FeeReminderRequested
from libs.event_contracts.payment_v1 import PaymentCompleted
from libs.rmq.consumer import Subscription, run, subscribe
from notification_service.app.settings import settings
from notification_service.app.sms import AfricasTalkingClient

logger = logging.getLogger(__name__)

_client: Optional[AfricasTalkingClient] = None


def get_sms_client() -> AfricasTalkingClient:
    global _client
    if _client is None:
        _client = AfricasTalkingClient.from_settings()
    return _client


def on_payment_completed(payload: Dict[str, Any], client: AfricasTalkingClient) -> None:
    event = PaymentCompleted.model_validate(payload)
    if not event.phone:
        logger.info("payment_completed without phone payment_id=%s; skipping sms", event.payment_id)
        return
    client.send_payment_confirmation(
        event.phone,
        event.student_name,
        event.amount,
        event.receipt_number,
        event.new_balance,
    )


def on_fee_reminder(payload: Dict[str, Any], client: AfricasTalkingClient) -> None:
    event = FeeReminderRequested.model_validate(payload)
    client.send_fee_reminder(event.phone, event.student_name, event.admission_number, event.balance)


HANDLERS = {
    "payment_completed": on_payment_completed,
    "fee_reminder": on_fee_reminder,
}


def handle_message(payload: Dict[str, Any], headers: Dict[str, Any], message_id: str,
                   client: Optional[AfricasTalkingClient] = None) -> None:
    """Routes on the `event-type` header; failures raise so the bus dead-letters the message."""
    event_type = (headers or {}).get("event-type", "")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.debug("ignoring event_type=%s message_id=%s", event_type, message_id)
        return
    handler(payload, client or get_sms_client())
    logger.info("notification delivered event_type=%s message_id=%s", event_type, message_id)


def start_consumers() -> None:
    subs: list[Subscription] = [
        subscribe(
            settings.NOTIFICATION_QUEUE,
            settings.RK_PAYMENT_COMPLETED,
            handle_message,
            extra_routing_keys=(settings.RK_FEE_REMINDER,),
            dead_letter=True,
            prefetch=settings.CONSUMER_PREFETCH,
        ),
    ]
    logger.info("Starting notification consumer on %s", settings.NOTIFICATION_QUEUE)
    run(subs, join=False)
