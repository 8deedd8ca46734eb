"""
Africa's Talking SMS gateway.

Docs: https://developers.africastalking.com/docs/sms/sending
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

import requests

from libs.errors import ProviderError
from libs.http.client import HttpClient, HttpError
from libs.phone import format_phone_number
from notification_service.app.settings import settings

logger = logging.getLogger(__name__)

Number = Union[Decimal, float, int]


def format_kes(value: Number) -> str:
    """15000 -> '15,000'; 1234.5 -> '1,234.50'."""
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def payment_confirmation_message(student_name: str, amount: Number, receipt_number: str,
                                 new_balance: Optional[Number]) -> str:
    message = f"Payment received! KES {format_kes(amount)} for {student_name}. Receipt: {receipt_number}."
    if new_balance is not None:
        message += f" New balance: KES {format_kes(new_balance)}."
    return message + " Thank you."


def fee_reminder_message(student_name: str, admission_number: str, balance: Number) -> str:
    return (
        f"Dear Parent, {student_name} ({admission_number}) has a pending fee balance of "
        f"KES {format_kes(balance)}. Please clear to avoid inconvenience. Thank you."
    )


class AfricasTalkingClient:
    def __init__(
        self,
        *,
        username: str,
        api_key: str,
        sender_id: str,
        base_url: str = "https://api.africastalking.com/version1",
        timeout_sec: float = 10.0,
        dry_run: bool = False,
        http: Optional[HttpClient] = None,
    ) -> None:
        self._http = http or HttpClient(base_url, timeout_sec=timeout_sec, default_headers={"apiKey": api_key})
        self._username = username
        self._sender_id = sender_id
        self._dry_run = dry_run

    @classmethod
    def from_settings(cls) -> "AfricasTalkingClient":
        return cls(
            username=settings.AT_USERNAME,
            api_key=settings.AT_API_KEY,
            sender_id=settings.AT_SENDER_ID,
            base_url=settings.AT_BASE_URL,
            timeout_sec=settings.AT_HTTP_TIMEOUT,
            dry_run=settings.DRY_RUN,
        )

    def send_sms(self, to: Iterable[str], message: str, sender_id: Optional[str] = None) -> Any:
        recipients = [format_phone_number(n) for n in to]
        if self._dry_run:
            logger.info("[DRY RUN] sms to=%s message=%s", ",".join(recipients), message)
            return None
        form = {
            "username": self._username,
            "to": ",".join(recipients),
            "message": message,
            "from": sender_id or self._sender_id,
        }
        try:
            data = self._http.post("/messaging", form=form)
        except (HttpError, requests.RequestException) as exc:
            logger.error("sms send failed to=%s: %s", form["to"], exc)
            raise ProviderError("Failed to send SMS", status=getattr(exc, "status", None)) from exc
        logger.info("sms sent to=%s", form["to"])
        return data

    def send_payment_confirmation(self, phone: str, student_name: str, amount: Number,
                                  receipt_number: str, new_balance: Optional[Number]) -> Any:
        return self.send_sms([phone], payment_confirmation_message(student_name, amount, receipt_number, new_balance))

    def send_fee_reminder(self, phone: str, student_name: str, admission_number: str, balance: Number) -> Any:
        return self.send_sms([phone], fee_reminder_message(student_name, admission_number, balance))
