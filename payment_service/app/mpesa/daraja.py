"""
Safaricom Daraja (M-Pesa) gateway client.

Docs: https://developer.safaricom.co.ke/APIs
"""
from __future__ import annotations

import base64
import datetime as dt
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Protocol

import requests

from libs.errors import ProviderError
from libs.http.client import HttpClient, HttpError
from payment_service.app.settings import settings

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

# Tokens live 3600s; refresh 5 minutes early.
TOKEN_TTL_SEC = 3600 - 300

# Daraja answers a status query for an unfinished push with this error code.
STILL_PROCESSING_CODE = "500.001.1001"


@dataclass(frozen=True)
class StkPushResult:
    request_id: str
    merchant_request_id: str
    response_code: str
    customer_message: str


@dataclass(frozen=True)
class StkStatus:
    request_id: str
    result_code: Optional[int]
    result_desc: str
    raw: Dict[str, Any]

    @property
    def is_final(self) -> bool:
        return self.result_code is not None


class PaymentProvider(Protocol):
    def initiate(self, phone: str, amount: Decimal, account_reference: str, description: str) -> StkPushResult:
        ...

    def query_status(self, request_id: str) -> StkStatus:
        ...


def _whole_shillings(amount: Decimal) -> int:
    # Daraja only accepts integer amounts.
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class DarajaClient:
    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        short_code: str,
        passkey: str,
        callback_url: str,
        environment: str = "sandbox",
        timeout_sec: float = 10.0,
        http: Optional[HttpClient] = None,
    ) -> None:
        base_url = SANDBOX_URL if environment == "sandbox" else PRODUCTION_URL
        self._http = http or HttpClient(base_url, timeout_sec=timeout_sec)
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._short_code = short_code
        self._passkey = passkey
        self._callback_url = callback_url
        self._token: Optional[str] = None
        self._token_expiry = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "DarajaClient":
        return cls(
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            short_code=settings.MPESA_BUSINESS_SHORT_CODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=settings.MPESA_CALLBACK_URL,
            environment=settings.MPESA_ENVIRONMENT,
            timeout_sec=settings.MPESA_HTTP_TIMEOUT,
        )

    # ---- auth ----
    def _access_token(self) -> str:
        with self._lock:
            if self._token and time.monotonic() < self._token_expiry:
                return self._token

            basic = base64.b64encode(f"{self._consumer_key}:{self._consumer_secret}".encode()).decode()
            try:
                data = self._http.get(
                    "/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    headers={"Authorization": f"Basic {basic}"},
                )
            except (HttpError, requests.RequestException) as exc:
                logger.error("daraja auth failed: %s", exc)
                raise ProviderError("Failed to authenticate with M-Pesa") from exc

            token = (data or {}).get("access_token") if isinstance(data, dict) else None
            if not token:
                raise ProviderError("M-Pesa auth response had no access_token", body=data)
            self._token = token
            self._token_expiry = time.monotonic() + TOKEN_TTL_SEC
            return token

    def _password(self, now: Optional[dt.datetime] = None) -> tuple[str, str]:
        timestamp = (now or dt.datetime.now()).strftime("%Y%m%d%H%M%S")
        raw = f"{self._short_code}{self._passkey}{timestamp}".encode()
        return base64.b64encode(raw).decode(), timestamp

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = self._access_token()
        return self._http.post(path, json_body=payload, headers={"Authorization": f"Bearer {token}"})

    # ---- Lipa Na M-Pesa Online ----
    def initiate(self, phone: str, amount: Decimal, account_reference: str, description: str) -> StkPushResult:
        password, timestamp = self._password()
        payload = {
            "BusinessShortCode": self._short_code,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": _whole_shillings(amount),
            "PartyA": phone,
            "PartyB": self._short_code,
            "PhoneNumber": phone,
            "CallBackURL": self._callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        try:
            data = self._post("/mpesa/stkpush/v1/processrequest", payload)
        except HttpError as exc:
            message = exc.body.get("errorMessage") if isinstance(exc.body, dict) else None
            logger.error("daraja stk push failed status=%s body=%s", exc.status, exc.body)
            raise ProviderError(message or "STK Push failed", status=exc.status, body=exc.body) from exc
        except requests.RequestException as exc:
            logger.error("daraja stk push unreachable: %s", exc)
            raise ProviderError("STK Push failed: M-Pesa unreachable") from exc

        request_id = (data or {}).get("CheckoutRequestID") if isinstance(data, dict) else None
        if not request_id or str(data.get("ResponseCode", "0")) != "0":
            raise ProviderError(
                (data or {}).get("ResponseDescription", "STK Push rejected") if isinstance(data, dict) else "STK Push rejected",
                body=data,
            )
        return StkPushResult(
            request_id=request_id,
            merchant_request_id=data.get("MerchantRequestID", ""),
            response_code=str(data.get("ResponseCode", "0")),
            customer_message=data.get("CustomerMessage", ""),
        )

    def query_status(self, request_id: str) -> StkStatus:
        password, timestamp = self._password()
        payload = {
            "BusinessShortCode": self._short_code,
            "Password": password,
            "Timestamp": timestamp,
            "CheckoutRequestID": request_id,
        }
        try:
            data = self._post("/mpesa/stkpushquery/v1/query", payload)
        except HttpError as exc:
            body = exc.body if isinstance(exc.body, dict) else {}
            if body.get("errorCode") == STILL_PROCESSING_CODE:
                return StkStatus(request_id, None, body.get("errorMessage", "The transaction is being processed"), body)
            logger.error("daraja stk query failed request_id=%s status=%s body=%s", request_id, exc.status, exc.body)
            raise ProviderError("STK Push query failed", status=exc.status, body=exc.body) from exc
        except requests.RequestException as exc:
            raise ProviderError("STK Push query failed: M-Pesa unreachable") from exc

        code = data.get("ResultCode") if isinstance(data, dict) else None
        return StkStatus(
            request_id=request_id,
            result_code=int(code) if code not in (None, "") else None,
            result_desc=(data or {}).get("ResultDesc", ""),
            raw=data or {},
        )

    # ---- C2B (Paybill / Till) ----
    def register_c2b_urls(self, validation_url: str, confirmation_url: str,
                          response_type: str = "Completed") -> Dict[str, Any]:
        payload = {
            "ShortCode": self._short_code,
            "ResponseType": response_type,
            "ConfirmationURL": confirmation_url,
            "ValidationURL": validation_url,
        }
        try:
            return self._post("/mpesa/c2b/v1/registerurl", payload)
        except (HttpError, requests.RequestException) as exc:
            logger.error("daraja c2b registration failed: %s", exc)
            raise ProviderError("C2B URL registration failed") from exc
