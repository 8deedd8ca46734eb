"""
Shapes of the payloads Safaricom posts back to us, and how we read them.
"""
from __future__ import annotations

import datetime as dt
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MPESA_RESULT_CODES: Dict[int, str] = {
    0: "Success",
    1: "Insufficient Funds",
    2: "Less Than Minimum Transaction Value",
    3: "More Than Maximum Transaction Value",
    4: "Would Exceed Daily Transfer Limit",
    5: "Would Exceed Minimum Balance",
    6: "Unresolved Primary Party",
    7: "Unresolved Receiver Party",
    8: "Would Exceed Maximum Balance",
    11: "Debit Account Invalid",
    12: "Credit Account Invalid",
    13: "Unresolved Debit Account",
    14: "Unresolved Credit Account",
    15: "Duplicate Detected",
    17: "Internal Failure",
    20: "Unresolved Initiator",
    26: "Traffic Blocking Condition In Place",
    1032: "Request cancelled by user",
    1037: "DS timeout",
    2001: "Wrong PIN",
}

SUCCESS = 0

_TS_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})$")


def result_message(code: int) -> str:
    return MPESA_RESULT_CODES.get(code, "Unknown error")


def parse_mpesa_timestamp(value: Optional[str]) -> Optional[dt.datetime]:
    """Daraja timestamps look like 20241017143015 (YYYYMMDDHHMMSS)."""
    if not value:
        return None
    match = _TS_RE.match(str(value).strip())
    if not match:
        return None
    try:
        return dt.datetime(*(int(g) for g in match.groups()))
    except ValueError:
        return None


# ---- STK push result callback ----

class _MetadataItem(BaseModel):
    Name: str
    Value: Any = None


class _CallbackMetadata(BaseModel):
    Item: List[_MetadataItem] = []


class _StkCallback(BaseModel):
    MerchantRequestID: str = ""
    CheckoutRequestID: str
    ResultCode: int
    ResultDesc: str = ""
    CallbackMetadata: Optional[_CallbackMetadata] = None


class _StkBody(BaseModel):
    stkCallback: _StkCallback


class StkCallbackEnvelope(BaseModel):
    Body: _StkBody


class ParsedStkCallback(BaseModel):
    merchant_request_id: str = ""
    checkout_request_id: str
    result_code: int
    result_desc: str = ""
    amount: Optional[Decimal] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[dt.datetime] = None
    phone_number: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == SUCCESS


def parse_stk_callback(payload: Dict[str, Any]) -> ParsedStkCallback:
    """Flattens the STK callback; metadata is only read on success."""
    cb = StkCallbackEnvelope.model_validate(payload).Body.stkCallback
    parsed = ParsedStkCallback(
        merchant_request_id=cb.MerchantRequestID,
        checkout_request_id=cb.CheckoutRequestID,
        result_code=cb.ResultCode,
        result_desc=cb.ResultDesc,
    )
    if cb.ResultCode == SUCCESS and cb.CallbackMetadata:
        for item in cb.CallbackMetadata.Item:
            if item.Value is None:
                continue
            if item.Name == "Amount":
                parsed.amount = Decimal(str(item.Value))
            elif item.Name == "MpesaReceiptNumber":
                parsed.mpesa_receipt_number = str(item.Value)
            elif item.Name == "TransactionDate":
                parsed.transaction_date = parse_mpesa_timestamp(str(item.Value))
            elif item.Name == "PhoneNumber":
                parsed.phone_number = str(item.Value)
    return parsed


# ---- C2B (paybill / till) ----

class C2BConfirmation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    TransactionType: str = ""
    TransID: str
    TransTime: str = ""
    TransAmount: Decimal
    BusinessShortCode: str = ""
    BillRefNumber: str = Field(default="", description="Student admission number")
    InvoiceNumber: Optional[str] = None
    OrgAccountBalance: Optional[str] = None
    ThirdPartyTransID: Optional[str] = None
    MSISDN: str = ""
    FirstName: Optional[str] = None
    MiddleName: Optional[str] = None
    LastName: Optional[str] = None

    @property
    def payer_name(self) -> str:
        parts = [p for p in (self.FirstName, self.MiddleName, self.LastName) if p]
        return " ".join(parts) or "Unknown"


ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}
C2B_INVALID_ACCOUNT = {"ResultCode": "C2B00012", "ResultDesc": "Rejected"}
