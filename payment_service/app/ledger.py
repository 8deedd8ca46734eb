"""
Fee ledger arithmetic.

`apply_payment` is the only way a FeeRecord's paid amount, balance and
status change. It must run inside the same transaction that writes the
payment's status.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from libs.errors import ValidationError
from payment_service.app.enums import FeeStatus

Amount = Union[Decimal, int, str]


def to_money(value: Amount) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class FeeLedgerEntry:
    fee_record_id: str
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: FeeStatus


@dataclass(frozen=True)
class LedgerUpdate:
    paid_amount: Decimal
    balance: Decimal
    status: FeeStatus


def apply_payment(record: FeeLedgerEntry, amount: Amount) -> LedgerUpdate:
    """
    paid' = paid + amount, balance' = total - paid'. An overpayment keeps its
    negative balance (owed back to the payer) while the status settles on PAID.
    """
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError(f"Payment amount must be positive, got {amount}")

    paid = to_money(record.paid_amount) + amount
    balance = to_money(record.total_amount) - paid
    status = FeeStatus.PAID if balance <= 0 else FeeStatus.PARTIAL
    return LedgerUpdate(paid_amount=paid, balance=balance, status=status)
