from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import get_fee_record, stk_callback_payload
from libs.errors import ProviderError
from payment_service.app.api import get_payment_service
from payment_service.app.fees import FeeService
from payment_service.app.fees_api import get_fee_service
from payment_service.app.main import create_app
from payment_service.app.reconciliation import PaymentService

ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


@pytest.fixture
def client(payment_db, provider, notifier):
    app = create_app()
    app.dependency_overrides[get_payment_service] = lambda: PaymentService(provider, notifier, payment_db)
    app.dependency_overrides[get_fee_service] = lambda: FeeService(notifier, payment_db)
    return TestClient(app)


def push(client, student, amount=5000):
    resp = client.post(
        "/mpesa/stk-push",
        json={"student_id": student["student_id"], "amount": amount, "phone_number": "0712345678"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_stk_push_then_callback_updates_balance(client, payment_db, student, notifier):
    pushed = push(client, student)
    assert pushed["phone_number"] == "254712345678"
    assert pushed["fee_record_id"] == student["fee_record_id"]

    resp = client.post("/mpesa/callback", json=stk_callback_payload(pushed["checkout_request_id"]))
    assert resp.status_code == 200
    assert resp.json() == ACCEPTED

    assert get_fee_record(payment_db, student["fee_record_id"]).balance == Decimal("10000.00")
    assert len(notifier.completed) == 1

    payments = client.get("/payments", params={"student_id": student["student_id"]}).json()
    assert payments["total"] == 1
    assert payments["payments"][0]["status"] == "COMPLETED"


def test_stk_push_errors_map_to_status_codes(client, provider, student):
    bad_phone = {"student_id": student["student_id"], "amount": 100, "phone_number": "123456789012345"}
    assert client.post("/mpesa/stk-push", json=bad_phone).status_code == 422

    zero = {"student_id": student["student_id"], "amount": 0, "phone_number": "0712345678"}
    assert client.post("/mpesa/stk-push", json=zero).status_code == 422

    missing = {"student_id": "missing", "amount": 100, "phone_number": "0712345678"}
    assert client.post("/mpesa/stk-push", json=missing).status_code == 404

    provider.initiate_error = ProviderError("STK Push failed", status=503)
    resp = client.post("/mpesa/stk-push", json={**missing, "student_id": student["student_id"]})
    assert resp.status_code == 502
    assert client.get("/payments").json()["total"] == 0


def test_callback_always_acknowledges(client, student):
    assert client.post("/mpesa/callback", json={"unexpected": True}).json() == ACCEPTED
    assert client.post("/mpesa/callback", json=stk_callback_payload("ws_CO_unknown")).json() == ACCEPTED


def test_c2b_confirmation_and_validation(client, payment_db, student):
    body = {
        "TransactionType": "Pay Bill",
        "TransID": "QKJ1ABC001",
        "TransTime": "20241017143015",
        "TransAmount": "3000.00",
        "BusinessShortCode": "600000",
        "BillRefNumber": student["admission_number"],
        "MSISDN": "254712345678",
        "FirstName": "Jane",
    }
    assert client.post("/mpesa/c2b/validation", json=body).json() == ACCEPTED
    assert client.post("/mpesa/c2b/confirmation", json=body).json() == ACCEPTED
    assert client.post("/mpesa/c2b/confirmation", json=body).json() == ACCEPTED
    assert client.post("/mpesa/c2b/confirmation", json={"garbage": 1}).json() == ACCEPTED

    assert get_fee_record(payment_db, student["fee_record_id"]).balance == Decimal("12000.00")
    assert client.get("/payments").json()["total"] == 1


def test_stk_status_and_reconcile(client, provider, student):
    pushed = push(client, student)
    resp = client.get(f"/mpesa/stk-status/{pushed['checkout_request_id']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "STILL_PENDING"
    assert body["payment"]["status"] == "PENDING"

    assert client.get("/mpesa/stk-status/ws_CO_unknown").status_code == 404

    report = client.post("/mpesa/reconcile", json={"older_than_minutes": 60}).json()
    assert report["checked"] == 0


def test_manual_payment_and_stats(client, payment_db, student):
    resp = client.post(
        "/payments",
        json={"student_id": student["student_id"], "amount": "2500", "method": "BANK_TRANSFER", "paid_by": "Parent"},
    )
    assert resp.status_code == 201
    assert resp.json()["payment"]["method"] == "BANK_TRANSFER"
    assert get_fee_record(payment_db, student["fee_record_id"]).balance == Decimal("12500.00")

    stats = client.get("/payments/stats").json()
    assert Decimal(str(stats["total_collected"])) == Decimal("2500")


def test_fee_endpoints(client, student, notifier):
    created = client.post(
        "/fees/records",
        json={"student_id": student["student_id"], "academic_year": "2024", "term": 2, "total_amount": "9000"},
    )
    assert created.status_code == 201
    assert created.json()["status"] == "PENDING"

    duplicate = client.post(
        "/fees/records",
        json={"student_id": student["student_id"], "academic_year": "2024", "term": 2, "total_amount": "9000"},
    )
    assert duplicate.status_code == 409

    records = client.get("/fees/records", params={"student_id": student["student_id"], "status": "PENDING"}).json()
    assert records["total"] == 2

    defaulters = client.get("/fees/defaulters").json()
    assert defaulters["total"] == 2
    assert Decimal(str(defaulters["total_outstanding"])) == Decimal("24000")

    assert client.post("/fees/mark-overdue").json()["count"] == 0
    assert client.post("/fees/reminders").json()["count"] == 2
    assert len(notifier.reminders) == 2


def test_health(client):
    assert client.get("/health").json()["service"] == "payment-service"


def test_db_modules_carry_their_docstrings():
    from payment_service.db import schema, seed

    assert schema.__doc__.strip().startswith("Tables owned by the Payment Service")
    assert seed.__doc__.strip().startswith("Seed data for Payment Service")
