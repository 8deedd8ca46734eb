from pydantic import BaseModel, Field
import uuid, datetime as dt

#payment_completed
class PaymentCompleted(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = "payment_completed"
    occurred_at: str = Field(default_factory=lambda: dt.datetime.utcnow().isoformat())
    payment_id: str
    student_id: str
    student_name: str
    phone: str | None = None
    amount: float
    method: str
    receipt_number: str
    mpesa_receipt_number: str | None = None
    fee_record_id: str | None = None
    new_balance: float | None = None

#payment_failed
class PaymentFailed(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = "payment_failed"
    occurred_at: str = Field(default_factory=lambda: dt.datetime.utcnow().isoformat())
    payment_id: str
    student_id: str
    phone: str | None = None
    amount: float
    reason_code: str | None = None
    reason_message: str | None = None
