from pydantic import BaseModel, Field
import uuid, datetime as dt

#fee_reminder
class FeeReminderRequested(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str = "fee_reminder"
    occurred_at: str = Field(default_factory=lambda: dt.datetime.utcnow().isoformat())
    fee_record_id: str
    student_id: str
    student_name: str
    admission_number: str
    phone: str
    balance: float
    academic_year: str | None = None
    term: int | None = None
