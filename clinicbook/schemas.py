from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel
from pydantic.alias_generators import to_camel

from clinicbook.core.timeutils import as_utc

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class AppointmentResponse(CamelModel):
    id: str
    provider_id: str
    service_id: str
    start_time: UtcDatetime
    end_time: UtcDatetime
    status: str
    patient_name: str
    patient_email: str
    patient_phone: str
    custom_field_values: dict[str, str] | None = None
    reminder_sent: bool = False
    reminder_sent_at: UtcDatetime | None = None
    reschedule_reason: str | None = None
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None
    service_name: str | None = None
    provider_name: str | None = None
