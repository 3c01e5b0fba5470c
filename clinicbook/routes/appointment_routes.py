from fastapi import APIRouter, Depends, Query, status
from pydantic import field_validator

from clinicbook.booking.appointments import (
    BookingRequest,
    book_appointment,
    cancel_patient_appointment,
    get_appointment_or_404,
)
from clinicbook.core.errors import ErrorCode, InvalidInput
from clinicbook.notifications.dispatcher import NotificationDispatcher
from clinicbook.runtime import get_dispatcher, get_scheduler
from clinicbook.scheduler import ReminderScheduler
from clinicbook.schemas import AppointmentResponse, CamelModel, MessageResponse, UtcDatetime
from clinicbook.store import StoreGateway, field, get_store

router = APIRouter(tags=['appointments'])

BOOKING_MESSAGE = 'Appointment booked successfully. You will receive a confirmation email shortly.'


class BookAppointmentRequest(CamelModel):
    service_id: str
    provider_id: str
    start_time: UtcDatetime
    end_time: UtcDatetime
    patient_name: str
    patient_email: str
    patient_phone: str
    custom_field_values: dict[str, str] | None = None

    @field_validator('patient_email')
    @classmethod
    def normalize_patient_email(cls, value: str) -> str:
        return value.strip().lower()


class BookAppointmentResponse(MessageResponse):
    appointment_id: str


def with_names(store: StoreGateway, appointments) -> list[AppointmentResponse]:
    services: dict[str, str] = {}
    providers: dict[str, str] = {}
    results = []

    for appointment in appointments:
        if appointment.service_id not in services:
            service = store.get('services', appointment.service_id)
            services[appointment.service_id] = service.name if service else 'Unknown Service'
        if appointment.provider_id not in providers:
            provider = store.get('providers', appointment.provider_id)
            providers[appointment.provider_id] = provider.name if provider else 'Unknown Provider'

        response = AppointmentResponse.model_validate(appointment)
        response.service_name = services[appointment.service_id]
        response.provider_name = providers[appointment.provider_id]
        results.append(response)

    return results


@router.post('', response_model=BookAppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: BookAppointmentRequest,
    store: StoreGateway = Depends(get_store),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
    scheduler: ReminderScheduler | None = Depends(get_scheduler),
):
    appointment = book_appointment(
        store,
        BookingRequest(
            provider_id=data.provider_id,
            service_id=data.service_id,
            start_time=data.start_time,
            end_time=data.end_time,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            custom_field_values=data.custom_field_values,
        ),
        dispatcher=dispatcher,
        scheduler=scheduler,
    )
    return BookAppointmentResponse(appointment_id=appointment.id, message=BOOKING_MESSAGE)


@router.get('/by-email', response_model=list[AppointmentResponse])
def list_appointments_by_email(
    email: str | None = Query(default=None),
    store: StoreGateway = Depends(get_store),
):
    normalized_email = (email or '').strip().lower()
    if not normalized_email:
        raise InvalidInput('Email parameter is required', code=ErrorCode.MISSING_REQUIRED_FIELD)

    appointments = store.find(
        'appointments',
        field('patient_email').eq(normalized_email),
        order_by='start_time',
        descending=True,
    )
    return with_names(store, appointments)


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: str, store: StoreGateway = Depends(get_store)):
    return get_appointment_or_404(store, appointment_id)


@router.delete('/{appointment_id}', response_model=MessageResponse)
def cancel_my_appointment(
    appointment_id: str,
    patient_email: str = Query(default='', alias='patientEmail'),
    store: StoreGateway = Depends(get_store),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
    scheduler: ReminderScheduler | None = Depends(get_scheduler),
):
    cancel_patient_appointment(store, appointment_id, patient_email, dispatcher=dispatcher, scheduler=scheduler)
    return MessageResponse(message='Appointment cancelled')
