"""Booking, rescheduling and status changes for appointments.

Each write runs in one store transaction together with the conflict guard's
reservation rows; notifications and reminder timers are triggered only after
the transaction has committed.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from clinicbook.booking.conflicts import BookingConflictGuard
from clinicbook.clinic_settings import load_notification_settings
from clinicbook.core import config
from clinicbook.core.errors import (
    DuplicateKey,
    ErrorCode,
    Forbidden,
    InvalidInput,
    NotFound,
    double_booking,
    invalid_status_transition,
)
from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import to_utc_naive, utcnow
from clinicbook.models.appointment import (
    ACTIVE_STATUSES,
    APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    Appointment,
)
from clinicbook.notifications.dispatcher import NotificationDispatcher, build_appointment_job
from clinicbook.scheduler import ReminderScheduler
from clinicbook.store import StoreGateway

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_PATTERN = re.compile(r'^[\d\s\-+()]+$')
MIN_PHONE_DIGITS = 10

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}


@dataclass
class BookingRequest:
    provider_id: str
    service_id: str
    start_time: datetime
    end_time: datetime
    patient_name: str
    patient_email: str
    patient_phone: str
    custom_field_values: dict[str, str] | None = None


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ''))


def is_valid_phone(value: str) -> bool:
    value = value or ''
    return bool(PHONE_PATTERN.match(value)) and len(re.sub(r'\D', '', value)) >= MIN_PHONE_DIGITS


def require_text(value: str | None, label: str) -> str:
    if value is None or not value.strip():
        raise InvalidInput(f'{label} is required', code=ErrorCode.MISSING_REQUIRED_FIELD, details={'field': label})
    return value.strip()


def validate_time_range(start_time: datetime, end_time: datetime) -> None:
    if start_time >= end_time:
        raise InvalidInput('End time must be after start time', details={'startTime': start_time.isoformat()})
    if end_time - start_time > timedelta(minutes=config.MAX_SLOT_DURATION_MINUTES):
        raise InvalidInput(
            f'Appointments cannot be longer than {config.MAX_SLOT_DURATION_MINUTES} minutes.',
            details={'field': 'endTime', 'maxMinutes': config.MAX_SLOT_DURATION_MINUTES},
        )


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, set())


def validate_booking(store: StoreGateway, request: BookingRequest, now: datetime | None = None) -> BookingRequest:
    patient_name = require_text(request.patient_name, 'Patient name')
    patient_email = require_text(request.patient_email, 'Patient email').lower()
    patient_phone = require_text(request.patient_phone, 'Patient phone')
    provider_id = require_text(request.provider_id, 'Provider ID')
    service_id = require_text(request.service_id, 'Service ID')

    if not is_valid_email(patient_email):
        raise InvalidInput('Patient email is not valid', code=ErrorCode.INVALID_EMAIL, details={'field': 'patientEmail'})
    if not is_valid_phone(patient_phone):
        raise InvalidInput(
            'Patient phone must be a valid phone number',
            code=ErrorCode.INVALID_PHONE,
            details={'field': 'patientPhone'},
        )

    start_time = to_utc_naive(request.start_time)
    end_time = to_utc_naive(request.end_time)
    validate_time_range(start_time, end_time)
    if start_time < (now or utcnow()):
        raise InvalidInput('Appointments must be scheduled in the future.', details={'field': 'startTime'})

    provider = store.get('providers', provider_id)
    if provider is None:
        raise NotFound('Provider not found')
    service = store.get('services', service_id)
    if service is None:
        raise NotFound('Service not found')

    return BookingRequest(
        provider_id=provider.id,
        service_id=service.id,
        start_time=start_time,
        end_time=end_time,
        patient_name=patient_name,
        patient_email=patient_email,
        patient_phone=patient_phone,
        custom_field_values=dict(request.custom_field_values or {}),
    )


def _notify(
    store: StoreGateway,
    dispatcher: NotificationDispatcher | None,
    appointment: Appointment,
    template_key: str,
    **extra: str,
) -> None:
    if dispatcher is None:
        return
    try:
        channels = load_notification_settings(store).channels
        if channels:
            dispatcher.enqueue(build_appointment_job(store, appointment, template_key, channels, **extra))
    except Exception:
        logger.exception('Could not queue %s notification for appointment %s', template_key, appointment.id)


def book_appointment(
    store: StoreGateway,
    request: BookingRequest,
    *,
    dispatcher: NotificationDispatcher | None = None,
    scheduler: ReminderScheduler | None = None,
    now: datetime | None = None,
) -> Appointment:
    booking = validate_booking(store, request, now=now)
    appointment_id = new_document_id()
    guard = BookingConflictGuard(store)

    try:
        with store.transaction():
            guard.check_and_reserve(booking.provider_id, booking.start_time, booking.end_time, appointment_id)
            appointment = store.insert(
                'appointments',
                id=appointment_id,
                provider_id=booking.provider_id,
                service_id=booking.service_id,
                start_time=booking.start_time,
                end_time=booking.end_time,
                status=STATUS_PENDING,
                patient_name=booking.patient_name,
                patient_email=booking.patient_email,
                patient_phone=booking.patient_phone,
                custom_field_values=booking.custom_field_values,
                reminder_sent=False,
            )
    except DuplicateKey as exc:
        raise double_booking() from exc

    logger.info('Booked appointment %s for provider %s at %s', appointment.id, appointment.provider_id, appointment.start_time)

    _notify(store, dispatcher, appointment, 'bookingPending')
    if scheduler is not None:
        scheduler.schedule_for_appointment(appointment.id, appointment.start_time)
    return appointment


def get_appointment_or_404(store: StoreGateway, appointment_id: str) -> Appointment:
    appointment = store.get('appointments', appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found')
    return appointment


def ensure_provider_scope(user, appointment: Appointment, verb: str) -> None:
    if user is not None and user.role == 'provider' and appointment.provider_id != user.provider_id:
        raise Forbidden(f'You can only {verb} your own appointments')


def reschedule_appointment(
    store: StoreGateway,
    appointment_id: str,
    new_start_time: datetime,
    new_end_time: datetime,
    *,
    reason: str | None = None,
    user=None,
    dispatcher: NotificationDispatcher | None = None,
    scheduler: ReminderScheduler | None = None,
) -> tuple[Appointment, dict]:
    """Move an active appointment; returns it with the before/after snapshot of the times."""
    appointment = get_appointment_or_404(store, appointment_id)
    ensure_provider_scope(user, appointment, 'reschedule')

    if appointment.status not in ACTIVE_STATUSES:
        raise InvalidInput(
            f'Cannot reschedule a {appointment.status} appointment.',
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={'status': appointment.status},
        )

    start_time = to_utc_naive(new_start_time)
    end_time = to_utc_naive(new_end_time)
    validate_time_range(start_time, end_time)

    before = {'startTime': appointment.start_time, 'endTime': appointment.end_time}
    guard = BookingConflictGuard(store)
    values = {'start_time': start_time, 'end_time': end_time, 'reminder_sent': False, 'reminder_sent_at': None}
    if reason and reason.strip():
        values['reschedule_reason'] = reason.strip()

    try:
        with store.transaction():
            guard.check_and_reserve(
                appointment.provider_id,
                start_time,
                end_time,
                appointment.id,
                exclude_id=appointment.id,
            )
            store.update(appointment, **values)
    except DuplicateKey as exc:
        raise double_booking() from exc

    logger.info('Rescheduled appointment %s to %s', appointment.id, start_time)

    _notify(
        store,
        dispatcher,
        appointment,
        'appointmentRescheduled',
        rescheduleReason=appointment.reschedule_reason or '',
    )
    if scheduler is not None:
        scheduler.schedule_for_appointment(appointment.id, appointment.start_time)
    return appointment, {'before': before, 'after': {'startTime': start_time, 'endTime': end_time}}


def update_appointment_status(
    store: StoreGateway,
    appointment_id: str,
    status: str,
    *,
    user=None,
    dispatcher: NotificationDispatcher | None = None,
    scheduler: ReminderScheduler | None = None,
) -> tuple[Appointment, str]:
    """Apply a status transition; returns the appointment and its previous status."""
    if status not in APPOINTMENT_STATUSES:
        raise InvalidInput('Invalid status', details={'status': status, 'allowed': list(APPOINTMENT_STATUSES)})

    appointment = get_appointment_or_404(store, appointment_id)
    ensure_provider_scope(user, appointment, 'update')

    previous = appointment.status
    if not can_transition(previous, status):
        raise invalid_status_transition(previous, status)

    guard = BookingConflictGuard(store)
    with store.transaction():
        store.update(appointment, status=status)
        if status not in ACTIVE_STATUSES:
            guard.release(appointment.id)

    logger.info('Appointment %s moved from %s to %s', appointment.id, previous, status)

    if status not in ACTIVE_STATUSES and scheduler is not None:
        scheduler.cancel_reminder(appointment.id)
    if previous == STATUS_PENDING and status == STATUS_CONFIRMED:
        _notify(store, dispatcher, appointment, 'bookingConfirmation')
    else:
        _notify(store, dispatcher, appointment, 'statusChanged', newStatus=status.capitalize())
    return appointment, previous


def cancel_patient_appointment(
    store: StoreGateway,
    appointment_id: str,
    patient_email: str,
    *,
    dispatcher: NotificationDispatcher | None = None,
    scheduler: ReminderScheduler | None = None,
) -> Appointment:
    normalized_email = (patient_email or '').strip().lower()
    if not normalized_email:
        raise InvalidInput('Patient email is required.', code=ErrorCode.MISSING_REQUIRED_FIELD)

    appointment = get_appointment_or_404(store, appointment_id)
    if (appointment.patient_email or '').strip().lower() != normalized_email:
        raise Forbidden('Only the patient who booked this appointment can cancel it.')

    if appointment.status == STATUS_CANCELLED:
        return appointment
    if not can_transition(appointment.status, STATUS_CANCELLED):
        raise invalid_status_transition(appointment.status, STATUS_CANCELLED)

    guard = BookingConflictGuard(store)
    with store.transaction():
        store.update(appointment, status=STATUS_CANCELLED)
        guard.release(appointment.id)

    logger.info('Patient cancelled appointment %s', appointment.id)

    if scheduler is not None:
        scheduler.cancel_reminder(appointment.id)
    _notify(store, dispatcher, appointment, 'statusChanged', newStatus=STATUS_CANCELLED.capitalize())
    return appointment
