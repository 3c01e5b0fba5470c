import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinicbook.booking.appointments import (  # noqa: E402
    BookingRequest,
    book_appointment,
    can_transition,
    cancel_patient_appointment,
    is_valid_email,
    is_valid_phone,
    reschedule_appointment,
    update_appointment_status,
)
from clinicbook.core.errors import ErrorCode  # noqa: E402
from clinicbook.database import Base  # noqa: E402
from clinicbook.store import StoreGateway, field  # noqa: E402

NOW = datetime(2030, 1, 1, 12, 0)
START = datetime(2030, 1, 7, 9, 0)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.jobs = []

    def enqueue(self, job) -> bool:
        self.jobs.append(job)
        return True


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled = []
        self.cancelled = []

    def schedule_for_appointment(self, appointment_id, start_time) -> bool:
        self.scheduled.append((appointment_id, start_time))
        return True

    def cancel_reminder(self, appointment_id) -> int:
        self.cancelled.append(appointment_id)
        return 1


class ProviderUser:
    role = 'provider'

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id


@pytest.fixture
def store():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    gateway = StoreGateway(db)
    gateway.insert('providers', id='provider-1', name='Dr. Ada Lovelace', email='ada@clinic.com')
    gateway.insert('services', id='service-1', name='General Consultation', duration=30)
    db.commit()
    try:
        yield gateway
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def make_request(**overrides) -> BookingRequest:
    values = {
        'provider_id': 'provider-1',
        'service_id': 'service-1',
        'start_time': START,
        'end_time': START + timedelta(minutes=30),
        'patient_name': 'Grace Hopper',
        'patient_email': 'Grace@Example.com',
        'patient_phone': '+1 (555) 123-4567',
    }
    values.update(overrides)
    return BookingRequest(**values)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [('grace@example.com', True), ('grace@example', False), ('grace example@x.io', False), ('', False)],
)
def test_is_valid_email(value: str, expected: bool) -> None:
    assert is_valid_email(value) is expected


@pytest.mark.parametrize(
    ('value', 'expected'),
    [('+1 (555) 123-4567', True), ('5551234567', True), ('555-1234', False), ('555-CALL-NOW1', False)],
)
def test_is_valid_phone(value: str, expected: bool) -> None:
    assert is_valid_phone(value) is expected


@pytest.mark.parametrize(
    ('current', 'requested', 'expected'),
    [
        ('pending', 'confirmed', True),
        ('pending', 'cancelled', True),
        ('confirmed', 'completed', True),
        ('confirmed', 'pending', False),
        ('cancelled', 'confirmed', False),
        ('completed', 'cancelled', False),
    ],
)
def test_can_transition(current: str, requested: str, expected: bool) -> None:
    assert can_transition(current, requested) is expected


def test_book_appointment_creates_pending_booking_and_notifies(store: StoreGateway) -> None:
    dispatcher = RecordingDispatcher()
    scheduler = RecordingScheduler()

    appointment = book_appointment(store, make_request(), dispatcher=dispatcher, scheduler=scheduler, now=NOW)

    assert appointment.status == 'pending'
    assert appointment.patient_email == 'grace@example.com'
    assert appointment.reminder_sent is False
    assert store.count('slot_reservations', field('appointment_id').eq(appointment.id)) == 30
    assert [job.template_key for job in dispatcher.jobs] == ['bookingPending']
    assert dispatcher.jobs[0].variables['serviceName'] == 'General Consultation'
    assert dispatcher.jobs[0].channels == ('email', 'sms')
    assert scheduler.scheduled == [(appointment.id, START)]


def test_book_appointment_converts_aware_times_to_utc(store: StoreGateway) -> None:
    eastern = timezone(timedelta(hours=-5))
    start = datetime(2030, 1, 7, 9, 0, tzinfo=eastern)

    appointment = book_appointment(
        store, make_request(start_time=start, end_time=start + timedelta(minutes=30)), now=NOW
    )

    assert appointment.start_time == datetime(2030, 1, 7, 14, 0)


@pytest.mark.parametrize(
    ('overrides', 'status_code', 'code'),
    [
        ({'patient_name': '  '}, 400, ErrorCode.MISSING_REQUIRED_FIELD),
        ({'patient_email': 'not-an-email'}, 400, ErrorCode.INVALID_EMAIL),
        ({'patient_phone': '12345'}, 400, ErrorCode.INVALID_PHONE),
        ({'end_time': START}, 400, ErrorCode.INVALID_INPUT),
        ({'end_time': START + timedelta(days=365)}, 400, ErrorCode.INVALID_INPUT),
        ({'start_time': NOW - timedelta(hours=1), 'end_time': NOW}, 400, ErrorCode.INVALID_INPUT),
        ({'provider_id': 'missing-provider'}, 404, ErrorCode.NOT_FOUND),
        ({'service_id': 'missing-service'}, 404, ErrorCode.NOT_FOUND),
    ],
)
def test_book_appointment_rejects_invalid_requests(store: StoreGateway, overrides, status_code, code) -> None:
    with pytest.raises(HTTPException) as exception_info:
        book_appointment(store, make_request(**overrides), now=NOW)

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail['code'] == code.value
    assert store.count('appointments') == 0


def test_second_overlapping_booking_is_rejected(store: StoreGateway) -> None:
    book_appointment(store, make_request(), now=NOW)

    with pytest.raises(HTTPException) as exception_info:
        book_appointment(
            store,
            make_request(patient_email='other@example.com', start_time=START + timedelta(minutes=15), end_time=START + timedelta(minutes=45)),
            now=NOW,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == ErrorCode.DOUBLE_BOOKING.value
    assert store.count('appointments') == 1


def test_update_status_to_cancelled_releases_interval(store: StoreGateway) -> None:
    scheduler = RecordingScheduler()
    dispatcher = RecordingDispatcher()
    appointment = book_appointment(store, make_request(), now=NOW)

    updated, previous = update_appointment_status(
        store, appointment.id, 'cancelled', dispatcher=dispatcher, scheduler=scheduler
    )

    assert previous == 'pending'
    assert updated.status == 'cancelled'
    assert store.count('slot_reservations') == 0
    assert scheduler.cancelled == [appointment.id]
    assert dispatcher.jobs[0].template_key == 'statusChanged'
    assert dispatcher.jobs[0].variables['newStatus'] == 'Cancelled'

    rebooked = book_appointment(store, make_request(patient_email='next@example.com'), now=NOW)
    assert rebooked.status == 'pending'


def test_update_status_rejects_invalid_transition(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)
    update_appointment_status(store, appointment.id, 'cancelled')

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(store, appointment.id, 'confirmed')

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == ErrorCode.INVALID_STATUS_TRANSITION.value


def test_update_status_rejects_unknown_status(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(store, appointment.id, 'archived')

    assert exception_info.value.status_code == 400


def test_confirming_a_pending_booking_sends_confirmation(store: StoreGateway) -> None:
    dispatcher = RecordingDispatcher()
    appointment = book_appointment(store, make_request(), now=NOW)

    update_appointment_status(store, appointment.id, 'confirmed', dispatcher=dispatcher)
    update_appointment_status(store, appointment.id, 'completed', dispatcher=dispatcher)

    assert [job.template_key for job in dispatcher.jobs] == ['bookingConfirmation', 'statusChanged']
    assert dispatcher.jobs[1].variables['newStatus'] == 'Completed'


def test_provider_cannot_update_another_providers_appointment(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(store, appointment.id, 'confirmed', user=ProviderUser('provider-2'))

    assert exception_info.value.status_code == 403


def test_reschedule_moves_booking_and_rearms_reminder(store: StoreGateway) -> None:
    scheduler = RecordingScheduler()
    dispatcher = RecordingDispatcher()
    appointment = book_appointment(store, make_request(), now=NOW)
    new_start = START + timedelta(minutes=15)

    moved, changes = reschedule_appointment(
        store,
        appointment.id,
        new_start,
        new_start + timedelta(minutes=30),
        reason='Provider running late',
        dispatcher=dispatcher,
        scheduler=scheduler,
    )

    assert moved.start_time == new_start
    assert moved.reschedule_reason == 'Provider running late'
    assert changes['before']['startTime'] == START
    assert changes['after']['startTime'] == new_start
    assert scheduler.scheduled == [(appointment.id, new_start)]
    assert dispatcher.jobs[0].template_key == 'appointmentRescheduled'
    assert dispatcher.jobs[0].variables['rescheduleReason'] == 'Provider running late'


def test_reschedule_onto_another_booking_is_rejected(store: StoreGateway) -> None:
    first = book_appointment(store, make_request(), now=NOW)
    book_appointment(
        store,
        make_request(patient_email='other@example.com', start_time=START + timedelta(hours=1), end_time=START + timedelta(hours=1, minutes=30)),
        now=NOW,
    )

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(store, first.id, START + timedelta(hours=1), START + timedelta(hours=1, minutes=30))

    assert exception_info.value.detail['code'] == ErrorCode.DOUBLE_BOOKING.value
    assert store.get('appointments', first.id).start_time == START


def test_reschedule_of_cancelled_appointment_is_rejected(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)
    update_appointment_status(store, appointment.id, 'cancelled')

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(store, appointment.id, START + timedelta(hours=2), START + timedelta(hours=3))

    assert exception_info.value.detail['code'] == ErrorCode.INVALID_STATUS_TRANSITION.value


def test_patient_cancel_requires_matching_email(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)

    with pytest.raises(HTTPException) as missing_email:
        cancel_patient_appointment(store, appointment.id, '  ')
    with pytest.raises(HTTPException) as wrong_email:
        cancel_patient_appointment(store, appointment.id, 'someone@example.com')
    with pytest.raises(HTTPException) as unknown_appointment:
        cancel_patient_appointment(store, 'does-not-exist', 'grace@example.com')

    assert missing_email.value.status_code == 400
    assert missing_email.value.detail['code'] == ErrorCode.MISSING_REQUIRED_FIELD.value
    assert wrong_email.value.status_code == 403
    assert unknown_appointment.value.status_code == 404


def test_patient_cancel_marks_cancelled_and_frees_slot(store: StoreGateway) -> None:
    scheduler = RecordingScheduler()
    appointment = book_appointment(store, make_request(), now=NOW)

    cancelled = cancel_patient_appointment(store, appointment.id, 'GRACE@example.com ', scheduler=scheduler)

    assert cancelled.status == 'cancelled'
    assert store.count('appointments') == 1
    assert store.count('slot_reservations') == 0
    assert scheduler.cancelled == [appointment.id]
    assert cancel_patient_appointment(store, appointment.id, 'grace@example.com').status == 'cancelled'


def test_reschedule_rejects_overlong_interval(store: StoreGateway) -> None:
    appointment = book_appointment(store, make_request(), now=NOW)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(store, appointment.id, START, START + timedelta(days=30))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == ErrorCode.INVALID_INPUT.value
    assert store.get('appointments', appointment.id).end_time == START + timedelta(minutes=30)
    assert store.count('slot_reservations') == 30
