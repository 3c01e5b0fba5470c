import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinicbook.auth import jwt_handler  # noqa: E402
from clinicbook.database import Base, get_db  # noqa: E402
from clinicbook.main import app  # noqa: E402
from clinicbook.runtime import get_scheduler  # noqa: E402
from clinicbook.store import StoreGateway  # noqa: E402

PROVIDER_ID = 'aaaaaaaaaaaaaaaaaaaaaaaa'
OTHER_PROVIDER_ID = 'cccccccccccccccccccccccc'
SERVICE_ID = 'bbbbbbbbbbbbbbbbbbbbbbbb'


class StubScheduler:
    def __init__(self) -> None:
        self.scheduled = []
        self.cancelled = []

    def schedule_for_appointment(self, appointment_id, start_time) -> bool:
        self.scheduled.append(appointment_id)
        return True

    def cancel_reminder(self, appointment_id) -> int:
        self.cancelled.append(appointment_id)
        return 1

    def reminder_stats(self) -> dict:
        return {'total': 3, 'sent': 2, 'failed': 1}


@pytest.fixture
def scheduler():
    return StubScheduler()


@pytest.fixture
def client(scheduler):
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = testing_session()
    store = StoreGateway(session)
    with store.transaction():
        store.insert('providers', id=PROVIDER_ID, name='Dr. Ada Lovelace', services=[SERVICE_ID])
        store.insert('providers', id=OTHER_PROVIDER_ID, name='Dr. Alan Turing', services=[SERVICE_ID])
        store.insert('services', id=SERVICE_ID, name='General Consultation', duration=30)
        store.insert('users', email='admin@clinic.com', hashed_password='unused', role='admin')
        store.insert('users', email='staff@clinic.com', hashed_password='unused', role='staff')
        store.insert('users', email='ada@clinic.com', hashed_password='unused', role='provider', provider_id=PROVIDER_ID)
    session.close()

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)


def auth(email: str, role: str, provider_id: str | None = None) -> dict:
    token = jwt_handler.create_access_token(email, role=role, providerId=provider_id)
    return {'Authorization': f'Bearer {token}'}


ADMIN = auth('admin@clinic.com', 'admin')
STAFF = auth('staff@clinic.com', 'staff')
PROVIDER = auth('ada@clinic.com', 'provider', PROVIDER_ID)


def book(client: TestClient, provider_id: str = PROVIDER_ID, hour: int = 10, email: str = 'grace@example.com') -> str:
    response = client.post(
        '/api/appointments',
        json={
            'serviceId': SERVICE_ID,
            'providerId': provider_id,
            'startTime': f'2030-01-07T{hour:02d}:00:00Z',
            'endTime': f'2030-01-07T{hour:02d}:30:00Z',
            'patientName': 'Grace Hopper',
            'patientEmail': email,
            'patientPhone': '+15551234567',
        },
    )
    assert response.status_code == 201
    return response.json()['appointmentId']


def test_admin_endpoints_require_staff_token(client: TestClient) -> None:
    assert client.get('/api/admin/appointments').status_code == 401
    assert client.get('/api/admin/stats', headers={'Authorization': 'Bearer nope'}).status_code == 401


def test_list_appointments_filters_and_paginates(client: TestClient) -> None:
    first = book(client, hour=9)
    book(client, hour=10, email='alan@example.com')
    book(client, provider_id=OTHER_PROVIDER_ID, hour=9)
    client.patch(f'/api/admin/appointments/{first}/status', json={'status': 'confirmed'}, headers=ADMIN)

    everything = client.get('/api/admin/appointments', headers=STAFF).json()
    confirmed = client.get('/api/admin/appointments', params={'status': 'confirmed'}, headers=STAFF).json()
    page = client.get('/api/admin/appointments', params={'limit': 1, 'skip': 1, 'providerId': PROVIDER_ID}, headers=ADMIN).json()

    assert everything['total'] == 3
    assert everything['limit'] == 50
    assert [appointment['id'] for appointment in confirmed['appointments']] == [first]
    assert page['total'] == 2
    assert [appointment['id'] for appointment in page['appointments']] == [first]


def test_provider_sees_only_own_appointments(client: TestClient) -> None:
    own = book(client)
    book(client, provider_id=OTHER_PROVIDER_ID)

    listing = client.get(
        '/api/admin/appointments', params={'providerId': OTHER_PROVIDER_ID}, headers=PROVIDER
    ).json()
    stats = client.get('/api/admin/stats', headers=PROVIDER).json()

    assert [appointment['id'] for appointment in listing['appointments']] == [own]
    assert stats['totalAppointments'] == 1


def test_stats_counts_statuses_and_patients(client: TestClient) -> None:
    first = book(client, hour=9)
    book(client, hour=10)
    book(client, hour=11, email='alan@example.com')
    client.patch(f'/api/admin/appointments/{first}/status', json={'status': 'confirmed'}, headers=ADMIN)

    stats = client.get('/api/admin/stats', headers=STAFF).json()

    assert stats == {
        'totalAppointments': 3,
        'pendingAppointments': 2,
        'confirmedAppointments': 1,
        'totalPatients': 2,
    }


def test_status_change_is_audited(client: TestClient, scheduler: StubScheduler) -> None:
    appointment_id = book(client)

    confirmed = client.patch(f'/api/admin/appointments/{appointment_id}/status', json={'status': 'confirmed'}, headers=ADMIN)
    cancelled = client.patch(f'/api/admin/appointments/{appointment_id}/status', json={'status': 'cancelled'}, headers=ADMIN)
    refused = client.patch(f'/api/admin/appointments/{appointment_id}/status', json={'status': 'confirmed'}, headers=ADMIN)

    assert confirmed.status_code == 200
    assert cancelled.status_code == 200
    assert refused.status_code == 400
    assert refused.json()['detail']['code'] == 'INVALID_STATUS_TRANSITION'
    assert scheduler.cancelled == [appointment_id]

    trail = client.get(f'/api/audit/entity/{appointment_id}', headers=STAFF).json()
    assert [entry['status'] for entry in trail].count('failure') == 1
    success = [entry for entry in trail if entry['status'] == 'success']
    assert {entry['changes']['status']['after'] for entry in success} == {'confirmed', 'cancelled'}
    assert all(entry['userEmail'] == 'admin@clinic.com' for entry in trail)


def test_provider_cannot_change_other_providers_appointment(client: TestClient) -> None:
    other = book(client, provider_id=OTHER_PROVIDER_ID)

    response = client.patch(f'/api/admin/appointments/{other}/status', json={'status': 'confirmed'}, headers=PROVIDER)

    assert response.status_code == 403


def test_reschedule_moves_appointment(client: TestClient, scheduler: StubScheduler) -> None:
    appointment_id = book(client)

    response = client.patch(
        f'/api/admin/appointments/{appointment_id}/reschedule',
        json={'newStartTime': '2030-01-08T14:00:00Z', 'newEndTime': '2030-01-08T14:30:00Z', 'reason': 'Clinic closed'},
        headers=STAFF,
    )

    assert response.status_code == 200
    appointment = client.get(f'/api/appointments/{appointment_id}').json()
    assert appointment['startTime'] == '2030-01-08T14:00:00Z'
    assert appointment['rescheduleReason'] == 'Clinic closed'
    assert scheduler.scheduled[-1] == appointment_id

    logs = client.get('/api/audit/logs', params={'action': 'reschedule'}, headers=ADMIN).json()
    assert logs['total'] == 1
    assert logs['logs'][0]['changes']['startTime']['after'] == '2030-01-08T14:00:00'


def test_reschedule_into_taken_slot_conflicts(client: TestClient) -> None:
    first = book(client, hour=9)
    book(client, hour=10)

    response = client.patch(
        f'/api/admin/appointments/{first}/reschedule',
        json={'newStartTime': '2030-01-07T10:10:00Z', 'newEndTime': '2030-01-07T10:40:00Z'},
        headers=ADMIN,
    )

    assert response.status_code == 409
    assert response.json()['detail']['code'] == 'DOUBLE_BOOKING'

    logs = client.get('/api/audit/logs', params={'action': 'reschedule'}, headers=ADMIN).json()
    assert logs['total'] == 1
    assert logs['logs'][0]['status'] == 'failure'
    assert logs['logs'][0]['entityId'] == first
    assert logs['logs'][0]['errorMessage'].startswith('This time slot is no longer available')


def test_audit_summary_and_user_activity(client: TestClient) -> None:
    appointment_id = book(client)
    client.patch(f'/api/admin/appointments/{appointment_id}/status', json={'status': 'confirmed'}, headers=ADMIN)
    client.patch(f'/api/admin/appointments/{appointment_id}/status', json={'status': 'pending'}, headers=STAFF)
    admin_id = client.get('/api/auth/me', headers=ADMIN).json()['id']

    summary = client.get('/api/audit/summary', headers=ADMIN).json()
    activity = client.get(f'/api/audit/user/{admin_id}', headers=ADMIN).json()

    assert summary['totalActions'] == 2
    assert summary['failedActions'] == 1
    assert summary['actionsByType'] == [{'key': 'updateStatus', 'count': 2}]
    assert activity['total'] == 1
    assert client.get('/api/audit/summary', headers=STAFF).status_code == 403


def test_reminder_stats_and_notification_logs(client: TestClient) -> None:
    stats = client.get('/api/notifications/reminders/stats', headers=STAFF)
    logs = client.get('/api/notifications/logs', headers=ADMIN)

    assert stats.json() == {'total': 3, 'sent': 2, 'failed': 1}
    assert logs.status_code == 200
    assert logs.json() == []
    assert client.get('/api/notifications/logs', headers=PROVIDER).status_code == 403


def test_reminder_stats_unavailable_without_scheduler(client: TestClient) -> None:
    app.dependency_overrides[get_scheduler] = lambda: None

    response = client.get('/api/notifications/reminders/stats', headers=ADMIN)

    assert response.status_code == 503
