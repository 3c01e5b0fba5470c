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
from clinicbook.store import StoreGateway  # noqa: E402

PROVIDER_ID = 'aaaaaaaaaaaaaaaaaaaaaaaa'
SERVICE_ID = 'bbbbbbbbbbbbbbbbbbbbbbbb'
UNOWNED_SERVICE_ID = 'dddddddddddddddddddddddd'

WEEKDAYS = [
    {'dayOfWeek': day, 'startTime': '09:00', 'endTime': '17:00', 'isOpen': True} for day in range(1, 6)
]


@pytest.fixture
def client():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    testing_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = testing_session()
    store = StoreGateway(session)
    with store.transaction():
        store.insert('providers', id=PROVIDER_ID, name='Dr. Ada Lovelace', services=[SERVICE_ID])
        store.insert('services', id=SERVICE_ID, name='General Consultation', duration=30, providers=[PROVIDER_ID])
        store.insert('services', id=UNOWNED_SERVICE_ID, name='Vaccination', duration=15, providers=[])
        store.insert('users', email='admin@clinic.com', hashed_password='unused', role='admin')
        store.insert('users', email='ada@clinic.com', hashed_password='unused', role='provider', provider_id=PROVIDER_ID)
        store.insert('users', email='staff@clinic.com', hashed_password='unused', role='staff')
    session.close()

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)


def auth(email: str, role: str, provider_id: str | None = None) -> dict:
    token = jwt_handler.create_access_token(email, role=role, providerId=provider_id)
    return {'Authorization': f'Bearer {token}'}


ADMIN = auth('admin@clinic.com', 'admin')
PROVIDER = auth('ada@clinic.com', 'provider', PROVIDER_ID)
STAFF = auth('staff@clinic.com', 'staff')


def test_services_are_public(client: TestClient) -> None:
    listing = client.get('/api/services')
    single = client.get(f'/api/services/{SERVICE_ID}')

    assert [service['name'] for service in listing.json()] == ['General Consultation', 'Vaccination']
    assert single.json()['providers'] == [PROVIDER_ID]
    assert client.get('/api/services/unknown').status_code == 404


def test_admin_creates_service_with_custom_fields(client: TestClient) -> None:
    response = client.post(
        '/api/services',
        json={
            'name': ' Health Screening ',
            'duration': 45,
            'customFields': [
                {'name': 'Allergies', 'type': 'Checkbox', 'order': 1},
                {'name': 'Insurer', 'type': 'select', 'options': ['Acme', 'Other'], 'required': True, 'order': 2},
            ],
        },
        headers=ADMIN,
    )

    assert response.status_code == 201
    body = response.json()
    assert body['name'] == 'Health Screening'
    assert body['customFields'][0]['type'] == 'checkbox'
    assert body['customFields'][1]['options'] == ['Acme', 'Other']

    trail = client.get(f"/api/audit/entity/{body['id']}", headers=ADMIN).json()
    assert trail[0]['action'] == 'create'


@pytest.mark.parametrize(
    'payload',
    [
        {'name': '', 'duration': 30},
        {'name': 'Scan', 'duration': 0},
        {'name': 'Scan', 'duration': 30, 'customFields': [{'name': 'Colour', 'type': 'colour'}]},
    ],
)
def test_create_service_validation(client: TestClient, payload: dict) -> None:
    response = client.post('/api/services', json=payload, headers=ADMIN)

    assert response.status_code == 400


def test_create_service_requires_admin(client: TestClient) -> None:
    response = client.post('/api/services', json={'name': 'Scan', 'duration': 30}, headers=PROVIDER)

    assert response.status_code == 403


def test_provider_manages_only_own_services(client: TestClient) -> None:
    own = client.patch(f'/api/services/{SERVICE_ID}', json={'duration': 40}, headers=PROVIDER)
    other = client.patch(f'/api/services/{UNOWNED_SERVICE_ID}', json={'duration': 20}, headers=PROVIDER)
    staff = client.patch(f'/api/services/{SERVICE_ID}', json={'duration': 20}, headers=STAFF)

    assert own.status_code == 200
    assert client.get(f'/api/services/{SERVICE_ID}').json()['duration'] == 40
    assert other.status_code == 403
    assert staff.status_code == 403

    trail = client.get(f'/api/audit/entity/{SERVICE_ID}', headers=ADMIN).json()
    assert trail[0]['changes'] == {'duration': {'before': 30, 'after': 40}}


def test_delete_service(client: TestClient) -> None:
    response = client.delete(f'/api/services/{UNOWNED_SERVICE_ID}', headers=ADMIN)

    assert response.status_code == 200
    assert client.get(f'/api/services/{UNOWNED_SERVICE_ID}').status_code == 404
    assert client.delete(f'/api/services/{UNOWNED_SERVICE_ID}', headers=ADMIN).status_code == 404


def test_providers_filtered_by_service(client: TestClient) -> None:
    created = client.post('/api/providers', json={'name': 'Dr. Alan Turing', 'email': 'ALAN@clinic.com'}, headers=ADMIN)

    everyone = client.get('/api/providers').json()
    offering = client.get('/api/providers', params={'serviceId': SERVICE_ID}).json()

    assert created.status_code == 201
    assert created.json()['email'] == 'alan@clinic.com'
    assert len(everyone) == 2
    assert [provider['id'] for provider in offering] == [PROVIDER_ID]


def test_provider_crud_requires_admin(client: TestClient) -> None:
    assert client.post('/api/providers', json={'name': 'Dr. Who'}, headers=STAFF).status_code == 403
    assert client.patch(f'/api/providers/{PROVIDER_ID}', json={'phone': '555'}, headers=ADMIN).status_code == 200
    assert client.get(f'/api/providers/{PROVIDER_ID}').json()['phone'] == '555'
    assert client.delete('/api/providers/unknown', headers=ADMIN).status_code == 404


def test_availability_upsert_and_read(client: TestClient) -> None:
    assert client.get(f'/api/providers/{PROVIDER_ID}/availability').status_code == 404

    created = client.patch(
        f'/api/providers/{PROVIDER_ID}/availability',
        json={'businessHours': WEEKDAYS, 'blockedDates': ['2030-01-14', '2030-01-14', '2030-01-01']},
        headers=ADMIN,
    )
    updated = client.patch(
        f'/api/providers/{PROVIDER_ID}/availability',
        json={'businessHours': WEEKDAYS[:1], 'blockedDates': []},
        headers=ADMIN,
    )

    assert created.status_code == 200
    assert updated.status_code == 200
    availability = client.get(f'/api/providers/{PROVIDER_ID}/availability').json()
    assert availability['businessHours'] == WEEKDAYS[:1]
    assert availability['blockedDates'] == []

    logs = client.get('/api/audit/logs', params={'action': 'updateAvailability'}, headers=ADMIN).json()
    assert logs['total'] == 2


def test_availability_blocked_dates_are_deduplicated(client: TestClient) -> None:
    client.patch(
        f'/api/providers/{PROVIDER_ID}/availability',
        json={'businessHours': WEEKDAYS, 'blockedDates': ['2030-01-14', '2030-01-14', '2030-01-01']},
        headers=ADMIN,
    )

    availability = client.get(f'/api/providers/{PROVIDER_ID}/availability').json()

    assert availability['blockedDates'] == ['2030-01-01', '2030-01-14']


@pytest.mark.parametrize(
    'business_hours',
    [
        [{'dayOfWeek': 7, 'startTime': '09:00', 'endTime': '17:00', 'isOpen': True}],
        [{'dayOfWeek': 1, 'startTime': '17:00', 'endTime': '09:00', 'isOpen': True}],
        [{'dayOfWeek': 1, 'startTime': '9:00', 'endTime': '17:00', 'isOpen': True}],
        WEEKDAYS + WEEKDAYS[:1],
    ],
)
def test_availability_validation(client: TestClient, business_hours: list) -> None:
    response = client.patch(
        f'/api/providers/{PROVIDER_ID}/availability',
        json={'businessHours': business_hours},
        headers=ADMIN,
    )

    assert response.status_code == 400


def test_availability_for_unknown_provider(client: TestClient) -> None:
    response = client.patch('/api/providers/unknown/availability', json={'businessHours': []}, headers=ADMIN)

    assert response.status_code == 404
