"""Demo data for a fresh installation."""

import logging

from fastapi import APIRouter, Depends

from clinicbook.auth.passwords import hash_password
from clinicbook.core import config
from clinicbook.core.errors import Forbidden
from clinicbook.store import StoreGateway, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=['init'])

DEMO_ADMIN_EMAIL = 'admin@clinic.com'
DEMO_PROVIDER_EMAIL = 'dr.smith@clinic.com'

DEMO_SERVICES = [
    {
        'name': 'General Consultation',
        'description': 'Standard medical consultation with healthcare provider',
        'duration': 30,
        'custom_fields': [
            {'name': 'Chief Complaint', 'type': 'text', 'required': True, 'order': 1},
            {'name': 'Additional Notes', 'type': 'textarea', 'required': False, 'order': 2},
        ],
    },
    {
        'name': 'Follow-up Visit',
        'description': 'Follow-up consultation for existing patients',
        'duration': 20,
        'custom_fields': [
            {'name': 'Previous Visit Date', 'type': 'text', 'required': True, 'order': 1},
        ],
    },
    {
        'name': 'Health Screening',
        'description': 'Comprehensive health check-up and screening',
        'duration': 45,
        'custom_fields': [
            {'name': 'Do you have any allergies?', 'type': 'checkbox', 'required': False, 'order': 1},
            {'name': 'Current Medications', 'type': 'textarea', 'required': False, 'order': 2},
        ],
    },
]

WEEKDAY_HOURS = [
    {'dayOfWeek': day, 'startTime': '09:00', 'endTime': '17:00', 'isOpen': True} for day in range(1, 6)
] + [
    {'dayOfWeek': day, 'startTime': '00:00', 'endTime': '00:00', 'isOpen': False} for day in (0, 6)
]


def seed_demo_data(store: StoreGateway) -> dict:
    with store.transaction():
        store.insert(
            'users',
            email=DEMO_ADMIN_EMAIL,
            hashed_password=hash_password(config.DEMO_ADMIN_PASSWORD),
            role='admin',
        )
        provider = store.insert(
            'providers',
            name='Dr. Sarah Smith',
            email=DEMO_PROVIDER_EMAIL,
            phone='+1 (555) 123-4567',
            speciality='General Medicine',
            services=[],
        )
        store.insert(
            'users',
            email=DEMO_PROVIDER_EMAIL,
            hashed_password=hash_password(config.DEMO_PROVIDER_PASSWORD),
            role='provider',
            provider_id=provider.id,
        )
        services = [store.insert('services', providers=[provider.id], **service) for service in DEMO_SERVICES]
        store.update(provider, services=[service.id for service in services])
        store.insert('availability', provider_id=provider.id, business_hours=WEEKDAY_HOURS, blocked_dates=[])

    logger.info('Seeded demo data with provider %s and %s services', provider.id, len(services))
    return {
        'success': True,
        'message': 'Database initialized successfully',
        'demo': {
            'adminEmail': DEMO_ADMIN_EMAIL,
            'adminPassword': config.DEMO_ADMIN_PASSWORD,
            'providerEmail': DEMO_PROVIDER_EMAIL,
            'providerPassword': config.DEMO_PROVIDER_PASSWORD,
        },
    }


@router.post('')
def initialize_database(store: StoreGateway = Depends(get_store)):
    if config.APP_ENV.lower() == 'production':
        raise Forbidden('Demo data cannot be seeded in production')
    if store.count('users') > 0:
        return {'success': True, 'message': 'Database already initialized'}
    return seed_demo_data(store)
