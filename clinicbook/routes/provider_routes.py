from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import Field, field_validator, model_validator

from clinicbook.audit import detect_changes, log_audit_action
from clinicbook.auth.dependencies import require_roles
from clinicbook.booking.slots import find_availability, parse_time_of_day
from clinicbook.core.errors import NotFound
from clinicbook.models.provider import Provider
from clinicbook.models.user import User
from clinicbook.schemas import CamelModel, MessageResponse
from clinicbook.store import StoreGateway, field, get_store

router = APIRouter(tags=['providers'])


class ProviderResponse(CamelModel):
    id: str
    name: str
    email: str | None = ''
    phone: str | None = ''
    speciality: str | None = ''
    services: list[str] = Field(default_factory=list)


class ProviderCreateRequest(CamelModel):
    name: str
    email: str = ''
    phone: str = ''
    speciality: str = ''
    services: list[str] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Provider name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ProviderUpdateRequest(CamelModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    speciality: str | None = None
    services: list[str] | None = None


class BusinessHours(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_open: bool

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    @model_validator(mode='after')
    def validate_open_range(self):
        if self.is_open and parse_time_of_day(self.start_time) >= parse_time_of_day(self.end_time):
            raise ValueError('Start time must be before end time on open days.')
        return self


class AvailabilityRequest(CamelModel):
    business_hours: list[BusinessHours] = Field(default_factory=list, max_length=7)
    blocked_dates: list[date] = Field(default_factory=list)

    @field_validator('business_hours')
    @classmethod
    def validate_unique_days(cls, value: list[BusinessHours]) -> list[BusinessHours]:
        days = [entry.day_of_week for entry in value]
        if len(days) != len(set(days)):
            raise ValueError('Each day of the week may appear at most once.')
        return value


class AvailabilityResponse(CamelModel):
    id: str
    provider_id: str
    business_hours: list[BusinessHours] = Field(default_factory=list)
    blocked_dates: list[str] = Field(default_factory=list)


def get_provider_or_404(store: StoreGateway, provider_id: str) -> Provider:
    provider = store.get('providers', provider_id)
    if provider is None:
        raise NotFound('Provider not found')
    return provider


@router.get('', response_model=list[ProviderResponse])
def list_providers(
    service_id: str | None = Query(default=None, alias='serviceId'),
    store: StoreGateway = Depends(get_store),
):
    providers = store.find('providers', order_by='name')
    if service_id:
        providers = [provider for provider in providers if service_id in (provider.services or [])]
    return providers


@router.get('/{provider_id}', response_model=ProviderResponse)
def get_provider(provider_id: str, store: StoreGateway = Depends(get_store)):
    return get_provider_or_404(store, provider_id)


@router.post('', response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
def create_provider(
    data: ProviderCreateRequest,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    with store.transaction():
        provider = store.insert('providers', **data.model_dump())
    return provider


@router.patch('/{provider_id}', response_model=MessageResponse)
def update_provider(
    provider_id: str,
    data: ProviderUpdateRequest,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    provider = get_provider_or_404(store, provider_id)
    with store.transaction():
        store.update(provider, **data.model_dump(exclude_unset=True))
    return MessageResponse(message='Provider updated')


@router.delete('/{provider_id}', response_model=MessageResponse)
def delete_provider(
    provider_id: str,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    provider = get_provider_or_404(store, provider_id)
    with store.transaction():
        store.delete(provider)
    return MessageResponse(message='Provider deleted')


@router.get('/{provider_id}/availability', response_model=AvailabilityResponse)
def get_provider_availability(provider_id: str, store: StoreGateway = Depends(get_store)):
    availability = find_availability(store, provider_id)
    if availability is None:
        raise NotFound('Availability not found')
    return availability


@router.patch('/{provider_id}/availability', response_model=MessageResponse)
def update_provider_availability(
    provider_id: str,
    data: AvailabilityRequest,
    request: Request,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    provider = get_provider_or_404(store, provider_id)
    values = {
        'business_hours': [entry.model_dump(by_alias=True) for entry in data.business_hours],
        'blocked_dates': sorted({blocked.isoformat() for blocked in data.blocked_dates}),
    }

    availability = store.find_one('availability', field('provider_id').eq(provider.id))
    before = {}
    with store.transaction():
        if availability is None:
            availability = store.insert('availability', provider_id=provider.id, **values)
        else:
            before = {'businessHours': availability.business_hours, 'blockedDates': availability.blocked_dates}
            store.update(availability, **values)

    log_audit_action(
        store,
        action='updateAvailability',
        entity_type='availability',
        entity_id=provider.id,
        entity_name=provider.name,
        changes=detect_changes(before, {'businessHours': values['business_hours'], 'blockedDates': values['blocked_dates']}),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Availability updated')
