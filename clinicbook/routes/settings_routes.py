from fastapi import APIRouter, Depends, Request
from pydantic import Field, field_validator

from clinicbook.audit import detect_changes, log_audit_action
from clinicbook.auth.dependencies import require_roles
from clinicbook.booking.slots import parse_time_of_day
from clinicbook.clinic_settings import (
    PUBLIC_SETTINGS_FIELDS,
    get_or_create_settings,
    load_notification_settings,
    read_settings,
    settings_values,
)
from clinicbook.core.timeutils import get_zone
from clinicbook.models.settings import DEFAULT_SETTINGS
from clinicbook.models.user import User
from clinicbook.schemas import CamelModel, UtcDatetime
from clinicbook.store import StoreGateway, get_store

router = APIRouter(tags=['settings'])


class PublicSettingsResponse(CamelModel):
    clinic_name: str
    clinic_email: str
    clinic_phone: str
    clinic_address: str
    clinic_website: str
    timezone: str
    business_hours_start: str
    business_hours_end: str


class SettingsResponse(PublicSettingsResponse):
    booking_approval_required: bool
    notifications_enabled: bool
    email_notifications_enabled: bool
    sms_notifications_enabled: bool
    reminder_hours_before: int
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None


class NotificationSettingsResponse(CamelModel):
    notifications_enabled: bool
    email_notifications_enabled: bool
    sms_notifications_enabled: bool
    reminder_hours_before: int
    booking_approval_required: bool


class SettingsUpdateRequest(CamelModel):
    clinic_name: str | None = None
    clinic_email: str | None = None
    clinic_phone: str | None = None
    clinic_address: str | None = None
    clinic_website: str | None = None
    timezone: str | None = None
    booking_approval_required: bool | None = None
    notifications_enabled: bool | None = None
    email_notifications_enabled: bool | None = None
    sms_notifications_enabled: bool | None = None
    reminder_hours_before: int | None = Field(default=None, ge=1, le=168)
    business_hours_start: str | None = None
    business_hours_end: str | None = None

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is not None:
            get_zone(value)
        return value

    @field_validator('business_hours_start', 'business_hours_end')
    @classmethod
    def validate_business_hours(cls, value: str | None) -> str | None:
        if value is not None:
            parse_time_of_day(value)
        return value


@router.get('', response_model=SettingsResponse)
def get_settings(
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    with store.transaction():
        settings = get_or_create_settings(store)
    return settings_values(settings)


@router.patch('', response_model=SettingsResponse)
def update_settings(
    data: SettingsUpdateRequest,
    request: Request,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    with store.transaction():
        settings = get_or_create_settings(store)
        before = settings_values(settings)
        store.update(settings, **updates)

    after = settings_values(settings)
    log_audit_action(
        store,
        action='update',
        entity_type='settings',
        entity_id=settings.id,
        entity_name=after['clinic_name'],
        changes=detect_changes(before, after, ignore_fields=('created_at', 'updated_at')),
        user=current_user,
        request=request,
    )
    return after


@router.get('/public', response_model=PublicSettingsResponse)
def get_public_settings(store: StoreGateway = Depends(get_store)):
    values = settings_values(read_settings(store))
    return {name: values[name] for name in PUBLIC_SETTINGS_FIELDS}


@router.get('/notifications', response_model=NotificationSettingsResponse)
def get_notification_settings(
    current_user: User = Depends(require_roles('admin', 'staff')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    snapshot = load_notification_settings(store)
    return NotificationSettingsResponse(
        notifications_enabled=snapshot.notifications_enabled,
        email_notifications_enabled=snapshot.email_enabled,
        sms_notifications_enabled=snapshot.sms_enabled,
        reminder_hours_before=snapshot.reminder_hours_before,
        booking_approval_required=snapshot.booking_approval_required,
    )


@router.post('/reset', response_model=SettingsResponse)
def reset_settings(
    request: Request,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    with store.transaction():
        settings = get_or_create_settings(store)
        store.update(settings, **DEFAULT_SETTINGS)

    log_audit_action(
        store,
        action='reset',
        entity_type='settings',
        entity_id=settings.id,
        entity_name=settings.clinic_name,
        user=current_user,
        request=request,
    )
    return settings_values(settings)
