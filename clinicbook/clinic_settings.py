"""Access to the single clinic settings record."""

from dataclasses import dataclass

from clinicbook.models.settings import DEFAULT_SETTINGS, ClinicSettings
from clinicbook.store import StoreGateway

PUBLIC_SETTINGS_FIELDS = (
    'clinic_name',
    'clinic_email',
    'clinic_phone',
    'clinic_address',
    'clinic_website',
    'timezone',
    'business_hours_start',
    'business_hours_end',
)


@dataclass(frozen=True)
class NotificationSettings:
    notifications_enabled: bool = True
    email_enabled: bool = True
    sms_enabled: bool = True
    reminder_hours_before: int = DEFAULT_SETTINGS['reminder_hours_before']
    booking_approval_required: bool = False

    @property
    def channels(self) -> tuple[str, ...]:
        if not self.notifications_enabled:
            return ()
        enabled = []
        if self.email_enabled:
            enabled.append('email')
        if self.sms_enabled:
            enabled.append('sms')
        return tuple(enabled)

    @property
    def reminder_type(self) -> str | None:
        channels = self.channels
        if len(channels) == 2:
            return 'both'
        return channels[0] if channels else None


def read_settings(store: StoreGateway) -> ClinicSettings | None:
    return store.find_one('settings', order_by='created_at')


def get_or_create_settings(store: StoreGateway) -> ClinicSettings:
    settings = read_settings(store)
    if settings is None:
        settings = store.insert('settings', **DEFAULT_SETTINGS)
    return settings


def settings_values(settings: ClinicSettings | None) -> dict:
    values = dict(DEFAULT_SETTINGS)
    if settings is None:
        return values
    for name in DEFAULT_SETTINGS:
        current = getattr(settings, name)
        if current is not None:
            values[name] = current
    values['created_at'] = settings.created_at
    values['updated_at'] = settings.updated_at
    return values


def load_notification_settings(store: StoreGateway) -> NotificationSettings:
    values = settings_values(read_settings(store))
    return NotificationSettings(
        notifications_enabled=values['notifications_enabled'],
        email_enabled=values['email_notifications_enabled'],
        sms_enabled=values['sms_notifications_enabled'],
        reminder_hours_before=values['reminder_hours_before'],
        booking_approval_required=values['booking_approval_required'],
    )


def clinic_timezone(store: StoreGateway) -> str:
    return settings_values(read_settings(store))['timezone']
