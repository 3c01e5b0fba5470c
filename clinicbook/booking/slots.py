"""Open slot generation for one provider on one calendar day."""

import logging
import random
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from clinicbook.clinic_settings import clinic_timezone
from clinicbook.core import config
from clinicbook.core.errors import ErrorCode, InvalidInput, NotFound
from clinicbook.core.ids import normalize_document_id
from clinicbook.core.timeutils import get_zone, to_utc_naive
from clinicbook.models.appointment import ACTIVE_STATUSES
from clinicbook.models.availability import ProviderAvailability
from clinicbook.store import StoreGateway, field

logger = logging.getLogger(__name__)

_TIME_OF_DAY_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


@dataclass(frozen=True)
class TimeSlot:
    start_time: datetime
    end_time: datetime
    is_available: bool = True


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval intersection; touching endpoints do not overlap."""
    return start_a < end_b and end_a > start_b


def parse_time_of_day(value: str) -> time:
    match = _TIME_OF_DAY_PATTERN.match(value or '')
    if not match:
        raise ValueError(f'Invalid time of day {value!r}, expected HH:mm.')
    return time(int(match.group(1)), int(match.group(2)))


def sunday_based_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def business_hours_for(availability: ProviderAvailability, day: date) -> dict | None:
    weekday = sunday_based_weekday(day)
    for entry in availability.business_hours or []:
        if entry.get('dayOfWeek') == weekday:
            return entry
    return None


def day_window(day: date, hours: dict, timezone_name: str) -> tuple[datetime, datetime]:
    zone = get_zone(timezone_name)
    opens_at = datetime.combine(day, parse_time_of_day(hours['startTime']), tzinfo=zone)
    closes_at = datetime.combine(day, parse_time_of_day(hours['endTime']), tzinfo=zone)
    return to_utc_naive(opens_at), to_utc_naive(closes_at)


def iterate_candidate_slots(day_start: datetime, day_end: datetime, duration_minutes: int) -> list[TimeSlot]:
    step = timedelta(minutes=duration_minutes)
    candidates: list[TimeSlot] = []
    current = day_start

    while current + step <= day_end:
        candidates.append(TimeSlot(start_time=current, end_time=current + step))
        current += step

    return candidates


def validate_slot_query(provider_id: str | None, day: date | None, duration_minutes: int | None) -> None:
    missing = [
        name
        for name, value in (('providerId', (provider_id or '').strip()), ('date', day), ('duration', duration_minutes))
        if not value
    ]
    if missing:
        raise InvalidInput(
            'Missing required parameters: providerId, date, duration',
            code=ErrorCode.MISSING_REQUIRED_FIELD,
            details={'fields': missing},
        )
    if duration_minutes <= 0 or duration_minutes > config.MAX_SLOT_DURATION_MINUTES:
        raise InvalidInput(
            f'Duration must be between 1 and {config.MAX_SLOT_DURATION_MINUTES} minutes.',
            details={'duration': duration_minutes},
        )


def find_availability(store: StoreGateway, provider_id: str) -> ProviderAvailability | None:
    """Look up a provider's availability the same way ``store.get`` resolves ids."""
    raw = provider_id.strip()
    normalized = normalize_document_id(raw)
    availability = store.find_one('availability', field('provider_id').eq(normalized))
    if availability is None and normalized != raw:
        availability = store.find_one('availability', field('provider_id').eq(raw))
    return availability


def get_available_slots(
    store: StoreGateway,
    provider_id: str,
    day: date,
    duration_minutes: int,
    *,
    sample_size: int = config.SLOT_SAMPLE_SIZE,
    rng: random.Random | None = None,
) -> list[TimeSlot]:
    validate_slot_query(provider_id, day, duration_minutes)

    availability = find_availability(store, provider_id)
    if availability is None:
        raise NotFound('Provider availability not found')

    hours = business_hours_for(availability, day)
    if not hours or not hours.get('isOpen'):
        return []

    if day.isoformat() in (availability.blocked_dates or []):
        return []

    try:
        day_start, day_end = day_window(day, hours, clinic_timezone(store))
    except ValueError:
        logger.warning('Ignoring malformed business hours for provider %s: %s', provider_id, hours)
        return []

    booked = store.find(
        'appointments',
        field('provider_id').eq(availability.provider_id),
        field('status').in_(ACTIVE_STATUSES),
        field('start_time').lt(day_end),
        field('end_time').gt(day_start),
    )

    accepted = [
        slot
        for slot in iterate_candidate_slots(day_start, day_end, duration_minutes)
        if not any(
            overlaps(slot.start_time, slot.end_time, appointment.start_time, appointment.end_time)
            for appointment in booked
        )
    ]

    rng = rng or random
    return rng.sample(accepted, min(sample_size, len(accepted)))
