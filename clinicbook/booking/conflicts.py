"""Booking conflict guard.

The overlap query gives a friendly early answer; the minute-level
reservation rows written next to it are what actually serialises two
concurrent bookings, through the unique (provider, minute) constraint.
Only minutes an interval fully covers are reserved, so a partial edge
minute never collides with a neighbour that merely shares it; those
edges are left to the overlap query.
"""

import logging
from datetime import datetime, timedelta

from clinicbook.core.errors import DuplicateKey, double_booking
from clinicbook.core.timeutils import ceil_to_minute, floor_to_minute
from clinicbook.models.appointment import ACTIVE_STATUSES, Appointment
from clinicbook.store import StoreGateway, field

logger = logging.getLogger(__name__)

RESERVATION_STEP = timedelta(minutes=1)


def reservation_minutes(start_time: datetime, end_time: datetime) -> list[datetime]:
    minutes: list[datetime] = []
    current = ceil_to_minute(start_time)
    last = floor_to_minute(end_time)

    while current < last:
        minutes.append(current)
        current += RESERVATION_STEP

    return minutes


class BookingConflictGuard:
    def __init__(self, store: StoreGateway) -> None:
        self.store = store

    def find_conflict(
        self,
        provider_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: str | None = None,
    ) -> Appointment | None:
        predicates = [
            field('provider_id').eq(provider_id),
            field('status').in_(ACTIVE_STATUSES),
            field('start_time').lt(end_time),
            field('end_time').gt(start_time),
        ]
        if exclude_id:
            predicates.append(field('id').ne(exclude_id))
        return self.store.find_one('appointments', *predicates)

    def check_and_reserve(
        self,
        provider_id: str,
        start_time: datetime,
        end_time: datetime,
        appointment_id: str,
        exclude_id: str | None = None,
    ) -> None:
        """Raise ``Conflict`` (DOUBLE_BOOKING) or hold the interval for ``appointment_id``.

        Must run inside the caller's transaction so the reservation and the
        appointment write commit together.
        """
        if exclude_id:
            self.release(exclude_id)

        existing = self.find_conflict(provider_id, start_time, end_time, exclude_id=exclude_id)
        if existing is not None:
            logger.info(
                'Booking conflict for provider %s between %s and %s (held by %s)',
                provider_id,
                start_time.isoformat(),
                end_time.isoformat(),
                existing.id,
            )
            raise double_booking()

        rows = [
            {'provider_id': provider_id, 'appointment_id': appointment_id, 'slot_start': minute}
            for minute in reservation_minutes(start_time, end_time)
        ]
        try:
            self.store.insert_many('slot_reservations', rows)
        except DuplicateKey as exc:
            logger.info('Lost reservation race for provider %s at %s', provider_id, start_time.isoformat())
            raise double_booking() from exc

    def release(self, appointment_id: str) -> int:
        return self.store.delete_where('slot_reservations', field('appointment_id').eq(appointment_id))
