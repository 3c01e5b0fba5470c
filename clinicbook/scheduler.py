"""Appointment reminder scheduler.

Two triggers can send a reminder: a one-shot ``threading.Timer`` armed for
``start - lead`` and a periodic sweep over appointments starting within the
clinic's reminder window. Both go through :meth:`ReminderScheduler.fire_reminder`,
which claims the appointment with a conditional update so only one of them
ever sends.
"""

import logging
import threading
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from clinicbook.clinic_settings import NotificationSettings, load_notification_settings
from clinicbook.core import config
from clinicbook.core.timeutils import as_utc, utcnow
from clinicbook.models.appointment import ACTIVE_STATUSES
from clinicbook.notifications.dispatcher import NotificationDispatcher, build_appointment_job
from clinicbook.store import StoreGateway, field

logger = logging.getLogger(__name__)

REMINDER_TEMPLATE = 'appointmentReminder'


@dataclass(frozen=True)
class SchedulerConfig:
    sweep_interval_seconds: float = config.REMINDER_SWEEP_INTERVAL_SECONDS
    reminder_lead: timedelta = dataclass_field(default_factory=lambda: timedelta(hours=config.REMINDER_LEAD_HOURS))
    reconcile_window: timedelta = dataclass_field(
        default_factory=lambda: timedelta(days=config.REMINDER_RECONCILE_DAYS)
    )


def reminder_key(appointment_id: str, send_time: datetime) -> str:
    return f'{appointment_id}_{int(as_utc(send_time).timestamp() * 1000)}'


class ReminderScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher,
        scheduler_config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.config = scheduler_config or SchedulerConfig()
        self.clock = clock
        self.timer_factory = timer_factory
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def armed_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        try:
            armed = self.reconcile()
            logger.info('Appointment reminder scheduler initialized, %s reminders armed', armed)
        except Exception:
            logger.exception('Reminder reconciliation failed')
        self._thread = threading.Thread(target=self._run, name='reminder-sweep', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.config.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception('Reminder sweep failed')

    def reconcile(self) -> int:
        """Arm timers for upcoming active appointments without a sent reminder."""
        now = self.clock()
        session = self.session_factory()
        try:
            store = StoreGateway(session)
            upcoming = [
                (appointment.id, appointment.start_time)
                for appointment in store.find(
                    'appointments',
                    field('status').in_(ACTIVE_STATUSES),
                    field('reminder_sent').eq(False),
                    field('start_time').gte(now),
                    field('start_time').lte(now + self.config.reconcile_window),
                )
            ]
        finally:
            session.close()

        armed = 0
        for appointment_id, start_time in upcoming:
            if self.schedule_reminder(appointment_id, start_time - self.config.reminder_lead):
                armed += 1
        return armed

    def sweep(self) -> int:
        now = self.clock()
        session = self.session_factory()
        try:
            store = StoreGateway(session)
            settings = load_notification_settings(store)
            horizon = now + timedelta(hours=settings.reminder_hours_before)
            due = [
                appointment.id
                for appointment in store.find(
                    'appointments',
                    field('status').in_(ACTIVE_STATUSES),
                    field('reminder_sent').eq(False),
                    field('start_time').gte(now),
                    field('start_time').lte(horizon),
                    order_by='start_time',
                )
            ]
        finally:
            session.close()

        sent = 0
        for appointment_id in due:
            try:
                if self.fire_reminder(appointment_id, settings):
                    sent += 1
            except Exception:
                logger.exception('Reminder for appointment %s failed', appointment_id)
        if due:
            logger.info('Reminder sweep sent %s of %s due reminders', sent, len(due))
        return sent

    def schedule_reminder(self, appointment_id: str, send_time: datetime) -> bool:
        delay = (send_time - self.clock()).total_seconds()
        if delay <= 0:
            return False

        key = reminder_key(appointment_id, send_time)
        timer = self.timer_factory(delay, self._on_timer, args=(key, appointment_id))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.info('Reminder scheduled for appointment %s at %s', appointment_id, as_utc(send_time).isoformat())
        return True

    def schedule_for_appointment(self, appointment_id: str, start_time: datetime) -> bool:
        self.cancel_reminder(appointment_id)
        return self.schedule_reminder(appointment_id, start_time - self.config.reminder_lead)

    def cancel_reminder(self, appointment_id: str) -> int:
        prefix = f'{appointment_id}_'
        with self._lock:
            keys = [key for key in self._timers if key.startswith(prefix)]
            timers = [self._timers.pop(key) for key in keys]
        for timer in timers:
            timer.cancel()
        return len(timers)

    def _on_timer(self, key: str, appointment_id: str) -> None:
        with self._lock:
            self._timers.pop(key, None)
        try:
            self.fire_reminder(appointment_id)
        except Exception:
            logger.exception('Reminder timer for appointment %s failed', appointment_id)

    def fire_reminder(self, appointment_id: str, settings: NotificationSettings | None = None) -> bool:
        """Claim and send one reminder; returns True when at least one channel succeeded."""
        session = self.session_factory()
        try:
            store = StoreGateway(session)
            settings = settings or load_notification_settings(store)
            if not settings.channels:
                logger.info('Notifications disabled, skipping reminder for appointment %s', appointment_id)
                return False

            now = self.clock()
            claim = [
                field('id').eq(appointment_id),
                field('status').in_(ACTIVE_STATUSES),
                field('reminder_sent').eq(False),
            ]
            with store.transaction():
                claimed = store.update_where(
                    'appointments', claim, {'reminder_sent': True, 'reminder_sent_at': now}
                )
            if not claimed:
                return False

            appointment = store.get('appointments', appointment_id)
            job = build_appointment_job(store, appointment, REMINDER_TEMPLATE, settings.channels)
            results = self.dispatcher.deliver(job)
            succeeded = any(results.values())

            with store.transaction():
                store.insert(
                    'reminder_logs',
                    appointment_id=appointment_id,
                    type=settings.reminder_type,
                    sent_at=now,
                    status='sent' if succeeded else 'failed',
                    error=None if succeeded else 'All reminder channels failed',
                )
                if not succeeded:
                    store.update_where(
                        'appointments',
                        [field('id').eq(appointment_id)],
                        {'reminder_sent': False, 'reminder_sent_at': None},
                    )

            if succeeded:
                logger.info('Reminder sent for appointment %s', appointment_id)
            else:
                logger.warning('Reminder for appointment %s failed on every channel', appointment_id)
            return succeeded
        finally:
            session.close()

    def reminder_stats(self) -> dict[str, int]:
        session = self.session_factory()
        try:
            store = StoreGateway(session)
            return {
                'total': store.count('reminder_logs'),
                'sent': store.count('reminder_logs', field('status').eq('sent')),
                'failed': store.count('reminder_logs', field('status').eq('failed')),
            }
        finally:
            session.close()
