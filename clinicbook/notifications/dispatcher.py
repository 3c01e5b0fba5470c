"""Fire-and-forget notification delivery.

Request handlers build a :class:`NotificationJob` and ``enqueue`` it; a single
worker thread drains the bounded queue and records one notification log row
per channel. The reminder path calls :meth:`NotificationDispatcher.deliver`
directly because it needs the outcome.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.clinic_settings import clinic_timezone
from clinicbook.core import config
from clinicbook.core.errors import ExternalServiceError
from clinicbook.models.appointment import Appointment
from clinicbook.models.logs import NotificationLog
from clinicbook.notifications.senders import EmailSender, SmsSender
from clinicbook.notifications.templates import (
    EMAIL_TEMPLATES,
    SMS_TEMPLATES,
    appointment_variables,
    render_email,
    render_sms,
)
from clinicbook.store import StoreGateway

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = 'Appointment'
DEFAULT_PROVIDER_NAME = 'Healthcare Provider'
QUEUE_FULL_ERROR = 'Notification queue full'


@dataclass(frozen=True)
class NotificationJob:
    template_key: str
    appointment_id: str
    patient_email: str
    patient_phone: str
    channels: tuple[str, ...]
    variables: dict[str, str] = field(default_factory=dict)


def build_appointment_job(
    store: StoreGateway,
    appointment: Appointment,
    template_key: str,
    channels: tuple[str, ...],
    **extra: str,
) -> NotificationJob:
    service = store.get('services', appointment.service_id)
    provider = store.get('providers', appointment.provider_id)
    variables = appointment_variables(
        appointment,
        service_name=service.name if service else DEFAULT_SERVICE_NAME,
        provider_name=provider.name if provider else DEFAULT_PROVIDER_NAME,
        timezone_name=clinic_timezone(store),
        **extra,
    )
    return NotificationJob(
        template_key=template_key,
        appointment_id=appointment.id,
        patient_email=appointment.patient_email,
        patient_phone=appointment.patient_phone,
        channels=channels,
        variables=variables,
    )


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        email_sender: EmailSender | None = None,
        sms_sender: SmsSender | None = None,
        queue_size: int = config.NOTIFICATION_QUEUE_SIZE,
    ) -> None:
        self.session_factory = session_factory
        self.email_sender = email_sender or EmailSender()
        self.sms_sender = sms_sender or SmsSender()
        self._queue: queue.Queue[NotificationJob | None] = queue.Queue(maxsize=queue_size)
        self._worker: threading.Thread | None = None

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name='notification-dispatcher', daemon=True)
        self._worker.start()
        logger.info('Notification dispatcher started')

    def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None:
            return
        self._queue.put(None)
        self._worker.join(timeout)
        self._worker = None
        logger.info('Notification dispatcher stopped')

    def enqueue(self, job: NotificationJob) -> bool:
        if not job.channels:
            return False
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            logger.warning('Dropping %s notification for appointment %s: queue full', job.template_key, job.appointment_id)
            for channel in job.channels:
                self._record(job, channel, 'failed', QUEUE_FULL_ERROR)
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Deliver every queued job on the calling thread."""
        delivered = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            if job is not None:
                self._deliver_safely(job)
                delivered += 1
            self._queue.task_done()

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._deliver_safely(job)
            finally:
                self._queue.task_done()

    def _deliver_safely(self, job: NotificationJob) -> None:
        try:
            self.deliver(job)
        except Exception:
            logger.exception('Notification job %s for appointment %s failed', job.template_key, job.appointment_id)

    def deliver(self, job: NotificationJob) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for channel in job.channels:
            error = None
            try:
                sent = self._send(job, channel)
            except ExternalServiceError as exc:
                sent = False
                error = exc.message
            results[channel] = sent
            self._record(job, channel, 'sent' if sent else 'failed', error)
        return results

    def _send(self, job: NotificationJob, channel: str) -> bool:
        if channel == 'email':
            if job.template_key not in EMAIL_TEMPLATES or not job.patient_email:
                return False
            email = render_email(job.template_key, job.variables)
            return self.email_sender.send(job.patient_email, email['subject'], email['body'], email['html'])
        if channel == 'sms':
            if job.template_key not in SMS_TEMPLATES or not job.patient_phone:
                return False
            return self.sms_sender.send(job.patient_phone, render_sms(job.template_key, job.variables))
        raise ValueError(f'Unknown notification channel: {channel}')

    def _record(self, job: NotificationJob, channel: str, status: str, error: str | None = None) -> None:
        session = self.session_factory()
        try:
            session.add(
                NotificationLog(
                    appointment_id=job.appointment_id,
                    type=job.template_key,
                    channel=channel,
                    recipient_email=job.patient_email,
                    recipient_phone=job.patient_phone,
                    status=status,
                    error=error,
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception('Failed to record %s notification log for appointment %s', channel, job.appointment_id)
        finally:
            session.close()
