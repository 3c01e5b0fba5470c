from fastapi import APIRouter, Depends, Query

from clinicbook.auth.dependencies import require_roles
from clinicbook.core.errors import AppError, ErrorCode
from clinicbook.models.user import User
from clinicbook.runtime import get_scheduler
from clinicbook.scheduler import ReminderScheduler
from clinicbook.schemas import CamelModel, UtcDatetime
from clinicbook.store import StoreGateway, field, get_store

router = APIRouter(tags=['notifications'])

NOTIFICATION_LOG_LIMIT = 100


class NotificationLogResponse(CamelModel):
    id: str
    appointment_id: str | None = None
    type: str
    channel: str
    recipient_email: str | None = None
    recipient_phone: str | None = None
    status: str
    error: str | None = None
    created_at: UtcDatetime | None = None


class ReminderStatsResponse(CamelModel):
    total: int
    sent: int
    failed: int


@router.get('/logs', response_model=list[NotificationLogResponse])
def list_notification_logs(
    appointment_id: str | None = Query(default=None, alias='appointmentId'),
    current_user: User = Depends(require_roles('admin', 'staff')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    predicates = [field('appointment_id').eq(appointment_id.strip())] if appointment_id else []
    return store.find(
        'notification_logs',
        *predicates,
        order_by='created_at',
        descending=True,
        limit=NOTIFICATION_LOG_LIMIT,
    )


@router.get('/reminders/stats', response_model=ReminderStatsResponse)
def get_reminder_stats(
    current_user: User = Depends(require_roles('admin', 'staff')),
    scheduler: ReminderScheduler | None = Depends(get_scheduler),
):
    del current_user
    if scheduler is None:
        raise AppError('Reminder scheduler is not running', code=ErrorCode.INTERNAL_SERVER_ERROR, status_code=503)
    return scheduler.reminder_stats()
