from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from clinicbook.audit import detect_changes, log_audit_action
from clinicbook.auth.dependencies import require_roles
from clinicbook.booking.appointments import reschedule_appointment, update_appointment_status
from clinicbook.core.errors import AppError
from clinicbook.core.timeutils import to_utc_naive
from clinicbook.models.appointment import STATUS_CONFIRMED, STATUS_PENDING
from clinicbook.models.user import User
from clinicbook.notifications.dispatcher import NotificationDispatcher
from clinicbook.runtime import get_dispatcher, get_scheduler
from clinicbook.scheduler import ReminderScheduler
from clinicbook.schemas import AppointmentResponse, CamelModel, MessageResponse, UtcDatetime
from clinicbook.store import StoreGateway, field, get_store

router = APIRouter(tags=['admin'])

staff_access = require_roles('admin', 'staff', 'provider')


class AppointmentListResponse(CamelModel):
    appointments: list[AppointmentResponse]
    total: int
    limit: int
    skip: int


class AppointmentStatsResponse(CamelModel):
    total_appointments: int
    pending_appointments: int
    confirmed_appointments: int
    total_patients: int


class UpdateStatusRequest(CamelModel):
    status: str


class RescheduleRequest(CamelModel):
    new_start_time: UtcDatetime
    new_end_time: UtcDatetime
    reason: str | None = None


def provider_scope(user: User) -> list:
    if user.role == 'provider' and user.provider_id:
        return [field('provider_id').eq(user.provider_id)]
    return []


def appointment_label(store: StoreGateway, appointment) -> str:
    service = store.get('services', appointment.service_id)
    service_name = service.name if service else 'Appointment'
    return f'{appointment.patient_name} - {service_name} ({appointment.start_time.isoformat()})'


@router.get('/appointments', response_model=AppointmentListResponse)
def list_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    provider_id: str | None = Query(default=None, alias='providerId'),
    start_date: datetime | None = Query(default=None, alias='startDate'),
    end_date: datetime | None = Query(default=None, alias='endDate'),
    limit: int = Query(default=50, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    current_user: User = Depends(staff_access),
    store: StoreGateway = Depends(get_store),
):
    predicates = provider_scope(current_user)
    if not predicates and provider_id:
        predicates.append(field('provider_id').eq(provider_id))
    if status_filter:
        predicates.append(field('status').eq(status_filter))
    if start_date:
        predicates.append(field('start_time').gte(to_utc_naive(start_date)))
    if end_date:
        predicates.append(field('start_time').lte(to_utc_naive(end_date)))

    appointments = store.find(
        'appointments',
        *predicates,
        order_by='start_time',
        descending=True,
        limit=limit,
        offset=skip,
    )
    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        total=store.count('appointments', *predicates),
        limit=limit,
        skip=skip,
    )


@router.get('/stats', response_model=AppointmentStatsResponse)
def appointment_stats(
    current_user: User = Depends(staff_access),
    store: StoreGateway = Depends(get_store),
):
    scope = provider_scope(current_user)
    return AppointmentStatsResponse(
        total_appointments=store.count('appointments', *scope),
        pending_appointments=store.count('appointments', *scope, field('status').eq(STATUS_PENDING)),
        confirmed_appointments=store.count('appointments', *scope, field('status').eq(STATUS_CONFIRMED)),
        total_patients=len(store.distinct('appointments', 'patient_email', *scope)),
    )


@router.patch('/appointments/{appointment_id}/status', response_model=MessageResponse)
def change_appointment_status(
    appointment_id: str,
    data: UpdateStatusRequest,
    request: Request,
    current_user: User = Depends(staff_access),
    store: StoreGateway = Depends(get_store),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
    scheduler: ReminderScheduler | None = Depends(get_scheduler),
):
    try:
        appointment, previous = update_appointment_status(
            store,
            appointment_id,
            data.status,
            user=current_user,
            dispatcher=dispatcher,
            scheduler=scheduler,
        )
    except AppError as exc:
        log_audit_action(
            store,
            action='updateStatus',
            entity_type='appointment',
            entity_id=appointment_id,
            entity_name='Unknown',
            user=current_user,
            request=request,
            status='failure',
            error_message=exc.message,
        )
        raise

    log_audit_action(
        store,
        action='updateStatus',
        entity_type='appointment',
        entity_id=appointment.id,
        entity_name=appointment_label(store, appointment),
        changes=detect_changes({'status': previous}, {'status': appointment.status}),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Appointment updated')


@router.patch('/appointments/{appointment_id}/reschedule', response_model=MessageResponse)
def reschedule(
    appointment_id: str,
    data: RescheduleRequest,
    request: Request,
    current_user: User = Depends(staff_access),
    store: StoreGateway = Depends(get_store),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
    scheduler: ReminderScheduler | None = Depends(get_scheduler),
):
    try:
        appointment, times = reschedule_appointment(
            store,
            appointment_id,
            data.new_start_time,
            data.new_end_time,
            reason=data.reason,
            user=current_user,
            dispatcher=dispatcher,
            scheduler=scheduler,
        )
    except AppError as exc:
        log_audit_action(
            store,
            action='reschedule',
            entity_type='appointment',
            entity_id=appointment_id,
            entity_name='Unknown',
            user=current_user,
            request=request,
            status='failure',
            error_message=exc.message,
        )
        raise

    log_audit_action(
        store,
        action='reschedule',
        entity_type='appointment',
        entity_id=appointment.id,
        entity_name=appointment_label(store, appointment),
        changes=detect_changes(times['before'], times['after']),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Appointment rescheduled successfully')
