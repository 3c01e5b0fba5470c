from collections import Counter
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query

from clinicbook.auth.dependencies import require_roles
from clinicbook.core.timeutils import to_utc_naive
from clinicbook.models.user import User
from clinicbook.schemas import CamelModel, UtcDatetime
from clinicbook.store import StoreGateway, field, get_store

router = APIRouter(tags=['audit'])

TOP_USERS_LIMIT = 10


class AuditLogResponse(CamelModel):
    id: str
    user_id: str | None = None
    user_email: str | None = None
    action: str
    entity_type: str
    entity_id: str | None = None
    entity_name: str | None = None
    changes: dict[str, Any] | None = None
    status: str
    error_message: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    timestamp: UtcDatetime | None = None


class AuditLogPage(CamelModel):
    logs: list[AuditLogResponse]
    total: int
    limit: int
    skip: int


class CountEntry(CamelModel):
    key: str | None = None
    count: int


class AuditSummaryResponse(CamelModel):
    total_actions: int
    failed_actions: int
    actions_by_type: list[CountEntry]
    top_users: list[CountEntry]


def timestamp_range(start_date: datetime | None, end_date: datetime | None) -> list:
    predicates = []
    if start_date:
        predicates.append(field('timestamp').gte(to_utc_naive(start_date)))
    if end_date:
        predicates.append(field('timestamp').lte(to_utc_naive(end_date)))
    return predicates


def audit_page(store: StoreGateway, predicates: list, limit: int, skip: int) -> AuditLogPage:
    logs = store.find('audit_logs', *predicates, order_by='timestamp', descending=True, limit=limit, offset=skip)
    return AuditLogPage(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=store.count('audit_logs', *predicates),
        limit=limit,
        skip=skip,
    )


@router.get('/logs', response_model=AuditLogPage)
def list_audit_logs(
    entity_type: str | None = Query(default=None, alias='entityType'),
    entity_id: str | None = Query(default=None, alias='entityId'),
    action: str | None = Query(default=None),
    user_id: str | None = Query(default=None, alias='userId'),
    start_date: datetime | None = Query(default=None, alias='startDate'),
    end_date: datetime | None = Query(default=None, alias='endDate'),
    limit: int = Query(default=100, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    current_user: User = Depends(require_roles('admin', 'staff')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    predicates = timestamp_range(start_date, end_date)
    for name, value in (
        ('entity_type', entity_type),
        ('entity_id', entity_id),
        ('action', action),
        ('user_id', user_id),
    ):
        if value:
            predicates.append(field(name).eq(value))
    return audit_page(store, predicates, limit, skip)


@router.get('/entity/{entity_id}', response_model=list[AuditLogResponse])
def get_entity_audit_trail(
    entity_id: str,
    current_user: User = Depends(require_roles('admin', 'staff')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    return store.find('audit_logs', field('entity_id').eq(entity_id), order_by='timestamp', descending=True)


@router.get('/user/{user_id}', response_model=AuditLogPage)
def get_user_activity(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    return audit_page(store, [field('user_id').eq(user_id)], limit, skip)


@router.get('/summary', response_model=AuditSummaryResponse)
def get_audit_summary(
    start_date: datetime | None = Query(default=None, alias='startDate'),
    end_date: datetime | None = Query(default=None, alias='endDate'),
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    del current_user
    predicates = timestamp_range(start_date, end_date)
    logs = store.find('audit_logs', *predicates)

    actions = Counter(log.action for log in logs)
    users = Counter(log.user_email for log in logs)
    return AuditSummaryResponse(
        total_actions=len(logs),
        failed_actions=sum(1 for log in logs if log.status == 'failure'),
        actions_by_type=[CountEntry(key=key, count=count) for key, count in actions.most_common()],
        top_users=[CountEntry(key=key, count=count) for key, count in users.most_common(TOP_USERS_LIMIT)],
    )
