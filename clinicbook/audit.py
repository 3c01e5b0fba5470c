import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder

from clinicbook.core.errors import DatabaseError
from clinicbook.models.logs import AuditLog
from clinicbook.models.user import User
from clinicbook.store import StoreGateway

logger = logging.getLogger(__name__)

ENTITY_TYPES = ('appointment', 'service', 'provider', 'user', 'availability', 'settings')


def detect_changes(
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    ignore_fields: tuple[str, ...] = (),
) -> dict[str, dict[str, Any]]:
    before = jsonable_encoder(before or {})
    after = jsonable_encoder(after or {})
    changes: dict[str, dict[str, Any]] = {}

    for key in sorted(set(before) | set(after)):
        if key in ignore_fields:
            continue
        if before.get(key) != after.get(key):
            changes[key] = {'before': before.get(key), 'after': after.get(key)}

    return changes


def log_audit_action(
    store: StoreGateway,
    *,
    action: str,
    entity_type: str,
    entity_id: str,
    entity_name: str | None = None,
    changes: dict[str, dict[str, Any]] | None = None,
    user: User | None = None,
    request: Request | None = None,
    status: str = 'success',
    error_message: str | None = None,
) -> AuditLog | None:
    """Append an audit entry in its own transaction; failures are logged, never raised."""
    try:
        with store.transaction():
            return store.insert(
                'audit_logs',
                user_id=user.id if user else None,
                user_email=user.email if user else None,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                changes=jsonable_encoder(changes or {}),
                status=status,
                error_message=error_message,
                ip_address=request.client.host if request is not None and request.client else None,
                user_agent=request.headers.get('user-agent') if request is not None else None,
            )
    except DatabaseError:
        logger.exception('Error logging audit action %s on %s %s', action, entity_type, entity_id)
        return None
