import logging
from datetime import datetime
from typing import Iterator
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Depends, Request, status
from pydantic import field_validator

from clinicbook.audit import detect_changes, log_audit_action
from clinicbook.auth.dependencies import require_roles
from clinicbook.core.errors import ExternalServiceError, NotFound
from clinicbook.core.ids import new_document_id
from clinicbook.core.timeutils import utcnow
from clinicbook.models.user import User
from clinicbook.models.webhook import WEBHOOK_EVENTS, Webhook
from clinicbook.schemas import CamelModel, MessageResponse, UtcDatetime
from clinicbook.store import StoreGateway, get_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=['webhooks'])

admin_only = require_roles('admin')


def validate_event(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in WEBHOOK_EVENTS:
        raise ValueError(f'Event must be one of {", ".join(WEBHOOK_EVENTS)}.')
    return normalized


def validate_url(value: str) -> str:
    normalized = value.strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError('Webhook URL must be an absolute http(s) URL.')
    return normalized


class WebhookResponse(CamelModel):
    id: str
    event: str
    url: str
    active: bool
    created_at: UtcDatetime | None = None


class WebhookCreateRequest(CamelModel):
    event: str
    url: str
    active: bool = True

    @field_validator('event')
    @classmethod
    def normalize_event(cls, value: str) -> str:
        return validate_event(value)

    @field_validator('url')
    @classmethod
    def normalize_url(cls, value: str) -> str:
        return validate_url(value)


class WebhookUpdateRequest(CamelModel):
    event: str | None = None
    url: str | None = None
    active: bool | None = None

    @field_validator('event')
    @classmethod
    def normalize_event(cls, value: str | None) -> str | None:
        return None if value is None else validate_event(value)

    @field_validator('url')
    @classmethod
    def normalize_url(cls, value: str | None) -> str | None:
        return None if value is None else validate_url(value)


class WebhookTestResponse(CamelModel):
    success: bool
    message: str
    webhook_url: str


def webhook_snapshot(webhook: Webhook) -> dict:
    return {'event': webhook.event, 'url': webhook.url, 'active': webhook.active}


def get_webhook_or_404(store: StoreGateway, webhook_id: str) -> Webhook:
    webhook = store.get('webhooks', webhook_id)
    if webhook is None:
        raise NotFound('Webhook not found')
    return webhook


def get_webhook_client() -> Iterator[httpx.Client]:
    with httpx.Client(timeout=10.0) as client:
        yield client


def build_test_payload(webhook: Webhook, now: datetime) -> dict:
    return {
        'event': webhook.event,
        'timestamp': now.isoformat() + 'Z',
        'test': True,
        'data': {'appointmentId': f'test_{new_document_id()}', 'message': 'This is a test webhook'},
    }


@router.get('', response_model=list[WebhookResponse])
def list_webhooks(
    current_user: User = Depends(admin_only),
    store: StoreGateway = Depends(get_store),
):
    return store.find('webhooks', order_by='created_at')


@router.post('', response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
def create_webhook(
    data: WebhookCreateRequest,
    request: Request,
    current_user: User = Depends(admin_only),
    store: StoreGateway = Depends(get_store),
):
    with store.transaction():
        webhook = store.insert('webhooks', **data.model_dump())

    log_audit_action(
        store,
        action='create',
        entity_type='webhook',
        entity_id=webhook.id,
        entity_name=webhook.event,
        changes=detect_changes({}, webhook_snapshot(webhook)),
        user=current_user,
        request=request,
    )
    return webhook


@router.patch('/{webhook_id}', response_model=WebhookResponse)
def update_webhook(
    webhook_id: str,
    data: WebhookUpdateRequest,
    request: Request,
    current_user: User = Depends(admin_only),
    store: StoreGateway = Depends(get_store),
):
    webhook = get_webhook_or_404(store, webhook_id)
    before = webhook_snapshot(webhook)
    updates = {key: value for key, value in data.model_dump(exclude_unset=True).items() if value is not None}

    with store.transaction():
        store.update(webhook, **updates)

    log_audit_action(
        store,
        action='update',
        entity_type='webhook',
        entity_id=webhook.id,
        entity_name=webhook.event,
        changes=detect_changes(before, webhook_snapshot(webhook)),
        user=current_user,
        request=request,
    )
    return webhook


@router.delete('/{webhook_id}', response_model=MessageResponse)
def delete_webhook(
    webhook_id: str,
    request: Request,
    current_user: User = Depends(admin_only),
    store: StoreGateway = Depends(get_store),
):
    webhook = get_webhook_or_404(store, webhook_id)
    snapshot = webhook_snapshot(webhook)
    deleted_id = webhook.id
    with store.transaction():
        store.delete(webhook)

    log_audit_action(
        store,
        action='delete',
        entity_type='webhook',
        entity_id=deleted_id,
        entity_name=snapshot['event'],
        changes=detect_changes(snapshot, {}),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Webhook deleted')


@router.post('/{webhook_id}/test', response_model=WebhookTestResponse)
def send_test_webhook(
    webhook_id: str,
    current_user: User = Depends(admin_only),
    store: StoreGateway = Depends(get_store),
    client: httpx.Client = Depends(get_webhook_client),
):
    webhook = get_webhook_or_404(store, webhook_id)
    payload = build_test_payload(webhook, utcnow())

    try:
        response = client.post(webhook.url, json=payload)
    except httpx.HTTPError as exc:
        logger.error('Test webhook to %s failed: %s', webhook.url, exc)
        raise ExternalServiceError(f'Failed to deliver webhook: {exc}') from exc

    if response.status_code >= 400:
        logger.error('Test webhook to %s rejected with %s', webhook.url, response.status_code)
        raise ExternalServiceError(
            f'Failed to deliver webhook: endpoint answered {response.status_code}',
            details={'webhookUrl': webhook.url},
        )

    logger.info('Test webhook delivered to %s', webhook.url)
    return WebhookTestResponse(success=True, message='Test webhook sent', webhook_url=webhook.url)
