from fastapi import APIRouter, Depends, Request, status
from pydantic import Field, field_validator

from clinicbook.audit import detect_changes, log_audit_action
from clinicbook.auth.dependencies import require_roles
from clinicbook.core.errors import AppError, Forbidden, NotFound
from clinicbook.models.service import Service
from clinicbook.models.user import User
from clinicbook.schemas import CamelModel, MessageResponse
from clinicbook.store import StoreGateway, get_store

router = APIRouter(tags=['services'])

CUSTOM_FIELD_TYPES = ('text', 'email', 'phone', 'textarea', 'checkbox', 'select')


class CustomField(CamelModel):
    name: str
    type: str
    required: bool = False
    order: int = 0
    options: list[str] | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Custom field name is required.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in CUSTOM_FIELD_TYPES:
            raise ValueError(f'Custom field type must be one of {", ".join(CUSTOM_FIELD_TYPES)}.')
        return normalized


class ServiceResponse(CamelModel):
    id: str
    name: str
    description: str | None = ''
    duration: int
    providers: list[str] = Field(default_factory=list)
    custom_fields: list[CustomField] = Field(default_factory=list)


class ServiceCreateRequest(CamelModel):
    name: str
    description: str = ''
    duration: int = Field(gt=0)
    providers: list[str] = Field(default_factory=list)
    custom_fields: list[CustomField] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Service name is required.')
        return normalized


class ServiceUpdateRequest(CamelModel):
    name: str | None = None
    description: str | None = None
    duration: int | None = Field(default=None, gt=0)
    providers: list[str] | None = None
    custom_fields: list[CustomField] | None = None


def service_snapshot(service: Service) -> dict:
    return {
        'name': service.name,
        'description': service.description,
        'duration': service.duration,
        'providers': list(service.providers or []),
        'customFields': list(service.custom_fields or []),
    }


def get_service_or_404(store: StoreGateway, service_id: str) -> Service:
    service = store.get('services', service_id)
    if service is None:
        raise NotFound('Service not found')
    return service


def ensure_can_manage(user: User, service: Service) -> None:
    if user.role == 'provider' and user.provider_id and user.provider_id not in (service.providers or []):
        raise Forbidden('You can only manage services you provide')


@router.get('', response_model=list[ServiceResponse])
def list_services(store: StoreGateway = Depends(get_store)):
    return store.find('services', order_by='name')


@router.get('/{service_id}', response_model=ServiceResponse)
def get_service(service_id: str, store: StoreGateway = Depends(get_store)):
    return get_service_or_404(store, service_id)


@router.post('', response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceCreateRequest,
    request: Request,
    current_user: User = Depends(require_roles('admin')),
    store: StoreGateway = Depends(get_store),
):
    values = data.model_dump(exclude={'custom_fields'})
    values['custom_fields'] = [custom_field.model_dump(by_alias=True) for custom_field in data.custom_fields]

    with store.transaction():
        service = store.insert('services', **values)

    log_audit_action(
        store,
        action='create',
        entity_type='service',
        entity_id=service.id,
        entity_name=service.name,
        changes=detect_changes({}, service_snapshot(service)),
        user=current_user,
        request=request,
    )
    return service


@router.patch('/{service_id}', response_model=MessageResponse)
def update_service(
    service_id: str,
    data: ServiceUpdateRequest,
    request: Request,
    current_user: User = Depends(require_roles('admin', 'provider')),
    store: StoreGateway = Depends(get_store),
):
    service = get_service_or_404(store, service_id)
    ensure_can_manage(current_user, service)

    before = service_snapshot(service)
    updates = data.model_dump(exclude_unset=True, exclude={'custom_fields'})
    if data.custom_fields is not None:
        updates['custom_fields'] = [custom_field.model_dump(by_alias=True) for custom_field in data.custom_fields]

    try:
        with store.transaction():
            store.update(service, **updates)
    except AppError as exc:
        log_audit_action(
            store,
            action='update',
            entity_type='service',
            entity_id=service_id,
            entity_name=before['name'],
            user=current_user,
            request=request,
            status='failure',
            error_message=exc.message,
        )
        raise

    log_audit_action(
        store,
        action='update',
        entity_type='service',
        entity_id=service.id,
        entity_name=before['name'],
        changes=detect_changes(before, service_snapshot(service)),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Service updated')


@router.delete('/{service_id}', response_model=MessageResponse)
def delete_service(
    service_id: str,
    request: Request,
    current_user: User = Depends(require_roles('admin', 'provider')),
    store: StoreGateway = Depends(get_store),
):
    service = get_service_or_404(store, service_id)
    ensure_can_manage(current_user, service)

    snapshot = service_snapshot(service)
    deleted_id = service.id
    with store.transaction():
        store.delete(service)

    log_audit_action(
        store,
        action='delete',
        entity_type='service',
        entity_id=deleted_id,
        entity_name=snapshot['name'],
        changes=detect_changes(snapshot, {}),
        user=current_user,
        request=request,
    )
    return MessageResponse(message='Service deleted')
