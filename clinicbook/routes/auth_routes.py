import logging

from fastapi import APIRouter, Depends, status
from pydantic import field_validator
from sqlalchemy.orm import Session

from clinicbook.auth import jwt_handler
from clinicbook.auth.dependencies import get_current_user, get_optional_user
from clinicbook.auth.passwords import hash_password, verify_password
from clinicbook.booking.appointments import is_valid_email
from clinicbook.core.errors import Conflict, ErrorCode, Forbidden, Unauthorized
from clinicbook.database import get_db
from clinicbook.models.user import USER_ROLES, User
from clinicbook.schemas import CamelModel
from clinicbook.store import StoreGateway, field

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

MIN_PASSWORD_LENGTH = 8


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Email is required.')
        return normalized

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value:
            raise ValueError('Password is required.')
        return value


class RegisterRequest(LoginRequest):
    role: str
    provider_id: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError('Email is not valid.')
        return value

    @field_validator('password')
    @classmethod
    def validate_password_length(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError(f'Role must be one of {", ".join(USER_ROLES)}.')
        return normalized


class UserResponse(CamelModel):
    id: str
    email: str
    role: str
    provider_id: str | None = None


class TokenResponse(CamelModel):
    token: str
    user: UserResponse


def resolve_provider_id(store: StoreGateway, user: User) -> str | None:
    if user.role != 'provider' or user.provider_id:
        return user.provider_id
    provider = store.find_one('providers', field('email').eq(user.email))
    return provider.id if provider else None


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    store = StoreGateway(db)
    user = store.find_one('users', field('email').eq(data.email))
    if user is None or not verify_password(data.password, user.hashed_password):
        logger.info('Failed login for %s', data.email)
        raise Unauthorized('Invalid email or password', code=ErrorCode.INVALID_CREDENTIALS)

    provider_id = resolve_provider_id(store, user)
    if provider_id and provider_id != user.provider_id:
        with store.transaction():
            store.update(user, provider_id=provider_id)

    return TokenResponse(token=jwt_handler.create_user_token(user), user=UserResponse.model_validate(user))


@router.post('/register', response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
):
    store = StoreGateway(db)
    if store.count('users') > 0 and (current_user is None or current_user.role != 'admin'):
        raise Forbidden('Only admins can register new users')

    if store.find_one('users', field('email').eq(data.email)) is not None:
        raise Conflict('User already exists', code=ErrorCode.ALREADY_EXISTS)

    with store.transaction():
        user = store.insert(
            'users',
            email=data.email,
            hashed_password=hash_password(data.password),
            role=data.role,
            provider_id=data.provider_id,
        )
    logger.info('Registered %s user %s', user.role, user.email)

    return TokenResponse(token=jwt_handler.create_user_token(user), user=UserResponse.model_validate(user))


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
