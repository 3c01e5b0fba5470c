from datetime import datetime, timedelta, timezone

import jwt

from clinicbook.core import config


def create_access_token(subject: str, expires_minutes: int | None = None, **claims) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    issued_at = datetime.now(timezone.utc)
    payload = {"sub": subject, "exp": issued_at + timedelta(minutes=expire_minutes), "iat": issued_at}
    payload.update({name: value for name, value in claims.items() if value is not None})
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_user_token(user) -> str:
    return create_access_token(subject=user.email, role=user.role, providerId=user.provider_id)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
