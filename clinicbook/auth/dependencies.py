import logging

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinicbook.auth import jwt_handler
from clinicbook.core.errors import Forbidden, Unauthorized
from clinicbook.database import get_db
from clinicbook.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _user_from_credentials(credentials: HTTPAuthorizationCredentials | None, db: Session) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Authentication required")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise Unauthorized("Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise Unauthorized("Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise Unauthorized("User not found")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    return _user_from_credentials(credentials, db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User | None:
    if credentials is None:
        return None
    return _user_from_credentials(credentials, db)


def require_roles(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            logger.info("User %s with role %s denied (needs %s)", current_user.email, current_user.role, roles)
            raise Forbidden("Insufficient permissions")
        return current_user

    return dependency
