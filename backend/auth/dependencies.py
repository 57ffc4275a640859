import logging
from dataclasses import dataclass

import jwt
from fastapi import Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.auth import jwt_handler
from backend.core.responses import ApiError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str
    email: str | None = None
    department: str | None = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise ApiError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code='AUTHENTICATION_REQUIRED',
            message='Authentication token is required',
        )

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError as exc:
        raise ApiError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code='INVALID_TOKEN',
            message='Token has expired',
        ) from exc
    except jwt.InvalidTokenError as exc:
        logger.info('Rejected bearer token: %s', exc)
        raise ApiError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code='INVALID_TOKEN',
            message='Invalid token',
        ) from exc

    user_id = payload.get('userId') or payload.get('sub')
    role = payload.get('role')
    if not user_id or not role:
        raise ApiError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code='INVALID_TOKEN',
            message='Invalid token',
        )

    return CurrentUser(
        user_id=str(user_id),
        role=str(role),
        email=payload.get('email'),
        department=payload.get('department'),
    )


def require_roles(*roles: str):
    allowed_roles = frozenset(roles)

    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise ApiError(
                status_code=status.HTTP_403_FORBIDDEN,
                code='INSUFFICIENT_ROLE',
                message=f"Role '{current_user.role}' is not permitted to perform this action",
            )
        return current_user

    return dependency
