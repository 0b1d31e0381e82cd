# src/utils/auth_dep.py
"""
Авторизация по JWT (Bearer access token).
- create_access_token / decode_access_token: HS256, payload {userId, email, role, exp}
- get_current_auth_user: FastAPI-зависимость, 401 если токена нет или он невалиден
- require_roles: фабрика зависимостей с проверкой роли (403)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.config import get_settings

ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    user_id: str
    email: Optional[str]
    role: str


def create_access_token(user_id: str, email: Optional[str], role: str, *, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_access_expiry_minutes
    payload = {
        "userId": str(user_id),
        "email": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_access_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> AuthUser:
    """Бросает jwt.PyJWTError на просроченный/подделанный токен, ValueError - если нет userId/role."""
    payload = jwt.decode(token, get_settings().jwt_access_secret, algorithms=[ALGORITHM])
    user_id = payload.get("userId")
    role = payload.get("role")
    if not user_id or not role:
        raise ValueError("token payload is missing userId or role")
    return AuthUser(user_id=str(user_id), email=payload.get("email"), role=str(role).upper())


async def get_current_auth_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthUser:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        return decode_access_token(credentials.credentials)
    except (jwt.PyJWTError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def require_roles(*roles: str):
    """
    Зависимость «пользователь с одной из ролей»:
        user: AuthUser = Depends(require_roles("ADMIN"))
    """
    allowed = {r.upper() for r in roles}

    async def _dep(user: AuthUser = Depends(get_current_auth_user)) -> AuthUser:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return _dep
