"""
Password hashing, signed session tokens and the FastAPI dependencies that
resolve the caller from a bearer token.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from weddingpix.config import Settings, get_settings
from weddingpix.errors import AuthenticationError

logger = logging.getLogger(__name__)

# pbkdf2 keeps passlib free of the optional bcrypt backend.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_SUBJECT = "admin"


@dataclass
class SessionUser:
    user_id: str
    username: str
    is_admin: bool = False


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(
    user_id: str,
    username: str,
    *,
    is_admin: bool = False,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> str:
    settings = settings or get_settings()
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "username": username,
        "admin": is_admin,
        "iat": issued,
        "exp": issued + timedelta(hours=settings.session_ttl_hours),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str, settings: Optional[Settings] = None) -> SessionUser:
    """Validate ``token`` and return its session; raises AuthenticationError."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Session expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected session token: %s", exc)
        raise AuthenticationError("Invalid session token") from exc
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Session token has no subject")
    return SessionUser(
        user_id=user_id,
        username=payload.get("username", ""),
        is_admin=bool(payload.get("admin")),
    )


def check_admin_credentials(username: str, password: str, settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    if not settings.admin_password:
        logger.warning("Admin login attempted but ADMIN_PASSWORD is not configured")
        return False
    user_ok = hmac.compare_digest(username.encode("utf-8"), settings.admin_username.encode("utf-8"))
    password_ok = hmac.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))
    return user_ok and password_ok


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[SessionUser]:
    if credentials is None:
        return None
    try:
        return decode_session_token(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def get_current_user(user: Optional[SessionUser] = Depends(get_optional_user)) -> SessionUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(user: SessionUser = Depends(get_current_user)) -> SessionUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
