from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from starlette.requests import Request

from buildmart.core.config import get_settings
from buildmart.core.database import get_db
from buildmart.users.models import User


@dataclass
class AuthUser:
    id: uuid.UUID
    email: str
    name: str
    role_id: uuid.UUID | None
    role_name: str | None
    is_ojt: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role_name == "Admin"


def create_session_token(user_id: uuid.UUID, *, now: datetime | None = None) -> str:
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(seconds=settings.session_max_age_seconds)).timestamp()),
    }
    return jwt.encode(payload, settings.session_secret, algorithm=settings.session_algorithm)


def decode_session_token(token: str) -> uuid.UUID | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[settings.session_algorithm])
    except JWTError:
        return None
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None


def _extract_token(request: Request) -> str | None:
    cookie_value = request.cookies.get(get_settings().session_cookie_name)
    if cookie_value:
        return cookie_value
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.replace("Bearer ", "", 1) or None
    return None


def to_auth_user(user: User) -> AuthUser:
    return AuthUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role_id=user.role_id,
        role_name=user.role.name if user.role is not None else None,
        is_ojt=user.is_ojt,
    )


def get_current_user(request: Request, db: Session = Depends(get_db)) -> AuthUser:
    token = _extract_token(request)
    user_id = decode_session_token(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")

    user = db.scalar(select(User).options(selectinload(User.role)).where(User.id == user_id))
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(user.id)
    return to_auth_user(user)
