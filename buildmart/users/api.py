from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser, create_session_token, get_current_user, to_auth_user
from buildmart.core.config import get_settings
from buildmart.core.database import get_db
from buildmart.core.rbac import PermissionCache, get_permission_cache, require_permissions
from buildmart.users.schemas import (
    CurrentUserRead,
    LoginRequest,
    PermissionRead,
    RoleCreate,
    RolePermissionsUpdate,
    RoleRead,
    RoleSummary,
    UserCreate,
    UserRead,
    UserUpdate,
)
from buildmart.users.service import role_service, user_service


logger = logging.getLogger("buildmart.auth")

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
router = APIRouter(prefix="/api/users", tags=["users"])


def _current_user_read(user: AuthUser, permissions: list[str]) -> CurrentUserRead:
    role = RoleSummary(id=user.role_id, name=user.role_name) if user.role_id is not None and user.role_name else None
    return CurrentUserRead(
        id=user.id,
        email=user.email,
        name=user.name,
        role=role,
        is_ojt=user.is_ojt,
        permissions=permissions,
    )


@auth_router.post("/login", response_model=CurrentUserRead)
def login(
    dto: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> CurrentUserRead:
    user = user_service.authenticate(db, str(dto.email), dto.password)
    if user is None:
        logger.info("auth.login_failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid email or password")

    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=create_session_token(user.id),
        max_age=settings.session_max_age_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    logger.info("auth.login", extra={"user_id": str(user.id)})
    auth_user = to_auth_user(user)
    permissions = cache.get_role_permissions(db, user.role_id) if user.role_id is not None else []
    return _current_user_read(auth_user, permissions)


@auth_router.post("/logout")
def logout(response: Response) -> dict[str, str]:
    response.delete_cookie(get_settings().session_cookie_name)
    return {"message": "logged out"}


@auth_router.get("/me", response_model=CurrentUserRead)
def me(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> CurrentUserRead:
    permissions = cache.get_role_permissions(db, user.role_id) if user.role_id is not None else []
    return _current_user_read(user, permissions)


@router.get("", response_model=list[UserRead])
def list_users(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:users", "manage:users")),
) -> list[UserRead]:
    return user_service.list_users(db)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    dto: UserCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:users")),
) -> UserRead:
    return user_service.create_user(db, dto)


@router.get("/roles", response_model=list[RoleRead])
def list_roles(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:roles", "manage:roles", "read:users")),
) -> list[RoleRead]:
    return role_service.list_roles(db)


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(
    dto: RoleCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:roles")),
) -> RoleRead:
    return role_service.create_role(db, dto)


@router.put("/roles/{role_id}/permissions", response_model=RoleRead)
def update_role_permissions(
    role_id: uuid.UUID,
    dto: RolePermissionsUpdate,
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
    _user: AuthUser = Depends(require_permissions("manage:roles")),
) -> RoleRead:
    return role_service.update_role_permissions(db, role_id, dto, cache)


@router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:roles", "manage:roles")),
) -> list[PermissionRead]:
    return role_service.list_permissions(db)


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:users", "manage:users")),
) -> UserRead:
    return user_service.get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:users")),
) -> UserRead:
    return user_service.update_user(db, user_id, dto)


@router.delete("/{user_id}", status_code=status.HTTP_200_OK)
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("manage:users")),
) -> dict[str, str]:
    user_service.delete_user(db, user_id, actor_user_id=user.id)
    return {"status": "deleted"}
