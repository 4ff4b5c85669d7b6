from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from werkzeug.security import check_password_hash, generate_password_hash

from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.core.rbac import PermissionCache
from buildmart.users.models import Permission, Role, RolePermission, User
from buildmart.users.schemas import (
    PermissionRead,
    RoleCreate,
    RolePermissionsUpdate,
    RoleRead,
    UserCreate,
    UserRead,
    UserUpdate,
)


logger = logging.getLogger("buildmart.users")


class UserService:
    def authenticate(self, session: Session, email: str, password: str) -> User | None:
        user = session.scalar(
            select(User).options(selectinload(User.role)).where(func.lower(User.email) == email.strip().lower())
        )
        if user is None or not user.is_active:
            return None
        if not check_password_hash(user.password_hash, password):
            return None
        return user

    def list_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(User).options(selectinload(User.role)).order_by(User.name.asc())).all()
        return [UserRead.model_validate(row) for row in rows]

    def get_user(self, session: Session, user_id: uuid.UUID) -> UserRead:
        return UserRead.model_validate(self._get_user(session, user_id))

    def create_user(self, session: Session, dto: UserCreate) -> UserRead:
        if dto.role_id is not None:
            self._get_role(session, dto.role_id)
        user = User(
            name=dto.name.strip(),
            email=str(dto.email).lower(),
            password_hash=generate_password_hash(dto.password),
            role_id=dto.role_id,
            is_ojt=dto.is_ojt,
        )
        session.add(user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("user with this email already exists")
        logger.info("user.created", extra={"user_id": str(user.id)})
        return self.get_user(session, user.id)

    def update_user(self, session: Session, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        user = self._get_user(session, user_id)
        payload = dto.model_dump(exclude_unset=True)

        if "role_id" in payload and payload["role_id"] is not None:
            self._get_role(session, payload["role_id"])
        if "password" in payload:
            password = payload.pop("password")
            if password:
                user.password_hash = generate_password_hash(password)
        if payload.get("email") is not None:
            payload["email"] = str(payload["email"]).lower()

        for key, value in payload.items():
            if key in {"name", "email", "is_ojt", "is_active"} and value is None:
                continue
            setattr(user, key, value)

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("user with this email already exists")
        return self.get_user(session, user.id)

    def delete_user(self, session: Session, user_id: uuid.UUID, *, actor_user_id: uuid.UUID | None = None) -> None:
        user = self._get_user(session, user_id)
        if actor_user_id is not None and user.id == actor_user_id:
            raise ValidationFailedError("you cannot delete your own account")
        session.delete(user)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("user is referenced by other records and cannot be deleted")
        logger.info("user.deleted", extra={"user_id": str(user_id)})

    def _get_user(self, session: Session, user_id: uuid.UUID) -> User:
        user = session.scalar(select(User).options(selectinload(User.role)).where(User.id == user_id))
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _get_role(self, session: Session, role_id: uuid.UUID) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role


class RoleService:
    def list_roles(self, session: Session) -> list[RoleRead]:
        rows = session.scalars(
            select(Role)
            .options(selectinload(Role.permissions).selectinload(RolePermission.permission), selectinload(Role.users))
            .order_by(Role.name.asc())
        ).all()
        return [self._to_read(row) for row in rows]

    def list_permissions(self, session: Session) -> list[PermissionRead]:
        rows = session.scalars(select(Permission).order_by(Permission.module.asc(), Permission.name.asc())).all()
        return [PermissionRead.model_validate(row) for row in rows]

    def create_role(self, session: Session, dto: RoleCreate) -> RoleRead:
        role = Role(name=dto.name.strip(), description=dto.description)
        session.add(role)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise ConflictError("role already exists")

        for permission in self._load_permissions(session, dto.permission_ids):
            session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        session.commit()
        logger.info("role.created", extra={"role_id": str(role.id)})
        return self.get_role(session, role.id)

    def get_role(self, session: Session, role_id: uuid.UUID) -> RoleRead:
        role = session.scalar(
            select(Role)
            .options(selectinload(Role.permissions).selectinload(RolePermission.permission), selectinload(Role.users))
            .where(Role.id == role_id)
        )
        if role is None:
            raise NotFoundError("role not found")
        return self._to_read(role)

    def update_role_permissions(
        self,
        session: Session,
        role_id: uuid.UUID,
        dto: RolePermissionsUpdate,
        cache: PermissionCache,
    ) -> RoleRead:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")

        permissions = self._load_permissions(session, dto.permission_ids)
        for link in list(role.permissions):
            session.delete(link)
        session.flush()
        for permission in permissions:
            session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        session.commit()

        cache.invalidate(role.id)
        session.expire(role)
        return self.get_role(session, role.id)

    def _load_permissions(self, session: Session, permission_ids: list[uuid.UUID]) -> list[Permission]:
        unique_ids = list(dict.fromkeys(permission_ids))
        if not unique_ids:
            return []
        rows = session.scalars(select(Permission).where(Permission.id.in_(unique_ids))).all()
        missing = sorted(str(item) for item in set(unique_ids) - {row.id for row in rows})
        if missing:
            raise ValidationFailedError("unknown permission ids", details={"permission_ids": missing})
        return list(rows)

    def _to_read(self, role: Role) -> RoleRead:
        return RoleRead(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=role.permission_names,
            user_count=len(role.users),
            created_at=role.created_at,
        )


user_service = UserService()
role_service = RoleService()
