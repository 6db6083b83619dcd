from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.business.organization.models import Department, User, UserSession
from app.business.organization.repository import DepartmentRepository, SessionRepository, UserRepository
from app.business.organization.schemas import (
    AccessTokenResponse,
    DepartmentCreate,
    DepartmentRead,
    DepartmentUpdate,
    LoginResponse,
    MessageResponse,
    UserCreate,
    UserRead,
    UserSummary,
    UserUpdate,
)
from app.core.config import get_settings
from app.core.security import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from app.platform.security.context import Actor, Role
from app.platform.security.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from app.platform.security.policies import ensure_can_manage_users


logger = logging.getLogger("app.organization")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class AuthService:
    user_repository: UserRepository = UserRepository()
    session_repository: SessionRepository = SessionRepository()

    def login(self, session: Session, login: str, password: str) -> LoginResponse:
        user = self.user_repository.find_by_login(session, login)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("auth.login_failed")
            raise UnauthorizedError("Invalid credentials")

        access_token = create_access_token(user.id, user.email, user.role)
        refresh_token = create_refresh_token(user.id, user.email, user.role)
        settings = get_settings()
        self.session_repository.create(
            session,
            UserSession(
                user_id=user.id,
                token=refresh_token,
                expires_at=utcnow() + timedelta(days=settings.refresh_token_expire_days),
            ),
        )
        session.commit()

        logger.info("auth.login", extra={"actor_id": str(user.id), "role": user.role})
        return LoginResponse(
            user=UserRead.model_validate(user),
            access_token=access_token,
            refresh_token=refresh_token,
        )

    def refresh(self, session: Session, refresh_token: str) -> AccessTokenResponse:
        payload = decode_token(refresh_token, REFRESH_TOKEN_TYPE)
        if payload is None:
            raise UnauthorizedError("Invalid or expired refresh token")

        stored = self.session_repository.find_by_token(session, refresh_token)
        if stored is None or _as_utc(stored.expires_at) < utcnow():
            raise UnauthorizedError("Invalid or expired refresh token")

        user = self.user_repository.get_active(session, stored.user_id)
        if user is None:
            raise UnauthorizedError("Invalid or expired refresh token")

        return AccessTokenResponse(access_token=create_access_token(user.id, user.email, user.role))

    def logout(self, session: Session, refresh_token: str | None) -> MessageResponse:
        if refresh_token:
            self.session_repository.delete_by_token(session, refresh_token)
            session.commit()
        return MessageResponse(message="Logged out successfully")

    def me(self, session: Session, actor: Actor) -> UserRead:
        user = self.user_repository.get_active(session, actor.user_id)
        if user is None:
            raise NotFoundError("User not found")
        return UserRead.model_validate(user)


@dataclass(slots=True)
class UserService:
    user_repository: UserRepository = UserRepository()
    department_repository: DepartmentRepository = DepartmentRepository()
    session_repository: SessionRepository = SessionRepository()

    def list_users(self, session: Session, actor: Actor) -> list[UserRead]:
        ensure_can_manage_users(actor)
        stmt = self.user_repository.scoped(select(User), actor).options(selectinload(User.department))
        users = session.scalars(stmt.order_by(User.created_at.desc())).all()
        return [UserRead.model_validate(item) for item in users]

    def get_user(self, session: Session, actor: Actor, user_id: uuid.UUID) -> UserRead:
        ensure_can_manage_users(actor)
        return UserRead.model_validate(self._get_or_404(session, user_id))

    def list_managers(self, session: Session, actor: Actor) -> list[UserSummary]:
        ensure_can_manage_users(actor)
        managers = session.scalars(
            select(User)
            .where(User.deleted_at.is_(None), User.role.in_([Role.ADMIN.value, Role.GM.value]))
            .order_by(User.name.asc())
        ).all()
        return [UserSummary.model_validate(item) for item in managers]

    def create_user(self, session: Session, actor: Actor, dto: UserCreate) -> UserRead:
        ensure_can_manage_users(actor)
        email = str(dto.email).lower()
        if self.user_repository.find_conflict(session, email=email, username=dto.username) is not None:
            raise ConflictError("User with this email or username already exists")

        self._validate_linkage(session, role=dto.role, department_id=dto.department_id, manager_id=dto.manager_id)

        user = User(
            email=email,
            username=dto.username,
            name=dto.name.strip(),
            password_hash=hash_password(dto.password),
            role=dto.role.value,
            department_id=dto.department_id,
            manager_id=dto.manager_id,
        )
        session.add(user)
        try:
            session.flush()
            self._sync_department_lead(session, user, previous_department_id=None)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("User with this email or username already exists")

        logger.info("user.created", extra={"actor_id": str(actor.user_id), "resource_id": str(user.id)})
        return UserRead.model_validate(self._get_or_404(session, user.id))

    def update_user(self, session: Session, actor: Actor, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        ensure_can_manage_users(actor)
        user = self._get_or_404(session, user_id)
        provided = dto.model_fields_set

        email = str(dto.email).lower() if dto.email is not None else None
        if email or dto.username:
            conflict = self.user_repository.find_conflict(
                session,
                email=email,
                username=dto.username,
                exclude_id=user.id,
            )
            if conflict is not None:
                raise ConflictError("Email or username already in use")

        role = dto.role if dto.role is not None else Role.parse(user.role)
        department_id = dto.department_id if "department_id" in provided else user.department_id
        manager_id = dto.manager_id if "manager_id" in provided else user.manager_id
        if role is None:
            raise ValidationError("Invalid role", fields={"role": "Unknown role"})
        if manager_id == user.id:
            raise ValidationError("Invalid manager", fields={"manager_id": "A user cannot manage themselves"})
        self._validate_linkage(session, role=role, department_id=department_id, manager_id=manager_id)

        previous_department_id = user.department_id
        if email is not None:
            user.email = email
        if "username" in provided:
            user.username = dto.username
        if dto.name is not None:
            user.name = dto.name.strip()
        user.role = role.value
        user.department_id = department_id
        user.manager_id = manager_id
        user.updated_at = utcnow()

        try:
            session.flush()
            self._sync_department_lead(session, user, previous_department_id=previous_department_id)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Email or username already in use")

        logger.info("user.updated", extra={"actor_id": str(actor.user_id), "resource_id": str(user.id)})
        return UserRead.model_validate(self._get_or_404(session, user.id))

    def delete_user(self, session: Session, actor: Actor, user_id: uuid.UUID) -> MessageResponse:
        ensure_can_manage_users(actor)
        user = self._get_or_404(session, user_id)
        if user.id == actor.user_id:
            raise ValidationError("Cannot delete yourself", fields={"id": "Cannot delete the current user"})

        user.deleted_at = utcnow()
        self._release_department_lead(session, user.id, user.department_id)
        self.session_repository.delete_for_user(session, user.id)
        session.commit()

        logger.info("user.deleted", extra={"actor_id": str(actor.user_id), "resource_id": str(user.id)})
        return MessageResponse(message="User deleted successfully")

    def reset_password(self, session: Session, actor: Actor, user_id: uuid.UUID, password: str) -> MessageResponse:
        ensure_can_manage_users(actor)
        user = self._get_or_404(session, user_id)
        user.password_hash = hash_password(password)
        user.updated_at = utcnow()
        self.session_repository.delete_for_user(session, user.id)
        session.commit()
        return MessageResponse(message="Password reset successfully")

    def _get_or_404(self, session: Session, user_id: uuid.UUID) -> User:
        user = self.user_repository.get_active(session, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _validate_linkage(
        self,
        session: Session,
        *,
        role: Role,
        department_id: uuid.UUID | None,
        manager_id: uuid.UUID | None,
    ) -> None:
        errors: dict[str, str] = {}
        if department_id is not None and self.department_repository.get(session, department_id) is None:
            errors["department_id"] = "Department not found"
        if role == Role.GM and department_id is None:
            errors["department_id"] = "A GM must lead a department"

        if manager_id is not None:
            manager = self.user_repository.get_active(session, manager_id)
            expected_manager_role = {Role.AM: Role.GM, Role.GM: Role.ADMIN}.get(role)
            if manager is None:
                errors["manager_id"] = "Manager not found"
            elif expected_manager_role is None or Role.parse(manager.role) != expected_manager_role:
                errors["manager_id"] = f"A {role.value} cannot report to a {manager.role}"
            elif (
                role == Role.AM
                and department_id is not None
                and manager.department_id is not None
                and manager.department_id != department_id
            ):
                errors["manager_id"] = "Manager belongs to a different department"

        if errors:
            raise ValidationError("Invalid user linkage", fields=errors)

    def _sync_department_lead(self, session: Session, user: User, *, previous_department_id: uuid.UUID | None) -> None:
        if previous_department_id is not None and previous_department_id != user.department_id:
            self._release_department_lead(session, user.id, previous_department_id)
        if user.role == Role.GM.value and user.department_id is not None:
            department = self.department_repository.get(session, user.department_id)
            if department is not None:
                department.gm_id = user.id
        elif user.department_id is not None:
            self._release_department_lead(session, user.id, user.department_id)

    def _release_department_lead(self, session: Session, user_id: uuid.UUID, department_id: uuid.UUID | None) -> None:
        if department_id is None:
            return
        department = self.department_repository.get(session, department_id)
        if department is not None and department.gm_id == user_id:
            department.gm_id = None


@dataclass(slots=True)
class DepartmentService:
    department_repository: DepartmentRepository = DepartmentRepository()
    user_repository: UserRepository = UserRepository()

    def list_departments(self, session: Session, actor: Actor) -> list[DepartmentRead]:
        stmt = self.department_repository.apply_scope_query(select(Department), actor)
        departments = session.scalars(stmt.order_by(Department.name.asc())).all()
        return [DepartmentRead.model_validate(item) for item in departments]

    def create_department(self, session: Session, actor: Actor, dto: DepartmentCreate) -> DepartmentRead:
        ensure_can_manage_users(actor)
        name = dto.name.strip()
        if self.department_repository.find_by_name(session, name) is not None:
            raise ConflictError("Department name already exists")

        department = Department(name=name)
        session.add(department)
        try:
            session.flush()
            if dto.gm_id is not None:
                self._assign_gm(session, department, dto.gm_id)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Department name already exists")
        session.refresh(department)
        return DepartmentRead.model_validate(department)

    def update_department(
        self,
        session: Session,
        actor: Actor,
        department_id: uuid.UUID,
        dto: DepartmentUpdate,
    ) -> DepartmentRead:
        ensure_can_manage_users(actor)
        department = self.department_repository.get(session, department_id)
        if department is None:
            raise NotFoundError("Department not found")

        if dto.name is not None:
            name = dto.name.strip()
            existing = self.department_repository.find_by_name(session, name)
            if existing is not None and existing.id != department.id:
                raise ConflictError("Department name already exists")
            department.name = name
        if "gm_id" in dto.model_fields_set:
            if dto.gm_id is None:
                department.gm_id = None
            else:
                self._assign_gm(session, department, dto.gm_id)
        department.updated_at = utcnow()

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Department name already exists")
        session.refresh(department)
        return DepartmentRead.model_validate(department)

    def _assign_gm(self, session: Session, department: Department, gm_id: uuid.UUID) -> None:
        gm = self.user_repository.get_active(session, gm_id)
        if gm is None or Role.parse(gm.role) != Role.GM:
            raise ValidationError("Invalid GM", fields={"gm_id": "User is not an active GM"})

        if gm.department_id is not None and gm.department_id != department.id:
            previous = self.department_repository.get(session, gm.department_id)
            if previous is not None and previous.gm_id == gm.id:
                previous.gm_id = None
        gm.department_id = department.id
        department.gm_id = gm.id


auth_service = AuthService()
user_service = UserService()
department_service = DepartmentService()
