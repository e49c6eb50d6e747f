"""
User Directory

Account management and the first authentication factor.

CRITICAL RULES:
- Emails are unique regardless of case
- Passwords are stored as salted hashes only
- Inactive users never authenticate
- The platform always keeps at least one active administrator
"""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from municipal_budget.audit import AuditLogger
from municipal_budget.auth.passwords import PasswordHasher
from municipal_budget.config import AuthSettings, get_settings
from municipal_budget.errors import ConflictError, NotFoundError
from municipal_budget.models.audit import AuditEventBuilder, AuditEventType
from municipal_budget.models.user import (
    User,
    UserCreate,
    UserRole,
    UserUpdate,
)
from municipal_budget.services.storage import UserRepository


logger = structlog.get_logger(__name__)


class UserDirectory:
    """CRUD over portal accounts plus password authentication."""

    def __init__(
        self,
        repository: UserRepository,
        hasher: Optional[PasswordHasher] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AuthSettings] = None,
    ):
        self._repo = repository
        self._settings = settings or get_settings().auth
        self._hasher = hasher or PasswordHasher(self._settings)
        self._audit_logger = audit_logger
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_all(self) -> list[User]:
        return await self._repo.list_all()

    async def get(self, user_id: UUID) -> Optional[User]:
        for user in await self._repo.list_all():
            if user.id == user_id:
                return user
        return None

    async def get_by_email(self, email: str) -> Optional[User]:
        for user in await self._repo.list_all():
            if user.matches_email(email):
                return user
        return None

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """
        Check email and password.

        Returns the user on success, None otherwise. The caller cannot
        tell an unknown email from a wrong password.
        """
        user = await self.get_by_email(email)
        if user is None or not user.is_active:
            return None
        if not self._hasher.verify(user.password_hash, password):
            return None
        return user

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, data: UserCreate) -> User:
        """
        Create an active account.

        Raises:
            ConflictError: If the email is already registered
        """
        async with self._lock:
            users = await self._repo.list_all()
            if any(u.matches_email(data.email) for u in users):
                raise ConflictError(f"A user with email {data.email} already exists")

            user = User(
                email=data.email,
                password_hash=self._hasher.hash(data.password),
                role=data.role,
                name=data.name,
            )
            users.append(user)
            await self._repo.save_all(users)

        logger.info("user_created", user_id=str(user.id), role=user.role.value)
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.user_changed(
                AuditEventType.USER_CREATED, user.id, user.email,
            ))
        return user

    async def update(self, user_id: UUID, patch: UserUpdate) -> User:
        """
        Apply a partial update. id and created_at never change.

        Raises:
            NotFoundError: Unknown user
            ConflictError: Email taken by another user, or the change
                would leave no active administrator
        """
        changes = {
            k: v for k, v in patch.model_dump(exclude_unset=True).items()
            if v is not None
        }

        async with self._lock:
            users = await self._repo.list_all()
            index = self._index_of(users, user_id)
            current = users[index]

            if "email" in changes and any(
                u.id != user_id and u.matches_email(changes["email"]) for u in users
            ):
                raise ConflictError(
                    f"A user with email {changes['email']} already exists"
                )

            if "password" in changes:
                changes["password_hash"] = self._hasher.hash(changes.pop("password"))

            updated = current.model_copy(update=changes)
            self._guard_last_admin(users, current, updated)

            users[index] = updated
            await self._repo.save_all(users)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.user_changed(
                AuditEventType.USER_UPDATED,
                updated.id,
                updated.email,
                changed_fields=[
                    "password" if k == "password_hash" else k for k in changes
                ],
            ))
        return updated

    async def delete(self, user_id: UUID) -> None:
        """
        Raises:
            NotFoundError: Unknown user
            ConflictError: User is the last active administrator
        """
        async with self._lock:
            users = await self._repo.list_all()
            index = self._index_of(users, user_id)
            removed = users[index]
            self._guard_last_admin(users, removed, None)

            del users[index]
            await self._repo.save_all(users)

        logger.info("user_deleted", user_id=str(user_id))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.user_changed(
                AuditEventType.USER_DELETED, removed.id, removed.email,
            ))

    async def toggle_active(self, user_id: UUID) -> User:
        """Flip the active flag (deactivation obeys the last-admin guard)."""
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return await self.update(user_id, UserUpdate(is_active=not user.is_active))

    async def ensure_default_admin(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[User]:
        """
        Create the bootstrap administrator if there are no users at all.

        Returns the created admin, or None if the directory was not empty.
        """
        if await self._repo.list_all():
            return None

        admin = await self.create(UserCreate(
            email=email or self._settings.bootstrap_admin_email,
            password=password or self._settings.bootstrap_admin_password,
            role=UserRole.ADMIN,
            name=self._settings.bootstrap_admin_name,
        ))
        logger.warning(
            "default_admin_created",
            email=admin.email,
            hint="change the bootstrap password",
        )
        return admin

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _index_of(users: list[User], user_id: UUID) -> int:
        for i, user in enumerate(users):
            if user.id == user_id:
                return i
        raise NotFoundError(f"User {user_id} not found")

    @staticmethod
    def _guard_last_admin(
        users: list[User],
        before: User,
        after: Optional[User],
    ) -> None:
        """Refuse a change that leaves no active administrator."""
        if not (before.is_admin and before.is_active):
            return
        if after is not None and after.is_admin and after.is_active:
            return
        others = [
            u for u in users
            if u.id != before.id and u.is_admin and u.is_active
        ]
        if not others:
            raise ConflictError("Cannot remove the last active administrator")
