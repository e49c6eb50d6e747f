"""
Typed Repositories over the Key-Value Store

Each collection is one self-contained JSON document:

    platform_users                  list[User]
    platform_communes               list[Municipality]
    platform_budget_data:<id>       MunicipalityLedger
    platform_mfa_codes              dict[email, OtpRecord]
    platform_session                Session
    platform_audit_log              list[AuditEvent]

Corrupt documents raise StorageError rather than being replaced by an
empty collection.
"""

import asyncio
from collections import defaultdict
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from municipal_budget.errors import ConflictError
from municipal_budget.models.audit import AuditEvent
from municipal_budget.models.budget import Municipality, MunicipalityLedger
from municipal_budget.models.otp import OtpRecord
from municipal_budget.models.user import Session, User
from municipal_budget.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
    StorageError,
)


USERS_KEY = "platform_users"
MUNICIPALITIES_KEY = "platform_communes"
LEDGER_KEY_PREFIX = "platform_budget_data:"
OTP_KEY = "platform_mfa_codes"
SESSION_KEY = "platform_session"
AUDIT_KEY = "platform_audit_log"
INIT_KEY = "platform_data_initialized"

ALL_FIXED_KEYS = (
    USERS_KEY,
    MUNICIPALITIES_KEY,
    OTP_KEY,
    SESSION_KEY,
    AUDIT_KEY,
    INIT_KEY,
)

T = TypeVar("T", bound=BaseModel)


class KeyedLocks:
    """One asyncio.Lock per resource name, created on first use."""

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, name: str) -> asyncio.Lock:
        return self._locks[name]


class _JsonCollection(Generic[T]):
    """A list of models stored under one key."""

    def __init__(self, store: KeyValueStore, key: str, item_type: type[T]):
        self._store = store
        self._key = key
        self._adapter = TypeAdapter(list[item_type])

    async def list_all(self) -> list[T]:
        raw = await self._store.get(self._key)
        if not raw:
            return []
        try:
            return self._adapter.validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt document under {self._key}: {e}")

    async def save_all(self, items: list[T]) -> None:
        await self._store.set(self._key, self._adapter.dump_json(items).decode("utf-8"))


class UserRepository(_JsonCollection[User]):
    def __init__(self, store: KeyValueStore):
        super().__init__(store, USERS_KEY, User)


class MunicipalityRepository(_JsonCollection[Municipality]):
    def __init__(self, store: KeyValueStore):
        super().__init__(store, MUNICIPALITIES_KEY, Municipality)


class LedgerRepository:
    """
    One ledger blob per municipality.

    save() is an optimistic write: it refuses a ledger whose version no
    longer matches the stored one, then bumps the version.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store

    @staticmethod
    def _key(municipality_id: UUID) -> str:
        return f"{LEDGER_KEY_PREFIX}{municipality_id}"

    async def get(self, municipality_id: UUID) -> Optional[MunicipalityLedger]:
        raw = await self._store.get(self._key(municipality_id))
        if not raw:
            return None
        try:
            return MunicipalityLedger.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt ledger for {municipality_id}: {e}")

    async def save(self, ledger: MunicipalityLedger) -> MunicipalityLedger:
        stored = await self.get(ledger.municipality_id)
        stored_version = stored.version if stored else 0
        if ledger.version != stored_version:
            raise ConflictError(
                "Budget data was modified concurrently; reload and retry"
            )
        saved = ledger.model_copy(update={"version": stored_version + 1})
        await self._store.set(self._key(ledger.municipality_id), saved.model_dump_json())
        return saved

    async def delete(self, municipality_id: UUID) -> bool:
        return await self._store.delete(self._key(municipality_id))

    async def list_ids(self) -> list[UUID]:
        keys = await self._store.keys(LEDGER_KEY_PREFIX)
        return [UUID(k[len(LEDGER_KEY_PREFIX):]) for k in keys]


class OtpRepository:
    """All live verification codes, keyed by normalized email."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._adapter = TypeAdapter(dict[str, OtpRecord])

    async def load_all(self) -> dict[str, OtpRecord]:
        raw = await self._store.get(OTP_KEY)
        if not raw:
            return {}
        try:
            return self._adapter.validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt verification code store: {e}")

    async def save_all(self, records: dict[str, OtpRecord]) -> None:
        if not records:
            await self._store.delete(OTP_KEY)
            return
        await self._store.set(OTP_KEY, self._adapter.dump_json(records).decode("utf-8"))


class SessionRepository:
    """The current client session, if any."""

    def __init__(self, store: KeyValueStore):
        self._store = store

    async def get(self) -> Optional[Session]:
        raw = await self._store.get(SESSION_KEY)
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt session: {e}")

    async def set(self, session: Session) -> None:
        await self._store.set(SESSION_KEY, session.model_dump_json())

    async def clear(self) -> bool:
        return await self._store.delete(SESSION_KEY)


class KeyValueAuditStorage(AuditStorageInterface):
    """
    Audit log kept as one capped list in the key-value store.

    Oldest events are dropped once `max_events` is exceeded.
    """

    def __init__(self, store: KeyValueStore, max_events: int = 5000):
        self._events = _JsonCollection(store, AUDIT_KEY, AuditEvent)
        self._max_events = max_events
        self._lock = asyncio.Lock()

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            events = await self._events.list_all()
            events.append(event)
            await self._events.save_all(events[-self._max_events:])
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in await self._events.list_all()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = await self._events.list_all()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
