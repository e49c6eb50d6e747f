"""
Abstract Storage Interface

DESIGN DECISION: All persistence goes through a key-value store of
string blobs. This allows us to:
1. Keep an in-memory store for tests and demos
2. Persist to a JSON file or a Google Sheets worksheet
3. Swap in a real database without touching business logic

Typed access (users, municipalities, ledgers...) lives in the
repositories built on top of this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from municipal_budget.models.audit import AuditEvent


class KeyValueStore(ABC):
    """
    Abstract interface for blob storage keyed by name.

    Any storage implementation (memory, file, Google Sheets, Redis...)
    must implement these methods.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read a blob.

        Returns:
            The stored string, or None if the key is absent
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Create or overwrite a blob.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a blob.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with `prefix`, sorted."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
