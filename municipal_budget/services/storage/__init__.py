"""
Storage Services Package

Provides the abstract key-value interface, its implementations
(memory, JSON file, Google Sheets) and the typed repositories built on it.
"""

from municipal_budget.services.storage.interface import (
    AuditStorageInterface,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)
from municipal_budget.services.storage.memory import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from municipal_budget.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsKeyValueStore,
)
from municipal_budget.services.storage.repositories import (
    ALL_FIXED_KEYS,
    INIT_KEY,
    LEDGER_KEY_PREFIX,
    KeyedLocks,
    KeyValueAuditStorage,
    LedgerRepository,
    MunicipalityRepository,
    OtpRepository,
    SessionRepository,
    UserRepository,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStore",
    # Exceptions
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsKeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    # Repositories
    "ALL_FIXED_KEYS",
    "INIT_KEY",
    "LEDGER_KEY_PREFIX",
    "KeyedLocks",
    "KeyValueAuditStorage",
    "LedgerRepository",
    "MunicipalityRepository",
    "OtpRepository",
    "SessionRepository",
    "UserRepository",
]
