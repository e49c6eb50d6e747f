"""Tests for the key-value stores and typed repositories."""

import json
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from municipal_budget.config import Settings
from municipal_budget.models import (
    AuditEvent,
    AuditEventType,
    MunicipalityLedger,
    OtpRecord,
    Session,
    User,
)
from municipal_budget.models.audit import AuditEventBuilder
from municipal_budget.portal import create_app_components, create_store
from municipal_budget.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueAuditStorage,
    LedgerRepository,
    OtpRepository,
    SessionRepository,
    StorageError,
    UserRepository,
)
from municipal_budget.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    MAX_CELL_CHARS,
    STORE_COLUMNS,
)


class FakeWorksheet:
    """In-memory stand-in for a gspread worksheet."""

    def __init__(self, header, fail_with=None):
        self.rows = [list(header)]
        self.fail_with = fail_with
        self.calls = 0

    def _touch(self):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with

    def get_all_values(self):
        self._touch()
        return [list(row) for row in self.rows]

    def append_row(self, row, value_input_option=None):
        self._touch()
        self.rows.append(list(row))

    def update(self, range_name, values, value_input_option=None):
        self._touch()
        index = int(range_name.split(":")[0][1:])
        self.rows[index - 1] = list(values[0])

    def delete_rows(self, index):
        self._touch()
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient with two worksheets."""

    def __init__(self, store_error=None):
        self.store_sheet = FakeWorksheet(STORE_COLUMNS, fail_with=store_error)
        self.audit_sheet = FakeWorksheet(AUDIT_COLUMNS)

    def get_store_sheet(self):
        return self.store_sheet

    def get_audit_sheet(self):
        return self.audit_sheet


class TestInMemoryStore:
    """Tests for the in-memory store."""

    async def test_get_set_delete(self):
        """Basic key-value semantics."""
        store = InMemoryKeyValueStore()
        assert await store.get("a") is None

        await store.set("a", "1")
        assert await store.get("a") == "1"

        assert await store.delete("a")
        assert not await store.delete("a")

    async def test_keys_by_prefix(self):
        """keys() filters on the prefix."""
        store = InMemoryKeyValueStore({"x:1": "", "x:2": "", "y": ""})
        assert sorted(await store.keys("x:")) == ["x:1", "x:2"]


class TestJsonFileStore:
    """Tests for the file-backed store."""

    async def test_survives_reopen(self, tmp_path):
        """Data written by one instance is read by the next."""
        path = tmp_path / "store.json"
        await JsonFileKeyValueStore(str(path)).set("platform_data_initialized", "true")

        reopened = JsonFileKeyValueStore(str(path))
        assert await reopened.get("platform_data_initialized") == "true"
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "platform_data_initialized": "true",
        }

    async def test_corrupt_file_raises(self, tmp_path):
        """An unreadable file is a storage error, not an empty store."""
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            await JsonFileKeyValueStore(str(path)).get("anything")

    def test_json_backend_from_settings(self, tmp_path, monkeypatch):
        """STORAGE_BACKEND=json selects the file store."""
        monkeypatch.setenv("STORAGE_BACKEND", "json")
        monkeypatch.setenv("DATA_FILE", str(tmp_path / "portal.json"))
        assert isinstance(create_store(Settings()), JsonFileKeyValueStore)


class TestRepositories:
    """Tests for the typed repositories."""

    async def test_corrupt_collection_raises(self, store):
        """Garbage under a collection key is not silently dropped."""
        await store.set("platform_users", '[{"email": 3}]')
        with pytest.raises(StorageError, match="platform_users"):
            await UserRepository(store).list_all()

    async def test_users_round_trip(self, store):
        """Users are stored as one JSON list."""
        repo = UserRepository(store)
        user = User(email="a@b.tn", password_hash="hash", name="A")
        await repo.save_all([user])
        assert await repo.list_all() == [user]

    async def test_ledger_keys_are_per_municipality(self, store):
        """Each ledger lives under its own prefixed key."""
        repo = LedgerRepository(store)
        first, second = uuid4(), uuid4()
        await repo.save(MunicipalityLedger.blank(first))
        await repo.save(MunicipalityLedger.blank(second))

        assert sorted(await repo.list_ids()) == sorted([first, second])
        assert await store.get(f"platform_budget_data:{first}") is not None

    async def test_otp_key_removed_when_empty(self, store):
        """Saving no codes deletes the key."""
        repo = OtpRepository(store)
        record = OtpRecord(
            email="a@b.tn",
            code_hash="h",
            expires_at=datetime.utcnow() + timedelta(minutes=10),
        )
        await repo.save_all({"a@b.tn": record})
        assert "platform_mfa_codes" in await store.keys()

        await repo.save_all({})
        assert "platform_mfa_codes" not in await store.keys()

    async def test_session_set_and_clear(self, store):
        """The session is a single document."""
        repo = SessionRepository(store)
        user = User(email="a@b.tn", password_hash="hash", name="A")
        await repo.set(Session.from_user(user))
        assert (await repo.get()).user_id == user.id

        assert await repo.clear()
        assert await repo.get() is None


class TestAuditStorage:
    """Tests for the capped audit log."""

    async def test_oldest_events_dropped(self, store):
        """Only the newest max_events are kept."""
        storage = KeyValueAuditStorage(store, max_events=3)
        start = datetime(2025, 1, 1)
        for i in range(5):
            await storage.append_event(AuditEvent(
                event_type=AuditEventType.LOGIN_FAILED,
                description=f"attempt {i}",
                timestamp=start + timedelta(minutes=i),
            ))

        events = await storage.get_recent_events(limit=10)
        assert [e.description for e in events] == ["attempt 4", "attempt 3", "attempt 2"]

    async def test_events_by_entity(self, store):
        """Entity history is returned oldest first."""
        storage = KeyValueAuditStorage(store)
        entity_id = uuid4()
        start = datetime(2025, 1, 1)
        for i in range(2):
            await storage.append_event(AuditEvent(
                event_type=AuditEventType.MUNICIPALITY_UPDATED,
                entity_type="municipality",
                entity_id=entity_id,
                description=f"update {i}",
                timestamp=start + timedelta(minutes=i),
            ))

        events = await storage.get_events_by_entity("municipality", entity_id)
        assert [e.description for e in events] == ["update 0", "update 1"]



class TestGoogleSheetsStorage:
    """Tests for the Sheets store and audit log against a fake client."""

    async def test_store_set_get_delete(self):
        """Keys map to rows; a second set rewrites the same row."""
        client = FakeSheetsClient()
        store = GoogleSheetsKeyValueStore(client)

        await store.set("platform_users", "[]")
        await store.set("platform_users", "[1]")

        assert await store.get("platform_users") == "[1]"
        assert len(client.store_sheet.rows) == 2
        assert await store.delete("platform_users")
        assert await store.keys() == []

    async def test_oversized_value_fails_without_retry(self):
        """A value too big for a cell is refused at once."""
        client = FakeSheetsClient()
        store = GoogleSheetsKeyValueStore(client)

        with pytest.raises(StorageError, match="at most"):
            await store.set("platform_audit_log", "x" * (MAX_CELL_CHARS + 1))
        assert client.store_sheet.calls == 0

    async def test_permanent_write_error_is_not_retried(self):
        """Only transient API errors are retried."""
        client = FakeSheetsClient(store_error=RuntimeError("bad range"))
        store = GoogleSheetsKeyValueStore(client)

        with pytest.raises(StorageError, match="bad range"):
            await store.set("platform_users", "[]")
        assert client.store_sheet.calls == 1

    async def test_audit_log_is_one_row_per_event(self):
        """Hundreds of events never touch the key-value sheet."""
        client = FakeSheetsClient()
        storage = GoogleSheetsAuditStorage(client)
        municipality_id = uuid4()

        for year in range(300):
            assert await storage.append_event(AuditEventBuilder.balance_checked(
                municipality_id, 2000 + year % 27, True, "100000.00", "100000.00",
            ))

        assert len(client.audit_sheet.rows) == 301
        assert client.store_sheet.rows == [STORE_COLUMNS]
        events = await storage.get_events_by_entity("ledger", municipality_id)
        assert len(events) == 300
        assert events[0].details["total_revenue"] == "100000.00"

    async def test_audit_rows_round_trip(self):
        """Events read back newest first, with their fields intact."""
        storage = GoogleSheetsAuditStorage(FakeSheetsClient())
        start = datetime(2025, 1, 1)
        for i in range(3):
            await storage.append_event(AuditEvent(
                event_type=AuditEventType.LOGIN_FAILED,
                description=f"attempt {i}",
                details={"stage": "password"},
                is_user_action=True,
                timestamp=start + timedelta(minutes=i),
            ))

        events = await storage.get_recent_events(limit=2)

        assert [e.description for e in events] == ["attempt 2", "attempt 1"]
        assert events[0].event_type == AuditEventType.LOGIN_FAILED
        assert events[0].details == {"stage": "password"}
        assert events[0].is_user_action

    async def test_hand_edited_audit_row_is_skipped(self):
        """A row that no longer parses does not hide the others."""
        client = FakeSheetsClient()
        storage = GoogleSheetsAuditStorage(client)
        await storage.append_event(AuditEventBuilder.system_error("storage", "down"))
        client.audit_sheet.rows.append(["not-a-uuid", "yesterday"])

        events = await storage.get_recent_events()
        assert [e.event_type for e in events] == [AuditEventType.SYSTEM_ERROR]

    async def test_sheets_store_gets_sheet_audit_log(self):
        """The factory pairs a Sheets store with the audit worksheet."""
        client = FakeSheetsClient()
        components = create_app_components(store=GoogleSheetsKeyValueStore(client))

        await components.audit_logger.log_error("storage", "sheet offline")

        assert len(client.audit_sheet.rows) == 2
        assert "platform_audit_log" not in await components.store.keys()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
