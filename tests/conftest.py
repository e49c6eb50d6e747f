"""
Shared fixtures.

Everything runs against an in-memory store; no network, no mail.
The fake notifier keeps every code it is asked to send so tests can
play the part of the user reading their inbox.
"""

from datetime import datetime, timedelta

import pytest

from municipal_budget.audit import AuditLogger
from municipal_budget.auth import OtpManager, UserDirectory
from municipal_budget.budget import BudgetLedger, MunicipalityRegistry
from municipal_budget.config import AppSettings, AuthSettings, OtpSettings
from municipal_budget.errors import DeliveryError
from municipal_budget.interchange import ImportExportService
from municipal_budget.models.budget import MunicipalityCreate
from municipal_budget.models.user import Session, UserCreate, UserRole
from municipal_budget.portal import create_app_components
from municipal_budget.services.mail import Notifier
from municipal_budget.services.storage import (
    InMemoryKeyValueStore,
    KeyValueAuditStorage,
    LedgerRepository,
    MunicipalityRepository,
    OtpRepository,
    UserRepository,
)


class FakeNotifier(Notifier):
    """Records deliveries instead of sending them."""

    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, int]] = []
        self.fail = fail

    async def send(self, to_address: str, code: str, expiry_minutes: int) -> str:
        if self.fail:
            raise DeliveryError("relay down")
        self.sent.append((to_address, code, expiry_minutes))
        return f"msg-{len(self.sent)}"

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def failing_notifier():
    return FakeNotifier(fail=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def otp_settings():
    return OtpSettings(
        code_length=6,
        expiry_minutes=10,
        max_attempts=3,
        delivery_timeout_seconds=0.5,
    )


@pytest.fixture
def auth_settings():
    return AuthSettings(
        bootstrap_admin_email="admin@platform.com",
        bootstrap_admin_password="admin123",
        bootstrap_admin_name="Administrator",
        password_pepper="",
    )


@pytest.fixture
def app_settings():
    return AppSettings(max_import_rows=50)


@pytest.fixture
def audit_logger(store):
    return AuditLogger(KeyValueAuditStorage(store))


@pytest.fixture
def otp_manager(store, notifier, otp_settings, clock, audit_logger):
    return OtpManager(
        OtpRepository(store),
        notifier=notifier,
        settings=otp_settings,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def directory(store, auth_settings, audit_logger):
    return UserDirectory(
        UserRepository(store),
        audit_logger=audit_logger,
        settings=auth_settings,
    )


@pytest.fixture
def ledger(store, app_settings, audit_logger):
    return BudgetLedger(
        LedgerRepository(store),
        audit_logger=audit_logger,
        settings=app_settings,
    )


@pytest.fixture
def registry(store, ledger, audit_logger):
    return MunicipalityRegistry(
        MunicipalityRepository(store),
        ledger=ledger,
        audit_logger=audit_logger,
    )


@pytest.fixture
def interchange(registry, ledger, app_settings, clock):
    return ImportExportService(registry, ledger, settings=app_settings, clock=clock)


@pytest.fixture
async def municipality(registry):
    return await registry.create(MunicipalityCreate(
        name="Tunis",
        code="1000",
        region="Tunis",
        sub_region="Tunis Centre",
    ))


@pytest.fixture
def components(store, notifier):
    return create_app_components(store=store, notifier=notifier)


@pytest.fixture
async def admin_session(components):
    admin = await components.directory.ensure_default_admin()
    return Session.from_user(admin)


@pytest.fixture
async def employee(components, admin_session):
    return await components.directory.create(UserCreate(
        email="agent.sousse@municipalite.tn",
        password="agent123",
        name="Mohamed Hammami",
        role=UserRole.EMPLOYEE,
    ))


@pytest.fixture
def employee_session(employee):
    return Session.from_user(employee)
