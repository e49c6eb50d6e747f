"""
Portal Orchestrator for the Municipal Budget Platform

This module ties together all the components and defines:
1. Login (password -> emailed one-time code -> session)
2. The portal facade used by any front end (users, municipalities,
   budget ledgers, import/export)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No session without both factors
- User and municipality management is admin-only
- A ledger is visible to admins and to its municipality's owner only
- Every failure comes back as an OperationResult with a readable message;
  expected errors never escape to the caller
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from municipal_budget.audit import AuditLogger, create_correlation_id
from municipal_budget.auth import OtpManager, UserDirectory
from municipal_budget.budget import BudgetLedger, MunicipalityRegistry
from municipal_budget.config import Settings, get_settings
from municipal_budget.errors import (
    AuthorizationError,
    NotFoundError,
    PortalError,
    first_error_message,
)
from municipal_budget.interchange import ImportExportService
from municipal_budget.models.audit import AuditEventBuilder
from municipal_budget.models.budget import (
    FutureEventCreate,
    FutureEventUpdate,
    Municipality,
    MunicipalityCreate,
    MunicipalityUpdate,
)
from municipal_budget.models.otp import OtpChallenge
from municipal_budget.models.results import OperationResult
from municipal_budget.models.user import Session, UserCreate, UserUpdate
from municipal_budget.services.mail import MailRelayNotifier, Notifier
from municipal_budget.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyedLocks,
    KeyValueAuditStorage,
    KeyValueStore,
    LedgerRepository,
    MunicipalityRepository,
    OtpRepository,
    SessionRepository,
    StorageError,
    UserRepository,
)


logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


class LoginFlow:
    """
    Orchestrates the two-factor login.

    Flow:
    1. start    -> check password, issue and email a one-time code
    2. complete -> verify the code, open the session
    3. logout   -> close the session

    A wrong password and an unknown email produce the same message.
    """

    def __init__(
        self,
        directory: UserDirectory,
        otp_manager: OtpManager,
        sessions: SessionRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._directory = directory
        self._otp = otp_manager
        self._sessions = sessions
        self._audit_logger = audit_logger

    async def start(
        self,
        email: str,
        password: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[bool, str, Optional[OtpChallenge]]:
        """
        First factor.

        Returns:
            (accepted, message, challenge)

        If accepted is False, challenge is None.
        """
        correlation_id = correlation_id or create_correlation_id()

        user = await self._directory.authenticate(email, password)
        if user is None:
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.login_failed(
                    email=email.strip().lower(),
                    stage="password",
                    correlation_id=correlation_id,
                ))
            return False, INVALID_CREDENTIALS, None

        challenge = await self._otp.issue(user.email, correlation_id=correlation_id)
        return True, challenge.message, challenge

    async def resend_code(
        self,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[bool, str, Optional[OtpChallenge]]:
        """Issue a fresh code for an active account; the previous one dies."""
        user = await self._directory.get_by_email(email)
        if user is None or not user.is_active:
            return False, INVALID_CREDENTIALS, None

        challenge = await self._otp.issue(user.email, correlation_id=correlation_id)
        return True, challenge.message, challenge

    async def complete(
        self,
        email: str,
        code: str,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Session], str]:
        """
        Second factor.

        Returns:
            (session, message); session is None on failure
        """
        correlation_id = correlation_id or create_correlation_id()

        verification = await self._otp.verify(email, code, correlation_id=correlation_id)
        if not verification.valid:
            if self._audit_logger:
                await self._audit_logger.log(AuditEventBuilder.login_failed(
                    email=email.strip().lower(),
                    stage="otp",
                    correlation_id=correlation_id,
                ))
            return None, verification.message

        # The account may have been disabled between the two factors
        user = await self._directory.get_by_email(email)
        if user is None or not user.is_active:
            return None, INVALID_CREDENTIALS

        session = Session.from_user(user)
        await self._sessions.set(session)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.login_succeeded(
                user_id=user.id,
                email=user.email,
                correlation_id=correlation_id,
            ))
        return session, f"Welcome, {user.name}"

    async def current_session(self) -> Optional[Session]:
        return await self._sessions.get()

    async def logout(self) -> None:
        session = await self._sessions.get()
        await self._sessions.clear()
        if session and self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.session_ended(session.user_id, session.email)
            )


class BudgetPortal:
    """
    Facade over directory, registry, ledger and interchange.

    Every method takes the caller's session first and returns an
    OperationResult.
    """

    def __init__(
        self,
        directory: UserDirectory,
        registry: MunicipalityRegistry,
        ledger: BudgetLedger,
        interchange: ImportExportService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._directory = directory
        self._registry = registry
        self._ledger = ledger
        self._interchange = interchange
        self._audit_logger = audit_logger

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _run(
        self,
        operation: Callable[[], Awaitable[Any]],
        message: Union[str, Callable[[Any], str]],
    ) -> OperationResult:
        """Run an operation, turning expected errors into failed results."""
        try:
            data = await operation()
        except PortalError as e:
            return OperationResult.failed(e.message)
        except PydanticValidationError as e:
            return OperationResult.failed(first_error_message(e))
        except StorageError as e:
            logger.error("storage_failure", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="storage",
                    error_message=str(e),
                )
            return OperationResult.failed("Storage is unavailable, please try again")

        text = message(data) if callable(message) else message
        return OperationResult.ok(text, data)

    @staticmethod
    def _require_admin(session: Session) -> None:
        if not session.is_admin:
            raise AuthorizationError("Administrator access required")

    async def _require_ledger_access(
        self,
        session: Session,
        municipality_id: UUID,
    ) -> Municipality:
        municipality = await self._registry.get(municipality_id)
        if municipality is None:
            raise NotFoundError(f"Municipality {municipality_id} not found")
        if not session.is_admin and municipality.owner_id != session.user_id:
            raise AuthorizationError("You are not assigned to this municipality")
        return municipality

    async def _require_owner_exists(self, owner_id: Optional[UUID]) -> None:
        if owner_id is not None and await self._directory.get(owner_id) is None:
            raise NotFoundError(f"User {owner_id} not found")

    # ------------------------------------------------------------------
    # Users (admin)
    # ------------------------------------------------------------------

    async def list_users(self, session: Session) -> OperationResult:
        async def op():
            self._require_admin(session)
            return await self._directory.list_all()
        return await self._run(op, lambda users: f"{len(users)} users")

    async def create_user(
        self,
        session: Session,
        email: str,
        password: str,
        name: str,
        role: str = "employee",
    ) -> OperationResult:
        async def op():
            self._require_admin(session)
            data = UserCreate(email=email, password=password, name=name, role=role)
            return await self._directory.create(data)
        return await self._run(op, lambda user: f"User {user.email} created")

    async def update_user(
        self,
        session: Session,
        user_id: UUID,
        **fields: Any,
    ) -> OperationResult:
        async def op():
            self._require_admin(session)
            return await self._directory.update(user_id, UserUpdate(**fields))
        return await self._run(op, lambda user: f"User {user.email} updated")

    async def delete_user(self, session: Session, user_id: UUID) -> OperationResult:
        async def op():
            self._require_admin(session)
            await self._directory.delete(user_id)
        return await self._run(op, "User deleted")

    async def toggle_user_active(self, session: Session, user_id: UUID) -> OperationResult:
        async def op():
            self._require_admin(session)
            return await self._directory.toggle_active(user_id)
        return await self._run(
            op,
            lambda user: f"User {user.email} {'activated' if user.is_active else 'deactivated'}",
        )

    # ------------------------------------------------------------------
    # Municipalities
    # ------------------------------------------------------------------

    async def list_municipalities(self, session: Session) -> OperationResult:
        """Admins see every municipality, employees see their own."""
        async def op():
            if session.is_admin:
                return await self._registry.list_all()
            return await self._registry.list_by_owner(session.user_id)
        return await self._run(op, lambda items: f"{len(items)} municipalities")

    async def create_municipality(
        self,
        session: Session,
        name: str,
        code: str,
        region: str,
        sub_region: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> OperationResult:
        async def op():
            self._require_admin(session)
            data = MunicipalityCreate(
                name=name,
                code=code,
                region=region,
                sub_region=sub_region,
                owner_id=owner_id,
            )
            await self._require_owner_exists(data.owner_id)
            return await self._registry.create(data)
        return await self._run(op, lambda m: f"Municipality {m.name} created")

    async def update_municipality(
        self,
        session: Session,
        municipality_id: UUID,
        **fields: Any,
    ) -> OperationResult:
        async def op():
            self._require_admin(session)
            patch = MunicipalityUpdate(**fields)
            await self._require_owner_exists(patch.owner_id)
            return await self._registry.update(municipality_id, patch)
        return await self._run(op, lambda m: f"Municipality {m.name} updated")

    async def delete_municipality(
        self,
        session: Session,
        municipality_id: UUID,
    ) -> OperationResult:
        async def op():
            self._require_admin(session)
            await self._registry.delete(municipality_id)
        return await self._run(op, "Municipality and its budget data deleted")

    # ------------------------------------------------------------------
    # Budget ledger
    # ------------------------------------------------------------------

    async def get_ledger(self, session: Session, municipality_id: UUID) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.get(municipality_id)
        return await self._run(op, "Budget data loaded")

    async def upsert_entry(
        self,
        session: Session,
        municipality_id: UUID,
        kind: str,
        rubric_code: str,
        year: int,
        voted,
        actual,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.upsert_entry(
                municipality_id, kind, rubric_code, year, voted, actual,
            )
        return await self._run(op, lambda entry: f"{rubric_code} {entry.year} saved")

    async def add_year(
        self,
        session: Session,
        municipality_id: UUID,
        kind: str,
        rubric_code: str,
        year: int,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.add_year(municipality_id, kind, rubric_code, year)
        return await self._run(op, lambda entry: f"Year {entry.year} added to {rubric_code}")

    async def validate_balance(
        self,
        session: Session,
        municipality_id: UUID,
        year: int,
    ) -> OperationResult:
        """Succeeds whenever the check ran; `data.balanced` holds the verdict."""
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.validate_balance(municipality_id, year)
        return await self._run(op, lambda check: check.message)

    async def balance_report(self, session: Session, municipality_id: UUID) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.balance_report(municipality_id)
        return await self._run(
            op,
            lambda checks: (
                f"{sum(1 for c in checks if c.balanced)} of {len(checks)} years balanced"
            ),
        )

    async def add_future_event(
        self,
        session: Session,
        municipality_id: UUID,
        year: int,
        description: str,
        estimated_impact,
        rubric: str,
        kind: str,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            data = FutureEventCreate(
                year=year,
                description=description,
                estimated_impact=estimated_impact,
                rubric=rubric,
                kind=kind,
            )
            return await self._ledger.add_future_event(municipality_id, data)
        return await self._run(op, "Future event added")

    async def update_future_event(
        self,
        session: Session,
        municipality_id: UUID,
        event_id: UUID,
        **fields: Any,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._ledger.update_future_event(
                municipality_id, event_id, FutureEventUpdate(**fields),
            )
        return await self._run(op, "Future event updated")

    async def delete_future_event(
        self,
        session: Session,
        municipality_id: UUID,
        event_id: UUID,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            await self._ledger.delete_future_event(municipality_id, event_id)
        return await self._run(op, "Future event deleted")

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    async def export_csv(self, session: Session, municipality_id: UUID) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._interchange.export_csv(municipality_id)
        return await self._run(op, lambda result: f"Exported {result[0]}")

    async def export_excel(self, session: Session, municipality_id: UUID) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._interchange.export_excel(municipality_id)
        return await self._run(op, lambda result: f"Exported {result[0]}")

    async def export_json(self, session: Session, municipality_id: UUID) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._interchange.export_json(municipality_id)
        return await self._run(op, lambda result: f"Exported {result[0]}")

    async def import_csv(
        self,
        session: Session,
        municipality_id: UUID,
        content: Union[str, bytes],
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._interchange.import_csv(municipality_id, content)
        return await self._run(op, lambda report: report.message)

    async def import_excel(
        self,
        session: Session,
        municipality_id: UUID,
        content: bytes,
    ) -> OperationResult:
        async def op():
            await self._require_ledger_access(session, municipality_id)
            return await self._interchange.import_excel(municipality_id, content)
        return await self._run(op, lambda report: report.message)

    async def template_csv(self, session: Session) -> OperationResult:
        async def op():
            return self._interchange.template_csv()
        return await self._run(op, "Import template generated")

    # ------------------------------------------------------------------
    # Audit (admin)
    # ------------------------------------------------------------------

    async def recent_audit_events(self, session: Session, limit: int = 100) -> OperationResult:
        async def op():
            self._require_admin(session)
            if self._audit_logger is None:
                return []
            return await self._audit_logger.recent_events(limit=limit)
        return await self._run(op, lambda events: f"{len(events)} events")


@dataclass
class PortalComponents:
    """Everything a front end needs, wired to one store."""
    store: KeyValueStore
    audit_logger: AuditLogger
    directory: UserDirectory
    otp_manager: OtpManager
    registry: MunicipalityRegistry
    ledger: BudgetLedger
    interchange: ImportExportService
    sessions: SessionRepository
    login_flow: LoginFlow
    portal: BudgetPortal


def create_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """
    Build the configured key-value store.

    Falls back to an in-memory store if Google Sheets is selected but not
    configured.
    """
    settings = settings or get_settings()
    app = settings.app

    if app.storage_backend == "json":
        return JsonFileKeyValueStore(app.data_file)

    if app.storage_backend == "google_sheets":
        try:
            client = GoogleSheetsClient(settings.google_sheets)
            client.connect()
            return GoogleSheetsKeyValueStore(client)
        except (PydanticValidationError, StorageError) as e:
            # Storage not configured - continue without it
            logger.warning("google_sheets_unavailable", error=str(e), fallback="memory")

    return InMemoryKeyValueStore()


def create_audit_storage(
    store: KeyValueStore,
    settings: Optional[Settings] = None,
) -> AuditStorageInterface:
    """
    Audit storage matching the store.

    A Sheets cell cannot hold the whole log, so a Sheets store gets an
    audit worksheet with one row per event. Other stores keep a capped list.
    """
    settings = settings or get_settings()
    if isinstance(store, GoogleSheetsKeyValueStore):
        return GoogleSheetsAuditStorage(store.client)
    return KeyValueAuditStorage(store, max_events=settings.app.audit_max_events)


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    notifier: Optional[Notifier] = None,
) -> PortalComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        store: Key-value store; built from settings if None
        notifier: Code delivery channel; the mail relay if None

    Returns:
        PortalComponents sharing one store and one audit logger
    """
    settings = settings or get_settings()
    app = settings.app
    store = store or create_store(settings)

    audit_logger = AuditLogger(create_audit_storage(store, settings))

    directory = UserDirectory(
        UserRepository(store),
        audit_logger=audit_logger,
        settings=settings.auth,
    )
    otp_manager = OtpManager(
        OtpRepository(store),
        notifier=notifier or MailRelayNotifier(settings.mail_relay),
        settings=settings.otp,
        audit_logger=audit_logger,
    )
    ledger = BudgetLedger(
        LedgerRepository(store),
        audit_logger=audit_logger,
        settings=app,
        locks=KeyedLocks(),
    )
    registry = MunicipalityRegistry(
        MunicipalityRepository(store),
        ledger=ledger,
        audit_logger=audit_logger,
    )
    interchange = ImportExportService(
        registry,
        ledger,
        audit_logger=audit_logger,
        settings=app,
    )
    sessions = SessionRepository(store)

    return PortalComponents(
        store=store,
        audit_logger=audit_logger,
        directory=directory,
        otp_manager=otp_manager,
        registry=registry,
        ledger=ledger,
        interchange=interchange,
        sessions=sessions,
        login_flow=LoginFlow(directory, otp_manager, sessions, audit_logger),
        portal=BudgetPortal(directory, registry, ledger, interchange, audit_logger),
    )
