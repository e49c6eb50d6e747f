"""Tests for the login flow, the portal facade and demo data."""

from decimal import Decimal
from uuid import uuid4

import pytest

from municipal_budget.bootstrap import (
    DEMO_EMPLOYEES,
    DEMO_MUNICIPALITIES,
    reset_all_data,
    seed_demo_data,
)
from municipal_budget.models import AuditEventType, Session, UserRole
from municipal_budget.portal import create_app_components
from municipal_budget.services.storage import INIT_KEY
from municipal_budget.services.storage.interface import StorageError


ADMIN_EMAIL = "admin@platform.com"
ADMIN_PASSWORD = "admin123"


class BrokenStore:
    """Every call fails like an unreachable backend."""

    async def get(self, key):
        raise StorageError("backend down")

    async def set(self, key, value):
        raise StorageError("backend down")

    async def delete(self, key):
        raise StorageError("backend down")

    async def keys(self, prefix=""):
        raise StorageError("backend down")


class TestLoginFlow:
    """Tests for the two-factor login."""

    async def test_full_login(self, components, notifier, admin_session):
        """Password, emailed code, then a persisted session."""
        flow = components.login_flow

        accepted, message, challenge = await flow.start(ADMIN_EMAIL, ADMIN_PASSWORD)
        assert accepted
        assert challenge.delivered
        assert ADMIN_EMAIL in message

        session, message = await flow.complete(ADMIN_EMAIL, notifier.last_code)
        assert session is not None
        assert session.role == UserRole.ADMIN
        assert message == "Welcome, Administrator"

        current = await flow.current_session()
        assert current.user_id == session.user_id

    async def test_wrong_password_and_unknown_email_look_alike(
        self, components, notifier, admin_session,
    ):
        """The first factor never reveals which part was wrong."""
        flow = components.login_flow

        bad_password = await flow.start(ADMIN_EMAIL, "wrong-password")
        unknown = await flow.start("ghost@platform.com", ADMIN_PASSWORD)

        assert bad_password == (False, "Invalid email or password", None)
        assert unknown == bad_password
        assert notifier.sent == []

    async def test_wrong_code_gives_no_session(self, components, notifier, admin_session):
        """An incorrect code reports the remaining attempts."""
        flow = components.login_flow
        await flow.start(ADMIN_EMAIL, ADMIN_PASSWORD)
        wrong = "".join(str((int(c) + 1) % 10) for c in notifier.last_code)

        session, message = await flow.complete(ADMIN_EMAIL, wrong)

        assert session is None
        assert message == "Incorrect code. 2 attempt(s) remaining."
        assert await flow.current_session() is None

    async def test_deactivated_between_factors(
        self, components, notifier, admin_session, employee,
    ):
        """A user disabled after the password step cannot finish logging in."""
        flow = components.login_flow
        await flow.start(employee.email, "agent123")
        await components.directory.toggle_active(employee.id)

        session, message = await flow.complete(employee.email, notifier.last_code)

        assert session is None
        assert message == "Invalid email or password"

    async def test_logout_clears_session(self, components, notifier, admin_session):
        """Logging out removes the stored session."""
        flow = components.login_flow
        await flow.start(ADMIN_EMAIL, ADMIN_PASSWORD)
        await flow.complete(ADMIN_EMAIL, notifier.last_code)

        await flow.logout()

        assert await flow.current_session() is None
        events = await components.audit_logger.recent_events()
        assert AuditEventType.SESSION_ENDED in [e.event_type for e in events]

    async def test_resend_code_replaces_previous(self, components, notifier, admin_session):
        """A resent code works; the previous one no longer does."""
        flow = components.login_flow
        await flow.start(ADMIN_EMAIL, ADMIN_PASSWORD)
        first = notifier.last_code

        accepted, _, _ = await flow.resend_code(ADMIN_EMAIL)
        second = notifier.last_code

        assert accepted
        assert len(notifier.sent) == 2
        session, _ = await flow.complete(ADMIN_EMAIL, second)
        assert session is not None
        if first != second:
            again, _ = await flow.complete(ADMIN_EMAIL, first)
            assert again is None


class TestAdministration:
    """Tests for admin-only operations."""

    async def test_admin_creates_user(self, components, admin_session):
        """Admins manage accounts."""
        result = await components.portal.create_user(
            admin_session, "new@municipalite.tn", "secret1", "New Agent",
        )
        assert result.success
        assert result.message == "User new@municipalite.tn created"
        assert result.data.role == UserRole.EMPLOYEE

    async def test_invalid_user_data_is_a_failure(self, components, admin_session):
        """Model validation errors come back as failed results."""
        result = await components.portal.create_user(
            admin_session, "new@municipalite.tn", "123", "New Agent",
        )
        assert not result.success
        assert "password" in result.message

    async def test_misspelt_update_field_is_a_failure(self, components, admin_session, employee):
        """An unknown keyword fails instead of reporting a no-op success."""
        result = await components.portal.update_user(
            admin_session, employee.id, is_activ=False,
        )

        assert not result.success
        assert result.message.startswith("is_activ")
        assert (await components.directory.get(employee.id)).is_active

    async def test_employee_cannot_manage_users(self, components, employee_session):
        """User management needs the admin role."""
        result = await components.portal.list_users(employee_session)
        assert not result.success
        assert result.message == "Administrator access required"

    async def test_employee_cannot_create_municipality(self, components, employee_session):
        """Municipality management needs the admin role."""
        result = await components.portal.create_municipality(
            employee_session, "Nabeul", "8000", "Nabeul",
        )
        assert not result.success

    async def test_last_admin_delete_is_a_failure(self, components, admin_session):
        """The last-admin guard surfaces as a failed result."""
        result = await components.portal.delete_user(admin_session, admin_session.user_id)
        assert not result.success
        assert result.message == "Cannot remove the last active administrator"

    async def test_assign_unknown_owner(self, components, admin_session):
        """Owners must be existing users."""
        result = await components.portal.create_municipality(
            admin_session, "Nabeul", "8000", "Nabeul", owner_id=uuid4(),
        )
        assert not result.success
        assert "not found" in result.message

    async def test_audit_trail_is_admin_only(self, components, admin_session, employee_session):
        """Only admins read the audit log."""
        assert (await components.portal.recent_audit_events(admin_session)).success
        assert not (await components.portal.recent_audit_events(employee_session)).success


class TestLedgerAccess:
    """Tests for who may see and edit a ledger."""

    @pytest.fixture
    async def assigned(self, components, admin_session, employee):
        result = await components.portal.create_municipality(
            admin_session, "Sousse", "4000", "Sousse", owner_id=employee.id,
        )
        return result.data

    @pytest.fixture
    async def unassigned(self, components, admin_session):
        result = await components.portal.create_municipality(
            admin_session, "Sfax", "3000", "Sfax",
        )
        return result.data

    async def test_employee_sees_only_own_municipalities(
        self, components, employee_session, assigned, unassigned,
    ):
        """Employees list the municipalities assigned to them."""
        result = await components.portal.list_municipalities(employee_session)
        assert [m.id for m in result.data] == [assigned.id]

    async def test_owner_edits_own_ledger(self, components, employee_session, assigned):
        """The assigned employee edits figures and checks the balance."""
        portal = components.portal
        await portal.upsert_entry(employee_session, assigned.id, "recette", "R1", 2024, 100000, 95000)
        await portal.upsert_entry(employee_session, assigned.id, "depense", "D1", 2024, 99000, 90000)

        result = await portal.validate_balance(employee_session, assigned.id, 2024)

        assert result.success
        assert result.data.balanced is False
        assert "100000.00" in result.message and "99000.00" in result.message

    async def test_employee_blocked_from_other_ledger(
        self, components, employee_session, unassigned,
    ):
        """Unassigned ledgers are off limits, for reads and writes."""
        portal = components.portal
        read = await portal.get_ledger(employee_session, unassigned.id)
        write = await portal.upsert_entry(
            employee_session, unassigned.id, "recette", "R1", 2024, 1, 1,
        )
        export = await portal.export_csv(employee_session, unassigned.id)

        for result in (read, write, export):
            assert not result.success
            assert result.message == "You are not assigned to this municipality"

    async def test_admin_reaches_every_ledger(self, components, admin_session, unassigned):
        """Admins can open any ledger."""
        result = await components.portal.get_ledger(admin_session, unassigned.id)
        assert result.success
        assert len(result.data.revenues) == 12

    async def test_validation_error_message(self, components, admin_session, unassigned):
        """A rubric of the wrong side comes back as a readable failure."""
        result = await components.portal.upsert_entry(
            admin_session, unassigned.id, "depense", "R4", 2024, 1, 1,
        )
        assert not result.success
        assert result.message == "Rubric 'R4' is not a depense rubric"

    async def test_future_event_lifecycle(self, components, employee_session, assigned):
        """Events are added, edited and deleted through the facade."""
        portal = components.portal
        added = await portal.add_future_event(
            employee_session, assigned.id, 2026, "Nouvelle station de tri",
            Decimal("300000"), "D5", "depense",
        )
        assert added.success

        updated = await portal.update_future_event(
            employee_session, assigned.id, added.data.id, year=2027,
        )
        assert updated.data.year == 2027

        deleted = await portal.delete_future_event(employee_session, assigned.id, added.data.id)
        assert deleted.success
        again = await portal.delete_future_event(employee_session, assigned.id, added.data.id)
        assert not again.success

    async def test_import_report_message(self, components, employee_session, assigned):
        """Import results carry the imported and skipped counts."""
        content = "annee,rubrique,type,budgetVote,reel\n2024,R1,recette,10,9\n2024,Z1,recette,1,1\n"
        result = await components.portal.import_csv(employee_session, assigned.id, content)
        assert result.success
        assert result.message == "1 rows imported, 1 skipped"

    async def test_deleting_municipality_drops_ledger(
        self, components, admin_session, assigned,
    ):
        """Municipality deletion cascades to its budget data."""
        portal = components.portal
        await portal.upsert_entry(admin_session, assigned.id, "recette", "R1", 2024, 1, 1)

        result = await portal.delete_municipality(admin_session, assigned.id)

        assert result.success
        assert await components.store.keys("platform_budget_data:") == []


class TestStorageFailures:
    """Tests for an unavailable backend."""

    async def test_storage_error_becomes_failed_result(self, notifier):
        """Backend failures never escape the facade."""
        components = create_app_components(store=BrokenStore(), notifier=notifier)
        session = Session(
            user_id=uuid4(), email=ADMIN_EMAIL, role=UserRole.ADMIN, name="Admin",
        )

        result = await components.portal.list_users(session)

        assert not result.success
        assert result.message == "Storage is unavailable, please try again"


class TestDemoData:
    """Tests for seeding and resetting."""

    async def test_seed_is_idempotent(self, components):
        """Seeding twice creates the data once."""
        assert await seed_demo_data(components)
        assert not await seed_demo_data(components)

        users = await components.directory.list_all()
        municipalities = await components.registry.list_all()
        assert len(users) == 1 + len(DEMO_EMPLOYEES)
        assert len(municipalities) == len(DEMO_MUNICIPALITIES)
        assert await components.store.get(INIT_KEY) == "true"

    async def test_seeded_ledgers(self, components):
        """Owners are assigned and every year 2018-2026 has figures."""
        await seed_demo_data(components)

        tunis = next(
            m for m in await components.registry.list_all() if m.code == "1000"
        )
        owner = await components.directory.get(tunis.owner_id)
        assert owner.email == DEMO_EMPLOYEES[0][0]

        ledger = await components.ledger.get(tunis.id)
        assert ledger.years() == list(range(2018, 2027))
        assert len(ledger.future_events) == 3

    async def test_reset_removes_everything(self, components):
        """A reset deletes fixed keys and every ledger."""
        await seed_demo_data(components)

        removed = await reset_all_data(components.store)

        assert removed >= len(DEMO_MUNICIPALITIES)
        assert await components.store.keys() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
