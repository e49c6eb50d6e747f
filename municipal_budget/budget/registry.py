"""
Municipality Registry

Municipalities are the tenants of the portal. Each may be assigned to one
user (its owner), who then manages that municipality's budget.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog

from municipal_budget.audit import AuditLogger
from municipal_budget.budget.ledger import BudgetLedger
from municipal_budget.errors import ConflictError, NotFoundError
from municipal_budget.models.audit import AuditEventBuilder, AuditEventType
from municipal_budget.models.budget import (
    Municipality,
    MunicipalityCreate,
    MunicipalityUpdate,
)
from municipal_budget.services.storage import MunicipalityRepository


logger = structlog.get_logger(__name__)


def _same_code(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class MunicipalityRegistry:
    """CRUD over municipalities; deleting one also drops its ledger."""

    def __init__(
        self,
        repository: MunicipalityRepository,
        ledger: Optional[BudgetLedger] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repo = repository
        self._ledger = ledger
        self._audit_logger = audit_logger
        self._clock = clock or datetime.utcnow
        self._lock = asyncio.Lock()

    async def list_all(self) -> list[Municipality]:
        return await self._repo.list_all()

    async def get(self, municipality_id: UUID) -> Optional[Municipality]:
        for municipality in await self._repo.list_all():
            if municipality.id == municipality_id:
                return municipality
        return None

    async def list_by_owner(self, user_id: UUID) -> list[Municipality]:
        return [m for m in await self._repo.list_all() if m.owner_id == user_id]

    async def create(self, data: MunicipalityCreate) -> Municipality:
        """
        Raises:
            ConflictError: Code already used by another municipality
        """
        async with self._lock:
            municipalities = await self._repo.list_all()
            if any(_same_code(m.code, data.code) for m in municipalities):
                raise ConflictError(f"A municipality with code {data.code} already exists")

            now = self._clock()
            municipality = Municipality(
                **data.model_dump(),
                created_at=now,
                updated_at=now,
            )
            municipalities.append(municipality)
            await self._repo.save_all(municipalities)

        await self._log_change(AuditEventType.MUNICIPALITY_CREATED, municipality)
        return municipality

    async def update(
        self,
        municipality_id: UUID,
        patch: MunicipalityUpdate,
    ) -> Municipality:
        """
        Apply a partial update.

        Only fields explicitly set on `patch` change, so passing
        owner_id=None unassigns the municipality.

        Raises:
            NotFoundError: Unknown municipality
            ConflictError: New code collides with another municipality
        """
        changes = patch.model_dump(exclude_unset=True)
        # Only the optional fields may be cleared
        changes = {
            k: v for k, v in changes.items()
            if v is not None or k in ("owner_id", "sub_region")
        }

        async with self._lock:
            municipalities = await self._repo.list_all()
            index = self._index_of(municipalities, municipality_id)

            if "code" in changes and any(
                m.id != municipality_id and _same_code(m.code, changes["code"])
                for m in municipalities
            ):
                raise ConflictError(
                    f"A municipality with code {changes['code']} already exists"
                )

            updated = municipalities[index].model_copy(
                update={**changes, "updated_at": self._clock()}
            )
            municipalities[index] = updated
            await self._repo.save_all(municipalities)

        await self._log_change(AuditEventType.MUNICIPALITY_UPDATED, updated)
        return updated

    async def delete(self, municipality_id: UUID) -> None:
        """
        Remove a municipality and its budget data.

        Raises:
            NotFoundError: Unknown municipality
        """
        async with self._lock:
            municipalities = await self._repo.list_all()
            index = self._index_of(municipalities, municipality_id)
            removed = municipalities.pop(index)
            await self._repo.save_all(municipalities)

        if self._ledger:
            await self._ledger.delete_ledger(municipality_id)

        logger.info("municipality_deleted", municipality_id=str(municipality_id))
        await self._log_change(AuditEventType.MUNICIPALITY_DELETED, removed)

    @staticmethod
    def _index_of(municipalities: list[Municipality], municipality_id: UUID) -> int:
        for i, municipality in enumerate(municipalities):
            if municipality.id == municipality_id:
                return i
        raise NotFoundError(f"Municipality {municipality_id} not found")

    async def _log_change(
        self,
        event_type: AuditEventType,
        municipality: Municipality,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.municipality_changed(
                event_type,
                municipality.id,
                municipality.name,
                municipality.code,
            ))
