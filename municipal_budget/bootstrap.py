"""
Bootstrap and Demo Data

- ensure_default_admin: first run on an empty directory
- seed_demo_data: employees, six municipalities and nine years of figures
  (2018-2026, 5% yearly growth) for demonstrations; runs once per store
- reset_all_data: wipe every portal key
"""

import random
from decimal import Decimal
from typing import Optional

import structlog

from municipal_budget.models.budget import (
    BudgetKind,
    ExpenseRubric,
    FutureEventCreate,
    MunicipalityCreate,
    MunicipalityUpdate,
    RevenueRubric,
    Rubric,
    YearEntry,
)
from municipal_budget.models.user import User, UserCreate, UserRole
from municipal_budget.portal import PortalComponents
from municipal_budget.services.storage import (
    ALL_FIXED_KEYS,
    INIT_KEY,
    LEDGER_KEY_PREFIX,
    KeyValueStore,
)


logger = structlog.get_logger(__name__)

DEMO_YEARS = range(2018, 2027)

# email, password, name; each owns the municipality at the same index
DEMO_EMPLOYEES = [
    ("receveur.tunis@municipalite.tn", "receveur123", "Ahmed Ben Ali"),
    ("financier.sfax@municipalite.tn", "financier123", "Fatma Trabelsi"),
    ("agent.sousse@municipalite.tn", "agent123", "Mohamed Hammami"),
    ("comptable.bizerte@municipalite.tn", "comptable123", "Salma Khelifi"),
]

# name, code, region (governorate), sub_region (delegation)
DEMO_MUNICIPALITIES = [
    ("Tunis", "1000", "Tunis", "Tunis Centre"),
    ("Sfax", "3000", "Sfax", "Sfax Ville"),
    ("Sousse", "4000", "Sousse", "Sousse Médina"),
    ("Bizerte", "7000", "Bizerte", "Bizerte Nord"),
    ("Gabès", "6000", "Gabès", "Gabès Centre"),
    ("Kairouan", "3100", "Kairouan", "Kairouan Médina"),
]

DEMO_EVENTS = [
    FutureEventCreate(
        year=2026,
        description="Recrutement de 5 agents administratifs et 3 techniciens",
        estimated_impact=Decimal("450000"),
        rubric="D1",
        kind=BudgetKind.EXPENSE,
    ),
    FutureEventCreate(
        year=2026,
        description="Projet d'aménagement de la place centrale",
        estimated_impact=Decimal("1200000"),
        rubric="D5",
        kind=BudgetKind.EXPENSE,
    ),
    FutureEventCreate(
        year=2027,
        description="Augmentation des recettes fiscales prévue",
        estimated_impact=Decimal("800000"),
        rubric="R1",
        kind=BudgetKind.REVENUE,
    ),
]


async def ensure_default_admin(components: PortalComponents) -> Optional[User]:
    """Create the configured admin if nobody exists yet."""
    return await components.directory.ensure_default_admin()


def demo_entries(
    municipality_index: int,
    rng: random.Random,
) -> list[tuple[Rubric, YearEntry]]:
    """
    Synthetic figures for one municipality.

    Each municipality has its own scale; every rubric grows 5% a year
    with +/-5% noise on the voted amount and a realization rate of
    85-100% (revenue) or 88-100% (expense).
    """
    scale = 1_000_000 + municipality_index * 200_000
    entries: list[tuple[Rubric, YearEntry]] = []

    plans = (
        (list(RevenueRubric), 0.5, 0.1, 0.85, 0.15),
        (list(ExpenseRubric), 0.4, 0.12, 0.88, 0.12),
    )
    for rubrics, share, share_step, realized_min, realized_span in plans:
        for rubric_index, rubric in enumerate(rubrics):
            for year in DEMO_YEARS:
                growth = 1 + (year - DEMO_YEARS[0]) * 0.05
                base = scale * (share + rubric_index * share_step) * growth
                voted = round(base * (0.95 + rng.random() * 0.1))
                actual = round(voted * (realized_min + rng.random() * realized_span))
                entries.append((
                    rubric,
                    YearEntry(year=year, voted=Decimal(voted), actual=Decimal(actual)),
                ))
    return entries


async def seed_demo_data(components: PortalComponents, seed: int = 2018) -> bool:
    """
    Populate a store with demonstration data.

    Does nothing if the store was already seeded. Municipalities are only
    created (and given figures) when the registry is empty.

    Returns:
        True if data was seeded
    """
    store = components.store
    if await store.get(INIT_KEY) == "true":
        logger.info("demo_data_already_seeded")
        return False

    await ensure_default_admin(components)

    directory = components.directory
    owners = []
    for email, password, name in DEMO_EMPLOYEES:
        user = await directory.get_by_email(email)
        if user is None:
            user = await directory.create(UserCreate(
                email=email,
                password=password,
                name=name,
                role=UserRole.EMPLOYEE,
            ))
        owners.append(user)

    registry = components.registry
    if not await registry.list_all():
        rng = random.Random(seed)
        for index, (name, code, region, sub_region) in enumerate(DEMO_MUNICIPALITIES):
            municipality = await registry.create(MunicipalityCreate(
                name=name,
                code=code,
                region=region,
                sub_region=sub_region,
            ))
            if index < len(owners):
                await registry.update(
                    municipality.id,
                    MunicipalityUpdate(owner_id=owners[index].id),
                )

            await components.ledger.upsert_entries(
                municipality.id, demo_entries(index, rng),
            )
            for event in DEMO_EVENTS:
                await components.ledger.add_future_event(municipality.id, event)

            logger.info("demo_municipality_seeded", name=name)

    await store.set(INIT_KEY, "true")
    return True


async def reset_all_data(store: KeyValueStore) -> int:
    """
    Remove every portal key, ledgers included.

    Returns:
        Number of keys deleted
    """
    keys = list(ALL_FIXED_KEYS) + await store.keys(LEDGER_KEY_PREFIX)
    removed = 0
    for key in keys:
        if await store.delete(key):
            removed += 1
    logger.warning("portal_data_reset", keys_removed=removed)
    return removed
