"""Default rule and catalog for a fresh database"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.domain.models import RateBand
from returns_engine.infrastructure.database.repositories import InvestmentPlanRepository, PlanRuleRepository
from returns_engine.services.plan_rules import PlanRuleManager
from returns_engine.services.plans import InvestmentPlanService, PlanDraft

DEFAULT_BANDS = (
    RateBand(1, 3, Decimal("0.03")),
    RateBand(4, 6, Decimal("0.04")),
    RateBand(7, 9, Decimal("0.05")),
    RateBand(10, 12, Decimal("0.06")),
    RateBand(13, 15, Decimal("0.07")),
)

# (start_month, end_month, annual_return_percent)
DEFAULT_PLANS = (
    (1, 3, Decimal("36")),
    (4, 6, Decimal("48")),
    (7, 9, Decimal("60")),
    (10, 12, Decimal("72")),
    (13, 15, Decimal("84")),
)


async def seed_defaults(db: AsyncSession) -> dict:
    """Create the default active rule and plan catalog when each is empty"""
    created = {"plan_rule": False, "plans": 0}

    if await PlanRuleRepository(db).count() == 0:
        await PlanRuleManager(db).create_rule(
            name="Default plan rule",
            bands=DEFAULT_BANDS,
            min_amount_paise=10_000_000,  # ₹1,00,000
            special_min_paise=30_000_000,  # ₹3,00,000
            special_rate=Decimal("0.10"),
            admin_charge=Decimal("0.04"),
            booster=Decimal("0.10"),
            created_by="seed",
            activate=True,
        )
        created["plan_rule"] = True

    if await InvestmentPlanRepository(db).count() == 0:
        catalog = InvestmentPlanService(db)
        for sort_order, (start, end, annual) in enumerate(DEFAULT_PLANS, start=1):
            await catalog.create_plan(
                PlanDraft(
                    start_month=start,
                    end_month=end,
                    annual_return_percent=annual,
                    is_active=True,
                    sort_order=sort_order,
                )
            )
            created["plans"] += 1

    logging.info("Default data seeded", extra={"step": "seed_defaults", **created})
    return created
