"""Investment plan catalog: overlap-checked create/update, reorder, toggle, delete"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.domain.exceptions import ConflictError, NotFoundError, ValidationError
from returns_engine.infrastructure.database.models import InvestmentPlan, utcnow
from returns_engine.infrastructure.database.repositories import InvestmentPlanRepository
from returns_engine.infrastructure.locks import CATALOG_KEY, KeyedLock, catalog_lock

MAX_PLAN_MONTH = 60
MAX_ANNUAL_RETURN = Decimal("200")
DEFAULT_MIN_INVESTMENT_PAISE = 10_000_000  # ₹1,00,000


@dataclass
class PlanDraft:
    """Admin input for creating or updating a plan"""

    start_month: int
    end_month: int
    annual_return_percent: Decimal
    min_investment_paise: int = DEFAULT_MIN_INVESTMENT_PAISE
    title: str | None = None
    is_active: bool | None = None
    sort_order: int | None = None


def auto_title(start_month: int, end_month: int, title: str | None = None) -> str:
    title = (title or "").strip()
    return title or f"{start_month} to {end_month} months"


def validate_draft(draft: PlanDraft) -> None:
    if not 1 <= draft.start_month <= MAX_PLAN_MONTH or not 1 <= draft.end_month <= MAX_PLAN_MONTH:
        raise ValidationError(f"Plan months must be between 1 and {MAX_PLAN_MONTH}")
    if draft.start_month > draft.end_month:
        raise ValidationError("start_month must be <= end_month")
    if not Decimal(0) <= Decimal(draft.annual_return_percent) <= MAX_ANNUAL_RETURN:
        raise ValidationError(f"annual_return_percent must be between 0 and {MAX_ANNUAL_RETURN}")
    if draft.min_investment_paise < 0:
        raise ValidationError("min_investment must not be negative")


class InvestmentPlanService:
    """Catalog mutations; each one commits on its own"""

    def __init__(self, db: AsyncSession, lock: KeyedLock = catalog_lock):
        self.db = db
        self.repo = InvestmentPlanRepository(db)
        self.lock = lock

    async def create_plan(self, draft: PlanDraft, force: bool = False) -> InvestmentPlan:
        """
        Add a plan to the catalog.

        New plans start inactive unless is_active is given. Without force a
        month range that intersects any active plan is rejected.

        Raises:
            ValidationError: Bad month range or return percent
            ConflictError: OVERLAP with an active plan, DUPLICATE title or range
        """
        validate_draft(draft)
        title = auto_title(draft.start_month, draft.end_month, draft.title)

        async with self.lock.hold(CATALOG_KEY):
            try:
                await self._check_conflicts(title, draft.start_month, draft.end_month, force)
                plan = await self.repo.add(
                    InvestmentPlan(
                        title=title,
                        start_month=draft.start_month,
                        end_month=draft.end_month,
                        annual_return_percent=Decimal(draft.annual_return_percent),
                        min_investment_paise=draft.min_investment_paise,
                        is_active=bool(draft.is_active),
                        sort_order=draft.sort_order or 0,
                    )
                )
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

        logging.info("Investment plan created", extra={"plan_id": str(plan.id), "title": title, "step": "create_plan"})
        return plan

    async def update_plan(self, plan_id: uuid.UUID, draft: PlanDraft, force: bool = False) -> InvestmentPlan:
        """Replace a plan's fields; is_active and sort_order change only when given"""
        validate_draft(draft)
        title = auto_title(draft.start_month, draft.end_month, draft.title)

        async with self.lock.hold(CATALOG_KEY):
            try:
                plan = await self._get_for_update(plan_id)
                await self._check_conflicts(title, draft.start_month, draft.end_month, force, exclude_id=plan.id)

                plan.title = title
                plan.start_month = draft.start_month
                plan.end_month = draft.end_month
                plan.annual_return_percent = Decimal(draft.annual_return_percent)
                plan.min_investment_paise = draft.min_investment_paise
                if draft.is_active is not None:
                    plan.is_active = draft.is_active
                if draft.sort_order is not None:
                    plan.sort_order = draft.sort_order
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

        return plan

    async def list_plans(self, include_inactive: bool = False) -> List[InvestmentPlan]:
        return await self.repo.list_plans(include_inactive=include_inactive)

    async def swap_order(self, first_id: uuid.UUID, second_id: uuid.UUID) -> tuple[InvestmentPlan, InvestmentPlan]:
        """Exchange two plans' sort_order in one transaction"""
        if first_id == second_id:
            raise ValidationError("Cannot swap a plan with itself")

        async with self.lock.hold(CATALOG_KEY):
            try:
                first = await self._get_for_update(first_id)
                second = await self._get_for_update(second_id)
                first.sort_order, second.sort_order = second.sort_order, first.sort_order
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

        return first, second

    async def toggle(self, plan_id: uuid.UUID) -> InvestmentPlan:
        async with self.lock.hold(CATALOG_KEY):
            try:
                plan = await self._get_for_update(plan_id)
                plan.is_active = not plan.is_active
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise
        return plan

    async def delete(self, plan_id: uuid.UUID) -> None:
        """Soft delete: the plan drops out of listings and overlap checks"""
        async with self.lock.hold(CATALOG_KEY):
            try:
                plan = await self._get_for_update(plan_id)
                plan.deleted_at = utcnow()
                plan.is_active = False
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

        logging.info("Investment plan deleted", extra={"plan_id": str(plan_id), "step": "delete_plan"})

    async def _get_for_update(self, plan_id: uuid.UUID) -> InvestmentPlan:
        plan = await self.repo.get(plan_id, for_update=True)
        if plan is None:
            raise NotFoundError(f"Investment plan {plan_id} not found")
        return plan

    async def _check_conflicts(
        self, title: str, start_month: int, end_month: int, force: bool, exclude_id: uuid.UUID | None = None
    ) -> None:
        if not force and await self.repo.find_overlapping(start_month, end_month, exclude_id=exclude_id):
            raise ConflictError("Overlaps with existing active plan", code="OVERLAP")
        if await self.repo.find_duplicate(title, start_month, end_month, exclude_id=exclude_id):
            raise ConflictError("Duplicate title or range", code="DUPLICATE")
