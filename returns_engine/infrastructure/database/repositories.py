"""Data access layer for rules, plans, wallets, withdrawals and payouts"""

import uuid
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.domain.models import ScheduledPayout
from returns_engine.infrastructure.database.models import (
    ActivePlanRule,
    Investment,
    InvestmentPlan,
    LedgerEntry,
    Payout,
    PlanRule,
    StateTransition,
    Wallet,
    Withdrawal,
)

ACTIVE_POINTER_ID = 1


class PlanRuleRepository:
    """Repository for versioned plan rules and the active pointer"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, rule: PlanRule) -> PlanRule:
        self.db.add(rule)
        await self.db.flush()
        return rule

    async def get(self, rule_id: uuid.UUID, for_update: bool = False) -> Optional[PlanRule]:
        stmt = select(PlanRule).where(PlanRule.id == rule_id)
        if for_update:
            # Locked reads must see committed values, not the identity map
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def next_version(self, family: str) -> int:
        """Versions grow monotonically within a family"""
        current = await self.db.scalar(select(func.max(PlanRule.version)).where(PlanRule.family == family))
        return (current or 0) + 1

    async def latest(self) -> Optional[PlanRule]:
        """Highest version regardless of active state"""
        stmt = select(PlanRule).order_by(PlanRule.version.desc(), PlanRule.created_at.desc()).limit(1)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def active(self) -> Optional[PlanRule]:
        """Rule referenced by the singleton pointer"""
        stmt = (
            select(PlanRule)
            .join(ActivePlanRule, ActivePlanRule.plan_rule_id == PlanRule.id)
            .where(ActivePlanRule.id == ACTIVE_POINTER_ID)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def pointer_for_update(self) -> ActivePlanRule:
        """Lock the singleton pointer row, creating it on first use"""
        stmt = select(ActivePlanRule).where(ActivePlanRule.id == ACTIVE_POINTER_ID)
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        pointer = (await self.db.execute(stmt)).scalar_one_or_none()
        if pointer is None:
            pointer = ActivePlanRule(id=ACTIVE_POINTER_ID, plan_rule_id=None)
            self.db.add(pointer)
            await self.db.flush()
        return pointer

    async def flagged_active(self) -> List[PlanRule]:
        stmt = select(PlanRule).where(PlanRule.active.is_(True))
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list((await self.db.execute(stmt)).scalars().all())

    async def count(self) -> int:
        return await self.db.scalar(select(func.count()).select_from(PlanRule)) or 0


class InvestmentPlanRepository:
    """Repository for the investment plan catalog"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, plan: InvestmentPlan) -> InvestmentPlan:
        self.db.add(plan)
        await self.db.flush()
        return plan

    async def get(self, plan_id: uuid.UUID, for_update: bool = False) -> Optional[InvestmentPlan]:
        stmt = select(InvestmentPlan).where(InvestmentPlan.id == plan_id, InvestmentPlan.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_plans(self, include_inactive: bool = False) -> List[InvestmentPlan]:
        stmt = select(InvestmentPlan).where(InvestmentPlan.deleted_at.is_(None))
        if not include_inactive:
            stmt = stmt.where(InvestmentPlan.is_active.is_(True))
        stmt = stmt.order_by(InvestmentPlan.sort_order.asc(), InvestmentPlan.created_at.asc())
        return list((await self.db.execute(stmt)).scalars().all())

    async def find_overlapping(
        self, start_month: int, end_month: int, exclude_id: uuid.UUID | None = None
    ) -> List[InvestmentPlan]:
        """Active plans whose inclusive month range intersects [start, end]"""
        stmt = select(InvestmentPlan).where(
            InvestmentPlan.deleted_at.is_(None),
            InvestmentPlan.is_active.is_(True),
            not_(or_(InvestmentPlan.end_month < start_month, InvestmentPlan.start_month > end_month)),
        )
        if exclude_id is not None:
            stmt = stmt.where(InvestmentPlan.id != exclude_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def find_duplicate(
        self, title: str, start_month: int, end_month: int, exclude_id: uuid.UUID | None = None
    ) -> Optional[InvestmentPlan]:
        stmt = select(InvestmentPlan).where(
            InvestmentPlan.deleted_at.is_(None),
            or_(
                InvestmentPlan.title == title,
                and_(InvestmentPlan.start_month == start_month, InvestmentPlan.end_month == end_month),
            ),
        )
        if exclude_id is not None:
            stmt = stmt.where(InvestmentPlan.id != exclude_id)
        return (await self.db.execute(stmt.limit(1))).scalar_one_or_none()

    async def count(self) -> int:
        return await self.db.scalar(select(func.count()).select_from(InvestmentPlan)) or 0


class WalletRepository:
    """Repository for wallets and their ledger entries"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str, for_update: bool = False) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def add(self, wallet: Wallet) -> Wallet:
        self.db.add(wallet)
        await self.db.flush()
        return wallet

    async def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def entries(self, user_id: str, limit: int | None = None, offset: int = 0) -> List[LedgerEntry]:
        """Entries oldest first, the order replay needs"""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.id.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def count_entries(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(LedgerEntry).where(LedgerEntry.user_id == user_id)
        return await self.db.scalar(stmt) or 0


class WithdrawalRepository:
    """Repository for withdrawal requests"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, withdrawal: Withdrawal) -> Withdrawal:
        self.db.add(withdrawal)
        await self.db.flush()
        return withdrawal

    async def get(self, withdrawal_id: uuid.UUID, for_update: bool = False) -> Optional[Withdrawal]:
        stmt = select(Withdrawal).where(Withdrawal.id == withdrawal_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def owner_of(self, withdrawal_id: uuid.UUID) -> Optional[str]:
        return await self.db.scalar(select(Withdrawal.user_id).where(Withdrawal.id == withdrawal_id))

    async def list_withdrawals(
        self, user_id: str | None = None, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[List[Withdrawal], int]:
        """Newest first, with total count for pagination"""
        filters = []
        if user_id:
            filters.append(Withdrawal.user_id == user_id)
        if status:
            filters.append(Withdrawal.status == status)

        stmt = select(Withdrawal).where(*filters).order_by(Withdrawal.created_at.desc()).limit(limit).offset(offset)
        total = await self.db.scalar(select(func.count()).select_from(Withdrawal).where(*filters))
        return list((await self.db.execute(stmt)).scalars().all()), total or 0


class InvestmentRepository:
    """Repository for investments"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, investment: Investment) -> Investment:
        self.db.add(investment)
        await self.db.flush()
        return investment

    async def get(self, investment_id: uuid.UUID, for_update: bool = False) -> Optional[Investment]:
        stmt = select(Investment).where(Investment.id == investment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()


class PayoutRepository:
    """Repository for scheduled monthly payouts"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_schedule(
        self, investment: Investment, schedule: Sequence[ScheduledPayout]
    ) -> List[Payout]:
        """Create one scheduled payout per slot"""
        payouts = [
            Payout(
                user_id=investment.user_id,
                investment_id=investment.id,
                month_no=slot.month_no,
                due_date=slot.due_date,
                status="scheduled",
                credited=False,
            )
            for slot in schedule
        ]
        self.db.add_all(payouts)
        await self.db.flush()
        return payouts

    async def get(self, payout_id: uuid.UUID, for_update: bool = False) -> Optional[Payout]:
        stmt = select(Payout).where(Payout.id == payout_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def owner_of(self, payout_id: uuid.UUID) -> Optional[str]:
        return await self.db.scalar(select(Payout.user_id).where(Payout.id == payout_id))

    async def due_ids(self, today: date) -> List[tuple[uuid.UUID, str]]:
        """(payout_id, user_id) of scheduled payouts due on or before today"""
        stmt = (
            select(Payout.id, Payout.user_id)
            .where(Payout.status == "scheduled", Payout.due_date <= today)
            .order_by(Payout.due_date.asc(), Payout.month_no.asc())
        )
        return [(row.id, row.user_id) for row in (await self.db.execute(stmt)).all()]

    async def for_investment(self, investment_id: uuid.UUID) -> List[Payout]:
        stmt = select(Payout).where(Payout.investment_id == investment_id).order_by(Payout.month_no.asc())
        stmt = stmt.execution_options(populate_existing=True)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_payouts(
        self, user_id: str | None = None, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[List[Payout], int]:
        filters = []
        if user_id:
            filters.append(Payout.user_id == user_id)
        if status:
            filters.append(Payout.status == status)

        stmt = select(Payout).where(*filters).order_by(Payout.due_date.asc(), Payout.month_no.asc())
        total = await self.db.scalar(select(func.count()).select_from(Payout).where(*filters))
        return list((await self.db.execute(stmt.limit(limit).offset(offset))).scalars().all()), total or 0


class TransitionRepository:
    """Audit trail writer for state machine transitions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        from_status: str | None,
        to_status: str,
        event: str,
        note: str | None = None,
    ) -> StateTransition:
        transition = StateTransition(
            entity_type=entity_type,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            event=event,
            note=note,
        )
        self.db.add(transition)
        await self.db.flush()
        return transition

    async def history(self, entity_id: uuid.UUID) -> List[StateTransition]:
        stmt = (
            select(StateTransition)
            .where(StateTransition.entity_id == entity_id)
            .order_by(StateTransition.id.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())
