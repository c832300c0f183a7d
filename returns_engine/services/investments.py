"""Investment creation and acceptance"""

import logging
import uuid
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import settings
from returns_engine.domain.exceptions import InvalidTransitionError, NotFoundError, OutOfRangeMonth, ValidationError
from returns_engine.domain.models import InvestmentStatus
from returns_engine.domain.schedule import build_payout_schedule
from returns_engine.infrastructure.database.models import Investment, Payout
from returns_engine.infrastructure.database.repositories import InvestmentRepository, PayoutRepository
from returns_engine.services.plan_rules import PlanRuleManager, to_rate_rule
from returns_engine.services.wallet import WalletLedger


class InvestmentService:
    """Records investments against the active rule and schedules their payouts"""

    def __init__(self, db: AsyncSession, ledger: WalletLedger | None = None):
        self.db = db
        self.repo = InvestmentRepository(db)
        self.payouts = PayoutRepository(db)
        self.rules = PlanRuleManager(db)
        self.ledger = ledger or WalletLedger(db)

    async def create_investment(
        self,
        user_id: str,
        principal_paise: int,
        month_duration: int,
        booster_applied: bool = False,
        notes: str | None = None,
    ) -> Investment:
        """
        Record an initiated investment under the active rule.

        Raises:
            NotFoundError: No active rule
            ValidationError: Principal below the rule minimum, bad duration
            OutOfRangeMonth: Duration beyond the rule's last band
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if principal_paise <= 0:
            raise ValidationError("principal must be positive")
        if month_duration < 1:
            raise ValidationError("month_duration must be at least 1")

        rule = await self.rules.require_active()
        rate_rule = to_rate_rule(rule)
        if principal_paise < rate_rule.min_amount_paise:
            raise ValidationError(
                f"Minimum investment is {rate_rule.min_amount_paise} paise, got {principal_paise}"
            )
        if month_duration > rate_rule.last_month:
            raise OutOfRangeMonth(f"Rule {rule.version} covers months 1-{rate_rule.last_month}, got {month_duration}")

        try:
            investment = await self.repo.add(
                Investment(
                    user_id=user_id,
                    principal_paise=principal_paise,
                    month_duration=month_duration,
                    booster_applied=booster_applied,
                    plan_rule_id=rule.id,
                    plan_rule_version=rule.version,
                    status=InvestmentStatus.INITIATED.value,
                    notes=notes,
                )
            )
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

        logging.info(
            "Investment created",
            extra={
                "investment_id": str(investment.id),
                "user_id": user_id,
                "amount_paise": principal_paise,
                "month_duration": month_duration,
                "step": "create_investment",
            },
        )
        return investment

    async def accept_investment(
        self, investment_id: uuid.UUID, start_date: date | None = None, today: date | None = None
    ) -> tuple[Investment, list[Payout]]:
        """
        Activate an initiated investment and create its payout schedule.

        The wallet is opened in the same transaction so payouts always have
        somewhere to land.
        """
        today = today or date.today()
        started_on = start_date or today

        user_id = await self._owner(investment_id)
        async with self.ledger.transaction(user_id):
            investment = await self.repo.get(investment_id, for_update=True)
            if investment.status != InvestmentStatus.INITIATED.value:
                raise InvalidTransitionError(f"Cannot accept an investment in status {investment.status}")

            schedule = build_payout_schedule(
                started_on,
                investment.month_duration,
                payout_day=settings.payout_day_of_month,
                today=today,
            )
            await self.ledger.open_wallet(user_id)
            payouts = await self.payouts.create_schedule(investment, schedule)
            investment.status = InvestmentStatus.ACTIVE.value
            investment.started_at = started_on

        logging.info(
            "Investment accepted",
            extra={
                "investment_id": str(investment_id),
                "user_id": user_id,
                "payouts": len(payouts),
                "first_due_date": schedule[0].due_date.isoformat(),
                "step": "accept_investment",
            },
        )
        return investment, payouts

    async def reject_investment(self, investment_id: uuid.UUID, reason: str) -> Investment:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        try:
            investment = await self.repo.get(investment_id, for_update=True)
            if investment is None:
                raise NotFoundError(f"Investment {investment_id} not found")
            if investment.status != InvestmentStatus.INITIATED.value:
                raise InvalidTransitionError(f"Cannot reject an investment in status {investment.status}")
            investment.status = InvestmentStatus.REJECTED.value
            investment.notes = reason.strip()
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

        logging.info(
            "Investment rejected",
            extra={"investment_id": str(investment_id), "user_id": investment.user_id, "step": "reject_investment"},
        )
        return investment

    async def get(self, investment_id: uuid.UUID) -> Investment:
        investment = await self.repo.get(investment_id)
        if investment is None:
            raise NotFoundError(f"Investment {investment_id} not found")
        return investment

    async def _owner(self, investment_id: uuid.UUID) -> str:
        return (await self.get(investment_id)).user_id
