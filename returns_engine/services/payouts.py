"""Payout schedule lifecycle: compute, credit and confirm monthly payouts"""

import logging
import uuid
from datetime import date
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import settings
from returns_engine.domain.calculator import compute_payout
from returns_engine.domain.exceptions import ConflictError, DomainException, NotFoundError, ValidationError
from returns_engine.domain.models import AdvanceResult, InvestmentStatus, PayoutBreakdown, PayoutEvent, PayoutStatus
from returns_engine.domain.state_machines import next_payout_status
from returns_engine.infrastructure.database.models import Payout, StateTransition, utcnow
from returns_engine.infrastructure.database.repositories import (
    InvestmentRepository,
    PayoutRepository,
    TransitionRepository,
)
from returns_engine.infrastructure.observability.logging import log_transition
from returns_engine.infrastructure.observability.metrics import record_payout
from returns_engine.services.plan_rules import PlanRuleManager, to_rate_rule
from returns_engine.services.wallet import WalletLedger

ENTITY = "payout"
WALLET_GATEWAY = "wallet"


def parse_event(event: str) -> PayoutEvent:
    try:
        return PayoutEvent(event)
    except ValueError:
        raise ValidationError(f"Unknown payout event: {event}") from None


class PayoutScheduleStateMachine:
    """
    Moves scheduled payouts through processing to paid.

    Entering processing computes the month's amount and credits the wallet,
    at most once per payout (the credited flag survives reprocessing). With
    rate_lock the investment's own rule is used; otherwise the rule active
    at processing time.
    """

    def __init__(self, db: AsyncSession, ledger: WalletLedger | None = None, rate_lock: bool | None = None):
        self.db = db
        self.repo = PayoutRepository(db)
        self.investments = InvestmentRepository(db)
        self.transitions = TransitionRepository(db)
        self.rules = PlanRuleManager(db)
        self.ledger = ledger or WalletLedger(db)
        self.rate_lock = settings.payout_rate_lock if rate_lock is None else rate_lock

    async def simulate(
        self,
        principal_paise: int,
        month_duration: int,
        booster_applied: bool = False,
        rule_id: uuid.UUID | None = None,
    ) -> List[PayoutBreakdown]:
        """Month-by-month preview under the active rule (or rule_id); nothing is stored"""
        if month_duration < 1:
            raise ValidationError("month_duration must be at least 1")
        rate_rule = to_rate_rule(await self._preview_rule(rule_id))
        return [
            compute_payout(principal_paise, month, rate_rule, booster_applied)
            for month in range(1, month_duration + 1)
        ]

    async def simulate_month(
        self,
        principal_paise: int,
        month: int,
        booster_applied: bool = False,
        rule_id: uuid.UUID | None = None,
    ) -> PayoutBreakdown:
        """Breakdown of a single month's payout"""
        rate_rule = to_rate_rule(await self._preview_rule(rule_id))
        return compute_payout(principal_paise, month, rate_rule, booster_applied)

    async def _preview_rule(self, rule_id: uuid.UUID | None):
        return await (self.rules.get(rule_id) if rule_id else self.rules.require_active())

    async def transition(
        self,
        payout_id: uuid.UUID,
        event: PayoutEvent | str,
        rrn: str | None = None,
        gateway: str | None = None,
        today: date | None = None,
        note: str | None = None,
    ) -> Payout:
        """
        Apply a payout event.

        Entering processing uncredited needs the payout to be due. confirm on a paid
        payout is a no-op for the same rrn and a conflict for another one.
        If computing or crediting fails while entering processing, nothing
        is credited, the payout is recorded as failed and the error re-raised.
        """
        event = parse_event(event)
        today = today or date.today()
        user_id = await self._owner(payout_id)

        compute_error: DomainException | None = None
        try:
            async with self.ledger.transaction(user_id):
                payout = await self.repo.get(payout_id, for_update=True)
                previous = payout.status

                if event is PayoutEvent.CONFIRM and previous == PayoutStatus.PAID.value:
                    if rrn is None or payout.rrn == rrn:
                        return payout
                    raise ConflictError(f"Payout {payout_id} already paid with a different rrn", code="ALREADY_PAID")

                target = next_payout_status(previous, event)

                if target is PayoutStatus.PROCESSING and not payout.credited:
                    # Uncredited payouts enter processing only once due, by process or resume
                    if payout.due_date > today:
                        raise ConflictError(f"Payout {payout_id} is not due until {payout.due_date}", code="NOT_DUE")
                    try:
                        await self._compute_and_credit(payout)
                    except DomainException as e:
                        compute_error = e
                        raise

                if target is PayoutStatus.PAID:
                    payout.paid_at = utcnow()
                    payout.rrn = rrn
                    payout.gateway = gateway or WALLET_GATEWAY

                await self._move(payout, target, event.value, note)

                if target is PayoutStatus.PAID:
                    await self._complete_if_finished(payout.investment_id)
        except DomainException:
            if compute_error is not None:
                await self._mark_failed(payout_id, user_id, compute_error)
            raise

        if target is PayoutStatus.PAID:
            record_payout(True, payout.amount_paise or 0)
        elif target is PayoutStatus.FAILED:
            record_payout(False)
        log_transition(ENTITY, str(payout_id), user_id, previous, target.value, event.value)
        return payout

    async def advance_due_schedules(self, today: date | None = None) -> AdvanceResult:
        """
        Process and confirm every scheduled payout due on or before today.

        Each payout runs in its own transactions; one failure does not stop
        the batch and is reported in the result.
        """
        today = today or date.today()
        result = AdvanceResult()

        for payout_id, user_id in await self.repo.due_ids(today):
            result.processed += 1
            try:
                await self.transition(payout_id, PayoutEvent.PROCESS, today=today)
                await self.transition(payout_id, PayoutEvent.CONFIRM, gateway=WALLET_GATEWAY, today=today)
            except DomainException as e:
                result.failures.append(
                    {"payout_id": str(payout_id), "user_id": user_id, "code": e.code, "detail": e.message}
                )
                logging.warning(
                    "Payout failed during batch advance",
                    extra={"payout_id": str(payout_id), "user_id": user_id, "code": e.code, "error": e.message},
                )
            else:
                result.paid += 1

        logging.info(
            "Due payouts advanced",
            extra={
                "step": "advance_due_schedules",
                "today": today.isoformat(),
                "processed": result.processed,
                "paid": result.paid,
                "failed": len(result.failures),
            },
        )
        return result

    async def get(self, payout_id: uuid.UUID) -> Payout:
        payout = await self.repo.get(payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return payout

    async def list_payouts(
        self, user_id: str | None = None, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[List[Payout], int]:
        if status is not None:
            try:
                status = PayoutStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown payout status: {status}") from None
        return await self.repo.list_payouts(user_id=user_id, status=status, limit=limit, offset=offset)

    async def history(self, payout_id: uuid.UUID) -> List[StateTransition]:
        return await self.transitions.history(payout_id)

    async def _owner(self, payout_id: uuid.UUID) -> str:
        user_id = await self.repo.owner_of(payout_id)
        if user_id is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return user_id

    async def _compute_and_credit(self, payout: Payout) -> None:
        investment = await self.investments.get(payout.investment_id)
        if self.rate_lock:
            rule = await self.rules.get(investment.plan_rule_id)
        else:
            rule = await self.rules.require_active()

        breakdown = compute_payout(
            investment.principal_paise,
            payout.month_no,
            to_rate_rule(rule),
            booster_applied=investment.booster_applied,
        )
        if breakdown.net_payout_paise > 0:
            await self.ledger.credit(
                payout.user_id,
                breakdown.net_payout_paise,
                reference_id=str(payout.id),
                note=f"payout month {payout.month_no}",
            )

        payout.gross_payout_paise = breakdown.gross_monthly_paise
        payout.admin_charge_paise = breakdown.admin_charge_paise
        payout.booster_paise = breakdown.booster_paise
        payout.amount_paise = breakdown.net_payout_paise
        payout.plan_rule_id = rule.id
        payout.credited = True

    async def _mark_failed(self, payout_id: uuid.UUID, user_id: str, error: DomainException) -> None:
        """Record a processing failure outside the rolled-back transaction"""
        async with self.ledger.transaction(user_id):
            payout = await self.repo.get(payout_id, for_update=True)
            previous = payout.status
            await self._move(payout, PayoutStatus.FAILED, PayoutEvent.FAIL.value, error.message)

        record_payout(False)
        log_transition(ENTITY, str(payout_id), user_id, previous, PayoutStatus.FAILED.value, PayoutEvent.FAIL.value)

    async def _complete_if_finished(self, investment_id: uuid.UUID) -> None:
        await self.db.flush()
        payouts = await self.repo.for_investment(investment_id)
        if payouts and all(p.status == PayoutStatus.PAID.value for p in payouts):
            investment = await self.investments.get(investment_id, for_update=True)
            investment.status = InvestmentStatus.COMPLETED.value
            logging.info(
                "Investment completed",
                extra={"investment_id": str(investment_id), "user_id": investment.user_id, "step": "complete_investment"},
            )

    async def _move(self, payout: Payout, target: PayoutStatus, event: str, note: str | None) -> None:
        previous = payout.status
        payout.status = target.value
        payout.updated_at = utcnow()
        await self.transitions.record(ENTITY, payout.id, previous, target.value, event, note)
