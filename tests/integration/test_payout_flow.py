"""Investments, payout schedules and the payout state machine"""

from datetime import date
from decimal import Decimal

import pytest

from returns_engine.domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OutOfRangeMonth,
    ValidationError,
)
from returns_engine.domain.models import RateBand
from returns_engine.services.investments import InvestmentService
from returns_engine.services.payouts import PayoutScheduleStateMachine
from returns_engine.services.plan_rules import PlanRuleManager
from returns_engine.services.wallet import WalletLedger

LAKH = 10_000_000  # ₹1,00,000 in paise
START = date(2024, 1, 10)
# ₹1,00,000 at 3% with 4% admin: ₹3,000 gross, ₹120 admin
MONTH_ONE_NET = 288_000


async def accepted_investment(db, months=3, principal=LAKH, booster=False):
    service = InvestmentService(db)
    investment = await service.create_investment("investor_1", principal, months, booster_applied=booster)
    return await service.accept_investment(investment.id, start_date=START, today=START)


async def balance(db, user_id="investor_1") -> int:
    return (await WalletLedger(db).get_wallet(user_id)).balance_paise


async def narrow_rule(db):
    """Activate a rule that only covers month 1"""
    return await PlanRuleManager(db).create_rule(
        name="one month only",
        bands=[RateBand(1, 1, Decimal("0.03"))],
        min_amount_paise=0,
        special_min_paise=10**12,
        special_rate=Decimal("0.10"),
        admin_charge=Decimal("0.04"),
        booster=Decimal("0"),
        activate=True,
    )


async def test_create_investment_checks_rule(db, active_rule):
    service = InvestmentService(db)

    with pytest.raises(ValidationError):
        await service.create_investment("investor_1", LAKH - 1, 3)
    with pytest.raises(OutOfRangeMonth):
        await service.create_investment("investor_1", LAKH, 16)

    investment = await service.create_investment("investor_1", LAKH, 15)
    assert investment.status == "initiated"
    assert investment.plan_rule_id == active_rule.id


async def test_create_investment_needs_active_rule(db):
    with pytest.raises(NotFoundError):
        await InvestmentService(db).create_investment("investor_1", LAKH, 3)


async def test_accept_builds_schedule_and_opens_wallet(db, active_rule):
    investment, payouts = await accepted_investment(db)

    assert investment.status == "active"
    assert investment.started_at == START
    assert [p.due_date for p in payouts] == [date(2024, 2, 25), date(2024, 3, 25), date(2024, 4, 25)]
    assert all(p.status == "scheduled" and not p.credited for p in payouts)
    assert await balance(db) == 0

    with pytest.raises(InvalidTransitionError):
        await InvestmentService(db).accept_investment(investment.id, today=START)


async def test_reject_investment(db, active_rule):
    service = InvestmentService(db)
    investment = await service.create_investment("investor_1", LAKH, 3)

    with pytest.raises(ValidationError):
        await service.reject_investment(investment.id, " ")
    rejected = await service.reject_investment(investment.id, "KYC pending")

    assert rejected.status == "rejected"
    with pytest.raises(InvalidTransitionError):
        await service.accept_investment(investment.id, today=START)


async def test_advance_pays_due_payouts_only(db, active_rule):
    await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db)

    result = await machine.advance_due_schedules(today=date(2024, 2, 25))

    assert (result.processed, result.paid, result.failures) == (1, 1, [])
    payouts, _ = await machine.list_payouts(user_id="investor_1")
    assert [p.status for p in payouts] == ["paid", "scheduled", "scheduled"]
    assert payouts[0].amount_paise == MONTH_ONE_NET
    assert payouts[0].gross_payout_paise == 300_000
    assert payouts[0].admin_charge_paise == 12_000
    assert await balance(db) == MONTH_ONE_NET


async def test_final_payout_completes_investment(db, active_rule):
    investment, _ = await accepted_investment(db)

    result = await PayoutScheduleStateMachine(db).advance_due_schedules(today=date(2024, 12, 31))

    assert result.paid == 3
    assert (await InvestmentService(db).get(investment.id)).status == "completed"
    assert await balance(db) == 3 * MONTH_ONE_NET
    assert (await WalletLedger(db).reconcile("investor_1")).consistent


async def test_process_before_due_date_is_refused(db, active_rule):
    _, payouts = await accepted_investment(db)

    with pytest.raises(ConflictError) as exc_info:
        await PayoutScheduleStateMachine(db).transition(payouts[0].id, "process", today=date(2024, 2, 24))
    assert exc_info.value.code == "NOT_DUE"


async def test_payout_credited_at_most_once(db, active_rule):
    _, payouts = await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db)
    payout_id = payouts[0].id
    due = payouts[0].due_date

    await machine.transition(payout_id, "process", today=due)
    await machine.transition(payout_id, "hold")
    await machine.transition(payout_id, "resume")
    paid = await machine.transition(payout_id, "confirm", rrn="WALLET-1", gateway="wallet")
    again = await machine.transition(payout_id, "confirm", rrn="WALLET-1", gateway="wallet")

    assert paid.status == again.status == "paid"
    assert await balance(db) == MONTH_ONE_NET
    with pytest.raises(ConflictError):
        await machine.transition(payout_id, "confirm", rrn="WALLET-2")


async def test_failed_computation_marks_payout_failed_without_credit(db, active_rule):
    _, payouts = await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db, rate_lock=False)
    await narrow_rule(db)

    with pytest.raises(OutOfRangeMonth):
        await machine.transition(payouts[1].id, "process", today=date(2024, 3, 25))

    failed = await machine.get(payouts[1].id)
    assert failed.status == "failed"
    assert failed.credited is False
    assert await balance(db) == 0

    # Back under the original rule the payout can be reprocessed
    await PlanRuleManager(db).activate(active_rule.id)
    await machine.transition(payouts[1].id, "reprocess")
    processing = await machine.transition(payouts[1].id, "process")
    assert processing.status == "processing"
    assert await balance(db) == MONTH_ONE_NET


async def test_rate_lock_uses_investment_rule(db, active_rule):
    _, payouts = await accepted_investment(db)
    await narrow_rule(db)

    machine = PayoutScheduleStateMachine(db, rate_lock=True)
    processing = await machine.transition(payouts[1].id, "process", today=date(2024, 3, 25))

    assert processing.plan_rule_id == active_rule.id
    assert processing.amount_paise == MONTH_ONE_NET


async def test_advance_reports_failures_and_continues(db, active_rule):
    await accepted_investment(db)
    await narrow_rule(db)

    result = await PayoutScheduleStateMachine(db, rate_lock=False).advance_due_schedules(today=date(2024, 12, 31))

    assert result.processed == 3
    assert result.paid == 1
    assert [f["code"] for f in result.failures] == ["OUT_OF_RANGE_MONTH", "OUT_OF_RANGE_MONTH"]
    assert await balance(db) == MONTH_ONE_NET


async def test_booster_increases_payout(db, active_rule):
    _, payouts = await accepted_investment(db, booster=True)

    await PayoutScheduleStateMachine(db).advance_due_schedules(today=date(2024, 2, 25))

    # ₹3,000 gross - ₹120 admin + ₹300 booster
    assert await balance(db) == 318_000


async def test_simulate_preview(db, active_rule):
    machine = PayoutScheduleStateMachine(db)

    regular = await machine.simulate(LAKH, 4)
    special = await machine.simulate(3 * LAKH, 2)

    assert [m.net_payout_paise for m in regular] == [288_000, 288_000, 288_000, 384_000]
    assert all(m.special_tier for m in special)
    assert special[0].net_payout_paise == 2_880_000
    with pytest.raises(OutOfRangeMonth):
        await machine.simulate(LAKH, 16)


async def test_resume_before_due_date_does_not_credit(db, active_rule):
    _, payouts = await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db)
    last = payouts[2]  # due 2024-04-25

    await machine.transition(last.id, "hold", today=START)
    with pytest.raises(ConflictError) as exc_info:
        await machine.transition(last.id, "resume", today=START)

    assert exc_info.value.code == "NOT_DUE"
    held = await machine.get(last.id)
    assert (held.status, held.credited) == ("on_hold", False)
    assert await balance(db) == 0

    resumed = await machine.transition(last.id, "resume", today=date(2024, 4, 25))
    assert (resumed.status, resumed.credited) == ("processing", True)
    assert await balance(db) == MONTH_ONE_NET


async def test_pending_payout_resumes_after_due_date(db, active_rule):
    _, payouts = await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db)

    await machine.transition(payouts[0].id, "pend", today=START)
    resumed = await machine.transition(payouts[0].id, "resume", today=date(2024, 3, 1))
    paid = await machine.transition(payouts[0].id, "confirm", rrn="WALLET-1")

    assert resumed.amount_paise == MONTH_ONE_NET
    assert paid.status == "paid"
    assert await balance(db) == MONTH_ONE_NET


async def test_credited_payout_resumes_without_second_credit(db, active_rule):
    _, payouts = await accepted_investment(db)
    machine = PayoutScheduleStateMachine(db)
    first = payouts[0]

    await machine.transition(first.id, "process", today=first.due_date)
    await machine.transition(first.id, "pend")
    resumed = await machine.transition(first.id, "resume", today=START)

    assert resumed.status == "processing"
    assert await balance(db) == MONTH_ONE_NET


async def test_simulate_single_month(db, active_rule):
    machine = PayoutScheduleStateMachine(db)

    fourth = await machine.simulate_month(LAKH, 4)
    boosted = await machine.simulate_month(LAKH, 1, booster_applied=True)

    assert (fourth.month_index, fourth.net_payout_paise) == (4, 384_000)
    assert boosted.net_payout_paise == 318_000
    with pytest.raises(OutOfRangeMonth):
        await machine.simulate_month(LAKH, 16)
    with pytest.raises(ValidationError):
        await machine.simulate_month(LAKH, 0)
