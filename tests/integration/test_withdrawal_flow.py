"""Withdrawal state machine with wallet effects"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from returns_engine.domain.exceptions import (
    ConflictError,
    ExternalRailError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient, RailTransfer
from returns_engine.services.wallet import WalletLedger
from returns_engine.services.withdrawals import WithdrawalStateMachine


async def wallet_of(db, user_id="user_1"):
    wallet = await WalletLedger(db).get_wallet(user_id)
    return wallet.balance_paise, wallet.locked_paise


async def approved_withdrawal(db, amount=500_000):
    machine = WithdrawalStateMachine(db)
    withdrawal = await machine.request_withdrawal("user_1", amount)
    return await machine.transition(withdrawal.id, "approve")


async def test_request_locks_amount_and_moves_to_review(db, funded_wallet):
    withdrawal = await WithdrawalStateMachine(db).request_withdrawal("user_1", 500_000)

    assert withdrawal.status == "under_admin_review"
    assert withdrawal.charges_paise == 5_000  # 2% capped at ₹50
    assert withdrawal.net_amount_paise == 495_000
    assert await wallet_of(db) == (1_000_000, 500_000)


async def test_request_without_auto_review_stays_requested(db, funded_wallet):
    machine = WithdrawalStateMachine(db, auto_review=False)
    withdrawal = await machine.request_withdrawal("user_1", 20_000)

    assert withdrawal.status == "requested"
    reviewed = await machine.transition(withdrawal.id, "review")
    assert reviewed.status == "under_admin_review"


async def test_request_validation(db, funded_wallet):
    machine = WithdrawalStateMachine(db)
    with pytest.raises(ValidationError):
        await machine.request_withdrawal("user_1", 9_999)
    with pytest.raises(ValidationError):
        await machine.request_withdrawal("user_1", 20_000, source="bonus")
    with pytest.raises(InsufficientFundsError):
        await machine.request_withdrawal("user_1", 1_000_001)
    with pytest.raises(NotFoundError):
        await machine.request_withdrawal("nobody", 20_000)

    total = (await machine.list_withdrawals(user_id="user_1"))[1]
    assert total == 0
    assert await wallet_of(db) == (1_000_000, 0)


async def test_paid_withdrawal_consumes_locked_funds(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)

    paid = await WithdrawalStateMachine(db).transition(withdrawal.id, "pay", rrn="RRN1", gateway="imps")

    assert paid.status == "paid"
    assert paid.paid_at is not None
    assert await wallet_of(db) == (500_000, 0)
    # Charges are booked as platform revenue
    assert await wallet_of(db, "platform") == (5_000, 0)


async def test_duplicate_confirmation_is_noop(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    machine = WithdrawalStateMachine(db)
    await machine.confirm(withdrawal.id, "RRN1", "imps")

    again = await machine.confirm(withdrawal.id, "RRN1", "imps")

    assert again.status == "paid"
    assert await wallet_of(db) == (500_000, 0)
    with pytest.raises(ConflictError) as exc_info:
        await machine.confirm(withdrawal.id, "RRN2", "imps")
    assert exc_info.value.code == "ALREADY_PAID"


async def test_pay_requires_rrn_and_gateway(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    with pytest.raises(ValidationError):
        await WithdrawalStateMachine(db).transition(withdrawal.id, "pay", rrn="RRN1")


async def test_rejection_restores_available_balance(db, funded_wallet):
    machine = WithdrawalStateMachine(db)
    before = await wallet_of(db)
    withdrawal = await machine.request_withdrawal("user_1", 300_000)

    with pytest.raises(ValidationError):
        await machine.transition(withdrawal.id, "reject")
    rejected = await machine.transition(withdrawal.id, "reject", reason="KYC incomplete")

    assert rejected.status == "rejected"
    assert rejected.reason == "KYC incomplete"
    assert await wallet_of(db) == before


async def test_terminal_withdrawals_cannot_move(db, funded_wallet):
    machine = WithdrawalStateMachine(db)
    withdrawal = await machine.request_withdrawal("user_1", 300_000)
    await machine.transition(withdrawal.id, "fail", reason="bank down")

    with pytest.raises(InvalidTransitionError):
        await machine.transition(withdrawal.id, "approve")
    with pytest.raises(ValidationError):
        await machine.transition(withdrawal.id, "teleport")


async def test_reprocess_relocks_and_is_idempotent(db, funded_wallet):
    machine = WithdrawalStateMachine(db)
    withdrawal = await machine.request_withdrawal("user_1", 300_000)
    await machine.transition(withdrawal.id, "fail", reason="bank down")
    assert await wallet_of(db) == (1_000_000, 0)

    reprocessed = await machine.reprocess(withdrawal.id, "retry-1")
    again = await machine.reprocess(withdrawal.id, "retry-1")

    assert reprocessed.status == again.status == "under_admin_review"
    assert await wallet_of(db) == (1_000_000, 300_000)
    with pytest.raises(InvalidTransitionError):
        await machine.reprocess(withdrawal.id, "retry-2")


async def test_reprocess_fails_when_funds_are_gone(db, funded_wallet):
    machine = WithdrawalStateMachine(db)
    withdrawal = await machine.request_withdrawal("user_1", 800_000)
    await machine.transition(withdrawal.id, "fail", reason="bank down")
    await WalletLedger(db).debit("user_1", 500_000)

    with pytest.raises(InsufficientFundsError):
        await machine.reprocess(withdrawal.id, "retry-1")

    assert (await machine.get(withdrawal.id)).status == "failed"
    assert await wallet_of(db) == (500_000, 0)


async def test_concurrent_requests_cannot_over_lock(session_factory, funded_wallet):
    """Two ₹7,000 requests against ₹10,000: one wins, one is refused"""

    async def request():
        async with session_factory() as session:
            return await WithdrawalStateMachine(session).request_withdrawal("user_1", 700_000)

    results = await asyncio.gather(request(), request(), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, InsufficientFundsError)) == 1
    async with session_factory() as session:
        balance, locked = await wallet_of(session)
        assert (balance, locked) == (1_000_000, 700_000)


async def test_disburse_pays_through_rail(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    rail = AsyncMock(spec=PaymentRailClient)
    rail.submit_transfer.return_value = RailTransfer(rrn="RAIL42", gateway="mock-imps")

    paid = await WithdrawalStateMachine(db).disburse(withdrawal.id, rail)

    assert paid.status == "paid"
    assert paid.rrn == "RAIL42"
    rail.submit_transfer.assert_awaited_once()
    assert rail.submit_transfer.await_args.args[2] == 495_000


async def test_disburse_failure_unlocks_funds(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    rail = AsyncMock(spec=PaymentRailClient)
    rail.submit_transfer.side_effect = ExternalRailError("Payment rail unreachable")

    with pytest.raises(ExternalRailError):
        await WithdrawalStateMachine(db).disburse(withdrawal.id, rail)

    failed = await WithdrawalStateMachine(db).get(withdrawal.id)
    assert failed.status == "failed"
    assert await wallet_of(db) == (1_000_000, 0)


async def test_transitions_are_audited(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    history = await WithdrawalStateMachine(db).history(withdrawal.id)

    assert [(h.from_status, h.to_status) for h in history] == [
        (None, "requested"),
        ("requested", "under_admin_review"),
        ("under_admin_review", "approved"),
    ]


async def test_reject_while_rail_holds_transfer_is_refused(session_factory, db, funded_wallet):
    """An admin reject racing the rail call cannot release funds that are being sent"""
    withdrawal = await approved_withdrawal(db)
    seen = {}

    async def send_while_admin_rejects(withdrawal_id, user_id, amount_paise, currency="INR"):
        async with session_factory() as admin:
            try:
                await WithdrawalStateMachine(admin).transition(withdrawal.id, "reject", reason="changed mind")
            except ConflictError as e:
                seen["code"] = e.code
        async with session_factory() as reader:
            seen["claimed"] = (await WithdrawalStateMachine(reader).get(withdrawal.id)).disbursing_at is not None
        return RailTransfer(rrn="RRN1", gateway="mock-imps")

    rail = AsyncMock(spec=PaymentRailClient)
    rail.submit_transfer.side_effect = send_while_admin_rejects

    paid = await WithdrawalStateMachine(db).disburse(withdrawal.id, rail)

    assert seen == {"code": "DISBURSING", "claimed": True}
    assert paid.status == "paid"
    assert paid.disbursing_at is None
    assert await wallet_of(db) == (500_000, 0)


async def test_interrupted_disburse_is_resubmitted(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    rail = AsyncMock(spec=PaymentRailClient)
    rail.submit_transfer.side_effect = [RuntimeError("worker killed"), RailTransfer(rrn="RRN7", gateway="mock-imps")]
    machine = WithdrawalStateMachine(db)

    with pytest.raises(RuntimeError):
        await machine.disburse(withdrawal.id, rail)
    # Outcome unknown: the funds stay locked until the rail answers
    with pytest.raises(ConflictError) as exc_info:
        await machine.transition(withdrawal.id, "fail", reason="timeout")
    assert exc_info.value.code == "DISBURSING"
    assert await wallet_of(db) == (1_000_000, 500_000)

    paid = await machine.disburse(withdrawal.id, rail)

    assert paid.rrn == "RRN7"
    first, second = rail.submit_transfer.await_args_list
    assert first.args[0] == second.args[0] == str(withdrawal.id)
    assert await wallet_of(db) == (500_000, 0)


async def test_rail_failure_clears_claim_for_reprocess(db, funded_wallet):
    withdrawal = await approved_withdrawal(db)
    rail = AsyncMock(spec=PaymentRailClient)
    rail.submit_transfer.side_effect = ExternalRailError("Payment rail rejected transfer: 422")
    machine = WithdrawalStateMachine(db)

    with pytest.raises(ExternalRailError):
        await machine.disburse(withdrawal.id, rail)
    failed = await machine.get(withdrawal.id)
    assert (failed.status, failed.disbursing_at) == ("failed", None)

    reviewed = await machine.reprocess(withdrawal.id, "retry-1")
    assert reviewed.status == "under_admin_review"
    assert await wallet_of(db) == (1_000_000, 500_000)
