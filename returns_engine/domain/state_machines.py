"""Transition tables for the withdrawal and payout lifecycles"""

from returns_engine.domain.exceptions import InvalidTransitionError
from returns_engine.domain.models import PayoutEvent, PayoutStatus, WithdrawalEvent, WithdrawalStatus

W = WithdrawalStatus
P = PayoutStatus

WITHDRAWAL_TERMINAL = frozenset({W.PAID, W.REJECTED, W.FAILED})

WITHDRAWAL_TRANSITIONS = {
    (W.REQUESTED, WithdrawalEvent.REVIEW): W.UNDER_ADMIN_REVIEW,
    (W.UNDER_ADMIN_REVIEW, WithdrawalEvent.APPROVE): W.APPROVED,
    (W.APPROVED, WithdrawalEvent.PAY): W.PAID,
}

# Escape events valid from every non-terminal state
WITHDRAWAL_ESCAPES = {
    WithdrawalEvent.REJECT: W.REJECTED,
    WithdrawalEvent.FAIL: W.FAILED,
}

PAYOUT_TRANSITIONS = {
    (P.SCHEDULED, PayoutEvent.PROCESS): P.PROCESSING,
    (P.REPROCESSING, PayoutEvent.PROCESS): P.PROCESSING,
    (P.PROCESSING, PayoutEvent.CONFIRM): P.PAID,
    (P.PROCESSING, PayoutEvent.FAIL): P.FAILED,
    (P.FAILED, PayoutEvent.REPROCESS): P.REPROCESSING,
    (P.SCHEDULED, PayoutEvent.HOLD): P.ON_HOLD,
    (P.PROCESSING, PayoutEvent.HOLD): P.ON_HOLD,
    (P.SCHEDULED, PayoutEvent.PEND): P.PENDING,
    (P.PROCESSING, PayoutEvent.PEND): P.PENDING,
    (P.ON_HOLD, PayoutEvent.RESUME): P.PROCESSING,
    (P.PENDING, PayoutEvent.RESUME): P.PROCESSING,
}


def next_withdrawal_status(current: WithdrawalStatus, event: WithdrawalEvent) -> WithdrawalStatus:
    """Resolve the target state or raise InvalidTransitionError"""
    current = WithdrawalStatus(current)
    event = WithdrawalEvent(event)

    if current not in WITHDRAWAL_TERMINAL and event in WITHDRAWAL_ESCAPES:
        return WITHDRAWAL_ESCAPES[event]

    target = WITHDRAWAL_TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(f"Cannot {event.value} a withdrawal in status {current.value}")
    return target


def next_payout_status(current: PayoutStatus, event: PayoutEvent) -> PayoutStatus:
    """Resolve the target state or raise InvalidTransitionError"""
    current = PayoutStatus(current)
    event = PayoutEvent(event)

    target = PAYOUT_TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(f"Cannot {event.value} a payout in status {current.value}")
    return target
