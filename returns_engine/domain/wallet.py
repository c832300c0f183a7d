"""Wallet arithmetic shared by live mutations and ledger replay"""

from typing import Iterable, Tuple

from returns_engine.domain.exceptions import InsufficientFundsError, InsufficientLockedError, ValidationError
from returns_engine.domain.models import LedgerKind


def apply_entry(balance: int, locked: int, kind: LedgerKind, amount: int) -> Tuple[int, int]:
    """
    Apply one ledger entry to (balance, locked) and return the new pair.

    Effects:
    - credit:          balance += amount
    - debit:           balance -= amount  (needs available >= amount)
    - lock:            locked  += amount  (needs available >= amount)
    - unlock:          locked  -= amount  (needs locked >= amount)
    - consume_locked:  both -= amount     (needs locked >= amount)
    - platform_*/tds:  balance += amount  (platform account revenue lines)

    Raises:
        InsufficientFundsError / InsufficientLockedError when 0 <= locked <= balance
        would break; ValidationError for non-positive amounts
    """
    kind = LedgerKind(kind)
    if amount <= 0:
        raise ValidationError("Ledger amounts must be positive")

    available = balance - locked

    if kind in (LedgerKind.CREDIT, LedgerKind.PLATFORM_CHARGES, LedgerKind.TDS_WITHHELD):
        return balance + amount, locked

    if kind is LedgerKind.DEBIT:
        if amount > available:
            raise InsufficientFundsError(f"Insufficient available balance: {available} < {amount} paise")
        return balance - amount, locked

    if kind is LedgerKind.LOCK:
        if amount > available:
            raise InsufficientFundsError(f"Insufficient available balance to lock: {available} < {amount} paise")
        return balance, locked + amount

    if kind is LedgerKind.UNLOCK:
        if amount > locked:
            raise InsufficientLockedError(f"Insufficient locked amount to unlock: {locked} < {amount} paise")
        return balance, locked - amount

    # consume_locked
    if amount > locked:
        raise InsufficientLockedError(f"Insufficient locked amount to consume: {locked} < {amount} paise")
    return balance - amount, locked - amount


def replay(entries: Iterable[Tuple[LedgerKind, int]]) -> Tuple[int, int]:
    """Rebuild (balance, locked) from (kind, amount) pairs in order"""
    balance, locked = 0, 0
    for kind, amount in entries:
        balance, locked = apply_entry(balance, locked, kind, amount)
    return balance, locked
