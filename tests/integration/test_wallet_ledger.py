"""Wallet ledger against a real database"""

import asyncio

import pytest

from returns_engine.domain.exceptions import InsufficientFundsError, InsufficientLockedError, NotFoundError
from returns_engine.infrastructure.locks import KeyedLock
from returns_engine.services.wallet import WalletLedger


async def test_open_wallet_is_idempotent(db):
    ledger = WalletLedger(db)
    await ledger.open_wallet("user_1")
    await ledger.credit("user_1", 5_000)

    wallet = await ledger.open_wallet("user_1")

    assert wallet.balance_paise == 5_000


async def test_operations_on_missing_wallet(db):
    ledger = WalletLedger(db)
    with pytest.raises(NotFoundError):
        await ledger.credit("ghost", 100)
    with pytest.raises(NotFoundError):
        await ledger.get_wallet("ghost")


async def test_lock_unlock_consume_cycle(db, funded_wallet):
    ledger = WalletLedger(db)

    await ledger.lock("user_1", 300_000)
    await ledger.unlock("user_1", 100_000)
    wallet = await ledger.consume_locked("user_1", 200_000)

    assert wallet.balance_paise == 800_000
    assert wallet.locked_paise == 0


async def test_failed_operation_leaves_wallet_untouched(db, funded_wallet):
    ledger = WalletLedger(db)
    await ledger.lock("user_1", 900_000)

    with pytest.raises(InsufficientFundsError):
        await ledger.debit("user_1", 200_000)
    with pytest.raises(InsufficientLockedError):
        await ledger.consume_locked("user_1", 900_001)

    wallet = await ledger.get_wallet("user_1")
    assert (wallet.balance_paise, wallet.locked_paise) == (1_000_000, 900_000)
    _, total = await ledger.entries("user_1")
    assert total == 2  # seed credit + lock


async def test_transaction_rolls_back_every_step(db, funded_wallet):
    ledger = WalletLedger(db)

    with pytest.raises(InsufficientFundsError):
        async with ledger.transaction("user_1"):
            await ledger.credit("user_1", 50_000)
            await ledger.debit("user_1", 5_000_000)

    wallet = await ledger.get_wallet("user_1")
    assert wallet.balance_paise == 1_000_000


async def test_locks_released_after_error(db, funded_wallet):
    locks = KeyedLock()
    ledger = WalletLedger(db, locks=locks)

    with pytest.raises(InsufficientFundsError):
        await ledger.debit("user_1", 5_000_000)

    assert not locks.is_locked("user_1")
    await ledger.credit("user_1", 1)


async def test_reconcile_matches_ledger(db, funded_wallet):
    ledger = WalletLedger(db)
    await ledger.lock("user_1", 400_000)
    await ledger.consume_locked("user_1", 100_000)
    await ledger.unlock("user_1", 300_000)
    await ledger.debit("user_1", 50_000)

    report = await ledger.reconcile("user_1")

    assert report.consistent
    assert report.replayed_balance_paise == 850_000
    assert report.replayed_locked_paise == 0
    assert report.entry_count == 5


async def test_reconcile_detects_tampering(db, funded_wallet):
    ledger = WalletLedger(db)
    wallet = await ledger.get_wallet("user_1")
    wallet.balance_paise += 1
    await db.commit()

    report = await ledger.reconcile("user_1")

    assert not report.consistent


async def test_concurrent_locks_never_exceed_balance(session_factory, funded_wallet):
    """Ten parallel ₹3,000 locks against ₹10,000: exactly three succeed"""

    async def try_lock():
        async with session_factory() as session:
            await WalletLedger(session).lock("user_1", 300_000)

    results = await asyncio.gather(*(try_lock() for _ in range(10)), return_exceptions=True)

    assert sum(1 for r in results if r is None) == 3
    assert all(isinstance(r, InsufficientFundsError) for r in results if r is not None)

    async with session_factory() as session:
        wallet = await WalletLedger(session).get_wallet("user_1")
        assert wallet.locked_paise == 900_000
        assert 0 <= wallet.locked_paise <= wallet.balance_paise
