"""Wallet ledger: the only writer of wallet balances"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import settings
from returns_engine.domain.exceptions import NotFoundError, ValidationError
from returns_engine.domain.models import LedgerKind
from returns_engine.domain.wallet import apply_entry, replay
from returns_engine.infrastructure.database.models import LedgerEntry, Wallet, utcnow
from returns_engine.infrastructure.database.repositories import WalletRepository
from returns_engine.infrastructure.locks import KeyedLock, wallet_locks
from returns_engine.infrastructure.observability.logging import log_wallet_mutation


@dataclass
class ReconcileReport:
    user_id: str
    balance_paise: int
    locked_paise: int
    replayed_balance_paise: int
    replayed_locked_paise: int
    entry_count: int

    @property
    def consistent(self) -> bool:
        return (self.balance_paise, self.locked_paise) == (self.replayed_balance_paise, self.replayed_locked_paise)


class WalletLedger:
    """
    Serializes every mutation of a wallet and records a ledger line for it.

    Mutations on one user id are exclusive: an in-process keyed lock guards
    concurrent coroutines and a row lock (SELECT ... FOR UPDATE) guards other
    processes. Callers that need several steps to be atomic (lock funds and
    insert the withdrawal row, consume funds and mark it paid) open
    ``transaction(user_id)`` themselves; single operations outside such a
    block run in their own transaction.
    """

    def __init__(self, db: AsyncSession, locks: KeyedLock = wallet_locks):
        self.db = db
        self.repo = WalletRepository(db)
        self.locks = locks
        self._held: set[str] = set()

    @asynccontextmanager
    async def transaction(self, *user_ids: str) -> AsyncIterator[None]:
        """
        Hold the wallet locks for user_ids and commit on success.

        Any exception rolls the whole unit back, so a failed step never
        leaves a partial balance change behind. Re-entering with keys that
        are already held joins the outer transaction.
        """
        keys = set(user_ids)
        if keys and keys <= self._held:
            yield
            return
        if self._held:
            raise RuntimeError(f"Cannot widen an open wallet transaction to {sorted(keys - self._held)}")

        # Reads issued before the lock must not pin a stale snapshot
        if self.db.in_transaction():
            await self.db.commit()

        async with self.locks.hold(*keys):
            self._held.update(keys)
            try:
                yield
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise
            finally:
                self._held.difference_update(keys)

    def holds(self, user_id: str) -> bool:
        return user_id in self._held

    async def open_wallet(self, user_id: str) -> Wallet:
        """Create the wallet if missing; existing wallets are returned unchanged"""
        if not user_id:
            raise ValidationError("user_id is required")
        if user_id in self._held:
            return await self._get_or_create(user_id)
        async with self.transaction(user_id):
            return await self._get_or_create(user_id)

    async def get_wallet(self, user_id: str) -> Wallet:
        wallet = await self.repo.get(user_id)
        if wallet is None:
            raise NotFoundError(f"Wallet for user {user_id} not found")
        return wallet

    async def credit(self, user_id: str, amount_paise: int, reference_id: str | None = None, note: str | None = None) -> Wallet:
        return await self._run(user_id, LedgerKind.CREDIT, amount_paise, reference_id, note)

    async def debit(self, user_id: str, amount_paise: int, reference_id: str | None = None, note: str | None = None) -> Wallet:
        return await self._run(user_id, LedgerKind.DEBIT, amount_paise, reference_id, note)

    async def lock(self, user_id: str, amount_paise: int, reference_id: str | None = None, note: str | None = None) -> Wallet:
        return await self._run(user_id, LedgerKind.LOCK, amount_paise, reference_id, note)

    async def unlock(self, user_id: str, amount_paise: int, reference_id: str | None = None, note: str | None = None) -> Wallet:
        return await self._run(user_id, LedgerKind.UNLOCK, amount_paise, reference_id, note)

    async def consume_locked(
        self, user_id: str, amount_paise: int, reference_id: str | None = None, note: str | None = None
    ) -> Wallet:
        return await self._run(user_id, LedgerKind.CONSUME_LOCKED, amount_paise, reference_id, note)

    async def post_platform(self, kind: LedgerKind, amount_paise: int, reference_id: str | None = None) -> Wallet | None:
        """Book withdrawal charges or withheld TDS on the platform account"""
        if kind not in (LedgerKind.PLATFORM_CHARGES, LedgerKind.TDS_WITHHELD):
            raise ValidationError(f"{kind} is not a platform ledger kind")
        if amount_paise == 0:
            return None
        platform_id = settings.platform_account_id
        if platform_id in self._held:
            await self._get_or_create(platform_id)
            return await self._apply(platform_id, kind, amount_paise, reference_id, None)
        async with self.transaction(platform_id):
            await self._get_or_create(platform_id)
            return await self._apply(platform_id, kind, amount_paise, reference_id, None)

    async def entries(self, user_id: str, limit: int = 50, offset: int = 0) -> tuple[List[LedgerEntry], int]:
        await self.get_wallet(user_id)
        return await self.repo.entries(user_id, limit=limit, offset=offset), await self.repo.count_entries(user_id)

    async def reconcile(self, user_id: str) -> ReconcileReport:
        """Replay the ledger and compare it with the materialized wallet"""
        wallet = await self.get_wallet(user_id)
        lines = await self.repo.entries(user_id)
        balance, locked = replay((LedgerKind(line.kind), line.amount_paise) for line in lines)
        report = ReconcileReport(
            user_id=user_id,
            balance_paise=wallet.balance_paise,
            locked_paise=wallet.locked_paise,
            replayed_balance_paise=balance,
            replayed_locked_paise=locked,
            entry_count=len(lines),
        )
        if not report.consistent:
            logging.error(
                "Wallet diverges from ledger",
                extra={
                    "user_id": user_id,
                    "step": "reconcile",
                    "balance_paise": wallet.balance_paise,
                    "replayed_balance_paise": balance,
                    "locked_paise": wallet.locked_paise,
                    "replayed_locked_paise": locked,
                },
            )
        return report

    async def _run(self, user_id: str, kind: LedgerKind, amount_paise: int, reference_id: str | None, note: str | None) -> Wallet:
        if user_id in self._held:
            return await self._apply(user_id, kind, amount_paise, reference_id, note)
        async with self.transaction(user_id):
            return await self._apply(user_id, kind, amount_paise, reference_id, note)

    async def _get_or_create(self, user_id: str) -> Wallet:
        wallet = await self.repo.get(user_id, for_update=True)
        if wallet is None:
            wallet = await self.repo.add(Wallet(user_id=user_id, balance_paise=0, locked_paise=0))
            logging.info("Wallet opened", extra={"user_id": user_id, "step": "open_wallet"})
        return wallet

    async def _apply(
        self, user_id: str, kind: LedgerKind, amount_paise: int, reference_id: str | None, note: str | None
    ) -> Wallet:
        wallet = await self.repo.get(user_id, for_update=True)
        if wallet is None:
            raise NotFoundError(f"Wallet for user {user_id} not found")

        balance, locked = apply_entry(wallet.balance_paise, wallet.locked_paise, kind, amount_paise)
        wallet.balance_paise = balance
        wallet.locked_paise = locked
        wallet.updated_at = utcnow()

        await self.repo.append_entry(
            LedgerEntry(
                user_id=user_id,
                kind=kind.value,
                amount_paise=amount_paise,
                reference_id=reference_id,
                note=note,
                balance_after_paise=balance,
                locked_after_paise=locked,
            )
        )
        log_wallet_mutation(user_id, kind.value, amount_paise, balance, locked, reference_id)
        return wallet
