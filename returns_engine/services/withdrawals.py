"""Withdrawal lifecycle coordinated with the wallet ledger"""

import logging
import uuid
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.config import settings
from returns_engine.domain.calculator import compute_withdrawal_charges
from returns_engine.domain.exceptions import (
    ConflictError,
    ExternalRailError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from returns_engine.domain.models import LedgerKind, WithdrawalEvent, WithdrawalSource, WithdrawalStatus
from returns_engine.domain.state_machines import WITHDRAWAL_TERMINAL, next_withdrawal_status
from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient
from returns_engine.infrastructure.database.models import StateTransition, Withdrawal, utcnow
from returns_engine.infrastructure.database.repositories import TransitionRepository, WithdrawalRepository
from returns_engine.infrastructure.observability.logging import log_transition
from returns_engine.infrastructure.observability.metrics import record_withdrawal_transition
from returns_engine.services.wallet import WalletLedger

ENTITY = "withdrawal"


def parse_event(event: str) -> WithdrawalEvent:
    try:
        return WithdrawalEvent(event)
    except ValueError:
        raise ValidationError(f"Unknown withdrawal event: {event}") from None


class WithdrawalStateMachine:
    """
    Drives a withdrawal from request to paid, rejected or failed.

    Wallet effects per transition:
    - request:        lock(amount)
    - pay:            consume_locked(amount); charges and TDS booked to the
                      platform account; net_amount leaves externally
    - reject / fail:  unlock(amount)
    - reprocess:      lock(amount) again, failed -> under_admin_review

    Status change, wallet effect and audit row commit together or not at all.
    """

    def __init__(self, db: AsyncSession, ledger: WalletLedger | None = None, auto_review: bool | None = None):
        self.db = db
        self.repo = WithdrawalRepository(db)
        self.transitions = TransitionRepository(db)
        self.ledger = ledger or WalletLedger(db)
        self.auto_review = settings.withdrawal_auto_review if auto_review is None else auto_review

    async def request_withdrawal(
        self, user_id: str, amount_paise: int, source: str = WithdrawalSource.EARNINGS.value
    ) -> Withdrawal:
        """
        Lock funds and file a withdrawal request.

        Raises:
            ValidationError: Below the minimum, unknown source, non-positive net
            NotFoundError: User has no wallet
            InsufficientFundsError: Available balance is short
        """
        if amount_paise < settings.withdrawal_min_paise:
            raise ValidationError(f"Minimum withdrawal is {settings.withdrawal_min_paise} paise")
        try:
            source = WithdrawalSource(source).value
        except ValueError:
            raise ValidationError(f"Unknown withdrawal source: {source}") from None

        charges = compute_withdrawal_charges(
            amount_paise,
            charge_rate=settings.withdrawal_charge_rate,
            charge_cap_paise=settings.withdrawal_charge_cap_paise,
            tds_rate=settings.withdrawal_tds_rate,
        )

        withdrawal_id = uuid.uuid4()
        async with self.ledger.transaction(user_id):
            await self.ledger.lock(user_id, amount_paise, reference_id=str(withdrawal_id), note="withdrawal request")
            withdrawal = await self.repo.add(
                Withdrawal(
                    id=withdrawal_id,
                    user_id=user_id,
                    amount_paise=amount_paise,
                    source=source,
                    charges_paise=charges.charges_paise,
                    tds_paise=charges.tds_paise,
                    net_amount_paise=charges.net_amount_paise,
                    status=WithdrawalStatus.REQUESTED.value,
                )
            )
            await self.transitions.record(ENTITY, withdrawal_id, None, WithdrawalStatus.REQUESTED.value, "request")

            if self.auto_review:
                await self._move(withdrawal, WithdrawalStatus.UNDER_ADMIN_REVIEW, WithdrawalEvent.REVIEW, "auto review")

        record_withdrawal_transition(WithdrawalStatus.REQUESTED.value)
        log_transition(ENTITY, str(withdrawal_id), user_id, None, WithdrawalStatus.REQUESTED.value, "request")
        if self.auto_review:
            record_withdrawal_transition(WithdrawalStatus.UNDER_ADMIN_REVIEW.value)
            log_transition(
                ENTITY,
                str(withdrawal_id),
                user_id,
                WithdrawalStatus.REQUESTED.value,
                WithdrawalStatus.UNDER_ADMIN_REVIEW.value,
                WithdrawalEvent.REVIEW.value,
            )
        return withdrawal

    async def transition(
        self,
        withdrawal_id: uuid.UUID,
        event: WithdrawalEvent | str,
        reason: str | None = None,
        rrn: str | None = None,
        gateway: str | None = None,
        from_rail: bool = False,
    ) -> Withdrawal:
        """
        Apply an admin or gateway event.

        A repeated pay carrying the rrn already recorded is a no-op; a pay
        with a different rrn on a paid withdrawal is rejected. While a
        transfer is with the rail only the rail's own answer (from_rail)
        may reject or fail it.

        Raises:
            ValidationError: pay without rrn/gateway, reject without reason
            InvalidTransitionError: No edge from the current status
            ConflictError: ALREADY_PAID with a different rrn, DISBURSING while
                the rail holds the transfer
        """
        event = parse_event(event)
        if event is WithdrawalEvent.PAY and not (rrn and gateway):
            raise ValidationError("pay requires rrn and gateway")
        if event is WithdrawalEvent.REJECT and not (reason and reason.strip()):
            raise ValidationError("reject requires a reason")

        user_id = await self._owner(withdrawal_id)
        keys = [user_id]
        if event is WithdrawalEvent.PAY:
            keys.append(settings.platform_account_id)

        async with self.ledger.transaction(*keys):
            withdrawal = await self.repo.get(withdrawal_id, for_update=True)
            previous = withdrawal.status

            if event is WithdrawalEvent.PAY and previous == WithdrawalStatus.PAID.value:
                if withdrawal.rrn == rrn:
                    return withdrawal
                raise ConflictError(f"Withdrawal {withdrawal_id} already paid with a different rrn", code="ALREADY_PAID")

            if (
                withdrawal.disbursing_at is not None
                and event in (WithdrawalEvent.REJECT, WithdrawalEvent.FAIL)
                and not from_rail
            ):
                raise ConflictError(
                    f"Withdrawal {withdrawal_id} is with the payment rail; wait for its answer", code="DISBURSING"
                )

            target = next_withdrawal_status(previous, event)
            reference = str(withdrawal.id)

            if event is WithdrawalEvent.PAY:
                await self.ledger.consume_locked(user_id, withdrawal.amount_paise, reference_id=reference, note="withdrawal paid")
                await self.ledger.post_platform(LedgerKind.PLATFORM_CHARGES, withdrawal.charges_paise, reference_id=reference)
                await self.ledger.post_platform(LedgerKind.TDS_WITHHELD, withdrawal.tds_paise, reference_id=reference)
                withdrawal.paid_at = utcnow()
                withdrawal.rrn = rrn
                withdrawal.gateway = gateway
            elif event in (WithdrawalEvent.REJECT, WithdrawalEvent.FAIL):
                await self.ledger.unlock(user_id, withdrawal.amount_paise, reference_id=reference, note=f"withdrawal {target.value}")
                withdrawal.reason = reason.strip() if reason else None

            if target in WITHDRAWAL_TERMINAL:
                withdrawal.disbursing_at = None
            await self._move(withdrawal, target, event, reason)

        record_withdrawal_transition(target.value)
        log_transition(ENTITY, str(withdrawal_id), user_id, previous, target.value, event.value)
        return withdrawal

    async def reprocess(self, withdrawal_id: uuid.UUID, key: str) -> Withdrawal:
        """
        Send a failed withdrawal back to admin review, re-locking its amount.

        Repeating the call with the key that already reprocessed it returns
        the withdrawal unchanged.
        """
        if not key:
            raise ValidationError("reprocess requires an idempotency key")

        user_id = await self._owner(withdrawal_id)
        async with self.ledger.transaction(user_id):
            withdrawal = await self.repo.get(withdrawal_id, for_update=True)
            if withdrawal.reprocess_key == key and withdrawal.status != WithdrawalStatus.FAILED.value:
                return withdrawal
            if withdrawal.status != WithdrawalStatus.FAILED.value:
                raise InvalidTransitionError(f"Only failed withdrawals can be reprocessed, status is {withdrawal.status}")

            await self.ledger.lock(user_id, withdrawal.amount_paise, reference_id=str(withdrawal.id), note="withdrawal reprocess")
            withdrawal.reprocess_key = key
            withdrawal.reason = None
            await self._move(withdrawal, WithdrawalStatus.UNDER_ADMIN_REVIEW, "reprocess", f"reprocess {key}")

        record_withdrawal_transition(WithdrawalStatus.UNDER_ADMIN_REVIEW.value)
        log_transition(
            ENTITY, str(withdrawal_id), user_id, WithdrawalStatus.FAILED.value, WithdrawalStatus.UNDER_ADMIN_REVIEW.value, "reprocess"
        )
        return withdrawal

    async def disburse(self, withdrawal_id: uuid.UUID, rail: PaymentRailClient) -> Withdrawal:
        """
        Submit an approved withdrawal's net amount to the payment rail.

        The withdrawal is claimed (disbursing_at) and committed before the
        rail call, so an admin reject or fail cannot release the locked
        funds while money may be leaving. Success pays the withdrawal with
        the rail's rrn; a rail error fails it (unlocking the funds) and is
        re-raised. Calling again on a claimed withdrawal resubmits; the rail
        deduplicates on the withdrawal id.
        """
        user_id = await self._owner(withdrawal_id)
        async with self.ledger.transaction(user_id):
            withdrawal = await self.repo.get(withdrawal_id, for_update=True)
            if withdrawal.status != WithdrawalStatus.APPROVED.value:
                raise InvalidTransitionError(f"Only approved withdrawals can be disbursed, status is {withdrawal.status}")
            resubmit = withdrawal.disbursing_at is not None
            if not resubmit:
                withdrawal.disbursing_at = utcnow()
                withdrawal.updated_at = withdrawal.disbursing_at

        # Claim is committed; no lock or transaction stays open across the rail call
        logging.info(
            "Withdrawal sent to payment rail",
            extra={
                "withdrawal_id": str(withdrawal_id),
                "user_id": user_id,
                "amount_paise": withdrawal.net_amount_paise,
                "resubmit": resubmit,
            },
        )
        try:
            transfer = await rail.submit_transfer(
                str(withdrawal.id), user_id, withdrawal.net_amount_paise, currency=settings.currency
            )
        except ExternalRailError as e:
            logging.error(
                "Payment rail transfer failed",
                extra={"withdrawal_id": str(withdrawal_id), "user_id": user_id, "error": e.message},
            )
            await self.transition(withdrawal_id, WithdrawalEvent.FAIL, reason=e.message, from_rail=True)
            raise

        return await self.transition(
            withdrawal_id, WithdrawalEvent.PAY, rrn=transfer.rrn, gateway=transfer.gateway, from_rail=True
        )

    async def confirm(self, withdrawal_id: uuid.UUID, rrn: str, gateway: str) -> Withdrawal:
        """Gateway callback: pay, idempotent on rrn"""
        return await self.transition(withdrawal_id, WithdrawalEvent.PAY, rrn=rrn, gateway=gateway)

    async def get(self, withdrawal_id: uuid.UUID) -> Withdrawal:
        withdrawal = await self.repo.get(withdrawal_id)
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    async def list_withdrawals(
        self, user_id: str | None = None, status: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[List[Withdrawal], int]:
        if status is not None:
            try:
                status = WithdrawalStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown withdrawal status: {status}") from None
        return await self.repo.list_withdrawals(user_id=user_id, status=status, limit=limit, offset=offset)

    async def history(self, withdrawal_id: uuid.UUID) -> List[StateTransition]:
        return await self.transitions.history(withdrawal_id)

    async def _owner(self, withdrawal_id: uuid.UUID) -> str:
        user_id = await self.repo.owner_of(withdrawal_id)
        if user_id is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return user_id

    async def _move(self, withdrawal: Withdrawal, target: WithdrawalStatus, event, note: str | None) -> None:
        previous = withdrawal.status
        withdrawal.status = target.value
        withdrawal.updated_at = utcnow()
        await self.transitions.record(ENTITY, withdrawal.id, previous, target.value, getattr(event, "value", event), note)
