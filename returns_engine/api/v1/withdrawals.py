"""Withdrawal endpoints: request, list, admin transitions, disbursal and rail callback"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.dependencies import get_rail_client, get_request_id
from returns_engine.api.v1.schemas import (
    ConfirmationRequest,
    ReprocessRequest,
    WithdrawalCreateRequest,
    WithdrawalListResponse,
    WithdrawalResponse,
    WithdrawalTransitionRequest,
)
from returns_engine.infrastructure.clients.payment_rail import PaymentRailClient
from returns_engine.infrastructure.database.models import Withdrawal
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.withdrawals import WithdrawalStateMachine

router = APIRouter()


def to_response(withdrawal: Withdrawal) -> WithdrawalResponse:
    return WithdrawalResponse(
        withdrawal_id=str(withdrawal.id),
        user_id=withdrawal.user_id,
        amount_paise=withdrawal.amount_paise,
        charges_paise=withdrawal.charges_paise,
        tds_paise=withdrawal.tds_paise,
        net_amount_paise=withdrawal.net_amount_paise,
        source=withdrawal.source,
        status=withdrawal.status,
        reason=withdrawal.reason,
        rrn=withdrawal.rrn,
        gateway=withdrawal.gateway,
        paid_at=withdrawal.paid_at,
        disbursing_at=withdrawal.disbursing_at,
        created_at=withdrawal.created_at,
    )


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=201)
async def request_withdrawal(body: WithdrawalCreateRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """
    Request a withdrawal.

    The full amount is locked in the wallet until the request is paid,
    rejected or failed.
    """
    withdrawal = await WithdrawalStateMachine(db).request_withdrawal(body.user_id, body.amount_paise, body.source)
    logging.info(
        "Withdrawal requested via API",
        extra={
            "request_id": get_request_id(request),
            "user_id": body.user_id,
            "amount_paise": body.amount_paise,
            "withdrawal_id": str(withdrawal.id),
        },
    )
    return to_response(withdrawal)


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def list_withdrawals(
    user_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await WithdrawalStateMachine(db).list_withdrawals(
        user_id=user_id, status=status, limit=limit, offset=offset
    )
    return WithdrawalListResponse(items=[to_response(w) for w in items], total=total, limit=limit, offset=offset)


@router.post("/admin/withdrawals/{withdrawal_id}/transition", response_model=WithdrawalResponse)
async def transition_withdrawal(
    withdrawal_id: uuid.UUID, body: WithdrawalTransitionRequest, db: AsyncSession = Depends(get_db)
):
    """Apply review, approve, pay (rrn + gateway), reject (reason) or fail"""
    withdrawal = await WithdrawalStateMachine(db).transition(
        withdrawal_id, body.event, reason=body.reason, rrn=body.rrn, gateway=body.gateway
    )
    return to_response(withdrawal)


@router.post("/admin/withdrawals/{withdrawal_id}/reprocess", response_model=WithdrawalResponse)
async def reprocess_withdrawal(withdrawal_id: uuid.UUID, body: ReprocessRequest, db: AsyncSession = Depends(get_db)):
    return to_response(await WithdrawalStateMachine(db).reprocess(withdrawal_id, body.key))


@router.post("/admin/withdrawals/{withdrawal_id}/disburse", response_model=WithdrawalResponse)
async def disburse_withdrawal(
    withdrawal_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    rail_client: PaymentRailClient = Depends(get_rail_client),
):
    """Send an approved withdrawal to the payment rail; a rail error fails it (502)"""
    return to_response(await WithdrawalStateMachine(db).disburse(withdrawal_id, rail_client))


@router.post("/withdrawals/{withdrawal_id}/confirmation", response_model=WithdrawalResponse)
async def confirm_withdrawal(withdrawal_id: uuid.UUID, body: ConfirmationRequest, db: AsyncSession = Depends(get_db)):
    """Rail callback; repeating it with the same rrn is harmless"""
    return to_response(await WithdrawalStateMachine(db).confirm(withdrawal_id, body.rrn, body.gateway))
