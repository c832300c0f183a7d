"""Payout endpoints: preview, listing, batch advance and admin transitions"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.v1.schemas import (
    AdvanceFailure,
    AdvanceRequest,
    AdvanceResponse,
    PayoutBreakdownSchema,
    PayoutListResponse,
    PayoutResponse,
    PayoutTransitionRequest,
    SimulateRequest,
    SimulateResponse,
)
from returns_engine.infrastructure.database.models import Payout
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.payouts import PayoutScheduleStateMachine

router = APIRouter()


def to_response(payout: Payout) -> PayoutResponse:
    return PayoutResponse(
        payout_id=str(payout.id),
        investment_id=str(payout.investment_id),
        user_id=payout.user_id,
        month_no=payout.month_no,
        due_date=payout.due_date,
        status=payout.status,
        gross_payout_paise=payout.gross_payout_paise,
        admin_charge_paise=payout.admin_charge_paise,
        booster_paise=payout.booster_paise,
        amount_paise=payout.amount_paise,
        credited=payout.credited,
        paid_at=payout.paid_at,
        rrn=payout.rrn,
        gateway=payout.gateway,
    )


@router.post("/payouts/simulate", response_model=SimulateResponse)
async def simulate_payouts(body: SimulateRequest, db: AsyncSession = Depends(get_db)):
    """
    Month-by-month payout preview.

    Send month for one month's breakdown or month_duration for months
    1..N. Uses the active rule unless plan_rule_id is given; nothing is
    persisted.
    """
    machine = PayoutScheduleStateMachine(db)
    if body.month is not None:
        breakdowns = [
            await machine.simulate_month(body.principal_paise, body.month, body.booster_applied, rule_id=body.plan_rule_id)
        ]
    else:
        breakdowns = await machine.simulate(
            body.principal_paise, body.month_duration, body.booster_applied, rule_id=body.plan_rule_id
        )
    return SimulateResponse(
        principal_paise=body.principal_paise,
        months=[
            PayoutBreakdownSchema(
                month_index=b.month_index,
                monthly_rate=b.monthly_rate,
                special_tier=b.special_tier,
                gross_monthly_paise=b.gross_monthly_paise,
                admin_charge_paise=b.admin_charge_paise,
                booster_paise=b.booster_paise,
                net_payout_paise=b.net_payout_paise,
            )
            for b in breakdowns
        ],
        total_net_paise=sum(b.net_payout_paise for b in breakdowns),
    )


@router.get("/payouts", response_model=PayoutListResponse)
async def list_payouts(
    user_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    items, total = await PayoutScheduleStateMachine(db).list_payouts(
        user_id=user_id, status=status, limit=limit, offset=offset
    )
    return PayoutListResponse(items=[to_response(p) for p in items], total=total, limit=limit, offset=offset)


@router.post("/admin/payouts/advance", response_model=AdvanceResponse)
async def advance_due_payouts(body: Optional[AdvanceRequest] = None, db: AsyncSession = Depends(get_db)):
    """Process and confirm every scheduled payout that is due"""
    result = await PayoutScheduleStateMachine(db).advance_due_schedules(today=body.today if body else None)
    return AdvanceResponse(
        processed=result.processed,
        paid=result.paid,
        failures=[AdvanceFailure(**failure) for failure in result.failures],
    )


@router.post("/admin/payouts/{payout_id}/transition", response_model=PayoutResponse)
async def transition_payout(payout_id: uuid.UUID, body: PayoutTransitionRequest, db: AsyncSession = Depends(get_db)):
    payout = await PayoutScheduleStateMachine(db).transition(
        payout_id, body.event, rrn=body.rrn, gateway=body.gateway, today=body.today, note=body.note
    )
    return to_response(payout)
