"""Investment endpoints: create, accept (schedules payouts), reject"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.v1.payouts import to_response as payout_response
from returns_engine.api.v1.schemas import (
    AcceptInvestmentRequest,
    AcceptInvestmentResponse,
    InvestmentCreateRequest,
    InvestmentResponse,
    RejectRequest,
)
from returns_engine.infrastructure.database.models import Investment
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.investments import InvestmentService

router = APIRouter()


def to_response(investment: Investment) -> InvestmentResponse:
    return InvestmentResponse(
        investment_id=str(investment.id),
        user_id=investment.user_id,
        principal_paise=investment.principal_paise,
        month_duration=investment.month_duration,
        booster_applied=investment.booster_applied,
        plan_rule_id=str(investment.plan_rule_id),
        plan_rule_version=investment.plan_rule_version,
        status=investment.status,
        started_at=investment.started_at,
        notes=investment.notes,
        created_at=investment.created_at,
    )


@router.post("/investments", response_model=InvestmentResponse, status_code=201)
async def create_investment(body: InvestmentCreateRequest, db: AsyncSession = Depends(get_db)):
    """Record an investment against the active rule; it awaits admin acceptance"""
    investment = await InvestmentService(db).create_investment(
        user_id=body.user_id,
        principal_paise=body.principal_paise,
        month_duration=body.month_duration,
        booster_applied=body.booster_applied,
        notes=body.notes,
    )
    return to_response(investment)


@router.post("/admin/investments/{investment_id}/accept", response_model=AcceptInvestmentResponse)
async def accept_investment(
    investment_id: uuid.UUID,
    body: Optional[AcceptInvestmentRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    investment, payouts = await InvestmentService(db).accept_investment(
        investment_id, start_date=body.start_date if body else None
    )
    return AcceptInvestmentResponse(
        investment=to_response(investment),
        payouts=[payout_response(p) for p in payouts],
    )


@router.post("/admin/investments/{investment_id}/reject", response_model=InvestmentResponse)
async def reject_investment(investment_id: uuid.UUID, body: RejectRequest, db: AsyncSession = Depends(get_db)):
    return to_response(await InvestmentService(db).reject_investment(investment_id, body.reason))
