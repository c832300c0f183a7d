"""Investment plan catalog endpoints"""

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.v1.schemas import PlanResponse, PlanWriteRequest, ReorderRequest
from returns_engine.infrastructure.database.models import InvestmentPlan
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.plans import InvestmentPlanService, PlanDraft

router = APIRouter()


def to_response(plan: InvestmentPlan) -> PlanResponse:
    return PlanResponse(
        plan_id=str(plan.id),
        title=plan.title,
        start_month=plan.start_month,
        end_month=plan.end_month,
        annual_return_percent=plan.annual_return_percent,
        min_investment_paise=plan.min_investment_paise,
        is_active=plan.is_active,
        sort_order=plan.sort_order,
        created_at=plan.created_at,
    )


def to_draft(body: PlanWriteRequest) -> PlanDraft:
    return PlanDraft(
        start_month=body.start_month,
        end_month=body.end_month,
        annual_return_percent=body.annual_return_percent,
        min_investment_paise=body.min_investment_paise,
        title=body.title,
        is_active=body.is_active,
        sort_order=body.sort_order,
    )


@router.get("/plans", response_model=List[PlanResponse])
async def list_public_plans(db: AsyncSession = Depends(get_db)):
    """Active plans in display order"""
    return [to_response(p) for p in await InvestmentPlanService(db).list_plans()]


@router.get("/admin/plans", response_model=List[PlanResponse])
async def list_all_plans(db: AsyncSession = Depends(get_db)):
    return [to_response(p) for p in await InvestmentPlanService(db).list_plans(include_inactive=True)]


@router.post("/admin/plans", response_model=PlanResponse, status_code=201)
async def create_plan(body: PlanWriteRequest, db: AsyncSession = Depends(get_db)):
    """
    Create a catalog plan.

    Returns 409 with code OVERLAP when the range intersects an active plan
    (send force=true to override) and DUPLICATE for a repeated title or range.
    """
    plan = await InvestmentPlanService(db).create_plan(to_draft(body), force=body.force)
    return to_response(plan)


@router.put("/admin/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(plan_id: uuid.UUID, body: PlanWriteRequest, db: AsyncSession = Depends(get_db)):
    plan = await InvestmentPlanService(db).update_plan(plan_id, to_draft(body), force=body.force)
    return to_response(plan)


@router.post("/admin/plans/reorder", response_model=List[PlanResponse])
async def reorder_plans(body: ReorderRequest, db: AsyncSession = Depends(get_db)):
    first, second = await InvestmentPlanService(db).swap_order(body.first_id, body.second_id)
    return [to_response(first), to_response(second)]


@router.post("/admin/plans/{plan_id}/toggle", response_model=PlanResponse)
async def toggle_plan(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return to_response(await InvestmentPlanService(db).toggle(plan_id))


@router.delete("/admin/plans/{plan_id}")
async def delete_plan(plan_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await InvestmentPlanService(db).delete(plan_id)
    return {"ok": True}
