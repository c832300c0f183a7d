"""Plan rule endpoints: create versions, activate, read latest and active"""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.api.dependencies import get_request_id
from returns_engine.api.v1.schemas import PlanRuleCreateRequest, PlanRuleResponse, RateBandSchema
from returns_engine.domain.exceptions import NotFoundError
from returns_engine.domain.models import RateBand
from returns_engine.domain.rate_bands import bands_from_json
from returns_engine.infrastructure.database.models import PlanRule
from returns_engine.infrastructure.database.session import get_db
from returns_engine.services.plan_rules import PlanRuleManager

router = APIRouter()


def to_response(rule: PlanRule) -> PlanRuleResponse:
    return PlanRuleResponse(
        plan_rule_id=str(rule.id),
        family=rule.family,
        name=rule.name,
        version=rule.version,
        active=rule.active,
        bands=[
            RateBandSchema(from_month=b.from_month, to_month=b.to_month, monthly_rate=b.monthly_rate)
            for b in bands_from_json(rule.bands)
        ],
        min_amount_paise=rule.min_amount_paise,
        special_min_paise=rule.special_min_paise,
        special_rate=rule.special_rate,
        admin_charge=rule.admin_charge,
        booster=rule.booster,
        effective_from=rule.effective_from,
        created_by=rule.created_by,
        created_at=rule.created_at,
    )


@router.post("/admin/plan-rules", response_model=PlanRuleResponse, status_code=201)
async def create_plan_rule(body: PlanRuleCreateRequest, request: Request, db: AsyncSession = Depends(get_db)):
    """
    Store a new rule version, optionally activating it.

    Band tables must be contiguous from month 1 without overlaps.
    """
    rule = await PlanRuleManager(db).create_rule(
        name=body.name,
        bands=[RateBand(b.from_month, b.to_month, b.monthly_rate) for b in body.bands],
        min_amount_paise=body.min_amount_paise,
        special_min_paise=body.special_min_paise,
        special_rate=body.special_rate,
        admin_charge=body.admin_charge,
        booster=body.booster,
        family=body.family,
        created_by=body.created_by,
        activate=body.activate,
    )
    logging.info(
        "Plan rule stored via API",
        extra={"request_id": get_request_id(request), "plan_rule_id": str(rule.id), "active": rule.active},
    )
    return to_response(rule)


@router.post("/admin/plan-rules/{rule_id}/activate", response_model=PlanRuleResponse)
async def activate_plan_rule(rule_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return to_response(await PlanRuleManager(db).activate(rule_id))


@router.get("/admin/plan-rules/latest", response_model=PlanRuleResponse)
async def get_latest_plan_rule(db: AsyncSession = Depends(get_db)):
    """Highest version, whether or not it is active"""
    rule = await PlanRuleManager(db).get_latest()
    if rule is None:
        raise NotFoundError("No plan rule has been created")
    return to_response(rule)


@router.get("/plan-rules/active", response_model=PlanRuleResponse)
async def get_active_plan_rule(db: AsyncSession = Depends(get_db)):
    rule = await PlanRuleManager(db).get_active()
    if rule is None:
        raise NotFoundError("No plan rule is active")
    return to_response(rule)
