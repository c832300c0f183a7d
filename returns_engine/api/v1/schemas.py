"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from returns_engine.config import settings


class RateBandSchema(BaseModel):
    from_month: int = Field(..., ge=1)
    to_month: int = Field(..., ge=1)
    monthly_rate: Decimal = Field(..., description="Fraction per month, 0.04 = 4%")


class PlanRuleCreateRequest(BaseModel):
    """Request body for POST /v1/admin/plan-rules"""

    name: str = Field(..., min_length=1)
    bands: List[RateBandSchema] = Field(..., min_length=1)
    min_amount_paise: int = Field(..., ge=0)
    special_min_paise: int = Field(..., ge=0)
    special_rate: Decimal
    admin_charge: Decimal
    booster: Decimal
    family: str = "default"
    created_by: Optional[str] = None
    activate: bool = False


class PlanRuleResponse(BaseModel):
    plan_rule_id: str
    family: str
    name: str
    version: int
    active: bool
    bands: List[RateBandSchema]
    min_amount_paise: int
    special_min_paise: int
    special_rate: Decimal
    admin_charge: Decimal
    booster: Decimal
    effective_from: datetime
    created_by: Optional[str] = None
    created_at: datetime


class PlanWriteRequest(BaseModel):
    """Request body for creating or updating a catalog plan"""

    title: Optional[str] = None
    start_month: int
    end_month: int
    annual_return_percent: Decimal
    min_investment_paise: int = 10_000_000
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None
    force: bool = False


class PlanResponse(BaseModel):
    plan_id: str
    title: str
    start_month: int
    end_month: int
    annual_return_percent: Decimal
    min_investment_paise: int
    is_active: bool
    sort_order: int
    created_at: datetime


class ReorderRequest(BaseModel):
    """Swap the sort order of two plans"""

    first_id: uuid.UUID
    second_id: uuid.UUID


class SimulateRequest(BaseModel):
    """Request body for POST /v1/payouts/simulate"""

    principal_paise: int = Field(..., ge=0)
    month: Optional[int] = Field(None, ge=1, description="Preview this single month")
    month_duration: Optional[int] = Field(None, ge=1, description="Preview months 1..month_duration")
    booster_applied: bool = False
    plan_rule_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def one_of_month_or_duration(self) -> "SimulateRequest":
        if (self.month is None) == (self.month_duration is None):
            raise ValueError("give exactly one of month or month_duration")
        return self


class PayoutBreakdownSchema(BaseModel):
    month_index: int
    monthly_rate: Decimal
    special_tier: bool
    gross_monthly_paise: int
    admin_charge_paise: int
    booster_paise: int
    net_payout_paise: int


class SimulateResponse(BaseModel):
    principal_paise: int
    currency: str = settings.currency
    months: List[PayoutBreakdownSchema]
    total_net_paise: int


class InvestmentCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    principal_paise: int = Field(..., gt=0)
    month_duration: int = Field(..., ge=1)
    booster_applied: bool = False
    notes: Optional[str] = None


class InvestmentResponse(BaseModel):
    investment_id: str
    user_id: str
    principal_paise: int
    currency: str = settings.currency
    month_duration: int
    booster_applied: bool
    plan_rule_id: str
    plan_rule_version: int
    status: str
    started_at: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime


class AcceptInvestmentRequest(BaseModel):
    start_date: Optional[date] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PayoutResponse(BaseModel):
    payout_id: str
    investment_id: str
    user_id: str
    month_no: int
    due_date: date
    status: str
    gross_payout_paise: Optional[int] = None
    admin_charge_paise: Optional[int] = None
    booster_paise: Optional[int] = None
    amount_paise: Optional[int] = None
    currency: str = settings.currency
    credited: bool
    paid_at: Optional[datetime] = None
    rrn: Optional[str] = None
    gateway: Optional[str] = None


class AcceptInvestmentResponse(BaseModel):
    investment: InvestmentResponse
    payouts: List[PayoutResponse]


class PayoutListResponse(BaseModel):
    items: List[PayoutResponse]
    total: int
    limit: int
    offset: int


class PayoutTransitionRequest(BaseModel):
    event: str
    rrn: Optional[str] = None
    gateway: Optional[str] = None
    note: Optional[str] = None
    today: Optional[date] = None


class AdvanceRequest(BaseModel):
    today: Optional[date] = None


class AdvanceFailure(BaseModel):
    payout_id: str
    user_id: str
    code: str
    detail: str


class AdvanceResponse(BaseModel):
    processed: int
    paid: int
    failures: List[AdvanceFailure]


class WithdrawalCreateRequest(BaseModel):
    """Request body for POST /v1/withdrawals"""

    user_id: str = Field(..., min_length=1)
    amount_paise: int = Field(..., gt=0)
    source: str = "earnings"


class WithdrawalResponse(BaseModel):
    withdrawal_id: str
    user_id: str
    amount_paise: int
    charges_paise: int
    tds_paise: int
    net_amount_paise: int
    currency: str = settings.currency
    source: str
    status: str
    reason: Optional[str] = None
    rrn: Optional[str] = None
    gateway: Optional[str] = None
    paid_at: Optional[datetime] = None
    disbursing_at: Optional[datetime] = None
    created_at: datetime


class WithdrawalListResponse(BaseModel):
    items: List[WithdrawalResponse]
    total: int
    limit: int
    offset: int


class WithdrawalTransitionRequest(BaseModel):
    event: str
    reason: Optional[str] = None
    rrn: Optional[str] = None
    gateway: Optional[str] = None


class ReprocessRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Idempotency key for this reprocess attempt")


class ConfirmationRequest(BaseModel):
    """Payment rail callback"""

    rrn: str = Field(..., min_length=1)
    gateway: str = Field(..., min_length=1)


class WalletResponse(BaseModel):
    user_id: str
    balance_paise: int
    locked_paise: int
    available_paise: int
    currency: str = settings.currency


class LedgerEntrySchema(BaseModel):
    kind: str
    amount_paise: int
    reference_id: Optional[str] = None
    note: Optional[str] = None
    balance_after_paise: int
    locked_after_paise: int
    created_at: datetime


class LedgerResponse(BaseModel):
    user_id: str
    entries: List[LedgerEntrySchema]
    total: int


class WalletAdjustRequest(BaseModel):
    """Manual admin correction, recorded in the ledger like any other mutation"""

    direction: Literal["credit", "debit"]
    amount_paise: int = Field(..., gt=0)
    note: str = Field(..., min_length=1)


class ReconcileResponse(BaseModel):
    user_id: str
    consistent: bool
    balance_paise: int
    locked_paise: int
    replayed_balance_paise: int
    replayed_locked_paise: int
    entry_count: int


class ErrorResponse(BaseModel):
    detail: str
    code: str
