"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List


class WithdrawalStatus(str, Enum):
    REQUESTED = "requested"
    UNDER_ADMIN_REVIEW = "under_admin_review"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    FAILED = "failed"


class WithdrawalEvent(str, Enum):
    REVIEW = "review"
    APPROVE = "approve"
    PAY = "pay"
    REJECT = "reject"
    FAIL = "fail"


class WithdrawalSource(str, Enum):
    EARNINGS = "earnings"
    REFERRAL = "referral"


class PayoutStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REPROCESSING = "reprocessing"
    ON_HOLD = "on_hold"
    PENDING = "pending"


class PayoutEvent(str, Enum):
    PROCESS = "process"
    CONFIRM = "confirm"
    FAIL = "fail"
    REPROCESS = "reprocess"
    HOLD = "hold"
    PEND = "pend"
    RESUME = "resume"


class InvestmentStatus(str, Enum):
    INITIATED = "initiated"
    ACTIVE = "active"
    COMPLETED = "completed"
    REJECTED = "rejected"


class LedgerKind(str, Enum):
    """Ledger entry kinds; each maps to a fixed effect on (balance, locked)"""

    CREDIT = "credit"
    DEBIT = "debit"
    LOCK = "lock"
    UNLOCK = "unlock"
    CONSUME_LOCKED = "consume_locked"
    PLATFORM_CHARGES = "platform_charges"
    TDS_WITHHELD = "tds_withheld"


@dataclass(frozen=True)
class RateBand:
    """Inclusive month range with one monthly rate (0.04 = 4%/month)"""

    from_month: int
    to_month: int
    monthly_rate: Decimal

    def covers(self, month_index: int) -> bool:
        return self.from_month <= month_index <= self.to_month


@dataclass(frozen=True)
class RateRule:
    """Calculation view of a PlanRule: the parameters the calculator needs"""

    bands: tuple[RateBand, ...]
    special_min_paise: int
    special_rate: Decimal
    admin_charge: Decimal
    booster: Decimal
    min_amount_paise: int = 0

    @property
    def last_month(self) -> int:
        return self.bands[-1].to_month if self.bands else 0


@dataclass(frozen=True)
class PayoutBreakdown:
    """Result of one month's payout computation.

    gross/admin/booster are rounded half-up for display; net_payout_paise is
    rounded once from the exact intermediates.
    """

    principal_paise: int
    month_index: int
    monthly_rate: Decimal
    special_tier: bool
    gross_monthly_paise: int
    admin_charge_paise: int
    booster_paise: int
    net_payout_paise: int


@dataclass(frozen=True)
class WithdrawalCharges:
    amount_paise: int
    charges_paise: int
    tds_paise: int
    net_amount_paise: int


@dataclass
class ScheduledPayout:
    """Single monthly payout slot in an investment's schedule"""

    month_no: int
    due_date: date


@dataclass
class AdvanceResult:
    """Outcome of one advance_due_schedules batch"""

    processed: int = 0
    paid: int = 0
    failures: List[dict] = field(default_factory=list)
