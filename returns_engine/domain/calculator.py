"""Payout calculator - core arithmetic for monthly returns and withdrawal charges"""

from decimal import Decimal, ROUND_HALF_UP

from returns_engine.domain.exceptions import OutOfRangeMonth, ValidationError
from returns_engine.domain.models import PayoutBreakdown, RateRule, WithdrawalCharges

ZERO = Decimal("0")
WHOLE_PAISA = Decimal("1")


def round_paise(value: Decimal) -> int:
    """Round an exact paise amount to whole paise, half-up"""
    return int(value.quantize(WHOLE_PAISA, rounding=ROUND_HALF_UP))


def select_monthly_rate(principal_paise: int, month_index: int, rule: RateRule) -> tuple[Decimal, bool]:
    """
    Pick the monthly rate for a principal and month.

    Tier selection:
    - month_index must fall inside a band, even for the special tier
    - principal >= special_min: special_rate for every month
    - otherwise: first band (ascending from_month) containing month_index

    Returns: (monthly_rate, special_tier)
    """
    band = next((b for b in rule.bands if b.covers(month_index)), None)
    if band is None:
        raise OutOfRangeMonth(f"No rate band covers month {month_index} (rule covers 1-{rule.last_month})")

    if principal_paise >= rule.special_min_paise:
        return rule.special_rate, True
    return band.monthly_rate, False


def compute_payout(
    principal_paise: int,
    month_index: int,
    rule: RateRule,
    booster_applied: bool = False,
) -> PayoutBreakdown:
    """
    Compute one month's payout for a principal under a rule.

    Formula:
        gross   = principal * monthly_rate
        admin   = gross * admin_charge
        booster = gross * booster   (only when booster_applied)
        net     = gross - admin + booster

    All intermediates stay exact Decimals over integer paise; net is rounded
    once, half-up. Pure: same inputs always give the same breakdown.

    Example:
        ₹1,00,000 at 4%/month, 5% admin, no booster
        10000000 paise * 0.04 = 400000 gross, 20000 admin, 380000 net
    """
    if principal_paise < 0:
        raise ValidationError("principal must not be negative")
    if month_index < 1:
        raise ValidationError("month index starts at 1")

    rate, special_tier = select_monthly_rate(principal_paise, month_index, rule)

    gross = Decimal(principal_paise) * rate
    admin = gross * rule.admin_charge
    booster = gross * rule.booster if booster_applied else ZERO
    net = gross - admin + booster

    return PayoutBreakdown(
        principal_paise=principal_paise,
        month_index=month_index,
        monthly_rate=rate,
        special_tier=special_tier,
        gross_monthly_paise=round_paise(gross),
        admin_charge_paise=round_paise(admin),
        booster_paise=round_paise(booster),
        net_payout_paise=round_paise(net),
    )


def compute_withdrawal_charges(
    amount_paise: int,
    charge_rate: Decimal,
    charge_cap_paise: int,
    tds_rate: Decimal,
) -> WithdrawalCharges:
    """
    Processing charges and TDS for a withdrawal request.

    charges = min(amount * charge_rate, cap), tds = amount * tds_rate, each
    rounded half-up; the net leaving the platform must stay positive.
    """
    if amount_paise <= 0:
        raise ValidationError("Withdrawal amount must be positive")

    charges = min(round_paise(Decimal(amount_paise) * Decimal(charge_rate)), charge_cap_paise)
    tds = round_paise(Decimal(amount_paise) * Decimal(tds_rate))
    net = amount_paise - charges - tds

    if net <= 0:
        raise ValidationError("Net withdrawal amount must be positive after charges")

    return WithdrawalCharges(
        amount_paise=amount_paise,
        charges_paise=charges,
        tds_paise=tds,
        net_amount_paise=net,
    )
