"""Rate band table validation"""

from decimal import Decimal
from typing import Iterable, List, Sequence

from returns_engine.domain.exceptions import ValidationError
from returns_engine.domain.models import RateBand, RateRule

ZERO = Decimal("0")
ONE = Decimal("1")


def validate_fraction(name: str, value: Decimal) -> Decimal:
    """Percentages cross the boundary as fractions in [0, 1]"""
    value = Decimal(value)
    if not value.is_finite() or value < ZERO or value > ONE:
        raise ValidationError(f"{name} must be a fraction between 0 and 1, got {value}")
    return value


def validate_bands(bands: Iterable[RateBand]) -> List[RateBand]:
    """
    Validate and order a rule's rate bands.

    Requirements:
    - At least one band
    - 1 <= from_month <= to_month for every band
    - Monthly rates are fractions in [0, 1]
    - Bands do not overlap and are contiguous from month 1, so every month
      index up to the last band's to_month is covered by exactly one band

    Returns:
        Bands sorted by from_month ascending

    Raises:
        ValidationError: On any violation
    """
    ordered = sorted(bands, key=lambda b: b.from_month)
    if not ordered:
        raise ValidationError("A plan rule needs at least one rate band")

    expected_start = 1
    for band in ordered:
        if band.from_month < 1:
            raise ValidationError(f"Band {band.from_month}-{band.to_month}: months start at 1")
        if band.to_month < band.from_month:
            raise ValidationError(f"Band {band.from_month}-{band.to_month}: from_month must be <= to_month")
        validate_fraction(f"Band {band.from_month}-{band.to_month} monthly_rate", band.monthly_rate)

        if band.from_month < expected_start:
            raise ValidationError(
                f"Band {band.from_month}-{band.to_month} overlaps the previous band ending at month {expected_start - 1}"
            )
        if band.from_month > expected_start:
            raise ValidationError(f"Months {expected_start}-{band.from_month - 1} are not covered by any band")

        expected_start = band.to_month + 1

    return ordered


def build_rate_rule(
    bands: Sequence[RateBand],
    special_min_paise: int,
    special_rate: Decimal,
    admin_charge: Decimal,
    booster: Decimal,
    min_amount_paise: int = 0,
) -> RateRule:
    """Validate all rule parameters and return the calculator view"""
    if min_amount_paise < 0:
        raise ValidationError("min_amount must not be negative")
    if special_min_paise < 0:
        raise ValidationError("special_min must not be negative")

    return RateRule(
        bands=tuple(validate_bands(bands)),
        special_min_paise=special_min_paise,
        special_rate=validate_fraction("special_rate", special_rate),
        admin_charge=validate_fraction("admin_charge", admin_charge),
        booster=validate_fraction("booster", booster),
        min_amount_paise=min_amount_paise,
    )


def bands_to_json(bands: Sequence[RateBand]) -> list[dict]:
    """Serialize bands for storage; rates as strings to keep them exact"""
    return [
        {"from_month": b.from_month, "to_month": b.to_month, "monthly_rate": str(b.monthly_rate)}
        for b in bands
    ]


def bands_from_json(raw: Sequence[dict]) -> List[RateBand]:
    return [
        RateBand(
            from_month=int(item["from_month"]),
            to_month=int(item["to_month"]),
            monthly_rate=Decimal(str(item["monthly_rate"])),
        )
        for item in raw
    ]
