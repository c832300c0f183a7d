"""Unit tests for rate band validation"""

from decimal import Decimal

import pytest

from returns_engine.domain.exceptions import ValidationError
from returns_engine.domain.models import RateBand
from returns_engine.domain.rate_bands import bands_from_json, bands_to_json, build_rate_rule, validate_bands


def band(start, end, rate="0.03"):
    return RateBand(start, end, Decimal(rate))


def test_bands_sorted_by_from_month():
    ordered = validate_bands([band(4, 6, "0.04"), band(1, 3)])
    assert [b.from_month for b in ordered] == [1, 4]


@pytest.mark.parametrize(
    "bands",
    [
        [],
        [band(2, 3)],  # does not start at month 1
        [band(1, 3), band(3, 6)],  # overlap
        [band(1, 3), band(5, 6)],  # gap at month 4
        [band(1, 0)],  # inverted
        [band(0, 3)],
        [band(1, 3, "1.5")],
        [band(1, 3, "-0.01")],
    ],
)
def test_invalid_band_tables(bands):
    with pytest.raises(ValidationError):
        validate_bands(bands)


def test_build_rate_rule_validates_fractions():
    with pytest.raises(ValidationError):
        build_rate_rule([band(1, 3)], special_min_paise=0, special_rate=Decimal("0.1"),
                        admin_charge=Decimal("2"), booster=Decimal("0"))


def test_build_rate_rule_rejects_negative_minimums():
    with pytest.raises(ValidationError):
        build_rate_rule([band(1, 3)], special_min_paise=-1, special_rate=Decimal("0.1"),
                        admin_charge=Decimal("0.04"), booster=Decimal("0.1"))


def test_build_rate_rule_last_month():
    rule = build_rate_rule(
        [band(1, 3), band(4, 6, "0.04")],
        special_min_paise=30_000_000,
        special_rate=Decimal("0.10"),
        admin_charge=Decimal("0.04"),
        booster=Decimal("0.10"),
        min_amount_paise=10_000_000,
    )
    assert rule.last_month == 6
    assert rule.min_amount_paise == 10_000_000


def test_json_keeps_rates_exact():
    stored = bands_to_json([band(1, 3, "0.0333")])
    assert stored == [{"from_month": 1, "to_month": 3, "monthly_rate": "0.0333"}]
    assert bands_from_json(stored)[0].monthly_rate == Decimal("0.0333")
