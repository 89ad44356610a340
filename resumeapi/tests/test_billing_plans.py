"""
Plan resolution and period-end parsing.

Pure functions, no database.
"""
import math
from datetime import datetime, timezone

import pytest

from resumeapi.features.billing.plans import parse_period_end, resolve_plan

PRICE_MAP = {"price_1ProMonthly": "professional", "price_1TopMonthly": "premium"}


def test_metadata_plan_wins_over_price():
    assert resolve_plan("professional", "price_1TopMonthly", PRICE_MAP) == "professional"


def test_unknown_metadata_plan_falls_back_to_price_map():
    assert resolve_plan("unknown", "price_1ProMonthly", PRICE_MAP) == "professional"
    assert resolve_plan("free", "price_1TopMonthly", PRICE_MAP) == "premium"


def test_exact_price_match_before_substring():
    # Configured as premium even though the id mentions professional
    price_map = {"price_professional_legacy": "premium"}
    assert resolve_plan(None, "price_professional_legacy", price_map) == "premium"


@pytest.mark.parametrize(
    "price_id,expected",
    [
        ("price_Professional_2024", "professional"),
        ("price_PREMIUM_yearly", "premium"),
    ],
)
def test_price_id_naming_convention(price_id, expected):
    assert resolve_plan(None, price_id, {}) == expected


def test_unknown_price_defaults_to_premium():
    assert resolve_plan(None, "price_9XyZ", PRICE_MAP) == "premium"
    assert resolve_plan(None, None, PRICE_MAP) == "premium"


def test_parse_period_end_epoch_seconds():
    assert parse_period_end(1767225600) == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert parse_period_end(1767225600.5).tzinfo == timezone.utc


@pytest.mark.parametrize(
    "value",
    [None, "1767225600", "soon", True, False, math.nan, math.inf, -math.inf, 10 ** 20, {"ts": 1}],
)
def test_parse_period_end_unusable_values(value):
    assert parse_period_end(value) is None
