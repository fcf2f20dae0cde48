"""
Tests for promotion eligibility rules, with an in-memory booking history.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from rentals.models import Asset
from rentals.services.promotion_validator import evaluate, evaluate_for_listing
from conftest import make_promotion

NOW = datetime(2026, 11, 1, 12, 0, tzinfo=timezone.utc)


class FakeHistory:
    def __init__(self, uses: int = 0, completed: int = 0):
        self.uses = uses
        self.completed = completed

    async def count_promotion_uses(self, user_id, promotion_id):
        return self.uses

    async def count_completed_rides(self, user_id):
        return self.completed


def _promotion(**overrides):
    fields = dict(
        id=7,
        valid_from=NOW - timedelta(days=1),
        valid_till=NOW + timedelta(days=1),
    )
    fields.update(overrides)
    return make_promotion(**fields)


SCOOTER = Asset(id=1, name="Activa", category="scooter", hourly_rate_minor=5000)


@pytest.mark.asyncio
async def test_eligible_promotion():
    check = await evaluate(_promotion(), 1, SCOOTER, 20000, NOW, FakeHistory())
    assert check.eligible


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides,history,code",
    [
        ({"is_active": False}, FakeHistory(), "promotion_inactive"),
        ({"valid_till": NOW - timedelta(seconds=1)}, FakeHistory(), "promotion_expired"),
        ({"valid_from": NOW + timedelta(hours=1)}, FakeHistory(), "promotion_expired"),
        ({"usage_count": 100}, FakeHistory(), "promotion_exhausted"),
        ({"min_booking_value_minor": 25000}, FakeHistory(), "promotion_min_value"),
        ({}, FakeHistory(uses=1), "promotion_user_limit"),
        ({"eligibility": "firstRideOnly"}, FakeHistory(completed=2), "promotion_first_ride_only"),
        (
            {"eligibility": "specificAssetCategories", "asset_categories": ["cruiser"]},
            FakeHistory(),
            "promotion_category_mismatch",
        ),
        ({"eligibility": "specificUsers", "user_ids": [2, 3]}, FakeHistory(), "promotion_user_not_eligible"),
    ],
)
async def test_rejections(overrides, history, code):
    check = await evaluate(_promotion(**overrides), 1, SCOOTER, 20000, NOW, history)
    assert not check.eligible
    assert check.code == code
    assert check.reason


@pytest.mark.asyncio
async def test_first_failing_rule_wins():
    """Inactive and exhausted: inactive is reported because it is checked first."""
    promotion = _promotion(is_active=False, usage_count=100)
    check = await evaluate(promotion, 1, SCOOTER, 20000, NOW, FakeHistory(uses=5))
    assert check.code == "promotion_inactive"


@pytest.mark.asyncio
async def test_first_ride_only_passes_for_new_rider():
    promotion = _promotion(eligibility="firstRideOnly")
    check = await evaluate(promotion, 1, SCOOTER, 20000, NOW, FakeHistory(completed=0))
    assert check.eligible


@pytest.mark.asyncio
async def test_specific_users_and_categories_pass_when_listed():
    users = _promotion(eligibility="specificUsers", user_ids=[1])
    categories = _promotion(eligibility="specificAssetCategories", asset_categories=["scooter"])
    assert (await evaluate(users, 1, SCOOTER, 20000, NOW, FakeHistory())).eligible
    assert (await evaluate(categories, 1, SCOOTER, 20000, NOW, FakeHistory())).eligible


@pytest.mark.asyncio
async def test_validity_bounds_are_inclusive():
    promotion = _promotion(valid_from=NOW, valid_till=NOW, discount_value=Decimal("5"))
    assert (await evaluate(promotion, 1, SCOOTER, 100, NOW, FakeHistory())).eligible


@pytest.mark.asyncio
async def test_listing_ignores_amount_and_category():
    promotion = _promotion(
        min_booking_value_minor=10**9,
        eligibility="specificAssetCategories",
        asset_categories=["cruiser"],
    )
    assert (await evaluate_for_listing(promotion, 1, NOW, FakeHistory())).eligible
