"""
Tests for promotion administration and the available-promotions list.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from conftest import insert_booking, future_window, make_promotion


def _promotion_body(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    body = {
        "code": "monsoon15",
        "description": "15% off monsoon rides",
        "discount_type": "percentage",
        "discount_value": "15",
        "max_discount_amount": "75.00",
        "min_booking_value": "100.00",
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_till": (now + timedelta(days=10)).isoformat(),
        "max_usage_count": 500,
        "user_max_usage_count": 2,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_create_promotion(client: AsyncClient, admin_headers):
    response = await client.post("/api/v1/promotions/", json=_promotion_body(), headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["code"] == "MONSOON15"
    assert data["max_discount_amount"] == "75.00"
    assert data["min_booking_value"] == "100.00"
    assert data["usage_count"] == 0
    assert data["is_active"] is True
    assert data["eligibility"] == "allUsers"


@pytest.mark.asyncio
async def test_duplicate_code_is_rejected(client: AsyncClient, admin_headers):
    await client.post("/api/v1/promotions/", json=_promotion_body(), headers=admin_headers)
    response = await client.post(
        "/api/v1/promotions/", json=_promotion_body(code="MONSOON15"), headers=admin_headers
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "duplicate_code"


@pytest.mark.asyncio
async def test_invalid_terms_are_rejected(client: AsyncClient, admin_headers):
    over_100 = await client.post(
        "/api/v1/promotions/", json=_promotion_body(discount_value="120"), headers=admin_headers
    )
    no_categories = await client.post(
        "/api/v1/promotions/",
        json=_promotion_body(code="CRUISE", eligibility="specificAssetCategories"),
        headers=admin_headers,
    )
    now = datetime.now(timezone.utc)
    inverted = await client.post(
        "/api/v1/promotions/",
        json=_promotion_body(
            code="BACKWARDS",
            valid_from=(now + timedelta(days=2)).isoformat(),
            valid_till=now.isoformat(),
        ),
        headers=admin_headers,
    )
    assert over_100.status_code == 400
    assert no_categories.status_code == 400
    assert inverted.status_code == 422


@pytest.mark.asyncio
async def test_promotion_admin_requires_staff(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/promotions/", json=_promotion_body(), headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_cannot_touch_usage_count(client: AsyncClient, admin_headers, test_promotion):
    response = await client.patch(
        f"/api/v1/promotions/{test_promotion.id}",
        json={"description": "Weekend special", "max_usage_count": 50, "usage_count": 40},
        headers=admin_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["description"] == "Weekend special"
    assert data["max_usage_count"] == 50
    assert data["usage_count"] == 0


@pytest.mark.asyncio
async def test_delete_deactivates(client: AsyncClient, admin_headers, test_promotion):
    response = await client.delete(f"/api/v1/promotions/{test_promotion.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    fetched = await client.get(f"/api/v1/promotions/{test_promotion.id}", headers=admin_headers)
    assert fetched.status_code == 200

    listed = await client.get("/api/v1/promotions/", params={"is_active": "false"}, headers=admin_headers)
    assert [p["id"] for p in listed.json()["data"]] == [test_promotion.id]


@pytest.mark.asyncio
async def test_list_promotions_by_code(client: AsyncClient, admin_headers, db_session):
    db_session.add_all([make_promotion(code="SAVE20"), make_promotion(code="FIRSTRIDE")])
    await db_session.commit()
    response = await client.get("/api/v1/promotions/", params={"code": "first"}, headers=admin_headers)
    assert [p["code"] for p in response.json()["data"]] == ["FIRSTRIDE"]


@pytest.mark.asyncio
async def test_available_promotions(
    client: AsyncClient, auth_headers, test_user, test_asset, db_session, test_promotion
):
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            make_promotion(code="OLD", now=now - timedelta(days=5), valid_till=now - timedelta(days=1)),
            make_promotion(code="OFF", is_active=False),
            make_promotion(code="GONE", usage_count=100),
            make_promotion(code="VIP", eligibility="specificUsers", user_ids=[test_user.id + 100]),
            make_promotion(code="NEWBIE", eligibility="firstRideOnly"),
        ]
    )
    await db_session.commit()
    start = now - timedelta(days=3)
    await insert_booking(db_session, test_user, test_asset, start, start + timedelta(hours=2), status="completed")

    response = await client.get("/api/v1/promotions/available", headers=auth_headers)
    assert response.status_code == 200
    codes = [p["code"] for p in response.json()]
    assert codes == ["SAVE20"]


@pytest.mark.asyncio
async def test_used_up_promotion_is_not_available(
    client: AsyncClient, auth_headers, test_user, test_asset, db_session, test_promotion
):
    start, end = future_window()
    await insert_booking(db_session, test_user, test_asset, start, end, promotion=test_promotion)
    response = await client.get("/api/v1/promotions/available", headers=auth_headers)
    assert response.json() == []
