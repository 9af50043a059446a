from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from founditure_gamification.core.settings import settings


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_award_and_read_points(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/points/award",
            json={
                "userId": "user-1",
                "amount": 120,
                "source": "LISTING_CREATED",
                "referenceId": "listing-1",
                "metadata": {"listingTitle": "Oak chair"},
            },
            headers={"X-Actor-Id": "listing-service"},
        )
        assert response.status_code == 201
        transaction = response.json()
        assert transaction["amount"] == 120
        assert transaction["type"] == "EARNED"
        assert transaction["isActive"] is True
        assert transaction["createdBy"] == "listing-service"
        assert transaction["metadata"] == {"listingTitle": "Oak chair"}

        duplicate = await client.post(
            "/api/v1/points/award",
            json={"userId": "user-1", "amount": 120, "source": "LISTING_CREATED", "referenceId": "listing-1"},
        )
        assert duplicate.status_code == 201
        assert duplicate.json()["id"] == transaction["id"]

        points = await client.get("/api/v1/users/user-1/points")
        assert points.status_code == 200
        body = points.json()
        assert body["totalPoints"] == 120
        assert body["lifetimePoints"] == 120
        assert body["level"] == 2
        assert body["levelProgress"]["nextLevelAt"] == 400
        assert body["stats"]["earned"] == 120
        assert body["stats"]["bySource"]["LISTING_CREATED"] == 120


@pytest.mark.asyncio
async def test_award_validation_errors_use_field_shape(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        negative = await client.post(
            "/api/v1/points/award",
            json={"userId": "user-1", "amount": -5, "source": "LISTING_CREATED"},
        )
        assert negative.status_code == 400
        detail = negative.json()["detail"]
        assert detail["errors"][0]["field"] == "amount"

        bad_source = await client.post(
            "/api/v1/points/award",
            json={"userId": "user-1", "amount": 5, "source": "NOT_REAL"},
        )
        assert bad_source.status_code == 400
        assert bad_source.json()["detail"]["errors"][0]["field"] == "source"


@pytest.mark.asyncio
async def test_spend_and_insufficient_balance(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await client.post(
            "/api/v1/points/award",
            json={"userId": "user-2", "amount": 100, "source": "ITEM_COLLECTED", "referenceId": "item-1"},
        )
        spend = await client.post(
            "/api/v1/points/spend",
            json={"userId": "user-2", "amount": 30, "source": "COMMUNITY_ACTION", "referenceId": "perk-1"},
        )
        assert spend.status_code == 201
        assert spend.json()["amount"] == -30

        overdraw = await client.post(
            "/api/v1/points/spend",
            json={"userId": "user-2", "amount": 500, "source": "COMMUNITY_ACTION", "referenceId": "perk-2"},
        )
        assert overdraw.status_code == 400
        assert overdraw.json()["detail"]["errors"][0]["code"] == "INSUFFICIENT_BALANCE"

        points = await client.get("/api/v1/users/user-2/points")
        assert points.json()["totalPoints"] == 70
        assert points.json()["stats"]["spent"] == 30


@pytest.mark.asyncio
async def test_void_requires_admin_key(app_with_db) -> None:
    app, _ = app_with_db
    previous_key = settings.admin_api_key
    settings.admin_api_key = "admin-key"

    try:
        async with _client(app) as client:
            award = await client.post(
                "/api/v1/points/award",
                json={"userId": "user-3", "amount": 80, "source": "ITEM_COLLECTED", "referenceId": "item-1"},
            )
            transaction_id = award.json()["id"]

            unauthorized = await client.post(f"/api/v1/points/transactions/{transaction_id}/void")
            assert unauthorized.status_code == 401

            voided = await client.post(
                f"/api/v1/points/transactions/{transaction_id}/void",
                json={"reason": "duplicate pickup"},
                headers={"X-API-Key": "admin-key"},
            )
            assert voided.status_code == 200
            assert voided.json()["isActive"] is False
            assert voided.json()["voidReason"] == "duplicate pickup"

            missing = await client.post(
                f"/api/v1/points/transactions/{uuid4()}/void",
                headers={"X-API-Key": "admin-key"},
            )
            assert missing.status_code == 404

            points = await client.get("/api/v1/users/user-3/points")
            assert points.json()["totalPoints"] == 0
    finally:
        settings.admin_api_key = previous_key


@pytest.mark.asyncio
async def test_history_endpoint_paginates(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        for index in range(3):
            await client.post(
                "/api/v1/points/award",
                json={
                    "userId": "user-4",
                    "amount": 10 * (index + 1),
                    "source": "LISTING_CREATED",
                    "referenceId": f"listing-{index}",
                },
            )

        response = await client.get(
            "/api/v1/users/user-4/points/history",
            params={"page": 1, "limit": 2, "sortBy": "amount", "sortOrder": "asc"},
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["amount"] for item in body["items"]] == [10, 20]
        assert body["total"] == 3
        assert body["pages"] == 2
        assert body["hasMore"] is True

        invalid = await client.get("/api/v1/users/user-4/points/history", params={"sortBy": "userId"})
        assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_reconcile_endpoint_reports_summary(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await client.post(
            "/api/v1/points/award",
            json={"userId": "user-5", "amount": 10, "source": "ITEM_COLLECTED", "referenceId": "item-1"},
        )
        everyone = await client.post("/api/v1/points/reconcile", json={})
        assert everyone.status_code == 200
        assert everyone.json()["scanned"] == 1
        assert everyone.json()["drifted"] == 0

        single = await client.post("/api/v1/points/reconcile", json={"userId": "user-5", "apply": False})
        assert single.status_code == 200
        assert single.json()["scanned"] == 1


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/health/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ready", "degraded", "error"}
    components = payload["components"]
    assert components["ledger_store"]["status"] == "ready"
    assert components["points_reconciliation"]["status"] == "disabled"
    assert components["event_publisher"]["status"] == "ready"
