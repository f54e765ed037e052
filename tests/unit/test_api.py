"""
Unit Tests - Analytics API
"""
import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

import commerce_insights.schemas.window as window_module
from commerce_insights.serving.api import create_api_app
from commerce_insights.serving.api.routes.analytics import get_cancel_token, get_window
from commerce_insights.serving.cache import close_cache, init_cache

FEBRUARY = {"start_date": "2025-02-01", "end_date": "2025-02-28"}


@pytest.fixture
def app(engine_factory):
    return create_api_app(engine=engine_factory())


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestServiceEndpoints:
    """Tests for health and info routes"""

    async def test_liveness(self, client):
        response = await client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_health_degraded_without_cache(self, client):
        await close_cache()
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    async def test_readiness(self, client):
        await close_cache()
        response = await client.get("/api/v1/health/ready")
        assert response.status_code == 503

        await init_cache()
        try:
            response = await client.get("/api/v1/health/ready")
            assert response.status_code == 200
            assert response.json() == {"status": "ready"}

            health = (await client.get("/api/v1/health")).json()
            assert health["status"] == "healthy"
            assert health["checks"]["engine"]["status"] == "healthy"
        finally:
            await close_cache()

    async def test_info(self, client):
        response = await client.get("/api/v1/info")
        assert response.json()["name"] == "commerce-insights"

    async def test_request_id_echoed(self, client):
        response = await client.get("/api/v1/health/live", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Response-Time"].endswith("ms")


class TestCustomerEndpoints:
    """Tests for customer routes"""

    async def test_customers_sorted_by_spend(self, client):
        response = await client.get("/api/v1/analytics/customers")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 4
        assert data["rollup"]["with_orders"] == 3
        assert [c["customer_id"] for c in data["customers"]] == ["cus_1", "cus_2", "cus_3", "cus_4"]
        assert data["customers"][0]["churn_bucket"] == "active"

    async def test_customer_filters(self, client):
        response = await client.get("/api/v1/analytics/customers", params={"group": "vip"})
        assert [c["customer_id"] for c in response.json()["customers"]] == ["cus_2"]

        response = await client.get("/api/v1/analytics/customers", params={"bucket": "no_purchases"})
        assert [c["customer_id"] for c in response.json()["customers"]] == ["cus_4"]

        response = await client.get("/api/v1/analytics/customers", params={"search": "ana@"})
        assert [c["customer_id"] for c in response.json()["customers"]] == ["cus_1"]

    async def test_pagination(self, client):
        response = await client.get("/api/v1/analytics/customers", params={"limit": 2, "offset": 1})
        data = response.json()
        assert data["total"] == 4
        assert [c["customer_id"] for c in data["customers"]] == ["cus_2", "cus_3"]

    async def test_churn_distribution(self, client):
        response = await client.get("/api/v1/analytics/customers/churn")
        counts = {row["bucket"]: row["count"] for row in response.json()}
        assert counts == {"active": 2, "warning": 1, "at_risk": 0, "critical": 0, "no_purchases": 1}

    async def test_segments(self, client):
        response = await client.get("/api/v1/analytics/customers/segments")
        segments = response.json()
        assert segments[0]["group"] == "Wholesale"
        assert segments[-1]["retention_rate"] is None


class TestProductEndpoints:
    """Tests for product, conversion and inventory routes"""

    async def test_top_products(self, client):
        response = await client.get("/api/v1/analytics/products/top", params={"limit": 2})

        data = response.json()
        assert data["total_revenue"] == pytest.approx(330.0)
        assert [p["product_id"] for p in data["products"]] == ["prod_shirt", "prod_cap"]
        assert data["products"][0]["share"] == pytest.approx(180 / 330)

    async def test_search_recomputes_shares(self, client):
        response = await client.get("/api/v1/analytics/products/top", params={"search": "cap"})

        data = response.json()
        assert data["total_revenue"] == pytest.approx(110.0)
        assert data["products"][0]["share"] == pytest.approx(1.0)

    async def test_products_by_units(self, client):
        response = await client.get("/api/v1/analytics/products/units")
        products = response.json()["products"]
        assert [p["product_id"] for p in products] == ["prod_cap", "prod_socks", "prod_shirt"]
        assert sum(p["share"] for p in products) == pytest.approx(1.0)

    async def test_conversion(self, client):
        response = await client.get("/api/v1/analytics/products/conversion", params={"limit": 2})

        rows = response.json()
        assert [r["product_id"] for r in rows] == ["prod_shirt", "prod_hat"]
        assert rows[1]["flag"] == "opportunity"
        assert rows[1]["opportunity_score"] == 40

    async def test_conversion_for_page(self, client):
        response = await client.get("/api/v1/analytics/products/conversion", params={"page_url": "/landing/summer"})
        assert response.status_code == 200

    async def test_inventory(self, client):
        response = await client.get("/api/v1/analytics/inventory", params={"only_out_of_stock": True})

        data = response.json()
        assert data["summary"]["out_of_stock_products"] == 1
        assert [p["product_id"] for p in data["products"]] == ["prod_shirt", "prod_cap"]
        assert [v["sku"] for v in data["products"][0]["out_of_stock_variants"]] == ["SHIRT-M"]


class TestFunnelAndOverviewEndpoints:
    """Tests for funnel, overview and alert routes"""

    async def test_funnel(self, client):
        response = await client.get("/api/v1/analytics/funnel", params=FEBRUARY)

        data = response.json()
        assert data["steps"][0] == {"stage": "product_view", "count": 1000, "source": "event_tracker"}
        assert len(data["transitions"]) == len(data["steps"]) - 1
        assert data["overall_conversion"] == pytest.approx(0.001)

    async def test_page_scoped_funnel(self, client):
        response = await client.get("/api/v1/analytics/funnel", params={**FEBRUARY, "page_url": "/landing/summer"})

        assert response.status_code == 200
        assert [s["count"] for s in response.json()["steps"]] == [120, 30, 6]

    async def test_overview(self, client):
        response = await client.get("/api/v1/analytics/overview", params=FEBRUARY)

        data = response.json()
        assert data["sales"]["paid_orders"] == 4
        assert {"status": "captured", "count": 4} in data["payment_status"]
        assert data["daily_revenue"][0]["date"] == "2024-12-01"

    async def test_alerts(self, client):
        response = await client.get("/api/v1/analytics/alerts", params=FEBRUARY)
        assert [a["code"] for a in response.json()] == ["checkout_abandonment"]

    async def test_inverted_window_rejected(self, client):
        response = await client.get(
            "/api/v1/analytics/overview", params={"start_date": "2025-03-01", "end_date": "2025-02-01"},
        )
        assert response.status_code == 422


class TestErrorHandling:
    """Tests for upstream failure responses"""

    async def test_upstream_failure_is_502(self, engine_factory, commerce_collections):
        collections = {k: v for k, v in commerce_collections.items() if k != "/admin/orders"}
        app = create_api_app(engine=engine_factory(collections=collections))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/analytics/products/top")

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "HTTP_ERROR"
        assert body["status"] == 404

    async def test_engine_not_ready(self):
        app = create_api_app()

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/analytics/alerts")

        assert response.status_code == 503

    async def test_unknown_route(self, client):
        response = await client.get("/api/v1/analytics/nope")
        assert response.status_code == httpx.codes.NOT_FOUND


class TestRequestDependencies:
    """Tests for window parsing and disconnect cancellation"""

    def test_open_end_date_is_utc_today(self, monkeypatch):
        class LateEvening(datetime):
            @classmethod
            def now(cls, tz=None):
                moment = datetime(2025, 3, 1, 23, 30, tzinfo=timezone.utc)
                return moment.astimezone(tz) if tz else moment.replace(tzinfo=None)

        monkeypatch.setattr(window_module, "datetime", LateEvening)

        window = get_window(start_date=date(2025, 2, 20), end_date=None)

        assert window.end.date() == date(2025, 3, 1)

    async def test_token_set_when_client_disconnects(self):
        class GoneRequest:
            url = httpx.URL("http://test/api/v1/analytics/overview")

            async def is_disconnected(self) -> bool:
                return True

        dependency = get_cancel_token(GoneRequest())
        token = await dependency.__anext__()
        for _ in range(3):
            await asyncio.sleep(0)

        assert token.cancelled
        await dependency.aclose()

    async def test_token_untouched_while_connected(self):
        class LiveRequest:
            url = httpx.URL("http://test/api/v1/analytics/overview")

            async def is_disconnected(self) -> bool:
                return False

        dependency = get_cancel_token(LiveRequest())
        token = await dependency.__anext__()
        await asyncio.sleep(0)

        assert not token.cancelled
        await dependency.aclose()
