"""
Unit Tests - Collection Fetching
"""
from datetime import date

import httpx
import pytest

from commerce_insights.exceptions import (
    FetchCancelledError,
    MalformedResponseError,
    UpstreamUnavailableError,
)
from commerce_insights.ingestion.client import CommerceClient
from commerce_insights.ingestion.fetcher import CancellationToken, CollectionFetcher, FetchResult
from commerce_insights.schemas.commerce import Order
from commerce_insights.schemas.window import TimeWindow


def make_client(transport: httpx.MockTransport, retry_attempts: int = 3) -> CommerceClient:
    return CommerceClient(
        transport=transport,
        base_url="http://commerce.test",
        api_token="secret-token",
        retry_attempts=retry_attempts,
        retry_backoff_min=0,
        retry_backoff_max=0,
    )


def items(n: int, prefix: str = "order"):
    return [{"id": f"{prefix}_{i}"} for i in range(n)]


class TestPagination:
    """Tests for the offset/limit loop"""

    async def test_fetches_every_page(self, transport_factory):
        """250 items at page size 100 take three sequential requests"""
        requests = []
        transport = transport_factory({"/admin/orders": items(250)}, requests)

        async with make_client(transport) as client:
            result = await CollectionFetcher(client, page_size=100).fetch_all("orders")

        assert len(result.items) == 250
        assert result.total == 250
        assert result.pages == 3
        assert [r.url.params["offset"] for r in requests] == ["0", "100", "200"]
        assert all(r.url.params["limit"] == "100" for r in requests)
        assert result.items[0]["id"] == "order_0"
        assert result.items[-1]["id"] == "order_249"

    async def test_exact_multiple_of_page_size(self, transport_factory):
        """No extra request once offset reaches the count"""
        requests = []
        transport = transport_factory({"/admin/orders": items(200)}, requests)

        async with make_client(transport) as client:
            result = await CollectionFetcher(client, page_size=100).fetch_all("orders")

        assert len(requests) == 2
        assert len(result.items) == 200

    async def test_empty_collection_single_request(self, transport_factory):
        """An empty collection returns after the first page"""
        requests = []
        transport = transport_factory({"/admin/orders": []}, requests)

        async with make_client(transport) as client:
            result = await CollectionFetcher(client).fetch_all("orders")

        assert len(requests) == 1
        assert result.items == []
        assert result.total == 0
        assert result.pages == 1

    async def test_count_is_reread_every_page(self, transport_factory):
        """A shrinking count ends the loop early and is flagged as drift"""
        requests = []
        transport = transport_factory(
            {"/admin/orders": items(250)},
            requests,
            count_override=lambda path, offset: 250 if offset == 0 else 150,
        )

        async with make_client(transport) as client:
            result = await CollectionFetcher(client, page_size=100).fetch_all("orders")

        assert len(requests) == 2
        assert result.total == 150
        assert result.count_drift is True

    async def test_duplicates_are_dropped_and_counted(self, transport_factory):
        """Items shifted across pages by concurrent inserts appear once"""
        data = [{"id": "a"}, {"id": "b"}, {"id": "b"}, {"id": "c"}]
        transport = transport_factory({"/admin/orders": data})

        async with make_client(transport) as client:
            result = await CollectionFetcher(client, page_size=2).fetch_all("orders")

        assert [item["id"] for item in result.items] == ["a", "b", "c"]
        assert result.duplicates_dropped == 1

    async def test_snapshot_times_are_recorded(self, transport_factory):
        transport = transport_factory({"/admin/orders": items(3)})

        async with make_client(transport) as client:
            result = await CollectionFetcher(client).fetch_all("orders")

        assert result.snapshot_started_at <= result.snapshot_completed_at
        assert result.snapshot_started_at.tzinfo is not None

    async def test_collection_page_size_default(self, transport_factory):
        """Variants use their own smaller page size"""
        requests = []
        transport = transport_factory({"/admin/product-variants": items(60, "var")}, requests)

        async with make_client(transport) as client:
            result = await CollectionFetcher(client).fetch_all("product_variants")

        assert len(requests) == 2
        assert requests[0].url.params["limit"] == "50"
        assert len(result.items) == 60


class TestQueryParameters:
    """Tests for window, projection and auth parameters"""

    async def test_window_and_projection(self, transport_factory):
        requests = []
        transport = transport_factory({"/admin/orders": items(1)}, requests)
        window = TimeWindow.from_dates(date(2025, 2, 1), date(2025, 2, 28))

        async with make_client(transport) as client:
            await CollectionFetcher(client).fetch_all("orders", window)

        params = requests[0].url.params
        assert params["created_at[$gte]"] == "2025-02-01T00:00:00Z"
        assert params["created_at[$lte]"].startswith("2025-02-28T23:59:59")
        assert params["order"] == "-created_at"
        assert "*items" in params["fields"]
        assert requests[0].headers["Authorization"] == "Bearer secret-token"

    async def test_extra_filters_pass_through(self, transport_factory):
        requests = []
        transport = transport_factory({"/admin/customers": items(1, "cus")}, requests)

        async with make_client(transport) as client:
            await CollectionFetcher(client).fetch_all("customers", filters={"has_account": "true"})

        assert requests[0].url.params["has_account"] == "true"

    async def test_window_rejected_for_unwindowed_collection(self, transport_factory):
        transport = transport_factory({"/admin/customer-groups": []})
        window = TimeWindow.from_dates(date(2025, 2, 1), date(2025, 2, 28))

        async with make_client(transport) as client:
            with pytest.raises(ValueError):
                await CollectionFetcher(client).fetch_all("customer_groups", window)

    async def test_unknown_collection(self, transport_factory):
        transport = transport_factory({})

        async with make_client(transport) as client:
            with pytest.raises(ValueError):
                await CollectionFetcher(client).fetch_all("refunds")


class TestFailures:
    """Tests for error handling and retry"""

    async def test_server_error_retried_then_raised(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        async with make_client(httpx.MockTransport(handler), retry_attempts=3) as client:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 3
        assert exc_info.value.status == 503
        assert exc_info.value.code == "HTTP_ERROR"

    async def test_transient_failure_recovers(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(500)
            return httpx.Response(200, json={"orders": [{"id": "o1"}], "count": 1})

        async with make_client(httpx.MockTransport(handler)) as client:
            result = await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 2
        assert [item["id"] for item in result.items] == ["o1"]

    async def test_rate_limit_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429)
            return httpx.Response(200, json={"orders": [], "count": 0})

        async with make_client(httpx.MockTransport(handler)) as client:
            await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 3

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"message": "unauthorized"})

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 1
        assert exc_info.value.status == 401
        assert exc_info.value.retryable is False

    async def test_network_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(httpx.MockTransport(handler), retry_attempts=2) as client:
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 2
        assert exc_info.value.code == "NETWORK_ERROR"

    async def test_invalid_json_is_malformed(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>maintenance</html>")

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(MalformedResponseError):
                await CollectionFetcher(client).fetch_all("orders")

        assert len(calls) == 1

    async def test_missing_count_is_malformed(self):
        def handler(request):
            return httpx.Response(200, json={"orders": [{"id": "o1"}]})

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(MalformedResponseError):
                await CollectionFetcher(client).fetch_all("orders")

    async def test_failed_later_page_aborts_fetch(self):
        """No partial collection is returned when a later page fails"""

        def handler(request):
            if request.url.params["offset"] == "0":
                return httpx.Response(200, json={"orders": items(100), "count": 150})
            return httpx.Response(502)

        async with make_client(httpx.MockTransport(handler), retry_attempts=1) as client:
            with pytest.raises(UpstreamUnavailableError):
                await CollectionFetcher(client, page_size=100).fetch_all("orders")


class TestCancellation:
    """Tests for cooperative cancellation"""

    async def test_cancelled_before_first_page(self, transport_factory):
        requests = []
        transport = transport_factory({"/admin/orders": items(10)}, requests)
        token = CancellationToken()
        token.cancel()

        async with make_client(transport) as client:
            with pytest.raises(FetchCancelledError):
                await CollectionFetcher(client).fetch_all("orders", cancel=token)

        assert requests == []

    async def test_cancelled_between_pages(self):
        token = CancellationToken()
        calls = []

        def handler(request):
            calls.append(request)
            token.cancel()
            return httpx.Response(200, json={"orders": items(10), "count": 30})

        async with make_client(httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchCancelledError) as exc_info:
                await CollectionFetcher(client, page_size=10).fetch_all("orders", cancel=token)

        assert len(calls) == 1
        assert exc_info.value.details["pages"] == 1


class TestFetchResult:
    """Tests for FetchResult helpers"""

    async def test_parse_and_cache_payload(self, transport_factory, raw_orders):
        transport = transport_factory({"/admin/orders": raw_orders})

        async with make_client(transport) as client:
            result = await CollectionFetcher(client).fetch_all("orders")

        restored = FetchResult.from_cache(result.to_cache())
        orders = restored.parse(Order)

        assert [o.id for o in orders] == [o["id"] for o in raw_orders]
        assert restored.snapshot_completed_at == result.snapshot_completed_at

    def test_parse_invalid_item(self, now):
        result = FetchResult(
            collection="orders",
            items=[{"id": "o1"}],
            total=1,
            pages=1,
            snapshot_started_at=now,
            snapshot_completed_at=now,
        )

        with pytest.raises(MalformedResponseError) as exc_info:
            result.parse(Order)

        assert exc_info.value.details["id"] == "o1"
