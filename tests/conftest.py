"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List
from urllib.parse import parse_qs

import httpx
import pytest

from commerce_insights.config import Settings
from commerce_insights.engine import AnalyticsEngine
from commerce_insights.ingestion.client import CommerceClient
from commerce_insights.ingestion.collaborators import EventAnalyticsClient
from commerce_insights.schemas.commerce import Customer, Order, ProductVariant
from commerce_insights.serving.cache import CacheManager, MemoryCacheBackend

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

COLLECTION_KEYS = {
    "/admin/orders": "orders",
    "/admin/customers": "customers",
    "/admin/customer-groups": "customer_groups",
    "/admin/products": "products",
    "/admin/product-variants": "variants",
    "/admin/inventory-items": "inventory_items",
}


def make_order(
    order_id: str,
    customer_id: str = None,
    total: float = 100.0,
    created_at: str = "2025-02-20T10:00:00Z",
    payment_status: str = "captured",
    fulfillment_status: str = "not_fulfilled",
    items: List[Dict[str, Any]] = None,
    email: str = None,
    phone: str = None,
) -> Dict[str, Any]:
    """Raw order payload as served by the commerce backend"""
    payload = {
        "id": order_id,
        "customer_id": customer_id,
        "email": email,
        "total": total,
        "currency_code": "usd",
        "payment_status": payment_status,
        "fulfillment_status": fulfillment_status,
        "created_at": created_at,
        "items": items or [],
    }
    if phone:
        payload["shipping_address"] = {"phone": phone}
    return payload


def make_line(product_id: str, quantity: int, total: float = None, unit_price: float = None, title: str = None):
    return {
        "id": f"item_{product_id}_{quantity}",
        "product_id": product_id,
        "product_title": title or product_id.title(),
        "quantity": quantity,
        "total": total,
        "unit_price": unit_price,
    }


def paginated_transport(
    collections: Dict[str, List[Dict[str, Any]]],
    requests: List[httpx.Request] = None,
    count_override: Callable[[str, int], int] = None,
) -> httpx.MockTransport:
    """
    Fake commerce backend serving offset/limit pages.

    Args:
        collections: Path -> full item list
        requests: Collects every request received
        count_override: (path, offset) -> reported count, to simulate drift
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        path = request.url.path
        if path not in collections:
            return httpx.Response(404, json={"message": "not found"})
        params = parse_qs(request.url.query.decode())
        limit = int(params.get("limit", ["100"])[0])
        offset = int(params.get("offset", ["0"])[0])
        items = collections[path]
        count = count_override(path, offset) if count_override else len(items)
        return httpx.Response(200, json={
            COLLECTION_KEYS.get(path, "items"): items[offset:offset + limit],
            "count": count,
            "offset": offset,
            "limit": limit,
        })

    return httpx.MockTransport(handler)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        APP_ENV="testing",
        DEBUG=True,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def memory_cache() -> CacheManager:
    return CacheManager("test", default_ttl=60, backend=MemoryCacheBackend())


@pytest.fixture
def raw_orders() -> List[Dict[str, Any]]:
    """Orders across two customers, one guest and one unpaid order"""
    return [
        make_order(
            "order_1", "cus_1", total=150.0, created_at="2025-02-25T10:00:00Z",
            fulfillment_status="delivered",
            items=[make_line("prod_shirt", 2, total=100.0), make_line("prod_cap", 1, total=50.0)],
            phone="+5491100000000",
        ),
        make_order(
            "order_2", "cus_1", total=80.0, created_at="2024-12-01T10:00:00Z",
            fulfillment_status="shipped",
            items=[make_line("prod_shirt", 1, unit_price=80.0)],
        ),
        make_order(
            "order_3", "cus_2", total=60.0, created_at="2025-01-10T09:00:00Z",
            items=[make_line("prod_cap", 3, total=60.0)],
        ),
        make_order(
            "order_4", None, email="guest@example.com", total=40.0, created_at="2025-02-27T09:00:00Z",
            items=[make_line("prod_socks", 4, total=40.0)],
        ),
        make_order(
            "order_5", "cus_2", total=500.0, created_at="2025-02-28T09:00:00Z",
            payment_status="not_paid",
            items=[make_line("prod_jacket", 1, total=500.0)],
        ),
    ]


@pytest.fixture
def raw_customers() -> List[Dict[str, Any]]:
    return [
        {"id": "cus_1", "email": "ana@example.com", "first_name": "Ana", "last_name": "Lopez",
         "metadata": {"customer_group": "cusgroup_01WHOLESALE"}},
        {"id": "cus_2", "email": "ben@example.com", "first_name": "Ben", "last_name": None,
         "phone": "+5491111111111", "metadata": {"customer_group": "VIP"}},
        {"id": "cus_3", "email": "Guest@Example.com", "first_name": "Guest", "last_name": "Buyer"},
        {"id": "cus_4", "email": "nobody@example.com", "first_name": "", "last_name": "",
         "metadata": {"customer_group": "cusgroup_UNKNOWN"}},
    ]


@pytest.fixture
def raw_groups() -> List[Dict[str, Any]]:
    return [{"id": "cusgroup_01WHOLESALE", "name": "Wholesale"}]


@pytest.fixture
def raw_products() -> List[Dict[str, Any]]:
    """Catalog including a product that has no variants yet"""
    return [
        {"id": "prod_shirt", "title": "Shirt"},
        {"id": "prod_cap", "title": "Cap"},
        {"id": "prod_gift", "title": "Gift Card"},
        {"id": "prod_mug", "title": "Coffee Mug"},
    ]


@pytest.fixture
def raw_variants() -> List[Dict[str, Any]]:
    return [
        {"id": "var_1", "title": "S", "sku": "SHIRT-S", "product": {"id": "prod_shirt", "title": "Shirt"}},
        {"id": "var_2", "title": "M", "sku": "SHIRT-M", "product": {"id": "prod_shirt", "title": "Shirt"}},
        {"id": "var_3", "title": "One size", "sku": "CAP-1", "product": {"id": "prod_cap", "title": "Cap"}},
        {"id": "var_4", "title": "Digital", "sku": None, "manage_inventory": False,
         "product": {"id": "prod_gift", "title": "Gift Card"}},
    ]


@pytest.fixture
def raw_inventory() -> List[Dict[str, Any]]:
    return [
        {"id": "iitem_1", "sku": "SHIRT-S", "location_levels": [{"stocked_quantity": 3}, {"stocked_quantity": 2}]},
        {"id": "iitem_2", "sku": "SHIRT-M", "location_levels": [{"stocked_quantity": 0}]},
        {"id": "iitem_3", "sku": "CAP-1", "location_levels": []},
    ]


@pytest.fixture
def orders(raw_orders) -> List[Order]:
    return [Order.model_validate(o) for o in raw_orders]


@pytest.fixture
def customers(raw_customers) -> List[Customer]:
    return [Customer.model_validate(c) for c in raw_customers]


@pytest.fixture
def variants(raw_variants) -> List[ProductVariant]:
    return [ProductVariant.model_validate(v) for v in raw_variants]


@pytest.fixture
def commerce_collections(raw_orders, raw_customers, raw_groups, raw_products, raw_variants, raw_inventory):
    return {
        "/admin/orders": raw_orders,
        "/admin/customers": raw_customers,
        "/admin/customer-groups": raw_groups,
        "/admin/products": raw_products,
        "/admin/product-variants": raw_variants,
        "/admin/inventory-items": raw_inventory,
    }


@pytest.fixture
def order_factory() -> Callable[..., Dict[str, Any]]:
    return make_order


@pytest.fixture
def line_factory() -> Callable[..., Dict[str, Any]]:
    return make_line


@pytest.fixture
def transport_factory() -> Callable[..., httpx.MockTransport]:
    return paginated_transport


def events_transport(
    stats: Dict[str, Any] = None,
    products: Dict[str, Any] = None,
    requests: List[httpx.Request] = None,
    funnel: Dict[str, Any] = None,
) -> httpx.MockTransport:
    """Fake event analytics service"""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if request.url.path == "/api/stats":
            return httpx.Response(200, json=stats or {})
        if request.url.path == "/api/stats/products":
            return httpx.Response(200, json=products or {"products": []})
        if request.url.path == "/api/stats/funnel":
            return httpx.Response(200, json=funnel or {"funnel": []})
        return httpx.Response(404, json={"message": "not found"})

    return httpx.MockTransport(handler)


@pytest.fixture
def event_stats_payload() -> Dict[str, Any]:
    return {
        "total_events": 1270,
        "by_type": {
            "product.viewed": 1000,
            "product.added_to_cart": 200,
            "checkout.started": 50,
            "checkout.abandoned": 20,
        },
        "by_source": {"web": 1270},
        "by_day": [],
    }


@pytest.fixture
def product_stats_payload() -> Dict[str, Any]:
    return {
        "products": [
            {"product_id": "prod_shirt", "title": "Shirt", "views": 250, "clicks": 40, "added_to_cart": 9},
            {"product_id": "prod_hat", "title": "Hat", "views": 40, "clicks": 3, "added_to_cart": 0},
        ]
    }


@pytest.fixture
def page_funnel_payload() -> Dict[str, Any]:
    """Event counts recorded on a single landing page"""
    return {
        "funnel": [
            {"step": "product.viewed", "count": 120},
            {"step": "product.added_to_cart", "count": 30},
            {"step": "checkout.started", "count": 6},
        ]
    }


@pytest.fixture
def engine_factory(memory_cache, commerce_collections, event_stats_payload, product_stats_payload, page_funnel_payload):
    """
    Build an AnalyticsEngine wired to fake upstreams.

    Args:
        collections: Commerce collections to serve (defaults to the shared fixtures)
        commerce_requests: Collects commerce backend requests
        event_requests: Collects event analytics requests
        now: Engine reference time; None uses the real clock
    """

    def build(
        collections: Dict[str, List[Dict[str, Any]]] = None,
        commerce_requests: List[httpx.Request] = None,
        event_requests: List[httpx.Request] = None,
        now: datetime = NOW,
    ) -> AnalyticsEngine:
        commerce = paginated_transport(
            commerce_collections if collections is None else collections, commerce_requests,
        )
        events = events_transport(event_stats_payload, product_stats_payload, event_requests, page_funnel_payload)
        return AnalyticsEngine(
            cache=memory_cache,
            commerce_client_factory=lambda: CommerceClient(
                transport=commerce, base_url="http://commerce.test", retry_attempts=1,
            ),
            events_client_factory=lambda: EventAnalyticsClient(
                transport=events, base_url="http://events.test", api_key="test-key",
            ),
            now=now,
        )

    return build
