"""
Analytics Engine

Orchestrates collection fetches and collaborator calls, then runs the
aggregators over the results.

Independent collections are fetched concurrently; pagination within one
collection stays sequential. Successful fetches are cached per collection and
window; failures propagate and are never cached.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from commerce_insights.aggregation.alerts import Alert, build_alerts
from commerce_insights.aggregation.conversion import ProductConversionCorrelator
from commerce_insights.aggregation.customers import (
    CustomerMetricsAggregator,
    build_group_name_map,
    resolve_customer_groups,
)
from commerce_insights.aggregation.funnel import (
    CONVERSION_STAGES,
    JOURNEY_STAGES,
    FunnelComposer,
    commerce_stage_counts,
    event_tracker_stage_counts,
    session_stage_counts,
)
from commerce_insights.aggregation.identity import ProductIdentityMapper
from commerce_insights.aggregation.inventory import (
    InventoryReport,
    InventoryStockClassifier,
    apply_stock_levels,
    build_stock_by_sku,
)
from commerce_insights.aggregation.orders import (
    DailyRevenue,
    SalesOverview,
    filter_paid_orders,
    orders_by_fulfillment_status,
    orders_by_payment_status,
    revenue_by_day,
    revenue_by_group,
    sales_overview,
)
from commerce_insights.aggregation.products import ProductPerformanceAggregator, ProductPerformanceReport
from commerce_insights.config import get_settings
from commerce_insights.ingestion.client import CommerceClient
from commerce_insights.ingestion.collaborators import EventAnalyticsClient, SessionAnalyticsClient
from commerce_insights.ingestion.fetcher import CancellationToken, CollectionFetcher, FetchResult
from commerce_insights.schemas.commerce import (
    Customer,
    CustomerGroup,
    InventoryItem,
    Order,
    Product,
    ProductVariant,
)
from commerce_insights.schemas.events import EventStats, ProductInteraction, SessionOverview
from commerce_insights.schemas.metrics import (
    ChurnBucket,
    CustomerMetrics,
    CustomerRollup,
    Funnel,
    ProductConversionRow,
    SegmentHealth,
)
from commerce_insights.schemas.window import TimeWindow
from commerce_insights.serving.cache import CacheManager, make_cache_key

logger = structlog.get_logger(__name__)


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently like ``asyncio.gather``.

    When one of them fails the others are cancelled, and the failure is
    re-raised once they have finished unwinding.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        pending = [task for task in tasks if not task.done()]
        if pending:
            logger.info("Cancelling concurrent loads after failure", pending=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class CustomerInsights:
    metrics: List[CustomerMetrics]
    rollup: CustomerRollup
    churn: Dict[ChurnBucket, int]


@dataclass
class DashboardOverview:
    sales: SalesOverview
    daily_revenue: List[DailyRevenue]
    payment_status: List[Any]
    fulfillment_status: List[Any]
    snapshot: Dict[str, Any] = field(default_factory=dict)


class AnalyticsEngine:
    """
    Entry point for derived analytics.

    Every view accepts an optional ``CancellationToken``; it is handed to each
    collection fetch the view starts, so setting it stops pagination before
    the next page request.

    Args:
        cache: Result cache for fetched collections and collaborator counts
        commerce_client_factory: Builds commerce clients (async context managers)
        events_client_factory: Builds event analytics clients
        session_client_factory: Builds session analytics clients
        identity_mapper: Tracker -> commerce product id mapping
        now: Fixed reference time for recency metrics and default windows

    Example:
        engine = AnalyticsEngine(cache=CacheManager("collections", backend=MemoryCacheBackend()))
        insights = await engine.customer_insights()
    """

    def __init__(
        self,
        cache: Optional[CacheManager] = None,
        commerce_client_factory: Callable[[], CommerceClient] = CommerceClient,
        events_client_factory: Callable[[], EventAnalyticsClient] = EventAnalyticsClient,
        session_client_factory: Callable[[], SessionAnalyticsClient] = SessionAnalyticsClient,
        identity_mapper: Optional[ProductIdentityMapper] = None,
        now: Optional[datetime] = None,
    ):
        settings = get_settings()
        self.settings = settings
        self.cache = cache or CacheManager("collections", default_ttl=settings.cache.ttl_seconds)
        self._commerce_client_factory = commerce_client_factory
        self._events_client_factory = events_client_factory
        self._session_client_factory = session_client_factory
        self.identity_mapper = identity_mapper or ProductIdentityMapper()
        self.now = now
        self.funnel_composer = FunnelComposer()
        self.product_aggregator = ProductPerformanceAggregator()
        self.stock_classifier = InventoryStockClassifier()

    # ── Fetching ──

    def _event_window(self, window: Optional[TimeWindow]) -> TimeWindow:
        if window is not None and window.is_bounded:
            return window
        return TimeWindow.last_days(self.settings.analytics.default_window_days, now=self.now)

    async def fetch_collection(
        self,
        collection: str,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """Complete snapshot of ``collection``, served from cache when fresh."""
        key = make_cache_key(collection, **(window.cache_params() if window else {}))

        async def load() -> Dict[str, Any]:
            async with self._commerce_client_factory() as client:
                result = await CollectionFetcher(client).fetch_all(collection, window, cancel=cancel)
            return result.to_cache()

        return FetchResult.from_cache(await self.cache.get_or_set(key, load))

    async def load_orders(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[Order]:
        return (await self.fetch_collection("orders", window, cancel)).parse(Order)

    async def load_customers(self, cancel: Optional[CancellationToken] = None) -> List[Customer]:
        result = await self.fetch_collection("customers", cancel=cancel)
        return result.parse(Customer, context={"group_id_prefix": self.settings.analytics.group_id_prefix})

    async def load_group_names(self, cancel: Optional[CancellationToken] = None) -> Dict[str, str]:
        result = await self.fetch_collection("customer_groups", cancel=cancel)
        return build_group_name_map(result.parse(CustomerGroup))

    async def load_resolved_customers(self, cancel: Optional[CancellationToken] = None) -> List[Customer]:
        customers, group_names = await gather_or_cancel(
            self.load_customers(cancel),
            self.load_group_names(cancel),
        )
        return resolve_customer_groups(customers, group_names, self.settings.analytics.default_group_name)

    async def load_catalog(self, cancel: Optional[CancellationToken] = None) -> Dict[str, str]:
        """Product id -> title for the whole catalog, variants or not."""
        result = await self.fetch_collection("products", cancel=cancel)
        return {product.id: product.title for product in result.parse(Product)}

    async def load_variants(self, cancel: Optional[CancellationToken] = None) -> List[ProductVariant]:
        """Variants with quantities taken from inventory location levels."""
        variants_result, inventory_result = await gather_or_cancel(
            self.fetch_collection("product_variants", cancel=cancel),
            self.fetch_collection("inventory_items", cancel=cancel),
        )
        stock_by_sku = build_stock_by_sku(inventory_result.parse(InventoryItem))
        return apply_stock_levels(variants_result.parse(ProductVariant), stock_by_sku)

    async def load_event_stats(self, window: Optional[TimeWindow] = None) -> EventStats:
        window = self._event_window(window)
        key = make_cache_key("event_stats", **window.cache_params())

        async def load() -> Dict[str, Any]:
            async with self._events_client_factory() as client:
                stats = await client.get_event_stats(window)
            return stats.model_dump()

        return EventStats.model_validate(await self.cache.get_or_set(key, load))

    async def load_event_counts(
        self,
        window: Optional[TimeWindow] = None,
        page_url: Optional[str] = None,
    ) -> Dict[str, int]:
        """Raw event counts by event name, site-wide or for one page."""
        if not page_url:
            return dict((await self.load_event_stats(window)).by_type)

        window = self._event_window(window)
        key = make_cache_key("event_funnel", page_url=page_url, **window.cache_params())

        async def load() -> Dict[str, int]:
            async with self._events_client_factory() as client:
                return await client.get_funnel_counts(window, page_url=page_url)

        return await self.cache.get_or_set(key, load)

    async def load_product_interactions(
        self,
        window: Optional[TimeWindow] = None,
        page_url: Optional[str] = None,
    ) -> List[ProductInteraction]:
        window = self._event_window(window)
        page_url = page_url or None
        key = make_cache_key("product_interactions", page_url=page_url, **window.cache_params())

        async def load() -> List[Dict[str, Any]]:
            async with self._events_client_factory() as client:
                interactions = await client.get_product_interactions(window, page_url=page_url)
            return [interaction.model_dump() for interaction in interactions]

        return [ProductInteraction.model_validate(item) for item in await self.cache.get_or_set(key, load)]

    async def load_session_overview(self, window: Optional[TimeWindow] = None) -> Optional[SessionOverview]:
        if not self.settings.session_analytics.enabled:
            return None
        window = self._event_window(window)
        async with self._session_client_factory() as client:
            return await client.get_overview(window)

    def _revenue_orders(self, orders: List[Order]) -> List[Order]:
        if self.settings.analytics.paid_orders_only:
            return filter_paid_orders(orders)
        return orders

    # ── Customers ──

    async def customer_insights(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> CustomerInsights:
        customers, orders = await gather_or_cancel(
            self.load_resolved_customers(cancel),
            self.load_orders(window, cancel),
        )
        aggregator = CustomerMetricsAggregator(now=self.now, default_group=self.settings.analytics.default_group_name)
        metrics = aggregator.compute(customers, self._revenue_orders(orders))
        return CustomerInsights(
            metrics=metrics,
            rollup=aggregator.rollup(metrics),
            churn=aggregator.churn_distribution(metrics),
        )

    async def segment_health(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[SegmentHealth]:
        """Health per group; period revenue covers ``window`` only."""
        customers, lifetime_orders, period_orders = await gather_or_cancel(
            self.load_resolved_customers(cancel),
            self.load_orders(cancel=cancel),
            self.load_orders(window, cancel) if window else asyncio.sleep(0, result=None),
        )
        aggregator = CustomerMetricsAggregator(now=self.now, default_group=self.settings.analytics.default_group_name)
        metrics = aggregator.compute(customers, self._revenue_orders(lifetime_orders))
        by_group = revenue_by_group(
            period_orders if period_orders is not None else lifetime_orders,
            customers,
            self.settings.analytics.default_group_name,
        )
        return aggregator.segment_health(metrics, {g.group: g.revenue for g in by_group})

    # ── Products & inventory ──

    async def product_performance(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ProductPerformanceReport:
        orders = await self.load_orders(window, cancel)
        return self.product_aggregator.aggregate(self._revenue_orders(orders))

    async def inventory_report(self, cancel: Optional[CancellationToken] = None) -> InventoryReport:
        """Stock classification over the whole catalog, products without variants included."""
        variants, catalog = await gather_or_cancel(self.load_variants(cancel), self.load_catalog(cancel))
        return self.stock_classifier.classify(variants, product_ids=list(catalog), titles=catalog)

    async def product_conversion(
        self,
        window: Optional[TimeWindow] = None,
        page_url: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[ProductConversionRow]:
        """
        Product interactions cross-referenced with units sold.

        With ``page_url`` the interaction counts are those recorded on that
        page; units sold stay site-wide.
        """
        # interactions and sales must cover the same period
        window = self._event_window(window)
        interactions, performance = await gather_or_cancel(
            self.load_product_interactions(window, page_url),
            self.product_performance(window, cancel),
        )
        return ProductConversionCorrelator(self.identity_mapper).correlate(interactions, performance)

    # ── Funnels ──

    async def funnel(
        self,
        window: Optional[TimeWindow] = None,
        journey: bool = False,
        page_url: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Funnel:
        """
        Conversion funnel for ``window``.

        The journey variant starts at sessions reported by session analytics.
        A ``page_url`` funnel uses the event tracker's counts for that page
        only; orders and sessions cannot be attributed to a page.
        """
        window = self._event_window(window)
        if page_url:
            counts = await self.load_event_counts(window, page_url)
            sources = event_tracker_stage_counts(counts)
        else:
            counts, orders, overview = await gather_or_cancel(
                self.load_event_counts(window),
                self.load_orders(window, cancel),
                self.load_session_overview(window) if journey else asyncio.sleep(0, result=None),
            )
            sources = (
                session_stage_counts(overview)
                + event_tracker_stage_counts(counts)
                + commerce_stage_counts(orders)
            )
        stages = JOURNEY_STAGES if journey else CONVERSION_STAGES
        return self.funnel_composer.compose(sources, stages)

    # ── Overview & alerts ──

    async def overview(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DashboardOverview:
        window = self._event_window(window)
        current, previous = await gather_or_cancel(
            self.fetch_collection("orders", window, cancel),
            self.fetch_collection("orders", window.previous(), cancel),
        )
        current_orders = current.parse(Order)
        return DashboardOverview(
            sales=sales_overview(current_orders, previous.parse(Order)),
            daily_revenue=revenue_by_day(current_orders),
            payment_status=orders_by_payment_status(current_orders),
            fulfillment_status=orders_by_fulfillment_status(current_orders),
            snapshot=current.snapshot(),
        )

    async def alerts(
        self,
        window: Optional[TimeWindow] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[Alert]:
        window = self._event_window(window)
        insights, orders, stats = await gather_or_cancel(
            self.customer_insights(cancel=cancel),
            self.load_orders(window, cancel),
            self.load_event_stats(window),
        )
        return build_alerts(insights.metrics, orders, stats)

    async def invalidate(self) -> int:
        """Drop every cached collection and collaborator result."""
        return await self.cache.invalidate_all()
