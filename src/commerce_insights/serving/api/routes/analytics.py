"""
Analytics API Endpoints

Read-only REST surface over the engine's derived metrics.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict

from commerce_insights.aggregation.alerts import AlertSeverity
from commerce_insights.config import get_settings
from commerce_insights.engine import AnalyticsEngine
from commerce_insights.ingestion.fetcher import CancellationToken
from commerce_insights.schemas.events import FunnelStage, SourceSystem
from commerce_insights.schemas.metrics import ChurnBucket, ConversionFlag
from commerce_insights.schemas.window import TimeWindow, utc_today

router = APIRouter()
logger = structlog.get_logger(__name__)

DISCONNECT_POLL_SECONDS = 0.5


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SalesOverviewOut(_FromAttributes):
    """Sales overview metrics"""
    total_revenue: float
    total_orders: int
    paid_orders: int
    avg_order_value: float
    unique_customers: int
    revenue_change: float
    orders_change: float
    paid_orders_change: float
    aov_change: float
    customers_change: float


class DailyRevenueOut(_FromAttributes):
    date: date
    revenue: float
    orders: int


class StatusCount(BaseModel):
    status: str
    count: int


class OverviewResponse(BaseModel):
    sales: SalesOverviewOut
    daily_revenue: List[DailyRevenueOut]
    payment_status: List[StatusCount]
    fulfillment_status: List[StatusCount]
    snapshot: Dict[str, object]


class CustomerOut(_FromAttributes):
    customer_id: str
    name: str
    email: str
    phone: Optional[str]
    group: str
    order_count: int
    total_spent: float
    avg_order_value: float
    last_order_at: Optional[datetime]
    days_since_last_order: Optional[int]
    churn_bucket: ChurnBucket


class CustomerRollupOut(_FromAttributes):
    total_customers: int
    with_orders: int
    repeat_customers: int
    at_risk_customers: int
    avg_lifetime_value: float


class CustomersResponse(BaseModel):
    rollup: CustomerRollupOut
    total: int
    customers: List[CustomerOut]


class ChurnBucketCount(BaseModel):
    bucket: ChurnBucket
    count: int


class SegmentHealthOut(_FromAttributes):
    group: str
    customers: int
    with_orders: int
    repeat_customers: int
    at_risk_customers: int
    total_revenue: float
    avg_lifetime_value: float
    retention_rate: Optional[float]
    risk_rate: Optional[float]
    period_revenue: float


class ProductOut(_FromAttributes):
    product_id: str
    name: str
    quantity: int
    revenue: float
    order_lines: int
    avg_units_per_purchase: float
    share: float = 0.0


class ProductsResponse(BaseModel):
    total_revenue: float
    total_quantity: int
    global_avg_units_per_purchase: float
    products: List[ProductOut]


class ConversionRowOut(_FromAttributes):
    product_id: str
    name: str
    views: int
    clicks: int
    added_to_cart: int
    units_sold: int
    revenue: float
    view_to_sale_rate: Optional[float]
    flag: Optional[ConversionFlag]
    opportunity_score: int


class VariantStockOut(BaseModel):
    id: str
    title: str
    sku: Optional[str]
    manage_inventory: bool
    inventory_quantity: int


class ProductStockOut(BaseModel):
    product_id: str
    title: str
    total_stock: int
    fully_out_of_stock: bool
    out_of_stock_variants: List[VariantStockOut]


class InventoryResponse(BaseModel):
    summary: Dict[str, float]
    products: List[ProductStockOut]


class FunnelStepOut(_FromAttributes):
    stage: FunnelStage
    count: int
    source: Optional[SourceSystem]


class FunnelTransitionOut(_FromAttributes):
    from_stage: FunnelStage
    to_stage: FunnelStage
    pass_rate: Optional[float]
    drop_rate: Optional[float]


class FunnelResponse(_FromAttributes):
    steps: List[FunnelStepOut]
    transitions: List[FunnelTransitionOut]
    overall_conversion: Optional[float]


class AlertOut(_FromAttributes):
    severity: AlertSeverity
    code: str
    message: str
    value: float


def get_engine(request: Request) -> AnalyticsEngine:
    engine = request.app.state.engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Analytics engine not initialized")
    return engine


def get_window(
    start_date: Optional[date] = Query(None, description="First day of the window (UTC)"),
    end_date: Optional[date] = Query(None, description="Last day of the window (UTC)"),
) -> Optional[TimeWindow]:
    """Whole-day window from query parameters; None when neither bound is given."""
    if start_date is None and end_date is None:
        return None
    if end_date is None:
        end_date = utc_today()
    if start_date is None:
        start_date = end_date - timedelta(days=get_settings().analytics.default_window_days)
    if start_date > end_date:
        raise HTTPException(status_code=422, detail="start_date must not be after end_date")
    return TimeWindow.from_dates(start_date, end_date)


async def _cancel_on_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling fetches", path=request.url.path)
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def get_cancel_token(request: Request) -> AsyncIterator[CancellationToken]:
    """Token set once the client disconnects, so abandoned requests stop paging."""
    token = CancellationToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        yield token
    finally:
        watcher.cancel()


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> OverviewResponse:
    """Sales overview compared with the previous period of equal length."""
    overview = await engine.overview(window, cancel=cancel)
    return OverviewResponse(
        sales=SalesOverviewOut.model_validate(overview.sales),
        daily_revenue=[DailyRevenueOut.model_validate(d) for d in overview.daily_revenue],
        payment_status=[StatusCount(status=s, count=c) for s, c in overview.payment_status],
        fulfillment_status=[StatusCount(status=s, count=c) for s, c in overview.fulfillment_status],
        snapshot=overview.snapshot,
    )


@router.get("/customers", response_model=CustomersResponse)
async def get_customers(
    group: Optional[str] = None,
    bucket: Optional[ChurnBucket] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> CustomersResponse:
    """Customer lifecycle metrics, most valuable first."""
    insights = await engine.customer_insights(window, cancel=cancel)

    rows = insights.metrics
    if group:
        rows = [m for m in rows if m.group.lower() == group.lower()]
    if bucket:
        rows = [m for m in rows if m.churn_bucket == bucket]
    if search:
        needle = search.strip().lower()
        rows = [m for m in rows if needle in m.name.lower() or needle in m.email.lower()]
    rows = sorted(rows, key=lambda m: (-m.total_spent, m.customer_id))

    return CustomersResponse(
        rollup=CustomerRollupOut.model_validate(insights.rollup),
        total=len(rows),
        customers=[CustomerOut.model_validate(m) for m in rows[offset:offset + limit]],
    )


@router.get("/customers/churn", response_model=List[ChurnBucketCount])
async def get_churn_distribution(
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> List[ChurnBucketCount]:
    insights = await engine.customer_insights(window, cancel=cancel)
    return [ChurnBucketCount(bucket=b, count=c) for b, c in insights.churn.items()]


@router.get("/customers/segments", response_model=List[SegmentHealthOut])
async def get_segment_health(
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> List[SegmentHealthOut]:
    segments = await engine.segment_health(window, cancel=cancel)
    return [SegmentHealthOut.model_validate(s) for s in segments]


@router.get("/products/top", response_model=ProductsResponse)
async def get_top_products(
    limit: int = Query(10, ge=1, le=500),
    search: Optional[str] = None,
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> ProductsResponse:
    """Products by revenue; shares are relative to the (filtered) total."""
    report = await engine.product_performance(window, cancel=cancel)
    if search:
        report = report.search(search)
    return ProductsResponse(
        total_revenue=report.total_revenue,
        total_quantity=report.total_quantity,
        global_avg_units_per_purchase=report.global_avg_units_per_purchase,
        products=[
            ProductOut.model_validate(p).model_copy(update={"share": report.share_of(p)})
            for p in report.top_by_revenue(limit)
        ],
    )


@router.get("/products/units", response_model=ProductsResponse)
async def get_products_by_units(
    limit: int = Query(10, ge=1, le=500),
    search: Optional[str] = None,
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> ProductsResponse:
    """Products by units sold, with unit shares."""
    report = await engine.product_performance(window, cancel=cancel)
    if search:
        report = report.search(search)
    unit_shares = report.unit_shares()
    return ProductsResponse(
        total_revenue=report.total_revenue,
        total_quantity=report.total_quantity,
        global_avg_units_per_purchase=report.global_avg_units_per_purchase,
        products=[
            ProductOut.model_validate(p).model_copy(update={"share": unit_shares[p.product_id]})
            for p in report.top_by_quantity(limit)
        ],
    )


@router.get("/products/conversion", response_model=List[ConversionRowOut])
async def get_product_conversion(
    limit: int = Query(15, ge=1, le=500),
    page_url: Optional[str] = Query(None, description="Restrict interaction counts to one page"),
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> List[ConversionRowOut]:
    """Interaction counts cross-referenced with units sold."""
    rows = await engine.product_conversion(window, page_url=page_url, cancel=cancel)
    return [ConversionRowOut.model_validate(r) for r in rows[:limit]]


@router.get("/inventory", response_model=InventoryResponse)
async def get_inventory(
    search: Optional[str] = None,
    only_out_of_stock: bool = False,
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> InventoryResponse:
    report = await engine.inventory_report(cancel=cancel)
    products = report.search(search) if search else report.products
    if only_out_of_stock:
        products = [p for p in products if p.has_out_of_stock_variant]

    return InventoryResponse(
        summary=report.summary(),
        products=[
            ProductStockOut(
                product_id=p.product_id,
                title=p.title,
                total_stock=p.total_stock,
                fully_out_of_stock=p.fully_out_of_stock,
                out_of_stock_variants=[
                    VariantStockOut(
                        id=v.id,
                        title=v.title,
                        sku=v.sku,
                        manage_inventory=v.manage_inventory,
                        inventory_quantity=v.inventory_quantity,
                    )
                    for v in p.out_of_stock_variants
                ],
            )
            for p in products
        ],
    )


@router.get("/funnel", response_model=FunnelResponse)
async def get_funnel(
    journey: bool = Query(False, description="Start the funnel at sessions"),
    page_url: Optional[str] = Query(None, description="Event tracker funnel for one page"),
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> FunnelResponse:
    funnel = await engine.funnel(window, journey=journey, page_url=page_url, cancel=cancel)
    logger.debug("Funnel composed", steps=len(funnel.steps), journey=journey, page_url=page_url)
    return FunnelResponse.model_validate(funnel)


@router.get("/alerts", response_model=List[AlertOut])
async def get_alerts(
    window: Optional[TimeWindow] = Depends(get_window),
    engine: AnalyticsEngine = Depends(get_engine),
    cancel: CancellationToken = Depends(get_cancel_token),
) -> List[AlertOut]:
    alerts = await engine.alerts(window, cancel=cancel)
    return [AlertOut.model_validate(a) for a in alerts]
