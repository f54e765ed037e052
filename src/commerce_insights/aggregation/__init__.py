"""
Aggregation Module

Pure aggregators over fetched collections and collaborator counts.
"""
from .alerts import Alert, AlertSeverity, build_alerts
from .conversion import ProductConversionCorrelator
from .customers import (
    CustomerMetricsAggregator,
    build_group_name_map,
    classify_churn,
    resolve_customer_groups,
)
from .funnel import FunnelComposer, commerce_stage_counts, event_tracker_stage_counts, session_stage_counts
from .identity import ProductIdentityMapper, TableProductIdentityMapper
from .inventory import InventoryReport, InventoryStockClassifier, apply_stock_levels, build_stock_by_sku
from .orders import filter_paid_orders, revenue_by_day, revenue_by_group, sales_overview
from .products import ProductPerformanceAggregator, ProductPerformanceReport

__all__ = [
    "Alert",
    "AlertSeverity",
    "build_alerts",
    "ProductConversionCorrelator",
    "CustomerMetricsAggregator",
    "build_group_name_map",
    "classify_churn",
    "resolve_customer_groups",
    "FunnelComposer",
    "commerce_stage_counts",
    "event_tracker_stage_counts",
    "session_stage_counts",
    "ProductIdentityMapper",
    "TableProductIdentityMapper",
    "InventoryReport",
    "InventoryStockClassifier",
    "apply_stock_levels",
    "build_stock_by_sku",
    "filter_paid_orders",
    "revenue_by_day",
    "revenue_by_group",
    "sales_overview",
    "ProductPerformanceAggregator",
    "ProductPerformanceReport",
]
