"""
Schemas Module
"""
from .commerce import (
    Customer,
    CustomerGroup,
    FulfillmentStatus,
    GroupRef,
    GroupRefKind,
    InventoryItem,
    LineItem,
    Order,
    PageEnvelope,
    PaymentStatus,
    Product,
    ProductVariant,
)
from .events import (
    EventStats,
    FunnelStage,
    FunnelStepSource,
    ProductInteraction,
    SessionOverview,
    SourceSystem,
)
from .window import TimeWindow
from .metrics import (
    ChurnBucket,
    ConversionFlag,
    CustomerMetrics,
    CustomerRollup,
    Funnel,
    FunnelStep,
    FunnelTransition,
    ProductConversionRow,
    ProductMetrics,
    SegmentHealth,
)

__all__ = [
    "Customer",
    "CustomerGroup",
    "FulfillmentStatus",
    "GroupRef",
    "GroupRefKind",
    "InventoryItem",
    "LineItem",
    "Order",
    "PageEnvelope",
    "PaymentStatus",
    "Product",
    "ProductVariant",
    "EventStats",
    "FunnelStage",
    "FunnelStepSource",
    "ProductInteraction",
    "SessionOverview",
    "SourceSystem",
    "ChurnBucket",
    "ConversionFlag",
    "CustomerMetrics",
    "CustomerRollup",
    "Funnel",
    "FunnelStep",
    "FunnelTransition",
    "ProductConversionRow",
    "ProductMetrics",
    "SegmentHealth",
    "TimeWindow",
]
