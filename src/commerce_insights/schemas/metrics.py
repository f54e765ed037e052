"""
Derived Metric Types

Ephemeral results of the aggregators. They carry no identity of their own and
are recomputed whenever their inputs change.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from commerce_insights.schemas.events import FunnelStage, SourceSystem


class ChurnBucket(str, Enum):
    """Recency classification by days since last order"""
    ACTIVE = "active"  # 0-30 days
    WARNING = "warning"  # 31-60 days
    AT_RISK = "at_risk"  # 61-90 days
    CRITICAL = "critical"  # 90+ days
    NO_PURCHASES = "no_purchases"


class ConversionFlag(str, Enum):
    OPPORTUNITY = "opportunity"
    TOP_CONVERTER = "top_converter"
    LOW_CONVERSION = "low_conversion"


@dataclass
class CustomerMetrics:
    """Lifecycle metrics for one customer"""
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

    @property
    def has_orders(self) -> bool:
        return self.order_count > 0

    @property
    def is_repeat(self) -> bool:
        return self.order_count >= 2


@dataclass
class CustomerRollup:
    """Top-line customer KPIs"""
    total_customers: int
    with_orders: int
    repeat_customers: int
    at_risk_customers: int  # days since last order > 60
    avg_lifetime_value: float


@dataclass
class SegmentHealth:
    """Customer health per resolved group"""
    group: str
    customers: int
    with_orders: int
    repeat_customers: int
    at_risk_customers: int
    total_revenue: float
    avg_lifetime_value: float
    retention_rate: Optional[float]
    risk_rate: Optional[float]
    period_revenue: float = 0.0


@dataclass
class ProductMetrics:
    """Sales performance for one product"""
    product_id: str
    name: str
    quantity: int
    revenue: float
    order_lines: int
    avg_units_per_purchase: float


@dataclass
class ProductConversionRow:
    """Interaction counts cross-referenced with transactional outcomes"""
    product_id: str
    name: str
    views: int
    clicks: int
    added_to_cart: int
    units_sold: int
    revenue: float
    view_to_sale_rate: Optional[float]  # None when the product was never observed
    flag: Optional[ConversionFlag] = None

    @property
    def opportunity_score(self) -> int:
        """Views that did not turn into a unit sold"""
        return self.views - self.units_sold if self.views > 0 else 0


@dataclass
class FunnelStep:
    stage: FunnelStage
    count: int
    source: Optional[SourceSystem]


@dataclass
class FunnelTransition:
    """Rates between two adjacent displayed steps; None means no data"""
    from_stage: FunnelStage
    to_stage: FunnelStage
    pass_rate: Optional[float]
    drop_rate: Optional[float]


@dataclass
class Funnel:
    steps: List[FunnelStep] = field(default_factory=list)
    transitions: List[FunnelTransition] = field(default_factory=list)
    overall_conversion: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.steps
