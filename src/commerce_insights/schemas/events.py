"""
Event and Session Analytics Schemas

Pre-aggregated counts supplied by the on-site event tracker and the external
session analytics platform, plus the canonical funnel vocabulary they are
translated into.
"""

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from commerce_insights.schemas.base import BoundaryModel


class SourceSystem(str, Enum):
    """Upstream systems that report funnel counts"""
    SESSION_ANALYTICS = "session_analytics"
    EVENT_TRACKER = "event_tracker"
    COMMERCE_BACKEND = "commerce_backend"


class FunnelStage(str, Enum):
    """Canonical funnel stages, in journey order"""
    SESSION = "session"
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    CART_CREATED = "cart_created"
    CHECKOUT_STARTED = "checkout_started"
    ORDER_PLACED = "order_placed"
    PAYMENT_CAPTURED = "payment_captured"
    SHIPMENT_CREATED = "shipment_created"
    DELIVERY_CONFIRMED = "delivery_confirmed"


class FunnelStepSource(BaseModel):
    """A stage count as reported by one upstream system"""
    stage: FunnelStage
    count: int = Field(ge=0)
    source: SourceSystem


class DayCount(BoundaryModel):
    date: str
    count: int = 0


class EventStats(BoundaryModel):
    """Event tracker totals for a date window"""
    total_events: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_source: Dict[str, int] = Field(default_factory=dict)
    by_day: List[DayCount] = Field(default_factory=list)

    def count(self, event_name: str) -> int:
        return self.by_type.get(event_name, 0)


class ProductInteraction(BoundaryModel):
    """Per-product interaction counts keyed by the tracker's product id"""
    product_id: str
    title: str = ""
    views: int = 0
    clicks: int = 0
    added_to_cart: int = 0


class ProductInteractionStats(BoundaryModel):
    products: List[ProductInteraction] = Field(default_factory=list)


class SessionOverview(BoundaryModel):
    """Session analytics overview report"""
    sessions: int = 0
    total_users: int = Field(default=0, alias="totalUsers")
    new_users: int = Field(default=0, alias="newUsers")
    bounce_rate: float = Field(default=0.0, alias="bounceRate")
    purchases: int = 0
    revenue: float = 0.0
