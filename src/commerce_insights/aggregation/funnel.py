"""
Cross-Source Funnel Composer

Merges per-stage counts reported by the session analytics platform, the
on-site event tracker and the commerce backend into one ordered funnel.

Sources are never summed: each stage takes its count from the single
authoritative source that reports it, chosen by a fixed precedence.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from commerce_insights.schemas.commerce import FulfillmentStatus, Order
from commerce_insights.schemas.events import FunnelStage, FunnelStepSource, SessionOverview, SourceSystem
from commerce_insights.schemas.metrics import Funnel, FunnelStep, FunnelTransition

logger = structlog.get_logger(__name__)

# Event tracker event names -> canonical stages
EVENT_TRACKER_VOCABULARY: Dict[str, FunnelStage] = {
    "product.viewed": FunnelStage.PRODUCT_VIEW,
    "product.added_to_cart": FunnelStage.ADD_TO_CART,
    "cart.created": FunnelStage.CART_CREATED,
    "checkout.started": FunnelStage.CHECKOUT_STARTED,
    "order.placed": FunnelStage.ORDER_PLACED,
    "payment.captured": FunnelStage.PAYMENT_CAPTURED,
    "shipment.created": FunnelStage.SHIPMENT_CREATED,
    "delivery.created": FunnelStage.DELIVERY_CONFIRMED,
}

# Session analytics report fields -> canonical stages
SESSION_ANALYTICS_VOCABULARY: Dict[str, FunnelStage] = {
    "sessions": FunnelStage.SESSION,
    "purchases": FunnelStage.ORDER_PLACED,
}

_TRAFFIC = [SourceSystem.SESSION_ANALYTICS, SourceSystem.EVENT_TRACKER]
_INTERACTION = [SourceSystem.EVENT_TRACKER, SourceSystem.SESSION_ANALYTICS]
_TRANSACTIONAL = [SourceSystem.COMMERCE_BACKEND, SourceSystem.EVENT_TRACKER, SourceSystem.SESSION_ANALYTICS]

STAGE_PRECEDENCE: Dict[FunnelStage, List[SourceSystem]] = {
    FunnelStage.SESSION: _TRAFFIC,
    FunnelStage.PRODUCT_VIEW: _INTERACTION,
    FunnelStage.ADD_TO_CART: _INTERACTION,
    FunnelStage.CART_CREATED: _INTERACTION,
    FunnelStage.CHECKOUT_STARTED: _INTERACTION,
    FunnelStage.ORDER_PLACED: _TRANSACTIONAL,
    FunnelStage.PAYMENT_CAPTURED: _TRANSACTIONAL,
    FunnelStage.SHIPMENT_CREATED: _TRANSACTIONAL,
    FunnelStage.DELIVERY_CONFIRMED: _TRANSACTIONAL,
}

CONVERSION_STAGES: List[FunnelStage] = [
    FunnelStage.PRODUCT_VIEW,
    FunnelStage.ADD_TO_CART,
    FunnelStage.CART_CREATED,
    FunnelStage.CHECKOUT_STARTED,
    FunnelStage.ORDER_PLACED,
    FunnelStage.PAYMENT_CAPTURED,
    FunnelStage.SHIPMENT_CREATED,
    FunnelStage.DELIVERY_CONFIRMED,
]

JOURNEY_STAGES: List[FunnelStage] = [
    FunnelStage.SESSION,
    FunnelStage.PRODUCT_VIEW,
    FunnelStage.ADD_TO_CART,
    FunnelStage.CHECKOUT_STARTED,
    FunnelStage.ORDER_PLACED,
    FunnelStage.PAYMENT_CAPTURED,
    FunnelStage.SHIPMENT_CREATED,
    FunnelStage.DELIVERY_CONFIRMED,
]

_SHIPPED = {FulfillmentStatus.SHIPPED, FulfillmentStatus.DELIVERED}


def translate_counts(
    counts: Mapping[str, int],
    vocabulary: Mapping[str, FunnelStage],
    source: SourceSystem,
) -> List[FunnelStepSource]:
    """Map a source's own names to canonical stages; unknown names are ignored."""
    steps: Dict[FunnelStage, int] = {}
    for name, count in counts.items():
        stage = vocabulary.get(name)
        if stage is None:
            continue
        steps[stage] = steps.get(stage, 0) + max(int(count or 0), 0)
    return [FunnelStepSource(stage=stage, count=count, source=source) for stage, count in steps.items()]


def event_tracker_stage_counts(by_type: Mapping[str, int]) -> List[FunnelStepSource]:
    return translate_counts(by_type, EVENT_TRACKER_VOCABULARY, SourceSystem.EVENT_TRACKER)


def session_stage_counts(overview: Optional[SessionOverview]) -> List[FunnelStepSource]:
    if overview is None:
        return []
    counts = {"sessions": overview.sessions, "purchases": overview.purchases}
    return translate_counts(counts, SESSION_ANALYTICS_VOCABULARY, SourceSystem.SESSION_ANALYTICS)


def commerce_stage_counts(orders: Sequence[Order]) -> List[FunnelStepSource]:
    """
    Transactional stage counts from orders.

    Shipment and delivery are counted among paid orders only, so the
    commerce stages stay monotonic.
    """
    paid = [o for o in orders if o.is_paid]
    counts = {
        FunnelStage.ORDER_PLACED: len(orders),
        FunnelStage.PAYMENT_CAPTURED: len(paid),
        FunnelStage.SHIPMENT_CREATED: sum(1 for o in paid if o.fulfillment_status in _SHIPPED),
        FunnelStage.DELIVERY_CONFIRMED: sum(
            1 for o in paid if o.fulfillment_status == FulfillmentStatus.DELIVERED
        ),
    }
    return [
        FunnelStepSource(stage=stage, count=count, source=SourceSystem.COMMERCE_BACKEND)
        for stage, count in counts.items()
    ]


class FunnelComposer:
    """
    Composes a displayable funnel from provenance-tagged counts.

    Example:
        sources = event_tracker_stage_counts(stats.by_type) + commerce_stage_counts(orders)
        funnel = FunnelComposer().compose(sources)
    """

    def __init__(self, precedence: Optional[Mapping[FunnelStage, Sequence[SourceSystem]]] = None):
        self.precedence = dict(precedence or STAGE_PRECEDENCE)

    def select(self, sources: Iterable[FunnelStepSource]) -> Dict[FunnelStage, FunnelStepSource]:
        """Pick the authoritative count for every reported stage."""
        reported: Dict[FunnelStage, Dict[SourceSystem, FunnelStepSource]] = {}
        for step in sources:
            reported.setdefault(step.stage, {})[step.source] = step

        selected = {}
        for stage, by_source in reported.items():
            chosen = None
            for source in self.precedence.get(stage, []):
                if source in by_source:
                    chosen = by_source[source]
                    break
            if chosen is None:
                # Reported only by a source outside the precedence list
                chosen = next(iter(by_source.values()))
            if len(by_source) > 1:
                logger.debug(
                    "Funnel stage reported by several sources",
                    stage=stage.value,
                    chosen=chosen.source.value,
                    reporters=sorted(s.value for s in by_source),
                )
            selected[stage] = chosen
        return selected

    def compose(
        self,
        sources: Iterable[FunnelStepSource],
        stages: Sequence[FunnelStage] = CONVERSION_STAGES,
    ) -> Funnel:
        selected = self.select(sources)

        ordered = []
        for stage in stages:
            step = selected.get(stage)
            if step is None:
                ordered.append(FunnelStep(stage=stage, count=0, source=None))
            else:
                ordered.append(FunnelStep(stage=stage, count=step.count, source=step.source))

        if not ordered or all(step.count == 0 for step in ordered):
            return Funnel()

        displayed = [ordered[0]] + [step for step in ordered[1:] if step.count > 0]

        transitions = []
        for previous, current in zip(displayed, displayed[1:]):
            if previous.count > 0:
                pass_rate = current.count / previous.count
                drop_rate = 1 - pass_rate
            else:
                pass_rate = drop_rate = None
            transitions.append(FunnelTransition(
                from_stage=previous.stage,
                to_stage=current.stage,
                pass_rate=pass_rate,
                drop_rate=drop_rate,
            ))

        overall = None
        if len(displayed) >= 2 and displayed[0].count > 0:
            overall = displayed[-1].count / displayed[0].count

        return Funnel(steps=displayed, transitions=transitions, overall_conversion=overall)
