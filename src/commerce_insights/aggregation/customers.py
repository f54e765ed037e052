"""
Customer Metrics Aggregator

Customer lifecycle metrics derived from customers, their groups and orders:

- Group resolution from tagged metadata references
- Per-customer order fold (count, spend, AOV, recency)
- Churn bucket classification by days since last order
- Top-line rollups and per-group segment health
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import polars as pl
import structlog

from commerce_insights.config import get_settings
from commerce_insights.schemas.base import ensure_utc
from commerce_insights.schemas.commerce import Customer, CustomerGroup, GroupRefKind, Order
from commerce_insights.schemas.metrics import (
    ChurnBucket,
    CustomerMetrics,
    CustomerRollup,
    SegmentHealth,
)

logger = structlog.get_logger(__name__)

# Recency thresholds in days (inclusive upper bounds)
ACTIVE_MAX_DAYS = 30
WARNING_MAX_DAYS = 60
AT_RISK_MAX_DAYS = 90

# The at-risk KPI counts anyone past the warning bucket
AT_RISK_KPI_DAYS = 60

_ORDER_SCHEMA = {
    "customer_id": pl.Utf8,
    "email": pl.Utf8,
    "total": pl.Float64,
    "created_at": pl.Datetime("us", "UTC"),
    "phone": pl.Utf8,
}


def build_group_name_map(groups: Iterable[CustomerGroup]) -> Dict[str, str]:
    """Group id -> display name lookup table."""
    return {group.id: group.name for group in groups if group.name}


def resolve_customer_groups(
    customers: Iterable[Customer],
    group_names: Dict[str, str],
    default_group: Optional[str] = None,
) -> List[Customer]:
    """
    Attach a display group to every customer.

    Names are taken as-is, ids are looked up in ``group_names`` (unmatched ids
    stay as their raw value), and customers without a reference fall into the
    default group. Input records are never modified.
    """
    default_group = default_group or get_settings().analytics.default_group_name
    resolved = []
    unmatched = set()

    for customer in customers:
        ref = customer.group_ref
        if ref is None:
            group = default_group
        elif ref.kind == GroupRefKind.NAME:
            group = ref.value
        else:
            group = group_names.get(ref.value)
            if group is None:
                unmatched.add(ref.value)
                group = ref.value
        resolved.append(customer.model_copy(update={"resolved_group": group}))

    if unmatched:
        logger.warning("Unresolved customer group ids", group_ids=sorted(unmatched))

    return resolved


def available_groups(customers: Iterable[Customer]) -> List[str]:
    """Distinct resolved group names, sorted."""
    return sorted({c.resolved_group for c in customers if c.resolved_group})


def classify_churn(days_since_last_order: Optional[int]) -> ChurnBucket:
    """Map recency to a churn bucket; no orders means ``no_purchases``."""
    if days_since_last_order is None:
        return ChurnBucket.NO_PURCHASES
    if days_since_last_order <= ACTIVE_MAX_DAYS:
        return ChurnBucket.ACTIVE
    if days_since_last_order <= WARNING_MAX_DAYS:
        return ChurnBucket.WARNING
    if days_since_last_order <= AT_RISK_MAX_DAYS:
        return ChurnBucket.AT_RISK
    return ChurnBucket.CRITICAL


def _orders_frame(orders: Sequence[Order]) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "customer_id": [o.customer_id for o in orders],
            "email": [o.email.lower() if o.email else None for o in orders],
            "total": [float(o.total) for o in orders],
            "created_at": [o.created_at for o in orders],
            "phone": [o.shipping_address.phone if o.shipping_address else None for o in orders],
        },
        schema=_ORDER_SCHEMA,
    )


def _fold(frame: pl.DataFrame, key: str) -> Dict[str, dict]:
    folded = (
        frame.filter(pl.col(key).is_not_null())
        .group_by(key)
        .agg([
            pl.len().alias("order_count"),
            pl.col("total").sum().alias("total_spent"),
            pl.col("created_at").max().alias("last_order_at"),
            pl.col("phone").drop_nulls().first().alias("phone"),
        ])
    )
    return {row[key]: row for row in folded.iter_rows(named=True)}


class CustomerMetricsAggregator:
    """
    Folds orders into per-customer lifecycle metrics.

    Orders are matched by customer id; when a customer has no orders under
    their id, orders carrying the same email (case-insensitive) are used.

    Example:
        aggregator = CustomerMetricsAggregator()
        metrics = aggregator.compute(customers, orders, group_names)
        rollup = aggregator.rollup(metrics)
    """

    def __init__(self, now: Optional[datetime] = None, default_group: Optional[str] = None):
        self.now = ensure_utc(now) if now else None
        self.default_group = default_group or get_settings().analytics.default_group_name

    def _reference_time(self) -> datetime:
        return self.now or datetime.now(timezone.utc)

    def compute(
        self,
        customers: Sequence[Customer],
        orders: Sequence[Order],
        group_names: Optional[Dict[str, str]] = None,
    ) -> List[CustomerMetrics]:
        """One CustomerMetrics per input customer, in input order."""
        if any(c.resolved_group is None for c in customers):
            customers = resolve_customer_groups(customers, group_names or {}, self.default_group)

        frame = _orders_frame(orders)
        by_id = _fold(frame, "customer_id")
        by_email = _fold(frame, "email")
        now = self._reference_time()

        results = []
        for customer in customers:
            row = by_id.get(customer.id)
            if row is None and customer.email:
                row = by_email.get(customer.email.lower())

            if row is None:
                order_count, total_spent, last_order_at, order_phone = 0, 0.0, None, None
            else:
                order_count = int(row["order_count"])
                total_spent = float(row["total_spent"] or 0.0)
                last_order_at = ensure_utc(row["last_order_at"]) if row["last_order_at"] else None
                order_phone = row["phone"]

            days = (now - last_order_at).days if last_order_at else None

            results.append(CustomerMetrics(
                customer_id=customer.id,
                name=customer.full_name,
                email=customer.email,
                phone=customer.phone or order_phone,
                group=customer.resolved_group or self.default_group,
                order_count=order_count,
                total_spent=total_spent,
                avg_order_value=total_spent / order_count if order_count else 0.0,
                last_order_at=last_order_at,
                days_since_last_order=days,
                churn_bucket=classify_churn(days),
            ))

        logger.debug("Customer metrics computed", customers=len(results), orders=len(orders))
        return results

    @staticmethod
    def rollup(metrics: Sequence[CustomerMetrics]) -> CustomerRollup:
        with_orders = [m for m in metrics if m.has_orders]
        lifetime_value = sum(m.total_spent for m in with_orders)
        return CustomerRollup(
            total_customers=len(metrics),
            with_orders=len(with_orders),
            repeat_customers=sum(1 for m in metrics if m.is_repeat),
            at_risk_customers=sum(
                1 for m in metrics
                if m.days_since_last_order is not None and m.days_since_last_order > AT_RISK_KPI_DAYS
            ),
            avg_lifetime_value=lifetime_value / len(with_orders) if with_orders else 0.0,
        )

    @staticmethod
    def churn_distribution(metrics: Sequence[CustomerMetrics]) -> Dict[ChurnBucket, int]:
        """Customer count per bucket; every bucket is present."""
        distribution = {bucket: 0 for bucket in ChurnBucket}
        for m in metrics:
            distribution[m.churn_bucket] += 1
        return distribution

    @staticmethod
    def segment_health(
        metrics: Sequence[CustomerMetrics],
        period_revenue_by_group: Optional[Dict[str, float]] = None,
    ) -> List[SegmentHealth]:
        """
        Health table per resolved group, highest lifetime revenue first.

        Retention is repeat buyers over buyers; risk rate is at-risk customers
        over all customers of the group.
        """
        by_group: Dict[str, List[CustomerMetrics]] = defaultdict(list)
        for m in metrics:
            by_group[m.group].append(m)

        period_revenue_by_group = period_revenue_by_group or {}
        segments = []
        for group, members in by_group.items():
            rollup = CustomerMetricsAggregator.rollup(members)
            total_revenue = sum(m.total_spent for m in members)
            segments.append(SegmentHealth(
                group=group,
                customers=rollup.total_customers,
                with_orders=rollup.with_orders,
                repeat_customers=rollup.repeat_customers,
                at_risk_customers=rollup.at_risk_customers,
                total_revenue=total_revenue,
                avg_lifetime_value=rollup.avg_lifetime_value,
                retention_rate=(
                    rollup.repeat_customers / rollup.with_orders if rollup.with_orders else None
                ),
                risk_rate=(
                    rollup.at_risk_customers / rollup.total_customers if rollup.total_customers else None
                ),
                period_revenue=period_revenue_by_group.get(group, 0.0),
            ))

        segments.sort(key=lambda s: (-s.total_revenue, s.group))
        return segments
