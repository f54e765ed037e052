"""
Order Rollups

Sales overview with period comparison, daily revenue, status breakdowns and
revenue per customer group. Revenue figures count captured orders only.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl

from commerce_insights.config import get_settings
from commerce_insights.schemas.commerce import Customer, Order


@dataclass
class SalesOverview:
    """Headline sales KPIs with change versus the previous period (in %)"""
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


@dataclass
class DailyRevenue:
    date: date
    revenue: float
    orders: int


@dataclass
class GroupRevenue:
    group: str
    revenue: float
    orders: int


def filter_paid_orders(orders: Sequence[Order]) -> List[Order]:
    """Orders whose payment was captured."""
    return [o for o in orders if o.is_paid]


def pct_change(current: float, previous: float) -> float:
    """Percentage change; 0 when there is no previous value to compare with."""
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def _paid_figures(orders: Sequence[Order]) -> Tuple[float, int, float, int]:
    paid = filter_paid_orders(orders)
    revenue = sum(o.total for o in paid)
    count = len(paid)
    aov = revenue / count if count else 0.0
    customers = len({o.customer_id for o in paid if o.customer_id})
    return revenue, count, aov, customers


def sales_overview(current: Sequence[Order], previous: Sequence[Order] = ()) -> SalesOverview:
    revenue, paid, aov, customers = _paid_figures(current)
    prev_revenue, prev_paid, prev_aov, prev_customers = _paid_figures(previous)

    return SalesOverview(
        total_revenue=revenue,
        total_orders=len(current),
        paid_orders=paid,
        avg_order_value=aov,
        unique_customers=customers,
        revenue_change=pct_change(revenue, prev_revenue),
        orders_change=pct_change(len(current), len(previous)),
        paid_orders_change=pct_change(paid, prev_paid),
        aov_change=pct_change(aov, prev_aov),
        customers_change=pct_change(customers, prev_customers),
    )


def revenue_by_day(orders: Sequence[Order]) -> List[DailyRevenue]:
    """Paid revenue and order count per UTC day, oldest first."""
    paid = filter_paid_orders(orders)
    if not paid:
        return []

    df = pl.DataFrame({
        "day": [o.created_at.date() for o in paid],
        "total": [float(o.total) for o in paid],
    })
    daily = (
        df.group_by("day")
        .agg([
            pl.col("total").sum().alias("revenue"),
            pl.len().alias("orders"),
        ])
        .sort("day")
    )
    return [
        DailyRevenue(date=row["day"], revenue=row["revenue"], orders=row["orders"])
        for row in daily.iter_rows(named=True)
    ]


def _count_by(values: Sequence[str]) -> List[Tuple[str, int]]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def orders_by_payment_status(orders: Sequence[Order]) -> List[Tuple[str, int]]:
    return _count_by([o.payment_status.value for o in orders])


def orders_by_fulfillment_status(orders: Sequence[Order]) -> List[Tuple[str, int]]:
    return _count_by([o.fulfillment_status.value for o in orders])


def revenue_by_group(
    orders: Sequence[Order],
    customers: Sequence[Customer],
    default_group: Optional[str] = None,
) -> List[GroupRevenue]:
    """
    Paid revenue per resolved customer group.

    Orders are attributed by customer id, then by email; anything left over
    belongs to the default group.
    """
    if default_group is None:
        default_group = get_settings().analytics.default_group_name

    by_id: Dict[str, str] = {}
    by_email: Dict[str, str] = {}
    for customer in customers:
        group = customer.resolved_group or default_group
        by_id[customer.id] = group
        if customer.email:
            by_email[customer.email.lower()] = group

    totals: Dict[str, GroupRevenue] = {}
    for order in filter_paid_orders(orders):
        if order.customer_id and order.customer_id in by_id:
            group = by_id[order.customer_id]
        elif order.email:
            group = by_email.get(order.email.lower(), default_group)
        else:
            group = default_group
        entry = totals.setdefault(group, GroupRevenue(group=group, revenue=0.0, orders=0))
        entry.revenue += order.total
        entry.orders += 1

    return sorted(totals.values(), key=lambda g: (-g.revenue, g.group))
