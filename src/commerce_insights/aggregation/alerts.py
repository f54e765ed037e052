"""
Cross-Metric Alerts

Operational alerts raised by combining customer, order and event metrics.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from commerce_insights.schemas.commerce import Order, PaymentStatus
from commerce_insights.schemas.events import EventStats
from commerce_insights.schemas.metrics import CustomerMetrics

CRITICAL_CHURN_DAYS = 90
ABANDONMENT_RATE_THRESHOLD = 0.30
PAYMENT_CONVERSION_THRESHOLD = 0.50


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Alert:
    severity: AlertSeverity
    code: str
    message: str
    value: float


def checkout_abandonment_rate(stats: Optional[EventStats]) -> Optional[float]:
    """Abandoned over started checkouts; None without started checkouts."""
    if stats is None:
        return None
    started = stats.count("checkout.started")
    if started <= 0:
        return None
    return stats.count("checkout.abandoned") / started


def build_alerts(
    customers: Sequence[CustomerMetrics],
    orders: Sequence[Order],
    event_stats: Optional[EventStats] = None,
) -> List[Alert]:
    """
    Args:
        customers: Customer metrics for the reporting window
        orders: All orders in the window, paid or not
        event_stats: Event tracker totals, when available
    """
    alerts: List[Alert] = []

    critical = sum(
        1 for c in customers
        if c.days_since_last_order is not None and c.days_since_last_order > CRITICAL_CHURN_DAYS
    )
    if critical:
        alerts.append(Alert(
            severity=AlertSeverity.CRITICAL,
            code="critical_churn",
            message=f"{critical} customers without a purchase for more than {CRITICAL_CHURN_DAYS} days",
            value=critical,
        ))

    refunded = sum(1 for o in orders if o.payment_status == PaymentStatus.REFUNDED)
    if refunded:
        alerts.append(Alert(
            severity=AlertSeverity.WARNING,
            code="refunds",
            message=f"{refunded} refunded orders in the selected period",
            value=refunded,
        ))

    abandonment = checkout_abandonment_rate(event_stats)
    if abandonment is not None and abandonment > ABANDONMENT_RATE_THRESHOLD:
        alerts.append(Alert(
            severity=AlertSeverity.WARNING,
            code="checkout_abandonment",
            message=f"High checkout abandonment rate: {abandonment * 100:.1f}%",
            value=abandonment,
        ))

    if orders:
        payment_rate = sum(1 for o in orders if o.is_paid) / len(orders)
        if payment_rate < PAYMENT_CONVERSION_THRESHOLD:
            alerts.append(Alert(
                severity=AlertSeverity.WARNING,
                code="payment_conversion",
                message=f"Low payment conversion rate: {payment_rate * 100:.1f}%",
                value=payment_rate,
            ))

    return alerts
