"""
Product Performance Aggregator

Folds order line items into per-product sales metrics. Top-by-revenue and
top-by-units views are projections of the same fold, and revenue shares are
always computed against the report they are read from.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from commerce_insights.schemas.commerce import LineItem, Order
from commerce_insights.schemas.metrics import ProductMetrics

logger = structlog.get_logger(__name__)

DEFAULT_BULK_THRESHOLD = 2.0

_LINE_SCHEMA = {
    "product_id": pl.Utf8,
    "name": pl.Utf8,
    "quantity": pl.Int64,
    "revenue": pl.Float64,
}


def line_revenue(line: LineItem, order: Order) -> float:
    """
    Revenue attributed to one line.

    Uses a non-zero recorded line total, else quantity times the recorded
    unit price. A recorded zero total with no unit price counts as zero;
    a line with neither falls back to the order total apportioned by the
    line's share of order quantity.
    """
    if line.total:
        return float(line.total)
    if line.unit_price is not None:
        return line.quantity * float(line.unit_price)
    if line.total is not None:
        return 0.0
    order_quantity = order.total_quantity
    if order_quantity <= 0:
        return 0.0
    return float(order.total) * line.quantity / order_quantity


@dataclass
class ProductPerformanceReport:
    """Per-product metrics with share and ranking helpers"""
    products: List[ProductMetrics] = field(default_factory=list)

    @property
    def total_revenue(self) -> float:
        return sum(p.revenue for p in self.products)

    @property
    def total_quantity(self) -> int:
        return sum(p.quantity for p in self.products)

    @property
    def total_order_lines(self) -> int:
        return sum(p.order_lines for p in self.products)

    @property
    def global_avg_units_per_purchase(self) -> float:
        lines = self.total_order_lines
        return self.total_quantity / lines if lines else 0.0

    def get(self, product_id: str) -> Optional[ProductMetrics]:
        for product in self.products:
            if product.product_id == product_id:
                return product
        return None

    def top_by_revenue(self, limit: Optional[int] = None) -> List[ProductMetrics]:
        ranked = sorted(self.products, key=lambda p: (-p.revenue, -p.quantity, p.product_id))
        return ranked[:limit] if limit is not None else ranked

    def top_by_quantity(self, limit: Optional[int] = None) -> List[ProductMetrics]:
        ranked = sorted(self.products, key=lambda p: (-p.quantity, -p.revenue, p.product_id))
        return ranked[:limit] if limit is not None else ranked

    def share_of(self, product: ProductMetrics) -> float:
        """Revenue share of ``product`` within this report; 0 when there is no revenue."""
        total = self.total_revenue
        return product.revenue / total if total else 0.0

    def revenue_shares(self) -> Dict[str, float]:
        return {p.product_id: self.share_of(p) for p in self.products}

    def unit_shares(self) -> Dict[str, float]:
        total = self.total_quantity
        return {p.product_id: (p.quantity / total if total else 0.0) for p in self.products}

    def filter(self, predicate: Callable[[ProductMetrics], bool]) -> "ProductPerformanceReport":
        """New report over the matching products; shares follow the new total."""
        return ProductPerformanceReport(products=[p for p in self.products if predicate(p)])

    def search(self, query: str) -> "ProductPerformanceReport":
        needle = query.strip().lower()
        if not needle:
            return self
        return self.filter(lambda p: needle in p.name.lower() or needle in p.product_id.lower())

    def bulk_products(self, threshold: float = DEFAULT_BULK_THRESHOLD) -> List[ProductMetrics]:
        """Products usually bought several units at a time."""
        bulk = [p for p in self.products if p.avg_units_per_purchase >= threshold]
        return sorted(bulk, key=lambda p: (-p.avg_units_per_purchase, p.product_id))


class ProductPerformanceAggregator:
    """
    Per-product sales fold over order line items.

    Example:
        report = ProductPerformanceAggregator().aggregate(paid_orders)
        best = report.top_by_revenue(10)
    """

    def _lines_frame(self, orders: Sequence[Order]) -> pl.DataFrame:
        rows: Dict[str, list] = {name: [] for name in _LINE_SCHEMA}
        for order in orders:
            for line in order.items:
                rows["product_id"].append(line.product_key)
                rows["name"].append(line.display_name)
                rows["quantity"].append(line.quantity)
                rows["revenue"].append(line_revenue(line, order))
        return pl.DataFrame(rows, schema=_LINE_SCHEMA)

    def aggregate(self, orders: Sequence[Order]) -> ProductPerformanceReport:
        lines = self._lines_frame(orders)

        folded = (
            lines.group_by("product_id", maintain_order=True)
            .agg([
                pl.col("name").first().alias("name"),
                pl.col("quantity").sum().alias("quantity"),
                pl.col("revenue").sum().alias("revenue"),
                pl.len().alias("order_lines"),
            ])
            .with_columns(
                (pl.col("quantity") / pl.col("order_lines")).alias("avg_units_per_purchase")
            )
        )

        products = [
            ProductMetrics(
                product_id=row["product_id"],
                name=row["name"] or row["product_id"],
                quantity=int(row["quantity"]),
                revenue=float(row["revenue"]),
                order_lines=int(row["order_lines"]),
                avg_units_per_purchase=float(row["avg_units_per_purchase"]),
            )
            for row in folded.iter_rows(named=True)
        ]

        logger.debug("Product performance aggregated", orders=len(orders), products=len(products))
        return ProductPerformanceReport(products=products)
