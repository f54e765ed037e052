"""
Product Visibility / Conversion Correlator

Cross-references per-product interaction counts from the event tracker with
units sold and revenue from the commerce backend.
"""

from typing import Dict, List, Optional, Sequence

import structlog

from commerce_insights.aggregation.identity import ProductIdentityMapper
from commerce_insights.aggregation.products import ProductPerformanceReport
from commerce_insights.schemas.events import ProductInteraction
from commerce_insights.schemas.metrics import ConversionFlag, ProductConversionRow

logger = structlog.get_logger(__name__)

OPPORTUNITY_MIN_VIEWS = 10
TOP_CONVERTER_MIN_RATE = 0.05
LOW_CONVERSION_MIN_VIEWS = 20
LOW_CONVERSION_MAX_RATE = 0.01


def view_to_sale_rate(units_sold: int, views: int) -> Optional[float]:
    """Units sold per view; None when the product was never viewed."""
    if views <= 0:
        return None
    return units_sold / views


def classify_conversion(views: int, units_sold: int, rate: Optional[float]) -> Optional[ConversionFlag]:
    """First matching rule wins; an undefined rate never satisfies a rate rule."""
    if views > OPPORTUNITY_MIN_VIEWS and units_sold == 0:
        return ConversionFlag.OPPORTUNITY
    if rate is not None and rate > TOP_CONVERTER_MIN_RATE:
        return ConversionFlag.TOP_CONVERTER
    if rate is not None and views > LOW_CONVERSION_MIN_VIEWS and rate < LOW_CONVERSION_MAX_RATE:
        return ConversionFlag.LOW_CONVERSION
    return None


class ProductConversionCorrelator:
    """
    Joins interaction counts to sales through a product identity mapper.

    Products that sold but were never observed by the tracker are kept with
    zero views and an undefined rate.

    Example:
        rows = ProductConversionCorrelator().correlate(interactions, report)
    """

    def __init__(self, mapper: Optional[ProductIdentityMapper] = None):
        self.mapper = mapper or ProductIdentityMapper()

    def correlate(
        self,
        interactions: Sequence[ProductInteraction],
        performance: ProductPerformanceReport,
    ) -> List[ProductConversionRow]:
        sales = {p.product_id: p for p in performance.products}
        rows: Dict[str, ProductConversionRow] = {}
        unmatched = 0

        for interaction in interactions:
            commerce_id = self.mapper.to_commerce_id(interaction.product_id)
            key = commerce_id or interaction.product_id
            if commerce_id is None or commerce_id not in sales:
                unmatched += 1

            existing = rows.get(key)
            if existing is not None:
                # Several tracker ids can map to one commerce product
                existing.views += interaction.views
                existing.clicks += interaction.clicks
                existing.added_to_cart += interaction.added_to_cart
                continue

            sold = sales.get(commerce_id) if commerce_id else None
            rows[key] = ProductConversionRow(
                product_id=key,
                name=interaction.title or (sold.name if sold else key),
                views=interaction.views,
                clicks=interaction.clicks,
                added_to_cart=interaction.added_to_cart,
                units_sold=sold.quantity if sold else 0,
                revenue=sold.revenue if sold else 0.0,
                view_to_sale_rate=None,
            )

        for product in performance.products:
            if product.product_id not in rows:
                rows[product.product_id] = ProductConversionRow(
                    product_id=product.product_id,
                    name=product.name,
                    views=0,
                    clicks=0,
                    added_to_cart=0,
                    units_sold=product.quantity,
                    revenue=product.revenue,
                    view_to_sale_rate=None,
                )

        for row in rows.values():
            row.view_to_sale_rate = view_to_sale_rate(row.units_sold, row.views)
            row.flag = classify_conversion(row.views, row.units_sold, row.view_to_sale_rate)

        if unmatched:
            logger.debug("Observed products without sales", count=unmatched)

        return sorted(rows.values(), key=lambda r: (-r.views, -r.units_sold, r.product_id))
