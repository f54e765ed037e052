"""
Inventory Stock Classifier

Classifies products and variants as out of stock. Only variants whose
inventory is managed take part in stock math; a product with no managed
variants is never out of stock.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from commerce_insights.schemas.commerce import InventoryItem, ProductVariant

logger = structlog.get_logger(__name__)


def build_stock_by_sku(items: Iterable[InventoryItem]) -> Dict[str, int]:
    """Stocked quantity per SKU, summed across items and locations."""
    stock: Dict[str, int] = {}
    for item in items:
        if not item.sku:
            continue
        stock[item.sku] = stock.get(item.sku, 0) + item.stocked_quantity
    return stock


def apply_stock_levels(variants: Iterable[ProductVariant], stock_by_sku: Dict[str, int]) -> List[ProductVariant]:
    """
    Replace variant quantities with real stock from inventory levels.

    Managed variants take the stock of their SKU (0 when the SKU is missing
    or unknown). Unmanaged variants are returned unchanged.
    """
    updated = []
    for variant in variants:
        if not variant.manage_inventory:
            updated.append(variant)
            continue
        quantity = stock_by_sku.get(variant.sku, 0) if variant.sku else 0
        updated.append(variant.model_copy(update={"inventory_quantity": quantity}))
    return updated


def is_variant_out_of_stock(variant: ProductVariant) -> bool:
    return variant.manage_inventory and variant.inventory_quantity <= 0


@dataclass
class ProductStock:
    """Stock position of one product"""
    product_id: str
    title: str
    variants: List[ProductVariant] = field(default_factory=list)

    @property
    def managed_variants(self) -> List[ProductVariant]:
        return [v for v in self.variants if v.manage_inventory]

    @property
    def out_of_stock_variants(self) -> List[ProductVariant]:
        return [v for v in self.variants if is_variant_out_of_stock(v)]

    @property
    def total_stock(self) -> int:
        return sum(v.inventory_quantity for v in self.managed_variants)

    @property
    def fully_out_of_stock(self) -> bool:
        managed = self.managed_variants
        return bool(managed) and all(v.inventory_quantity <= 0 for v in managed)

    @property
    def has_out_of_stock_variant(self) -> bool:
        return bool(self.out_of_stock_variants)


@dataclass
class InventoryReport:
    """Stock rollups over a product catalog"""
    products: List[ProductStock]
    catalog_size: int

    @property
    def out_of_stock_products(self) -> List[ProductStock]:
        return [p for p in self.products if p.fully_out_of_stock]

    @property
    def out_of_stock_variants(self) -> List[ProductVariant]:
        return [v for p in self.products for v in p.out_of_stock_variants]

    @property
    def products_with_out_of_stock_variants(self) -> List[ProductStock]:
        return [p for p in self.products if p.has_out_of_stock_variant]

    @property
    def managed_variant_count(self) -> int:
        return sum(len(p.managed_variants) for p in self.products)

    @property
    def pct_catalog_out_of_stock(self) -> float:
        if not self.catalog_size:
            return 0.0
        return len(self.out_of_stock_products) / self.catalog_size * 100

    @property
    def pct_variants_out_of_stock(self) -> float:
        managed = self.managed_variant_count
        if not managed:
            return 0.0
        return len(self.out_of_stock_variants) / managed * 100

    def search(self, query: str) -> List[ProductStock]:
        """Products whose title or any variant title/SKU contains ``query``."""
        needle = query.strip().lower()
        if not needle:
            return list(self.products)
        matches = []
        for product in self.products:
            haystacks = [product.title] + [v.title for v in product.variants] + [v.sku or "" for v in product.variants]
            if any(needle in text.lower() for text in haystacks):
                matches.append(product)
        return matches

    def summary(self) -> Dict[str, float]:
        return {
            "catalog_size": self.catalog_size,
            "out_of_stock_products": len(self.out_of_stock_products),
            "out_of_stock_variants": len(self.out_of_stock_variants),
            "products_with_out_of_stock_variants": len(self.products_with_out_of_stock_variants),
            "managed_variants": self.managed_variant_count,
            "pct_catalog_out_of_stock": self.pct_catalog_out_of_stock,
            "pct_variants_out_of_stock": self.pct_variants_out_of_stock,
        }


class InventoryStockClassifier:
    """
    Groups variants by product and classifies stock exhaustion.

    Example:
        report = InventoryStockClassifier().classify(variants)
        report.pct_catalog_out_of_stock
    """

    def classify(
        self,
        variants: Sequence[ProductVariant],
        product_ids: Optional[Iterable[str]] = None,
        titles: Optional[Mapping[str, str]] = None,
    ) -> InventoryReport:
        """
        Args:
            variants: Variants with their current quantities
            product_ids: Full catalog, including products without variants;
                defaults to the products referenced by ``variants``
            titles: Product titles for catalog entries without variants
        """
        grouped: "OrderedDict[str, ProductStock]" = OrderedDict()
        for variant in variants:
            product = grouped.get(variant.product_id)
            if product is None:
                product = ProductStock(product_id=variant.product_id, title=variant.product_title)
                grouped[variant.product_id] = product
            product.variants.append(variant)

        catalog = set(grouped)
        titles = titles or {}
        if product_ids is not None:
            for product_id in product_ids:
                catalog.add(product_id)
                if product_id not in grouped:
                    grouped[product_id] = ProductStock(product_id=product_id, title=titles.get(product_id, ""))

        report = InventoryReport(products=list(grouped.values()), catalog_size=len(catalog))
        logger.debug(
            "Inventory classified",
            products=report.catalog_size,
            out_of_stock_products=len(report.out_of_stock_products),
        )
        return report
