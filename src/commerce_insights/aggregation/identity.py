"""
Product Identity Mapping

The event tracker and the commerce backend identify products independently.
Correlating their counts goes through an explicit mapper instead of assuming
the two id spaces coincide.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class ProductIdentityMapper:
    """Identity mapping: tracker product ids are commerce product ids."""

    def to_commerce_id(self, tracker_id: str) -> Optional[str]:
        return tracker_id or None


class TableProductIdentityMapper(ProductIdentityMapper):
    """
    Mapping backed by an explicit tracker id -> commerce id table.

    Ids missing from the table fall back to identity unless ``strict`` is
    set, in which case they are unmatched.

    Example:
        mapper = TableProductIdentityMapper({"sku-123": "prod_01H..."})
    """

    def __init__(self, table: Mapping[str, str], strict: bool = False):
        self.table: Dict[str, str] = dict(table)
        self.strict = strict

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]], strict: bool = False) -> "TableProductIdentityMapper":
        return cls(dict(pairs), strict=strict)

    def to_commerce_id(self, tracker_id: str) -> Optional[str]:
        if tracker_id in self.table:
            return self.table[tracker_id]
        if self.strict:
            logger.debug("Tracker product id not mapped", tracker_id=tracker_id)
            return None
        return super().to_commerce_id(tracker_id)
