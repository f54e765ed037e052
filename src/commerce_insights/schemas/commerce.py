"""
Commerce Backend Schemas

Explicit schemas for the paginated collections served by the commerce backend:
orders, customers, customer groups, product variants and inventory items.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from commerce_insights.schemas.base import BoundaryModel, ensure_utc

DEFAULT_GROUP_ID_PREFIX = "cusgroup_"


class PaymentStatus(str, Enum):
    """Order payment states"""
    NOT_PAID = "not_paid"
    AWAITING = "awaiting"
    AUTHORIZED = "authorized"
    PARTIALLY_AUTHORIZED = "partially_authorized"
    CAPTURED = "captured"
    PARTIALLY_CAPTURED = "partially_captured"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    CANCELED = "canceled"
    REQUIRES_ACTION = "requires_action"
    UNKNOWN = "unknown"


class FulfillmentStatus(str, Enum):
    """Order fulfillment states"""
    NOT_FULFILLED = "not_fulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    CANCELED = "canceled"
    RETURNED = "returned"
    PARTIALLY_RETURNED = "partially_returned"
    UNKNOWN = "unknown"


def _coerce_enum(enum_cls, value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return enum_cls.UNKNOWN


class LineItem(BoundaryModel):
    """Order line as recorded at time of sale"""
    id: Optional[str] = None
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    title: Optional[str] = None
    product_title: Optional[str] = None
    quantity: int = 0
    unit_price: Optional[float] = None
    total: Optional[float] = None

    @property
    def product_key(self) -> str:
        """Product reference used for grouping; falls back to variant then title."""
        return self.product_id or self.variant_id or self.title or "unknown"

    @property
    def display_name(self) -> str:
        return self.product_title or self.title or self.product_key


class ShippingAddress(BoundaryModel):
    phone: Optional[str] = None


class Order(BoundaryModel):
    """Commerce order (read-only)"""
    id: str
    display_id: Optional[int] = None
    customer_id: Optional[str] = None
    email: Optional[str] = None
    total: float = 0.0
    currency_code: str = ""
    payment_status: PaymentStatus = PaymentStatus.NOT_PAID
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.NOT_FULFILLED
    created_at: datetime
    items: List[LineItem] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = None

    @field_validator("payment_status", mode="before")
    @classmethod
    def coerce_payment_status(cls, v: Any) -> Any:
        return _coerce_enum(PaymentStatus, v)

    @field_validator("fulfillment_status", mode="before")
    @classmethod
    def coerce_fulfillment_status(cls, v: Any) -> Any:
        return _coerce_enum(FulfillmentStatus, v)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.CAPTURED

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class GroupRefKind(str, Enum):
    ID = "id"
    NAME = "name"


class GroupRef(BaseModel):
    """
    Customer group reference tagged as either a raw group id or a
    human-readable name.

    The tag is set once, at the boundary, so resolution never has to guess
    from whether a value happens to appear in the lookup table.
    """

    model_config = ConfigDict(frozen=True)

    kind: GroupRefKind
    value: str

    @classmethod
    def of_id(cls, value: str) -> "GroupRef":
        return cls(kind=GroupRefKind.ID, value=value)

    @classmethod
    def of_name(cls, value: str) -> "GroupRef":
        return cls(kind=GroupRefKind.NAME, value=value)

    @classmethod
    def from_metadata(cls, raw: Any, id_prefix: str = DEFAULT_GROUP_ID_PREFIX) -> Optional["GroupRef"]:
        """
        Tag a metadata ``customer_group`` value.

        Mappings are explicit (``{"id": ...}`` or ``{"name": ...}``). Plain
        strings are ids when they carry the backend's group id prefix and
        names otherwise.
        """
        if isinstance(raw, dict):
            if raw.get("id"):
                return cls.of_id(str(raw["id"]))
            if raw.get("name"):
                return cls.of_name(str(raw["name"]))
            return None
        if not isinstance(raw, str) or not raw.strip():
            return None
        value = raw.strip()
        if id_prefix and value.lower().startswith(id_prefix.lower()):
            return cls.of_id(value)
        return cls.of_name(value)


class Customer(BoundaryModel):
    """Commerce customer record"""
    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    has_account: bool = False
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    group_ref: Optional[GroupRef] = None
    resolved_group: Optional[str] = None

    @model_validator(mode="after")
    def tag_group_ref(self, info: ValidationInfo) -> "Customer":
        if self.group_ref is None and "customer_group" in self.metadata:
            prefix = DEFAULT_GROUP_ID_PREFIX
            if info.context and "group_id_prefix" in info.context:
                prefix = info.context["group_id_prefix"]
            self.group_ref = GroupRef.from_metadata(self.metadata["customer_group"], prefix)
        return self

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or self.id


class CustomerGroup(BoundaryModel):
    id: str
    name: str = ""


class Product(BoundaryModel):
    """Catalog entry; only identity and title are read"""
    id: str
    title: str = ""


class ProductVariant(BoundaryModel):
    """Sellable variant with its parent product linkage"""
    id: str
    product_id: str
    product_title: str = ""
    title: str = ""
    sku: Optional[str] = None
    manage_inventory: bool = True
    inventory_quantity: int = 0

    @classmethod
    def _prepare(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        product = data.get("product")
        if isinstance(product, dict):
            data.setdefault("product_id", product.get("id"))
            if product.get("title") is not None:
                data.setdefault("product_title", product["title"])
        return data


class LocationLevel(BoundaryModel):
    location_id: Optional[str] = None
    stocked_quantity: int = 0


class InventoryItem(BoundaryModel):
    """Inventory item with per-location stock levels"""
    id: str
    sku: Optional[str] = None
    location_levels: List[LocationLevel] = Field(default_factory=list)

    @property
    def stocked_quantity(self) -> int:
        return sum(level.stocked_quantity for level in self.location_levels)


class PageEnvelope(BaseModel):
    """One page of a paginated collection"""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = Field(ge=0)
    offset: int = 0
    limit: Optional[int] = None
