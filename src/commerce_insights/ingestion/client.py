"""
Upstream HTTP Clients

Async JSON clients for the commerce backend and its collaborators.

Features:
- Shared httpx connection pool per client context
- Bounded retry with exponential backoff for idempotent GETs
- Typed errors for unreachable upstreams and malformed bodies
- Page envelope validation for paginated collections
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from commerce_insights.config import get_settings
from commerce_insights.exceptions import MalformedResponseError, UpstreamUnavailableError
from commerce_insights.schemas.commerce import PageEnvelope

logger = structlog.get_logger(__name__)

ORDER_FIELDS = (
    "id,customer_id,email,total,subtotal,currency_code,status,payment_status,"
    "fulfillment_status,created_at,display_id,*items,shipping_address.phone"
)


@dataclass(frozen=True)
class CollectionSpec:
    """How a paginated collection is addressed on the commerce backend"""
    name: str
    path: str
    items_key: str
    fields: Optional[str] = None
    order: Optional[str] = None
    supports_window: bool = False
    page_size: Optional[int] = None


COLLECTIONS: Dict[str, CollectionSpec] = {
    "orders": CollectionSpec(
        name="orders",
        path="/admin/orders",
        items_key="orders",
        fields=ORDER_FIELDS,
        order="-created_at",
        supports_window=True,
    ),
    "customers": CollectionSpec(
        name="customers",
        path="/admin/customers",
        items_key="customers",
        order="-created_at",
        supports_window=True,
    ),
    "customer_groups": CollectionSpec(
        name="customer_groups",
        path="/admin/customer-groups",
        items_key="customer_groups",
        fields="id,name",
    ),
    "products": CollectionSpec(
        name="products",
        path="/admin/products",
        items_key="products",
        fields="id,title",
        page_size=50,
    ),
    "product_variants": CollectionSpec(
        name="product_variants",
        path="/admin/product-variants",
        items_key="variants",
        fields="id,title,sku,manage_inventory,inventory_quantity,product_id,*product",
        page_size=50,
    ),
    "inventory_items": CollectionSpec(
        name="inventory_items",
        path="/admin/inventory-items",
        items_key="inventory_items",
        fields="id,sku,*location_levels",
    ),
}


def get_collection_spec(name: str) -> CollectionSpec:
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown collection '{name}'. Known: {sorted(COLLECTIONS)}") from None


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamUnavailableError) and exc.retryable


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying upstream request",
        attempt=retry_state.attempt_number,
        error=str(exc),
        code=getattr(exc, "code", None),
    )


class UpstreamClient:
    """
    Base async JSON client.

    Must be entered as an async context manager; the underlying
    ``httpx.AsyncClient`` lives for the duration of the context.

    Example:
        async with CommerceClient() as client:
            page = await client.get_page(get_collection_spec("orders"), {"limit": 100})
    """

    service_name = "upstream"

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff_min: float = 0.5,
        retry_backoff_max: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.headers = headers or {}
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff_min = retry_backoff_min
        self.retry_backoff_max = retry_backoff_max
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "UpstreamClient":
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(min=self.retry_backoff_min, max=self.retry_backoff_max),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and decode JSON, retrying transient failures."""
        payload: Any = None
        async for attempt in self._retrying():
            with attempt:
                payload = await self._request_json(path, params)
        return payload

    async def _request_json(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        if self._http is None:
            raise RuntimeError("Client not entered as context manager")

        details = {"service": self.service_name, "path": path, "params": params or {}}
        try:
            response = await self._http.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(
                f"{self.service_name} request timed out.",
                code="TIMEOUT",
                details=details,
            ) from exc
        except httpx.TransportError as exc:
            logger.error("Upstream transport error", service=self.service_name, path=path, error=str(exc))
            raise UpstreamUnavailableError(
                f"{self.service_name} request failed due to a network error.",
                code="NETWORK_ERROR",
                details={**details, "error": str(exc)},
            ) from exc

        if response.status_code >= 400:
            raise UpstreamUnavailableError(
                f"{self.service_name} request failed with HTTP {response.status_code}.",
                code="HTTP_ERROR",
                status=response.status_code,
                details={**details, "body": response.text[:500]},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{self.service_name} returned a body that is not valid JSON.",
                code="MALFORMED_BODY",
                status=response.status_code,
                details=details,
            ) from exc


class CommerceClient(UpstreamClient):
    """Client for the commerce backend admin API."""

    service_name = "commerce"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, **overrides: Any):
        commerce = get_settings().commerce
        headers = {"Accept": "application/json"}
        token = overrides.pop("api_token", None) or (
            commerce.api_token.get_secret_value() if commerce.api_token else None
        )
        if token:
            headers["Authorization"] = f"Bearer {token}"

        super().__init__(
            overrides.pop("base_url", commerce.base_url),
            headers=headers,
            timeout=overrides.pop("timeout", commerce.request_timeout),
            retry_attempts=overrides.pop("retry_attempts", commerce.retry_attempts),
            retry_backoff_min=overrides.pop("retry_backoff_min", commerce.retry_backoff_min),
            retry_backoff_max=overrides.pop("retry_backoff_max", commerce.retry_backoff_max),
            transport=transport,
        )
        if overrides:
            raise TypeError(f"Unexpected client options: {sorted(overrides)}")

    async def get_page(self, spec: CollectionSpec, params: Dict[str, Any]) -> PageEnvelope:
        """Fetch one page of ``spec`` and validate its envelope."""
        payload = await self.get_json(spec.path, params)
        return parse_page(payload, spec)


def parse_page(payload: Any, spec: CollectionSpec) -> PageEnvelope:
    """Validate a page body; the resource-named key is accepted in place of ``items``."""
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"Page of '{spec.name}' is not a JSON object.",
            code="MALFORMED_PAGE",
            details={"collection": spec.name},
        )
    data = dict(payload)
    if "items" not in data and spec.items_key in data:
        data["items"] = data.pop(spec.items_key)
    try:
        return PageEnvelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Page of '{spec.name}' does not match the collection envelope.",
            code="MALFORMED_PAGE",
            details={"collection": spec.name, "errors": exc.errors(include_url=False)},
        ) from exc
