"""
Full-Collection Fetcher

Materializes complete snapshots of paginated commerce collections.

Pages are requested sequentially from offset 0 with a fixed page size; the
server-reported total is re-read after every page and the loop ends once the
offset reaches it. Any failed page aborts the whole fetch.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from commerce_insights.config import get_settings
from commerce_insights.exceptions import FetchCancelledError, MalformedResponseError
from commerce_insights.ingestion.client import CommerceClient, CollectionSpec, get_collection_spec
from commerce_insights.schemas.window import TimeWindow

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CancellationToken:
    """Cooperative cancellation signal checked before every page request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class FetchResult:
    """Complete snapshot of one collection as of fetch time"""
    collection: str
    items: List[Dict[str, Any]]
    total: int
    pages: int
    snapshot_started_at: datetime
    snapshot_completed_at: datetime
    duplicates_dropped: int = 0
    count_drift: bool = False
    window: Optional[Dict[str, Optional[str]]] = field(default=None)

    def parse(self, model_cls: Type[ModelT], context: Optional[Dict[str, Any]] = None) -> List[ModelT]:
        """Validate raw items against a boundary schema."""
        parsed: List[ModelT] = []
        for index, item in enumerate(self.items):
            try:
                parsed.append(model_cls.model_validate(item, context=context))
            except ValidationError as exc:
                raise MalformedResponseError(
                    f"Item {index} of '{self.collection}' failed validation.",
                    code="MALFORMED_ITEM",
                    details={
                        "collection": self.collection,
                        "id": item.get("id") if isinstance(item, dict) else None,
                        "errors": exc.errors(include_url=False),
                    },
                ) from exc
        return parsed

    def snapshot(self) -> Dict[str, Any]:
        """Fetch-time metadata reported alongside metrics derived from this result."""
        return {
            "snapshot_started_at": self.snapshot_started_at.isoformat(),
            "snapshot_completed_at": self.snapshot_completed_at.isoformat(),
            "count": self.total,
            "count_drift": self.count_drift,
            "duplicates_dropped": self.duplicates_dropped,
            "window": self.window,
        }

    def to_cache(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "items": self.items,
            "total": self.total,
            "pages": self.pages,
            "snapshot_started_at": self.snapshot_started_at.isoformat(),
            "snapshot_completed_at": self.snapshot_completed_at.isoformat(),
            "duplicates_dropped": self.duplicates_dropped,
            "count_drift": self.count_drift,
            "window": self.window,
        }

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "FetchResult":
        return cls(
            collection=data["collection"],
            items=data["items"],
            total=data["total"],
            pages=data["pages"],
            snapshot_started_at=datetime.fromisoformat(data["snapshot_started_at"]),
            snapshot_completed_at=datetime.fromisoformat(data["snapshot_completed_at"]),
            duplicates_dropped=data.get("duplicates_dropped", 0),
            count_drift=data.get("count_drift", False),
            window=data.get("window"),
        )


class CollectionFetcher:
    """
    Sequential offset/limit paginator over the commerce backend.

    Example:
        async with CommerceClient() as client:
            fetcher = CollectionFetcher(client)
            result = await fetcher.fetch_all("orders", TimeWindow.last_days(30))
    """

    def __init__(self, client: CommerceClient, page_size: Optional[int] = None):
        self.client = client
        self.page_size = page_size

    def _page_size_for(self, spec: CollectionSpec) -> int:
        if self.page_size:
            return self.page_size
        return spec.page_size or get_settings().commerce.page_size

    def _base_params(
        self,
        spec: CollectionSpec,
        window: Optional[TimeWindow],
        filters: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if spec.fields:
            params["fields"] = spec.fields
        if spec.order:
            params["order"] = spec.order
        if window is not None:
            if not spec.supports_window:
                raise ValueError(f"Collection '{spec.name}' cannot be filtered by creation window")
            params.update(window.to_query_params())
        if filters:
            params.update(filters)
        return params

    async def fetch_all(
        self,
        collection: str,
        window: Optional[TimeWindow] = None,
        *,
        cancel: Optional[CancellationToken] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> FetchResult:
        """
        Fetch every item of ``collection``.

        Args:
            collection: Registered collection name (orders, customers, ...)
            window: Optional creation-timestamp bounds
            cancel: Token checked before each page request
            filters: Extra query parameters passed through unchanged

        Returns:
            FetchResult with all items in server order

        Raises:
            UpstreamUnavailableError: A page could not be retrieved
            MalformedResponseError: A page body did not match the envelope
            FetchCancelledError: The token was set before a page request
        """
        spec = get_collection_spec(collection)
        page_size = self._page_size_for(spec)
        base_params = self._base_params(spec, window, filters)

        started_at = datetime.now(timezone.utc)
        items: List[Dict[str, Any]] = []
        seen_ids = set()
        duplicates = 0
        first_total: Optional[int] = None
        total = 0
        drift = False
        pages = 0
        offset = 0

        log = logger.bind(collection=collection, page_size=page_size)
        log.debug("Collection fetch started", window=window.cache_params() if window else None)

        while True:
            if cancel is not None and cancel.cancelled:
                log.info("Collection fetch cancelled", pages=pages, offset=offset)
                raise FetchCancelledError(
                    f"Fetch of '{collection}' was cancelled.",
                    code="CANCELLED",
                    details={"collection": collection, "pages": pages, "offset": offset},
                )

            params = {**base_params, "limit": page_size, "offset": offset}
            page = await self.client.get_page(spec, params)
            pages += 1

            for item in page.items:
                item_id = item.get("id")
                if item_id is not None:
                    if item_id in seen_ids:
                        duplicates += 1
                        continue
                    seen_ids.add(item_id)
                items.append(item)

            total = page.count
            if first_total is None:
                first_total = total
            elif total != first_total:
                drift = True

            offset += page_size
            if offset >= total:
                break

        if drift:
            log.warning("Collection count drifted during fetch", first_count=first_total, final_count=total)
        if duplicates:
            log.warning("Dropped duplicate items", duplicates=duplicates)

        result = FetchResult(
            collection=collection,
            items=items,
            total=total,
            pages=pages,
            snapshot_started_at=started_at,
            snapshot_completed_at=datetime.now(timezone.utc),
            duplicates_dropped=duplicates,
            count_drift=drift,
            window=window.cache_params() if window else None,
        )
        log.info("Collection fetch completed", items=len(items), total=total, pages=pages)
        return result
