"""
Collaborator Clients

Read-only clients for the two analytics collaborators whose counts feed the
funnel and the conversion correlator:

- Event analytics service: event totals and per-product interactions
- Session analytics platform: top-of-funnel session overview
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from commerce_insights.config import get_settings
from commerce_insights.exceptions import MalformedResponseError
from commerce_insights.ingestion.client import UpstreamClient
from commerce_insights.schemas.events import (
    EventStats,
    ProductInteraction,
    ProductInteractionStats,
    SessionOverview,
)
from commerce_insights.schemas.window import TimeWindow

logger = structlog.get_logger(__name__)


def _validate(model_cls, payload: Any, service: str, path: str):
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"{service} response from {path} does not match the expected schema.",
            code="MALFORMED_BODY",
            details={"service": service, "path": path, "errors": exc.errors(include_url=False)},
        ) from exc


class EventAnalyticsClient(UpstreamClient):
    """
    Client for the on-site event tracker statistics API.

    The service authenticates with an ``X-API-Key`` header and filters events
    with ``from <= timestamp < to``.
    """

    service_name = "event_analytics"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, **overrides: Any):
        settings = get_settings()
        events = settings.events
        api_key = overrides.pop("api_key", None) or events.api_key.get_secret_value()
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self.product_limit = overrides.pop("product_limit", events.product_limit)

        super().__init__(
            overrides.pop("base_url", events.api_url),
            headers=headers,
            timeout=overrides.pop("timeout", events.timeout),
            retry_attempts=settings.commerce.retry_attempts,
            retry_backoff_min=settings.commerce.retry_backoff_min,
            retry_backoff_max=settings.commerce.retry_backoff_max,
            transport=transport,
        )

    async def get_event_stats(self, window: TimeWindow) -> EventStats:
        """Event totals by type, source and day for ``window``."""
        payload = await self.get_json("/api/stats", window.to_date_params())
        stats = _validate(EventStats, payload, self.service_name, "/api/stats")
        logger.debug("Event stats fetched", total_events=stats.total_events, types=len(stats.by_type))
        return stats

    async def get_funnel_counts(self, window: TimeWindow, page_url: Optional[str] = None) -> Dict[str, int]:
        """Raw per-event funnel counts, optionally restricted to one page."""
        params: Dict[str, Any] = window.to_date_params()
        if page_url:
            params["page_url"] = page_url
        payload = await self.get_json("/api/stats/funnel", params)
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                "event_analytics funnel response is not a JSON object.",
                code="MALFORMED_BODY",
                details={"service": self.service_name, "path": "/api/stats/funnel"},
            )
        steps = payload.get("funnel", payload)
        if isinstance(steps, list):
            # [{"step": "product.viewed", "count": 120}, ...]
            return {
                str(entry["step"]): int(entry.get("count") or 0)
                for entry in steps
                if isinstance(entry, dict) and entry.get("step")
            }
        if not isinstance(steps, dict):
            raise MalformedResponseError(
                "event_analytics funnel response has no step counts.",
                code="MALFORMED_BODY",
                details={"service": self.service_name, "path": "/api/stats/funnel"},
            )
        return {str(name): int(value or 0) for name, value in steps.items() if isinstance(value, (int, float))}

    async def get_product_interactions(
        self,
        window: TimeWindow,
        limit: Optional[int] = None,
        page_url: Optional[str] = None,
    ) -> List[ProductInteraction]:
        """Per-product views, clicks and add-to-cart counts."""
        params: Dict[str, Any] = {**window.to_date_params(), "limit": limit or self.product_limit}
        if page_url:
            params["page_url"] = page_url
        payload = await self.get_json("/api/stats/products", params)
        stats = _validate(ProductInteractionStats, payload, self.service_name, "/api/stats/products")
        return stats.products


class SessionAnalyticsClient(UpstreamClient):
    """Client for the session analytics overview report."""

    service_name = "session_analytics"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, **overrides: Any):
        settings = get_settings()
        session = settings.session_analytics
        self.report_path = overrides.pop("report_path", session.report_path)

        super().__init__(
            overrides.pop("base_url", session.base_url),
            headers={"Accept": "application/json"},
            timeout=overrides.pop("timeout", session.timeout),
            retry_attempts=settings.commerce.retry_attempts,
            retry_backoff_min=settings.commerce.retry_backoff_min,
            retry_backoff_max=settings.commerce.retry_backoff_max,
            transport=transport,
        )

    async def get_overview(self, window: TimeWindow) -> Optional[SessionOverview]:
        """
        Session overview for ``window``.

        Returns None when the platform has no report for the period.
        """
        if not window.is_bounded:
            raise ValueError("Session analytics require a bounded window")
        params = {
            "type": "overview",
            "startDate": window.start.date().isoformat(),
            "endDate": window.end.date().isoformat(),
        }
        payload = await self.get_json(self.report_path, params)
        if payload is None:
            logger.info("Session analytics returned no report", **params)
            return None
        return _validate(SessionOverview, payload, self.service_name, self.report_path)
