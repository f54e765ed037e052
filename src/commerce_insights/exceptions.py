"""
Error Taxonomy

Typed errors surfaced by the ingestion layer. Every upstream failure aborts the
affected fetch; callers never receive partial collections.
"""

from typing import Any, Dict, Optional


class CommerceInsightsError(RuntimeError):
    """Base error with structured metadata."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "code": self.code,
            "status": self.status,
            "details": self.details,
        }


class UpstreamUnavailableError(CommerceInsightsError):
    """Upstream unreachable, timed out, or answered with a non-2xx status."""

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class MalformedResponseError(CommerceInsightsError):
    """Response body could not be parsed or failed schema validation."""


class FetchCancelledError(CommerceInsightsError):
    """A collection fetch observed its cancellation signal."""
