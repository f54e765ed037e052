"""
Ingestion Module

Upstream clients and the full-collection fetcher.
"""
from .client import COLLECTIONS, CollectionSpec, CommerceClient, UpstreamClient, get_collection_spec
from .collaborators import EventAnalyticsClient, SessionAnalyticsClient
from .fetcher import CancellationToken, CollectionFetcher, FetchResult

__all__ = [
    "COLLECTIONS",
    "CollectionSpec",
    "CommerceClient",
    "UpstreamClient",
    "get_collection_spec",
    "EventAnalyticsClient",
    "SessionAnalyticsClient",
    "CancellationToken",
    "CollectionFetcher",
    "FetchResult",
]
