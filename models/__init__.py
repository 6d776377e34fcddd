"""
Data models for StockOrderWeb.

This module contains immutable dataclasses for:
- ParsedIdentifier: One normalized line of user input
- SiteConfig: Provider availability and pricing
- OrderJob: Snapshot of an orchestrated order or AI generation job
- Upstream views: StatusReport, DownloadRef, SearchResult, Credits

All dataclasses are designed for thread safety:
- Every model is frozen (immutable) for safe passing between threads
- Job transitions produce new OrderJob snapshots instead of mutating
"""

from .identifier import ParsedIdentifier, SiteConfig, SiteKey
from .order_job import AIPrompt, JobKind, JobState, OrderJob
from .upstream import Credits, DownloadRef, SearchResult, StatusReport, UpstreamState

__all__ = [
    # Identifier models
    "ParsedIdentifier",
    "SiteConfig",
    "SiteKey",
    # Job models
    "AIPrompt",
    "JobKind",
    "JobState",
    "OrderJob",
    # Upstream models
    "Credits",
    "DownloadRef",
    "SearchResult",
    "StatusReport",
    "UpstreamState",
]
