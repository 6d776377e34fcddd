"""
Upstream response models.

Typed views over the JSON returned by the fulfillment API. The client
builds these; the orchestrator and routes consume them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class UpstreamState(Enum):
    """
    Coarse status of an upstream order or generation job.

    The upstream uses several spellings; from_status() folds them.
    """

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"

    @classmethod
    def from_status(cls, status: Optional[str]) -> "UpstreamState":
        """
        Map an upstream status string to a coarse state.

        Unknown strings count as PENDING; the poll budget bounds how long
        an unrecognized status can keep a job alive.
        """
        normalized = (status or "").strip().lower()
        if normalized in _READY_STATUSES:
            return cls.READY
        if normalized in _FAILED_STATUSES:
            return cls.FAILED
        return cls.PENDING


_READY_STATUSES = frozenset({"ready", "completed", "complete", "done", "success"})
_FAILED_STATUSES = frozenset({"error", "failed", "failure", "cancelled", "canceled", "expired"})


@dataclass(frozen=True)
class DownloadRef:
    """Where the finished file can be fetched."""

    url: str
    file_name: str = ""
    expires_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "url": self.url,
            "file_name": self.file_name,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True)
class StatusReport:
    """One observation of an order or AI job status."""

    state: UpstreamState
    raw_status: str = ""
    progress: Optional[int] = None
    download_url: Optional[str] = None
    file_name: str = ""
    message: str = ""

    @property
    def download(self) -> Optional[DownloadRef]:
        """DownloadRef if the status already carries a link."""
        if self.download_url:
            return DownloadRef(url=self.download_url, file_name=self.file_name)
        return None


@dataclass(frozen=True)
class SearchResult:
    """A page of stock search results."""

    results: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": list(self.results),
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "has_more": self.has_more,
        }


@dataclass(frozen=True)
class Credits:
    """Account credit balance."""

    balance: Decimal
    username: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"balance": str(self.balance), "username": self.username}
