"""
Identifier data models.

These models represent normalized user input as it flows from the input
parser to order submission.

Thread Safety:
    - All classes here are frozen dataclasses (immutable)
    - Safe to share between request handlers and job threads without locks
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import ErrorKind


class SiteKey(Enum):
    """
    Stock-media providers the parser recognizes.

    Values double as the upstream site_id.
    """

    SHUTTERSTOCK = "shutterstock"
    ISTOCKPHOTO = "istockphoto"
    ADOBESTOCK = "adobestock"
    DREAMSTIME = "dreamstime"
    ALAMY = "alamy"
    FREEPIK = "freepik"
    UNSPLASH = "unsplash"
    PEXELS = "pexels"
    PIXABAY = "pixabay"
    GETTYIMAGES = "gettyimages"

    @classmethod
    def lookup(cls, name: str) -> Optional["SiteKey"]:
        """Case-insensitive lookup; None if the name is not a provider."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class ParsedIdentifier:
    """
    Result of parsing one line of user input.

    Produced once by the input parser and consumed once by submission.
    A parse that fails still yields an instance (valid=False) so batches can
    report every line.
    """

    raw: str
    """Input exactly as given (not trimmed), so re-parsing is reproducible."""

    site: Optional[SiteKey] = None
    """Provider, populated even for IdExtractionFailed to aid diagnostics."""

    id: str = ""
    """Provider-specific stock id."""

    source_url: Optional[str] = None
    """Original URL when the input was in URL form."""

    valid: bool = False
    """True only when site and id are both known."""

    error: Optional[ErrorKind] = None
    """Parse error kind when valid is False."""

    def downgrade(self, kind: ErrorKind) -> "ParsedIdentifier":
        """
        Return an invalid copy that keeps site, id and URL for display.

        Used by post-parse filtering (e.g. SiteInactive).
        """
        return replace(self, valid=False, error=kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "raw": self.raw,
            "site": self.site.value if self.site else None,
            "id": self.id,
            "source_url": self.source_url,
            "valid": self.valid,
            "error": self.error.value if self.error else None,
        }


@dataclass(frozen=True)
class SiteConfig:
    """
    Per-provider availability and pricing.

    Owned by the external configuration collaborator; the core only reads
    it to gate submission.
    """

    site: SiteKey
    active: bool
    unit_price: Decimal = Decimal("0")
    name: str = ""

    @classmethod
    def from_api_data(cls, site: SiteKey, data: Dict[str, Any]) -> "SiteConfig":
        """
        Create from one entry of the /stocksites response.

        Args:
            site: Provider key the entry belongs to
            data: Dict with 'active' and 'price' (and optionally 'name')
        """
        return cls(
            site=site,
            active=bool(data.get("active", False)),
            unit_price=Decimal(str(data.get("price", 0))),
            name=data.get("name", "") or site.value,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "site": self.site.value,
            "active": self.active,
            "unit_price": str(self.unit_price),
            "name": self.name,
        }
