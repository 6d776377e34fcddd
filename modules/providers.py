"""Static provider table for stock-media URL recognition.

Each entry lists the domains a provider serves from and an ordered list of
id extraction patterns, most specific first. Adding a provider means
appending an entry here; the parser's control flow never changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Pattern, Tuple

from models.identifier import SiteKey

# Bump whenever an entry is added or a pattern changes.
PROVIDER_TABLE_VERSION = 3


@dataclass(frozen=True)
class ProviderEntry:
    """Recognition rules for one provider."""

    site: SiteKey
    domains: Tuple[str, ...]
    id_patterns: Tuple[Pattern, ...]
    sample_url: str
    """Known-good URL whose id the patterns must extract."""

    def matches_host(self, hostname: str) -> bool:
        """Exact domain or any subdomain of a listed domain."""
        hostname = hostname.lower().rstrip(".")
        return any(
            hostname == domain or hostname.endswith("." + domain)
            for domain in self.domains
        )

    def extract_id(self, url: str) -> Optional[str]:
        """Apply patterns in order; first non-empty capture wins."""
        for pattern in self.id_patterns:
            match = pattern.search(url)
            if match and match.group(1):
                return match.group(1)
        return None


def _entry(site: SiteKey, domains: Tuple[str, ...], patterns: Tuple[str, ...], sample_url: str) -> ProviderEntry:
    return ProviderEntry(
        site=site,
        domains=domains,
        id_patterns=tuple(re.compile(p) for p in patterns),
        sample_url=sample_url,
    )


PROVIDERS: Tuple[ProviderEntry, ...] = (
    _entry(
        SiteKey.SHUTTERSTOCK,
        ("shutterstock.com", "www.shutterstock.com"),
        (
            r"shutterstock\.com/(?:[a-z]{2}/)?(?:image-photo|image-vector|image-illustration"
            r"|image-generated|editorial|video/clip)/[^?#]*?-(\d+)(?:[/?#]|$)",
            r"shutterstock\.com/[^?#]*?(\d{4,})",
        ),
        "https://www.shutterstock.com/image-photo/sample-123456",
    ),
    _entry(
        SiteKey.ISTOCKPHOTO,
        ("istockphoto.com", "www.istockphoto.com"),
        (
            r"istockphoto\.com/[^?#]*?gm(\d+)",
            r"istockphoto\.com/[^?#]*?(\d+)/?(?:[?#]|$)",
        ),
        "https://www.istockphoto.com/photo/mountain-lake-at-sunrise-gm1234567890-362412",
    ),
    _entry(
        SiteKey.ADOBESTOCK,
        ("stock.adobe.com", "adobe.com"),
        (
            r"stock\.adobe\.com/(?:[a-z]{2}/)?(?:images|video|templates|3d-assets)/[^?#]*/(\d+)",
            r"adobe\.com/[^?#]*?(\d{5,})",
        ),
        "https://stock.adobe.com/images/sunset-over-the-sea/123456789",
    ),
    _entry(
        SiteKey.DREAMSTIME,
        ("dreamstime.com", "www.dreamstime.com"),
        (
            r"dreamstime\.com/[^?#]*?image(\d+)",
            r"dreamstime\.com/[^?#]*?(\d+)",
        ),
        "https://www.dreamstime.com/stock-photo-red-apple-image12345678",
    ),
    _entry(
        SiteKey.ALAMY,
        ("alamy.com", "www.alamy.com"),
        (
            r"alamy\.com/[^?#]*?-([A-Z0-9]{6,})\.html",
            r"alamy\.com/[^?#]*?([A-Z0-9]{6,})",
        ),
        "https://www.alamy.com/stock-photo-london-skyline-at-night-2ABCD12.html",
    ),
    _entry(
        SiteKey.FREEPIK,
        ("freepik.com", "www.freepik.com"),
        (
            r"freepik\.com/[^?#]*?_(\d+)\.htm",
            r"freepik\.com/[^?#]*?(\d+)",
        ),
        "https://www.freepik.com/free-photo/coffee-cup-on-table_12345678.htm",
    ),
    _entry(
        SiteKey.UNSPLASH,
        ("unsplash.com", "www.unsplash.com"),
        (
            r"unsplash\.com/photos/([a-zA-Z0-9_-]+)",
            r"unsplash\.com/[^?#]*?/([a-zA-Z0-9_-]+)$",
        ),
        "https://unsplash.com/photos/AbCdEfGhIjK",
    ),
    _entry(
        SiteKey.PEXELS,
        ("pexels.com", "www.pexels.com"),
        (
            r"pexels\.com/(?:[a-z]{2}-[a-z]{2}/)?(?:photo|video)/[^?#]*?(\d+)/?(?:[?#]|$)",
            r"pexels\.com/[^?#]*?(\d+)",
        ),
        "https://www.pexels.com/photo/green-leaves-1072179/",
    ),
    _entry(
        SiteKey.PIXABAY,
        ("pixabay.com", "www.pixabay.com"),
        (
            r"pixabay\.com/[^?#]*?-(\d+)/?(?:[?#]|$)",
            r"pixabay\.com/[^?#]*?(\d+)",
        ),
        "https://pixabay.com/photos/tree-sunset-nature-736885/",
    ),
    _entry(
        SiteKey.GETTYIMAGES,
        ("gettyimages.com", "www.gettyimages.com"),
        (
            r"gettyimages\.com/detail/[^?#]*/(\d+)",
            r"gettyimages\.com/[^?#]*?(\d+)",
        ),
        "https://www.gettyimages.com/detail/photo/city-skyline-royalty-free-image/1234567890",
    ),
)

PROVIDERS_BY_SITE: Dict[SiteKey, ProviderEntry] = {entry.site: entry for entry in PROVIDERS}


def find_provider_for_host(hostname: str) -> Optional[ProviderEntry]:
    """First provider whose domains cover hostname, or None."""
    for entry in PROVIDERS:
        if entry.matches_host(hostname):
            return entry
    return None
