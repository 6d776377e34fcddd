"""
Input parser for stock identifiers.

Normalizes heterogeneous user input into (site, id) pairs:
    - Provider URLs     https://www.shutterstock.com/image-photo/sample-123456
    - Bare numeric ids  123456            (default provider, configurable)
    - site:id tokens    istockphoto:1234567890

Parsing is pure: no I/O, no shared mutable state. Every line yields a
ParsedIdentifier, valid or not, so batch callers can report per line.

Usage:
    results = parse_batch(text, default_site=SiteKey.SHUTTERSTOCK)
    results = apply_site_configs(results, site_config_service.get_configs())
    stats = get_input_stats(results)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlsplit

from core.exceptions import ErrorKind
from models.identifier import ParsedIdentifier, SiteConfig, SiteKey
from modules.providers import PROVIDERS, find_provider_for_host

URL_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
NUMERIC_ID_RE = re.compile(r"^\d+$")
SITE_ID_TOKEN_RE = re.compile(r"^([A-Za-z]+):(.+)$", re.DOTALL)

DEFAULT_SITE = SiteKey.SHUTTERSTOCK


@dataclass(frozen=True)
class InputStats:
    """Summary counts for a parsed batch."""

    total: int
    valid: int
    invalid: int
    site_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "site_breakdown": dict(self.site_breakdown),
        }


def parse(raw: str, default_site: Optional[SiteKey] = DEFAULT_SITE) -> ParsedIdentifier:
    """
    Classify and normalize one line of input.

    Classification order (first match wins): URL form, bare numeric id,
    site:id token, otherwise UnrecognizedFormat.

    Args:
        raw: Input as typed by the user
        default_site: Provider assumed for bare numeric ids; None disables
            the heuristic

    Returns:
        ParsedIdentifier whose raw field is the unmodified input
    """
    trimmed = raw.strip()

    if URL_SCHEME_RE.match(trimmed):
        return _parse_url(raw, trimmed)

    if default_site is not None and NUMERIC_ID_RE.match(trimmed):
        return ParsedIdentifier(raw=raw, site=default_site, id=trimmed, valid=True)

    token = SITE_ID_TOKEN_RE.match(trimmed)
    if token:
        return _parse_site_token(raw, token.group(1), token.group(2))

    return ParsedIdentifier(raw=raw, error=ErrorKind.UNRECOGNIZED_FORMAT)


def parse_batch(text: str, default_site: Optional[SiteKey] = DEFAULT_SITE) -> List[ParsedIdentifier]:
    """
    Parse multi-line input, skipping blank lines.

    Each line is parsed independently; a bad line never affects another.
    """
    return [
        parse(line, default_site=default_site)
        for line in text.splitlines()
        if line.strip()
    ]


def apply_site_configs(
    results: Iterable[ParsedIdentifier],
    site_configs: Optional[Mapping[SiteKey, SiteConfig]],
) -> List[ParsedIdentifier]:
    """
    Downgrade valid entries whose site is missing or inactive.

    An empty or missing mapping means configuration has not been loaded
    and no gating is applied.
    """
    results = list(results)
    if not site_configs:
        return results

    filtered = []
    for result in results:
        if result.valid and not is_site_active(result.site, site_configs):
            filtered.append(result.downgrade(ErrorKind.SITE_INACTIVE))
        else:
            filtered.append(result)
    return filtered


def is_site_active(site: Optional[SiteKey], site_configs: Mapping[SiteKey, SiteConfig]) -> bool:
    """True when site has a config marked active."""
    if site is None:
        return False
    config = site_configs.get(site)
    return bool(config and config.active)


def get_input_stats(results: Iterable[ParsedIdentifier]) -> InputStats:
    """Count valid/invalid entries and valid entries per site."""
    results = list(results)
    valid = [r for r in results if r.valid]

    breakdown: Dict[str, int] = {}
    for result in valid:
        if result.site:
            breakdown[result.site.value] = breakdown.get(result.site.value, 0) + 1

    return InputStats(
        total=len(results),
        valid=len(valid),
        invalid=len(results) - len(valid),
        site_breakdown=breakdown,
    )


def is_supported_site(name: str) -> bool:
    return SiteKey.lookup(name) is not None


def get_supported_sites() -> List[str]:
    return [entry.site.value for entry in PROVIDERS]


def _parse_url(raw: str, url: str) -> ParsedIdentifier:
    try:
        hostname = urlsplit(url).hostname or ""
    except ValueError:
        hostname = ""

    provider = find_provider_for_host(hostname) if hostname else None
    if provider is None:
        return ParsedIdentifier(raw=raw, source_url=url, error=ErrorKind.UNSUPPORTED_SITE)

    stock_id = provider.extract_id(url)
    if not stock_id:
        return ParsedIdentifier(
            raw=raw,
            site=provider.site,
            source_url=url,
            error=ErrorKind.ID_EXTRACTION_FAILED,
        )

    return ParsedIdentifier(
        raw=raw,
        site=provider.site,
        id=stock_id,
        source_url=url,
        valid=True,
    )


def _parse_site_token(raw: str, prefix: str, remainder: str) -> ParsedIdentifier:
    site = SiteKey.lookup(prefix)
    if site is None:
        return ParsedIdentifier(raw=raw, error=ErrorKind.UNSUPPORTED_SITE)

    stock_id = remainder.strip()
    if not stock_id:
        return ParsedIdentifier(raw=raw, site=site, error=ErrorKind.ID_EXTRACTION_FAILED)

    return ParsedIdentifier(raw=raw, site=site, id=stock_id, valid=True)
