"""
Unit tests for the input parser and provider table.

Covers URL, numeric and site:id forms, batch handling, site gating and
batch statistics.
"""

from decimal import Decimal

import pytest

from core.exceptions import ErrorKind
from models.identifier import ParsedIdentifier, SiteConfig, SiteKey
from modules.input_parser import (
    apply_site_configs,
    get_input_stats,
    get_supported_sites,
    is_supported_site,
    parse,
    parse_batch,
)
from modules.providers import PROVIDERS, PROVIDERS_BY_SITE, find_provider_for_host


# Fixtures

@pytest.fixture
def site_configs():
    """Shutterstock active, iStock inactive, nothing else configured."""
    return {
        SiteKey.SHUTTERSTOCK: SiteConfig(SiteKey.SHUTTERSTOCK, True, Decimal("0.50")),
        SiteKey.ISTOCKPHOTO: SiteConfig(SiteKey.ISTOCKPHOTO, False, Decimal("1.00")),
    }


SAMPLE_INPUTS = [
    "123456",
    "  987654  ",
    "istockphoto:1234567890",
    "Adobestock: 55555",
    "https://www.shutterstock.com/image-photo/sample-123456",
    "https://www.shutterstock.com/",
    "https://example.com/photo/123",
    "foo:123",
    "hello world",
]


class TestParseForms:
    """Classification of single inputs."""

    def test_bare_numeric_uses_default_site(self):
        result = parse("123456")
        assert result.valid is True
        assert result.site is SiteKey.SHUTTERSTOCK
        assert result.id == "123456"
        assert result.error is None

    def test_bare_numeric_with_custom_default(self):
        result = parse("42", default_site=SiteKey.DREAMSTIME)
        assert result.site is SiteKey.DREAMSTIME
        assert result.id == "42"

    def test_bare_numeric_without_default_is_unrecognized(self):
        result = parse("123456", default_site=None)
        assert result.valid is False
        assert result.error is ErrorKind.UNRECOGNIZED_FORMAT

    def test_raw_is_kept_untrimmed(self):
        result = parse("  987654  ")
        assert result.raw == "  987654  "
        assert result.id == "987654"

    def test_site_token(self):
        result = parse("istockphoto:1234567890")
        assert result.valid is True
        assert result.site is SiteKey.ISTOCKPHOTO
        assert result.id == "1234567890"

    def test_site_token_is_case_insensitive_and_trims_id(self):
        result = parse("Adobestock: 55555")
        assert result.site is SiteKey.ADOBESTOCK
        assert result.id == "55555"

    def test_unknown_site_token(self):
        result = parse("foo:123")
        assert result.valid is False
        assert result.error is ErrorKind.UNSUPPORTED_SITE

    def test_unsupported_url(self):
        result = parse("https://example.com/photo/123")
        assert result.valid is False
        assert result.error is ErrorKind.UNSUPPORTED_SITE
        assert result.source_url == "https://example.com/photo/123"

    def test_known_host_without_id(self):
        result = parse("https://www.shutterstock.com/")
        assert result.valid is False
        assert result.error is ErrorKind.ID_EXTRACTION_FAILED
        assert result.site is SiteKey.SHUTTERSTOCK

    def test_subdomain_url_is_recognized(self):
        result = parse("https://de.shutterstock.com/image-photo/sample-7654321")
        assert result.site is SiteKey.SHUTTERSTOCK
        assert result.id == "7654321"

    def test_free_text_is_unrecognized(self):
        result = parse("hello world")
        assert result.valid is False
        assert result.error is ErrorKind.UNRECOGNIZED_FORMAT

    def test_url_keeps_source(self):
        url = "https://www.shutterstock.com/image-photo/sample-123456"
        result = parse(url)
        assert result.valid is True
        assert result.source_url == url

    @pytest.mark.parametrize("raw", SAMPLE_INPUTS)
    def test_parse_is_idempotent(self, raw):
        first = parse(raw)
        assert parse(first.raw) == first


class TestProviderTable:
    """Every provider's sample URL must round-trip through the parser."""

    @pytest.mark.parametrize("entry", PROVIDERS, ids=lambda entry: entry.site.value)
    def test_sample_url_round_trip(self, entry):
        result = parse(entry.sample_url)
        assert result.valid is True
        assert result.site is entry.site
        assert result.id == entry.extract_id(entry.sample_url)

    def test_known_sample_ids(self):
        assert parse(PROVIDERS_BY_SITE[SiteKey.SHUTTERSTOCK].sample_url).id == "123456"
        assert parse(PROVIDERS_BY_SITE[SiteKey.ISTOCKPHOTO].sample_url).id == "1234567890"
        assert parse(PROVIDERS_BY_SITE[SiteKey.ALAMY].sample_url).id == "2ABCD12"
        assert parse(PROVIDERS_BY_SITE[SiteKey.PEXELS].sample_url).id == "1072179"
        assert parse(PROVIDERS_BY_SITE[SiteKey.UNSPLASH].sample_url).id == "AbCdEfGhIjK"

    def test_every_site_has_a_provider(self):
        assert set(PROVIDERS_BY_SITE) == set(SiteKey)

    def test_host_matching(self):
        assert find_provider_for_host("stock.adobe.com").site is SiteKey.ADOBESTOCK
        assert find_provider_for_host("WWW.PEXELS.COM").site is SiteKey.PEXELS
        assert find_provider_for_host("notshutterstock.com") is None

    def test_supported_sites(self):
        assert is_supported_site("Shutterstock") is True
        assert is_supported_site("flickr") is False
        assert "gettyimages" in get_supported_sites()


class TestParseBatch:
    """Multi-line input."""

    def test_blank_lines_are_skipped(self):
        results = parse_batch("123456\n\n   \nistockphoto:42\n")
        assert [r.raw for r in results] == ["123456", "istockphoto:42"]

    def test_bad_line_does_not_affect_others(self):
        results = parse_batch("123456\nhello world\nfoo:1\nistockphoto:42")
        assert [r.valid for r in results] == [True, False, False, True]
        assert results[1].error is ErrorKind.UNRECOGNIZED_FORMAT
        assert results[2].error is ErrorKind.UNSUPPORTED_SITE

    def test_windows_line_endings(self):
        results = parse_batch("1\r\n2\r\n")
        assert [r.id for r in results] == ["1", "2"]

    def test_empty_text(self):
        assert parse_batch("") == []


class TestSiteGating:
    """apply_site_configs downgrades inactive or unknown sites."""

    def test_inactive_site_is_downgraded(self, site_configs):
        results = apply_site_configs(parse_batch("123456\nistockphoto:42"), site_configs)
        assert results[0].valid is True
        assert results[1].valid is False
        assert results[1].error is ErrorKind.SITE_INACTIVE
        assert results[1].site is SiteKey.ISTOCKPHOTO
        assert results[1].id == "42"

    def test_unconfigured_site_is_downgraded(self, site_configs):
        results = apply_site_configs([parse("adobestock:1")], site_configs)
        assert results[0].error is ErrorKind.SITE_INACTIVE

    def test_invalid_entries_keep_their_error(self, site_configs):
        results = apply_site_configs([parse("hello world")], site_configs)
        assert results[0].error is ErrorKind.UNRECOGNIZED_FORMAT

    @pytest.mark.parametrize("configs", [None, {}])
    def test_no_configs_means_no_gating(self, configs):
        results = apply_site_configs([parse("istockphoto:42")], configs)
        assert results[0].valid is True


class TestInputStats:

    def test_counts_and_breakdown(self):
        results = parse_batch("1\n2\nistockphoto:3\nnope")
        stats = get_input_stats(results)
        assert stats.total == 4
        assert stats.valid == 3
        assert stats.invalid == 1
        assert stats.site_breakdown == {"shutterstock": 2, "istockphoto": 1}

    def test_to_dict(self):
        stats = get_input_stats([ParsedIdentifier(raw="x", error=ErrorKind.UNRECOGNIZED_FORMAT)])
        assert stats.to_dict() == {"total": 1, "valid": 0, "invalid": 1, "site_breakdown": {}}
