"""
Unit tests for BatchEstimator quotes.
"""

from decimal import Decimal

import pytest

from models.identifier import SiteConfig, SiteKey
from modules.estimator import BatchEstimator
from modules.input_parser import parse_batch


# Fixtures

@pytest.fixture
def estimator():
    return BatchEstimator()


@pytest.fixture
def site_configs():
    return {
        SiteKey.SHUTTERSTOCK: SiteConfig(SiteKey.SHUTTERSTOCK, True, Decimal("0.50")),
        SiteKey.ISTOCKPHOTO: SiteConfig(SiteKey.ISTOCKPHOTO, True, Decimal("1.25")),
    }


class TestBatchEstimator:

    def test_lines_per_site(self, estimator, site_configs):
        results = parse_batch("1\n2\n3\nistockphoto:9\nnot an id")

        quote = estimator.quote(results, site_configs)

        assert [(line.site, line.count) for line in quote.lines] == [
            (SiteKey.SHUTTERSTOCK, 3),
            (SiteKey.ISTOCKPHOTO, 1),
        ]
        assert quote.total_cost == Decimal("2.75")
        assert quote.item_count == 4
        assert quote.skipped == 1
        assert quote.sufficient is None
        assert quote.warnings == []

    def test_sufficient_balance(self, estimator, site_configs):
        quote = estimator.quote(parse_batch("1\n2"), site_configs, balance=Decimal("1.00"))
        assert quote.sufficient is True

    def test_insufficient_balance_warns(self, estimator, site_configs):
        quote = estimator.quote(parse_batch("1\n2\n3"), site_configs, balance=Decimal("1.00"))

        assert quote.sufficient is False
        assert any("Insufficient credits" in warning for warning in quote.warnings)

    def test_unpriced_site(self, estimator, site_configs):
        quote = estimator.quote(parse_batch("dreamstime:5"), site_configs)

        assert quote.lines[0].priced is False
        assert quote.total_cost == Decimal("0")
        assert quote.warnings == ["No pricing for: dreamstime."]

    def test_pricing_not_loaded(self, estimator):
        quote = estimator.quote(parse_batch("1"), {})

        assert quote.lines[0].priced is False
        assert "not loaded" in quote.warnings[0]

    def test_to_dict(self, estimator, site_configs):
        data = estimator.quote(parse_batch("1\n2"), site_configs, balance=Decimal("5")).to_dict()

        assert data["total_cost"] == "1.00"
        assert data["balance"] == "5"
        assert data["sufficient"] is True
        assert data["lines"][0] == {
            "site": "shutterstock",
            "count": 2,
            "unit_price": "0.50",
            "subtotal": "1.00",
            "priced": True,
        }
