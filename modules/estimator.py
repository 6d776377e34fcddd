"""Price quote for a parsed batch of stock identifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from models.identifier import ParsedIdentifier, SiteConfig, SiteKey


@dataclass(frozen=True)
class QuoteLine:
    """Cost of all items from one provider."""

    site: SiteKey
    count: int
    unit_price: Decimal
    priced: bool = True

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site": self.site.value,
            "count": self.count,
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
            "priced": self.priced,
        }


@dataclass(frozen=True)
class BatchQuote:
    """Total cost of a batch and whether the balance covers it."""

    lines: List[QuoteLine] = field(default_factory=list)
    skipped: int = 0
    balance: Optional[Decimal] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return sum(line.count for line in self.lines)

    @property
    def total_cost(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    @property
    def sufficient(self) -> Optional[bool]:
        """None when the balance is unknown."""
        if self.balance is None:
            return None
        return self.balance >= self.total_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "item_count": self.item_count,
            "skipped": self.skipped,
            "total_cost": str(self.total_cost),
            "balance": str(self.balance) if self.balance is not None else None,
            "sufficient": self.sufficient,
            "warnings": list(self.warnings),
        }


class BatchEstimator:
    """Produces cost quotes for batches of parsed identifiers."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("stock_order_web.modules.estimator")

    def quote(
        self,
        identifiers: Iterable[ParsedIdentifier],
        site_configs: Optional[Mapping[SiteKey, SiteConfig]],
        balance: Optional[Decimal] = None,
    ) -> BatchQuote:
        """Quote the valid entries of a batch.

        Invalid entries are counted as skipped. Sites without a config (or
        any site while configs are not loaded) are listed unpriced at zero.

        Args:
            identifiers: Parser output, possibly already site-gated
            site_configs: Current provider pricing
            balance: Account credit balance, if known

        Returns:
            BatchQuote with one line per provider, in first-seen order
        """
        site_configs = site_configs or {}
        counts: Dict[SiteKey, int] = {}
        skipped = 0

        for identifier in identifiers:
            if not identifier.valid or identifier.site is None:
                skipped += 1
                continue
            counts[identifier.site] = counts.get(identifier.site, 0) + 1

        lines = []
        for site, count in counts.items():
            config = site_configs.get(site)
            if config is None:
                lines.append(QuoteLine(site=site, count=count, unit_price=Decimal("0"), priced=False))
            else:
                lines.append(QuoteLine(site=site, count=count, unit_price=config.unit_price))

        quote = BatchQuote(
            lines=lines,
            skipped=skipped,
            balance=balance,
            warnings=self._build_warnings(lines, site_configs, balance),
        )

        self.logger.debug(
            f"Quote: {quote.item_count} items, total={quote.total_cost}, skipped={skipped}"
        )
        return quote

    @staticmethod
    def _build_warnings(
        lines: List[QuoteLine],
        site_configs: Mapping[SiteKey, SiteConfig],
        balance: Optional[Decimal],
    ) -> List[str]:
        warnings: List[str] = []
        if not site_configs:
            warnings.append("Site pricing is not loaded yet; totals are incomplete.")
        else:
            unpriced = [line.site.value for line in lines if not line.priced]
            if unpriced:
                warnings.append(f"No pricing for: {', '.join(unpriced)}.")

        if balance is not None:
            total = sum((line.subtotal for line in lines), Decimal("0"))
            if balance < total:
                warnings.append(f"Insufficient credits: need {total}, have {balance}.")
        return warnings
