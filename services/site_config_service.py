"""
Site configuration service with background refresh thread.

Keeps the per-provider availability and pricing table (/stocksites) fresh
so submission can be gated on active sites and quotes can be priced.

Thread Safety:
    - Background thread builds a new SiteConfigSnapshot on each refresh
    - Readers get the current snapshot via an atomic reference swap
    - Snapshots are immutable; no locks needed for reads

Usage:
    # At app startup
    site_service = SiteConfigService(client, refresh_interval_seconds=300)
    site_service.start()

    # In request handlers
    configs = site_service.get_configs()

    # At app shutdown
    site_service.stop()
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from core.api_client import ResilientClient
from core.exceptions import StockOrderWebError
from models.identifier import SiteConfig, SiteKey
from logging_config import get_logger, set_thread_name


# Module logger
logger = get_logger(__name__)

# Snapshot older than this many refresh intervals counts as stale
STALE_AFTER_INTERVALS = 3


@dataclass(frozen=True)
class SiteConfigSnapshot:
    """
    Immutable site configuration at a point in time.

    An empty snapshot (nothing fetched yet) disables site gating.
    """

    configs: Mapping[SiteKey, SiteConfig] = field(default_factory=dict)
    fetched_at: Optional[float] = None
    """time.time() of the successful fetch, None if never fetched."""

    @property
    def is_loaded(self) -> bool:
        return self.fetched_at is not None

    @property
    def age_seconds(self) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return time.time() - self.fetched_at

    @property
    def active_sites(self) -> Dict[str, SiteConfig]:
        return {site.value: config for site, config in self.configs.items() if config.active}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loaded": self.is_loaded,
            "age_seconds": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            "sites": {site.value: config.to_dict() for site, config in self.configs.items()},
        }


class SiteConfigService:
    """
    Background service refreshing provider configuration.

    Attributes:
        refresh_interval_seconds: Time between refreshes
        is_running: Whether the background thread is active
    """

    def __init__(self, client: ResilientClient, refresh_interval_seconds: float = 300.0):
        """
        Initialize site config service.

        Args:
            client: Shared upstream client
            refresh_interval_seconds: Seconds between refreshes
        """
        if refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be positive")

        self._client = client
        self._refresh_interval = refresh_interval_seconds

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._is_running = False

        # Start empty so get_snapshot() never returns None
        self._current_snapshot = SiteConfigSnapshot()

        self._consecutive_failures = 0

        logger.info(f"SiteConfigService initialized (refresh interval: {refresh_interval_seconds}s)")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def refresh_interval_seconds(self) -> float:
        return self._refresh_interval

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def start(self) -> None:
        """
        Start the background refresh thread.

        Fetches immediately, then every refresh_interval_seconds until stop().
        Safe to call multiple times.
        """
        if self._is_running:
            logger.warning("SiteConfigService already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            name="SiteConfig",
            daemon=True
        )
        self._is_running = True
        self._thread.start()

        logger.info("Site config refresh thread started")

    def stop(self) -> None:
        """Signal the refresh thread to stop and wait for it. Safe to call multiple times."""
        if not self._is_running:
            return

        self._stop_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("Site config thread did not stop cleanly")

        self._is_running = False
        self._thread = None

        logger.info("Site config refresh thread stopped")

    def get_snapshot(self) -> SiteConfigSnapshot:
        """Current snapshot (never None; may be empty or stale)."""
        return self._current_snapshot

    def get_configs(self) -> Mapping[SiteKey, SiteConfig]:
        """Current SiteKey -> SiteConfig mapping; empty until the first fetch."""
        return self._current_snapshot.configs

    def is_stale(self) -> bool:
        """True if never loaded or older than STALE_AFTER_INTERVALS refreshes."""
        age = self._current_snapshot.age_seconds
        return age is None or age > self._refresh_interval * STALE_AFTER_INTERVALS

    def force_refresh(self) -> bool:
        """
        Refresh now in the calling thread.

        Returns:
            True if refresh succeeded, False otherwise
        """
        logger.info("Forcing site config refresh...")
        return self._do_refresh()

    def _refresh_loop(self) -> None:
        set_thread_name("SiteConfig")

        self._do_refresh()

        while not self._stop_event.wait(timeout=self._refresh_interval):
            self._do_refresh()

        logger.info("Site config refresh loop exiting")

    def _do_refresh(self) -> bool:
        """
        Perform a single refresh.

        On failure the previous snapshot is kept.
        """
        logger.debug("Refreshing site configs...")

        try:
            configs = self._client.get_stock_sites()
        except StockOrderWebError as e:
            self._consecutive_failures += 1

            # Escalate, then log only every 5th failure
            if self._consecutive_failures == 1:
                logger.warning(f"Site config refresh failed: {e}")
            elif self._consecutive_failures <= 3:
                logger.error(f"Site config refresh failed ({self._consecutive_failures} consecutive): {e}")
            elif self._consecutive_failures % 5 == 0:
                logger.error(
                    f"Site config refresh still failing ({self._consecutive_failures} consecutive): {e}"
                )
            return False

        self._current_snapshot = SiteConfigSnapshot(configs=dict(configs), fetched_at=time.time())

        if self._consecutive_failures > 0:
            logger.info(f"Site config refresh recovered after {self._consecutive_failures} failures")
        self._consecutive_failures = 0

        logger.debug(
            f"Site configs refreshed: {len(configs)} sites, "
            f"{len(self._current_snapshot.active_sites)} active"
        )
        return True
