"""
Services layer for StockOrderWeb.

This module contains the business logic services:
- JobRegistry: Thread-safe job store with snapshot subscriptions
- OrderOrchestrator: Job submission and thread-per-job polling
- SiteConfigService: Background provider config refresh thread

Thread Model:
    Main Thread (Flask)
    ├── SiteConfigService thread (periodic refresh loop)
    └── OrderOrchestrator threads (one per submitted job)

All threads share one ResilientClient; JobRegistry is the only place
job state is kept.
"""

from .job_registry import JobRegistry, JobSubscription
from .order_orchestrator import OrderOrchestrator
from .site_config_service import SiteConfigService, SiteConfigSnapshot

__all__ = [
    "JobRegistry",
    "JobSubscription",
    "OrderOrchestrator",
    "SiteConfigService",
    "SiteConfigSnapshot",
]
