"""
StockOrderWeb - Flask Application Entry Point.

This is a slim app factory that:
1. Configures thread-aware logging
2. Builds the shared ResilientClient from configuration
3. Starts the site config service (separate thread)
4. Creates the order orchestrator (thread-per-job)
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    └── Cleanup on shutdown

    SiteConfig Thread (background)
    └── Periodic /stocksites refresh

    Job Threads (one per submitted order or AI job)
    └── Create upstream order, poll until terminal

All threads share one ResilientClient; job state lives only in the
JobRegistry.
"""

from __future__ import annotations

import atexit
import logging
import os
from typing import Optional, Type, Union

from flask import Flask
from werkzeug.exceptions import HTTPException
from werkzeug.utils import import_string

from logging_config import setup_logging, get_logger, level_from_name
from config import Config
from core.api_client import ResilientClient
from core.exceptions import StockOrderWebError
from modules.estimator import BatchEstimator
from services.order_orchestrator import OrderOrchestrator
from services.site_config_service import SiteConfigService
from routes import register_blueprints, error_response


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def create_app(
    config_object: Union[str, Type[Config]] = "config.Config",
    client: Optional[ResilientClient] = None
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Config class or its import path
        client: Prebuilt upstream client (tests inject one); built from
            configuration when omitted

    Returns:
        Configured Flask application
    """
    config_class = import_string(config_object) if isinstance(config_object, str) else config_object

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Configure logging
    default_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    log_level = level_from_name(app.config.get("LOG_LEVEL"), default_level)
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(log_level=log_level, enable_file_logging=enable_file_logging)

    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting StockOrderWeb in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # UPSTREAM CLIENT
    # =========================================================================

    if client is None:
        if not app.config.get("STOCK_API_KEY"):
            logger.warning("STOCK_API_KEY is not set; upstream calls will be rejected")

        client = ResilientClient(
            base_url=app.config["STOCK_API_BASE_URL"],
            api_key=app.config["STOCK_API_KEY"],
            timeout_seconds=app.config["STOCK_API_TIMEOUT"],
            retry_policy=config_class.retry_policy(),
            min_request_interval=app.config["STOCK_API_MIN_REQUEST_INTERVAL"],
            logger=get_logger("core.api_client"),
        )

    app.config["API_CLIENT"] = client

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    site_config_service = SiteConfigService(
        client,
        refresh_interval_seconds=app.config["SITE_CONFIG_REFRESH_SECONDS"]
    )
    if app.config.get("START_BACKGROUND_SERVICES", True):
        site_config_service.start()
        logger.info("Site config service started")
    app.config["SITE_CONFIG_SERVICE"] = site_config_service

    orchestrator = OrderOrchestrator(
        client,
        site_configs=site_config_service.get_configs,
        stock_poll_interval=app.config["STOCK_POLL_INTERVAL"],
        ai_poll_interval=app.config["AI_POLL_INTERVAL"],
        default_poll_timeout=config_class.poll_timeout(),
        retention_seconds=app.config["JOB_RETENTION_SECONDS"],
    )
    app.config["ORCHESTRATOR"] = orchestrator
    logger.info("Order orchestrator initialized")

    app.config["ESTIMATOR"] = BatchEstimator()
    app.config["DEFAULT_SITE"] = config_class.default_numeric_site()

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        site_config_service.stop()
        orchestrator.shutdown()
        client.close()

        logger.info("Shutdown complete")

    # Tests call CLEANUP themselves
    if not app.config.get("TESTING"):
        atexit.register(cleanup)
    app.config["CLEANUP"] = cleanup

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(StockOrderWebError)
    def handle_core_error(e: StockOrderWebError):
        body, status = error_response(e)
        if status >= 500:
            logger.error(f"{status} error: {e}")
        return body, status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return {"error": e.name.lower().replace(" ", "_"), "message": e.description}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "internal_error", "message": "An unexpected error occurred."}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode, threaded=True)
