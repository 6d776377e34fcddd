"""
JSON API routes.

Handles:
- /api/parse             - Parse pasted lines into identifiers
- /api/quote             - Price a batch against site pricing and credits
- /api/orders            - Submit every valid line as an order job
- /api/ai/jobs           - Submit an AI generation job
- /api/jobs[/<handle>]   - Job snapshots, cancel, events, download link
- /api/search            - Stock search passthrough
- /api/credits           - Account balance
- /health                - Health check endpoint

Services are read from current_app.config (set up by create_app). Errors
from the core propagate to the app-level handlers, which map them to JSON
via error_response().
"""

from __future__ import annotations

import html
import json
import queue
from typing import Any, Dict, List, Optional, Tuple

import bleach
from flask import Blueprint, Response, abort, current_app, request

from core.exceptions import (
    DuplicateSubmissionError,
    ErrorKind,
    JobNotReadyError,
    ParseError,
    StockOrderWebError,
    TransportError,
    UnknownHandleError,
    UpstreamError,
)
from models.identifier import ParsedIdentifier
from modules.input_parser import apply_site_configs, get_input_stats, parse_batch
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)

# Constants
MAX_BATCH_LINES = 500
MAX_PROMPT_LENGTH = 2000
MAX_QUERY_LENGTH = 200
MAX_SEARCH_LIMIT = 100
SSE_KEEPALIVE_SECONDS = 15.0


# =============================================================================
# ERROR MAPPING
# =============================================================================

def error_status(exc: StockOrderWebError) -> int:
    """HTTP status for a core error."""
    if isinstance(exc, (ParseError, DuplicateSubmissionError)):
        return 400
    if isinstance(exc, UnknownHandleError):
        return 404
    if isinstance(exc, JobNotReadyError):
        return 409
    if isinstance(exc, (UpstreamError, TransportError)):
        return 502
    return 500


def error_response(exc: StockOrderWebError) -> Tuple[Dict[str, Any], int]:
    """JSON body and status for a core error."""
    body: Dict[str, Any] = {
        "error": exc.kind.value if exc.kind else "internal_error",
        "message": exc.message,
    }
    if exc.details:
        body["details"] = {key: str(value) for key, value in exc.details.items()}
    return body, error_status(exc)


# =============================================================================
# HELPERS
# =============================================================================

def _sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """Strip markup from user input text."""
    if not text:
        return ""
    text = bleach.clean(str(text), tags=[], strip=True)
    # clean() entity-escapes; URLs need their '&' back
    text = html.unescape(text)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _bad_request(message: str, kind: str = "invalid_request") -> Tuple[Dict[str, Any], int]:
    return {"error": kind, "message": message}, 400


def _service(key: str) -> Any:
    service = current_app.config.get(key)
    if service is None:
        abort(503, description=f"{key.replace('_', ' ').lower()} unavailable")
    return service


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _input_text(payload: Dict[str, Any]) -> str:
    """Batch text from either {"text": "..."} or {"lines": [...]}."""
    lines = payload.get("lines")
    if isinstance(lines, list):
        return "\n".join(str(line) for line in lines)
    return str(payload.get("text") or "")


def _parse_payload(payload: Dict[str, Any]) -> List[ParsedIdentifier]:
    """
    Sanitize, parse and site-gate the submitted lines.

    Raises:
        ValueError: If the batch has too many lines
    """
    text = _sanitize_text(_input_text(payload))
    results = parse_batch(text, default_site=current_app.config.get("DEFAULT_SITE"))
    if len(results) > MAX_BATCH_LINES:
        raise ValueError(f"At most {MAX_BATCH_LINES} lines per request")

    site_service = current_app.config.get("SITE_CONFIG_SERVICE")
    configs = site_service.get_configs() if site_service else None
    return apply_site_configs(results, configs)


# =============================================================================
# PARSING AND QUOTES
# =============================================================================

@api_bp.route("/api/parse", methods=["POST"])
def parse_input():
    """Parse pasted input; every non-blank line yields one result."""
    try:
        results = _parse_payload(_json_body())
    except ValueError as e:
        return _bad_request(str(e))

    return {
        "results": [result.to_dict() for result in results],
        "stats": get_input_stats(results).to_dict(),
    }


@api_bp.route("/api/quote", methods=["POST"])
def quote():
    """
    Price the valid lines of a batch.

    The credit balance is included unless check_balance is false; a balance
    lookup failure only adds a warning.
    """
    payload = _json_body()
    try:
        results = _parse_payload(payload)
    except ValueError as e:
        return _bad_request(str(e))

    estimator = _service("ESTIMATOR")
    site_service = current_app.config.get("SITE_CONFIG_SERVICE")
    configs = site_service.get_configs() if site_service else None

    balance = None
    balance_error = None
    if payload.get("check_balance", True):
        client = _service("API_CLIENT")
        try:
            balance = client.get_credits().balance
        except StockOrderWebError as e:
            logger.warning(f"Balance lookup failed during quote: {e.message}")
            balance_error = e.message

    batch_quote = estimator.quote(results, configs, balance)
    body = batch_quote.to_dict()
    body["stats"] = get_input_stats(results).to_dict()
    if balance_error:
        body["warnings"].append(f"Balance unavailable: {balance_error}")
    return body


# =============================================================================
# SUBMISSION
# =============================================================================

@api_bp.route("/api/orders", methods=["POST"])
def submit_orders():
    """
    Submit every valid line as its own job.

    Lines are independent: an invalid or duplicate line is reported in its
    own result and does not stop the others.
    """
    payload = _json_body()
    try:
        results = _parse_payload(payload)
        poll_timeout = _optional_float(payload.get("poll_timeout"))
    except ValueError as e:
        return _bad_request(str(e))

    if not results:
        return _bad_request("No input lines given")

    orchestrator = _service("ORCHESTRATOR")

    outcomes = []
    submitted = 0
    for identifier in results:
        outcome: Dict[str, Any] = {"raw": identifier.raw, "identifier": identifier.to_dict()}
        if not identifier.valid:
            outcome["error"] = identifier.error.value if identifier.error else ErrorKind.UNRECOGNIZED_FORMAT.value
        else:
            try:
                outcome["handle"] = orchestrator.submit(identifier, poll_timeout=poll_timeout)
                submitted += 1
            except (ParseError, DuplicateSubmissionError) as e:
                outcome["error"] = e.kind.value
                outcome["message"] = e.message
                if isinstance(e, DuplicateSubmissionError):
                    outcome["existing_handle"] = e.existing_handle
        outcomes.append(outcome)

    logger.info(f"Order batch: {submitted}/{len(results)} lines submitted")
    return {"submitted": submitted, "results": outcomes}, 202 if submitted else 400


@api_bp.route("/api/ai/jobs", methods=["POST"])
def submit_ai_job():
    """Submit an AI generation job."""
    payload = _json_body()
    prompt = _sanitize_text(payload.get("prompt"), MAX_PROMPT_LENGTH).strip()
    if not prompt:
        return _bad_request("Prompt is required")

    try:
        poll_timeout = _optional_float(payload.get("poll_timeout"))
    except ValueError:
        return _bad_request("poll_timeout must be a number")

    orchestrator = _service("ORCHESTRATOR")
    handle = orchestrator.submit_ai_prompt(
        prompt,
        style=_sanitize_text(payload.get("style"), 50) or None,
        size=_sanitize_text(payload.get("size"), 20) or None,
        poll_timeout=poll_timeout,
    )
    return {"handle": handle, "job": orchestrator.get_job(handle).to_dict()}, 202


# =============================================================================
# JOBS
# =============================================================================

@api_bp.route("/api/jobs", methods=["GET"])
def list_jobs():
    orchestrator = _service("ORCHESTRATOR")
    return {"jobs": [job.to_dict() for job in orchestrator.list_jobs()]}


@api_bp.route("/api/jobs/<handle>", methods=["GET"])
def get_job(handle: str):
    """Job snapshot; ?refresh=1 polls the upstream first (POLLING jobs only)."""
    orchestrator = _service("ORCHESTRATOR")
    if request.args.get("refresh", "").lower() in ("1", "true", "yes"):
        job = orchestrator.poll_now(handle)
    else:
        job = orchestrator.get_job(handle)
    return job.to_dict()


@api_bp.route("/api/jobs/<handle>/cancel", methods=["POST"])
def cancel_job(handle: str):
    orchestrator = _service("ORCHESTRATOR")
    return orchestrator.cancel(handle).to_dict()


@api_bp.route("/api/jobs/<handle>/events", methods=["GET"])
def job_events(handle: str):
    """
    Server-sent events stream of job snapshots.

    Each snapshot is one "job" event; the stream closes after the terminal
    snapshot. Comment lines keep idle connections alive.
    """
    orchestrator = _service("ORCHESTRATOR")
    subscription = orchestrator.subscribe(handle)

    def generate():
        try:
            while True:
                try:
                    job = subscription.get(timeout=SSE_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                if job is None:
                    break
                yield f"event: job\ndata: {json.dumps(job.to_dict())}\n\n"
        finally:
            subscription.close()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@api_bp.route("/api/jobs/<handle>/download", methods=["GET"])
def job_download(handle: str):
    """Download link of a READY job; ?refresh=1 asks the upstream for a new one."""
    orchestrator = _service("ORCHESTRATOR")
    refresh = request.args.get("refresh", "").lower() in ("1", "true", "yes")
    return orchestrator.get_download_link(handle, refresh=refresh).to_dict()


# =============================================================================
# UPSTREAM PASSTHROUGH
# =============================================================================

@api_bp.route("/api/search", methods=["GET"])
def search():
    query = _sanitize_text(request.args.get("q"), MAX_QUERY_LENGTH).strip()
    if not query:
        return _bad_request("Query parameter 'q' is required")

    page = max(request.args.get("page", 1, type=int), 1)
    limit = min(max(request.args.get("limit", 20, type=int), 1), MAX_SEARCH_LIMIT)
    media_type = _sanitize_text(request.args.get("type"), 20) or "all"

    client = _service("API_CLIENT")
    result = client.search(
        query,
        page=page,
        limit=limit,
        media_type=media_type,
        category=_sanitize_text(request.args.get("category"), 50) or None,
        sort=_sanitize_text(request.args.get("sort"), 20) or None,
    )
    return result.to_dict()


@api_bp.route("/api/credits", methods=["GET"])
def credits():
    client = _service("API_CLIENT")
    return client.get_credits().to_dict()


@api_bp.route("/health", methods=["GET"])
def health():
    """
    Health check endpoint with service status.

    ?deep=1 also probes the upstream API.
    """
    health_status: Dict[str, Any] = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    orchestrator = current_app.config.get("ORCHESTRATOR")
    if orchestrator:
        health_status["checks"]["orchestrator"] = "ok"
        health_status["jobs"] = len(orchestrator.registry)
    else:
        health_status["checks"]["orchestrator"] = "not_available"
        health_status["status"] = "degraded"

    site_service = current_app.config.get("SITE_CONFIG_SERVICE")
    if not site_service:
        health_status["checks"]["site_configs"] = "not_available"
    elif not site_service.is_running:
        health_status["checks"]["site_configs"] = "not_running"
    elif site_service.is_stale():
        health_status["checks"]["site_configs"] = "stale"
        health_status["status"] = "degraded"
    else:
        health_status["checks"]["site_configs"] = "ok"

    if request.args.get("deep", "").lower() in ("1", "true", "yes"):
        client = current_app.config.get("API_CLIENT")
        if client is None:
            health_status["checks"]["upstream"] = "not_available"
            health_status["status"] = "degraded"
        else:
            try:
                client.health_check()
                health_status["checks"]["upstream"] = "ok"
            except StockOrderWebError as e:
                logger.warning(f"Upstream health probe failed: {e}")
                health_status["checks"]["upstream"] = "unreachable"
                health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
