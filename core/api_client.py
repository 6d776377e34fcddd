"""
Resilient client for the upstream fulfillment API.

This module wraps the REST surface of the stock-media fulfillment service
behind typed methods, a fixed error taxonomy and retry with exponential
backoff.

THREAD SAFETY:
    - One ResilientClient can be shared by any number of job threads
    - The underlying httpx.Client is thread-safe (pooled connections)
    - The client holds no business state; each call is independent
    - The optional request throttle is shared and lock-protected

DEPENDENCY INJECTION:
    There is no module-level client. Construct one per configuration in the
    app factory and hand it to the orchestrator. Tests inject an
    httpx.MockTransport and a fake sleep.

Usage:
    client = ResilientClient(
        base_url="https://api.example.com/v1",
        api_key="secret",
        retry_policy=RetryPolicy(max_attempts=3),
    )

    # Submit an order
    handle = client.create_order(SiteKey.SHUTTERSTOCK, "123456")

    # Poll status
    report = client.get_order_status(handle)

    # Fetch the file once ready
    link = client.get_download_link(handle)
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import quote

import httpx
from tenacity import RetryError

from .exceptions import (
    AuthError,
    ClientInvalidError,
    MalformedResponseError,
    NetworkUnreachableError,
    RateLimitedError,
    RequestTimeoutError,
    RetryExhaustedError,
    ServerFailureError,
)
from .retry import RetryPolicy, build_retrying, parse_retry_after
from .throttle import RequestThrottle
from models.identifier import SiteConfig, SiteKey
from models.upstream import Credits, DownloadRef, SearchResult, StatusReport, UpstreamState

# Download endpoint statuses meaning "link not generated yet".
_LINK_PENDING_STATUSES = frozenset({"downloading", "processing", "pending", "queued"})


class ResilientClient:
    """
    Typed HTTP client with timeout, error classification and retry.

    Every call:
    - Waits for the request throttle (if configured)
    - Sends one attempt with the per-attempt timeout
    - Classifies the outcome into the error taxonomy
    - Retries timeouts, network failures, 429 and 5xx per RetryPolicy
    - Raises RetryExhaustedError (wrapping the last error) when attempts run out

    Auth (401/403) and other 4xx failures surface after a single attempt.

    Attributes:
        retry_policy: The immutable RetryPolicy in use
        timeout_seconds: Per-attempt timeout
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        min_request_interval: float = 0.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. "https://api.example.com/v1"
            api_key: Sent as the X-Api-Key header
            timeout_seconds: Per-attempt timeout (connect + read)
            retry_policy: Retry configuration (defaults to RetryPolicy())
            min_request_interval: Minimum seconds between requests (0 = off)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Function used for retry and throttle waits
            logger: Logger instance (creates default if not provided)

        Raises:
            ValueError: If base_url is empty or timeout is not positive
        """
        if not base_url:
            raise ValueError("base_url is required")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self._timeout = timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._logger = logger or logging.getLogger("stock_order_web.core.api_client")
        self._throttle = RequestThrottle(min_request_interval, sleep=sleep)

        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key

        self._http = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

        self._logger.debug(f"ResilientClient initialized for {base_url}")

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def close(self) -> None:
        """Close pooled connections."""
        self._http.close()

    def __enter__(self) -> "ResilientClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # STOCK MEDIA
    # =========================================================================

    def search(
        self,
        query: str,
        page: int = 1,
        limit: int = 20,
        media_type: str = "all",
        **filters: Any
    ) -> SearchResult:
        """
        Search stock media.

        Args:
            query: Search text
            page: 1-based page number
            limit: Results per page
            media_type: 'image', 'video', 'vector', ... or 'all'
            **filters: Extra query parameters (category, sort, ...); None values dropped

        Returns:
            SearchResult page
        """
        params: Dict[str, Any] = {"q": query, "page": page, "limit": limit, "type": media_type}
        params.update({key: value for key, value in filters.items() if value is not None})

        data = self._request("search", "GET", "/search", params=params)

        results = data.get("results") or []
        if not isinstance(results, list):
            raise MalformedResponseError("Search results are not a list", "search")
        total = _as_int(data.get("total"), len(results))
        return SearchResult(
            results=results,
            total=total,
            page=_as_int(data.get("page"), page),
            limit=_as_int(data.get("limit"), limit),
            has_more=bool(data.get("has_more", page * limit < total)),
        )

    def get_stock_sites(self) -> Dict[SiteKey, SiteConfig]:
        """
        Fetch provider availability and pricing.

        Entries for providers the parser does not know are ignored.

        Returns:
            Mapping of SiteKey to SiteConfig
        """
        data = self._request("get_stock_sites", "GET", "/stocksites")

        configs: Dict[SiteKey, SiteConfig] = {}
        for name, entry in data.items():
            site = SiteKey.lookup(str(name))
            if site is None or not isinstance(entry, dict):
                self._logger.debug(f"Ignoring unknown stock site entry: {name}")
                continue
            try:
                configs[site] = SiteConfig.from_api_data(site, entry)
            except InvalidOperation:
                self._logger.warning(f"Ignoring stock site {name} with invalid price: {entry.get('price')}")
        return configs

    # =========================================================================
    # ORDERS
    # =========================================================================

    def create_order(
        self,
        site: Union[SiteKey, str],
        stock_id: str,
        source_url: Optional[str] = None
    ) -> str:
        """
        Create a fulfillment order.

        Args:
            site: Provider key
            stock_id: Provider-specific id
            source_url: Original URL, forwarded when known

        Returns:
            Upstream order handle (order_id or task_id)

        Raises:
            MalformedResponseError: If the response carries no handle
        """
        site_id = site.value if isinstance(site, SiteKey) else str(site)
        body: Dict[str, Any] = {"site_id": site_id, "stock_id": stock_id}
        if source_url:
            body["url"] = source_url

        data = self._request("create_order", "POST", "/orders", json_body=body)

        handle = data.get("order_id") or data.get("task_id")
        if not handle:
            raise MalformedResponseError("Order response has no order_id or task_id", "create_order")

        self._logger.info(f"Order created: {site_id}/{stock_id} -> {handle}")
        return str(handle)

    def get_order_status(self, order_handle: str) -> StatusReport:
        """
        Poll an order's status (non-blocking on the upstream side).

        Returns:
            StatusReport with coarse state, progress and any download link
        """
        data = self._request(
            "get_order_status", "GET", f"/orders/{_quote(order_handle)}/status"
        )

        raw_status = str(data.get("status") or "")
        report = StatusReport(
            state=UpstreamState.from_status(raw_status),
            raw_status=raw_status,
            progress=_as_progress(data.get("progress")),
            download_url=data.get("downloadLink") or data.get("download_url") or data.get("downloadUrl"),
            file_name=data.get("fileName") or data.get("file_name") or "",
            message=str(data.get("error_message") or data.get("message") or ""),
        )

        self._logger.debug(f"Order {order_handle} status: {raw_status} ({report.progress})")
        return report

    def get_download_link(self, order_handle: str) -> Optional[DownloadRef]:
        """
        Get the download link of a finished order.

        Returns:
            DownloadRef, or None while the upstream is still preparing the file

        Raises:
            MalformedResponseError: If the upstream claims ready but sends no link
        """
        data = self._request(
            "get_download_link", "GET", f"/orders/{_quote(order_handle)}/download"
        )

        url = data.get("downloadLink") or data.get("url") or data.get("download_url")
        if not url:
            status = str(data.get("status") or "").lower()
            if status in _LINK_PENDING_STATUSES:
                self._logger.debug(f"Download link for {order_handle} not ready ({status})")
                return None
            raise MalformedResponseError("Download response has no link", "get_download_link")

        return DownloadRef(
            url=str(url),
            file_name=str(data.get("fileName") or data.get("filename") or ""),
            expires_at=data.get("expires_at"),
        )

    # =========================================================================
    # AI GENERATION
    # =========================================================================

    def create_ai_job(
        self,
        prompt: str,
        style: Optional[str] = None,
        size: Optional[str] = None
    ) -> str:
        """
        Start an AI image generation job.

        Returns:
            Upstream job handle (job_id)
        """
        body: Dict[str, Any] = {"prompt": prompt}
        if style:
            body["style"] = style
        if size:
            body["size"] = size

        data = self._request("create_ai_job", "POST", "/ai/generate", json_body=body)

        job_id = data.get("job_id")
        if not job_id:
            raise MalformedResponseError("AI job response has no job_id", "create_ai_job")

        self._logger.info(f"AI job created: {job_id}")
        return str(job_id)

    def get_ai_job_status(self, job_handle: str) -> StatusReport:
        """
        Poll an AI generation job.

        The first generated file's download URL becomes the report's link.
        """
        data = self._request("get_ai_job_status", "GET", f"/ai/jobs/{_quote(job_handle)}")

        download_url = None
        files = data.get("files") or []
        if isinstance(files, list) and files and isinstance(files[0], dict):
            download_url = files[0].get("download") or files[0].get("url")
        if not download_url and isinstance(data.get("result"), dict):
            result = data["result"]
            download_url = result.get("downloadUrl") or result.get("imageUrl")

        raw_status = str(data.get("status") or "")
        progress = data.get("percentage_complete", data.get("progress"))
        return StatusReport(
            state=UpstreamState.from_status(raw_status),
            raw_status=raw_status,
            progress=_as_progress(progress),
            download_url=download_url,
            file_name=f"{job_handle}.png" if download_url else "",
            message=str(data.get("error_message") or data.get("message") or ""),
        )

    # =========================================================================
    # ACCOUNT
    # =========================================================================

    def get_credits(self) -> Credits:
        """Fetch the account's credit balance."""
        data = self._request("get_credits", "GET", "/credits")

        if "balance" not in data:
            raise MalformedResponseError("Credits response has no balance", "get_credits")
        try:
            balance = Decimal(str(data["balance"]))
        except InvalidOperation:
            raise MalformedResponseError(
                f"Invalid balance value: {data['balance']!r}", "get_credits"
            )
        return Credits(balance=balance, username=str(data.get("username") or ""))

    def health_check(self) -> Dict[str, Any]:
        """Upstream liveness probe."""
        return self._request("health_check", "GET", "/health")

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a request with retry and return the unwrapped JSON object.

        Raises:
            RetryExhaustedError: If every allowed attempt failed with a retryable error
            AuthError, ClientInvalidError, MalformedResponseError: Immediately
        """
        retrying = build_retrying(self._retry_policy, self._sleep, self._logger)
        data: Dict[str, Any] = {}

        try:
            for attempt in retrying:
                with attempt:
                    data = self._send_once(operation, method, path, params, json_body)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            self._logger.error(f"{operation} failed after {attempts} attempts: {last_error}")
            raise RetryExhaustedError(operation, attempts, last_error) from last_error

        return data

    def _send_once(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Single attempt: throttle, send, classify."""
        self._throttle.wait()
        self._logger.debug(f"{method} {path}")

        try:
            response = self._http.request(method, path, params=params, json=json_body)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(operation, self._timeout) from e
        except httpx.TransportError as e:
            raise NetworkUnreachableError(operation, str(e) or type(e).__name__) from e

        return self._handle_response(operation, response)

    def _handle_response(self, operation: str, response: httpx.Response) -> Dict[str, Any]:
        """Classify the HTTP status and decode the body."""
        status = response.status_code

        if status in (401, 403):
            raise AuthError(
                _error_message(response) or "Invalid API key or insufficient permissions",
                operation,
                status
            )
        if status == 429:
            raise RateLimitedError(
                _error_message(response) or "Rate limit exceeded",
                operation,
                parse_retry_after(response.headers.get("Retry-After"))
            )
        if status >= 500:
            raise ServerFailureError(
                _error_message(response) or f"Upstream error {status}", operation, status
            )
        if status >= 400:
            raise ClientInvalidError(
                _error_message(response) or f"Request rejected with {status}", operation, status
            )

        try:
            body = response.json()
        except ValueError:
            raise MalformedResponseError("Response body is not JSON", operation, status)

        if not isinstance(body, dict):
            raise MalformedResponseError("Response body is not a JSON object", operation, status)

        if body.get("success") is False:
            raise ClientInvalidError(
                str(body.get("message") or body.get("error") or "Upstream reported failure"),
                operation,
                status
            )

        data = body.get("data")
        if isinstance(data, dict):
            return data
        return body


def _quote(handle: str) -> str:
    return quote(str(handle), safe="")


def _error_message(response: httpx.Response) -> str:
    """Best-effort message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200].strip()
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or "")
    return ""


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_progress(value: Any) -> Optional[int]:
    """Clamp progress to 0-100; None when absent or unparseable."""
    if value is None:
        return None
    try:
        progress = int(float(value))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, progress))
