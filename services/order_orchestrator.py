"""
Order orchestration with thread-per-job polling.

Turns a parsed identifier (or an AI prompt) into a tracked job and drives it
to a terminal state in the background:

    1. Caller submits; validation and duplicate checks run synchronously
    2. Job is registered in CREATED and a worker thread starts
    3. Worker creates the upstream order -> SUBMITTED -> POLLING
    4. Worker polls at a fixed interval until ready, failed, cancelled
       or out of budget

THREAD ISOLATION:
    - Each job has its OWN worker thread named "Job-<handle[:8]>"
    - Workers share the ResilientClient (thread-safe) and nothing else
    - JobRegistry is the ONLY channel between workers and callers
    - Cancel wakes the worker through a per-job threading.Event

Concurrent status refreshes for the same job (worker poll plus an on-demand
poll_now) are collapsed into one upstream request; the second caller waits
for the first request's outcome.

Usage:
    # At app startup
    orchestrator = OrderOrchestrator(client, site_configs=site_service.get_configs)

    # Submission (request thread)
    handle = orchestrator.submit(identifier)

    # Status (any thread)
    job = orchestrator.get_job(handle)
    if job.state is JobState.READY:
        link = orchestrator.get_download_link(handle)

    # At app shutdown
    orchestrator.shutdown()
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from core.api_client import ResilientClient
from core.exceptions import (
    ErrorKind,
    JobNotReadyError,
    OrderFailedError,
    ParseError,
    PollTimeoutError,
    StockOrderWebError,
)
from models.identifier import ParsedIdentifier, SiteConfig, SiteKey
from models.order_job import AIPrompt, JobKind, JobState, OrderJob
from models.upstream import DownloadRef, StatusReport, UpstreamState
from modules.input_parser import is_site_active
from services.job_registry import JobRegistry, JobSubscription
from logging_config import get_logger, get_job_logger, set_thread_name


# Module logger
logger = get_logger(__name__)

SiteConfigProvider = Callable[[], Mapping[SiteKey, SiteConfig]]


class OrderOrchestrator:
    """
    Submits orders and AI jobs and tracks them to completion.

    Attributes:
        registry: JobRegistry holding every job snapshot
        stock_poll_interval: Seconds between stock order polls
        ai_poll_interval: Seconds between AI job polls
    """

    def __init__(
        self,
        client: ResilientClient,
        registry: Optional[JobRegistry] = None,
        site_configs: Optional[SiteConfigProvider] = None,
        stock_poll_interval: float = 2.0,
        ai_poll_interval: float = 5.0,
        default_poll_timeout: Optional[float] = 600.0,
        retention_seconds: Optional[float] = 3600.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Shared upstream client
            registry: Job store (a new one if not provided)
            site_configs: Callable returning current SiteConfig mapping;
                None or an empty mapping disables site gating
            stock_poll_interval: Poll interval for stock orders
            ai_poll_interval: Poll interval for AI generation jobs
            default_poll_timeout: Budget used when submit() gets none;
                None or <= 0 means unbounded
            retention_seconds: How long terminal jobs stay readable;
                expired ones are evicted on each submission (None = keep)
            clock: Monotonic clock for poll budgets
        """
        if stock_poll_interval <= 0 or ai_poll_interval <= 0:
            raise ValueError("Poll intervals must be positive")

        self._client = client
        self._registry = registry or JobRegistry()
        self._site_configs = site_configs
        self._stock_poll_interval = stock_poll_interval
        self._ai_poll_interval = ai_poll_interval
        self._default_poll_timeout = default_poll_timeout
        self._retention_seconds = retention_seconds
        self._clock = clock

        # Worker threads and their wake-up events, keyed by handle
        self._threads: Dict[str, threading.Thread] = {}
        self._wake_events: Dict[str, threading.Event] = {}
        self._threads_lock = threading.Lock()
        self._stopping = threading.Event()

        # In-flight status polls, keyed by handle
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

        logger.info(
            f"OrderOrchestrator initialized (poll: stock={stock_poll_interval}s, "
            f"ai={ai_poll_interval}s, budget={default_poll_timeout})"
        )

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def stock_poll_interval(self) -> float:
        return self._stock_poll_interval

    @property
    def ai_poll_interval(self) -> float:
        return self._ai_poll_interval

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit(self, identifier: ParsedIdentifier, poll_timeout: Optional[float] = None) -> str:
        """
        Submit a stock order for background fulfillment.

        Returns immediately; the upstream is contacted by the worker thread.

        Args:
            identifier: Output of the input parser
            poll_timeout: Seconds the job may spend polling (None = default)

        Returns:
            Job handle

        Raises:
            ParseError: If the identifier is invalid or its site is inactive
            DuplicateSubmissionError: If the same site+id is already live
            RuntimeError: If the orchestrator has been shut down
        """
        if not identifier.valid:
            raise ParseError(identifier.error or ErrorKind.UNRECOGNIZED_FORMAT, identifier.raw)

        configs = self._site_configs() if self._site_configs else None
        if configs and not is_site_active(identifier.site, configs):
            raise ParseError(ErrorKind.SITE_INACTIVE, identifier.raw)

        job = OrderJob.create_stock_order(identifier)
        logger.info(f"Submitting job {job.handle[:8]} for {identifier.site.value}:{identifier.id}")
        return self._start(job, poll_timeout)

    def submit_ai_prompt(
        self,
        prompt: str,
        style: Optional[str] = None,
        size: Optional[str] = None,
        poll_timeout: Optional[float] = None
    ) -> str:
        """
        Submit an AI image generation job.

        Raises:
            ValueError: If the prompt is blank
            DuplicateSubmissionError: If the same prompt/style/size is live
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")

        job = OrderJob.create_ai_generation(AIPrompt(prompt=prompt.strip(), style=style, size=size))
        logger.info(f"Submitting AI job {job.handle[:8]}")
        return self._start(job, poll_timeout)

    def _start(self, job: OrderJob, poll_timeout: Optional[float]) -> str:
        if self._stopping.is_set():
            raise RuntimeError("Order orchestrator has been shut down")

        if self._retention_seconds is not None:
            self._registry.evict_expired(self._retention_seconds)

        self._registry.add(job)

        budget = self._default_poll_timeout if poll_timeout is None else poll_timeout
        if budget is not None and budget <= 0:
            budget = None

        thread = threading.Thread(
            target=self._job_thread_main,
            args=(job.handle, budget),
            name=f"Job-{job.handle[:8]}",
            daemon=True
        )

        wake = threading.Event()
        with self._threads_lock:
            # Shutdown raced with this submission; the worker exits at once
            if self._stopping.is_set():
                wake.set()
            self._threads[job.handle] = thread
            self._wake_events[job.handle] = wake

        thread.start()
        return job.handle

    # =========================================================================
    # QUERIES AND CONTROL
    # =========================================================================

    def get_job(self, handle: str) -> OrderJob:
        """
        Current snapshot of a job.

        Raises:
            UnknownHandleError: If the handle is not registered
        """
        return self._registry.get(handle)

    def list_jobs(self) -> List[OrderJob]:
        return self._registry.list()

    def subscribe(self, handle: str) -> JobSubscription:
        """Stream of snapshots ending with the terminal one."""
        return self._registry.subscribe(handle)

    def cancel(self, handle: str) -> OrderJob:
        """
        Cancel a job.

        A live job moves to CANCELLED immediately and its worker is woken;
        whatever the worker was waiting on is discarded. Cancelling a
        terminal job changes nothing.

        Returns:
            Snapshot after the call

        Raises:
            UnknownHandleError: If the handle is not registered
        """
        updated = self._registry.update(handle, JobState.CANCELLED)

        with self._threads_lock:
            wake = self._wake_events.get(handle)
        if wake is not None:
            wake.set()

        if updated is not None:
            logger.info(f"Job {handle[:8]} cancelled")
            return updated
        return self._registry.get(handle)

    def get_download_link(self, handle: str, refresh: bool = False) -> DownloadRef:
        """
        Download reference of a READY job.

        Args:
            handle: Job handle
            refresh: Ask the upstream for a fresh link (stock orders only);
                falls back to the stored link if none is returned

        Raises:
            JobNotReadyError: If the job is not READY
            UnknownHandleError: If the handle is not registered
        """
        job = self._registry.get(handle)
        if job.state is not JobState.READY or job.result is None:
            raise JobNotReadyError(handle, job.state.value)

        if refresh and job.kind is JobKind.STOCK_ORDER and job.upstream_handle:
            fresh = self._client.get_download_link(job.upstream_handle)
            if fresh is not None:
                return fresh
        return job.result

    def poll_now(self, handle: str) -> OrderJob:
        """
        Refresh a POLLING job's status immediately.

        Joins the in-flight poll for the same job if there is one. Jobs in
        other states are returned unchanged without contacting the upstream.
        """
        job = self._registry.get(handle)
        if job.state is not JobState.POLLING:
            return job
        return self._poll_collapsed(handle)

    def evict_expired(self, retention_seconds: Optional[float] = None) -> int:
        """Drop terminal jobs older than the retention window (default: configured one)."""
        if retention_seconds is None:
            retention_seconds = self._retention_seconds
        if retention_seconds is None:
            return 0
        return self._registry.evict_expired(retention_seconds)

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Stop all workers and wait for them to exit.

        Jobs that are still live keep their last state.
        """
        self._stopping.set()

        with self._threads_lock:
            active = list(self._threads.items())
            for wake in self._wake_events.values():
                wake.set()

        if not active:
            logger.info("No active job threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} job threads to exit...")

        for handle, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Job thread {handle[:8]} did not exit in time")

        logger.info("Order orchestrator shutdown complete")

    def is_job_active(self, handle: str) -> bool:
        """True while the job's worker thread is running."""
        with self._threads_lock:
            thread = self._threads.get(handle)
            return thread is not None and thread.is_alive()

    # =========================================================================
    # WORKER
    # =========================================================================

    def _job_thread_main(self, handle: str, budget: Optional[float]) -> None:
        """
        Worker thread body: create upstream order, then poll until terminal.

        Args:
            handle: Job handle
            budget: Seconds allowed for polling, None for unbounded
        """
        set_thread_name(f"Job-{handle[:8]}")
        job_logger = get_job_logger(handle)

        with self._threads_lock:
            wake = self._wake_events[handle]

        try:
            job = self._registry.get(handle)
            if job.is_terminal or wake.is_set():
                job_logger.info(f"Job ended before upstream submission ({job.state.value})")
                return
            job_logger.info(f"Job thread starting ({job.kind.value})")

            # =================================================================
            # STEP 1: Create upstream order
            # =================================================================
            try:
                upstream_handle = self._create_upstream(job)
            except StockOrderWebError as e:
                job_logger.error(f"Upstream submission failed: {e.message}")
                self._fail(handle, e.kind or ErrorKind.ORDER_FAILED, e.message)
                return

            if self._registry.update(handle, JobState.SUBMITTED, upstream_handle=upstream_handle) is None:
                job_logger.info("Job ended before submission was recorded")
                return
            job_logger.info(f"Upstream accepted job as {upstream_handle}")

            # =================================================================
            # STEP 2: Poll until terminal
            # =================================================================
            if self._registry.update(handle, JobState.POLLING) is None:
                return

            interval = self._poll_interval(job.kind)
            deadline = None if budget is None else self._clock() + budget

            while True:
                if wake.wait(timeout=interval):
                    # Cancelled or shutting down
                    job_logger.info("Worker woken, exiting poll loop")
                    return

                if deadline is not None and self._clock() >= deadline:
                    timeout_error = PollTimeoutError(handle, budget)
                    job_logger.warning(timeout_error.message)
                    self._fail(handle, timeout_error.kind, timeout_error.message)
                    return

                job = self._poll_collapsed(handle)
                if job.is_terminal:
                    job_logger.info(f"Job finished: {job.state.value}")
                    return

        except Exception as e:
            job_logger.exception(f"Job worker crashed: {e}")
            self._fail(handle, ErrorKind.ORDER_FAILED, f"Internal error: {e}")

        finally:
            with self._threads_lock:
                self._threads.pop(handle, None)
                self._wake_events.pop(handle, None)
            job_logger.debug("Job thread exiting")

    def _create_upstream(self, job: OrderJob) -> str:
        if job.kind is JobKind.STOCK_ORDER:
            identifier = job.input
            return self._client.create_order(identifier.site, identifier.id, identifier.source_url)
        prompt = job.input
        return self._client.create_ai_job(prompt.prompt, prompt.style, prompt.size)

    def _poll_interval(self, kind: JobKind) -> float:
        if kind is JobKind.AI_GENERATION:
            return self._ai_poll_interval
        return self._stock_poll_interval

    def _poll_collapsed(self, handle: str) -> OrderJob:
        """One status poll per job at a time; late callers share the result."""
        with self._inflight_lock:
            future = self._inflight.get(handle)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[handle] = future

        if not owner:
            return future.result()

        try:
            job = self._poll_once(handle)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(job)
            return job
        finally:
            with self._inflight_lock:
                self._inflight.pop(handle, None)

    def _poll_once(self, handle: str) -> OrderJob:
        """
        Fetch upstream status once and apply the outcome.

        Client errors fail the job rather than propagating.

        Returns:
            Snapshot after the poll
        """
        job = self._registry.get(handle)
        if job.state is not JobState.POLLING:
            return job

        job_logger = get_job_logger(handle)

        try:
            report = self._fetch_status(job)
            download = self._resolve_download(job, report)
        except StockOrderWebError as e:
            job_logger.error(f"Status poll failed: {e.message}")
            return self._fail(handle, e.kind or ErrorKind.ORDER_FAILED, e.message)

        poll_fields = {
            "attempts": job.attempts + 1,
            "last_polled_at": datetime.now(timezone.utc),
            "progress": report.progress if report.progress is not None else job.progress,
        }

        if report.state is UpstreamState.FAILED:
            failure = OrderFailedError(report.message or f"Upstream status: {report.raw_status}")
            job_logger.warning(f"Upstream reported failure: {failure.message}")
            updated = self._registry.update(
                handle,
                JobState.FAILED,
                failure=failure.kind,
                failure_message=failure.message,
                **poll_fields
            )
        elif report.state is UpstreamState.READY and download is not None:
            poll_fields["progress"] = 100
            updated = self._registry.update(handle, JobState.READY, result=download, **poll_fields)
        elif report.state is UpstreamState.READY and job.kind is JobKind.AI_GENERATION:
            updated = self._registry.update(
                handle,
                JobState.FAILED,
                failure=ErrorKind.MALFORMED_RESPONSE,
                failure_message="Generation finished without output files",
                **poll_fields
            )
        else:
            updated = self._registry.update(handle, JobState.POLLING, **poll_fields)

        return updated or self._registry.get(handle)

    def _fetch_status(self, job: OrderJob) -> StatusReport:
        if job.kind is JobKind.AI_GENERATION:
            return self._client.get_ai_job_status(job.upstream_handle)
        return self._client.get_order_status(job.upstream_handle)

    def _resolve_download(self, job: OrderJob, report: StatusReport) -> Optional[DownloadRef]:
        """Link for a ready job: from the status itself, else the download endpoint."""
        if report.state is not UpstreamState.READY:
            return None
        if report.download is not None:
            return report.download
        if job.kind is JobKind.STOCK_ORDER:
            return self._client.get_download_link(job.upstream_handle)
        return None

    def _fail(self, handle: str, kind: ErrorKind, message: str) -> OrderJob:
        updated = self._registry.update(
            handle, JobState.FAILED, failure=kind, failure_message=message
        )
        return updated or self._registry.get(handle)
