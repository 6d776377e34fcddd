"""
Thread-safe registry of order jobs.

The registry is the ONLY place job state lives. Worker threads, cancel
requests and HTTP handlers all go through it:

    - Workers apply transitions with update()
    - Handlers read snapshots with get() / list()
    - Event streams receive snapshots through subscribe()

Thread Safety:
    - One threading.Lock guards jobs, versions and subscriber lists
    - OrderJob snapshots are immutable; update() swaps them atomically
    - Terminal jobs are never modified again (update() returns None)
    - Subscribers are fed after the lock is released; each snapshot carries
      a per-job version so late deliveries of older snapshots are dropped

Usage:
    registry = JobRegistry()
    registry.add(job)

    # Worker thread
    registry.update(job.handle, JobState.SUBMITTED, upstream_handle="ord_1")

    # Event stream
    for snapshot in registry.subscribe(job.handle):
        send(snapshot.to_dict())
"""

from __future__ import annotations

import queue
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.exceptions import DuplicateSubmissionError, UnknownHandleError
from models.order_job import JobState, OrderJob
from logging_config import get_logger


logger = get_logger(__name__)

_END = object()


class JobSubscription:
    """
    Ordered stream of snapshots for one job.

    Iteration yields every snapshot delivered (starting with the current
    one) and stops after the terminal snapshot or close().
    """

    def __init__(self, handle: str, on_close: Callable[["JobSubscription"], None]):
        self.handle = handle
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._last_version = -1
        self._ended = False
        self._on_close = on_close

    def _deliver(self, version: int, job: OrderJob) -> None:
        with self._lock:
            if self._ended or version <= self._last_version:
                return
            self._last_version = version
            self._queue.put(job)
            if job.is_terminal:
                self._ended = True
                self._queue.put(_END)

    def get(self, timeout: Optional[float] = None) -> Optional[OrderJob]:
        """
        Next snapshot, or None once the stream has ended.

        Raises:
            queue.Empty: If timeout elapses with nothing delivered
        """
        item = self._queue.get(timeout=timeout)
        if item is _END:
            # Leave the marker so later calls also see the end
            self._queue.put(_END)
            return None
        return item

    def close(self) -> None:
        """Stop receiving snapshots; pending ones remain readable."""
        with self._lock:
            if not self._ended:
                self._ended = True
                self._queue.put(_END)
        self._on_close(self)

    @property
    def ended(self) -> bool:
        return self._ended

    def __iter__(self):
        while True:
            job = self.get()
            if job is None:
                return
            yield job


class JobRegistry:
    """
    In-memory job store keyed by handle.

    Jobs stay registered after reaching a terminal state so their result
    can be read; evict_expired() removes them after the retention window.
    """

    def __init__(self):
        self._jobs: Dict[str, OrderJob] = {}
        self._versions: Dict[str, int] = {}
        self._subscribers: Dict[str, List[JobSubscription]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def add(self, job: OrderJob) -> OrderJob:
        """
        Register a new job.

        Raises:
            DuplicateSubmissionError: If a live job has the same dedupe key
            ValueError: If the handle is already registered
        """
        with self._lock:
            if job.handle in self._jobs:
                raise ValueError(f"Job handle already registered: {job.handle}")

            existing = self._find_live_locked(job.dedupe_key)
            if existing is not None:
                raise DuplicateSubmissionError(existing.handle)

            self._jobs[job.handle] = job
            self._versions[job.handle] = 0

        logger.debug(f"Registered job {job.handle[:8]} ({job.kind.value})")
        return job

    def get(self, handle: str) -> OrderJob:
        """
        Current snapshot of a job.

        Raises:
            UnknownHandleError: If no job has this handle
        """
        with self._lock:
            job = self._jobs.get(handle)
        if job is None:
            raise UnknownHandleError(handle)
        return job

    def find_live(self, dedupe_key: Tuple[str, ...]) -> Optional[OrderJob]:
        """Non-terminal job with this dedupe key, if any."""
        with self._lock:
            return self._find_live_locked(dedupe_key)

    def _find_live_locked(self, dedupe_key: Tuple[str, ...]) -> Optional[OrderJob]:
        for job in self._jobs.values():
            if not job.is_terminal and job.dedupe_key == dedupe_key:
                return job
        return None

    def update(self, handle: str, state: JobState, **changes: Any) -> Optional[OrderJob]:
        """
        Apply a transition atomically and notify subscribers.

        Returns:
            The new snapshot, or None if the job was already terminal

        Raises:
            UnknownHandleError: If no job has this handle
            ValueError: If the transition is not allowed from the current state
        """
        with self._lock:
            job = self._jobs.get(handle)
            if job is None:
                raise UnknownHandleError(handle)
            if job.is_terminal:
                return None

            updated = job.transition(state, **changes)
            self._jobs[handle] = updated
            version = self._versions[handle] + 1
            self._versions[handle] = version

            subscribers = list(self._subscribers.get(handle, ()))
            if updated.is_terminal:
                self._subscribers.pop(handle, None)

        for subscription in subscribers:
            subscription._deliver(version, updated)

        if job.state is not updated.state:
            logger.debug(f"Job {handle[:8]}: {job.state.value} -> {updated.state.value}")
        return updated

    def remove(self, handle: str) -> Optional[OrderJob]:
        """Forget a job; its open subscriptions are ended."""
        with self._lock:
            job = self._jobs.pop(handle, None)
            self._versions.pop(handle, None)
            subscribers = self._subscribers.pop(handle, [])

        for subscription in subscribers:
            subscription.close()
        return job

    def list(self) -> List[OrderJob]:
        """All snapshots, oldest first."""
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda job: job.created_at)

    def evict_expired(self, retention_seconds: float, now: Optional[datetime] = None) -> int:
        """
        Drop terminal jobs that finished more than retention_seconds ago.

        Returns:
            Number of jobs evicted
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=retention_seconds)

        with self._lock:
            expired = [
                handle for handle, job in self._jobs.items()
                if job.is_terminal and job.finished_at is not None and job.finished_at <= cutoff
            ]
            for handle in expired:
                del self._jobs[handle]
                self._versions.pop(handle, None)
                self._subscribers.pop(handle, None)

        if expired:
            logger.info(f"Evicted {len(expired)} expired jobs")
        return len(expired)

    def subscribe(self, handle: str) -> JobSubscription:
        """
        Open a snapshot stream for a job.

        The current snapshot is delivered first. For a job that is already
        terminal the stream holds that one snapshot and then ends.

        Raises:
            UnknownHandleError: If no job has this handle
        """
        subscription = JobSubscription(handle, self._unsubscribe)

        with self._lock:
            job = self._jobs.get(handle)
            if job is None:
                raise UnknownHandleError(handle)
            version = self._versions[handle]
            if not job.is_terminal:
                self._subscribers.setdefault(handle, []).append(subscription)

        subscription._deliver(version, job)
        return subscription

    def _unsubscribe(self, subscription: JobSubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.handle)
            if subscribers and subscription in subscribers:
                subscribers.remove(subscription)
                if not subscribers:
                    del self._subscribers[subscription.handle]
