"""
Unit tests for OrderJob transitions and the JobRegistry.
"""

import queue
import threading
from datetime import timedelta

import pytest

from core.exceptions import DuplicateSubmissionError, ErrorKind, UnknownHandleError
from models.identifier import ParsedIdentifier, SiteKey
from models.order_job import AIPrompt, JobKind, JobState, OrderJob
from models.upstream import DownloadRef
from services.job_registry import JobRegistry


# Fixtures

@pytest.fixture
def identifier():
    return ParsedIdentifier(raw="123456", site=SiteKey.SHUTTERSTOCK, id="123456", valid=True)


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def job(registry, identifier):
    return registry.add(OrderJob.create_stock_order(identifier))


def _drive_to_ready(registry, handle):
    registry.update(handle, JobState.SUBMITTED, upstream_handle="ord_1")
    registry.update(handle, JobState.POLLING)
    return registry.update(handle, JobState.READY, result=DownloadRef(url="https://dl.test/1"))


class TestOrderJob:
    """State machine rules on the snapshot itself."""

    def test_new_job(self, identifier):
        job = OrderJob.create_stock_order(identifier)
        assert job.state is JobState.CREATED
        assert job.kind is JobKind.STOCK_ORDER
        assert job.attempts == 0
        assert len(job.handle) == 32
        assert job.dedupe_key == ("stock_order", "shutterstock", "123456")

    def test_ai_dedupe_key(self):
        job = OrderJob.create_ai_generation(AIPrompt("a fox", style="photo"))
        assert job.dedupe_key == ("ai_generation", "a fox", "photo", "")

    def test_illegal_transition_raises(self, identifier):
        job = OrderJob.create_stock_order(identifier)
        with pytest.raises(ValueError):
            job.transition(JobState.READY)

    def test_terminal_sets_finished_at(self, identifier):
        job = OrderJob.create_stock_order(identifier).transition(JobState.CANCELLED)
        assert job.is_terminal
        assert job.finished_at is not None

    def test_terminal_has_no_exit(self, identifier):
        job = OrderJob.create_stock_order(identifier).transition(
            JobState.FAILED, failure=ErrorKind.AUTH
        )
        for state in JobState:
            assert job.can_transition_to(state) is False

    def test_attempts_cannot_decrease(self, identifier):
        job = (
            OrderJob.create_stock_order(identifier)
            .transition(JobState.SUBMITTED)
            .transition(JobState.POLLING, attempts=3)
        )
        with pytest.raises(ValueError):
            job.transition(JobState.POLLING, attempts=2)

    def test_to_dict(self, identifier):
        data = OrderJob.create_stock_order(identifier).to_dict()
        assert data["state"] == "created"
        assert data["kind"] == "stock_order"
        assert data["input"]["id"] == "123456"
        assert data["result"] is None


class TestRegistryBasics:

    def test_get_unknown_handle(self, registry):
        with pytest.raises(UnknownHandleError):
            registry.get("missing")

    def test_duplicate_live_job_rejected(self, registry, job, identifier):
        with pytest.raises(DuplicateSubmissionError) as exc_info:
            registry.add(OrderJob.create_stock_order(identifier))
        assert exc_info.value.existing_handle == job.handle

    def test_resubmission_allowed_after_terminal(self, registry, job, identifier):
        registry.update(job.handle, JobState.CANCELLED)
        again = registry.add(OrderJob.create_stock_order(identifier))
        assert again.handle != job.handle
        assert len(registry) == 2

    def test_update_applies_transition(self, registry, job):
        updated = registry.update(job.handle, JobState.SUBMITTED, upstream_handle="ord_1")
        assert updated.state is JobState.SUBMITTED
        assert registry.get(job.handle).upstream_handle == "ord_1"

    def test_update_on_terminal_is_noop(self, registry, job):
        registry.update(job.handle, JobState.CANCELLED)
        assert registry.update(job.handle, JobState.FAILED, failure=ErrorKind.AUTH) is None
        assert registry.get(job.handle).state is JobState.CANCELLED

    def test_update_unknown_handle(self, registry):
        with pytest.raises(UnknownHandleError):
            registry.update("missing", JobState.SUBMITTED)

    def test_find_live(self, registry, job):
        assert registry.find_live(job.dedupe_key).handle == job.handle
        registry.update(job.handle, JobState.CANCELLED)
        assert registry.find_live(job.dedupe_key) is None

    def test_list_is_oldest_first(self, registry, job):
        second = registry.add(OrderJob.create_ai_generation(AIPrompt("a fox")))
        assert [j.handle for j in registry.list()] == [job.handle, second.handle]

    def test_remove(self, registry, job):
        assert registry.remove(job.handle).handle == job.handle
        with pytest.raises(UnknownHandleError):
            registry.get(job.handle)


class TestEviction:

    def test_evicts_only_old_terminal_jobs(self, registry, job):
        live = registry.add(OrderJob.create_ai_generation(AIPrompt("a fox")))
        finished = registry.update(job.handle, JobState.CANCELLED)

        assert registry.evict_expired(60, now=finished.finished_at + timedelta(seconds=30)) == 0
        assert registry.evict_expired(60, now=finished.finished_at + timedelta(seconds=61)) == 1

        with pytest.raises(UnknownHandleError):
            registry.get(job.handle)
        assert registry.get(live.handle).state is JobState.CREATED


class TestSubscriptions:

    def test_snapshots_arrive_in_order_and_stream_ends(self, registry, job):
        subscription = registry.subscribe(job.handle)
        _drive_to_ready(registry, job.handle)

        states = [snapshot.state for snapshot in subscription]

        assert states == [JobState.CREATED, JobState.SUBMITTED, JobState.POLLING, JobState.READY]
        assert subscription.get(timeout=0.1) is None

    def test_terminal_job_yields_single_snapshot(self, registry, job):
        registry.update(job.handle, JobState.CANCELLED)

        snapshots = list(registry.subscribe(job.handle))

        assert [s.state for s in snapshots] == [JobState.CANCELLED]

    def test_exactly_one_terminal_snapshot(self, registry, job):
        subscription = registry.subscribe(job.handle)
        registry.update(job.handle, JobState.CANCELLED)
        registry.update(job.handle, JobState.FAILED, failure=ErrorKind.AUTH)

        terminal = [s for s in subscription if s.is_terminal]
        assert len(terminal) == 1
        assert terminal[0].state is JobState.CANCELLED

    def test_get_times_out_when_idle(self, registry, job):
        subscription = registry.subscribe(job.handle)
        assert subscription.get(timeout=0.1).state is JobState.CREATED
        with pytest.raises(queue.Empty):
            subscription.get(timeout=0.05)

    def test_close_ends_stream(self, registry, job):
        subscription = registry.subscribe(job.handle)
        subscription.close()
        registry.update(job.handle, JobState.SUBMITTED)

        assert [s.state for s in subscription] == [JobState.CREATED]

    def test_subscribe_unknown_handle(self, registry):
        with pytest.raises(UnknownHandleError):
            registry.subscribe("missing")

    def test_concurrent_updates_are_seen_in_order(self, registry, job):
        subscription = registry.subscribe(job.handle)
        registry.update(job.handle, JobState.SUBMITTED)
        registry.update(job.handle, JobState.POLLING)

        def poll(n):
            for _ in range(n):
                current = registry.get(job.handle)
                registry.update(job.handle, JobState.POLLING, attempts=current.attempts)

        threads = [threading.Thread(target=poll, args=(20,)) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        registry.update(job.handle, JobState.CANCELLED)

        snapshots = list(subscription)
        assert snapshots[-1].state is JobState.CANCELLED
        assert sum(1 for s in snapshots if s.is_terminal) == 1
