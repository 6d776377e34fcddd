"""
Unit tests for ResilientClient.

The wire is replaced by httpx.MockTransport and sleeps are recorded
instead of performed, so retry schedules can be asserted exactly.
"""

import json
from decimal import Decimal

import httpx
import pytest

from core.api_client import ResilientClient
from core.exceptions import (
    AuthError,
    ClientInvalidError,
    ErrorKind,
    MalformedResponseError,
    NetworkUnreachableError,
    RequestTimeoutError,
    RetryExhaustedError,
    ServerFailureError,
)
from core.retry import RetryPolicy
from models.identifier import SiteKey
from models.upstream import UpstreamState


BASE_URL = "https://api.test/v1"


class Recorder:
    """Serves scripted responses and records requests and sleeps."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.sleeps = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# Fixtures

@pytest.fixture
def make_client():
    """Factory building a client around scripted responses."""
    clients = []

    def _make(*responses, policy=None, **kwargs):
        recorder = Recorder(*responses)
        client = ResilientClient(
            base_url=BASE_URL,
            api_key="secret",
            retry_policy=policy or RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=10.0),
            transport=httpx.MockTransport(recorder.handler),
            sleep=recorder.sleeps.append,
            **kwargs
        )
        clients.append(client)
        return client, recorder

    yield _make

    for client in clients:
        client.close()


def ok(payload, status=200, **kwargs):
    return httpx.Response(status, json=payload, **kwargs)


class TestRequests:
    """Request construction and response unwrapping."""

    def test_create_order_sends_key_and_body(self, make_client):
        client, recorder = make_client(ok({"success": True, "data": {"order_id": "ord_1"}}))

        handle = client.create_order(SiteKey.SHUTTERSTOCK, "123456")

        assert handle == "ord_1"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/orders"
        assert request.headers["X-Api-Key"] == "secret"
        assert json.loads(request.content) == {"site_id": "shutterstock", "stock_id": "123456"}

    def test_create_order_forwards_source_url(self, make_client):
        client, recorder = make_client(ok({"task_id": "task_9"}))

        handle = client.create_order("istockphoto", "42", source_url="https://www.istockphoto.com/x-gm42")

        assert handle == "task_9"
        assert json.loads(recorder.requests[0].content)["url"] == "https://www.istockphoto.com/x-gm42"

    def test_create_order_without_handle_is_malformed(self, make_client):
        client, recorder = make_client(ok({"success": True, "data": {}}))

        with pytest.raises(MalformedResponseError):
            client.create_order(SiteKey.SHUTTERSTOCK, "1")
        assert len(recorder.requests) == 1

    def test_order_status_with_link(self, make_client):
        client, recorder = make_client(ok({
            "status": "completed",
            "progress": 100,
            "downloadLink": "https://dl.test/file.jpg",
            "fileName": "file.jpg",
        }))

        report = client.get_order_status("ord_1")

        assert recorder.requests[0].url.path == "/v1/orders/ord_1/status"
        assert report.state is UpstreamState.READY
        assert report.progress == 100
        assert report.download.url == "https://dl.test/file.jpg"
        assert report.download.file_name == "file.jpg"

    def test_order_status_unknown_is_pending(self, make_client):
        client, _ = make_client(ok({"status": "teleporting", "progress": "250"}))

        report = client.get_order_status("ord_1")

        assert report.state is UpstreamState.PENDING
        assert report.progress == 100
        assert report.download is None

    def test_download_link(self, make_client):
        client, _ = make_client(ok({"data": {"downloadLink": "https://dl.test/a", "fileName": "a.jpg"}}))

        link = client.get_download_link("ord_1")

        assert link.url == "https://dl.test/a"
        assert link.file_name == "a.jpg"

    def test_download_link_not_ready_yet(self, make_client):
        client, _ = make_client(ok({"status": "downloading"}))
        assert client.get_download_link("ord_1") is None

    def test_ai_job_status_uses_first_file(self, make_client):
        client, recorder = make_client(ok({
            "status": "completed",
            "percentage_complete": 100,
            "files": [{"download": "https://dl.test/ai-1.png"}, {"download": "https://dl.test/ai-2.png"}],
        }))

        report = client.get_ai_job_status("job_1")

        assert recorder.requests[0].url.path == "/v1/ai/jobs/job_1"
        assert report.state is UpstreamState.READY
        assert report.download_url == "https://dl.test/ai-1.png"

    def test_create_ai_job_omits_empty_options(self, make_client):
        client, recorder = make_client(ok({"job_id": "job_7"}))

        assert client.create_ai_job("a red fox", style="photo") == "job_7"
        assert json.loads(recorder.requests[0].content) == {"prompt": "a red fox", "style": "photo"}

    def test_credits(self, make_client):
        client, _ = make_client(ok({"balance": "12.50", "username": "demo"}))

        credits = client.get_credits()

        assert credits.balance == Decimal("12.50")
        assert credits.username == "demo"

    def test_stock_sites_skip_unknown_providers(self, make_client):
        client, _ = make_client(ok({
            "shutterstock": {"active": True, "price": 0.5},
            "istockphoto": {"active": False, "price": 1},
            "somewhere": {"active": True, "price": 2},
        }))

        configs = client.get_stock_sites()

        assert set(configs) == {SiteKey.SHUTTERSTOCK, SiteKey.ISTOCKPHOTO}
        assert configs[SiteKey.SHUTTERSTOCK].active is True
        assert configs[SiteKey.SHUTTERSTOCK].unit_price == Decimal("0.5")
        assert configs[SiteKey.ISTOCKPHOTO].active is False

    def test_search_params(self, make_client):
        client, recorder = make_client(ok({"results": [{"id": 1}], "total": 45}))

        result = client.search("cats", page=2, limit=20, category="animals", sort=None)

        params = recorder.requests[0].url.params
        assert params["q"] == "cats"
        assert params["page"] == "2"
        assert params["type"] == "all"
        assert params["category"] == "animals"
        assert "sort" not in params
        assert result.total == 45
        assert result.has_more is True


class TestErrorClassification:
    """Status codes and transport failures map onto the error taxonomy."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_is_not_retried(self, make_client, status):
        client, recorder = make_client(ok({"message": "bad key"}, status=status))

        with pytest.raises(AuthError) as exc_info:
            client.get_credits()

        assert exc_info.value.kind is ErrorKind.AUTH
        assert exc_info.value.message == "bad key"
        assert len(recorder.requests) == 1
        assert recorder.sleeps == []

    def test_other_4xx_is_not_retried(self, make_client):
        client, recorder = make_client(ok({"error": "unknown stock id"}, status=404))

        with pytest.raises(ClientInvalidError):
            client.get_order_status("nope")
        assert len(recorder.requests) == 1

    def test_success_false_is_client_invalid(self, make_client):
        client, recorder = make_client(ok({"success": False, "message": "Insufficient balance"}))

        with pytest.raises(ClientInvalidError, match="Insufficient balance"):
            client.create_order(SiteKey.SHUTTERSTOCK, "1")
        assert len(recorder.requests) == 1

    def test_non_json_body_is_malformed_and_not_retried(self, make_client):
        client, recorder = make_client(httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(MalformedResponseError):
            client.get_credits()
        assert len(recorder.requests) == 1

    def test_timeout_is_classified(self, make_client):
        client, recorder = make_client(
            httpx.ReadTimeout("read timed out"),
            policy=RetryPolicy(max_attempts=1),
        )

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.get_credits()

        assert isinstance(exc_info.value.last_error, RequestTimeoutError)
        assert exc_info.value.underlying_kind is ErrorKind.TIMEOUT
        assert recorder.sleeps == []

    def test_connect_error_is_classified(self, make_client):
        client, _ = make_client(
            httpx.ConnectError("connection refused"),
            policy=RetryPolicy(max_attempts=1),
        )

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.get_credits()

        assert isinstance(exc_info.value.last_error, NetworkUnreachableError)


class TestRetry:
    """Retry ceiling, backoff schedule and Retry-After handling."""

    def test_retry_ceiling_and_backoff(self, make_client):
        client, recorder = make_client(ok({"error": "down"}, status=503))

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.get_credits()

        error = exc_info.value
        assert error.attempts == 3
        assert isinstance(error.last_error, ServerFailureError)
        assert error.underlying_kind is ErrorKind.SERVER_FAILURE
        assert len(recorder.requests) == 3
        assert recorder.sleeps == [2.0, 4.0]

    def test_backoff_is_capped_by_max_delay(self, make_client):
        client, recorder = make_client(
            ok({}, status=500),
            policy=RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=5.0),
        )

        with pytest.raises(RetryExhaustedError):
            client.health_check()
        assert recorder.sleeps == [2.0, 4.0, 5.0, 5.0]

    def test_recovers_after_transient_failure(self, make_client):
        client, recorder = make_client(
            ok({}, status=502),
            ok({"balance": 3}),
        )

        assert client.get_credits().balance == Decimal("3")
        assert len(recorder.requests) == 2
        assert recorder.sleeps == [2.0]

    def test_timeouts_are_retried(self, make_client):
        client, recorder = make_client(httpx.ReadTimeout("slow"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.get_credits()

        assert isinstance(exc_info.value.last_error, RequestTimeoutError)
        assert len(recorder.requests) == 3

    def test_retry_after_overrides_backoff(self, make_client):
        client, recorder = make_client(
            ok({}, status=429, headers={"Retry-After": "7"}),
            ok({"balance": 1}),
        )

        client.get_credits()
        assert recorder.sleeps == [7.0]

    def test_retry_after_is_not_capped(self, make_client):
        client, recorder = make_client(
            ok({}, status=429, headers={"Retry-After": "30"}),
            ok({"balance": 1}),
        )

        client.get_credits()
        assert recorder.sleeps == [30.0]

    def test_retry_after_ignored_when_disabled(self, make_client):
        client, recorder = make_client(
            ok({}, status=429, headers={"Retry-After": "30"}),
            ok({"balance": 1}),
            policy=RetryPolicy(respect_retry_after=False),
        )

        client.get_credits()
        assert recorder.sleeps == [2.0]

    def test_429_without_header_uses_backoff(self, make_client):
        client, recorder = make_client(
            ok({}, status=429),
            ok({"balance": 1}),
        )

        client.get_credits()
        assert recorder.sleeps == [2.0]


class TestConstruction:

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            ResilientClient(base_url="")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            ResilientClient(base_url=BASE_URL, timeout_seconds=0)

    def test_throttle_waits_between_requests(self, make_client):
        client, recorder = make_client(ok({"balance": 1}), min_request_interval=60.0)

        client.get_credits()
        client.get_credits()

        assert len(recorder.sleeps) == 1
        assert 0 < recorder.sleeps[0] <= 60.0
