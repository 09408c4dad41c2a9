"""
Tests for the per-session polling loop: cadence, retries, cancellation.
"""
import asyncio

import httpx
import pytest

from conftest import BASE_URL, ScriptedServer, network_down, ok, status, wait_until
from hospital_polling.client.polling_client import PollingClient
from hospital_polling.shared.config import PollingSettings
from hospital_polling.shared.errors import HttpError, NetworkError, PollingError


class Recorder:
    def __init__(self):
        self.updates = []
        self.errors = []

    def on_update(self, data, session_id):
        self.updates.append((data, session_id))

    def on_error(self, error, session_id, retry_count):
        self.errors.append((error, session_id, retry_count))


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


def record_sleeps(monkeypatch) -> list[float]:
    """Replace asyncio.sleep with a recorder that only yields to the loop."""
    delays: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays


class TestSuccessfulPolling:
    @pytest.mark.asyncio
    async def test_first_response_drives_update_and_interval(self, client, server, recorder):
        data = {"hasChanges": True, "currentTimestamp": "2023-01-01T00:00:00.000Z"}
        server.queue(ok(data, recommended=5000))

        session = client.start_polling("test-session", "/test-endpoint", on_update=recorder.on_update)
        await wait_until(lambda: recorder.updates)

        assert recorder.updates == [(data, "test-session")]
        status_ = session.get_status()
        assert status_.interval == 5000
        assert status_.last_update == "2023-01-01T00:00:00.000Z"
        assert status_.endpoint == "/test-endpoint"
        assert server.requests[0].url.path == "/api/test-endpoint"

    @pytest.mark.asyncio
    async def test_last_update_carried_into_next_request(self, client, server):
        first, second, third = "2023-01-01T10:00:00.000Z", "2023-01-01T12:00:00.000Z", "2023-01-01T14:00:00.000Z"
        server.queue(ok({"currentTimestamp": second}), ok({"currentTimestamp": third}))

        session = client.start_polling("timestamps", "/test-endpoint", last_update=first)
        await wait_until(lambda: session.get_status().last_update == third)

        assert server.requests[0].url.params["lastUpdate"] == first
        assert server.requests[1].url.params["lastUpdate"] == second
        assert b"lastUpdate=2023-01-01T12%3A00%3A00.000Z" in server.requests[1].url.query

    @pytest.mark.asyncio
    async def test_response_without_timestamp_keeps_last_update(self, client, server):
        server.queue(ok({"currentTimestamp": "2023-01-01T10:00:00.000Z"}), ok({"hasChanges": False}))

        session = client.start_polling("keep-ts", "/test-endpoint")
        await wait_until(lambda: session.stats["updates_received"] >= 2)

        assert session.last_update == "2023-01-01T10:00:00.000Z"
        assert session.stats["empty_responses"] >= 1

    @pytest.mark.asyncio
    async def test_update_params_merges_for_next_request(self, client, server):
        session = client.start_polling("params", "/test-endpoint", params={"a": 1}, interval=200)
        await wait_until(lambda: len(server.requests) == 1)

        session.update_params({"b": 2})
        await wait_until(lambda: len(server.requests) >= 2)

        assert dict(server.requests[0].url.params) == {"a": "1"}
        assert dict(server.requests[1].url.params) == {"a": "1", "b": "2"}
        assert session.params == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, client, server):
        seen = []

        async def on_update(data, session_id):
            await asyncio.sleep(0)
            seen.append(session_id)

        server.queue(ok({"hasChanges": True}))
        client.start_polling("async-cb", "/test-endpoint", on_update=on_update)
        await wait_until(lambda: seen)

        assert seen[0] == "async-cb"

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_the_loop(self, client, server):
        calls = []

        def on_update(data, session_id):
            calls.append(data)
            raise RuntimeError("ui blew up")

        session = client.start_polling("bad-cb", "/test-endpoint", on_update=on_update)
        await wait_until(lambda: len(calls) >= 2)

        assert session.is_active
        assert session.retry_count == 0


class TestIntervalBounds:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("recommended", [1, 9, 10, 500, 60000, 60001, 10**9])
    async def test_interval_never_leaves_bounds(self, client, server, settings, recommended):
        server.queue(ok({}, recommended=recommended))

        session = client.start_polling("bounds", "/test-endpoint", interval=50)
        await wait_until(lambda: session.stats["updates_received"] >= 1)

        assert settings.MIN_INTERVAL_MS <= session.interval <= settings.MAX_INTERVAL_MS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("recommended", [1000, 20000])
    async def test_out_of_range_hint_keeps_prior_interval(self, recommended):
        server = ScriptedServer().queue(ok({}, recommended=recommended))
        settings = PollingSettings(
            BASE_URL="http://testserver/api",
            MIN_INTERVAL_MS=2000,
            MAX_INTERVAL_MS=10000,
            DEFAULT_INTERVAL_MS=5000,
        )
        async with PollingClient(settings, transport=httpx.MockTransport(server)) as client:
            session = client.start_polling("limits", "/test-endpoint")
            await wait_until(lambda: session.stats["updates_received"] == 1)

            assert session.get_status().interval == 5000

    @pytest.mark.asyncio
    async def test_initial_interval_is_clamped(self, client, settings):
        session = client.start_polling("tiny", "/test-endpoint", interval=1)
        assert session.interval == settings.MIN_INTERVAL_MS

    @pytest.mark.asyncio
    async def test_hint_ignored_when_adaptive_polling_off(self):
        server = ScriptedServer().queue(ok({}, recommended=8000))
        settings = PollingSettings(
            BASE_URL="http://testserver/api",
            MIN_INTERVAL_MS=10,
            DEFAULT_INTERVAL_MS=5000,
            ADAPTIVE_POLLING=False,
        )
        async with PollingClient(settings, transport=httpx.MockTransport(server)) as client:
            session = client.start_polling("fixed", "/test-endpoint")
            await wait_until(lambda: session.stats["updates_received"] == 1)

            assert session.interval == 5000


class TestFailures:
    @pytest.mark.asyncio
    async def test_retry_then_success_resets_retry_count(self, client, server, recorder):
        server.queue(network_down, ok({"hasChanges": False}))

        session = client.start_polling(
            "retry-test", "/test-endpoint", on_update=recorder.on_update, on_error=recorder.on_error
        )
        await wait_until(lambda: recorder.updates)

        assert len(server.requests) >= 2
        assert len(recorder.errors) == 1
        error, session_id, retry_count = recorder.errors[0]
        assert isinstance(error, NetworkError)
        assert (session_id, retry_count) == ("retry-test", 1)
        assert session.get_status().retry_count == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_change_interval(self, client, server):
        server.queue(status(500, {"error": "Server error"}), status(500, {"error": "Server error"}))

        session = client.start_polling("steady", "/test-endpoint", interval=40)
        await wait_until(lambda: session.stats["updates_received"] == 1)

        assert session.interval == 40

    @pytest.mark.asyncio
    async def test_http_error_reported_with_server_message(self, client, server, recorder):
        server.queue(status(500, {"error": "Server error"}))

        client.start_polling("http-error", "/test-endpoint", on_error=recorder.on_error)
        await wait_until(lambda: recorder.errors)

        error, session_id, retry_count = recorder.errors[0]
        assert isinstance(error, HttpError)
        assert str(error) == "Server error"
        assert (session_id, retry_count) == ("http-error", 1)

    @pytest.mark.asyncio
    async def test_session_retired_after_max_retries(self, client, server, recorder):
        server.default = network_down

        session = client.start_polling("max-retry-test", "/test-endpoint", on_error=recorder.on_error)
        await asyncio.wait_for(session.wait_closed(), timeout=2.0)

        assert len(server.requests) == 3
        assert [retry for _, _, retry in recorder.errors] == [1, 2, 3]
        assert session.state == "stopped"
        assert all(s.id != "max-retry-test" for s in client.get_active_sessions())

        await asyncio.sleep(0.1)
        assert len(server.requests) == 3

    @pytest.mark.asyncio
    async def test_retired_session_does_not_affect_siblings(self, client, server):
        healthy = ScriptedServer()

        def route(request):
            if request.url.path.endswith("/broken"):
                return network_down(request)
            return healthy(request)

        server.default = route
        broken = client.start_polling("broken", "/broken")
        fine = client.start_polling("fine", "/fine")
        await asyncio.wait_for(broken.wait_closed(), timeout=2.0)

        assert [s.id for s in client.get_active_sessions()] == ["fine"]
        count = len(healthy.requests)
        await wait_until(lambda: len(healthy.requests) > count)
        assert fine.is_active

    @pytest.mark.asyncio
    async def test_sleeps_for_backoff_delay_between_failures(self, client, server, monkeypatch):
        delays = record_sleeps(monkeypatch)
        server.default = network_down

        session = client.start_polling("backoff", "/test-endpoint")
        await session.wait_closed()

        # interval 20ms, MAX_RETRIES=2: two waits before the third attempt retires it
        assert delays == [pytest.approx(0.02), pytest.approx(0.04)]

    @pytest.mark.asyncio
    async def test_backoff_delay_capped_at_max_interval(self, monkeypatch):
        delays = record_sleeps(monkeypatch)
        server = ScriptedServer(default=network_down)
        settings = PollingSettings(
            BASE_URL=BASE_URL,
            DEFAULT_INTERVAL_MS=20,
            MIN_INTERVAL_MS=10,
            MAX_INTERVAL_MS=30,
            MAX_RETRIES=3,
        )
        polling_client = PollingClient(settings, transport=httpx.MockTransport(server))

        session = polling_client.start_polling("capped", "/test-endpoint")
        await session.wait_closed()
        await polling_client.aclose()

        assert delays == [pytest.approx(0.02), pytest.approx(0.03), pytest.approx(0.03)]
        assert session.interval == 20

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_before_retiring(self, client, server, recorder):
        def broken(request):
            raise RuntimeError("Cannot send a request, as the client has been closed.")

        server.default = broken

        session = client.start_polling("unexpected", "/test-endpoint", on_error=recorder.on_error)
        await asyncio.wait_for(session.wait_closed(), timeout=2.0)

        assert len(recorder.errors) == 1
        error, session_id, retry_count = recorder.errors[0]
        assert isinstance(error, PollingError)
        assert isinstance(error.__cause__, RuntimeError)
        assert "client has been closed" in str(error)
        assert (session_id, retry_count) == ("unexpected", 1)
        assert session.state == "stopped"
        assert client.get_session_status("unexpected") is None


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_response(self, settings):
        release = asyncio.Event()
        calls = []
        updates = []

        async def slow_handler(request):
            calls.append(request)
            await release.wait()
            return httpx.Response(200, json={"success": True, "data": {"hasChanges": True}})

        async with PollingClient(settings, transport=httpx.MockTransport(slow_handler)) as client:
            session = client.start_polling("inflight", "/slow", on_update=lambda data, sid: updates.append(data))
            await wait_until(lambda: len(calls) == 1)

            session.stop()
            release.set()
            await session.wait_closed()
            await asyncio.sleep(0.05)

            assert updates == []
            assert len(calls) == 1
            assert client.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_halts_requests(self, client, server):
        session = client.start_polling("stop-me", "/test-endpoint")
        await wait_until(lambda: len(server.requests) >= 1)

        session.stop()
        session.stop()
        await session.wait_closed()
        count = len(server.requests)
        await asyncio.sleep(0.1)

        assert len(server.requests) == count
        assert session.get_status().state == "stopped"
        assert client.get_session_status("stop-me") is None

    @pytest.mark.asyncio
    async def test_stop_from_inside_update_callback(self, client, server):
        holder = {}

        def on_update(data, session_id):
            holder["session"].stop()

        holder["session"] = client.start_polling("self-stop", "/test-endpoint", on_update=on_update)
        await asyncio.wait_for(holder["session"].wait_closed(), timeout=2.0)

        assert len(server.requests) == 1
        assert client.get_active_sessions() == []
