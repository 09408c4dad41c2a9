"""
MODULE OVERVIEW:
One independently scheduled polling loop against a fixed endpoint.

WHAT IS HAPPENING HERE:
Each session is its own asyncio Task running "request, then sleep" forever.
There is no shared run loop: a slow or failing session only ever delays itself.
The loop is driven by an explicit state value. `stop()` flips it to "stopped"
and cancels the task, so a request that is still in flight is abandoned and
its answer never reaches the callbacks.
On success the server may recommend a new cadence; on failure we back off
exponentially and give up after MAX_RETRIES, removing ourselves from the client.
Anything unexpected that escapes a tick (e.g. using a closed HTTP client) is
still handed to `on_error` before the session retires.
"""
import asyncio
import inspect
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from loguru import logger

from hospital_polling.shared.client_utils import clamp_interval, make_session_stats, next_interval, retry_delay
from hospital_polling.shared.errors import PollingError
from hospital_polling.shared.models import PollEnvelope, SessionState, SessionStatus

if TYPE_CHECKING:
    from hospital_polling.client.polling_client import PollingClient

# Callbacks may be plain functions or coroutine functions.
Updater = Callable[[Any, str], Awaitable[None] | None]
ErrorHandler = Callable[[PollingError, str, int], Awaitable[None] | None]


def _ignore_update(data: Any, session_id: str) -> None:
    pass


def _log_error(error: PollingError, session_id: str, retry_count: int) -> None:
    logger.warning(f"session_id={session_id} event=error retry={retry_count} reason='{error}'")


class PollingSession:
    def __init__(
        self,
        client: "PollingClient",
        session_id: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        last_update: str | None = None,
        interval: int | None = None,
        on_update: Updater | None = None,
        on_error: ErrorHandler | None = None,
    ):
        self.client = client
        self.id = session_id
        self.endpoint = endpoint
        self.params: dict[str, Any] = dict(params or {})
        self.last_update = last_update

        cfg = client.settings
        self.interval = clamp_interval(interval or cfg.DEFAULT_INTERVAL_MS, cfg.MIN_INTERVAL_MS, cfg.MAX_INTERVAL_MS)
        self.retry_count = 0
        self.state: SessionState = "active"

        self.on_update: Updater = on_update or _ignore_update
        self.on_error: ErrorHandler = on_error or _log_error

        self.stats = make_session_stats()
        self._task: asyncio.Task | None = None

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    def start(self) -> None:
        """Schedule the loop; the first request goes out immediately."""
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poll:{self.id}")

    def stop(self) -> None:
        self.client._release(self)

    def halt(self) -> bool:
        """Enter the terminal state. Returns False if the session was already stopped."""
        if not self.is_active:
            return False
        self.state = "stopped"
        # From inside our own callback the state flag alone ends the loop.
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        return True

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def update_params(self, partial: Mapping[str, Any]) -> None:
        self.params = {**self.params, **partial}

    def get_status(self) -> SessionStatus:
        return SessionStatus(
            id=self.id,
            endpoint=self.endpoint,
            interval=self.interval,
            retry_count=self.retry_count,
            last_update=self.last_update,
            state=self.state,
        )

    async def _run(self) -> None:
        try:
            while self.is_active:
                delay_ms = await self.tick()
                if delay_ms is None or not self.is_active:
                    break
                await asyncio.sleep(delay_ms / 1000.0)
        except asyncio.CancelledError:
            logger.debug(f"session_id={self.id} event=cancelled")
        except Exception as error:
            logger.exception(f"session_id={self.id} endpoint={self.endpoint} event=crashed")
            if self.is_active:
                self.retry_count += 1
                self.stats["failures"] += 1
                failure = PollingError(f"{type(error).__name__}: {error}")
                failure.__cause__ = error
                await self._notify(self.on_error, failure, self.id, self.retry_count)
            self.stop()

    async def tick(self) -> int | None:
        """Perform one request. Returns the delay before the next one, or None once the session has ended."""
        try:
            envelope = await self.client.transport.fetch(
                self.endpoint,
                dict(self.params),
                self.last_update,
                self.client.auth_token,
            )
        except PollingError as error:
            if not self.is_active:
                return None
            return await self._on_failure(error)

        if not self.is_active:
            return None
        return await self._on_success(envelope)

    async def _on_success(self, envelope: PollEnvelope) -> int | None:
        cfg = self.client.settings
        self.retry_count = 0
        self.stats["updates_received"] += 1
        self.stats["last_success_at"] = datetime.now(timezone.utc).isoformat()
        if envelope.data is not None and envelope.data.get("hasChanges") is False:
            self.stats["empty_responses"] += 1

        if envelope.current_timestamp:
            self.last_update = envelope.current_timestamp

        self.interval = next_interval(
            self.interval,
            envelope.recommended_interval,
            cfg.MIN_INTERVAL_MS,
            cfg.MAX_INTERVAL_MS,
            adaptive=cfg.ADAPTIVE_POLLING,
        )

        await self._notify(self.on_update, envelope.data, self.id)
        return self.interval if self.is_active else None

    async def _on_failure(self, error: PollingError) -> int | None:
        cfg = self.client.settings
        self.retry_count += 1
        self.stats["failures"] += 1
        logger.warning(
            f"session_id={self.id} endpoint={self.endpoint} event=failure "
            f"kind={error.kind} attempt={self.retry_count} reason='{error}'"
        )

        await self._notify(self.on_error, error, self.id, self.retry_count)
        if not self.is_active:
            return None

        if self.retry_count > cfg.MAX_RETRIES:
            logger.error(f"session_id={self.id} endpoint={self.endpoint} event=retired retries={cfg.MAX_RETRIES}")
            self.stop()
            return None

        return retry_delay(self.interval, self.retry_count, cfg.MAX_INTERVAL_MS)

    async def _notify(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"session_id={self.id} event=callback_error callback={getattr(callback, '__name__', callback)}")
