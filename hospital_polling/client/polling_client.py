"""
MODULE OVERVIEW:
The session registry: the one object callers talk to.

WHAT IS HAPPENING HERE:
The client owns three things every session shares: the settings (base URL and
interval bounds), one HTTPX connection pool, and the bearer token. Sessions
hold a reference back to their client and read the token at the moment each
request is built, so `set_auth_token()` reaches every live session on its next
tick without any locking.
Starting a session under an id that is already polling replaces the old
session: it is stopped first, then the new loop begins.
The hospital-specific helpers are thin wrappers that fix the endpoint template
(and, for change detection, a faster cadence).
"""
import asyncio
from typing import Any, Callable, Mapping

import httpx
from loguru import logger
from pydantic import ValidationError

from hospital_polling.client.session import ErrorHandler, PollingSession, Updater
from hospital_polling.client.transport import PollTransport
from hospital_polling.shared.config import PollingSettings
from hospital_polling.shared.errors import ParseError, PollingError
from hospital_polling.shared.models import HealthInfo, PollingConfigInfo, SessionStatus

RESOURCES_ENDPOINT = "/hospitals/{hospital_id}/polling/resources"
BOOKINGS_ENDPOINT = "/hospitals/{hospital_id}/polling/bookings"
DASHBOARD_ENDPOINT = "/hospitals/{hospital_id}/polling/dashboard"
CHANGES_ENDPOINT = "/hospitals/{hospital_id}/polling/changes"
CONFIG_ENDPOINT = "/hospitals/{hospital_id}/polling/config"
HEALTH_ENDPOINT = "/polling/health"

ConnectionHook = Callable[[str, str], None]


def _noop_hook(session_id: str, endpoint: str) -> None:
    pass


class PollingClient:
    def __init__(
        self,
        settings: PollingSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or PollingSettings()
        self.transport = PollTransport(
            self.settings.BASE_URL,
            timeout_s=self.settings.REQUEST_TIMEOUT_S,
            transport=transport,
        )
        self._auth_token: str | None = self.settings.AUTH_TOKEN
        self._sessions: dict[str, PollingSession] = {}
        self._on_connect: ConnectionHook = _noop_hook
        self._on_disconnect: ConnectionHook = _noop_hook

    async def __aenter__(self) -> "PollingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        sessions = list(self._sessions.values())
        self.stop_all_polling()
        await asyncio.gather(*(s.wait_closed() for s in sessions))
        await self.transport.aclose()

    @property
    def auth_token(self) -> str | None:
        return self._auth_token

    def set_auth_token(self, token: str | None) -> None:
        self._auth_token = token
        logger.info(f"event=auth_token_set present={token is not None}")

    def set_event_handlers(
        self,
        on_connect: ConnectionHook | None = None,
        on_disconnect: ConnectionHook | None = None,
    ) -> None:
        if on_connect:
            self._on_connect = on_connect
        if on_disconnect:
            self._on_disconnect = on_disconnect

    # ==========================
    # SESSION LIFECYCLE
    # ==========================
    def start_polling(
        self,
        session_id: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        last_update: str | None = None,
        interval: int | None = None,
        on_update: Updater | None = None,
        on_error: ErrorHandler | None = None,
    ) -> PollingSession:
        if not session_id:
            raise ValueError("session_id is required")

        # Same id means replace: the old loop is stopped before the new one starts.
        self.stop_polling(session_id)

        session = PollingSession(
            self,
            session_id,
            endpoint,
            params=params,
            last_update=last_update,
            interval=interval,
            on_update=on_update,
            on_error=on_error,
        )
        session.start()
        self._sessions[session_id] = session

        logger.info(f"session_id={session_id} endpoint={endpoint} event=start interval={session.interval}")
        self._on_connect(session_id, endpoint)
        return session

    def stop_polling(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._release(session)

    def stop_all_polling(self) -> None:
        for session in list(self._sessions.values()):
            self._release(session)

    def _release(self, session: PollingSession) -> None:
        # Only drop the registry entry if it still points at this session;
        # a replaced session must not evict its successor.
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        if session.halt():
            logger.info(f"session_id={session.id} endpoint={session.endpoint} event=stop")
            self._on_disconnect(session.id, session.endpoint)

    def get_active_sessions(self) -> list[SessionStatus]:
        return [s.get_status() for s in self._sessions.values()]

    def get_session_status(self, session_id: str) -> SessionStatus | None:
        session = self._sessions.get(session_id)
        return session.get_status() if session else None

    # ==========================
    # HOSPITAL FEEDS
    # ==========================
    def poll_resources(self, session_id: str, hospital_id: int | str, **options: Any) -> PollingSession:
        options["params"] = {**(options.get("params") or {}), "hospitalId": hospital_id}
        return self.start_polling(session_id, RESOURCES_ENDPOINT.format(hospital_id=hospital_id), **options)

    def poll_bookings(self, session_id: str, hospital_id: int | str, **options: Any) -> PollingSession:
        options["params"] = {**(options.get("params") or {}), "hospitalId": hospital_id}
        return self.start_polling(session_id, BOOKINGS_ENDPOINT.format(hospital_id=hospital_id), **options)

    def poll_dashboard(self, session_id: str, hospital_id: int | str, **options: Any) -> PollingSession:
        return self.start_polling(session_id, DASHBOARD_ENDPOINT.format(hospital_id=hospital_id), **options)

    def poll_changes(self, session_id: str, hospital_id: int | str, **options: Any) -> PollingSession:
        """Fast change detection: polls more often than the general default."""
        options["params"] = {**(options.get("params") or {}), "hospitalId": hospital_id}
        options["interval"] = options.get("interval") or self.settings.change_interval_ms
        return self.start_polling(session_id, CHANGES_ENDPOINT.format(hospital_id=hospital_id), **options)

    # ==========================
    # ONE-SHOT PROBES
    # ==========================
    async def get_polling_config(self, hospital_id: int | str) -> PollingConfigInfo:
        endpoint = CONFIG_ENDPOINT.format(hospital_id=hospital_id)
        try:
            envelope = await self.transport.fetch(endpoint, {"hospitalId": hospital_id}, auth_token=self.auth_token)
            return PollingConfigInfo.model_validate(envelope.data or {})
        except ValidationError as e:
            logger.error(f"endpoint={endpoint} event=probe_failed reason='invalid config payload'")
            raise ParseError(f"GET {endpoint} returned an invalid polling config") from e
        except PollingError as e:
            logger.error(f"endpoint={endpoint} event=probe_failed reason='{e}'")
            raise

    async def check_health(self) -> HealthInfo:
        try:
            envelope = await self.transport.fetch(HEALTH_ENDPOINT, auth_token=self.auth_token)
            return HealthInfo.model_validate(envelope.data or {})
        except ValidationError as e:
            logger.error(f"endpoint={HEALTH_ENDPOINT} event=probe_failed reason='invalid health payload'")
            raise ParseError(f"GET {HEALTH_ENDPOINT} returned an invalid health payload") from e
        except PollingError as e:
            logger.error(f"endpoint={HEALTH_ENDPOINT} event=probe_failed reason='{e}'")
            raise
