"""
MODULE OVERVIEW:
The single-request HTTP layer underneath every polling session.

WHAT IS HAPPENING HERE:
We use HTTPX to make exactly one GET per call. The query string carries the
session's params plus `lastUpdate`, so the server can answer "what changed
since then". Caching is switched off because a cached answer to "anything new?"
is worse than no answer.
Every outcome is classified: a parsed envelope on success, or one of
NetworkError / HttpError / ParseError. This layer never retries; deciding when
to ask again is the session's job.
"""
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx
from loguru import logger
from pydantic import ValidationError

from hospital_polling.shared.errors import HttpError, NetworkError, ParseError
from hospital_polling.shared.models import PollEnvelope


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class PollTransport:
    def __init__(
        self,
        base_url: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    def build_url(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        last_update: str | None = None,
    ) -> str:
        query = {k: _format_value(v) for k, v in (params or {}).items() if v is not None}
        if last_update:
            query["lastUpdate"] = last_update

        url = f"{self.base_url}{endpoint}"
        if query:
            url += "?" + urlencode(query)
        return url

    def build_headers(self, auth_token: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    async def fetch(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        last_update: str | None = None,
        auth_token: str | None = None,
    ) -> PollEnvelope:
        url = self.build_url(endpoint, params, last_update)
        logger.debug(f"event=request method=GET url={url}")

        try:
            response = await self.client.get(url, headers=self.build_headers(auth_token))
        except httpx.RequestError as e:
            raise NetworkError(f"GET {endpoint} failed: {e!r}") from e

        if not response.is_success:
            raise HttpError(_error_message(response), status_code=response.status_code)

        try:
            envelope = PollEnvelope.model_validate(response.json())
        except ValidationError as e:
            raise ParseError(f"GET {endpoint} returned an invalid envelope: {e.error_count()} error(s)") from e
        except ValueError as e:
            raise ParseError(f"GET {endpoint} returned a non-JSON body") from e

        if not envelope.success:
            raise HttpError(envelope.error or "Polling request failed", status_code=response.status_code)
        return envelope


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"
