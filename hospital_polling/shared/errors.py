"""
Failure taxonomy for polling requests.

Every error a session reports through its `on_error` callback is one of these,
so callers can branch on the kind without importing httpx.
"""


class PollingError(Exception):
    """Base class for every classified polling failure."""

    kind: str = "polling"


class NetworkError(PollingError):
    """The request could not be sent or no response came back."""

    kind = "network"


class HttpError(PollingError):
    """The server answered with a non-2xx status or rejected the poll."""

    kind = "http"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(PollingError):
    """The response body was not a valid polling envelope."""

    kind = "parse"
