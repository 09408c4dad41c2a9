"""
MODULE OVERVIEW:
The typed data structures shared by the polling client and the sandbox server,
powered by Pydantic v2.

WHAT IS HAPPENING HERE:
The client only understands a thin envelope around each response: a `success`
flag, an opaque `data` payload, and an optional `pollingInfo` hint telling us
how long to wait before asking again. Everything inside `data` belongs to the
hospital backend and is passed through untouched. The server side builds its
responses from the same models, so both ends agree on field names and aliases.
"""
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SessionState = Literal["active", "stopped"]


class PollingInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    recommended_interval: int | float | None = Field(None, alias="recommendedInterval")


# The universal wrapper around every polling response.
class PollEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    success: bool
    data: dict[str, Any] | None = None
    polling_info: PollingInfo | None = Field(None, alias="pollingInfo")
    error: str | None = None

    @property
    def current_timestamp(self) -> str | None:
        if not self.data:
            return None
        value = self.data.get("currentTimestamp")
        return value if isinstance(value, str) and value else None

    @property
    def recommended_interval(self) -> float | None:
        return self.polling_info.recommended_interval if self.polling_info else None


class SessionStatus(BaseModel):
    """Read-only snapshot of one polling session."""

    model_config = ConfigDict(frozen=True)

    id: str
    endpoint: str
    interval: int
    retry_count: int
    last_update: str | None
    state: SessionState


class IntervalBounds(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    min_interval: int = Field(alias="minInterval")
    max_interval: int = Field(alias="maxInterval")


# Payload of /hospitals/{id}/polling/config. `activityAnalysis` and any other
# extras stay available as model extras.
class PollingConfigInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    recommended_interval: int = Field(alias="recommendedInterval")
    configuration: IntervalBounds | None = None


class HealthInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str
    timestamp: str | None = None
