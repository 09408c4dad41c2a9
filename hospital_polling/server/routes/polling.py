"""
MODULE OVERVIEW:
The polling endpoints of the sandbox server.

WHAT IS HAPPENING HERE:
Each route answers "what changed since `lastUpdate`?" from the in-memory
ChangeFeed and wraps the answer in the standard envelope. The timestamp is
taken *before* the query so nothing recorded during the query can fall between
two polls. `pollingInfo.recommendedInterval` tells the client to speed up while
things are changing and to relax when they are not.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Header, Query, Request

from hospital_polling.server.change_feed import ChangeFeed, parse_iso, to_iso, utcnow
from hospital_polling.shared.models import PollEnvelope, PollingInfo

ACTIVE_INTERVAL_MS = 10000
IDLE_INTERVAL_MS = 30000
MIN_INTERVAL_MS = 5000
MAX_INTERVAL_MS = 300000


class EnvelopeError(Exception):
    """Rendered by the app as `{"success": false, "error": message}`."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


async def require_token(request: Request, authorization: str | None = Header(None)) -> None:
    token = request.app.state.token
    if token is None:
        return
    if not authorization:
        raise EnvelopeError(401, "Access denied. No token provided.")
    if authorization != f"Bearer {token}":
        raise EnvelopeError(401, "Invalid token.")


async def parse_since(last_update: str | None = Query(None, alias="lastUpdate")) -> datetime | None:
    if not last_update:
        return None
    try:
        return parse_iso(last_update)
    except ValueError:
        raise EnvelopeError(400, "Invalid lastUpdate timestamp")


def delta_envelope(data: dict, has_changes: bool) -> PollEnvelope:
    interval = ACTIVE_INTERVAL_MS if has_changes else IDLE_INTERVAL_MS
    return PollEnvelope(
        success=True,
        data={"hasChanges": has_changes, **data},
        polling_info=PollingInfo(recommended_interval=interval),
    )


router = APIRouter(prefix="/hospitals/{hospital_id}/polling", dependencies=[Depends(require_token)])
health_router = APIRouter()


@router.get("/resources", response_model=PollEnvelope, response_model_exclude_none=True)
async def resource_updates(hospital_id: str, since=Depends(parse_since), feed=Depends(get_feed)):
    now = to_iso(utcnow())
    rows = feed.resources_since(hospital_id, since)
    return delta_envelope({"currentTimestamp": now, "resources": rows}, bool(rows))


@router.get("/bookings", response_model=PollEnvelope, response_model_exclude_none=True)
async def booking_updates(hospital_id: str, since=Depends(parse_since), feed=Depends(get_feed)):
    now = to_iso(utcnow())
    rows = feed.bookings_since(hospital_id, since)
    return delta_envelope({"currentTimestamp": now, "bookings": rows}, bool(rows))


@router.get("/dashboard", response_model=PollEnvelope, response_model_exclude_none=True)
async def dashboard_updates(hospital_id: str, since=Depends(parse_since), feed=Depends(get_feed)):
    now = to_iso(utcnow())
    resources = feed.resources_since(hospital_id, since)
    bookings = feed.bookings_since(hospital_id, since)
    data = {
        "currentTimestamp": now,
        "resources": resources,
        "bookings": bookings,
        "summary": {"resourceChanges": len(resources), "bookingChanges": len(bookings)},
    }
    return delta_envelope(data, bool(resources or bookings))


@router.get("/changes", response_model=PollEnvelope, response_model_exclude_none=True)
async def check_for_changes(hospital_id: str, since=Depends(parse_since), feed=Depends(get_feed)):
    now = to_iso(utcnow())
    resource_count = len(feed.resources_since(hospital_id, since))
    booking_count = len(feed.bookings_since(hospital_id, since))
    data = {
        "currentTimestamp": now,
        "changes": {"resources": resource_count, "bookings": booking_count},
    }
    return delta_envelope(data, bool(resource_count or booking_count))


@router.get("/config", response_model=PollEnvelope, response_model_exclude_none=True)
async def polling_config(hospital_id: str, feed=Depends(get_feed)):
    return PollEnvelope(
        success=True,
        data={
            "hospitalId": hospital_id,
            "recommendedInterval": feed.recommended_interval(hospital_id),
            "activityAnalysis": feed.activity(hospital_id),
            "configuration": {"minInterval": MIN_INTERVAL_MS, "maxInterval": MAX_INTERVAL_MS},
        },
    )


@health_router.get("/polling/health", response_model=PollEnvelope, response_model_exclude_none=True)
async def polling_health():
    return PollEnvelope(success=True, data={"status": "healthy", "timestamp": to_iso(utcnow())})
