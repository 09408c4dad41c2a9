"""
MODULE OVERVIEW:
The in-memory state behind the sandbox polling server.

WHAT IS HAPPENING HERE:
In the real backend, "what changed since lastUpdate" is a database query over
resource and booking tables. Here we keep a per-hospital record of resource
rows and bookings, each stamped with the time it last changed, so the routes
can answer delta queries the same way.
`random_activity()` plays the role of hospital staff updating bed counts and
patients booking, so a demo client has something to see.
"""
import asyncio
import random
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

RESOURCE_TYPES = ["beds", "icu", "operationTheatres"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC. Raises ValueError."""
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class ChangeFeed:
    """Rows are kept with the full-precision moment they changed at.

    The ISO strings on the rows are for display; delta queries compare the
    stored moments, so a change made within the same millisecond as a poll
    is still newer than the (truncated) `currentTimestamp` that poll returned.
    """

    def __init__(self):
        self.resources: dict[str, dict[str, tuple[datetime, dict[str, Any]]]] = defaultdict(dict)
        self.bookings: dict[str, list[tuple[datetime, dict[str, Any]]]] = defaultdict(list)
        self._changed_at: dict[str, list[datetime]] = defaultdict(list)

    def _touch(self, hospital_id: str, moment: datetime) -> None:
        self._changed_at[hospital_id].append(moment)

    def record_resource(self, hospital_id: str, resource_type: str, available: int, total: int) -> dict[str, Any]:
        moment = utcnow()
        row = {
            "resourceType": resource_type,
            "available": available,
            "total": total,
            "occupied": total - available,
            "lastUpdated": to_iso(moment),
        }
        self.resources[hospital_id][resource_type] = (moment, row)
        self._touch(hospital_id, moment)
        return row

    def record_booking(self, hospital_id: str, resource_type: str, status: str = "pending") -> dict[str, Any]:
        moment = utcnow()
        booking = {
            "id": len(self.bookings[hospital_id]) + 1,
            "resourceType": resource_type,
            "status": status,
            "updatedAt": to_iso(moment),
        }
        self.bookings[hospital_id].append((moment, booking))
        self._touch(hospital_id, moment)
        return booking

    def resources_since(self, hospital_id: str, since: datetime | None) -> list[dict[str, Any]]:
        return [row for moment, row in self.resources[hospital_id].values() if since is None or moment > since]

    def bookings_since(self, hospital_id: str, since: datetime | None) -> list[dict[str, Any]]:
        return [booking for moment, booking in self.bookings[hospital_id] if since is None or moment > since]

    def recommended_interval(self, hospital_id: str) -> int:
        """Cadence hint from recent activity: busier hospitals get polled more often."""
        history = self._changed_at[hospital_id]
        if not history:
            return 30000
        minutes_since = (utcnow() - max(history)) / timedelta(minutes=1)
        if minutes_since < 5:
            return 10000
        if minutes_since < 15:
            return 20000
        if minutes_since > 60:
            return 60000
        return 30000

    def activity(self, hospital_id: str) -> dict[str, Any]:
        history = self._changed_at[hospital_id]
        return {
            "totalChanges": len(history),
            "oldestUpdate": to_iso(min(history)) if history else None,
            "newestUpdate": to_iso(max(history)) if history else None,
        }


async def random_activity(feed: ChangeFeed, hospital_ids: list[str], period_s: float = 3.0):
    """Simulates staff updating resource counts and patients booking. Runs until cancelled."""
    while True:
        hospital_id = random.choice(hospital_ids)
        resource_type = random.choice(RESOURCE_TYPES)
        if random.random() < 0.7:
            total = random.randint(10, 60)
            feed.record_resource(hospital_id, resource_type, random.randint(0, total), total)
        else:
            feed.record_booking(hospital_id, resource_type)
        await asyncio.sleep(random.uniform(period_s / 2, period_s * 2))
