"""
MODULE OVERVIEW:
The Rich terminal dashboard for live polling feeds.

WHAT IS HAPPENING HERE:
The dashboard does not poll anything itself. It plugs its own `on_update` /
`on_error` callbacks into the sessions it starts, and connect/disconnect hooks
into the client, then redraws the layout a few times per second from what
those callbacks recorded.
"""
import asyncio
from collections import deque
from datetime import datetime
from typing import Any

from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from hospital_polling.client.polling_client import PollingClient
from hospital_polling.shared.errors import PollingError

FEEDS = ("resources", "bookings", "dashboard", "changes")


def summarize(data: Any, limit: int = 60) -> str:
    if not isinstance(data, dict):
        return str(data)[:limit]
    parts = []
    for key, value in data.items():
        if key == "currentTimestamp":
            continue
        if isinstance(value, list):
            value = f"[{len(value)}]"
        parts.append(f"{key}={value}")
    text = " ".join(parts)
    return text[:limit] + "..." if len(text) > limit else text


class Visualizer:
    def __init__(self, client: PollingClient, hospital_id: int | str, feeds: list[str]):
        self.client = client
        self.hospital_id = hospital_id
        self.feeds = feeds
        self.recent_updates = deque(maxlen=12)
        self.timeline = deque(maxlen=8)

    def _stamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def on_connect(self, session_id: str, endpoint: str):
        self.timeline.appendleft(f"[{self._stamp()}] [green]start[/] {escape(session_id)}")

    def on_disconnect(self, session_id: str, endpoint: str):
        self.timeline.appendleft(f"[{self._stamp()}] [red]stop[/] {escape(session_id)}")

    def on_update(self, data: Any, session_id: str):
        self.recent_updates.appendleft((self._stamp(), escape(session_id), escape(summarize(data))))

    def on_error(self, error: PollingError, session_id: str, retry_count: int):
        self.timeline.appendleft(
            f"[{self._stamp()}] [yellow]{error.kind}[/] {escape(session_id)} retry={retry_count}: {escape(str(error))}"
        )

    def start_feeds(self) -> None:
        self.client.set_event_handlers(self.on_connect, self.on_disconnect)
        for feed in self.feeds:
            start = getattr(self.client, f"poll_{feed}")
            start(f"{feed}-{self.hospital_id}", self.hospital_id, on_update=self.on_update, on_error=self.on_error)

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="sessions", size=len(self.feeds) + 5),
            Layout(name="main"),
        )
        layout["main"].split_row(
            Layout(name="feed", ratio=2),
            Layout(name="timeline", ratio=1),
        )

        active = self.client.get_active_sessions()
        color = "green" if len(active) == len(self.feeds) else "yellow" if active else "red"
        layout["header"].update(Panel(
            f"[{color} bold]Hospital {escape(str(self.hospital_id))} | {len(active)}/{len(self.feeds)} feeds live "
            f"| {escape(self.client.settings.BASE_URL)}[/]",
            style=color,
        ))

        sessions = Table(expand=True)
        sessions.add_column("Session", style="cyan")
        sessions.add_column("Endpoint", style="magenta")
        sessions.add_column("Interval (ms)", justify="right")
        sessions.add_column("Retries", justify="right")
        sessions.add_column("Last update", style="green")
        for status in active:
            sessions.add_row(
                escape(status.id),
                escape(status.endpoint),
                str(status.interval),
                str(status.retry_count),
                escape(status.last_update or "-"),
            )
        layout["sessions"].update(Panel(sessions, title="Sessions"))

        feed = Table(expand=True)
        feed.add_column("Time", style="cyan", no_wrap=True)
        feed.add_column("Session", style="magenta")
        feed.add_column("Payload", style="green")
        for row in self.recent_updates:
            feed.add_row(*row)
        layout["feed"].update(Panel(feed, title="Updates"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))
        return layout

    async def run(self, duration_s: float):
        self.start_feeds()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while loop.time() < deadline and self.client.get_active_sessions():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
            live.update(self.generate_layout())
