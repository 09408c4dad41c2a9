"""
CLI entrypoint for the hospital polling client.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

from hospital_polling.client.polling_client import PollingClient
from hospital_polling.client.visualizer import FEEDS, Visualizer
from hospital_polling.shared.config import PollingSettings, settings
from hospital_polling.shared.errors import PollingError

app = typer.Typer(help="Hospital resource polling client")
console = Console()


def configure_logging(level: str) -> None:
    # RichHandler keeps log lines above the live dashboard instead of through it.
    logger.remove()
    logger.add(RichHandler(console=console, show_path=False), level=level.upper(), format="{message}")


def build_settings(base_url: Optional[str], token: Optional[str]) -> PollingSettings:
    overrides = {}
    if base_url:
        overrides["BASE_URL"] = base_url
    if token:
        overrides["AUTH_TOKEN"] = token
    return PollingSettings(**overrides)


def run_probe(cfg: PollingSettings, probe: Callable[[PollingClient], Awaitable]):
    async def main():
        async with PollingClient(cfg) as client:
            return await probe(client)

    try:
        return asyncio.run(main())
    except PollingError as e:
        console.print(f"[red bold]{e.kind} error:[/] {e}")
        raise typer.Exit(1)


@app.command()
def watch(
    hospital_id: str = typer.Option(..., "--hospital-id", help="Hospital whose feeds to poll"),
    feed: List[str] = typer.Option(["changes"], "--feed", help="Feed to poll: resources, bookings, dashboard, changes"),
    duration: float = typer.Option(60.0, help="How long to watch, in seconds"),
    base_url: Optional[str] = typer.Option(None, help="API base URL"),
    token: Optional[str] = typer.Option(None, help="Bearer token"),
):
    """Poll one or more hospital feeds in a live terminal dashboard."""
    unknown = [f for f in feed if f not in FEEDS]
    if unknown:
        console.print(f"[red]Unknown feed(s): {', '.join(unknown)}. Choose from {', '.join(FEEDS)}.[/]")
        raise typer.Exit(1)

    cfg = build_settings(base_url, token)
    configure_logging(cfg.LOG_LEVEL)

    async def main():
        async with PollingClient(cfg) as client:
            await Visualizer(client, hospital_id, list(dict.fromkeys(feed))).run(duration)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


@app.command()
def config(
    hospital_id: str = typer.Argument(..., help="Hospital to ask"),
    base_url: Optional[str] = typer.Option(None, help="API base URL"),
    token: Optional[str] = typer.Option(None, help="Bearer token"),
):
    """Fetch the server's recommended polling configuration for a hospital."""
    cfg = build_settings(base_url, token)
    configure_logging(cfg.LOG_LEVEL)
    info = run_probe(cfg, lambda client: client.get_polling_config(hospital_id))
    console.print_json(data=info.model_dump(by_alias=True))


@app.command()
def health(
    base_url: Optional[str] = typer.Option(None, help="API base URL"),
):
    """Check that the polling service is up."""
    cfg = build_settings(base_url, None)
    configure_logging(cfg.LOG_LEVEL)
    info = run_probe(cfg, lambda client: client.check_health())
    color = "green" if info.status == "healthy" else "yellow"
    console.print(f"[{color} bold]{info.status}[/] at {info.timestamp or 'unknown time'}")


@app.command()
def sandbox(
    port: int = typer.Option(settings.SANDBOX_PORT, help="Port to listen on"),
    token: Optional[str] = typer.Option(settings.SANDBOX_TOKEN, help="Require this bearer token"),
    hospital: List[str] = typer.Option(["1"], "--hospital", help="Hospital ids to simulate activity for"),
):
    """Start the in-memory sandbox server with simulated activity."""
    import uvicorn
    from hospital_polling.server.main import create_app

    typer.echo(f"Starting sandbox on port {port}...")
    uvicorn.run(
        create_app(token=token, simulate=True, hospital_ids=hospital),
        host="0.0.0.0",
        port=port,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    app()
