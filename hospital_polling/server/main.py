"""
MODULE OVERVIEW:
The sandbox server application factory.

WHAT IS HAPPENING HERE:
A small FastAPI app that speaks the same polling envelope as the hospital
backend, so the client can be demoed and integration-tested without the real
system. Everything lives under `/api`, mirroring the backend's base URL.
When `simulate=True`, the `lifespan` spawns a background task that keeps
changing resources and bookings; on shutdown it is cancelled and awaited.
"""
import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from hospital_polling.server.change_feed import ChangeFeed, random_activity
from hospital_polling.server.routes import polling
from hospital_polling.server.routes.polling import EnvelopeError


def create_app(
    feed: ChangeFeed | None = None,
    token: str | None = None,
    simulate: bool = False,
    hospital_ids: list[str] | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if simulate:
            task = asyncio.create_task(random_activity(app.state.feed, hospital_ids or ["1"]))
            logger.info("Sandbox activity simulator started.")
        yield
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info("Sandbox activity simulator stopped.")

    app = FastAPI(
        title="Hospital Polling Sandbox",
        description="In-memory stand-in for the hospital polling endpoints",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.feed = feed or ChangeFeed()
    app.state.token = token

    @app.middleware("http")
    async def poll_response_headers(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        # Deltas depend on lastUpdate; a cached answer would hide changes.
        if "/polling/" in request.url.path:
            response.headers["Cache-Control"] = "no-store"
        logger.debug(f"method={request.method} path={request.url.path} status={response.status_code} elapsed_ms={elapsed_ms:.2f}")
        return response

    @app.exception_handler(EnvelopeError)
    async def envelope_error_handler(request: Request, exc: EnvelopeError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})

    app.include_router(polling.router, prefix="/api", tags=["Polling"])
    app.include_router(polling.health_router, prefix="/api", tags=["Ops"])
    return app
