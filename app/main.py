"""Entry point for the FastAPI-powered progress tracker."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .recognition import MediaRecognizer, PatternCatalog
from .services.anilist import AniListClient
from .services.tracker import RefreshLists, TrackerService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class UpdateDelayRequest(BaseModel):
    seconds: int = Field(ge=0)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    settings: Settings = fastapi_app.state.settings
    exit_stack = AsyncExitStack()
    anilist_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.anilist_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    anilist = AniListClient(settings, anilist_http_client)
    catalog = PatternCatalog.from_patterns(settings.recognition_patterns())
    tracker_service = TrackerService(settings, anilist, MediaRecognizer(catalog))

    fastapi_app.state.tracker_service = tracker_service
    await tracker_service.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await tracker_service.stop()
        await exit_stack.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    resolved = settings or get_settings()
    fastapi_app = FastAPI(
        title=resolved.app_name,
        description="Tracks anime and manga progress from window titles and syncs it to AniList",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    fastapi_app.state.settings = resolved

    register_routes(fastapi_app)
    return fastapi_app


def get_tracker_service(app: FastAPI) -> TrackerService:
    service = getattr(app.state, "tracker_service", None)
    if not isinstance(service, TrackerService):
        raise RuntimeError("Tracker service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/status")
    async def tracker_status() -> dict[str, Any]:
        service = get_tracker_service(fastapi_app)
        return service.status_payload()

    @fastapi_app.get("/queue")
    async def update_queue() -> dict[str, Any]:
        service = get_tracker_service(fastapi_app)
        return {
            "updates": service.queue.snapshot(),
            "inFlight": service.queue.in_flight,
        }

    @fastapi_app.delete("/queue/{media_id}")
    async def cancel_update(media_id: int) -> dict[str, Any]:
        service = get_tracker_service(fastapi_app)
        if not service.cancel_update(media_id):
            raise HTTPException(
                status_code=404, detail=f"No queued update for media {media_id}"
            )
        return {"mediaId": media_id, "cancelled": True}

    @fastapi_app.post("/lists/refresh", status_code=202)
    async def refresh_lists() -> dict[str, str]:
        service = get_tracker_service(fastapi_app)
        if service.user is None:
            raise HTTPException(
                status_code=409, detail="AniList account not connected"
            )
        await service.dispatch(RefreshLists())
        return {"status": "refreshing"}

    @fastapi_app.put("/settings/update-delay")
    async def set_update_delay(payload: UpdateDelayRequest) -> dict[str, int]:
        service = get_tracker_service(fastapi_app)
        service.set_update_delay(payload.seconds)
        return {"updateDelaySeconds": payload.seconds}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=_settings.server_host,
        port=_settings.server_port,
        reload=_settings.environment == "development",
    )
