"""
HTTP surface: job submission, live progress stream, finished videos.

    POST /generate-video   {"target": "...", "quickMode": false}
    GET  /progress         Server-Sent Events
    GET  /api/health
    GET  /<fingerprint>_output.mp4
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import AliasChoices, BaseModel, Field, field_validator

from . import __version__
from .cache_store import CacheStore
from .config import TimelapseConfig, load_config
from .encoder import FfmpegEncoder
from .errors import JobAlreadyRunning
from .pipeline import JobRequest, PipelineCoordinator
from .progress import ProgressBus
from .renderer import PlaywrightRenderer
from .resolver import TimestampResolver
from .scheduler import CaptureScheduler
from .sequencer import FrameSequencer


logger = logging.getLogger(__name__)


class GenerateRequest(BaseModel):
    target: str = Field(validation_alias=AliasChoices("target", "url"))
    quick_mode: bool = Field(default=False, validation_alias=AliasChoices("quickMode", "isQuickTest", "quick_mode"))

    @field_validator("target")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("target must not be empty")
        return value


def build_coordinator(config: TimelapseConfig, bus: ProgressBus) -> PipelineCoordinator:
    """Wire the production pipeline from config."""
    cache = CacheStore(config.cache_path)
    scheduler = CaptureScheduler(
        renderer=PlaywrightRenderer(config.capture),
        cache=cache,
        screenshots_dir=config.screenshots_dir,
        config=config.capture,
    )
    sequencer = FrameSequencer(
        encoder=FfmpegEncoder(config.encode),
        output_dir=config.output_dir,
        fps=config.encode.fps,
        work_dir=config.data_dir,
    )
    return PipelineCoordinator(
        config=config,
        bus=bus,
        resolver=TimestampResolver(config.resolver),
        scheduler=scheduler,
        sequencer=sequencer,
    )


def format_sse(event) -> str:
    """Frame one bus item for the wire. ``None`` is a keep-alive comment."""
    if event is None:
        return ": keep-alive\n\n"
    return f"data: {json.dumps(event.to_dict())}\n\n"


def create_app(
    config: TimelapseConfig | None = None,
    bus: ProgressBus | None = None,
    coordinator: PipelineCoordinator | None = None,
) -> FastAPI:
    config = config or load_config()
    config.ensure_dirs()
    bus = bus or ProgressBus(heartbeat_interval=config.heartbeat_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.coordinator = coordinator or build_coordinator(config, bus)
        logger.info("Timelapse service v%s ready (data dir %s)", __version__, config.data_dir)
        yield
        if app.state.coordinator.cancel():
            await app.state.coordinator.wait()

    app = FastAPI(title="Wayback Timelapse", version=__version__, lifespan=lifespan)
    app.state.bus = bus
    app.state.config = config

    @app.get("/api/health")
    async def health_check():
        coord = app.state.coordinator
        return {
            "status": "healthy",
            "version": __version__,
            "busy": coord.busy,
            "observers": bus.subscriber_count,
        }

    @app.post("/generate-video")
    async def generate_video(body: GenerateRequest):
        logger.info("Received request to generate video for %s (quick=%s)", body.target, body.quick_mode)
        try:
            job = app.state.coordinator.submit(JobRequest(target=body.target, quick_mode=body.quick_mode))
        except JobAlreadyRunning as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"message": "Video generation started", "jobId": job.id}

    @app.get("/progress")
    async def progress():
        logger.info("SSE connection established")

        async def event_stream():
            async for event in bus.subscribe():
                yield format_sse(event)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    # Finished videos are served from the output dir at the root path
    app.mount("/", StaticFiles(directory=str(config.output_dir)), name="videos")

    return app
