"""
Pipeline coordination for one timelapse job.

Stages run strictly in sequence:
    resolve -> sample -> filter against cache -> capture -> encode

A job never raises past its own boundary: every failure becomes one
``error`` progress event, so a broken job cannot take down the host
process or other observers.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from .config import TimelapseConfig
from .errors import JobAlreadyRunning, TimelapseError
from .hasher import fingerprint
from .progress import COMPLETE, ERROR, FETCHING, GENERATING, PROCESSING, ProgressBus, ProgressReporter
from .resolver import TimestampResolver, sample_quick


logger = logging.getLogger(__name__)


@dataclass
class JobRequest:
    target: str
    quick_mode: bool = False


@dataclass
class Job:
    """One end-to-end run for one target."""
    request: JobRequest
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: str = "pending"          # pending, running, complete, error
    video_path: str | None = None
    error: str | None = None

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.request.target)


class PipelineCoordinator:
    """
    Owns the resolver, scheduler and sequencer for the lifetime of the
    service and runs at most one job at a time.
    """

    def __init__(
        self,
        config: TimelapseConfig,
        bus: ProgressBus,
        resolver: TimestampResolver,
        scheduler,
        sequencer,
    ):
        self.config = config
        self.bus = bus
        self.resolver = resolver
        self.scheduler = scheduler
        self.sequencer = sequencer
        self.current: Job | None = None
        self._task: asyncio.Task | None = None
        self._cancel = asyncio.Event()

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, request: JobRequest) -> Job:
        """
        Start a job in the background and return immediately.

        Raises:
            JobAlreadyRunning: another job is still in flight
        """
        if self.busy:
            raise JobAlreadyRunning(
                f"Job {self.current.id} for {self.current.request.target} is still running"
            )
        job = Job(request=request)
        self.current = job
        self._cancel = asyncio.Event()
        self._task = asyncio.create_task(self.run(job), name=f"timelapse-job-{job.id}")
        logger.info("Accepted job %s for %s (quick=%s)", job.id, request.target, request.quick_mode)
        return job

    def cancel(self) -> bool:
        """Ask the running job to stop at the next checkpoint."""
        if not self.busy:
            return False
        logger.info("Cancellation requested for job %s", self.current.id)
        self._cancel.set()
        return True

    async def wait(self) -> None:
        """Wait for the in-flight job, if any, to finish."""
        if self._task is not None:
            await self._task

    async def _execute(self, job: Job, report: ProgressReporter) -> Path:
        target = job.request.target
        resolver_config = self.config.resolver

        report.emit(FETCHING, message="Fetching timestamps from Wayback Machine...")
        points = await self.resolver.resolve(target)

        if job.request.quick_mode:
            points = sample_quick(points, resolver_config.quick_sample_size, resolver_config.quick_sample_end)
            logger.info("Quick test mode: limited to %d timestamps (%s)",
                        len(points), resolver_config.quick_sample_end)

        pending = self.scheduler.pending_points(target, points)
        cached = len(points) - len(pending)
        logger.info("%d timestamps: %d cached, %d to capture", len(points), cached, len(pending))

        report.emit(PROCESSING,
                    message=f"Starting to capture screenshots ({cached} cached, {len(pending)} new)...",
                    current=0, total=len(points))
        frames = await self.scheduler.capture(target, points, report, cancel=self._cancel)

        report.emit(GENERATING, message="Generating video from screenshots...")
        return await self.sequencer.assemble(target, frames, report, cancel=self._cancel)

    async def run(self, job: Job) -> Path | None:
        """Run a job to completion. Returns the output path, or None on failure."""
        report = ProgressReporter(self.bus)
        job.status = "running"
        try:
            output = await self._execute(job, report)
        except TimelapseError as e:
            logger.error("Job %s failed: %s", job.id, e)
            job.status = "error"
            job.error = str(e)
            report.emit(ERROR, message=str(e))
            return None
        except Exception as e:
            logger.exception("Job %s crashed", job.id)
            job.status = "error"
            job.error = f"{type(e).__name__}: {e}"
            report.emit(ERROR, message=job.error)
            return None

        job.status = "complete"
        job.video_path = f"/{output.name}"
        logger.info("Video generation complete: %s", output)
        report.emit(COMPLETE, message="Video generation complete", video_path=job.video_path)
        return output
