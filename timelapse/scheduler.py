"""
Capture loop: one render per capture point, in chronological order.

For each point:
1. Reuse the frame if the cache records it AND the file is still there
2. Otherwise render it, pacing requests and retrying with backoff
3. After the last failed attempt, skip the point with a warning

Points are processed strictly one at a time so that progress events
follow capture order.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from .cache_store import CacheStore, frame_path
from .config import USER_AGENTS, CaptureSettings
from .errors import JobCancelled, RenderError
from .hasher import fingerprint
from .pacing import RequestPacer
from .progress import PROCESSING, WARNING, ProgressReporter
from .retry_policy import EXHAUSTED, SUCCEEDED, RetryPolicy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapturedFrame:
    """A capture point paired with its rendered image on disk."""
    point: str
    path: Path
    from_cache: bool = False


def archive_url(mirror_base: str, point: str, target: str) -> str:
    """Mirror URL for one snapshot of the target."""
    return f"{mirror_base.rstrip('/')}/{point}/{target}"


def period_label(point: str) -> str:
    """'January 2020' style label from a YYYYMMDDhhmmss point."""
    return datetime(int(point[0:4]), int(point[4:6]), 1).strftime("%B %Y")


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


class CaptureScheduler:
    """
    Drives the render capability across a sequence of capture points.

    The renderer is only launched if at least one point actually needs
    rendering, and its session is always closed before ``capture`` returns
    or raises.
    """

    def __init__(
        self,
        renderer,
        cache: CacheStore,
        screenshots_dir: Path,
        config: CaptureSettings,
        pacer: RequestPacer | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        user_agent_factory: Callable[[], str] = random_user_agent,
    ):
        self.renderer = renderer
        self.cache = cache
        self.screenshots_dir = Path(screenshots_dir)
        self.config = config
        self.pacer = pacer or RequestPacer(
            max_requests=config.max_requests_per_window,
            window_seconds=config.window_seconds,
            inter_request_delay=config.inter_request_delay,
            sleep=sleep,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.backoff_base,
        )
        self._sleep = sleep
        self._user_agent_factory = user_agent_factory
        self.render_calls = 0

    def pending_points(self, target: str, points: list[str]) -> list[str]:
        """Points that will need rendering (cache miss or missing artifact)."""
        fp = fingerprint(target)
        return [
            p for p in points
            if not self.cache.is_captured(target, p, frame_path(self.screenshots_dir, fp, p))
        ]

    async def _render_with_retry(self, session, target: str, point: str) -> tuple[bytes | None, str | None]:
        """Run the retry state machine for one point. Returns (image, last_error)."""
        url = archive_url(self.config.mirror_base, point, target)
        state = self.retry_policy.start()
        image = None
        last_error = None
        while not state.done:
            await self.pacer.acquire()
            try:
                logger.info("Capturing screenshot for %s (attempt %d/%d)",
                            url, state.attempt, self.retry_policy.max_attempts)
                self.render_calls += 1
                await session.open(url, user_agent=self._user_agent_factory())
                image = await session.capture()
            except RenderError as e:
                last_error = str(e)
                logger.warning("Error capturing screenshot for %s: %s", point, e)
                failed = state.attempt
                state = self.retry_policy.on_failure(state)
                if state.status != EXHAUSTED:
                    delay = self.retry_policy.backoff_delay(failed)
                    logger.info("Retrying %s in %.0f seconds", point, delay)
                    await self._sleep(delay)
                continue
            state = self.retry_policy.on_success(state)
        if state.status == SUCCEEDED:
            return image, None
        return None, last_error

    async def capture(
        self,
        target: str,
        points: list[str],
        report: ProgressReporter,
        cancel: asyncio.Event | None = None,
    ) -> list[CapturedFrame]:
        """
        Capture every point, oldest first.

        Individual point failures are skipped with a ``warning`` event.

        Raises:
            CaptureUnavailable: the renderer could not be launched
            JobCancelled: cancellation requested between points
        """
        fp = fingerprint(target)
        site_dir = self.screenshots_dir / fp
        site_dir.mkdir(parents=True, exist_ok=True)

        ordered = sorted(points)
        total = len(ordered)
        frames: list[CapturedFrame] = []
        session = None

        try:
            for i, point in enumerate(ordered, start=1):
                if cancel is not None and cancel.is_set():
                    raise JobCancelled()

                path = frame_path(self.screenshots_dir, fp, point)
                label = period_label(point)

                if self.cache.is_captured(target, point, path):
                    logger.info("Cache hit for %s (%s)", point, path)
                    frames.append(CapturedFrame(point=point, path=path, from_cache=True))
                    report.emit(PROCESSING, message=f"Reused cached screenshot for {label}",
                                current=i, total=total, date=label)
                    # No upstream request was made, so no courtesy delay
                    continue

                if session is None:
                    session = await self.renderer.launch()

                image, error = await self._render_with_retry(session, target, point)
                if image is None:
                    report.emit(WARNING,
                                message=f"Failed to capture screenshot for {label} ({point}): {error}",
                                current=i, total=total, date=label)
                else:
                    path.write_bytes(image)
                    self.cache.record(target, point)
                    logger.info("Screenshot saved: %s", path)
                    frames.append(CapturedFrame(point=point, path=path))
                    report.emit(PROCESSING, message=f"Captured {label}",
                                current=i, total=total, date=label)

                await self.pacer.courtesy_delay()
        finally:
            if session is not None:
                logger.info("Closing browser")
                await session.close()

        logger.info("Captured %d/%d frames for %s", len(frames), total, target)
        return frames
