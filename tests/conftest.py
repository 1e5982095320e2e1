"""
Shared fakes for the external capabilities: archive index, render
session, encoder. Nothing here touches the network, a browser or ffmpeg.
"""

from pathlib import Path

import pytest

from timelapse.cache_store import CacheStore
from timelapse.config import ARCHIVE_MIRROR_BASE, TimelapseConfig
from timelapse.errors import CaptureUnavailable, EncodeError, RenderError
from timelapse.progress import ProgressBus, ProgressReporter
from timelapse.scheduler import CaptureScheduler
from timelapse.sequencer import FrameSequencer


PNG_STUB = b"\x89PNG\r\n\x1a\n"


def point_from_url(url: str) -> str:
    return url[len(ARCHIVE_MIRROR_BASE) + 1:].split('/', 1)[0]


class FakeSession:
    """Render session that fails a configured number of times per point."""

    def __init__(self, failures: dict[str, int] | None = None):
        self.failures = dict(failures or {})
        self.opened: list[tuple[str, str]] = []
        self.closed = False
        self._point = None

    async def open(self, url: str, user_agent: str) -> None:
        self.opened.append((url, user_agent))
        point = point_from_url(url)
        if self.failures.get(point, 0) > 0:
            self.failures[point] -= 1
            raise RenderError(f"navigation_failed: timeout for {point}")
        self._point = point

    async def capture(self) -> bytes:
        return PNG_STUB + self._point.encode()

    async def close(self) -> None:
        self.closed = True


class FakeRenderer:
    def __init__(self, session: FakeSession | None = None, unavailable: bool = False):
        self.session = session or FakeSession()
        self.unavailable = unavailable
        self.launches = 0

    async def launch(self) -> FakeSession:
        if self.unavailable:
            raise CaptureUnavailable("Could not start browser: executable doesn't exist")
        self.launches += 1
        return self.session


class FakeEncoder:
    """Reports one progress tick per manifest line, then writes a stub video."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[dict] = []

    async def encode(self, manifest_path, output_path, fps, on_frame, cancel=None):
        manifest = Path(manifest_path).read_text()
        files = [line for line in manifest.splitlines() if line.startswith("file ")]
        self.calls.append({
            'manifest_path': Path(manifest_path),
            'manifest': manifest,
            'files': files,
            'fps': fps,
        })
        for i in range(1, len(files) + 1):
            on_frame(i)
        if self.fail:
            raise EncodeError("ffmpeg exited with status 1", diagnostics="Invalid data found when processing input")
        Path(output_path).write_bytes(b"fake mp4")
        return Path(output_path)


class FakeResolver:
    def __init__(self, points=None, error: Exception | None = None):
        self.points = list(points or [])
        self.error = error
        self.calls: list[str] = []

    async def resolve(self, target: str) -> list[str]:
        self.calls.append(target)
        if self.error is not None:
            raise self.error
        return list(self.points)


class RecordingBus(ProgressBus):
    """ProgressBus that also keeps every published event."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.events = []

    def publish(self, event):
        self.events.append(event)
        super().publish(event)

    def stages(self) -> list[str]:
        return [e.stage for e in self.events]


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def config(tmp_path) -> TimelapseConfig:
    cfg = TimelapseConfig(data_dir=tmp_path / "data")
    cfg.capture.settle_delay = 0
    cfg.ensure_dirs()
    return cfg


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def report(bus) -> ProgressReporter:
    return ProgressReporter(bus)


@pytest.fixture
def cache(config) -> CacheStore:
    return CacheStore(config.cache_path)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


def make_scheduler(config, cache, renderer, sleeper, **kwargs) -> CaptureScheduler:
    return CaptureScheduler(
        renderer=renderer,
        cache=cache,
        screenshots_dir=config.screenshots_dir,
        config=kwargs.pop('capture', config.capture),
        sleep=sleeper,
        user_agent_factory=kwargs.pop('user_agent_factory', lambda: "test-agent"),
        **kwargs,
    )


def make_sequencer(config, encoder) -> FrameSequencer:
    return FrameSequencer(
        encoder=encoder,
        output_dir=config.output_dir,
        fps=config.encode.fps,
        work_dir=config.data_dir,
    )
