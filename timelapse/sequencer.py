"""
Frame ordering, manifest construction and encoder invocation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from .errors import NoFramesToEncode
from .hasher import fingerprint
from .progress import GENERATING, ProgressReporter
from .scheduler import CapturedFrame


logger = logging.getLogger(__name__)


def order_frames(frames: list[CapturedFrame]) -> list[CapturedFrame]:
    """Stable ascending sort on the fixed-width point string."""
    return sorted(frames, key=lambda f: f.point)


def _quote(path: Path) -> str:
    # concat demuxer quoting: close quote, escaped quote, reopen
    return "'" + str(Path(path).resolve()).replace("'", "'\\''") + "'"


def build_manifest(frames: list[CapturedFrame]) -> str:
    """Concat-demuxer file list, one frame per line, in the given order."""
    lines = ["ffconcat version 1.0"]
    lines.extend(f"file {_quote(f.path)}" for f in frames)
    return "\n".join(lines) + "\n"


def output_path_for(output_dir: Path, target: str) -> Path:
    return Path(output_dir) / f"{fingerprint(target)}_output.mp4"


class FrameSequencer:
    """Orders captured frames and turns them into one video."""

    def __init__(self, encoder, output_dir: Path, fps: int = 1, work_dir: Path | None = None):
        self.encoder = encoder
        self.output_dir = Path(output_dir)
        self.fps = fps
        self.work_dir = Path(work_dir) if work_dir else self.output_dir.parent

    async def assemble(
        self,
        target: str,
        frames: list[CapturedFrame],
        report: ProgressReporter,
        cancel: asyncio.Event | None = None,
    ) -> Path:
        """
        Encode frames into ``<fingerprint>_output.mp4``.

        The manifest is created fresh for this call and removed whether the
        encoder succeeds or fails.

        Raises:
            NoFramesToEncode: empty frame list (the encoder is not invoked)
            EncodeError: encoder failure
        """
        ordered = order_frames(frames)
        if not ordered:
            raise NoFramesToEncode()

        total = len(ordered)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_path_for(self.output_dir, target)

        fd, manifest = tempfile.mkstemp(
            prefix=f"{fingerprint(target)}_", suffix="_images.txt", dir=self.work_dir
        )
        manifest_path = Path(manifest)
        last_pct = -1

        def on_frame(frames_seen: int) -> None:
            nonlocal last_pct
            pct = min(100, round(frames_seen / total * 100))
            if pct <= last_pct:
                return
            last_pct = pct
            report.emit(GENERATING, message=f"Generating video: {pct}% complete",
                        current=min(frames_seen, total), total=total)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(build_manifest(ordered))
            logger.info("Encoding %d frames at %d fps into %s", total, self.fps, output_path)
            return await self.encoder.encode(manifest_path, output_path, self.fps, on_frame, cancel=cancel)
        finally:
            manifest_path.unlink(missing_ok=True)
