"""
ffmpeg-backed encoder capability.

Reads a concat-demuxer manifest of image paths and writes one H.264 MP4.
Progress comes from ffmpeg's ``-progress pipe:1`` key=value stream; only
the ``frame=N`` counter is used.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from .config import EncodeConfig
from .errors import EncodeError, JobCancelled


logger = logging.getLogger(__name__)

DIAGNOSTIC_TAIL_CHARS = 4000


def geometry_filter(config: EncodeConfig) -> str:
    """
    Video filter chain applied to every frame.

    With normalization on, tall full-page captures are cropped from the top
    to the output aspect ratio, then scaled and letterboxed to the output
    size. Without it, dimensions are only rounded down to even numbers,
    which the yuv420p pixel format requires.
    """
    if not config.normalize:
        return "scale=trunc(iw/2)*2:trunc(ih/2)*2"
    w, h = config.width, config.height
    return ",".join([
        f"crop=iw:min(ih\\,iw*{h}/{w}):0:0",
        f"scale={w}:{h}:force_original_aspect_ratio=decrease",
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2",
        "setsar=1",
    ])


def build_command(config: EncodeConfig, manifest_path: Path, output_path: Path, fps: int) -> list[str]:
    return [
        config.ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-f", "concat",
        "-safe", "0",
        "-r", str(fps),
        "-i", str(manifest_path),
        "-vf", geometry_filter(config),
        "-c:v", config.codec,
        "-pix_fmt", config.pixel_format,
        "-r", str(fps),
        "-progress", "pipe:1",
        "-y", str(output_path),
    ]


def parse_progress_line(line: str) -> int | None:
    """Frame count from a ``frame=N`` progress line, else None."""
    key, sep, value = line.strip().partition("=")
    if not sep or key != "frame":
        return None
    try:
        return int(value)
    except ValueError:
        return None


class FfmpegEncoder:
    """Runs ffmpeg as a child process without blocking the event loop."""

    def __init__(self, config: EncodeConfig):
        self.config = config

    async def _read_progress(self, stream, on_frame: Callable[[int], None]) -> None:
        async for raw in stream:
            frame = parse_progress_line(raw.decode("utf-8", errors="replace"))
            if frame is not None:
                on_frame(frame)

    async def encode(
        self,
        manifest_path: Path,
        output_path: Path,
        fps: int,
        on_frame: Callable[[int], None],
        cancel: asyncio.Event | None = None,
    ) -> Path:
        """
        Encode the manifest into ``output_path``.

        Raises:
            EncodeError: ffmpeg missing or exited non-zero
            JobCancelled: cancellation requested while encoding
        """
        cmd = build_command(self.config, manifest_path, output_path, fps)
        logger.info("FFmpeg process started: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeError(f"Could not start ffmpeg: {e}") from e

        async def run() -> bytes:
            _, stderr = await asyncio.gather(
                self._read_progress(proc.stdout, on_frame),
                proc.stderr.read(),
            )
            await proc.wait()
            return stderr

        run_task = asyncio.ensure_future(run())
        waiters = {run_task}
        cancel_task = None
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if run_task not in done:
                logger.info("Cancelling ffmpeg (pid %s)", proc.pid)
                proc.terminate()
                await proc.wait()
                run_task.cancel()
                raise JobCancelled()
            stderr = run_task.result()
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            diagnostics = stderr.decode("utf-8", errors="replace")[-DIAGNOSTIC_TAIL_CHARS:]
            logger.error("FFmpeg failed (exit %s):\n%s", proc.returncode, diagnostics)
            raise EncodeError(f"ffmpeg exited with status {proc.returncode}", diagnostics=diagnostics)

        logger.info("FFmpeg process completed: %s", output_path)
        return output_path
