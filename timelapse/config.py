"""
Configuration for the timelapse pipeline.

Defaults reproduce the converged behaviour of the capture service; every
value can be overridden from a YAML file or, for deployment paths, from
the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Literal

import yaml

from .errors import ConfigError


ARCHIVE_INDEX_URL = "https://web.archive.org/cdx/search/cdx"
ARCHIVE_MIRROR_BASE = "https://web.archive.org/web"

# Client identities rotated per navigation
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

# Collapse granularity -> number of leading timestamp digits compared
COLLAPSE_DIGITS = {
    'year': 4,
    'month': 6,
    'day': 8,
    'hour': 10,
    'minute': 12,
    'second': 14,
}

DEFAULT_DATA_DIR = Path("data")


@dataclass
class ResolverConfig:
    """Archive index lookup settings."""
    index_url: str = ARCHIVE_INDEX_URL
    collapse: Literal['year', 'month', 'day', 'hour', 'minute', 'second'] = 'month'
    status_filter: str = "statuscode:200"
    timeout: float = 30.0
    quick_sample_size: int = 10
    quick_sample_end: Literal['earliest', 'latest'] = 'earliest'


@dataclass
class CaptureSettings:
    """Render and capture-loop settings."""

    # Browser
    mirror_base: str = ARCHIVE_MIRROR_BASE
    headless: bool = True
    executable_path: str | None = None
    browser_args: list[str] = field(default_factory=lambda: [
        '--no-sandbox',
        '--disable-setuid-sandbox',
    ])
    viewport_width: int = 1280
    viewport_height: int = 800

    # Navigation
    navigation_timeout_ms: int = 120000
    wait_until: Literal['load', 'domcontentloaded', 'networkidle', 'commit'] = 'networkidle'
    settle_delay: float = 5.0        # let deferred content finish after load
    screenshot_full_page: bool = True

    # Retry
    max_attempts: int = 3
    backoff_base: float = 1.0        # attempt k waits base * 2^(k-1)

    # Pacing
    max_requests_per_window: int = 15
    window_seconds: float = 60.0
    inter_request_delay: float = 1.0


@dataclass
class EncodeConfig:
    """Video encoder settings."""
    ffmpeg_path: str = "ffmpeg"
    fps: int = 1
    codec: str = "libx264"
    pixel_format: str = "yuv420p"
    normalize: bool = True           # crop + pad frames to a uniform geometry
    width: int = 1280
    height: int = 720


@dataclass
class TimelapseConfig:
    """Root configuration."""
    data_dir: Path = DEFAULT_DATA_DIR
    heartbeat_interval: float = 30.0
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    encode: EncodeConfig = field(default_factory=EncodeConfig)

    @property
    def cache_path(self) -> Path:
        return self.data_dir / "imageCache.json"

    @property
    def screenshots_dir(self) -> Path:
        return self.data_dir / "screenshots"

    @property
    def output_dir(self) -> Path:
        return self.data_dir / "public"

    def ensure_dirs(self) -> None:
        """Create the data directories if missing."""
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)


def _apply_section(target: object, values: dict, section: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown config key: {section}{key}")
        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"Config section {section}{key} must be a mapping")
            _apply_section(current, value, f"{section}{key}.")
        elif key == 'data_dir':
            setattr(target, key, Path(value))
        else:
            setattr(target, key, value)


def _validate(config: TimelapseConfig) -> None:
    if config.resolver.collapse not in COLLAPSE_DIGITS:
        raise ConfigError(f"Invalid collapse granularity: {config.resolver.collapse}")
    if config.resolver.quick_sample_end not in ('earliest', 'latest'):
        raise ConfigError(f"Invalid quick_sample_end: {config.resolver.quick_sample_end}")
    if config.capture.max_attempts < 1:
        raise ConfigError("capture.max_attempts must be at least 1")
    if config.capture.max_requests_per_window < 1:
        raise ConfigError("capture.max_requests_per_window must be at least 1")
    if config.encode.fps < 1:
        raise ConfigError("encode.fps must be at least 1")


def load_config(path: Path | str | None = None) -> TimelapseConfig:
    """
    Build the effective configuration.

    Precedence: environment > YAML file > dataclass defaults.

    Args:
        path: YAML config path; falls back to $TIMELAPSE_CONFIG, then defaults only

    Returns:
        TimelapseConfig
    """
    config = TimelapseConfig()

    path = path or os.environ.get("TIMELAPSE_CONFIG")
    if path:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")
        _apply_section(config, data, "")

    if os.environ.get("TIMELAPSE_DATA_DIR"):
        config.data_dir = Path(os.environ["TIMELAPSE_DATA_DIR"])
    if os.environ.get("FFMPEG_PATH"):
        config.encode.ffmpeg_path = os.environ["FFMPEG_PATH"]
    if os.environ.get("CHROME_PATH"):
        config.capture.executable_path = os.environ["CHROME_PATH"]

    _validate(config)
    return config
