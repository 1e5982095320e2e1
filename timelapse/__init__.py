"""
Wayback timelapse: archived snapshots of a page, rendered into one video.

Primary interface:
    from timelapse import load_config, create_app

    app = create_app(load_config("timelapse.yaml"))

Or run a single job in-process:
    timelapse run https://example.com --quick
"""

__version__ = "0.1.0"

from .config import TimelapseConfig, load_config
from .errors import (
    CaptureUnavailable,
    EncodeError,
    NoArchivesFound,
    NoFramesToEncode,
    RenderError,
    ResolverError,
    TimelapseError,
)
from .pipeline import Job, JobRequest, PipelineCoordinator
from .progress import ProgressBus, ProgressEvent


__all__ = [
    'TimelapseConfig',
    'load_config',
    'TimelapseError',
    'ResolverError',
    'NoArchivesFound',
    'RenderError',
    'CaptureUnavailable',
    'NoFramesToEncode',
    'EncodeError',
    'Job',
    'JobRequest',
    'PipelineCoordinator',
    'ProgressBus',
    'ProgressEvent',
    'create_app',
]


def create_app(*args, **kwargs):
    """Build the FastAPI app (imports the web and browser stack lazily)."""
    from .server import create_app as _create_app
    return _create_app(*args, **kwargs)
