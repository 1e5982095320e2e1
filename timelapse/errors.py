"""
Error taxonomy for the timelapse pipeline.

Job-fatal errors abort the remaining stages and surface as a single
``error`` progress event. ``RenderError`` is per-point and recoverable.
"""


class TimelapseError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigError(TimelapseError):
    """Raised when a config file has unknown keys or bad values."""
    pass


class ResolverError(TimelapseError):
    """Archive index unreachable, non-2xx, or returned a malformed body."""
    pass


class NoArchivesFound(TimelapseError):
    """Archive index returned no data rows for the target."""

    def __init__(self, target: str):
        super().__init__(f"No archived versions found for {target}")
        self.target = target


class RenderError(TimelapseError):
    """A single render attempt failed."""
    pass


class CaptureUnavailable(TimelapseError):
    """The render capability could not be started at all."""
    pass


class NoFramesToEncode(TimelapseError):
    """Every capture point was skipped; nothing to encode."""

    def __init__(self):
        super().__init__("No frames were captured; nothing to encode")


class EncodeError(TimelapseError):
    """Encoder exited with a failure. ``diagnostics`` holds its stderr tail."""

    def __init__(self, message: str, diagnostics: str = ""):
        super().__init__(message)
        self.diagnostics = diagnostics


class JobAlreadyRunning(TimelapseError):
    """A job is already in flight; only one runs at a time."""
    pass


class JobCancelled(TimelapseError):
    """The running job was cancelled between stages or points."""

    def __init__(self):
        super().__init__("Job cancelled")
