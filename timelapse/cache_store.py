"""
Persistent record of captured points per target.

The store is one JSON document mapping target fingerprint to the list of
capture points already rendered. It is the durable log; the frame files
on disk are the artifact store. A cache hit needs both.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from .hasher import fingerprint


logger = logging.getLogger(__name__)


def frame_path(screenshots_dir: Path, target_fingerprint: str, point: str, extension: str = 'png') -> Path:
    """Deterministic artifact path for one capture point."""
    return Path(screenshots_dir) / target_fingerprint / f"screenshot_{point}.{extension}"


def artifact_ok(path: Path) -> bool:
    """True if the artifact exists, is a non-empty file, and is readable."""
    try:
        return path.is_file() and path.stat().st_size > 0 and os.access(path, os.R_OK)
    except OSError:
        return False


class CacheStore:
    """
    Read-modify-write-whole-file cache of captured points.

    Writes go to a temp file in the same directory and are moved into
    place with ``os.replace``, so a crashed or concurrent writer never
    leaves a half-written document behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, list[str]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Unreadable cache at %s (%s); starting empty", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Cache at %s is not a mapping; starting empty", self.path)
            return {}
        return data

    def _save(self, cache: dict[str, list[str]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".cache-", suffix=".json", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(cache, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def points(self, target: str) -> set[str]:
        """All points recorded for a target."""
        with self._lock:
            return set(self._load().get(fingerprint(target), []))

    def has(self, target: str, point: str) -> bool:
        """Logical membership only; callers must also check the artifact."""
        return point in self.points(target)

    def record(self, target: str, point: str) -> None:
        """Record a captured point. Recording twice is a no-op."""
        key = fingerprint(target)
        with self._lock:
            cache = self._load()
            entry = cache.setdefault(key, [])
            if point in entry:
                return
            entry.append(point)
            entry.sort()
            self._save(cache)

    def is_captured(self, target: str, point: str, path: Path) -> bool:
        """
        Honour a cache hit only when the artifact is still on disk.

        A recorded point whose file has gone missing is a miss.
        """
        if not self.has(target, point):
            return False
        if artifact_ok(path):
            return True
        logger.warning("Cache entry %s for %s has no artifact at %s; treating as miss", point, target, path)
        return False
