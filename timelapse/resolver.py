"""
Timestamp resolution against the archive index (CDX API).

The index answers with a JSON table: one header row, then one row per
snapshot carrying its 14-digit timestamp.
"""

from __future__ import annotations

import asyncio
import logging
import re

import requests

from .config import COLLAPSE_DIGITS, ResolverConfig
from .errors import NoArchivesFound, ResolverError


logger = logging.getLogger(__name__)

TIMESTAMP_RE = re.compile(r'^\d{14}$')


def build_index_params(target: str, config: ResolverConfig) -> dict:
    """
    Query parameters for the index lookup.

    Passed through ``requests`` params so the target is always sent
    percent-encoded, never raw.
    """
    digits = COLLAPSE_DIGITS[config.collapse]
    return {
        'url': target,
        'output': 'json',
        'fl': 'timestamp',
        'filter': config.status_filter,
        'collapse': f'timestamp:{digits}',
    }


def parse_index_rows(rows: list, collapse: str = 'month') -> list[str]:
    """
    Turn index rows into ordered, collapsed capture points.

    The first row is always the header and is discarded. Rows are sorted
    and collapsed client-side as well, since the index only collapses
    adjacent rows.

    Args:
        rows: Decoded JSON table from the index
        collapse: Granularity key from COLLAPSE_DIGITS

    Returns:
        Capture points, oldest first, one per collapse bucket

    Raises:
        ResolverError: if a row is not a timestamp row
    """
    if not isinstance(rows, list):
        raise ResolverError(f"Malformed index response: expected a list, got {type(rows).__name__}")

    digits = COLLAPSE_DIGITS[collapse]
    points = []
    for row in rows[1:]:
        if not isinstance(row, list) or not row:
            raise ResolverError(f"Malformed index row: {row!r}")
        value = str(row[0])
        if not TIMESTAMP_RE.match(value):
            raise ResolverError(f"Malformed timestamp in index row: {value!r}")
        points.append(value)

    collapsed = []
    seen = set()
    for point in sorted(points):
        key = point[:digits]
        if key in seen:
            continue
        seen.add(key)
        collapsed.append(point)
    return collapsed


def sample_quick(points: list[str], size: int, end: str = 'earliest') -> list[str]:
    """Bound a point sequence to ``size`` items taken from one end."""
    if size <= 0:
        return []
    if end == 'latest':
        return points[-size:]
    return points[:size]


class TimestampResolver:
    """Resolves a target into capture points. Does not retry."""

    def __init__(self, config: ResolverConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    def fetch_rows(self, target: str) -> list:
        """Blocking index request. Returns the decoded JSON table."""
        params = build_index_params(target, self.config)
        logger.info("Fetching archive timestamps for %s", target)
        try:
            resp = self.session.get(self.config.index_url, params=params, timeout=self.config.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ResolverError(f"Archive index request failed: {e}") from e

        # An empty body is how the index says "nothing archived"
        if not resp.text.strip():
            return []
        try:
            return resp.json()
        except ValueError as e:
            raise ResolverError(f"Archive index returned malformed JSON: {e}") from e

    async def resolve(self, target: str) -> list[str]:
        """
        Resolve capture points for a target, oldest first.

        Raises:
            ResolverError: network failure or malformed body
            NoArchivesFound: header-only or empty response
        """
        rows = await asyncio.to_thread(self.fetch_rows, target)
        points = parse_index_rows(rows, self.config.collapse)
        if not points:
            raise NoArchivesFound(target)
        logger.info("Resolved %d capture points for %s", len(points), target)
        return points
