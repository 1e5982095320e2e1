"""
Tests for timelapse/resolver.py - archive index lookup.
"""

import json

import pytest
import requests

from timelapse.config import ResolverConfig
from timelapse.errors import NoArchivesFound, ResolverError
from timelapse.resolver import (
    TimestampResolver,
    build_index_params,
    parse_index_rows,
    sample_quick,
)


HEADER = [["timestamp"]]


class FakeResponse:
    def __init__(self, payload=None, text=None, status_code=200):
        self._payload = payload
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return json.loads(self.text)


class FakeHTTP:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append({'url': url, 'params': params, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


class TestBuildIndexParams:
    """Tests for build_index_params function."""

    def test_month_collapse(self):
        """Month collapse compares the first 6 digits."""
        params = build_index_params("example.com", ResolverConfig(collapse='month'))
        assert params['collapse'] == 'timestamp:6'
        assert params['output'] == 'json'
        assert params['fl'] == 'timestamp'
        assert params['filter'] == 'statuscode:200'

    def test_second_collapse(self):
        params = build_index_params("example.com", ResolverConfig(collapse='second'))
        assert params['collapse'] == 'timestamp:14'

    def test_target_encoded_by_transport(self):
        """Target goes out percent-encoded, never raw."""
        target = "https://example.com/path?a=1&b=2"
        prepared = requests.Request(
            'GET', ResolverConfig().index_url, params=build_index_params(target, ResolverConfig())
        ).prepare()
        assert "a%3D1%26b%3D2" in prepared.url
        assert "?a=1&b=2" not in prepared.url


class TestParseIndexRows:
    """Tests for parse_index_rows function."""

    def test_header_discarded(self):
        rows = HEADER + [["20200101000000"], ["20200201000000"]]
        assert parse_index_rows(rows, 'month') == ["20200101000000", "20200201000000"]

    def test_header_only(self):
        assert parse_index_rows(HEADER, 'month') == []

    def test_empty(self):
        assert parse_index_rows([], 'month') == []

    def test_sorted_oldest_first(self):
        rows = HEADER + [["20210301000000"], ["20190101000000"], ["20200601000000"]]
        assert parse_index_rows(rows, 'second') == [
            "20190101000000", "20200601000000", "20210301000000",
        ]

    def test_collapse_keeps_first_in_bucket(self):
        """Two snapshots in one month collapse to the earlier one."""
        rows = HEADER + [["20200115000000"], ["20200101120000"], ["20200201000000"]]
        assert parse_index_rows(rows, 'month') == ["20200101120000", "20200201000000"]

    def test_day_collapse(self):
        rows = HEADER + [["20200101000000"], ["20200101230000"], ["20200102000000"]]
        assert parse_index_rows(rows, 'day') == ["20200101000000", "20200102000000"]

    def test_duplicates_removed(self):
        rows = HEADER + [["20200101000000"], ["20200101000000"]]
        assert parse_index_rows(rows, 'second') == ["20200101000000"]

    def test_strictly_increasing_for_any_collapse(self):
        rows = HEADER + [[f"2020{m:02d}{d:02d}000000"] for m in (3, 1, 2) for d in (9, 1, 5)]
        for collapse, digits in [('year', 4), ('month', 6), ('day', 8), ('second', 14)]:
            points = parse_index_rows(rows, collapse)
            assert points == sorted(points)
            keys = [p[:digits] for p in points]
            assert len(keys) == len(set(keys))

    def test_malformed_timestamp(self):
        with pytest.raises(ResolverError):
            parse_index_rows(HEADER + [["not-a-time"]], 'month')

    def test_malformed_body(self):
        with pytest.raises(ResolverError):
            parse_index_rows({"error": "nope"}, 'month')


class TestSampleQuick:
    """Tests for sample_quick function."""

    POINTS = [f"2020{m:02d}01000000" for m in range(1, 13)]

    def test_earliest(self):
        assert sample_quick(self.POINTS, 10, 'earliest') == self.POINTS[:10]

    def test_latest(self):
        assert sample_quick(self.POINTS, 10, 'latest') == self.POINTS[-10:]

    def test_fewer_than_size(self):
        assert sample_quick(self.POINTS[:3], 10, 'latest') == self.POINTS[:3]

    def test_zero(self):
        assert sample_quick(self.POINTS, 0) == []


class TestTimestampResolver:
    """Tests for TimestampResolver.resolve."""

    async def test_resolves_points(self):
        http = FakeHTTP(FakeResponse(HEADER + [["20200101000000"], ["20210101000000"]]))
        resolver = TimestampResolver(ResolverConfig(), session=http)
        assert await resolver.resolve("example.com") == ["20200101000000", "20210101000000"]
        assert http.requests[0]['params']['url'] == "example.com"
        assert http.requests[0]['timeout'] == 30.0

    async def test_header_only_is_no_archives(self):
        resolver = TimestampResolver(ResolverConfig(), session=FakeHTTP(FakeResponse(HEADER)))
        with pytest.raises(NoArchivesFound):
            await resolver.resolve("example.com")

    async def test_empty_body_is_no_archives(self):
        resolver = TimestampResolver(ResolverConfig(), session=FakeHTTP(FakeResponse(text="")))
        with pytest.raises(NoArchivesFound):
            await resolver.resolve("example.com")

    async def test_network_error_chained(self):
        cause = requests.ConnectionError("connection refused")
        resolver = TimestampResolver(ResolverConfig(), session=FakeHTTP(error=cause))
        with pytest.raises(ResolverError) as exc:
            await resolver.resolve("example.com")
        assert exc.value.__cause__ is cause

    async def test_non_2xx(self):
        resolver = TimestampResolver(ResolverConfig(), session=FakeHTTP(FakeResponse(HEADER, status_code=503)))
        with pytest.raises(ResolverError):
            await resolver.resolve("example.com")

    async def test_malformed_json(self):
        resolver = TimestampResolver(ResolverConfig(), session=FakeHTTP(FakeResponse(text="<html>oops</html>")))
        with pytest.raises(ResolverError):
            await resolver.resolve("example.com")

    async def test_no_retry(self):
        """A single failure fails fast."""
        http = FakeHTTP(error=requests.Timeout("timed out"))
        resolver = TimestampResolver(ResolverConfig(), session=http)
        with pytest.raises(ResolverError):
            await resolver.resolve("example.com")
        assert len(http.requests) == 1
