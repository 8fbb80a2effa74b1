"""In-memory ring-buffer store for metric time series."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from .models import MetricPoint, MetricSeries, match_labels, series_key

MAX_AGE = timedelta(hours=24)
"""How long points are kept before cleanup drops their series."""

DOWNSAMPLE_AFTER = timedelta(hours=1)
"""Points older than this are averaged into one-minute buckets on read."""

RING_SIZE = 5760
"""Maximum number of points kept per series (24 hours at 15 seconds)."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


@dataclass
class _Series:
    name: str
    labels: dict[str, str]
    points: deque = field(default_factory=lambda: deque(maxlen=RING_SIZE))

    def timed_points(self) -> list[MetricPoint]:
        """Points in write order, leaving out those without a timestamp."""
        return [point for point in self.points if point.timestamp is not None]

    def in_range(self, start: datetime, end: datetime) -> list[MetricPoint]:
        return [point for point in self.timed_points() if start <= point.timestamp <= end]


class TimeSeriesStore:
    """Thread-safe in-memory store of metric series keyed by name and labels."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: dict[str, _Series] = {}
        self._names: set[str] = set()
        self._services: set[str] = set()

    def write(self, point: MetricPoint) -> None:
        """Append a point to its series, creating the series when new."""
        labels = point.labels or {}
        key = series_key(point.name, labels)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = _Series(name=point.name, labels=dict(labels))
                self._series[key] = series
            series.points.append(point)
            self._names.add(point.name)
            if "service" in labels:
                self._services.add(labels["service"])

    def write_batch(self, points) -> None:
        """Write every point of an iterable in order."""
        for point in points:
            self.write(point)

    def _matching(
        self, name: str, labels: Optional[Mapping[str, str]]
    ) -> list[_Series]:
        return [
            series
            for series in self._series.values()
            if series.name == name and match_labels(series.labels, labels)
        ]

    def query(
        self,
        name: str,
        labels: Optional[Mapping[str, str]],
        start: datetime,
        end: datetime,
    ) -> list[MetricPoint]:
        """Points of all matching series within [start, end], old data downsampled."""
        with self._lock:
            result = [
                point
                for series in self._matching(name, labels)
                for point in series.in_range(start, end)
            ]
        return _downsample(result)

    def query_series(
        self,
        name: str,
        labels: Optional[Mapping[str, str]],
        start: datetime,
        end: datetime,
    ) -> list[MetricSeries]:
        """Matching series that have points within [start, end]."""
        with self._lock:
            found = [
                (series, series.in_range(start, end))
                for series in self._matching(name, labels)
            ]
        return [
            MetricSeries(name=series.name, labels=series.labels, points=_downsample(points))
            for series, points in found
            if points
        ]

    def get_latest(
        self, name: str, labels: Optional[Mapping[str, str]]
    ) -> Optional[MetricPoint]:
        """The most recently written point of one exact series, or None."""
        with self._lock:
            series = self._series.get(series_key(name, labels))
            if series is None or not series.points:
                return None
            return series.points[-1]

    def list_metric_names(self) -> list[str]:
        """All known metric names, sorted."""
        with self._lock:
            return sorted(self._names)

    def list_labels(self, name: str) -> list[str]:
        """All label keys used by series of a metric, sorted."""
        with self._lock:
            keys = {
                key
                for series in self._series.values()
                if series.name == name
                for key in series.labels
            }
        return sorted(keys)

    def list_series(
        self, name: str, labels: Optional[Mapping[str, str]]
    ) -> list[MetricSeries]:
        """Matching series, without their points."""
        with self._lock:
            return [
                MetricSeries(name=series.name, labels=series.labels)
                for series in self._matching(name, labels)
            ]

    def list_services(self) -> list[str]:
        """All values seen for the ``service`` label, sorted."""
        with self._lock:
            return sorted(self._services)

    def events_per_second(self) -> float:
        """Ingestion rate estimated from points of the last minute."""
        one_minute_ago = _now() - timedelta(minutes=1)
        with self._lock:
            count = sum(
                1
                for series in self._series.values()
                for point in series.timed_points()
                if point.timestamp > one_minute_ago
            )
        return count / 60.0 if count else 0.0

    def cleanup(self) -> None:
        """Drop series with no point newer than MAX_AGE."""
        cutoff = _now() - MAX_AGE
        with self._lock:
            stale = [
                key
                for key, series in self._series.items()
                if not any(
                    point.timestamp is not None and point.timestamp > cutoff
                    for point in series.points
                )
            ]
            for key in stale:
                series = self._series.pop(key)
                self._names.discard(series.name)


def _downsample(points: list[MetricPoint]) -> list[MetricPoint]:
    """Average points older than DOWNSAMPLE_AFTER into one-minute buckets."""
    if not points:
        return points
    boundary = _now() - DOWNSAMPLE_AFTER
    recent = [point for point in points if point.timestamp > boundary]
    old = [point for point in points if not point.timestamp > boundary]
    if not old:
        return recent

    buckets: dict[datetime, list[MetricPoint]] = {}
    for point in old:
        buckets.setdefault(_truncate_minute(point.timestamp), []).append(point)

    downsampled = [
        MetricPoint(
            name=bucket[0].name,
            type=bucket[0].type,
            value=sum(point.value for point in bucket) / len(bucket),
            labels=bucket[0].labels,
            timestamp=minute,
        )
        for minute, bucket in buckets.items()
    ]
    return sorted(downsampled + recent, key=lambda point: point.timestamp)