"""Data types for metrics, logs, traces and alerts, with their JSON shapes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar, Union


class MetricType(str, Enum):
    """Kind of metric being collected."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"

    def __str__(self) -> str:
        return self.value


class LogLevel(str, Enum):
    """Severity level of a log entry."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    def __str__(self) -> str:
        return self.value


class AlertSeverity(str, Enum):
    """Severity of an alert."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    def __str__(self) -> str:
        return self.value


class AlertState(str, Enum):
    """Current state of an alert."""

    FIRING = "firing"
    RESOLVED = "resolved"

    def __str__(self) -> str:
        return self.value


_E = TypeVar("_E", bound=Enum)

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _coerce(enum_cls: type[_E], value: Any) -> Union[_E, str]:
    """Return the enum member for a known value, or the raw string otherwise."""
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"expected a string for {enum_cls.__name__}, got {value!r}")
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else value


def _parse_time(value: str) -> datetime:
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    micro = (fraction or "").ljust(6, "0")[:6]
    zone = "+00:00" if offset in ("Z", "z") else offset
    return datetime.fromisoformat(f"{date}T{clock}.{micro}{zone}")


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    text = value.isoformat()
    if value.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _nanoseconds(value: timedelta) -> int:
    return value // timedelta(microseconds=1) * 1000


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _get_float(data: Mapping[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {key!r} must be a number")
    return float(value)


def _get_str_map(data: Mapping[str, Any], key: str) -> dict[str, str]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ValueError(f"field {key!r} must be an object of strings")
    return dict(value)


def _get_time(data: Mapping[str, Any], key: str) -> Optional[datetime]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a timestamp string")
    return _parse_time(value)


def _get_duration(data: Mapping[str, Any], key: str) -> timedelta:
    value = data.get(key)
    if value is None:
        return timedelta(0)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer number of nanoseconds")
    return timedelta(microseconds=value // 1000)


# ── Metrics ───────────────────────────────────────────────────────────────────


@dataclass
class MetricPoint:
    """A single data point of a metric."""

    name: str = ""
    type: Union[MetricType, str] = ""
    value: float = 0.0
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": _text(self.type),
            "value": self.value,
            "labels": dict(self.labels),
            "timestamp": _format_time(self.timestamp),
        }


@dataclass
class MetricSeries:
    """Points sharing one metric name and label set."""

    name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    points: list[MetricPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "labels": dict(self.labels),
            "points": [point.to_dict() for point in self.points],
        }


@dataclass
class MetricBatch:
    """Metric points ingested together."""

    metrics: list[MetricPoint] = field(default_factory=list)


def label_key(labels: Optional[Mapping[str, str]]) -> str:
    """Canonical string for a label set, with keys in sorted order."""
    if not labels:
        return "{}"
    body = ",".join(f'{key}="{labels[key]}"' for key in sorted(labels))
    return "{" + body + "}"


def series_key(name: str, labels: Optional[Mapping[str, str]]) -> str:
    """Unique key of a series: metric name followed by its label key."""
    return name + label_key(labels)


def match_labels(
    labels: Optional[Mapping[str, str]], filter: Optional[Mapping[str, str]]
) -> bool:
    """True when every filter pair is present in labels; an empty filter matches all."""
    labels = labels or {}
    return all(labels.get(key, "") == value for key, value in (filter or {}).items())


def metric_point_from_dict(data: Any) -> MetricPoint:
    """Build a metric point from its JSON object form."""
    data = _require_mapping(data)
    return MetricPoint(
        name=_get_str(data, "name"),
        type=_coerce(MetricType, data.get("type")),
        value=_get_float(data, "value"),
        labels=_get_str_map(data, "labels"),
        timestamp=_get_time(data, "timestamp"),
    )


# ── Logs ──────────────────────────────────────────────────────────────────────


@dataclass
class LogEntry:
    """A single log entry from an application."""

    id: str = ""
    service: str = ""
    level: Union[LogLevel, str] = ""
    message: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    trace_id: str = ""
    span_id: str = ""
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "service": self.service,
            "level": _text(self.level),
            "message": self.message,
        }
        if self.fields:
            out["fields"] = dict(self.fields)
        if self.trace_id:
            out["trace_id"] = self.trace_id
        if self.span_id:
            out["span_id"] = self.span_id
        out["timestamp"] = _format_time(self.timestamp)
        return out


@dataclass
class LogBatch:
    """Log entries ingested together."""

    logs: list[LogEntry] = field(default_factory=list)


@dataclass
class LogQuery:
    """Filters for querying logs; start and end are RFC 3339 strings."""

    service: str = ""
    level: Union[LogLevel, str] = ""
    search: str = ""
    trace_id: str = ""
    start: str = ""
    end: str = ""
    limit: int = 0


def valid_level(level: Any) -> bool:
    """True when level is one of the known log levels."""
    try:
        LogLevel(level)
    except ValueError:
        return False
    return True


def log_entry_from_dict(data: Any) -> LogEntry:
    """Build a log entry from its JSON object form."""
    data = _require_mapping(data)
    fields = data.get("fields")
    if fields is None:
        fields = {}
    elif not isinstance(fields, Mapping):
        raise ValueError("field 'fields' must be an object")
    return LogEntry(
        id=_get_str(data, "id"),
        service=_get_str(data, "service"),
        level=_coerce(LogLevel, data.get("level")),
        message=_get_str(data, "message"),
        fields=dict(fields),
        trace_id=_get_str(data, "trace_id"),
        span_id=_get_str(data, "span_id"),
        timestamp=_get_time(data, "timestamp"),
    )


# ── Traces ────────────────────────────────────────────────────────────────────


@dataclass
class Span:
    """A unit of work within a distributed trace."""

    trace_id: str = ""
    span_id: str = ""
    parent_id: str = ""
    service: str = ""
    operation: str = ""
    start_time: Optional[datetime] = None
    duration: timedelta = timedelta(0)
    status: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"trace_id": self.trace_id, "span_id": self.span_id}
        if self.parent_id:
            out["parent_id"] = self.parent_id
        out.update(
            service=self.service,
            operation=self.operation,
            start_time=_format_time(self.start_time),
            duration=_nanoseconds(self.duration),
            status=self.status,
        )
        if self.tags:
            out["tags"] = dict(self.tags)
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class SpanBatch:
    """Spans ingested together."""

    spans: list[Span] = field(default_factory=list)


@dataclass
class Trace:
    """The spans that form one trace."""

    trace_id: str = ""
    spans: list[Span] = field(default_factory=list)


@dataclass
class TraceQuery:
    """Filters for querying traces; start and end are RFC 3339 strings."""

    service: str = ""
    operation: str = ""
    start: str = ""
    end: str = ""
    limit: int = 0
    min_duration_ms: int = 0


def span_from_dict(data: Any) -> Span:
    """Build a span from its JSON object form; duration is in nanoseconds."""
    data = _require_mapping(data)
    return Span(
        trace_id=_get_str(data, "trace_id"),
        span_id=_get_str(data, "span_id"),
        parent_id=_get_str(data, "parent_id"),
        service=_get_str(data, "service"),
        operation=_get_str(data, "operation"),
        start_time=_get_time(data, "start_time"),
        duration=_get_duration(data, "duration"),
        status=_get_str(data, "status"),
        tags=_get_str_map(data, "tags"),
        error=_get_str(data, "error"),
    )


# ── Alerts ────────────────────────────────────────────────────────────────────


@dataclass
class AlertRule:
    """A query whose condition triggers an alert."""

    name: str = ""
    query: str = ""
    condition: str = ""
    severity: Union[AlertSeverity, str] = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "query": self.query,
            "condition": self.condition,
            "severity": _text(self.severity),
            "message": self.message,
        }


@dataclass
class AlertRulesConfig:
    """Top-level structure of an alert rules file."""

    rules: list[AlertRule] = field(default_factory=list)


@dataclass
class AlertEvent:
    """A fired or resolved alert instance."""

    id: str = ""
    rule_name: str = ""
    severity: Union[AlertSeverity, str] = ""
    state: Union[AlertState, str] = ""
    message: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    fired_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "rule_name": self.rule_name,
            "severity": _text(self.severity),
            "state": _text(self.state),
            "message": self.message,
        }
        if self.labels:
            out["labels"] = dict(self.labels)
        out["value"] = self.value
        out["fired_at"] = _format_time(self.fired_at)
        if self.resolved_at is not None:
            out["resolved_at"] = _format_time(self.resolved_at)
        return out


@dataclass
class DashboardOverview:
    """Summary figures for the dashboard home page."""

    total_services: int = 0
    active_alerts: int = 0
    events_per_sec: float = 0.0
    error_rate: float = 0.0
    total_metrics: int = 0
    total_logs: int = 0
    total_traces: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_services": self.total_services,
            "active_alerts": self.active_alerts,
            "events_per_sec": self.events_per_sec,
            "error_rate": self.error_rate,
            "total_metrics": self.total_metrics,
            "total_logs": self.total_logs,
            "total_traces": self.total_traces,
        }


def alert_rule_from_dict(data: Any) -> AlertRule:
    """Build an alert rule from a mapping such as one entry of a rules file."""
    data = _require_mapping(data)
    return AlertRule(
        name=_get_str(data, "name"),
        query=_get_str(data, "query"),
        condition=_get_str(data, "condition"),
        severity=_coerce(AlertSeverity, data.get("severity")),
        message=_get_str(data, "message"),
    )