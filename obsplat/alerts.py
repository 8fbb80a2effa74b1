"""Alert engine that evaluates rules against live metrics."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, Union

import yaml

from .models import AlertEvent, AlertRule, AlertState, MetricPoint, alert_rule_from_dict
from .query import QueryError, eval_condition, parse

DEFAULT_MAX_HISTORY = 1000


class MetricsReader(Protocol):
    """What the alert engine needs from a metrics store."""

    def query(
        self,
        name: str,
        labels: Optional[Mapping[str, str]],
        start: datetime,
        end: datetime,
    ) -> list[MetricPoint]:
        """Points of a metric within [start, end]."""
        ...


class AlertEngine:
    """Evaluates alert rules periodically and tracks firing and resolved alerts.

    ``persistence``, when given, receives ``insert_alert_event(event)`` for each
    new alert and ``resolve_alert(event_id, resolved_at)`` when it resolves.
    """

    def __init__(
        self,
        reader: MetricsReader,
        persistence: Any = None,
        logger: Optional[logging.Logger] = None,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self._reader = reader
        self._persistence = persistence
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._rules: list[AlertRule] = []
        self._firing: dict[str, AlertEvent] = {}
        self._history: deque[AlertEvent] = deque(maxlen=max_history)

    def load_rules(self, path: Union[str, Path]) -> None:
        """Replace the rule set with the ``rules`` list of a YAML file."""
        text = Path(path).read_text(encoding="utf-8")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"parse rules: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ValueError("parse rules: top level must be a mapping")
        entries = data.get("rules") or []
        if not isinstance(entries, list):
            raise ValueError("parse rules: 'rules' must be a list")
        try:
            rules = [alert_rule_from_dict(entry) for entry in entries]
        except ValueError as exc:
            raise ValueError(f"parse rules: {exc}") from exc
        self.set_rules(rules)
        self._log.info("alert rules loaded: count=%d", len(rules))

    def set_rules(self, rules) -> None:
        """Replace the rule set."""
        with self._lock:
            self._rules = list(rules)

    def get_rules(self) -> list[AlertRule]:
        """Copies of the current rules."""
        with self._lock:
            return [replace(rule) for rule in self._rules]

    def get_firing_alerts(self) -> list[AlertEvent]:
        """Copies of the alerts currently firing."""
        with self._lock:
            return [replace(event) for event in self._firing.values()]

    def get_alert_history(self, limit: int) -> list[AlertEvent]:
        """Recent alert events, most recent first; a limit of 0 or less means all."""
        with self._lock:
            events = list(reversed(self._history))
        if limit <= 0 or limit > len(events):
            return events
        return events[:limit]

    def run(self, stop_event: threading.Event, interval: Union[float, timedelta]) -> None:
        """Evaluate the rules every interval until stop_event is set."""
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        self._log.info("alert engine started: interval=%ss", seconds)
        while not stop_event.wait(seconds):
            self.evaluate()
        self._log.info("alert engine stopped")

    def evaluate(self, now: Optional[datetime] = None) -> None:
        """Evaluate every rule once at the given time."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            rules = list(self._rules)

        for rule in rules:
            try:
                value = self.eval_query(rule.query, now)
            except QueryError as exc:
                self._log.warning("eval query error: rule=%s error=%s", rule.name, exc)
                continue
            condition = parse(rule.query).condition
            if condition is None:
                continue
            self._handle_result(rule, eval_condition(condition, value), value, now)

    def _handle_result(
        self, rule: AlertRule, triggered: bool, value: float, now: datetime
    ) -> None:
        fired: Optional[AlertEvent] = None
        resolved: Optional[AlertEvent] = None
        with self._lock:
            existing = self._firing.get(rule.name)
            if triggered and existing is None:
                fired = AlertEvent(
                    id=str(uuid.uuid4()),
                    rule_name=rule.name,
                    severity=rule.severity,
                    state=AlertState.FIRING,
                    message=rule.message,
                    value=value,
                    fired_at=now,
                )
                self._firing[rule.name] = fired
                self._history.append(replace(fired))
            elif not triggered and existing is not None:
                existing.state = AlertState.RESOLVED
                existing.resolved_at = now
                self._history.append(replace(existing))
                resolved = self._firing.pop(rule.name)

        if fired is not None:
            self._log.warning(
                "alert firing: rule=%s severity=%s value=%s", rule.name, rule.severity, value
            )
            self._persist("insert_alert_event", replace(fired))
        if resolved is not None:
            self._log.info("alert resolved: rule=%s", rule.name)
            self._persist("resolve_alert", resolved.id, now)

    def _persist(self, method: str, *args: Any) -> None:
        if self._persistence is None:
            return
        try:
            getattr(self._persistence, method)(*args)
        except Exception as exc:  # storage failures never stop evaluation
            self._log.debug("alert persistence failed: %s", exc)

    def eval_query(self, expr: str, now: datetime) -> float:
        """Compute the scalar value of a query expression over its window ending at now."""
        query = parse(expr)
        points = self._reader.query(query.metric, query.labels, now - query.duration, now)
        if not points:
            return 0.0
        values = [float(point.value) for point in points]

        match query.function:
            case "avg" | "avg_over_time":
                return sum(values) / len(values)
            case "sum":
                return sum(values)
            case "max":
                return max(values)
            case "min":
                return min(values)
            case "count":
                return float(len(values))
            case "rate":
                if len(points) < 2:
                    return 0.0
                span = (points[-1].timestamp - points[0].timestamp).total_seconds()
                if span == 0:
                    return 0.0
                return (values[-1] - values[0]) / span
            case "p99":
                ordered = sorted(values)
                index = min(int(len(ordered) * 0.99), len(ordered) - 1)
                return ordered[index]
            case "last":
                return values[-1]
            case _:
                raise QueryError(f"unknown function: {query.function}")