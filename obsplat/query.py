"""Parser and evaluator for metric query expressions."""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

_OPERATORS = (">=", "<=", "!=", "==", ">", "<")

_COMPARE: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}

_FUNCTIONS = frozenset(
    {"rate", "avg", "avg_over_time", "sum", "max", "min", "p99", "count", "last"}
)

_DEFAULT_DURATION = timedelta(minutes=5)

_UNIT_MS = {"s": 1000, "m": 60 * 1000, "h": 3600 * 1000, "d": 86400 * 1000}

_INTEGER = re.compile(r"[+-]?[0-9]+")


class QueryError(ValueError):
    """Raised when a query expression cannot be parsed."""


@dataclass
class Condition:
    """A threshold comparison such as ``> 100``."""

    operator: str
    value: float


@dataclass
class Query:
    """A parsed query: function, metric, label filter, window and condition."""

    function: str = ""
    metric: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    duration: timedelta = timedelta(0)
    condition: Optional[Condition] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON form; the duration is given in nanoseconds."""
        condition = None
        if self.condition is not None:
            condition = {"Operator": self.condition.operator, "Value": self.condition.value}
        return {
            "Function": self.function,
            "Metric": self.metric,
            "Labels": dict(self.labels),
            "Duration": self.duration // timedelta(microseconds=1) * 1000,
            "Condition": condition,
        }


def parse(text: str) -> Query:
    """Parse an expression such as ``rate(http_requests_total{service="api"}, 5m) > 10``."""
    text = text.strip()
    if not text:
        raise QueryError("empty query")

    query = Query()
    main_part, condition_part = _split_condition(text)
    if condition_part:
        try:
            query.condition = _parse_condition(condition_part)
        except QueryError as exc:
            raise QueryError(f"parse condition: {exc}") from exc

    paren_open = main_part.find("(")
    if paren_open == -1:
        query.function = "last"
        query.metric = main_part
        query.duration = _DEFAULT_DURATION
        return query

    query.function = main_part[:paren_open].strip()
    if query.function not in _FUNCTIONS:
        raise QueryError(f"unknown function: {query.function}")

    paren_close = main_part.rfind(")")
    if paren_close < paren_open:
        raise QueryError("missing closing parenthesis")

    parts = _split_respecting_braces(main_part[paren_open + 1 : paren_close])
    if not parts:
        raise QueryError("missing metric name")

    metric_part = parts[0].strip()
    brace_open = metric_part.find("{")
    if brace_open == -1:
        query.metric = metric_part
    else:
        query.metric = metric_part[:brace_open].strip()
        brace_close = metric_part.rfind("}")
        if brace_close < brace_open:
            raise QueryError("missing closing brace in label selector")
        label_text = metric_part[brace_open + 1 : brace_close]
        if label_text:
            query.labels = _parse_labels(label_text)

    if len(parts) >= 2:
        duration_text = parts[1].strip()
        try:
            query.duration = _parse_duration(duration_text)
        except QueryError as exc:
            raise QueryError(f"parse duration {duration_text!r}: {exc}") from exc
    else:
        query.duration = _DEFAULT_DURATION

    return query


def eval_condition(cond: Optional[Condition], value: float) -> bool:
    """Apply a condition to a value; a missing condition or unknown operator is false."""
    if cond is None:
        return False
    compare = _COMPARE.get(cond.operator)
    return compare is not None and compare(value, cond.value)


def _split_condition(text: str) -> tuple[str, str]:
    """Split off a trailing comparison found outside parentheses."""
    for op in _OPERATORS:
        depth = 0
        for index, char in enumerate(text):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            if depth == 0 and text.startswith(op, index):
                return text[:index].strip(), text[index:].strip()
    return text, ""


def _parse_condition(text: str) -> Condition:
    text = text.strip()
    for op in _OPERATORS:
        if text.startswith(op):
            value_text = text[len(op) :].strip()
            try:
                if "_" in value_text:
                    raise ValueError(value_text)
                value = float(value_text)
            except ValueError as exc:
                raise QueryError(f"invalid threshold value {value_text!r}") from exc
            return Condition(operator=op, value=value)
    raise QueryError(f"invalid condition: {text!r}")


def _parse_labels(text: str) -> dict[str, str]:
    labels: dict[str, str] = {}
    for pair in text.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        if not sep:
            raise QueryError(f"invalid label: {pair!r} (missing =)")
        labels[key.strip()] = value.strip().strip("\"'")
    return labels


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise QueryError(f"invalid number {text!r}")
    return int(text)


def _parse_duration(text: str) -> timedelta:
    """Parse durations like ``30s``, ``5m``, ``2h30m`` or ``1d``."""
    text = text.strip()
    if not text:
        return _DEFAULT_DURATION

    total_ms = 0
    current: list[str] = []
    for char in text:
        unit = _UNIT_MS.get(char)
        if unit is None:
            current.append(char)
            continue
        total_ms += _parse_int("".join(current)) * unit
        current = []

    if total_ms == 0:
        raise QueryError(f"invalid duration: {text}")
    return timedelta(milliseconds=total_ms)


def _split_respecting_braces(text: str) -> list[str]:
    """Split on commas that are not inside braces."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    if current:
        parts.append("".join(current))
    return parts