"""HTTP API for ingesting and querying metrics, logs, traces and alerts."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, TypeVar

from flask import Flask, Response, g, jsonify, redirect, request

from .alerts import AlertEngine
from .models import (
    DashboardOverview,
    LogQuery,
    MetricPoint,
    TraceQuery,
    _format_time,
    _parse_time,
    log_entry_from_dict,
    metric_point_from_dict,
    span_from_dict,
)
from .query import QueryError, parse
from .timeseries import TimeSeriesStore

_log = logging.getLogger(__name__)

_T = TypeVar("_T")

_ATOI = re.compile(r"[+-]?[0-9]+")

_DEFAULT_QUERY_WINDOW = timedelta(hours=1)


class _BadRequest(Exception):
    """A request body or parameter that cannot be used."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _atoi(text: str) -> int:
    """Parse a decimal integer strictly; anything else counts as 0."""
    return int(text) if _ATOI.fullmatch(text) else 0


def _query_int(name: str, default: str) -> int:
    return _atoi(request.args.get(name, default))


def _parse_query_time(text: str) -> Optional[datetime]:
    try:
        return _parse_time(text)
    except ValueError:
        return None


def _read_batch(key: str, build: Callable[[Any], _T]) -> list[_T]:
    """Decode a JSON body of the form ``{key: [...]}`` into model objects."""
    try:
        data = json.loads(request.get_data())
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc
    if data is None:
        return []
    if not isinstance(data, dict):
        raise _BadRequest("request body must be a JSON object")
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise _BadRequest(f"field {key!r} must be a list")
    try:
        return [build(item) for item in items]
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc


def _label_filters() -> Optional[dict[str, str]]:
    """Collect ``label[key]=value`` query parameters into a label filter."""
    labels = {
        key[len("label[") : -1]: request.args.getlist(key)[0]
        for key in request.args
        if len(key) > 6 and key.startswith("label[") and key.endswith("]")
    }
    return labels or None


def create_app(
    store: TimeSeriesStore,
    engine: AlertEngine,
    persistent: Any = None,
    static_dir: str = "web",
) -> Flask:
    """Build the web application.

    ``persistent`` is an optional log/trace store offering ``insert_log_batch``,
    ``query_logs``, ``count_logs``, ``insert_span_batch``, ``query_traces``,
    ``get_trace`` and ``count_traces``; without it logs and traces are not kept.
    """
    app = Flask(
        __name__,
        static_folder=os.path.abspath(static_dir),
        static_url_path="/web",
    )

    @app.errorhandler(_BadRequest)
    def _bad_request(exc: _BadRequest):
        return jsonify(error=str(exc)), 400

    @app.before_request
    def _start_and_preflight():
        g.request_started = time.monotonic()
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.after_request
    def _cors_and_log(response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        started = g.get("request_started", time.monotonic())
        _log.info(
            "request: method=%s path=%s status=%d latency=%.6fs",
            request.method,
            request.path,
            response.status_code,
            time.monotonic() - started,
        )
        return response

    @app.get("/")
    def index():
        return redirect("/web/index.html", code=302)

    # ── Metrics ───────────────────────────────────────────────────────────

    @app.post("/api/v1/metrics")
    def ingest_metrics():
        points: list[MetricPoint] = _read_batch("metrics", metric_point_from_dict)
        now = _now()
        for point in points:
            if point.timestamp is None:
                point.timestamp = now
        store.write_batch(points)
        return jsonify(ingested=len(points))

    @app.get("/api/v1/metrics/query")
    def query_metrics():
        name = request.args.get("name", "")
        if not name:
            return jsonify(error="name is required"), 400
        end = _now()
        start = end - _DEFAULT_QUERY_WINDOW
        start = _parse_query_time(request.args.get("from", "")) or start
        end = _parse_query_time(request.args.get("to", "")) or end
        series = store.query_series(name, _label_filters(), start, end)
        return jsonify(
            name=name,
            series=[item.to_dict() for item in series],
            **{"from": _format_time(start), "to": _format_time(end)},
        )

    @app.get("/api/v1/metrics/names")
    def list_metric_names():
        return jsonify(names=store.list_metric_names())

    @app.get("/api/v1/metrics/series")
    def list_series():
        series = store.list_series(request.args.get("name", ""), None)
        return jsonify(series=[item.to_dict() for item in series])

    # ── Logs ──────────────────────────────────────────────────────────────

    @app.post("/api/v1/logs")
    def ingest_logs():
        entries = _read_batch("logs", log_entry_from_dict)
        if persistent is None:
            return jsonify(ingested=len(entries), stored=False)
        try:
            persistent.insert_log_batch(entries)
        except Exception as exc:
            _log.error("insert logs: %s", exc)
            return jsonify(error="failed to store logs"), 500
        return jsonify(ingested=len(entries))

    @app.get("/api/v1/logs")
    def query_logs():
        if persistent is None:
            return jsonify(logs=[])
        log_query = LogQuery(
            service=request.args.get("service", ""),
            level=request.args.get("level", ""),
            search=request.args.get("q", ""),
            trace_id=request.args.get("trace_id", ""),
            start=request.args.get("from", ""),
            end=request.args.get("to", ""),
            limit=_query_int("limit", "100"),
        )
        try:
            entries = persistent.query_logs(log_query)
        except Exception as exc:
            _log.error("query logs: %s", exc)
            return jsonify(error=str(exc)), 500
        return jsonify(logs=[entry.to_dict() for entry in entries])

    # ── Traces ────────────────────────────────────────────────────────────

    @app.post("/api/v1/traces")
    def ingest_traces():
        spans = _read_batch("spans", span_from_dict)
        if persistent is None:
            return jsonify(ingested=len(spans), stored=False)
        try:
            persistent.insert_span_batch(spans)
        except Exception as exc:
            _log.error("insert spans: %s", exc)
            return jsonify(error="failed to store traces"), 500
        return jsonify(ingested=len(spans))

    @app.get("/api/v1/traces")
    def query_traces():
        if persistent is None:
            return jsonify(traces=[])
        trace_query = TraceQuery(
            service=request.args.get("service", ""),
            operation=request.args.get("operation", ""),
            start=request.args.get("from", ""),
            end=request.args.get("to", ""),
            limit=_query_int("limit", "50"),
        )
        min_duration = request.args.get("min_duration_ms", "")
        if min_duration:
            trace_query.min_duration_ms = _atoi(min_duration)
        try:
            spans = persistent.query_traces(trace_query)
        except Exception as exc:
            return jsonify(error=str(exc)), 500
        return jsonify(traces=[span.to_dict() for span in spans])

    @app.get("/api/v1/traces/<trace_id>")
    def get_trace(trace_id: str):
        if persistent is None:
            return jsonify(spans=[])
        try:
            spans = persistent.get_trace(trace_id)
        except Exception as exc:
            return jsonify(error=str(exc)), 500
        return jsonify(trace_id=trace_id, spans=[span.to_dict() for span in spans])

    # ── Alerts ────────────────────────────────────────────────────────────

    @app.get("/api/v1/alerts")
    def get_alerts():
        firing = engine.get_firing_alerts()
        return jsonify(alerts=[event.to_dict() for event in firing], count=len(firing))

    @app.get("/api/v1/alerts/history")
    def get_alert_history():
        history = engine.get_alert_history(_query_int("limit", "50"))
        return jsonify(history=[event.to_dict() for event in history])

    @app.get("/api/v1/alerts/rules")
    def get_alert_rules():
        return jsonify(rules=[rule.to_dict() for rule in engine.get_rules()])

    # ── Overview ──────────────────────────────────────────────────────────

    @app.get("/api/v1/overview")
    def get_overview():
        overview = DashboardOverview(
            active_alerts=len(engine.get_firing_alerts()),
            total_metrics=len(store.list_metric_names()),
            events_per_sec=store.events_per_second(),
            total_services=len(store.list_services()),
        )
        if persistent is not None:
            try:
                overview.total_logs = int(persistent.count_logs())
            except Exception:
                pass
            try:
                overview.total_traces = int(persistent.count_traces())
            except Exception:
                pass
        return jsonify(overview.to_dict())

    # ── Query evaluation ──────────────────────────────────────────────────

    @app.get("/api/v1/query")
    def eval_query():
        expr = request.args.get("q", "")
        if not expr:
            return jsonify(error="q parameter required"), 400
        try:
            parsed = parse(expr)
        except QueryError as exc:
            return jsonify(error=str(exc)), 400
        end = _now()
        start = end - parsed.duration
        points = store.query(parsed.metric, parsed.labels, start, end)
        return jsonify(
            query=parsed.to_dict(),
            points=len(points),
            **{"from": _format_time(start), "to": _format_time(end)},
        )

    return app