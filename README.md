# obsplat

A compact observability backend library: keep metrics in memory, query them
with a small expression language, raise alerts from rules, and expose it all
through a Flask application.

## What is in the package

- `obsplat.models` – dataclasses for metric points and series, log entries,
  spans, traces, alert rules, alert events and the dashboard overview, each
  output type with a `to_dict()` for JSON. `metric_point_from_dict`,
  `log_entry_from_dict`, `span_from_dict` and `alert_rule_from_dict` build
  them from decoded JSON or YAML and raise `ValueError` on malformed input.
  Timestamps are RFC 3339 strings in JSON; span durations are integer
  nanoseconds.
- `obsplat.query` – `parse` and `eval_condition` for query expressions.
- `obsplat.timeseries` – `TimeSeriesStore`, a thread-safe in-memory store.
- `obsplat.alerts` – `AlertEngine`, which evaluates rules against a store.
- `obsplat.api` – `create_app`, which builds the HTTP API.

## Queries

```python
from obsplat.query import parse, eval_condition

q = parse('avg(cpu_usage{host="web-1"}, 10m) > 80')
print(q.function)          # avg
print(q.metric)            # cpu_usage
print(q.labels)            # {'host': 'web-1'}
print(q.condition.operator, q.condition.value)   # > 80.0

eval_condition(q.condition, 91.5)   # True
```

The form is `function(metric{label="value"}, duration) <op> threshold`.
Functions: `rate`, `avg`, `avg_over_time`, `sum`, `max`, `min`, `p99`,
`count`, `last`. Operators: `>`, `<`, `>=`, `<=`, `==`, `!=`. Durations
combine `s`, `m`, `h` and `d` (`30s`, `2h30m`, `1d`); when omitted the
window is five minutes. A bare metric name such as `parse("cpu_usage")`
means `last` over five minutes.

Malformed input – an empty string, an unknown function, a missing closing
parenthesis or brace, a non-numeric threshold, a bad duration – raises
`obsplat.query.QueryError` (a subclass of `ValueError`).
`eval_condition` returns `False` for a missing condition or an unknown
operator.

## Series keys and label matching

```python
from obsplat.models import label_key, series_key, match_labels

label_key({"host": "web-1"})                 # '{host="web-1"}'
series_key("cpu", {"host": "web-1"})         # 'cpu{host="web-1"}'
match_labels({"host": "web-1", "env": "prod"}, {"host": "web-1"})   # True
```

Label keys are sorted, so the same label set always gives the same key. An
empty filter matches every label set.

## The time-series store

```python
from datetime import datetime, timezone
from obsplat.models import MetricPoint, MetricType
from obsplat.timeseries import TimeSeriesStore

store = TimeSeriesStore()
now = datetime.now(timezone.utc)
store.write(MetricPoint(name="cpu", type=MetricType.GAUGE, value=75.0,
                        labels={"host": "web-1"}, timestamp=now))
store.get_latest("cpu", {"host": "web-1"}).value   # 75.0
```

Timestamps are timezone-aware datetimes. Each series keeps at most
`RING_SIZE` (5760) points, dropping the oldest. `query` and `query_series`
return points within an inclusive time range from all series matching a
name and label filter; points older than `DOWNSAMPLE_AFTER` (one hour) are
averaged into one-minute buckets. `cleanup()` drops series with no point
newer than `MAX_AGE` (24 hours). `list_metric_names`, `list_labels` and
`list_services` (values of the `service` label) return sorted lists;
`events_per_second` counts points of the last minute divided by 60.
`get_latest` returns `None` when the series is unknown.

## Alert rules

Rules are read from a YAML file with a top-level `rules` list:

```yaml
rules:
  - name: high-cpu
    query: avg(cpu_pct{}, 5m) > 80
    severity: critical
    message: CPU usage critically high
  - name: no-traffic
    query: count(http_requests_total{service="api"}, 5m) < 1
    severity: warning
    message: API has stopped receiving requests
```

```python
import threading
from obsplat.alerts import AlertEngine

engine = AlertEngine(store)
engine.load_rules("rules.yml")
stop = threading.Event()
threading.Thread(target=engine.run, args=(stop, 30), daemon=True).start()
```

`load_rules` raises `OSError` when the file cannot be read and `ValueError`
when it cannot be parsed; `set_rules` replaces the rules directly.
`run(stop_event, interval)` calls `evaluate()` every `interval` (seconds or
a `timedelta`) until the event is set. A query with no matching points
evaluates to 0. An alert fires the first time its condition holds and
resolves when it no longer does; rules without a condition never fire, and
rules whose query fails to parse are skipped with a warning in the log.

`get_firing_alerts()` returns the firing alerts; `get_alert_history(limit)`
returns fired and resolved events, most recent first, with a limit of 0 or
less meaning all. The history keeps the last 1000 events by default
(`max_history`).

An optional `persistence` object passed to `AlertEngine` receives
`insert_alert_event(event)` for each new alert and
`resolve_alert(event_id, resolved_at)` when one resolves; its failures are
ignored.

## HTTP API

`create_app(store, engine, persistent=None, static_dir="web")` returns a
Flask application with these routes under `/api/v1`:

| Method | Path                 | Purpose                                             |
|--------|----------------------|-----------------------------------------------------|
| POST   | `/metrics`           | ingest `{"metrics": [...]}`                         |
| GET    | `/metrics/query`     | series for `name`, `from`, `to`, `label[key]=value` |
| GET    | `/metrics/names`     | all metric names                                    |
| GET    | `/metrics/series`    | series of the metric `name`                         |
| POST   | `/logs`              | ingest `{"logs": [...]}`                            |
| GET    | `/logs`              | query logs (`service`, `level`, `q`, `trace_id`, `from`, `to`, `limit`) |
| POST   | `/traces`            | ingest `{"spans": [...]}`                           |
| GET    | `/traces`            | query traces (`service`, `operation`, `from`, `to`, `limit`, `min_duration_ms`) |
| GET    | `/traces/<trace_id>` | spans of one trace                                  |
| GET    | `/alerts`            | firing alerts and their count                       |
| GET    | `/alerts/history`    | alert history (`limit`, default 50)                 |
| GET    | `/alerts/rules`      | loaded rules                                        |
| GET    | `/overview`          | dashboard summary                                   |
| GET    | `/query`             | parse expression `q` and count the points it covers |

Metric points sent without a timestamp are stamped with the time of
ingestion. `/metrics/query` covers the last hour unless `from` and `to`
(RFC 3339) say otherwise. Malformed bodies and queries get `400` with an
`error` field. Every response carries permissive CORS headers, and
`OPTIONS` requests are answered with `204 No Content`. `/` redirects to
`/web/index.html`, served from `static_dir`.

Log and trace routes use the optional `persistent` object, which must offer
`insert_log_batch(entries)`, `query_logs(log_query)`, `count_logs()`,
`insert_span_batch(spans)`, `query_traces(trace_query)`,
`get_trace(trace_id)` and `count_traces()`. The queries arrive as
`LogQuery` and `TraceQuery` objects.

## What the package does not do

- It ships no storage for logs, traces or alert events. Without a
  `persistent` object, ingested logs and spans are counted and answered with
  `"stored": false`, and log and trace queries return empty lists.
- It has no command that starts a server, and it schedules nothing on its
  own: serve the application from `create_app` with any WSGI server, run
  `AlertEngine.run` in a thread, and call `TimeSeriesStore.cleanup`
  periodically yourself.
- It contains no dashboard pages; `/web` only serves files that exist in
  `static_dir`.

## Tests

The test suite uses pytest, installed with the `test` extra.