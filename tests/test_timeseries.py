import threading
from datetime import datetime, timedelta, timezone

from obsplat.models import MetricPoint, MetricType
from obsplat.timeseries import RING_SIZE, TimeSeriesStore


def point(name, value, labels, when):
    return MetricPoint(
        name=name,
        type=MetricType.GAUGE,
        value=value,
        labels=labels or {},
        timestamp=when,
    )


def now():
    return datetime.now(timezone.utc)


MINUTE = timedelta(minutes=1)


def test_write_single_point():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 75.0, {"host": "web-1"}, t))
    result = ts.query("cpu", {"host": "web-1"}, t - MINUTE, t + MINUTE)
    assert len(result) == 1
    assert result[0].value == 75.0


def test_write_multiple_series():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 50.0, {"host": "web-1"}, t))
    ts.write(point("cpu", 80.0, {"host": "web-2"}, t))
    ts.write(point("mem", 60.0, {"host": "web-1"}, t))

    result = ts.query("cpu", {"host": "web-1"}, t - MINUTE, t + MINUTE)
    assert [p.value for p in result] == [50.0]

    all_cpu = ts.query("cpu", None, t - MINUTE, t + MINUTE)
    assert sorted(p.value for p in all_cpu) == [50.0, 80.0]


def test_query_time_range():
    ts = TimeSeriesStore()
    base = now().replace(microsecond=0)
    ts.write(point("req", 1, None, base - timedelta(minutes=10)))
    ts.write(point("req", 2, None, base - timedelta(minutes=5)))
    ts.write(point("req", 3, None, base))

    result = ts.query("req", None, base - timedelta(minutes=6), base + MINUTE)
    assert [p.value for p in result] == [2, 3]


def test_query_empty_result():
    ts = TimeSeriesStore()
    t = now()
    assert ts.query("nonexistent", None, t - timedelta(hours=1), t) == []


def test_query_label_filter():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("http_req", 10, {"service": "api", "env": "prod"}, t))
    ts.write(point("http_req", 20, {"service": "api", "env": "dev"}, t))
    ts.write(point("http_req", 30, {"service": "web", "env": "prod"}, t))

    result = ts.query(
        "http_req", {"service": "api", "env": "prod"}, t - MINUTE, t + MINUTE
    )
    assert [p.value for p in result] == [10]


def test_query_bounds_are_inclusive():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("edge", 1, None, t))
    assert len(ts.query("edge", None, t, t)) == 1


def test_query_downsamples_old_points():
    ts = TimeSeriesStore()
    minute = (now() - timedelta(hours=2)).replace(second=0, microsecond=0)
    recent = now()
    ts.write(point("lat", 10, None, minute + timedelta(seconds=10)))
    ts.write(point("lat", 20, None, minute + timedelta(seconds=20)))
    ts.write(point("lat", 99, None, recent))

    result = ts.query("lat", None, minute - MINUTE, recent + MINUTE)
    assert [p.value for p in result] == [15.0, 99]
    assert result[0].timestamp == minute


def test_write_batch():
    ts = TimeSeriesStore()
    t = now()
    ts.write_batch([point("m1", 1, None, t), point("m2", 2, None, t), point("m3", 3, None, t)])
    for name in ("m1", "m2", "m3"):
        assert len(ts.query(name, None, t - MINUTE, t + MINUTE)) == 1


def test_get_latest_found():
    ts = TimeSeriesStore()
    t = now()
    labels = {"host": "db-1"}
    ts.write(point("cpu", 30, labels, t - 2 * MINUTE))
    ts.write(point("cpu", 50, labels, t - MINUTE))
    ts.write(point("cpu", 70, labels, t))
    latest = ts.get_latest("cpu", labels)
    assert latest.value == 70


def test_get_latest_not_found():
    ts = TimeSeriesStore()
    assert ts.get_latest("nonexistent", None) is None


def test_list_metric_names():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("alpha", 1, None, t))
    ts.write(point("beta", 2, None, t))
    ts.write(point("alpha", 3, None, t))
    assert ts.list_metric_names() == ["alpha", "beta"]


def test_list_labels():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 1, {"host": "web-1", "region": "eu"}, t))
    ts.write(point("cpu", 2, {"host": "web-2", "region": "us"}, t))
    assert ts.list_labels("cpu") == ["host", "region"]


def test_list_labels_unknown_metric():
    assert TimeSeriesStore().list_labels("unknown") == []


def test_list_services():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("req", 1, {"service": "api"}, t))
    ts.write(point("req", 2, {"service": "worker"}, t))
    ts.write(point("req", 3, {"service": "api"}, t))
    assert ts.list_services() == ["api", "worker"]


def test_list_series():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 1, {"host": "a"}, t))
    ts.write(point("cpu", 2, {"host": "b"}, t))
    ts.write(point("mem", 3, {"host": "a"}, t))
    series = ts.list_series("cpu", None)
    assert sorted(s.labels["host"] for s in series) == ["a", "b"]
    assert all(s.points == [] for s in series)
    assert [s.labels for s in ts.list_series("cpu", {"host": "b"})] == [{"host": "b"}]


def test_events_per_second_empty():
    assert TimeSeriesStore().events_per_second() == 0


def test_events_per_second_recent_points():
    ts = TimeSeriesStore()
    t = now()
    for i in range(30):
        ts.write(point("m", float(i), None, t - timedelta(seconds=i)))
    assert ts.events_per_second() == 0.5


def test_events_per_second_old_points():
    ts = TimeSeriesStore()
    old = now() - timedelta(hours=2)
    for i in range(100):
        ts.write(point("m", float(i), None, old))
    assert ts.events_per_second() == 0


def test_query_series():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 10, {"host": "a"}, t - 2 * MINUTE))
    ts.write(point("cpu", 20, {"host": "a"}, t - MINUTE))
    ts.write(point("cpu", 30, {"host": "b"}, t))

    series = ts.query_series("cpu", None, t - 10 * MINUTE, t + MINUTE)
    by_host = {s.labels["host"]: [p.value for p in s.points] for s in series}
    assert by_host == {"a": [10, 20], "b": [30]}


def test_query_series_with_filter():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 10, {"host": "a"}, t))
    ts.write(point("cpu", 20, {"host": "b"}, t))
    series = ts.query_series("cpu", {"host": "a"}, t - MINUTE, t + MINUTE)
    assert len(series) == 1
    assert series[0].labels == {"host": "a"}


def test_query_series_skips_series_without_points_in_range():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("cpu", 10, {"host": "a"}, t - 30 * MINUTE))
    ts.write(point("cpu", 20, {"host": "b"}, t))
    series = ts.query_series("cpu", None, t - MINUTE, t + MINUTE)
    assert [s.labels["host"] for s in series] == ["b"]


def test_ring_buffer_overflow_retains_latest():
    ts = TimeSeriesStore()
    base = now() - timedelta(hours=2)
    total = RING_SIZE + 100
    for i in range(total):
        ts.write(point("ring", float(i), None, base + timedelta(seconds=i)))
    latest = ts.get_latest("ring", None)
    assert latest.value == float(total - 1)


def test_ring_buffer_drops_oldest_points():
    ts = TimeSeriesStore()
    base = now() - timedelta(minutes=50)
    total = RING_SIZE + 10
    for i in range(total):
        ts.write(point("ring", float(i), None, base + timedelta(milliseconds=i)))
    result = ts.query("ring", None, base - MINUTE, now())
    assert len(result) == RING_SIZE
    assert result[0].value == 10.0


def test_cleanup_removes_old_data():
    ts = TimeSeriesStore()
    ts.write(point("old_metric", 1, None, now() - timedelta(hours=25)))
    ts.cleanup()
    assert "old_metric" not in ts.list_metric_names()
    assert ts.get_latest("old_metric", None) is None


def test_cleanup_keeps_recent_data():
    ts = TimeSeriesStore()
    t = now()
    ts.write(point("recent", 42, None, t))
    ts.cleanup()
    result = ts.query("recent", None, t - MINUTE, t + MINUTE)
    assert [p.value for p in result] == [42]


def test_concurrent_writes():
    ts = TimeSeriesStore()
    t = now()

    def worker(ident):
        for i in range(100):
            ts.write(point("concurrent", float(i), {"worker": str(ident)}, t))

    threads = [threading.Thread(target=worker, args=(g,)) for g in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    result = ts.query("concurrent", None, t - MINUTE, t + MINUTE)
    assert len(result) == 1000
    assert len(ts.list_series("concurrent", None)) == 10


def test_concurrent_read_write():
    ts = TimeSeriesStore()
    t = now()
    sizes = []

    def writer():
        for i in range(500):
            ts.write(point("m", float(i), None, t + timedelta(milliseconds=i)))

    def reader():
        for _ in range(500):
            sizes.append(len(ts.query("m", None, t - timedelta(hours=1), t + timedelta(hours=1))))

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(0 <= size <= 500 for size in sizes)
    assert len(ts.query("m", None, t - timedelta(hours=1), t + timedelta(hours=1))) == 500