import asyncio
import json
import threading
from pathlib import Path

import pytest

from livedetect.services.metrics_service import MetricsAggregator


def _latency(metrics: MetricsAggregator, latency_ms: float) -> None:
    metrics.record_event(frame_id=None, capture_ts=None, latency_ms=latency_ms, detections=None, mode="server")


def _detection(metrics: MetricsAggregator, ts_ms: float) -> None:
    metrics.record_event(frame_id=None, capture_ts=None, latency_ms=None, detections=1,
                         mode="server", inference_ts=ts_ms)


def test_fps_counts_only_the_last_window() -> None:
    metrics = MetricsAggregator(fps_window_s=5.0)
    for t in (0, 1, 2, 6, 7):
        _detection(metrics, t * 1000.0)
    snap = metrics.snapshot(now=7000.0)
    assert snap.fps == pytest.approx(0.6)


def test_old_timestamps_are_evicted_on_record() -> None:
    metrics = MetricsAggregator(fps_window_s=5.0)
    for t in (0, 1, 2, 6, 7):
        _detection(metrics, t * 1000.0)
    assert list(metrics._timestamps) == [2000.0, 6000.0, 7000.0]


def test_latency_window_is_fifo_capped() -> None:
    metrics = MetricsAggregator(max_samples=500)
    for i in range(600):
        _latency(metrics, float(i))
    samples = metrics.latency_samples()
    assert len(samples) == 500
    assert samples[0] == 100.0
    assert samples[-1] == 599.0


def test_snapshot_statistics() -> None:
    metrics = MetricsAggregator()
    for v in (50, 10, 40, 20, 30):
        _latency(metrics, v)
    snap = metrics.snapshot()
    assert snap.median_latency_ms == 30
    assert snap.p95_latency_ms == 50
    assert snap.sample_count == 5
    assert snap.last_detection.latency_ms == 30


def test_invalid_latencies_are_ignored() -> None:
    metrics = MetricsAggregator()
    for v in (-5.0, float("nan"), float("inf")):
        _latency(metrics, v)
    assert metrics.snapshot().sample_count == 0


def test_record_event_updates_everything_together() -> None:
    metrics = MetricsAggregator()
    metrics.record_event(frame_id=4, capture_ts=1000.0, latency_ms=80.0, detections=2,
                         mode="server", inference_ts=1080.0)
    snap = metrics.snapshot(now=1100.0)
    assert snap.sample_count == 1
    assert snap.fps == pytest.approx(0.2)
    assert snap.last_detection.frame_id == 4
    assert snap.last_detection.mode == "server"
    assert snap.last_detection.detections == 2


def test_error_event_records_no_latency() -> None:
    metrics = MetricsAggregator()
    metrics.record_event(frame_id=9, capture_ts=None, latency_ms=None, detections=None,
                         mode="local", error="model not loaded")
    snap = metrics.snapshot()
    assert snap.sample_count == 0
    assert snap.fps == 0
    assert snap.last_detection.error == "model not loaded"


def test_write_snapshot_persists_json(tmp_path: Path) -> None:
    path = tmp_path / "out" / "metrics.json"
    metrics = MetricsAggregator(path=str(path))
    _latency(metrics, 12.0)
    metrics.write_snapshot()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["sample_count"] == 1
    assert data["median_latency_ms"] == 12


def test_write_failure_is_logged_not_raised(tmp_path: Path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    metrics = MetricsAggregator(path=str(blocker / "metrics.json"))
    _latency(metrics, 5.0)
    snap = metrics.write_snapshot()
    assert snap.sample_count == 1
    assert "[metrics] write error" in caplog.text


def test_concurrent_producers_and_snapshots() -> None:
    metrics = MetricsAggregator(max_samples=10_000)
    seen = []

    def produce() -> None:
        for _ in range(500):
            metrics.record_event(frame_id=1, capture_ts=0.0, latency_ms=10.0, detections=1, mode="server")

    def read() -> None:
        for _ in range(200):
            seen.append(metrics.snapshot().sample_count)

    threads = [threading.Thread(target=produce) for _ in range(4)] + [threading.Thread(target=read)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert metrics.snapshot().sample_count == 2000
    assert seen == sorted(seen)


def test_periodic_writer_keeps_the_file_fresh(tmp_path: Path) -> None:
    path = tmp_path / "metrics.json"
    metrics = MetricsAggregator(path=str(path))

    async def scenario() -> None:
        writer = asyncio.create_task(metrics.run_periodic_writer(0.01))
        await asyncio.sleep(0.05)
        assert json.loads(path.read_text(encoding="utf-8"))["sample_count"] == 0
        _latency(metrics, 7.0)
        await asyncio.sleep(0.05)
        writer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await writer

    asyncio.run(scenario())
    assert json.loads(path.read_text(encoding="utf-8"))["sample_count"] == 1
