# livedetect/services/metrics_service.py
import asyncio
import json
import logging
import math
import os
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from ..schemas import LastDetectionOut, MetricsSnapshotOut
from ..utils.stats import now_ms, percentile, round_half_up

logger = logging.getLogger(__name__)

class MetricsAggregator:
    """
    Rolling latency / throughput statistics over an unbounded stream of detection events.

    Latency samples live in a FIFO capped at `max_samples`; detection timestamps (epoch ms)
    are kept only while younger than `fps_window_s`. Every mutation and every snapshot runs
    under one lock so a reader never sees half of an event applied.
    """

    def __init__(self, max_samples: int = 500, fps_window_s: float = 5.0, path: Optional[str] = None):
        self._window_ms = float(fps_window_s) * 1000.0
        self._latencies: Deque[float] = deque(maxlen=int(max_samples))
        self._timestamps: Deque[float] = deque()
        self._last_detection: Optional[LastDetectionOut] = None
        self._lock = threading.Lock()
        self.path = Path(path) if path else None

    @property
    def fps_window_s(self) -> float:
        return self._window_ms / 1000.0

    def record_event(self, *, frame_id: Optional[int], capture_ts: Optional[float],
                     latency_ms: Optional[float], detections: Optional[int], mode: str,
                     inference_ts: Optional[float] = None, error: Optional[str] = None) -> None:
        inference_ts = now_ms() if inference_ts is None else inference_ts
        with self._lock:
            if detections is not None:
                self._add_timestamp(inference_ts)
            if _valid_latency(latency_ms):
                self._latencies.append(float(latency_ms))
            self._last_detection = LastDetectionOut(
                frame_id=frame_id,
                latency_ms=latency_ms if _valid_latency(latency_ms) else None,
                detections=detections,
                mode=mode,
                capture_ts=capture_ts,
                inference_ts=inference_ts,
                error=error,
            )

    def _add_timestamp(self, ts_ms: float) -> None:
        self._timestamps.append(ts_ms)
        cutoff = ts_ms - self._window_ms
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def snapshot(self, now: Optional[float] = None) -> MetricsSnapshotOut:
        now = now_ms() if now is None else now
        with self._lock:
            latencies = sorted(self._latencies)
            cutoff = now - self._window_ms
            in_window = sum(1 for t in self._timestamps if t >= cutoff)
            last = self._last_detection
        return MetricsSnapshotOut(
            median_latency_ms=round_half_up(percentile(latencies, 0.5)),
            p95_latency_ms=round_half_up(percentile(latencies, 0.95)),
            fps=in_window / self.fps_window_s,
            sample_count=len(latencies),
            last_detection=last,
        )

    def latency_samples(self) -> List[float]:
        with self._lock:
            return list(self._latencies)

    def write_snapshot(self) -> Optional[MetricsSnapshotOut]:
        """
        Materialize the current snapshot to `path` (if configured).
        I/O errors are logged, never raised.
        """
        snap = self.snapshot()
        if self.path is None:
            return snap
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(snap.model_dump(), indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("[metrics] write error: %s", exc)
        return snap

    async def run_periodic_writer(self, interval_s: float) -> None:
        while True:
            await asyncio.to_thread(self.write_snapshot)
            await asyncio.sleep(interval_s)

def _valid_latency(latency_ms: Optional[float]) -> bool:
    return (
        isinstance(latency_ms, (int, float))
        and not isinstance(latency_ms, bool)
        and math.isfinite(latency_ms)
        and latency_ms >= 0
    )
