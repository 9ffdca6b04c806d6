# livedetect/services/dispatcher.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import numpy as np

from ..schemas import Detection, DetectResult
from ..utils.stats import now_ms
from .correlator import ResultCorrelator
from .detection_service import LazyDetector
from .errors import DetectionStalled, DetectorError
from .frame_codec import encode_data_url

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class FrameRequest:
    frame_id: int
    capture_ts: float  # epoch ms
    pixels: np.ndarray = field(repr=False, compare=False)

class InferenceBackend(Protocol):
    name: str

    async def submit(self, request: FrameRequest) -> Optional[List[Detection]]:
        """Detections for the frame, None if the frame was dropped, DetectorError on failure."""
        ...

class Channel(Protocol):
    @property
    def is_open(self) -> bool:
        ...

    async def send_json(self, payload: Dict[str, Any]) -> None:
        ...

class MetricsSink(Protocol):
    def emit(self, event: Dict[str, Any]) -> None:
        ...

class LocalBackend:
    name = "local"

    def __init__(self, detector: LazyDetector):
        self.detector = detector

    async def submit(self, request: FrameRequest) -> Optional[List[Detection]]:
        return await self.detector.detect(request.pixels)

class RemoteBackend:
    """
    Ships frames as `detect` envelopes over a persistent channel and waits for the matching
    `detectResult`. Replies are routed back by frame_id through `handle_reply`.
    A frame submitted while the channel is not open is dropped, not queued.
    """

    name = "remote"

    def __init__(self, channel: Channel, timeout_s: float = 2.0, jpeg_quality: int = 60):
        self.channel = channel
        self.timeout_s = timeout_s
        self.jpeg_quality = jpeg_quality
        self._waiting: Dict[int, asyncio.Future] = {}

    async def submit(self, request: FrameRequest) -> Optional[List[Detection]]:
        if not self.channel.is_open:
            return None
        # JPEG encoding is CPU-bound; keep it off the event loop
        image = await asyncio.to_thread(encode_data_url, request.pixels, self.jpeg_quality)
        payload = {
            "type": "detect",
            "frame_id": request.frame_id,
            "capture_ts": request.capture_ts,
            "image": image,
            "requestId": request.frame_id,
        }
        fut = asyncio.get_running_loop().create_future()
        self._waiting[request.frame_id] = fut
        try:
            try:
                await self.channel.send_json(payload)
            except ConnectionError as exc:
                logger.debug("detect channel closed while sending frame %s: %s", request.frame_id, exc)
                return None
            try:
                return await asyncio.wait_for(fut, self.timeout_s)
            except asyncio.TimeoutError:
                raise DetectionStalled(request.frame_id, self.timeout_s) from None
        finally:
            self._waiting.pop(request.frame_id, None)

    def handle_reply(self, result: DetectResult) -> bool:
        fut = self._waiting.get(result.frame_id)
        if fut is None or fut.done():
            logger.debug("late or unknown detectResult for frame %s", result.frame_id)
            return False
        if result.error:
            fut.set_exception(DetectorError(result.error))
        else:
            fut.set_result(list(result.detections))
        return True

class InferenceDispatcher:
    """One submit() contract over either backend; hands every outcome to the correlator."""

    def __init__(self, backend: InferenceBackend, correlator: ResultCorrelator,
                 metrics: Optional[MetricsSink] = None):
        self.backend = backend
        self.correlator = correlator
        self.metrics = metrics

    async def submit(self, request: FrameRequest) -> Optional[List[Detection]]:
        self.correlator.note_dispatched(request.frame_id)
        try:
            detections = await self.backend.submit(request)
        except DetectorError as exc:
            self.correlator.accept(request.frame_id, request.capture_ts, exc)
            if self.metrics is not None:
                self.metrics.emit({"frame_id": request.frame_id, "capture_ts": request.capture_ts, "error": str(exc)})
            raise
        if detections is None:
            return None
        self.correlator.accept(request.frame_id, request.capture_ts, detections)
        if self.metrics is not None:
            self.metrics.emit({
                "frame_id": request.frame_id,
                "capture_ts": request.capture_ts,
                "latency_ms": now_ms() - request.capture_ts,
                "detections": len(detections),
            })
        return detections
