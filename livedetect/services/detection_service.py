# livedetect/services/detection_service.py
import asyncio
import json
import logging
from typing import Callable, List, Optional, Protocol

import cv2
import numpy as np

from ..models import DetectMessage
from ..schemas import Detection, DetectResult
from ..utils.stats import now_ms
from .errors import DetectorError, DetectorUnavailable
from .frame_codec import decode_data_url
from .metrics_service import MetricsAggregator

logger = logging.getLogger(__name__)

class Detector(Protocol):
    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        ...

class MediaPipeObjectDetector:
    """MediaPipe Tasks object detector (EfficientDet-Lite family) returning normalized detections."""

    def __init__(self, model_path: str, score_threshold: float = 0.5, max_results: int = 20):
        # optional native wheel; an ImportError surfaces as DetectorUnavailable
        import mediapipe as mp

        self._mp = mp
        options = mp.tasks.vision.ObjectDetectorOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            score_threshold=score_threshold,
            max_results=max_results,
        )
        self._detector = mp.tasks.vision.ObjectDetector.create_from_options(options)

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        img_h, img_w = frame_bgr.shape[:2]
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=frame_rgb)
        result = self._detector.detect(mp_image)
        out = []
        for det in result.detections or []:
            if not det.categories:
                continue
            cat = det.categories[0]
            box = det.bounding_box
            out.append(Detection.from_pixel_box(
                cat.category_name or "object", cat.score,
                box.origin_x, box.origin_y, box.width, box.height,
                img_w, img_h,
            ))
        return out

    def close(self):
        self._detector.close()

class LazyDetector:
    """
    Builds the underlying detector on first use, exactly once.

    Concurrent first callers wait on the same lock instead of racing a second load.
    A failed load is reported as DetectorUnavailable to that caller and retried by the next one.
    """

    def __init__(self, factory: Callable[[], Detector]):
        self._factory = factory
        self._detector: Optional[Detector] = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._detector is not None

    async def get(self) -> Detector:
        if self._detector is not None:
            return self._detector
        async with self._lock:
            if self._detector is None:
                try:
                    self._detector = await asyncio.to_thread(self._factory)
                except Exception as exc:
                    logger.warning("[detect] detector not available: %s", exc)
                    raise DetectorUnavailable(str(exc)) from exc
                logger.info("[detect] detector loaded")
        return self._detector

    def close(self) -> None:
        """Releases the loaded detector, if any; the next use loads a fresh one."""
        detector, self._detector = self._detector, None
        close = getattr(detector, "close", None)
        if close is not None:
            close()
            logger.info("[detect] detector closed")

    async def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        detector = await self.get()
        try:
            return await asyncio.to_thread(detector.detect, frame_bgr)
        except DetectorError:
            raise
        except Exception as exc:
            raise DetectorError(f"inference failed: {exc}") from exc

def mediapipe_factory(model_path: str, score_threshold: float, max_results: int) -> Callable[[], Detector]:
    def build() -> Detector:
        return MediaPipeObjectDetector(model_path, score_threshold=score_threshold, max_results=max_results)
    return build

class DetectionService:
    """Answers `detect` requests arriving over the WebSocket with a `detectResult`."""

    def __init__(self, detector: LazyDetector, metrics: MetricsAggregator, mode: str = "server"):
        self.detector = detector
        self.metrics = metrics
        self.mode = mode

    async def handle(self, msg: DetectMessage) -> DetectResult:
        recv_ts = now_ms()
        try:
            frame = decode_data_url(msg.image)
            detections = await self.detector.detect(frame)
        except DetectorError as exc:
            return DetectResult(
                frame_id=msg.frame_id,
                capture_ts=msg.capture_ts,
                recv_ts=recv_ts,
                inference_ts=now_ms(),
                detections=[],
                error=str(exc),
                request_id=msg.request_id,
            )

        inference_ts = now_ms()
        latency = inference_ts - msg.capture_ts if msg.capture_ts is not None else None
        logger.info(json.dumps({
            "event": "detect",
            "mode": self.mode,
            "frame_id": msg.frame_id,
            "latency_ms": latency,
            "detections": len(detections),
        }))
        self.metrics.record_event(
            frame_id=msg.frame_id,
            capture_ts=msg.capture_ts,
            latency_ms=latency,
            detections=len(detections),
            mode=self.mode,
            inference_ts=inference_ts,
        )
        await asyncio.to_thread(self.metrics.write_snapshot)
        return DetectResult(
            frame_id=msg.frame_id,
            capture_ts=msg.capture_ts,
            recv_ts=recv_ts,
            inference_ts=inference_ts,
            detections=detections,
            request_id=msg.request_id,
        )
