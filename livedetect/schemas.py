# livedetect/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Any, Literal

def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))

class Detection(BaseModel):
    label: str
    score: float
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    model_config = ConfigDict(frozen=True)

    # every backend goes through here, so the overlay never sees a box outside the frame
    @field_validator("score", "xmin", "ymin", "xmax", "ymax", mode="before")
    @classmethod
    def _clamp(cls, v):
        return _clamp01(v)

    @classmethod
    def from_pixel_box(cls, label: str, score: float, x: float, y: float, w: float, h: float,
                       frame_w: int, frame_h: int) -> "Detection":
        """Build a normalized detection from an (x, y, width, height) pixel box."""
        return cls(
            label=label,
            score=score,
            xmin=x / frame_w,
            ymin=y / frame_h,
            xmax=(x + w) / frame_w,
            ymax=(y + h) / frame_h,
        )

class DetectResult(BaseModel):
    type: Literal["detectResult"] = "detectResult"
    frame_id: Optional[int] = None
    capture_ts: Optional[float] = None
    recv_ts: Optional[float] = None
    inference_ts: Optional[float] = None
    detections: List[Detection] = []
    error: Optional[str] = None
    request_id: Optional[Any] = Field(default=None, alias="requestId")

    model_config = ConfigDict(populate_by_name=True)

class LastDetectionOut(BaseModel):
    frame_id: Optional[int] = None
    latency_ms: Optional[float] = None
    detections: Optional[int] = None
    mode: str
    capture_ts: Optional[float] = None
    inference_ts: float
    error: Optional[str] = None

class MetricsSnapshotOut(BaseModel):
    median_latency_ms: int = 0
    p95_latency_ms: int = 0
    fps: float = 0.0
    sample_count: int = 0
    last_detection: Optional[LastDetectionOut] = None
