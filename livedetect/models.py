# livedetect/models.py
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Optional, Any, Literal

Role = Literal["publisher", "viewer"]

class JoinMessage(BaseModel):
    type: Literal["join"]
    room_id: str = Field(alias="roomId", min_length=1)
    role: Role

    model_config = ConfigDict(populate_by_name=True)

class SignalMessage(BaseModel):
    type: Literal["signal"]
    to: Role
    data: Any = None  # opaque negotiation payload, never inspected

class DetectMessage(BaseModel):
    type: Literal["detect"]
    frame_id: Optional[int] = None
    capture_ts: Optional[float] = None  # epoch milliseconds from the capturing device
    image: str = ""
    request_id: Optional[Any] = Field(default=None, alias="requestId")

    model_config = ConfigDict(populate_by_name=True)

    # a detect is always answered; unusable fields degrade here and surface as an error result
    @field_validator("frame_id", "capture_ts", mode="wrap")
    @classmethod
    def _unusable_number_is_none(cls, value, handler):
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("image", mode="before")
    @classmethod
    def _non_string_image_is_empty(cls, value):
        return value if isinstance(value, str) else ""

class MetricsIngestIn(BaseModel):
    frame_id: Optional[int] = None
    capture_ts: Optional[float] = None
    latency_ms: Optional[float] = None
    detections: Optional[int] = None  # number of boxes found, not the boxes themselves
    error: Optional[str] = None
