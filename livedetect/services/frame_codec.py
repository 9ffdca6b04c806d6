# livedetect/services/frame_codec.py
import base64
import binascii
import logging
from typing import Optional, Union

import cv2
import numpy as np

from .errors import FrameDecodeError

logger = logging.getLogger(__name__)

def decode_data_url(image: str) -> np.ndarray:
    """
    Decode a base64 JPEG/PNG (optionally wrapped in a `data:image/...;base64,` URL) into a BGR array.
    Raises FrameDecodeError for anything that is not a decodable image.
    """
    if not image:
        raise FrameDecodeError("invalid image")
    try:
        img_bytes = base64.b64decode(image.split(",")[-1], validate=False)
    except (binascii.Error, ValueError) as exc:
        raise FrameDecodeError(f"invalid base64 payload: {exc}") from exc
    nparr = np.frombuffer(img_bytes, np.uint8)
    if nparr.size == 0:
        raise FrameDecodeError("invalid image")
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        raise FrameDecodeError("jpeg decode failed")
    return frame

def encode_data_url(frame: np.ndarray, quality: int = 60) -> str:
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameDecodeError("jpeg encode failed")
    return "data:image/jpeg;base64," + base64.b64encode(buf.tobytes()).decode("ascii")

def downscale(frame: np.ndarray, width: int, height: int) -> np.ndarray:
    # plain stretch to the target size, no letterboxing
    return cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)

class CaptureSource:
    """Live frames from a camera index, file or stream URL via cv2.VideoCapture."""

    def __init__(self, source: Union[int, str]):
        self.source = source
        self._cap = cv2.VideoCapture(source)
        if not self._cap.isOpened():
            logger.warning("could not open video source %r", source)

    def is_open(self) -> bool:
        return self._cap.isOpened()

    def read(self) -> Optional[np.ndarray]:
        ok, frame = self._cap.read()
        if not ok:
            return None
        return frame

    def describe(self) -> dict:
        """
        Returns: {frame_rate, resolution: {width, height}} as reported by the backend.
        """
        fps = self._cap.get(cv2.CAP_PROP_FPS) or 0.0
        width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        return {
            "frame_rate": float(fps) if fps else None,
            "resolution": {"width": width, "height": height},
        }

    def release(self) -> None:
        self._cap.release()
