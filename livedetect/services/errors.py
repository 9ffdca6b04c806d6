# livedetect/services/errors.py


class DetectorError(Exception):
    """Base class for anything that stops a frame from producing detections."""


class DetectorUnavailable(DetectorError):
    """The detector backend could not be loaded or initialised."""


class FrameDecodeError(DetectorError):
    """The submitted image could not be decoded."""


class DetectionStalled(DetectorError):
    """A remote detector did not answer within the configured timeout."""

    def __init__(self, frame_id: int, timeout_s: float):
        super().__init__(f"no detectResult for frame {frame_id} after {timeout_s:.1f}s")
        self.frame_id = frame_id
        self.timeout_s = timeout_s
