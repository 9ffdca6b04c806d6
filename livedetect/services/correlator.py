# livedetect/services/correlator.py
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from ..schemas import Detection
from ..utils.stats import now_ms

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DetectionSnapshot:
    """The detections answering one frame. Replaced as a whole, never edited."""
    frame_id: int
    capture_ts: float
    detections: Tuple[Detection, ...]
    accepted_ts: float

class ResultCorrelator:
    """
    Decides whether an asynchronous result may replace the last-known detection set.

    Only a result for the most recently dispatched frame is accepted, and never one older than
    what is already held, so `current.frame_id` only moves forward. Errors leave the held set alone.
    The correlator is the only writer of `current`; readers just take the reference.
    """

    def __init__(self):
        self._latest_dispatched: Optional[int] = None
        self._current: Optional[DetectionSnapshot] = None
        self.last_error: Optional[str] = None
        self.discarded = 0

    @property
    def current(self) -> Optional[DetectionSnapshot]:
        return self._current

    @property
    def latest_dispatched(self) -> Optional[int]:
        return self._latest_dispatched

    def note_dispatched(self, frame_id: int) -> None:
        if self._latest_dispatched is None or frame_id > self._latest_dispatched:
            self._latest_dispatched = frame_id

    def accept(self, frame_id: int, capture_ts: float,
               result: Union[Sequence[Detection], BaseException]) -> bool:
        if frame_id != self._latest_dispatched:
            self.discarded += 1
            logger.debug("discarding result for frame %s (latest dispatched %s)", frame_id, self._latest_dispatched)
            return False
        if isinstance(result, BaseException):
            self.last_error = str(result)
            return False
        held = self._current
        if held is not None and frame_id < held.frame_id:
            self.discarded += 1
            return False
        self._current = DetectionSnapshot(
            frame_id=frame_id,
            capture_ts=capture_ts,
            detections=tuple(result),
            accepted_ts=now_ms(),
        )
        self.last_error = None
        return True
