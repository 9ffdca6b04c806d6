# livedetect/services/sampler.py
import asyncio
import logging
from typing import Callable, Optional, Protocol

import numpy as np

from ..utils.stats import now_ms
from .dispatcher import FrameRequest, InferenceDispatcher
from .errors import DetectorError
from .frame_codec import downscale

logger = logging.getLogger(__name__)

class FrameSource(Protocol):
    def read(self) -> Optional[np.ndarray]:
        ...

class FrameSampler:
    """
    Pulls frames from a live source on a fixed cadence and dispatches them one at a time.

    `_in_flight` holds the frame_id of the single outstanding dispatch (None when idle).
    A tick that lands while something is in flight captures nothing and only sets `_pending`;
    however many such ticks happen, completion re-triggers at most one fresh capture.
    Every dispatch ends in `_finalize`, success or failure.
    """

    def __init__(self, source: FrameSource, dispatcher: InferenceDispatcher, *,
                 width: int = 320, height: int = 240, interval_ms: int = 70,
                 clock: Callable[[], float] = now_ms):
        self.source = source
        self.dispatcher = dispatcher
        self.width = width
        self.height = height
        self.interval_s = interval_ms / 1000.0
        self.clock = clock
        self._in_flight: Optional[int] = None
        self._pending = False
        self._next_frame_id = 1
        self._task: Optional[asyncio.Task] = None
        self.dispatched = 0
        self.coalesced = 0
        self.failures = 0

    @property
    def in_flight(self) -> Optional[int]:
        return self._in_flight

    @property
    def pending(self) -> bool:
        return self._pending

    def tick(self) -> Optional[int]:
        """
        One sampling step; must run on the event loop.
        Reserves the next frame_id as the in-flight token and returns it, or None when busy.
        Capture and dispatch happen off this call, in `_capture_and_dispatch`.
        """
        if self._in_flight is not None:
            if not self._pending:
                self.coalesced += 1
            self._pending = True
            return None
        self._pending = False
        frame_id = self._next_frame_id
        self._in_flight = frame_id
        self._task = asyncio.get_running_loop().create_task(self._capture_and_dispatch(frame_id))
        return frame_id

    def _capture(self) -> Optional[np.ndarray]:
        # blocking: camera / stream reads wait for the next frame
        frame = self.source.read()
        if frame is None:
            return None
        return downscale(frame, self.width, self.height)

    async def _capture_and_dispatch(self, frame_id: int) -> None:
        try:
            try:
                pixels = await asyncio.to_thread(self._capture)
            except Exception:
                logger.exception("frame capture failed")
                return
            if pixels is None:
                return
            # the id is only consumed once a frame exists, so dispatched ids stay contiguous
            self._next_frame_id = frame_id + 1
            request = FrameRequest(frame_id=frame_id, capture_ts=self.clock(), pixels=pixels)
            self.dispatched += 1
            try:
                await self.dispatcher.submit(request)
            except DetectorError as exc:
                self.failures += 1
                logger.warning("detection failed for frame %s: %s", frame_id, exc)
            except Exception:
                self.failures += 1
                logger.exception("unexpected dispatch error for frame %s", frame_id)
        finally:
            self._finalize(frame_id)

    def _finalize(self, frame_id: int) -> None:
        if self._in_flight == frame_id:
            self._in_flight = None
        if self._pending:
            self._pending = False
            asyncio.get_running_loop().call_soon(self.tick)

    async def drain(self) -> None:
        """Wait for the outstanding dispatch, if any."""
        while True:
            task = self._task
            if task is not None and not task.done():
                await asyncio.wait({task})
            # a coalesced re-trigger scheduled by _finalize runs on the next loop turn
            await asyncio.sleep(0)
            if self._task is task:
                return

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while stop is None or not stop.is_set():
            self.tick()
            next_tick += self.interval_s
            delay = next_tick - loop.time()
            if delay < 0:
                # fell behind; skip the missed ticks rather than bursting
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)
        await self.drain()
