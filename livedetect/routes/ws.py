# livedetect/routes/ws.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from pydantic import ValidationError
import asyncio
import json
import logging
from ..models import JoinMessage, SignalMessage, DetectMessage
from ..services.detection_service import DetectionService
from ..services.relay_service import SignalingRelay, RelaySession

router = APIRouter(tags=["ws"])
logger = logging.getLogger(__name__)

class WebSocketPeer:
    """Relay-facing view of a FastAPI WebSocket; serializes sends and reports closure as ConnectionError."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return (self.websocket.client_state == WebSocketState.CONNECTED
                and self.websocket.application_state == WebSocketState.CONNECTED)

    async def send_json(self, payload: dict) -> None:
        async with self._send_lock:
            try:
                await self.websocket.send_text(json.dumps(payload))
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                raise ConnectionError(f"websocket closed: {exc}") from exc

@router.websocket("/ws")
async def relay_ws(websocket: WebSocket):
    """
    One persistent connection per device. JSON messages:
      {"type": "join", "roomId": "room123", "role": "publisher" | "viewer"}
      {"type": "signal", "to": "publisher" | "viewer", "data": <opaque>}
      {"type": "detect", "frame_id": 7, "capture_ts": 1700000000000, "image": "data:image/jpeg;base64,..."}
    Anything undecodable is dropped and the connection stays open.
    """
    await websocket.accept()
    relay: SignalingRelay = websocket.app.state.relay
    detection: DetectionService = websocket.app.state.detection
    peer = WebSocketPeer(websocket)
    session = relay.open(peer)
    inflight = set()

    async def run_and_send(msg: DetectMessage):
        result = await detection.handle(msg)
        try:
            await peer.send_json(result.model_dump(by_alias=True, exclude_none=True))
        except ConnectionError as exc:
            logger.debug("detectResult for frame %s not delivered: %s", msg.frame_id, exc)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            try:
                payload = json.loads(raw or "")
            except (ValueError, RecursionError):
                logger.debug("dropping undecodable message")
                continue
            if not isinstance(payload, dict):
                continue
            await _handle(relay, session, payload, inflight, run_and_send)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.close(session)
        for task in list(inflight):
            task.cancel()

async def _handle(relay: SignalingRelay, session: RelaySession, payload: dict, inflight: set, run_and_send):
    kind = payload.get("type")
    try:
        if kind == "join":
            msg = JoinMessage.model_validate(payload)
            await relay.join(session, msg.room_id, msg.role)
        elif kind == "signal":
            msg = SignalMessage.model_validate(payload)
            await relay.signal(session, msg.to, msg.data)
        elif kind == "detect":
            msg = DetectMessage.model_validate(payload)
            task = asyncio.create_task(run_and_send(msg))
            inflight.add(task)
            task.add_done_callback(inflight.discard)
        else:
            logger.debug("ignoring message of type %r", kind)
    except ValidationError as exc:
        logger.debug("dropping malformed %r message: %s", kind, exc.errors())
