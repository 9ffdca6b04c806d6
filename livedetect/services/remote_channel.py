# livedetect/services/remote_channel.py
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)

class RemoteChannel:
    """
    Client side of the persistent JSON WebSocket to the relay server.
    Inbound messages are decoded and handed to `on_message`; undecodable frames are skipped.
    """

    def __init__(self, url: str, on_message: Callable[[Dict[str, Any]], None]):
        self.url = url
        self.on_message = on_message
        self._ws: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(self) -> None:
        self._ws = await connect(self.url, ping_interval=20, ping_timeout=10)
        self._reader = asyncio.create_task(self._read_loop(self._ws))
        logger.info("[remote] WS connected for detection: %s", self.url)

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("channel not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise ConnectionError(str(exc)) from exc

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except (ValueError, TypeError, RecursionError):
                    logger.debug("[remote] skipping undecodable message")
                    continue
                if isinstance(msg, dict):
                    self.on_message(msg)
        except ConnectionClosed as exc:
            logger.warning("[remote] WS closed for detection: %s", exc)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
