# livedetect/services/relay_service.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

ROLES = ("publisher", "viewer")

class Peer(Protocol):
    """One end of a persistent connection. `send_json` raises ConnectionError once the peer is gone."""

    @property
    def is_open(self) -> bool:
        ...

    async def send_json(self, payload: Dict[str, Any]) -> None:
        ...

@dataclass
class Room:
    id: str
    publisher: Optional[Peer] = None
    viewer: Optional[Peer] = None

class RoomRegistry:
    """
    roomId -> Room, behind a single lock.

    Rooms are created on first bind and never removed; an emptied room just keeps two empty slots.
    All slot reads and writes go through the lock so a join and a disconnect on the same room
    cannot interleave.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    async def bind(self, room_id: str, role: str, peer: Peer) -> Optional[Peer]:
        """Put `peer` in the slot and return whoever held it before (that peer is left untouched)."""
        _check_role(role)
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(id=room_id)
                self._rooms[room_id] = room
            previous = getattr(room, role)
            setattr(room, role, peer)
            return previous

    async def occupant(self, room_id: str, role: str) -> Optional[Peer]:
        _check_role(role)
        async with self._lock:
            room = self._rooms.get(room_id)
            return getattr(room, role) if room else None

    async def release(self, room_id: str, role: str, peer: Peer) -> bool:
        """Empty the slot only if `peer` is still its occupant of record."""
        _check_role(role)
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None or getattr(room, role) is not peer:
                return False
            setattr(room, role, None)
            return True

    async def get(self, room_id: str) -> Optional[Room]:
        async with self._lock:
            room = self._rooms.get(room_id)
            return Room(room.id, room.publisher, room.viewer) if room else None

class RelaySession:
    """Relay-side state of one connection: unjoined -> joined(room, role) -> closed."""

    UNJOINED = "unjoined"
    JOINED = "joined"
    CLOSED = "closed"

    def __init__(self, peer: Peer):
        self.peer = peer
        self.state = self.UNJOINED
        self.room_id: Optional[str] = None
        self.role: Optional[str] = None

class SignalingRelay:
    """Store-and-forward router between the publisher and viewer of each room; payloads stay opaque."""

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    def open(self, peer: Peer) -> RelaySession:
        return RelaySession(peer)

    async def join(self, session: RelaySession, room_id: str, role: str) -> None:
        if session.state == RelaySession.CLOSED:
            return
        if session.state == RelaySession.JOINED and (session.room_id, session.role) != (room_id, role):
            await self.registry.release(session.room_id, session.role, session.peer)
        previous = await self.registry.bind(room_id, role, session.peer)
        session.state = RelaySession.JOINED
        session.room_id = room_id
        session.role = role
        if previous is not None and previous is not session.peer:
            logger.info("[relay] room %s: %s slot taken over by a new connection", room_id, role)

    async def signal(self, session: RelaySession, to: str, data: Any) -> bool:
        """Forward `data` to the `to` slot of the sender's room. Returns False when the message was dropped."""
        if session.state != RelaySession.JOINED:
            logger.debug("[relay] dropping signal from unjoined connection")
            return False
        target = await self.registry.occupant(session.room_id, to)
        if target is None or not target.is_open:
            logger.debug("[relay] room %s: no open %s, signal dropped", session.room_id, to)
            return False
        try:
            await target.send_json({"type": "signal", "from": session.role, "data": data})
        except ConnectionError as exc:
            logger.debug("[relay] room %s: send to %s failed: %s", session.room_id, to, exc)
            return False
        return True

    async def close(self, session: RelaySession) -> None:
        if session.state == RelaySession.JOINED:
            await self.registry.release(session.room_id, session.role, session.peer)
        session.state = RelaySession.CLOSED

def _check_role(role: str) -> None:
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}")
