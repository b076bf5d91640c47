import asyncio
import random
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from constants import MAX_ROOM_MEMBERS, OUTBOX_SIZE, ROOM_CODE_LENGTH
from logging_config import get_logger

logger = get_logger(__name__)

SIGNAL_KINDS = ("offer", "answer", "ice-candidate")


class JoinError(Exception):
    """A join-room request that was refused. Reported to the requester only."""

    event_type = "join-error"

    def __init__(self, room_id: str):
        super().__init__(room_id)
        self.room_id = room_id


class RoomNotFound(JoinError):
    event_type = "room-not-found"


class RoomFull(JoinError):
    event_type = "room-full"


class UnknownConnection(LookupError):
    pass


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))


def normalize_room_code(room_id: str) -> str:
    return room_id.strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Outbox:
    """Bounded FIFO of events waiting to be written to one client.

    put() never blocks: when the queue is full the oldest pending event is
    discarded to make room, so a slow reader cannot stall whoever is sending
    to it.
    """

    def __init__(self, maxsize: int = OUTBOX_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def put(self, event: dict) -> bool:
        """Enqueue an event. Returns False if an older event had to be dropped."""
        overflowed = False
        if self._queue.full():
            self._queue.get_nowait()
            overflowed = True
        self._queue.put_nowait(event)
        return not overflowed

    async def get(self) -> dict:
        return await self._queue.get()

    def drain(self) -> List[dict]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events


@dataclass
class Connection:
    connection_id: str
    outbox: Outbox
    room_id: Optional[str] = None


@dataclass
class Room:
    room_id: str
    members: List[str] = field(default_factory=list)  # arrival order
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= MAX_ROOM_MEMBERS

    def other_member(self, connection_id: str) -> Optional[str]:
        for member in self.members:
            if member != connection_id:
                return member
        return None


@dataclass
class RelayStats:
    relayed: int = 0
    dropped_unaddressable: int = 0
    dropped_overflow: int = 0


class SignalingBackend:
    """In-memory connection registry, room directory and signaling relay.

    Every operation that reads or mutates room membership runs under a single
    asyncio lock, so join/leave/relay/sweep for a given code never interleave.
    Events for clients are only ever enqueued on their outboxes, never awaited.
    """

    def __init__(self, outbox_size: int = OUTBOX_SIZE):
        self.rooms: Dict[str, Room] = {}
        self.connections: Dict[str, Connection] = {}
        self.stats = RelayStats()
        self._outbox_size = outbox_size
        self._lock = asyncio.Lock()

    # Connection registry

    def admit(self) -> Connection:
        connection_id = str(uuid.uuid4())
        connection = Connection(connection_id=connection_id, outbox=Outbox(self._outbox_size))
        self.connections[connection_id] = connection
        connection.outbox.put({"type": "connected", "userId": connection_id})
        logger.info(f"Connection {connection_id} admitted ({len(self.connections)} live)")
        return connection

    async def dismiss(self, connection_id: str):
        async with self._lock:
            connection = self.connections.pop(connection_id, None)
            if connection is None:
                logger.debug(f"Dismiss for unknown connection {connection_id} ignored")
                return
            if connection.room_id:
                self._remove_member(connection.room_id, connection_id)
                connection.room_id = None
        logger.info(f"Connection {connection_id} dismissed ({len(self.connections)} live)")

    def send(self, connection_id: str, event: dict) -> bool:
        """Queue an event for one connection without waiting for delivery."""
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {event.get('type')} for departed connection {connection_id}")
            return False
        if not connection.outbox.put(event):
            self.stats.dropped_overflow += 1
            logger.warning(f"Outbox full for connection {connection_id}, dropped oldest pending event")
        return True

    # Room directory

    async def create_room(self, connection_id: str, requested_code: Optional[str] = None) -> str:
        async with self._lock:
            connection = self._get_connection(connection_id)
            if connection.room_id:
                self._remove_member(connection.room_id, connection_id)
                connection.room_id = None

            room_id = normalize_room_code(requested_code) if requested_code else ""
            if room_id and self._is_active(room_id):
                logger.warning(f"Requested room code {room_id} is in use, generating another")
                room_id = ""
            if not room_id:
                room_id = self.unused_room_code()

            self.rooms[room_id] = Room(room_id=room_id, members=[connection_id])
            connection.room_id = room_id
            self.send(connection_id, {"type": "room-created", "roomId": room_id})
        logger.info(f"Room {room_id} created by {connection_id}")
        return room_id

    async def join_room(self, connection_id: str, room_id: str) -> str:
        room_id = normalize_room_code(room_id)
        async with self._lock:
            connection = self._get_connection(connection_id)
            room = self.rooms.get(room_id)
            if room is None:
                logger.info(f"Join by {connection_id} refused: room {room_id} not found")
                raise RoomNotFound(room_id)
            if connection_id in room.members:
                self.send(connection_id, {"type": "room-joined", "roomId": room_id})
                return room_id
            if room.is_full:
                logger.info(f"Join by {connection_id} refused: room {room_id} is full")
                raise RoomFull(room_id)

            if connection.room_id:
                self._remove_member(connection.room_id, connection_id)
            room.members.append(connection_id)
            connection.room_id = room_id

            # The member that was already waiting initiates the offer
            self.send(connection_id, {"type": "room-joined", "roomId": room_id})
            for member in room.members:
                if member != connection_id:
                    self.send(member, {"type": "user-joined", "userId": connection_id})
        logger.info(f"Connection {connection_id} joined room {room_id} ({len(room.members)} members)")
        return room_id

    async def leave_room(self, connection_id: str, room_id: str) -> bool:
        room_id = normalize_room_code(room_id)
        async with self._lock:
            removed = self._remove_member(room_id, connection_id)
            connection = self.connections.get(connection_id)
            if connection is not None and connection.room_id == room_id:
                connection.room_id = None
        if not removed:
            logger.debug(f"Leave by {connection_id} ignored: not a member of room {room_id}")
        return removed

    async def sweep(self) -> int:
        async with self._lock:
            empty = [room_id for room_id, room in self.rooms.items() if not room.members]
            for room_id in empty:
                del self.rooms[room_id]
                logger.info(f"Swept empty room {room_id}")
        return len(empty)

    def get_room(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(normalize_room_code(room_id))

    def unused_room_code(self) -> str:
        room_id = generate_room_code()
        while self._is_active(room_id):
            room_id = generate_room_code()
        return room_id

    # Signaling relay

    async def relay(self, kind: str, room_id: str, from_connection_id: str, payload: Any) -> bool:
        """Forward an opaque negotiation payload to the other member of a room.

        Returns False when there is nobody to deliver to: the room is gone, the
        sender is not in it, or the peer has not joined yet. That is an expected
        race during setup and teardown, so it is counted rather than reported.
        """
        if kind not in SIGNAL_KINDS:
            raise ValueError(f"Unsupported signal kind: {kind}")
        room_id = normalize_room_code(room_id)
        async with self._lock:
            room = self.rooms.get(room_id)
            target = None
            if room is not None and from_connection_id in room.members:
                target = room.other_member(from_connection_id)
            if target is None:
                self.stats.dropped_unaddressable += 1
                logger.debug(f"No recipient for {kind} from {from_connection_id} in room {room_id}, dropped")
                return False
            self.send(target, {"type": kind, "roomId": room_id, "payload": payload, "from": from_connection_id})
            self.stats.relayed += 1
        logger.debug(f"Relayed {kind} in room {room_id}: {from_connection_id} -> {target}")
        return True

    # Internal helpers; the lock must be held

    def _get_connection(self, connection_id: str) -> Connection:
        connection = self.connections.get(connection_id)
        if connection is None:
            raise UnknownConnection(connection_id)
        return connection

    def _is_active(self, room_id: str) -> bool:
        room = self.rooms.get(room_id)
        return room is not None and bool(room.members)

    def _remove_member(self, room_id: str, connection_id: str) -> bool:
        room = self.rooms.get(room_id)
        if room is None or connection_id not in room.members:
            return False
        room.members.remove(connection_id)
        for member in room.members:
            self.send(member, {"type": "user-left", "userId": connection_id})
        if not room.members:
            del self.rooms[room_id]
            logger.info(f"Room {room_id} deleted (empty)")
        else:
            logger.info(f"Connection {connection_id} left room {room_id}")
        return True


signaling_backend = SignalingBackend()
