"""
ws_hub.py — live stream presence registry + broadcast hub.

One LiveHub per app (stored on app.state, never module-global). It tracks
every accepted connection, which stream each one is watching, and fans
chat / like / viewer-count events out to a stream's audience.

Every method runs to completion without awaiting. The event loop only ever
runs one of them at a time, so the registry needs no lock, and events reach
each member of a stream in the order the hub processed them. Sending is
fire-and-forget: Transport.send() only enqueues.
"""

import itertools
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Protocol, Set, Union

from streamhub.messages import (
    ChatBroadcast,
    JoinStream,
    Joined,
    LeaveStream,
    LikeBroadcast,
    OutboundMessage,
    ProtocolError,
    RequestViewerCount,
    SendChat,
    SendLike,
    UnknownMessageType,
    ViewerCount,
    ViewerJoined,
    format_timestamp,
    parse_inbound,
)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the hub needs from a client connection."""

    @property
    def is_open(self) -> bool: ...

    def send(self, text: str) -> None:
        """Queue one serialized frame. Must not block."""

    def close(self) -> None: ...


@dataclass
class Connection:
    connection_id: str
    transport: Transport
    user_id: Optional[str] = None
    stream_id: Optional[str] = None
    is_creator: bool = False
    last_seen: float = 0.0

    @property
    def joined(self) -> bool:
        return self.stream_id is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LiveHub:
    # message class -> handler method name
    HANDLERS = {
        JoinStream: "_on_join",
        LeaveStream: "_on_leave",
        SendChat: "_on_chat",
        SendLike: "_on_like",
        RequestViewerCount: "_on_viewer_count",
    }

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._connections: Dict[str, Connection] = {}
        self._streams: Dict[str, Set[str]] = {}
        self._clock = clock or _utcnow
        self._monotonic = monotonic
        self._seq = itertools.count(1)
        self._id_factory = id_factory or self._next_id

    def _next_id(self) -> str:
        return f"{next(self._seq)}-{uuid.uuid4().hex[:12]}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, transport: Transport) -> str:
        connection_id = self._id_factory()
        if connection_id in self._connections:
            raise ValueError(f"connection id {connection_id!r} already registered")
        self._connections[connection_id] = Connection(
            connection_id=connection_id,
            transport=transport,
            last_seen=self._monotonic(),
        )
        logger.info("Live client connected: %s (%d total)", connection_id, len(self._connections))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Implicit leave, then forget the connection. Safe to repeat."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        self._leave(conn)
        del self._connections[connection_id]
        logger.info("Live client disconnected: %s (%d total)", connection_id, len(self._connections))

    def handle_message(self, connection_id: str, raw: Union[str, bytes]) -> None:
        """
        Parse and act on one inbound frame. Never raises: a bad frame is
        logged and dropped, and the connection stays registered.
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            logger.debug("Dropping frame for unknown connection %s", connection_id)
            return
        conn.last_seen = self._monotonic()

        try:
            msg = parse_inbound(raw)
        except UnknownMessageType as e:
            logger.info("Ignoring unknown message type %r from %s", e.msg_type, connection_id)
            return
        except ProtocolError as e:
            logger.warning("Dropping malformed message from %s: %s", connection_id, e)
            return

        handler = getattr(self, self.HANDLERS[type(msg)])
        try:
            handler(conn, msg)
        except Exception as e:
            logger.error("Handler %s failed for %s: %s", msg.type, connection_id, e, exc_info=True)

    def reap_idle(self, idle_timeout_s: float) -> List[str]:
        """Disconnect and close every connection silent for longer than idle_timeout_s."""
        cutoff = self._monotonic() - idle_timeout_s
        stale = [c for c in self._connections.values() if c.last_seen < cutoff]
        for conn in stale:
            logger.info("Reaping idle connection %s", conn.connection_id)
            self.disconnect(conn.connection_id)
            try:
                conn.transport.close()
            except Exception:
                logger.debug("Closing transport of %s failed", conn.connection_id, exc_info=True)
        return [c.connection_id for c in stale]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_join(self, conn: Connection, msg: JoinStream) -> None:
        p = msg.payload
        if conn.stream_id == p.stream_id:
            # Already watching: acknowledge again, membership unchanged
            self.send(conn.connection_id, Joined.create(p.stream_id, conn.connection_id))
            return
        if conn.joined:
            self._leave(conn)

        conn.user_id = p.user_id
        conn.stream_id = p.stream_id
        conn.is_creator = bool(p.is_creator)
        self._streams.setdefault(p.stream_id, set()).add(conn.connection_id)
        count = self.viewer_count(p.stream_id)
        logger.info(
            "%s joined stream %s as %s%s (%d watching)",
            conn.connection_id, p.stream_id, p.user_id,
            " [creator]" if conn.is_creator else "", count,
        )

        self.send(conn.connection_id, Joined.create(p.stream_id, conn.connection_id))
        self.broadcast(p.stream_id, ViewerCount.create(count))
        self.broadcast(p.stream_id, ViewerJoined.create(p.user_id, count), exclude=conn.connection_id)

    def _on_leave(self, conn: Connection, msg: LeaveStream) -> None:
        self._leave(conn)

    def _on_chat(self, conn: Connection, msg: SendChat) -> None:
        if not conn.joined:
            logger.debug("Ignoring chat from %s: not in a stream", conn.connection_id)
            return
        self.broadcast(
            conn.stream_id,
            ChatBroadcast.create(conn.user_id, msg.payload.message, self._timestamp()),
        )

    def _on_like(self, conn: Connection, msg: SendLike) -> None:
        if not conn.joined:
            logger.debug("Ignoring like from %s: not in a stream", conn.connection_id)
            return
        self.broadcast(conn.stream_id, LikeBroadcast.create(conn.user_id, self._timestamp()))

    def _on_viewer_count(self, conn: Connection, msg: RequestViewerCount) -> None:
        self.send(conn.connection_id, ViewerCount.create(self.viewer_count(msg.payload.stream_id)))

    def _leave(self, conn: Connection) -> None:
        stream_id = conn.stream_id
        if stream_id is None:
            return
        conn.stream_id = None
        conn.user_id = None
        conn.is_creator = False

        members = self._streams.get(stream_id)
        if members is None:
            return
        members.discard(conn.connection_id)
        if members:
            logger.info("%s left stream %s (%d watching)", conn.connection_id, stream_id, len(members))
            self.broadcast(stream_id, ViewerCount.create(len(members)))
        else:
            del self._streams[stream_id]
            logger.info("%s left stream %s, no viewers remain", conn.connection_id, stream_id)

    def _timestamp(self) -> str:
        return format_timestamp(self._clock())

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def send(self, connection_id: str, msg: OutboundMessage) -> bool:
        """Send to one client. Returns False if it was skipped."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return False
        return self._deliver(conn, msg.to_json())

    def broadcast(self, stream_id: str, msg: OutboundMessage, exclude: Optional[str] = None) -> int:
        """
        Send to every member of a stream except `exclude`. Members whose
        transport is not open are skipped, not pruned: their own close
        notification removes them. Returns the number of frames queued.
        """
        members = self._streams.get(stream_id)
        if not members:
            return 0
        text = msg.to_json()
        delivered = 0
        for cid in list(members):
            if cid == exclude:
                continue
            conn = self._connections.get(cid)
            if conn is not None and self._deliver(conn, text):
                delivered += 1
        return delivered

    def _deliver(self, conn: Connection, text: str) -> bool:
        if not conn.transport.is_open:
            logger.debug("Skipping %s: transport not open", conn.connection_id)
            return False
        try:
            conn.transport.send(text)
        except Exception:
            logger.debug("Send to %s failed", conn.connection_id, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def viewer_count(self, stream_id: str) -> int:
        return len(self._streams.get(stream_id, ()))

    def members(self, stream_id: str) -> FrozenSet[str]:
        return frozenset(self._streams.get(stream_id, ()))

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def streams_snapshot(self) -> Dict[str, int]:
        return {sid: len(members) for sid, members in self._streams.items()}

    @property
    def client_count(self) -> int:
        return len(self._connections)

    @property
    def stream_count(self) -> int:
        return len(self._streams)
