"""Room-based fan-out of game events over Socket.IO rooms.

A connection in a session sits in the session room plus one role room
(``CODE:host`` or ``CODE:players``), so picking an audience is picking a
room. Liveness is engine.io's ping/pong; a connection that stops answering
is disconnected by the server and cleaned up by the disconnect handler.
The channel only keeps per-connection metadata (device, role, room).
"""
import enum
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask_socketio import join_room, leave_room

from trivia.events import Event


class Audience(enum.Enum):
    ALL = 'all'
    HOST = 'host'
    PLAYERS = 'players'

    def room(self, session_code: str) -> str:
        if self is Audience.ALL:
            return session_code
        return f"{session_code}:{self.value}"

    def admits(self, conn: 'Connection') -> bool:
        if self is Audience.HOST:
            return conn.is_host
        if self is Audience.PLAYERS:
            return not conn.is_host
        return True


def role_room(session_code: str, is_host: bool) -> str:
    return (Audience.HOST if is_host else Audience.PLAYERS).room(session_code)


@dataclass
class Connection:
    sid: str
    session_code: Optional[str] = None
    device_id: Optional[str] = None
    is_host: bool = False


class SocketIOTransport:
    """Room membership and delivery through a Flask-SocketIO server."""

    def __init__(self, socketio, namespace='/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def enter(self, sid: str, room: str) -> None:
        join_room(room, sid=sid, namespace=self.namespace)

    def exit(self, sid: str, room: str) -> None:
        leave_room(room, sid=sid, namespace=self.namespace)

    def emit(self, event: Event, to: str, skip_sid: Optional[str] = None) -> None:
        self.socketio.emit(event.type, event.to_dict(), to=to, skip_sid=skip_sid, namespace=self.namespace)


class BroadcastChannel:
    def __init__(self, transport, logger):
        self.transport = transport
        self.logger = logger
        self._lock = threading.RLock()
        self._connections: Dict[str, Connection] = {}

    # ---- connection lifecycle ----

    def connect(self, sid: str) -> Connection:
        with self._lock:
            conn = self._connections.get(sid)
            if conn is None:
                conn = Connection(sid=sid)
                self._connections[sid] = conn
            return conn

    def join(self, sid: str, session_code: str, device_id: Optional[str] = None, is_host: bool = False) -> Connection:
        code = session_code.upper()
        with self._lock:
            self._leave_room(sid)
            conn = self.connect(sid)
            conn.session_code = code
            conn.device_id = device_id
            conn.is_host = bool(is_host)
            self.transport.enter(sid, code)
            self.transport.enter(sid, role_room(code, conn.is_host))
        self.logger.info(f"[room-join] sid={sid} room={code} role={'host' if is_host else 'player'}")
        return conn

    def leave(self, sid: str) -> Optional[str]:
        with self._lock:
            return self._leave_room(sid)

    def disconnect(self, sid: str) -> None:
        with self._lock:
            self._leave_room(sid)
            self._connections.pop(sid, None)

    def _leave_room(self, sid: str) -> Optional[str]:
        conn = self._connections.get(sid)
        if conn is None or conn.session_code is None:
            return None
        code = conn.session_code
        self.transport.exit(sid, role_room(code, conn.is_host))
        self.transport.exit(sid, code)
        conn.session_code = None
        conn.is_host = False
        remaining = len(self._members(code))
        if remaining:
            self.logger.info(f"[room-leave] sid={sid} room={code} remaining={remaining}")
        else:
            self.logger.info(f"[room-empty] room={code}")
        return code

    def _members(self, code: str) -> List[Connection]:
        return [c for c in self._connections.values() if c.session_code == code]

    # ---- delivery ----

    def send(self, sid: str, event: Event) -> None:
        self.transport.emit(event, to=sid)

    def broadcast(self, session_code: str, event: Event, audience: Audience = Audience.ALL,
                  exclude: Optional[str] = None) -> int:
        """Emit ``event`` to the audience's room; returns how many connections it reaches."""
        code = session_code.upper()
        with self._lock:
            members = self._members(code)
            targets = [c for c in members if c.sid != exclude and audience.admits(c)]
        if not members:
            self.logger.warning(f"[broadcast-skip] no live room={code} for event={event.type}")
            return 0
        self.transport.emit(event, to=audience.room(code), skip_sid=exclude)
        self.logger.info(f"[broadcast] event={event.type} room={code} audience={audience.value} delivered={len(targets)}")
        return len(targets)

    def broadcast_to_room(self, session_code: str, event: Event, exclude: Optional[str] = None) -> int:
        return self.broadcast(session_code, event, Audience.ALL, exclude)

    def broadcast_to_host(self, session_code: str, event: Event) -> int:
        return self.broadcast(session_code, event, Audience.HOST)

    def broadcast_to_players(self, session_code: str, event: Event) -> int:
        return self.broadcast(session_code, event, Audience.PLAYERS)

    def room_info(self, session_code: str) -> dict:
        with self._lock:
            members = self._members(session_code.upper())
            return {
                'client_count': len(members),
                'has_host': any(c.is_host for c in members),
            }

    def stop(self) -> None:
        with self._lock:
            self._connections.clear()
