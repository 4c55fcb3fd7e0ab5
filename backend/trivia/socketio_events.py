from flask import current_app, request
from flask_socketio import emit
from trivia.events import ConnectionAck, Error, Event
from trivia.models import GameSession


def _channel():
    return current_app.extensions['trivia'].channel


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _send_error(message, code=None, session_code=''):
    _channel().send(_get_sid(), Event(session_code, Error(message=message, code=code)))


def handle_connect(auth=None):
    sid = _get_sid()
    _channel().connect(sid)
    _channel().send(sid, Event('', ConnectionAck(client_id=sid)))


def handle_disconnect(*args):
    _channel().disconnect(_get_sid())


def handle_join_room(data):
    data = data or {}
    session_code = data.get('session_code')
    if not session_code or not isinstance(session_code, str):
        _send_error('session_code is required', 'validation_error')
        return
    session_code = session_code.strip().upper()
    sid = _get_sid()
    channel = _channel()
    channel.join(sid, session_code, device_id=data.get('device_id'), is_host=bool(data.get('is_host')))

    session = GameSession.by_code(session_code)
    channel.send(sid, Event(session_code, ConnectionAck(
        client_id=sid,
        session_state=session.status if session else None,
        player_count=channel.room_info(session_code)['client_count'],
    )))


def handle_leave_room(data=None):
    _channel().leave(_get_sid())


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    from trivia import socketio

    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('join_room', handle_join_room, namespace=namespace)
    socketio.on_event('leave_room', handle_leave_room, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
