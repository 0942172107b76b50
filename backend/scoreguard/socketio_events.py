from flask_login import current_user
from flask_socketio import emit, join_room, leave_room
from typing import List

from scoreguard import socketio

MODERATION_ROOM = 'moderation'


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_moderation(data=None):
    if not current_user.is_authenticated or not current_user.is_admin:
        emit('error', {'message': 'moderator access required'})
        return
    join_room(MODERATION_ROOM)
    emit('joined', {'room': MODERATION_ROOM})


def handle_leave_moderation(data=None):
    leave_room(MODERATION_ROOM)
    emit('left', {'room': MODERATION_ROOM})


def handle_ping(data):
    emit('pong', data or {})


def notify_moderators(anomalies: List[dict]) -> None:
    """Push freshly flagged anomalies to connected moderators."""
    # socketio.emit since this may run from a background task
    socketio.emit(
        'anomaly_flagged',
        {'anomalies': [{k: a[k] for k in ('session_id', 'user_id', 'type', 'severity')} for a in anomalies]},
        to=MODERATION_ROOM,
        namespace='/ws',
    )


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_moderation', handle_join_moderation, namespace='/ws')
    socketio.on_event('leave_moderation', handle_leave_moderation, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')
