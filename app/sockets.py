from flask import request
from flask_socketio import join_room
import logging

from app.errors import ServiceError
from app.services.auth_service import authenticate
from app.services.notification_service import user_room

logger = logging.getLogger(__name__)


def register_socket_handlers(socketio):

    @socketio.on('connect')
    def handle_connect(auth=None):
        token = (auth or {}).get('token') or request.args.get('token')
        try:
            user = authenticate(token)
        except ServiceError as e:
            logger.warning("Socket connection rejected: %s", e.message)
            raise ConnectionRefusedError('Authentication error')
        join_room(user.role.value)
        join_room(user_room(user.id))
        logger.info("User %s (%s) connected", user.id, user.role.value)

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.info("Socket %s disconnected", request.sid)
