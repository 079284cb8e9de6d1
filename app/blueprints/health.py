from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from app.extensions import db
from datetime import datetime
import logging
import os
import platform
import time

logger = logging.getLogger(__name__)

bp = Blueprint('health', __name__)

_started = time.monotonic()


def _timestamp():
    return datetime.utcnow().isoformat() + 'Z'


@bp.route('/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'healthy',
        'timestamp': _timestamp(),
        'uptime': round(time.monotonic() - _started, 1),
        'services': {
            'sms': (
                'enabled'
                if current_app.config.get('ENABLE_SMS_VERIFICATION')
                else 'disabled'
            ),
            'notifications': current_app.config.get('NOTIFICATION_BACKEND'),
        },
    })


@bp.route('/ready', methods=['GET'])
def ready():
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        logger.error("Readiness check failed: %s", e)
        db.session.rollback()
        return jsonify({
            'status': 'not ready',
            'timestamp': _timestamp(),
            'database': 'unavailable',
        }), 503
    return jsonify({
        'status': 'ready',
        'timestamp': _timestamp(),
        'database': 'connected',
    })


@bp.route('/live', methods=['GET'])
def live():
    return jsonify({'status': 'alive', 'timestamp': _timestamp()})


@bp.route('/health/detailed', methods=['GET'])
def health_detailed():
    started = time.monotonic()
    try:
        db.session.execute(text('SELECT 1'))
        database = {
            'status': 'connected',
            'response_ms': round((time.monotonic() - started) * 1000, 1),
        }
    except SQLAlchemyError as e:
        logger.error("Detailed health check: database unavailable: %s", e)
        db.session.rollback()
        database = {'status': 'unavailable', 'error': type(e).__name__}

    healthy = database['status'] == 'connected'
    body = {
        'status': 'healthy' if healthy else 'unhealthy',
        'timestamp': _timestamp(),
        'uptime': round(time.monotonic() - _started, 1),
        'environment': current_app.config.get('APP_ENV'),
        'version': current_app.config.get('APP_VERSION'),
        'services': {
            'database': database,
            'sms': (
                'enabled'
                if current_app.config.get('ENABLE_SMS_VERIFICATION')
                else 'disabled'
            ),
            'notifications': current_app.config.get('NOTIFICATION_BACKEND'),
        },
        'system': {
            'python': platform.python_version(),
            'platform': platform.platform(),
            'pid': os.getpid(),
        },
    }
    return jsonify(body), 200 if healthy else 503
