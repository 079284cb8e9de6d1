from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from app.errors import ValidationError
from app.middleware import capability_required, role_required
from app.services import stats_service
from app.services.audit_service import log_audit
from app.services.notification_service import ROLE_ROOMS
from app.utils import json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('stats', __name__)

MAX_PERIOD_DAYS = 365


def _period():
    days = request.args.get(
        'period', stats_service.DEFAULT_PERIOD_DAYS, type=int)
    if not 1 <= days <= MAX_PERIOD_DAYS:
        raise ValidationError(
            {'period': f'period must be between 1 and {MAX_PERIOD_DAYS} days'})
    return days


@bp.route('/stats/orders', methods=['GET'])
@capability_required('stats.view')
def order_stats():
    return jsonify({'ok': True, 'data': stats_service.order_stats(_period())})


@bp.route('/stats/repairman', methods=['GET'])
@capability_required('stats.staff')
def repairman_stats():
    return jsonify({
        'ok': True,
        'data': stats_service.repairman_stats(_period()),
    })


@bp.route('/stats/satisfaction', methods=['GET'])
@capability_required('stats.view')
def satisfaction_stats():
    return jsonify({
        'ok': True,
        'data': stats_service.satisfaction_stats(_period()),
    })


@bp.route('/stats/revenue', methods=['GET'])
@capability_required('stats.finance')
def revenue_stats():
    return jsonify({
        'ok': True,
        'data': stats_service.revenue_stats(_period()),
    })


@bp.route('/stats/dashboard', methods=['GET'])
@capability_required('stats.view')
def dashboard():
    return jsonify({'ok': True, 'data': stats_service.dashboard_stats()})


@bp.route('/notifications/system', methods=['POST'])
@login_required
@role_required('admin')
def system_message():
    data = json_body()
    message = data.get('message') or ''
    target = data.get('target_role') or 'all'
    errors = {}
    if not isinstance(message, str):
        errors['message'] = 'message must be a string'
    elif not message.strip():
        errors['message'] = 'message is required'
    elif len(message.strip()) > 500:
        errors['message'] = 'message must be at most 500 characters'
    if isinstance(target, str):
        target = target.strip().lower()
    if target != 'all' and target not in ROLE_ROOMS:
        errors['target_role'] = 'target_role must be a role or all'
    if errors:
        raise ValidationError(errors)
    message = message.strip()

    dispatcher = current_app.extensions['notification_dispatcher']
    dispatcher.system_message(target, message, data.get('data'))

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='SYSTEM_MESSAGE',
        payload={'target_role': target, 'message': message}
    )
    return jsonify({'ok': True, 'message': 'Notification sent'})
