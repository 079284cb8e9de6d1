from flask import Blueprint, request, jsonify, current_app, g
from flask_login import login_required, current_user
from app.errors import Unauthenticated, ValidationError
from app.middleware import capability_required
from app.services.audit_service import log_audit, actor_fields
from app.services.order_service import get_order_service
from app.utils import (
    json_body,
    parse_status,
    serialize_order,
    serialize_user,
)
from app.validation import validate_status_update, validate_rating
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)


def _actor():
    if current_user.is_authenticated:
        return current_user
    if g.get('auth_error'):
        raise Unauthenticated(g.auth_error)
    return None


def _audit(action, order, payload=None):
    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type='ORDER',
        target_id=order.id,
        payload=payload
    )


@bp.route('/orders', methods=['POST'])
@capability_required('order.create', allow_anonymous=True)
def create_order():
    data = json_body()
    order = get_order_service().create_order(_actor(), data)
    _audit('ORDER_CREATE', order, {
        'service_type': order.service_type.value,
        'amount': float(order.amount),
    })
    return jsonify({'ok': True, 'order': serialize_order(order)}), 201


@bp.route('/orders', methods=['GET'])
@login_required
def list_orders():
    status = None
    raw_status = request.args.get('status')
    if raw_status:
        status = parse_status(raw_status)
        if status is None:
            raise ValidationError({'status': 'Invalid order status'})
    assigned_to = request.args.get('assigned_to', type=int)
    page = request.args.get('page', 1, type=int)
    per_page = min(
        request.args.get(
            'per_page', current_app.config['ITEMS_PER_PAGE'], type=int),
        100)

    result = get_order_service().list_orders(
        current_user,
        status=status,
        assigned_to=assigned_to,
        page=page,
        per_page=per_page,
    )
    return jsonify({
        'ok': True,
        'orders': [serialize_order(o) for o in result['items']],
        'page': result['page'],
        'pages': result['pages'],
        'per_page': result['per_page'],
        'total': result['total'],
    })


@bp.route('/orders/<int:order_id>', methods=['GET'])
def order_detail(order_id):
    order = get_order_service().get_order(_actor(), order_id)
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/orders/<int:order_id>/cancel', methods=['POST', 'PUT'])
@capability_required('order.cancel', allow_anonymous=True)
def cancel_order(order_id):
    order = get_order_service().cancel_order(_actor(), order_id)
    _audit('ORDER_CANCEL', order)
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/orders/<int:order_id>/confirm', methods=['POST', 'PUT'])
@capability_required('order.confirm')
def confirm_order(order_id):
    order = get_order_service().confirm_order(current_user, order_id)
    _audit('ORDER_CONFIRM', order)
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/orders/<int:order_id>/assign', methods=['POST', 'PUT'])
@capability_required('order.assign')
def assign_order(order_id):
    data = json_body()
    repairman_id = data.get('repairman_id', data.get('assigned_to'))
    if isinstance(repairman_id, bool) or not isinstance(repairman_id, int):
        raise ValidationError({'repairman_id': 'repairman_id is required'})

    order = get_order_service().assign_order(
        current_user, order_id, repairman_id)
    _audit('ORDER_ASSIGN', order, {'repairman_id': repairman_id})
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/orders/<int:order_id>/status', methods=['PUT', 'PATCH', 'POST'])
@capability_required('order.update_status')
def update_order_status(order_id):
    data = validate_status_update(json_body())
    order = get_order_service().update_order_status(
        current_user, order_id, data['status'], notes=data['notes'])
    _audit('ORDER_STATUS_UPDATE', order, {
        'status': order.status.value,
        'notes': data['notes'],
    })
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/orders/<int:order_id>/rate', methods=['POST'])
@capability_required('order.rate', allow_anonymous=True)
def rate_order(order_id):
    data = validate_rating(json_body())
    order = get_order_service().rate_order(
        _actor(), order_id, data['score'], data['comment'])
    _audit('ORDER_RATE', order, {'score': data['score']})
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/repairmen', methods=['GET'])
@capability_required('order.assign')
def list_repairmen():
    repairmen = get_order_service().list_repairmen()
    return jsonify({
        'ok': True,
        'repairmen': [serialize_user(u) for u in repairmen],
    })
