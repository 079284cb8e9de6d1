from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from app.extensions import db
from app.errors import Forbidden, NotFound
from app.middleware import capability_required
from app.models import User, UserRole, Order, AuditLog
from app.services.audit_service import log_audit
from app.services.auth_service import create_user, ensure_unique
from app.services.order_service import get_order_service
from app.utils import json_body, parse_enum, paginate_query, serialize_user
from app.validation import validate_staff_user, validate_user_update
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('users', __name__)


def _leaves_repair_pool(user, changes):
    if user.role != UserRole.REPAIRMAN:
        return False
    return (changes.get('role', UserRole.REPAIRMAN) != UserRole.REPAIRMAN
            or changes.get('is_active') is False)


def _apply_update(user, changes):
    """Apply and commit profile changes; returns the ids of released orders."""
    if 'username' in changes and changes['username'] != user.username:
        if changes['username']:
            ensure_unique(user.phone, changes['username'], exclude_id=user.id)
    released = []
    if _leaves_repair_pool(user, changes):
        released = get_order_service().release_repairman_orders(user.id)
    for field, value in changes.items():
        setattr(user, field, value)
    db.session.commit()
    return released


@bp.route('/info', methods=['GET'])
@login_required
def get_info():
    return jsonify({'ok': True, 'user': serialize_user(current_user)})


@bp.route('/info', methods=['PUT', 'PATCH'])
@login_required
def update_info():
    changes = validate_user_update(json_body())
    _apply_update(current_user, changes)

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_PROFILE_UPDATE',
        target_type='USER',
        target_id=current_user.id,
        payload={'fields': sorted(changes)}
    )
    return jsonify({'ok': True, 'user': serialize_user(current_user)})


@bp.route('/admin/all', methods=['GET'])
@capability_required('user.manage')
def list_users():
    page = request.args.get('page', 1, type=int)
    per_page = min(
        request.args.get(
            'per_page', current_app.config['ITEMS_PER_PAGE'], type=int),
        100)
    role_filter = request.args.get('role')

    query = User.query
    if role_filter:
        role = parse_enum(UserRole, role_filter)
        if role is not None:
            query = query.filter_by(role=role)

    result = paginate_query(
        query.order_by(User.created_at.desc(), User.id.desc()),
        page=page,
        per_page=per_page,
    )
    return jsonify({
        'ok': True,
        'users': [serialize_user(u) for u in result['items']],
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


@bp.route('/admin/create', methods=['POST'])
@capability_required('user.manage')
def create_user_account():
    data = validate_staff_user(json_body(), require_password=False)
    user = create_user(
        data['phone'],
        data['password'],
        data['role'],
        name=data['name'],
        email=data['email'],
        username=data['username'],
    )

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_CREATE',
        target_type='USER',
        target_id=user.id,
        payload={'role': user.role.value}
    )
    return jsonify({'ok': True, 'user': serialize_user(user)}), 201


@bp.route('/admin/<int:user_id>', methods=['PUT', 'PATCH'])
@capability_required('user.manage')
def update_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound('User not found')
    changes = validate_user_update(json_body(), allow_role=True)
    if user.id == current_user.id and (
            'role' in changes or 'is_active' in changes):
        raise Forbidden('You cannot change your own role or status')

    released = _apply_update(user, changes)
    get_order_service().notify_released(released)

    payload = {
        key: (value.value if isinstance(value, UserRole) else value)
        for key, value in changes.items()
    }
    if released:
        payload['released_orders'] = released
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_UPDATE',
        target_type='USER',
        target_id=user.id,
        payload=payload
    )
    return jsonify({'ok': True, 'user': serialize_user(user)})


@bp.route('/admin/<int:user_id>', methods=['DELETE'])
@capability_required('user.manage')
def delete_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound('User not found')
    if user.role == UserRole.ADMIN:
        raise Forbidden('Admin accounts cannot be deleted')

    service = get_order_service()
    released = []
    if user.role == UserRole.REPAIRMAN:
        released = service.release_repairman_orders(user.id)
    # Orders outlive their owner; they become ownerless.
    Order.query.filter(Order.user_id == user.id).update(
        {Order.user_id: None}, synchronize_session=False)
    # Only finished orders are left pointing at the repairman here.
    Order.query.filter(Order.assigned_to == user.id).update(
        {Order.assigned_to: None}, synchronize_session=False)
    AuditLog.query.filter(AuditLog.actor_id == user.id).update(
        {AuditLog.actor_id: None}, synchronize_session=False)
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by admin %s", user_id, current_user.id)
    service.notify_released(released)

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_DELETE',
        target_type='USER',
        target_id=user_id,
        payload={'released_orders': released} if released else None
    )
    return jsonify({'ok': True, 'message': 'User deleted'})
