from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user
from app.errors import ServiceError
from app.middleware import role_required
from app.services import auth_service
from app.services.audit_service import log_audit, actor_fields
from app.utils import json_body, serialize_user
from app.validation import (
    validate_registration,
    validate_login,
    validate_phone_payload,
    validate_code_login,
    validate_staff_registration,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)


def _session_response(user, token, status=200):
    return jsonify({
        'ok': True,
        'token': token,
        'user': serialize_user(user),
    }), status


@bp.route('/config', methods=['GET'])
def auth_config():
    return jsonify({
        'ok': True,
        'config': {
            'sms_verification_enabled': auth_service.sms_enabled(),
            'anonymous_orders_allowed': bool(
                current_app.config.get('ALLOW_ANONYMOUS_ORDERS')),
        },
    })


@bp.route('/send-code', methods=['POST'])
def send_code():
    phone = validate_phone_payload(json_body())
    if not auth_service.send_code(phone):
        return jsonify({
            'ok': True,
            'sent': False,
            'message': 'SMS verification is disabled, use password login',
        })
    return jsonify({
        'ok': True,
        'sent': True,
        'message': 'Verification code sent',
    })


@bp.route('/register', methods=['POST'])
def register():
    data = validate_registration(json_body())
    user, token = auth_service.register(
        data['phone'],
        data['password'],
        name=data['name'],
        username=data['username'],
        email=data['email'],
        code=data['code'],
    )

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'phone': user.phone}
    )
    return _session_response(user, token, 201)


@bp.route('/login', methods=['POST'])
def login():
    data = validate_login(json_body())
    try:
        user, token = auth_service.login(data['identifier'], data['password'])
    except ServiceError as e:
        log_audit(
            action='LOGIN_FAILED',
            target_type='USER',
            payload={'identifier': data['identifier'], 'reason': e.kind}
        )
        raise

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='LOGIN_SUCCESS',
        target_type='USER',
        target_id=user.id,
        payload={'event': 'login_success'}
    )
    return _session_response(user, token)


@bp.route('/login-with-code', methods=['POST'])
def login_with_code():
    data = validate_code_login(json_body())
    user, token = auth_service.login_with_code(
        data['phone'], data['code'], name=data['name'])

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='LOGIN_SUCCESS',
        target_type='USER',
        target_id=user.id,
        payload={'event': 'login_with_code'}
    )
    return _session_response(user, token)


@bp.route('/admin/register', methods=['POST'])
@login_required
@role_required('admin')
def admin_register():
    data = validate_staff_registration(json_body())
    user = auth_service.admin_register(current_user.role, data)

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='USER_STAFF_REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'role': user.role.value, 'phone': user.phone}
    )
    return jsonify({'ok': True, 'user': serialize_user(user)}), 201


@bp.route('/logout', methods=['POST'])
def logout():
    # Tokens are stateless; the client discards its copy.
    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action='LOGOUT',
        target_type='USER',
        target_id=actor_id,
    )
    return jsonify({'ok': True, 'message': 'Logged out'})


@bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'ok': True, 'user': serialize_user(current_user)})
