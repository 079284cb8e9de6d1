"""Credential checks and bearer token handling.

Tokens are stateless HS256 JWTs carrying ``userId`` and ``role``; nothing is
stored server-side, so logging out only means the client drops its token.
Passwords go through Werkzeug's salted hash.
"""
from datetime import datetime, timedelta, timezone
import logging
import secrets

import jwt
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.errors import (
    DuplicateIdentity,
    Forbidden,
    InvalidCredential,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from app.models import User, UserRole, STAFF_ROLES
from app.services.verification_codes import generate_code, deliver_code

logger = logging.getLogger(__name__)

JWT_ALGORITHM = 'HS256'


def _code_store():
    return current_app.extensions['verification_codes']


def sms_enabled():
    return bool(current_app.config.get('ENABLE_SMS_VERIFICATION'))


def issue_token(user_id, role):
    now = datetime.now(timezone.utc)
    days = current_app.config.get('JWT_EXPIRES_DAYS', 30)
    payload = {
        'userId': user_id,
        'role': role.value if isinstance(role, UserRole) else role,
        'iat': now,
        'exp': now + timedelta(days=days),
    }
    return jwt.encode(
        payload, current_app.config['JWT_SECRET'], algorithm=JWT_ALGORITHM)


def decode_token(token):
    try:
        return jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated('Token has expired')
    except jwt.InvalidTokenError:
        raise Unauthenticated('Invalid token')


def authenticate(token):
    """Resolve a bearer token to an active User or raise Unauthenticated."""
    if not token:
        raise Unauthenticated('No authentication token provided')
    claims = decode_token(token)
    user_id = claims.get('userId')
    if not isinstance(user_id, int):
        raise Unauthenticated('Invalid token')
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise Unauthenticated('Invalid token')
    return user


def ensure_unique(phone, username=None, exclude_id=None):
    conditions = [User.phone == phone]
    if username:
        conditions.append(User.username == username)
    query = User.query.filter(or_(*conditions))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    existing = query.first()
    if existing:
        if existing.phone == phone:
            raise DuplicateIdentity('Phone number already registered')
        raise DuplicateIdentity('Username already taken')


def create_user(phone, password, role=UserRole.USER, name='', email='',
                username=None):
    ensure_unique(phone, username)
    user = User(
        phone=phone,
        username=username,
        name=name or '',
        email=email or '',
        role=role,
    )
    user.set_password(password or secrets.token_urlsafe(16))
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration.
        db.session.rollback()
        raise DuplicateIdentity('Account already exists')
    logger.info("User created: id=%s role=%s", user.id, role.value)
    return user


def send_code(phone):
    """Issue a verification code. Returns False when SMS login is off."""
    if not sms_enabled():
        return False
    code = generate_code()
    ttl = current_app.config.get('VERIFICATION_CODE_TTL_SECONDS', 300)
    _code_store().put(phone, code, ttl)
    deliver_code(phone, code)
    return True


def register(phone, password, name=None, username=None, email=None,
             code=None):
    if sms_enabled():
        if not code:
            raise ValidationError({'code': 'Verification code is required'})
        if not _code_store().consume(phone, code):
            raise InvalidCredential('Verification code is invalid or expired')
    user = create_user(
        phone, password, UserRole.USER, name=name, email=email,
        username=username)
    return user, issue_token(user.id, user.role)


def login(identifier, password):
    user = User.query.filter_by(phone=identifier).first()
    if user is None and not identifier.isdigit():
        user = User.query.filter_by(username=identifier).first()
    logger.info(
        "Login attempt: %s (%s)",
        identifier, 'found' if user else 'not found')
    if user is None:
        raise NotFound('User does not exist')
    if not user.check_password(password):
        raise InvalidCredential('Invalid password')
    if not user.is_active:
        raise InvalidCredential('Account is disabled')
    user.last_login_at = datetime.utcnow()
    db.session.commit()
    return user, issue_token(user.id, user.role)


def login_with_code(phone, code, name=None):
    if not sms_enabled():
        raise Forbidden('SMS login is disabled, use password login')
    if not _code_store().consume(phone, code):
        raise InvalidCredential('Verification code is invalid or expired')
    user = User.query.filter_by(phone=phone).first()
    if user is None:
        user = create_user(phone, None, UserRole.USER, name=name or '')
    elif not user.is_active:
        raise InvalidCredential('Account is disabled')
    user.last_login_at = datetime.utcnow()
    db.session.commit()
    return user, issue_token(user.id, user.role)


def admin_register(requester_role, payload):
    if requester_role != UserRole.ADMIN:
        raise Forbidden('Only admins can create staff accounts')
    role = payload.get('role')
    if role not in STAFF_ROLES:
        raise ValidationError({
            'role': 'Role must be admin, customer_service or repairman'
        })
    return create_user(
        payload['phone'],
        payload['password'],
        role,
        name=payload.get('name'),
        email=payload.get('email'),
        username=payload.get('username'),
    )
