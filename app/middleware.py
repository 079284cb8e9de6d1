from flask import g, request
from flask_login import current_user
from functools import wraps
import logging

from app.errors import Forbidden, Unauthenticated, ServiceError
from app.models import UserRole
from app.services.auth_service import authenticate

logger = logging.getLogger(__name__)

# Operations each role may perform. Consulted only by the decorators below;
# ownership and assignment checks live in the lifecycle engine.
ROLE_CAPABILITIES = {
    UserRole.USER: frozenset({
        'order.create',
        'order.view_own',
        'order.cancel',
        'order.rate',
        'payment.initiate',
        'payment.simulate',
    }),
    UserRole.REPAIRMAN: frozenset({
        'order.view_assigned',
        'order.update_status',
    }),
    UserRole.CUSTOMER_SERVICE: frozenset({
        'order.create',
        'order.view_all',
        'order.confirm',
        'order.assign',
        'payment.initiate',
        'payment.simulate',
        'payment.refund',
        'stats.view',
    }),
    UserRole.ADMIN: frozenset({
        'order.create',
        'order.view_all',
        'order.confirm',
        'order.assign',
        'payment.initiate',
        'payment.simulate',
        'payment.refund',
        'stats.view',
        'stats.finance',
        'stats.staff',
        'config.manage',
        'user.manage',
    }),
}


def bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip() or None
    return None


def _role_value(role):
    return role.value if isinstance(role, UserRole) else str(role).lower()


def _require_identity():
    if not current_user.is_authenticated:
        raise Unauthenticated(g.get('auth_error'))
    return current_user


def authorize(identity, allowed_roles):
    allowed = {_role_value(role) for role in allowed_roles}
    if identity.role.value not in allowed:
        logger.warning(
            "User %s attempted to access roles %s, current role: %s",
            identity.id,
            sorted(allowed),
            identity.role.value,
        )
        raise Forbidden()
    return identity


def has_capability(identity, capability):
    return capability in ROLE_CAPABILITIES.get(identity.role, frozenset())


def role_required(*allowed_roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            authorize(_require_identity(), allowed_roles)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def capability_required(capability, allow_anonymous=False):
    """Require a role granting ``capability``.

    With ``allow_anonymous`` a request without any token passes through
    unauthenticated; a token that fails to verify is still rejected.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                if allow_anonymous and not g.get('auth_error'):
                    return f(*args, **kwargs)
                raise Unauthenticated(g.get('auth_error'))
            if not has_capability(current_user, capability):
                logger.warning(
                    "User %s (%s) denied capability %s",
                    current_user.id,
                    current_user.role.value,
                    capability,
                )
                raise Forbidden()
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def setup_auth_middleware(login_manager):

    @login_manager.request_loader
    def load_user_from_request(req):
        token = bearer_token()
        if token is None:
            return None
        try:
            return authenticate(token)
        except ServiceError as e:
            # Remembered so the 401 body can say why.
            g.auth_error = e.message
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        raise Unauthenticated(g.get('auth_error'))
