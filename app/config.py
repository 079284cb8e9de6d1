import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///repair_shop.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens
    JWT_SECRET = os.environ.get('JWT_SECRET') or SECRET_KEY
    JWT_EXPIRES_DAYS = int(os.environ.get('JWT_EXPIRES_DAYS', '30'))

    # SMS verification codes are only logged, never delivered.
    ENABLE_SMS_VERIFICATION = _env_flag('ENABLE_SMS_VERIFICATION')
    VERIFICATION_CODE_TTL_SECONDS = int(
        os.environ.get('VERIFICATION_CODE_TTL_SECONDS', '300')
    )

    # Walk-in / demo flows. Ownerless orders can only be created when
    # ALLOW_ANONYMOUS_ORDERS is on; STRICT_ORDER_OWNERSHIP=false lets any
    # caller cancel or rate an ownerless order.
    ALLOW_ANONYMOUS_ORDERS = _env_flag('ALLOW_ANONYMOUS_ORDERS')
    STRICT_ORDER_OWNERSHIP = _env_flag('STRICT_ORDER_OWNERSHIP', 'true')

    # 'socketio' pushes to live clients, 'memory' keeps events in-process.
    NOTIFICATION_BACKEND = os.environ.get('NOTIFICATION_BACKEND', 'socketio')
    CORS_ALLOWED_ORIGINS = os.environ.get(
        'CLIENT_URL', 'http://localhost:3000'
    )

    # Shared secret the gateway sends as X-Callback-Token; unset disables
    # the check.
    PAYMENT_CALLBACK_TOKEN = os.environ.get('PAYMENT_CALLBACK_TOKEN')

    DEFAULT_SERVICE_PRICE = 100

    # Reported by /api/health/detailed
    APP_ENV = os.environ.get('APP_ENV', 'development')
    APP_VERSION = os.environ.get('APP_VERSION', '0.1.0')

    # Pagination configuration
    ITEMS_PER_PAGE = 20
