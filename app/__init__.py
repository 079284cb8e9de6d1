from flask import Flask
from flask_migrate import Migrate
from flask_login import LoginManager
from app.extensions import db, socketio
from app.config import Config
from app.errors import register_error_handlers
from app.middleware import setup_auth_middleware
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('app.log'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

migrate = Migrate()
login_manager = LoginManager()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=app.config['CORS_ALLOWED_ORIGINS'],
    )

    # Bearer tokens resolve to current_user on every request
    setup_auth_middleware(login_manager)
    register_error_handlers(app)

    from app.services.verification_codes import VerificationCodeStore
    from app.services.notification_service import build_dispatcher
    from app.services.order_service import OrderLifecycle
    from app.sockets import register_socket_handlers

    dispatcher = build_dispatcher(app, socketio)
    app.extensions['verification_codes'] = VerificationCodeStore()
    app.extensions['notification_dispatcher'] = dispatcher
    app.extensions['order_lifecycle'] = OrderLifecycle(
        dispatcher,
        strict_ownership=app.config['STRICT_ORDER_OWNERSHIP'],
        allow_anonymous=app.config['ALLOW_ANONYMOUS_ORDERS'],
    )
    register_socket_handlers(socketio)

    # Register blueprints
    from app.blueprints import (
        auth, config, health, orders, payment, stats, users
    )

    app.register_blueprint(auth.bp, url_prefix='/api/auth')
    app.register_blueprint(orders.bp, url_prefix='/api')
    app.register_blueprint(payment.bp, url_prefix='/api/payment')
    app.register_blueprint(users.bp, url_prefix='/api/user')
    app.register_blueprint(config.bp, url_prefix='/api/config')
    # stats also serves /api/notifications/system
    app.register_blueprint(stats.bp, url_prefix='/api')
    app.register_blueprint(health.bp, url_prefix='/api')

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized")
    return app
