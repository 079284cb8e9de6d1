"""Shared fixtures: an in-memory app, seeded accounts and request helpers."""
from datetime import datetime, timedelta

import pytest
from flask import g

from app import create_app
from app.config import Config
from app.extensions import db
from app.models import User, UserRole, Order
from app.services.auth_service import issue_token

PASSWORD = 'secret123'


class InMemoryConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET = 'test-jwt-secret'
    NOTIFICATION_BACKEND = 'memory'
    ENABLE_SMS_VERIFICATION = False
    ALLOW_ANONYMOUS_ORDERS = False
    STRICT_ORDER_OWNERSHIP = True
    PAYMENT_CALLBACK_TOKEN = None


@pytest.fixture
def config_overrides():
    """Override in a test module to flip configuration flags."""
    return {}


@pytest.fixture
def app(config_overrides):
    config_class = type(
        'OverriddenConfig', (InMemoryConfig,), config_overrides)
    app = create_app(config_class)

    @app.before_request
    def reset_request_identity():
        # Test requests reuse the fixture's app context and with it ``g``.
        g.pop('_login_user', None)
        g.pop('auth_error', None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def channel(app):
    """In-memory notification channel; every delivery is recorded."""
    channel = app.extensions['notification_dispatcher'].channel
    channel.clear()
    return channel


@pytest.fixture
def lifecycle(app):
    return app.extensions['order_lifecycle']


def _make_user(phone, role, name, username=None):
    user = User(phone=phone, role=role, name=name, username=username)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin(app):
    return _make_user('13800000001', UserRole.ADMIN, 'Admin', 'admin01')


@pytest.fixture
def customer_service(app):
    return _make_user('13800000002', UserRole.CUSTOMER_SERVICE, 'Desk')


@pytest.fixture
def repairman(app):
    return _make_user('13800000003', UserRole.REPAIRMAN, 'Zhang')


@pytest.fixture
def other_repairman(app):
    return _make_user('13800000004', UserRole.REPAIRMAN, 'Li')


@pytest.fixture
def customer(app):
    return _make_user('13800000005', UserRole.USER, 'Wang', 'wangwu')


@pytest.fixture
def other_customer(app):
    return _make_user('13800000006', UserRole.USER, 'Zhao')


@pytest.fixture
def auth_headers(app):
    def make(user):
        token = issue_token(user.id, user.role)
        return {'Authorization': f'Bearer {token}'}
    return make


def order_payload(**overrides):
    payload = {
        'device_type': 'phone',
        'device_model': 'iPhone 14',
        'service_type': 'appointment',
        'appointment_service': 'battery_replacement',
        'problem_description': 'Battery drains in an hour',
        'urgency': 'normal',
        'contact_name': 'Wang',
        'contact_phone': '13800000005',
        'appointment_time': (
            datetime.utcnow() + timedelta(days=1)).isoformat() + 'Z',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_order(client, auth_headers):
    """POST /api/orders as ``user`` and return the order id."""
    def create(user, **overrides):
        headers = auth_headers(user) if user is not None else {}
        response = client.post(
            '/api/orders', json=order_payload(**overrides), headers=headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['order']['id']
    return create


@pytest.fixture
def reload_order(app):
    def reload(order_id):
        db.session.expire_all()
        return db.session.get(Order, order_id)
    return reload
