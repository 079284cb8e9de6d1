"""Verification-code login with SMS verification switched on."""
import pytest

from app.models import User, UserRole
from app.services import auth_service
from app.services.verification_codes import VerificationCodeStore


@pytest.fixture
def config_overrides():
    return {'ENABLE_SMS_VERIFICATION': True}


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(auth_service, 'generate_code', lambda: '654321')
    return '654321'


def test_login_with_code_provisions_new_user(client, fixed_code):
    sent = client.post('/api/auth/send-code', json={'phone': '13900000020'})
    assert sent.get_json()['sent'] is True

    response = client.post('/api/auth/login-with-code', json={
        'phone': '13900000020',
        'code': fixed_code,
        'name': 'First Timer',
    })

    assert response.status_code == 200
    body = response.get_json()
    assert body['token']
    user = User.query.filter_by(phone='13900000020').one()
    assert user.role == UserRole.USER
    assert user.name == 'First Timer'


def test_code_is_single_use(client, fixed_code):
    client.post('/api/auth/send-code', json={'phone': '13900000021'})
    first = client.post('/api/auth/login-with-code', json={
        'phone': '13900000021',
        'code': fixed_code,
    })
    second = client.post('/api/auth/login-with-code', json={
        'phone': '13900000021',
        'code': fixed_code,
    })

    assert first.status_code == 200
    assert second.status_code == 401
    assert second.get_json()['error'] == 'InvalidCredential'


def test_wrong_code_rejected(client, fixed_code):
    client.post('/api/auth/send-code', json={'phone': '13900000022'})

    response = client.post('/api/auth/login-with-code', json={
        'phone': '13900000022',
        'code': '111111',
    })

    assert response.status_code == 401


def test_login_with_code_existing_user(client, customer, fixed_code):
    client.post('/api/auth/send-code', json={'phone': customer.phone})

    response = client.post('/api/auth/login-with-code', json={
        'phone': customer.phone,
        'code': fixed_code,
    })

    assert response.status_code == 200
    assert response.get_json()['user']['id'] == customer.id


def test_register_requires_code_when_enabled(client):
    response = client.post('/api/auth/register', json={
        'phone': '13900000023',
        'password': 'abcdef',
    })

    assert response.status_code == 400
    fields = {f['field'] for f in response.get_json()['fields']}
    assert fields == {'code'}


def test_register_with_code(client, fixed_code):
    client.post('/api/auth/send-code', json={'phone': '13900000024'})

    response = client.post('/api/auth/register', json={
        'phone': '13900000024',
        'password': 'abcdef',
        'code': fixed_code,
    })

    assert response.status_code == 201


def test_send_code_rejects_bad_phone(client):
    response = client.post('/api/auth/send-code', json={'phone': '123'})

    assert response.status_code == 400


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_code_store_expires_entries():
    clock = FakeClock()
    store = VerificationCodeStore(clock=clock)
    store.put('13900000030', '123456', ttl=300)

    clock.now += 301

    assert store.consume('13900000030', '123456') is False
    assert len(store) == 0


def test_code_store_wrong_code_keeps_entry():
    store = VerificationCodeStore(clock=FakeClock())
    store.put('13900000031', '123456', ttl=300)

    assert store.consume('13900000031', '000000') is False
    assert store.consume('13900000031', '123456') is True
    assert store.consume('13900000031', '123456') is False


def test_code_store_purges_expired_on_put():
    clock = FakeClock()
    store = VerificationCodeStore(clock=clock)
    store.put('13900000032', '111111', ttl=10)
    clock.now += 11
    store.put('13900000033', '222222', ttl=10)

    assert len(store) == 1
