"""Registration, login and bearer token handling."""
from datetime import datetime, timedelta, timezone

import jwt

from app.extensions import db
from app.models import AuditLog, User, UserRole
from tests.conftest import PASSWORD


def test_register_returns_token_and_user_role(client):
    response = client.post('/api/auth/register', json={
        'phone': '13900000001',
        'password': 'abcdef',
        'name': 'New Customer',
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body['ok'] is True
    assert body['token']
    assert body['user']['role'] == 'user'

    me = client.get('/api/auth/me', headers={
        'Authorization': f"Bearer {body['token']}",
    })
    assert me.status_code == 200
    assert me.get_json()['user']['phone'] == '13900000001'


def test_register_duplicate_phone(client, customer):
    response = client.post('/api/auth/register', json={
        'phone': customer.phone,
        'password': 'abcdef',
    })

    assert response.status_code == 409
    assert response.get_json()['error'] == 'DuplicateIdentity'


def test_register_duplicate_username(client, customer):
    response = client.post('/api/auth/register', json={
        'phone': '13900000002',
        'password': 'abcdef',
        'username': 'wangwu',
    })

    assert response.status_code == 409
    assert response.get_json()['error'] == 'DuplicateIdentity'


def test_register_lists_every_invalid_field(client):
    response = client.post('/api/auth/register', json={
        'phone': '12345',
        'password': '123',
        'email': 'not-an-email',
    })

    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'ValidationError'
    fields = {item['field'] for item in body['fields']}
    assert fields == {'phone', 'password', 'email'}


def test_login_by_phone_and_by_username(client, customer):
    by_phone = client.post('/api/auth/login', json={
        'identifier': customer.phone,
        'password': PASSWORD,
    })
    by_username = client.post('/api/auth/login', json={
        'identifier': 'wangwu',
        'password': PASSWORD,
    })

    assert by_phone.status_code == 200
    assert by_username.status_code == 200
    assert by_phone.get_json()['user']['id'] == customer.id
    assert by_username.get_json()['user']['id'] == customer.id


def test_login_accepts_legacy_phone_field(client, customer):
    response = client.post('/api/auth/login', json={
        'phone': customer.phone,
        'password': PASSWORD,
    })

    assert response.status_code == 200


def test_login_wrong_password(client, customer):
    response = client.post('/api/auth/login', json={
        'identifier': customer.phone,
        'password': 'wrong-password',
    })

    assert response.status_code == 401
    assert response.get_json()['error'] == 'InvalidCredential'


def test_login_rejects_non_string_password(client, customer):
    response = client.post('/api/auth/login', json={
        'identifier': customer.phone,
        'password': 123456,
    })

    assert response.status_code == 400
    assert response.get_json()['fields'] == [
        {'field': 'password', 'message': 'Password must be a string'}]


def test_login_unknown_user(client):
    response = client.post('/api/auth/login', json={
        'identifier': '13912345678',
        'password': 'whatever',
    })

    assert response.status_code == 404
    assert response.get_json()['error'] == 'NotFound'


def test_login_deactivated_account(client, customer):
    customer.is_active = False
    db.session.commit()

    response = client.post('/api/auth/login', json={
        'identifier': customer.phone,
        'password': PASSWORD,
    })

    assert response.status_code == 401
    assert response.get_json()['error'] == 'InvalidCredential'


def test_me_requires_token(client):
    response = client.get('/api/auth/me')

    assert response.status_code == 401
    assert response.get_json()['error'] == 'Unauthenticated'


def test_expired_token_rejected(app, client, customer):
    past = datetime.now(timezone.utc) - timedelta(days=31)
    token = jwt.encode(
        {
            'userId': customer.id,
            'role': 'user',
            'iat': past,
            'exp': past + timedelta(days=30),
        },
        app.config['JWT_SECRET'],
        algorithm='HS256',
    )

    response = client.get(
        '/api/auth/me', headers={'Authorization': f'Bearer {token}'})

    assert response.status_code == 401
    assert 'expired' in response.get_json()['message']


def test_token_signed_with_other_secret_rejected(client, customer):
    token = jwt.encode(
        {'userId': customer.id, 'role': 'user'},
        'some-other-secret',
        algorithm='HS256',
    )

    response = client.get(
        '/api/auth/me', headers={'Authorization': f'Bearer {token}'})

    assert response.status_code == 401


def test_token_of_deactivated_user_rejected(client, customer, auth_headers):
    headers = auth_headers(customer)
    customer.is_active = False
    db.session.commit()

    response = client.get('/api/auth/me', headers=headers)

    assert response.status_code == 401


def test_token_claims(app, customer, auth_headers):
    token = auth_headers(customer)['Authorization'].split(' ', 1)[1]
    claims = jwt.decode(
        token, app.config['JWT_SECRET'], algorithms=['HS256'])

    assert claims['userId'] == customer.id
    assert claims['role'] == 'user'
    assert claims['exp'] - claims['iat'] == 30 * 24 * 3600


def test_send_code_when_sms_disabled(client):
    response = client.post(
        '/api/auth/send-code', json={'phone': '13900000003'})

    assert response.status_code == 200
    assert response.get_json()['sent'] is False


def test_login_with_code_forbidden_when_sms_disabled(client):
    response = client.post('/api/auth/login-with-code', json={
        'phone': '13900000003',
        'code': '123456',
    })

    assert response.status_code == 403
    assert response.get_json()['error'] == 'Forbidden'


def test_auth_config_reports_flags(client):
    response = client.get('/api/auth/config')

    config = response.get_json()['config']
    assert config['sms_verification_enabled'] is False
    assert config['anonymous_orders_allowed'] is False


def test_admin_registers_staff(client, admin, auth_headers):
    response = client.post('/api/auth/admin/register', json={
        'username': 'tech_zhou',
        'phone': '13900000010',
        'password': 'abcdef',
        'name': 'Zhou',
        'role': 'repairman',
    }, headers=auth_headers(admin))

    assert response.status_code == 201
    assert response.get_json()['user']['role'] == 'repairman'
    user = User.query.filter_by(phone='13900000010').first()
    assert user.role == UserRole.REPAIRMAN


def test_admin_register_rejects_customer_role(client, admin, auth_headers):
    response = client.post('/api/auth/admin/register', json={
        'username': 'someone',
        'phone': '13900000011',
        'password': 'abcdef',
        'name': 'Someone',
        'role': 'user',
    }, headers=auth_headers(admin))

    assert response.status_code == 400
    fields = {f['field'] for f in response.get_json()['fields']}
    assert 'role' in fields


def test_admin_register_requires_admin(
        client, customer_service, auth_headers):
    response = client.post('/api/auth/admin/register', json={
        'username': 'sneaky',
        'phone': '13900000012',
        'password': 'abcdef',
        'name': 'Sneaky',
        'role': 'admin',
    }, headers=auth_headers(customer_service))

    assert response.status_code == 403
    assert User.query.filter_by(phone='13900000012').first() is None


def test_admin_register_duplicate_phone(
        client, admin, customer, auth_headers):
    response = client.post('/api/auth/admin/register', json={
        'username': 'dup_user',
        'phone': customer.phone,
        'password': 'abcdef',
        'name': 'Dup',
        'role': 'repairman',
    }, headers=auth_headers(admin))

    assert response.status_code == 409


def test_logout_is_audited(client, customer, auth_headers):
    response = client.post('/api/auth/logout', headers=auth_headers(customer))

    assert response.status_code == 200
    entry = AuditLog.query.filter_by(action='LOGOUT').one()
    assert entry.actor_id == customer.id
