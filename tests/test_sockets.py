"""Socket.IO delivery through the live channel."""
import pytest

from app.extensions import socketio
from app.services.auth_service import issue_token
from app.services.notification_service import user_room


@pytest.fixture
def config_overrides():
    return {'NOTIFICATION_BACKEND': 'socketio'}


def _connect(app, user):
    return socketio.test_client(
        app, auth={'token': issue_token(user.id, user.role)})


def _notifications(socket_client):
    return [
        packet['args'][0] for packet in socket_client.get_received()
        if packet['name'] == 'notification'
    ]


def test_connected_client_receives_role_and_user_events(
        app, admin, customer):
    admin_socket = _connect(app, admin)
    customer_socket = _connect(app, customer)
    dispatcher = app.extensions['notification_dispatcher']

    dispatcher.system_message('admin', 'Stock count at 18:00')
    dispatcher.publish(
        {'type': 'ping', 'message': 'hi'}, [user_room(customer.id)])

    assert admin_socket.is_connected()
    assert [e['message'] for e in _notifications(admin_socket)] == [
        'Stock count at 18:00']
    assert [e['type'] for e in _notifications(customer_socket)] == ['ping']


def test_broadcast_reaches_everyone(app, admin, repairman):
    sockets = [_connect(app, admin), _connect(app, repairman)]

    app.extensions['notification_dispatcher'].system_message(
        'all', 'Maintenance tonight')

    for socket_client in sockets:
        assert [e['type'] for e in _notifications(socket_client)] == [
            'system_message']


def test_order_events_pushed_to_order_desk(
        app, client, admin, customer, create_order):
    admin_socket = _connect(app, admin)

    order_id = create_order(customer)

    events = _notifications(admin_socket)
    assert [e['type'] for e in events] == ['new_order']
    assert events[0]['orderId'] == order_id
