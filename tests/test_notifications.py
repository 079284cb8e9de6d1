"""Notification fan-out: rooms, payloads and channel failures."""
from datetime import datetime

import pytest

from app.models import Order, OrderStatus, Urgency
from app.services.notification_service import (
    MemoryChannel,
    NotificationDispatcher,
    SocketIOChannel,
    build_event,
    user_room,
)


class BrokenChannel:

    def __init__(self, fail_rooms):
        self.fail_rooms = set(fail_rooms)
        self.delivered = []

    def emit(self, room, event):
        if room in self.fail_rooms:
            raise ConnectionError(f'{room} is gone')
        self.delivered.append(room)


class RecordingSocketIO:

    def __init__(self):
        self.calls = []

    def emit(self, event_name, payload, **kwargs):
        self.calls.append((event_name, payload, kwargs))


def make_order(**overrides):
    values = dict(
        id=42,
        user_id=7,
        assigned_to=None,
        device_type='phone',
        device_model='Mate 60',
        problem_description='Cracked screen',
        contact_name='Wang',
        urgency=Urgency.HIGH,
        status=OrderStatus.IN_PROGRESS,
    )
    values.update(overrides)
    return Order(**values)


def test_build_event_shape():
    event = build_event('new_order', 'hello', order_id=3, extra=1)

    assert event['type'] == 'new_order'
    assert event['message'] == 'hello'
    assert event['orderId'] == 3
    assert event['extra'] == 1
    assert datetime.fromisoformat(event['timestamp'])


def test_build_event_without_order():
    assert 'orderId' not in build_event('system_message', 'hi')


def test_status_change_fans_out_to_every_party():
    channel = MemoryChannel()
    dispatcher = NotificationDispatcher(channel)

    delivered = dispatcher.order_status_changed(make_order(assigned_to=9))

    assert delivered == 4
    rooms = [room for room, _ in channel.deliveries]
    assert rooms == ['user_7', 'user_9', 'customer_service', 'admin']
    event = channel.deliveries[0][1]
    assert event['newStatus'] == 'in_progress'
    assert event['orderId'] == 42
    assert '处理中' in event['message']


def test_status_change_of_anonymous_order_skips_owner_room():
    channel = MemoryChannel()
    dispatcher = NotificationDispatcher(channel)

    dispatcher.order_status_changed(make_order(user_id=None))

    assert [room for room, _ in channel.deliveries] == [
        'customer_service', 'admin']


def test_publish_deduplicates_rooms():
    channel = MemoryChannel()
    dispatcher = NotificationDispatcher(channel)

    delivered = dispatcher.publish(
        build_event('x', 'y'), ['admin', 'user_1', 'admin'])

    assert delivered == 2
    assert [room for room, _ in channel.deliveries] == ['admin', 'user_1']


def test_failing_room_does_not_stop_delivery():
    channel = BrokenChannel(fail_rooms=['user_7'])
    dispatcher = NotificationDispatcher(channel)

    delivered = dispatcher.order_status_changed(make_order())

    assert delivered == 2
    assert channel.delivered == ['customer_service', 'admin']


def test_payment_failure_without_owner_is_dropped():
    channel = MemoryChannel()
    dispatcher = NotificationDispatcher(channel)

    assert dispatcher.payment_failed(make_order(user_id=None)) == 0
    assert channel.deliveries == []


def test_socketio_channel_targets_rooms():
    socketio = RecordingSocketIO()
    channel = SocketIOChannel(socketio)

    channel.emit('admin', {'type': 'x'})
    channel.emit(None, {'type': 'y'})

    assert socketio.calls == [
        ('notification', {'type': 'x'}, {'to': 'admin'}),
        ('notification', {'type': 'y'}, {}),
    ]


def test_new_order_reaches_order_desk(customer, create_order, channel):
    order_id = create_order(customer)

    assert channel.types_for('customer_service') == ['new_order']
    assert channel.types_for('admin') == ['new_order']
    assert channel.types_for(f'user_{customer.id}') == []
    event = channel.events_for('admin')[0]
    assert event['orderId'] == order_id
    assert event['orderDetails']['deviceModel'] == 'iPhone 14'


def test_assignment_reaches_repairman(
        client, admin, repairman, customer, create_order, auth_headers,
        channel):
    order_id = create_order(customer)
    channel.clear()

    client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(admin),
    )

    assert channel.types_for(user_room(repairman.id)) == [
        'order_assignment', 'order_status_change']
    assert channel.types_for('repairman') == ['order_assignment']
    assignment = channel.events_for('repairman')[0]
    assert assignment['repairmanId'] == repairman.id
    assert channel.types_for(user_room(customer.id)) == [
        'order_status_change']


def test_failed_request_sends_nothing(
        client, customer, other_customer, create_order, auth_headers,
        channel):
    order_id = create_order(customer)
    channel.clear()

    client.post(
        f'/api/orders/{order_id}/cancel',
        headers=auth_headers(other_customer))

    assert channel.deliveries == []


@pytest.mark.parametrize('target, room', [
    ('all', None),
    ('repairman', 'repairman'),
    ('USER', 'user'),
])
def test_system_message(client, admin, auth_headers, channel, target, room):
    response = client.post('/api/notifications/system', json={
        'message': 'Shop closes early today',
        'target_role': target,
        'data': {'until': '18:00'},
    }, headers=auth_headers(admin))

    assert response.status_code == 200
    assert len(channel.deliveries) == 1
    delivered_room, event = channel.deliveries[0]
    assert delivered_room == room
    assert event['type'] == 'system_message'
    assert event['data'] == {'until': '18:00'}


def test_system_message_validation(client, admin, auth_headers, channel):
    response = client.post('/api/notifications/system', json={
        'message': '',
        'target_role': 'martians',
    }, headers=auth_headers(admin))

    assert response.status_code == 400
    fields = {f['field'] for f in response.get_json()['fields']}
    assert fields == {'message', 'target_role'}
    assert channel.deliveries == []


def test_system_message_admin_only(
        client, customer_service, auth_headers, channel):
    response = client.post('/api/notifications/system', json={
        'message': 'hello',
    }, headers=auth_headers(customer_service))

    assert response.status_code == 403
    assert channel.deliveries == []


@pytest.mark.parametrize('payload, field', [
    ({'message': ['hello']}, 'message'),
    ({'message': 42}, 'message'),
    ({'message': 'hello', 'target_role': 3}, 'target_role'),
    ({'message': 'hello', 'target_role': ['admin']}, 'target_role'),
])
def test_system_message_rejects_non_text_fields(
        client, admin, auth_headers, channel, payload, field):
    response = client.post(
        '/api/notifications/system', json=payload, headers=auth_headers(admin))

    assert response.status_code == 400
    assert [f['field'] for f in response.get_json()['fields']] == [field]
    assert channel.deliveries == []
