"""Order state machine: cancel, confirm, assign, status updates and rating."""
import pytest

from app.errors import InvalidTransition
from app.extensions import db
from app.models import Order, OrderStatus, PaymentStatus
from tests.conftest import order_payload


def _force_status(order_id, status):
    Order.query.filter_by(id=order_id).update({Order.status: status})
    db.session.commit()


@pytest.fixture
def assigned_order(client, admin, repairman, customer, create_order,
                   auth_headers):
    order_id = create_order(customer)
    response = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    return order_id


def test_repair_order_without_service_uses_default_price(
        client, customer, auth_headers):
    response = client.post('/api/orders', json=order_payload(
        device_type='手机',
        service_type='repair',
        appointment_service=None,
    ), headers=auth_headers(customer))

    assert response.status_code == 201
    order = response.get_json()['order']
    assert order['amount'] == 100.0
    assert order['status'] == 'pending'
    assert order['status_label'] == '待处理'
    assert order['payment']['status'] == 'unpaid'
    assert order['user_id'] == customer.id


def test_appointment_to_rating_happy_path(
        client, admin, repairman, customer, create_order, auth_headers):
    order_id = create_order(
        customer,
        service_type='appointment',
        appointment_service='battery_replacement',
    )
    detail = client.get(
        f'/api/orders/{order_id}', headers=auth_headers(customer))
    assert detail.get_json()['order']['amount'] == 150.0

    assigned = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(admin),
    ).get_json()['order']
    assert assigned['status'] == 'in_progress'
    assert assigned['assigned_to'] == repairman.id

    completed = client.put(
        f'/api/orders/{order_id}/status',
        json={'status': 'completed', 'notes': 'Battery replaced'},
        headers=auth_headers(repairman),
    ).get_json()['order']
    assert completed['status'] == 'completed'
    assert completed['repair_notes'] == 'Battery replaced'
    assert completed['completed_at'] is not None

    rated = client.post(
        f'/api/orders/{order_id}/rate',
        json={'score': 5, 'comment': 'Fast and friendly'},
        headers=auth_headers(customer),
    )
    assert rated.status_code == 200
    assert rated.get_json()['order']['rating']['score'] == 5

    again = client.post(
        f'/api/orders/{order_id}/rate',
        json={'score': 4},
        headers=auth_headers(customer),
    )
    assert again.status_code == 409
    assert again.get_json()['error'] == 'AlreadyRated'


def test_create_order_requires_login_by_default(client):
    response = client.post('/api/orders', json=order_payload())

    assert response.status_code == 401


def test_create_order_reports_every_invalid_field(
        client, customer, auth_headers):
    response = client.post('/api/orders', json={
        'service_type': 'teleport',
        'urgency': 'whenever',
        'contact_phone': '123',
    }, headers=auth_headers(customer))

    assert response.status_code == 400
    fields = {f['field'] for f in response.get_json()['fields']}
    assert {
        'device_type',
        'device_model',
        'contact_name',
        'service_type',
        'urgency',
        'contact_phone',
        'appointment_time',
    } <= fields


@pytest.mark.parametrize('status', list(OrderStatus))
def test_cancel_succeeds_only_from_pending(
        client, customer, create_order, auth_headers, reload_order, status):
    order_id = create_order(customer)
    _force_status(order_id, status)

    response = client.post(
        f'/api/orders/{order_id}/cancel', headers=auth_headers(customer))

    if status == OrderStatus.PENDING:
        assert response.status_code == 200
        assert response.get_json()['order']['status'] == 'cancelled'
        assert reload_order(order_id).status == OrderStatus.CANCELLED
    else:
        assert response.status_code == 409
        assert response.get_json()['error'] == 'InvalidTransition'
        assert reload_order(order_id).status == status


def test_cancel_someone_elses_order_is_not_found(
        client, customer, other_customer, create_order, auth_headers,
        reload_order):
    order_id = create_order(customer)

    response = client.post(
        f'/api/orders/{order_id}/cancel',
        headers=auth_headers(other_customer))

    assert response.status_code == 404
    assert reload_order(order_id).status == OrderStatus.PENDING


def test_cancel_without_token(client, customer, create_order):
    order_id = create_order(customer)

    response = client.post(f'/api/orders/{order_id}/cancel')

    assert response.status_code == 401


def test_cancel_missing_order(client, customer, auth_headers):
    response = client.post(
        '/api/orders/999/cancel', headers=auth_headers(customer))

    assert response.status_code == 404


def test_confirm_then_assign(
        client, customer_service, repairman, customer, create_order,
        auth_headers):
    order_id = create_order(customer)
    headers = auth_headers(customer_service)

    confirmed = client.post(f'/api/orders/{order_id}/confirm', headers=headers)
    assert confirmed.get_json()['order']['status'] == 'confirmed'

    again = client.post(f'/api/orders/{order_id}/confirm', headers=headers)
    assert again.status_code == 409

    assigned = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=headers,
    )
    assert assigned.status_code == 200
    assert assigned.get_json()['order']['status'] == 'in_progress'


def test_confirmed_order_cannot_be_cancelled(
        client, customer_service, customer, create_order, auth_headers):
    order_id = create_order(customer)
    client.post(
        f'/api/orders/{order_id}/confirm',
        headers=auth_headers(customer_service))

    response = client.post(
        f'/api/orders/{order_id}/cancel', headers=auth_headers(customer))

    assert response.status_code == 409


def test_repairman_cannot_confirm(
        client, repairman, customer, create_order, auth_headers):
    order_id = create_order(customer)

    response = client.post(
        f'/api/orders/{order_id}/confirm', headers=auth_headers(repairman))

    assert response.status_code == 403


@pytest.mark.parametrize('caller', ['admin', 'customer_service'])
@pytest.mark.parametrize('target', ['customer', 'customer_service', 'admin'])
def test_assign_to_non_repairman_is_not_found(
        request, client, admin, customer_service, customer, create_order,
        auth_headers, reload_order, caller, target):
    order_id = create_order(customer)
    caller_user = request.getfixturevalue(caller)
    target_user = request.getfixturevalue(target)

    response = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': target_user.id},
        headers=auth_headers(caller_user),
    )

    assert response.status_code == 404
    order = reload_order(order_id)
    assert order.assigned_to is None
    assert order.status == OrderStatus.PENDING


def test_assign_requires_order_desk_role(
        client, repairman, customer, create_order, auth_headers):
    order_id = create_order(customer)

    response = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(customer),
    )

    assert response.status_code == 403


def test_second_assignment_conflicts(
        client, admin, customer_service, other_repairman, assigned_order,
        auth_headers, reload_order, repairman):
    response = client.post(
        f'/api/orders/{assigned_order}/assign',
        json={'repairman_id': other_repairman.id},
        headers=auth_headers(customer_service),
    )

    assert response.status_code == 409
    assert response.get_json()['error'] == 'InvalidTransition'
    assert reload_order(assigned_order).assigned_to == repairman.id


def test_second_assignment_after_read_loses_race(
        client, admin, customer_service, repairman, other_repairman,
        customer, create_order, auth_headers, lifecycle, reload_order):
    order_id = create_order(customer)
    stale = db.session.get(Order, order_id)
    assert stale.assigned_to is None

    winner = client.post(
        f'/api/orders/{order_id}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(admin),
    )
    assert winner.status_code == 200

    with pytest.raises(InvalidTransition):
        lifecycle.assign_order(customer_service, order_id, other_repairman.id)

    assert reload_order(order_id).assigned_to == repairman.id


def test_only_assigned_repairman_updates_status(
        client, other_repairman, assigned_order, auth_headers):
    response = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'completed'},
        headers=auth_headers(other_repairman),
    )

    assert response.status_code == 403


def test_repairman_cannot_set_confirmed(
        client, repairman, assigned_order, auth_headers):
    response = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'confirmed'},
        headers=auth_headers(repairman),
    )

    assert response.status_code == 409
    assert response.get_json()['error'] == 'InvalidTransition'


def test_terminal_order_rejects_status_update(
        client, repairman, assigned_order, auth_headers):
    headers = auth_headers(repairman)
    client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'completed'}, headers=headers)

    response = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'in_progress'}, headers=headers)

    assert response.status_code == 409


def test_status_update_accepts_chinese_label(
        client, repairman, assigned_order, auth_headers):
    response = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': '已完成'},
        headers=auth_headers(repairman),
    )

    assert response.status_code == 200
    assert response.get_json()['order']['status'] == 'completed'


def test_same_status_update_is_silent(
        client, repairman, assigned_order, auth_headers, channel,
        reload_order):
    headers = auth_headers(repairman)

    first = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'in_progress', 'notes': 'Waiting for parts'},
        headers=headers,
    )
    second = client.put(
        f'/api/orders/{assigned_order}/status',
        json={'status': 'in_progress'},
        headers=headers,
    )

    assert first.status_code == 200
    assert second.status_code == 200
    assert channel.deliveries == []
    order = reload_order(assigned_order)
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.repair_notes == 'Waiting for parts'


def test_repeated_status_change_notifies_once(
        client, repairman, assigned_order, auth_headers, channel):
    headers = auth_headers(repairman)

    for _ in range(2):
        client.put(
            f'/api/orders/{assigned_order}/status',
            json={'status': 'pending'}, headers=headers)

    assert channel.types_for('admin') == ['order_status_change']


def test_rate_requires_completed(
        client, customer, assigned_order, auth_headers):
    response = client.post(
        f'/api/orders/{assigned_order}/rate',
        json={'score': 5},
        headers=auth_headers(customer),
    )

    assert response.status_code == 409
    assert response.get_json()['error'] == 'InvalidTransition'


@pytest.mark.parametrize('score', [0, 6, 'great', None])
def test_rate_rejects_bad_score(
        client, customer, create_order, auth_headers, score):
    order_id = create_order(customer)
    _force_status(order_id, OrderStatus.COMPLETED)

    response = client.post(
        f'/api/orders/{order_id}/rate',
        json={'score': score},
        headers=auth_headers(customer),
    )

    assert response.status_code == 400
    assert response.get_json()['error'] == 'ValidationError'


def test_rate_by_other_customer_is_not_found(
        client, customer, other_customer, create_order, auth_headers):
    order_id = create_order(customer)
    _force_status(order_id, OrderStatus.COMPLETED)

    response = client.post(
        f'/api/orders/{order_id}/rate',
        json={'score': 5},
        headers=auth_headers(other_customer),
    )

    assert response.status_code == 404


def test_listing_is_scoped_by_role(
        client, admin, repairman, other_repairman, customer, other_customer,
        create_order, auth_headers):
    mine = create_order(customer)
    theirs = create_order(other_customer)
    client.post(
        f'/api/orders/{theirs}/assign',
        json={'repairman_id': repairman.id},
        headers=auth_headers(admin),
    )

    def ids(user, **query):
        response = client.get(
            '/api/orders', query_string=query, headers=auth_headers(user))
        assert response.status_code == 200
        return {o['id'] for o in response.get_json()['orders']}

    assert ids(customer) == {mine}
    assert ids(other_customer) == {theirs}
    assert ids(repairman) == {theirs}
    assert ids(other_repairman) == set()
    assert ids(admin) == {mine, theirs}
    assert ids(admin, status='待处理') == {mine}
    assert ids(admin, assigned_to=repairman.id) == {theirs}


def test_listing_rejects_unknown_status(client, admin, auth_headers):
    response = client.get(
        '/api/orders?status=lost', headers=auth_headers(admin))

    assert response.status_code == 400


def test_detail_visibility(
        client, customer, other_customer, other_repairman, admin,
        assigned_order, auth_headers):
    url = f'/api/orders/{assigned_order}'

    assert client.get(url, headers=auth_headers(customer)).status_code == 200
    assert client.get(url, headers=auth_headers(admin)).status_code == 200
    assert client.get(
        url, headers=auth_headers(other_customer)).status_code == 404
    assert client.get(
        url, headers=auth_headers(other_repairman)).status_code == 404
    assert client.get(url).status_code == 404


def test_repairman_roster(
        client, admin, repairman, other_repairman, customer, auth_headers):
    response = client.get('/api/repairmen', headers=auth_headers(admin))
    denied = client.get('/api/repairmen', headers=auth_headers(customer))

    assert response.status_code == 200
    assert {u['id'] for u in response.get_json()['repairmen']} == {
        repairman.id, other_repairman.id}
    assert denied.status_code == 403


def test_new_order_starts_unpaid(customer, create_order, reload_order):
    order = reload_order(create_order(customer))

    assert order.payment_status == PaymentStatus.UNPAID
    assert order.status == OrderStatus.PENDING
