from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from app.errors import Forbidden, NotFound, ValidationError
from app.middleware import capability_required
from app.models import Order, ServiceType, AppointmentService
from app.services import payment_service
from app.services.audit_service import log_audit, actor_fields
from app.services.order_service import get_order_service
from app.utils import json_body, parse_enum, serialize_order
from app.validation import (
    validate_payment_method,
    validate_refund,
    parse_datetime,
)
import logging
import secrets

logger = logging.getLogger(__name__)

bp = Blueprint('payment', __name__)


def _order_id(data):
    order_id = data.get('order_id', data.get('orderId'))
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise ValidationError({'order_id': 'order_id is required'})
    return order_id


def _payment_ref(data):
    ref = data.get('payment_order_id') or data.get('paymentOrderId')
    if not ref or not isinstance(ref, str):
        raise ValidationError(
            {'payment_order_id': 'payment_order_id is required'})
    return ref


def _audit(action, order, payload=None):
    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type='ORDER',
        target_id=order.id,
        payload=payload
    )


@bp.route('/price', methods=['GET'])
def service_price():
    service_type = parse_enum(ServiceType, request.args.get('service_type'))
    service = parse_enum(
        AppointmentService, request.args.get('appointment_service'))
    price = payment_service.lookup_price(service_type, service)
    if price is None:
        raise ValidationError({
            'appointment_service': 'Unknown service type or service item'
        })
    return jsonify({'ok': True, 'price': float(price)})


@bp.route('/prices', methods=['GET'])
def service_prices():
    return jsonify({'ok': True, 'prices': payment_service.price_list()})


@bp.route('/initiate', methods=['POST'])
@capability_required('payment.initiate')
def initiate_payment():
    data = json_body()
    order_id = _order_id(data)
    method = validate_payment_method(data)

    order, gateway = get_order_service().initiate_payment(
        current_user, order_id, method)
    _audit('PAYMENT_INITIATE', order, {
        'payment_order_id': order.payment_order_id,
        'method': method.value,
    })
    return jsonify({
        'ok': True,
        'payment_order_id': order.payment_order_id,
        'amount': float(order.amount),
        'payment_url': gateway['paymentUrl'],
        'qr_code': gateway['qrCode'],
        'order': serialize_order(order),
    })


@bp.route('/status/<int:order_id>', methods=['GET'])
@login_required
def payment_status(order_id):
    order = get_order_service().get_order(current_user, order_id)
    return jsonify({'ok': True, 'payment': serialize_order(order)['payment']})


def _check_callback_token():
    expected = current_app.config.get('PAYMENT_CALLBACK_TOKEN')
    if not expected:
        return
    supplied = request.headers.get('X-Callback-Token', '')
    if not secrets.compare_digest(supplied, expected):
        logger.warning("Payment callback rejected: bad token")
        raise Forbidden('Invalid callback token')


@bp.route('/callback', methods=['POST'])
def payment_callback():
    _check_callback_token()
    data = json_body()
    ref = _payment_ref(data)
    status = data.get('status')
    service = get_order_service()
    if status == 'success':
        order = service.mark_paid(
            ref, data.get('transaction_id') or data.get('transactionId'))
        action = 'PAYMENT_SUCCESS'
    elif status == 'failed':
        order = service.mark_failed(ref, data.get('reason') or '第三方支付失败')
        action = 'PAYMENT_FAILED'
    else:
        raise ValidationError({'status': 'status must be success or failed'})

    log_audit(
        actor_role='SYSTEM',
        action=action,
        target_type='ORDER',
        target_id=order.id,
        payload={'payment_order_id': ref}
    )
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/simulate', methods=['POST'])
@capability_required('payment.simulate')
def simulate_payment():
    data = json_body()
    ref = _payment_ref(data)
    order = Order.query.filter_by(payment_order_id=ref).first()
    service = get_order_service()
    if order is None or not service.can_view(current_user, order):
        raise NotFound('Payment order not found')

    if data.get('success', True):
        order = service.mark_paid(ref)
        action = 'PAYMENT_SUCCESS'
    else:
        order = service.mark_failed(ref, '模拟支付失败')
        action = 'PAYMENT_FAILED'

    _audit(action, order, {'payment_order_id': ref, 'simulated': True})
    return jsonify({
        'ok': True,
        'payment_status': order.payment_status.value,
        'order_status': order.status.value,
        'order': serialize_order(order),
    })


@bp.route('/refund', methods=['POST'])
@capability_required('payment.refund')
def refund():
    data = validate_refund(json_body())
    order_id = _order_id(data)
    order = get_order_service().refund(
        current_user, order_id, data['amount'], data['reason'])
    _audit('REFUND_COMPLETED', order, {
        'amount': float(data['amount']),
        'reason': data['reason'],
    })
    return jsonify({'ok': True, 'order': serialize_order(order)})


@bp.route('/statistics', methods=['GET'])
@capability_required('stats.finance')
def payment_statistics():
    start = parse_datetime(request.args.get('start_date'))
    end = parse_datetime(request.args.get('end_date'))
    return jsonify({
        'ok': True,
        'statistics': payment_service.payment_statistics(start, end),
    })
