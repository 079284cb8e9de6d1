"""Price table and the simulated payment gateway.

No real gateway is called. ``simulate_gateway_response`` returns the shape a
WeChat/Alipay prepay call would, so the client flow can be exercised end to
end through ``/api/payment/simulate``.
"""
from datetime import datetime
from decimal import Decimal
import secrets
import string
import time

from flask import current_app
from sqlalchemy import func

from app.extensions import db
from app.models import (
    Order,
    PaymentStatus,
    PaymentMethod,
    ServiceType,
    AppointmentService,
)

_STANDARD_PRICES = {
    AppointmentService.CLEANING: Decimal('50'),
    AppointmentService.SCREEN_REPLACEMENT: Decimal('200'),
    AppointmentService.BATTERY_REPLACEMENT: Decimal('150'),
    AppointmentService.SYSTEM_REINSTALL: Decimal('80'),
    AppointmentService.SOFTWARE_INSTALL: Decimal('30'),
}

SERVICE_PRICES = {
    ServiceType.REPAIR: dict(_STANDARD_PRICES),
    ServiceType.APPOINTMENT: dict(_STANDARD_PRICES),
}

_PLACEHOLDER_QR = (
    'data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAA'
    'DUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=='
)

_GATEWAY_URLS = {
    PaymentMethod.WECHAT: (
        'https://wx.tenpay.com/cgi-bin/mmpayweb-bin/checkmweb?prepay_id={ref}'
    ),
    PaymentMethod.ALIPAY: (
        'https://openapi.alipay.com/gateway.do'
        '?method=alipay.trade.page.pay&out_trade_no={ref}'
    ),
}

_REF_ALPHABET = string.ascii_uppercase + string.digits


def lookup_price(service_type, appointment_service):
    """Listed price, or None when the combination is not in the table."""
    return SERVICE_PRICES.get(service_type, {}).get(appointment_service)


def get_service_price(service_type, appointment_service):
    price = lookup_price(service_type, appointment_service)
    if price is None:
        price = Decimal(str(current_app.config.get('DEFAULT_SERVICE_PRICE', 100)))
    return price.quantize(Decimal('0.01'))


def price_list():
    return {
        service_type.value: {
            service.value: float(price) for service, price in prices.items()
        }
        for service_type, prices in SERVICE_PRICES.items()
    }


def generate_payment_order_id():
    timestamp = int(time.time() * 1000)
    suffix = ''.join(secrets.choice(_REF_ALPHABET) for _ in range(6))
    return f'PAY{timestamp}{suffix}'


def simulate_gateway_response(payment_order_id, method):
    # bank_card and cash fall back to the WeChat page like the gateway does.
    template = _GATEWAY_URLS.get(method, _GATEWAY_URLS[PaymentMethod.WECHAT])
    return {
        'paymentUrl': template.format(ref=payment_order_id),
        'qrCode': _PLACEHOLDER_QR,
    }


def payment_statistics(start=None, end=None):
    query = db.session.query(
        Order.payment_status,
        func.count(Order.id),
        func.coalesce(func.sum(Order.amount), 0),
    )
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)
    rows = query.group_by(Order.payment_status).all()

    by_status = {
        status.value: {'count': 0, 'total_amount': 0.0}
        for status in PaymentStatus
    }
    for status, count, total in rows:
        by_status[status.value] = {
            'count': count,
            'total_amount': float(total or 0),
        }
    return {
        'by_status': by_status,
        'paid_total': by_status[PaymentStatus.PAID.value]['total_amount'],
        'generated_at': datetime.utcnow().isoformat(),
    }
