"""Payload validators and enum parsing."""
from datetime import datetime
from decimal import Decimal

import pytest

from app.errors import ValidationError
from app.models import (
    AppointmentService,
    OrderStatus,
    PaymentMethod,
    ServiceType,
    Urgency,
    UserRole,
)
from app.utils import URGENCY_ALIASES, parse_enum, parse_status, status_label
from app.validation import (
    parse_amount,
    parse_datetime,
    validate_order_payload,
    validate_payment_method,
    validate_login,
    validate_rating,
    validate_refund,
    validate_registration,
    validate_staff_registration,
    validate_status_update,
    validate_user_update,
)
from tests.conftest import order_payload


@pytest.mark.parametrize('value, expected', [
    ('pending', OrderStatus.PENDING),
    ('IN_PROGRESS', OrderStatus.IN_PROGRESS),
    (' completed ', OrderStatus.COMPLETED),
    ('待处理', OrderStatus.PENDING),
    ('已确认', OrderStatus.CONFIRMED),
    ('处理中', OrderStatus.IN_PROGRESS),
    ('已完成', OrderStatus.COMPLETED),
    ('已取消', OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.CONFIRMED),
    ('assigned', None),
    ('', None),
    (None, None),
    (3, None),
])
def test_parse_status(value, expected):
    assert parse_status(value) is expected


def test_status_labels_round_trip():
    for status in OrderStatus:
        assert parse_status(status_label(status)) is status


@pytest.mark.parametrize('value, expected', [
    ('normal', Urgency.LOW),
    ('URGENT', Urgency.MEDIUM),
    ('emergency', Urgency.HIGH),
    ('high', Urgency.HIGH),
    ('critical', None),
])
def test_urgency_aliases(value, expected):
    assert parse_enum(Urgency, value, URGENCY_ALIASES) is expected


def test_parse_enum_is_case_insensitive():
    assert parse_enum(UserRole, 'Customer_Service') is \
        UserRole.CUSTOMER_SERVICE
    assert parse_enum(UserRole, None) is None


@pytest.mark.parametrize('value, expected', [
    ('2024-05-01T10:30:00Z', datetime(2024, 5, 1, 10, 30)),
    ('2024-05-01T18:30:00+08:00', datetime(2024, 5, 1, 10, 30)),
    ('2024-05-01T10:30:00', datetime(2024, 5, 1, 10, 30)),
    ('tomorrow', None),
    ('', None),
    (None, None),
])
def test_parse_datetime(value, expected):
    assert parse_datetime(value) == expected


@pytest.mark.parametrize('value, expected', [
    (10, Decimal('10.00')),
    ('12.345', Decimal('12.35')),
    ('2.675', Decimal('2.68')),
    ('0.125', Decimal('0.13')),
    (0.1, Decimal('0.10')),
    ('abc', None),
    ('NaN', None),
    (True, None),
    (None, None),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


def test_order_payload_cleaned():
    cleaned = validate_order_payload(order_payload(
        service_type='Repair',
        appointment_service='cleaning',
        liquid_metal='uncertain',
        urgency='emergency',
    ))

    assert cleaned['service_type'] is ServiceType.REPAIR
    assert cleaned['appointment_service'] is AppointmentService.CLEANING
    assert cleaned['urgency'] is Urgency.HIGH
    assert isinstance(cleaned['appointment_time'], datetime)
    assert cleaned['appointment_time'].tzinfo is None


def test_order_payload_defaults():
    payload = order_payload()
    del payload['urgency']
    del payload['appointment_service']

    cleaned = validate_order_payload(payload)

    assert cleaned['urgency'] is Urgency.LOW
    assert cleaned['appointment_service'] is None
    assert cleaned['liquid_metal'] is None


def test_order_payload_accepts_issue_description():
    payload = order_payload()
    del payload['problem_description']
    payload['issue_description'] = 'Will not boot'

    assert validate_order_payload(payload)['problem_description'] == \
        'Will not boot'


def test_order_payload_reports_every_field():
    with pytest.raises(ValidationError) as excinfo:
        validate_order_payload({
            'service_type': 'teleport',
            'appointment_service': 'polishing',
            'urgency': 'whenever',
            'contact_phone': '000',
            'appointment_time': 'soon',
        })

    assert set(excinfo.value.fields) == {
        'device_type',
        'device_model',
        'contact_name',
        'service_type',
        'appointment_service',
        'urgency',
        'contact_phone',
        'appointment_time',
    }


def test_status_update_accepts_label_and_notes():
    cleaned = validate_status_update({
        'status': '已完成',
        'repair_notes': '  replaced battery  ',
    })

    assert cleaned == {
        'status': OrderStatus.COMPLETED,
        'notes': 'replaced battery',
    }


@pytest.mark.parametrize('score', [0, 6, 'five', None, True, 3.5])
def test_rating_rejects_bad_scores(score):
    with pytest.raises(ValidationError) as excinfo:
        validate_rating({'score': score})

    assert 'score' in excinfo.value.fields


def test_rating_accepts_numeric_string():
    assert validate_rating({'rating': '5', 'comment': 'great'}) == {
        'score': 5,
        'comment': 'great',
    }


def test_payment_method():
    assert validate_payment_method({'payment_method': 'Bank_Card'}) is \
        PaymentMethod.BANK_CARD
    with pytest.raises(ValidationError):
        validate_payment_method({})


def test_refund_requires_order_and_amount():
    with pytest.raises(ValidationError) as excinfo:
        validate_refund({'refund_amount': 'lots'})

    assert set(excinfo.value.fields) == {'order_id', 'refund_amount'}


def test_refund_accepts_camel_case_order_id():
    cleaned = validate_refund({'orderId': 7, 'refund_amount': '10'})

    assert cleaned['order_id'] == 7
    assert cleaned['amount'] == Decimal('10.00')


@pytest.mark.parametrize('password', [123456, ['secret123'], {'x': 1}])
def test_non_string_password_rejected(password):
    with pytest.raises(ValidationError) as excinfo:
        validate_login({'identifier': 'wangwu', 'password': password})
    assert 'password' in excinfo.value.fields

    with pytest.raises(ValidationError) as excinfo:
        validate_registration({'phone': '13900000001', 'password': password})
    assert set(excinfo.value.fields) == {'password'}


def test_staff_registration_requires_username_and_name():
    with pytest.raises(ValidationError) as excinfo:
        validate_staff_registration({
            'phone': '13900000001',
            'password': 'abcdef',
            'role': 'repairman',
        })

    assert set(excinfo.value.fields) == {'username', 'name'}


def test_user_update_ignores_role_unless_allowed():
    assert validate_user_update({'role': 'admin', 'name': 'Li'}) == {
        'name': 'Li'}
    assert validate_user_update(
        {'role': 'admin', 'is_active': False}, allow_role=True) == {
        'role': UserRole.ADMIN,
        'is_active': False,
    }


def test_user_update_rejects_non_boolean_active_flag():
    with pytest.raises(ValidationError):
        validate_user_update({'is_active': 'no'}, allow_role=True)
