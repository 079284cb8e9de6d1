from decimal import Decimal
from flask import request
from app.errors import ValidationError
from app.models import OrderStatus, Urgency

# Presentation labels. Only OrderStatus values are ever stored.
STATUS_LABELS = {
    OrderStatus.PENDING: '待处理',
    OrderStatus.CONFIRMED: '已确认',
    OrderStatus.IN_PROGRESS: '处理中',
    OrderStatus.COMPLETED: '已完成',
    OrderStatus.CANCELLED: '已取消',
}
_STATUS_BY_LABEL = {label: status for status, label in STATUS_LABELS.items()}

# Older clients send normal/urgent/emergency.
URGENCY_ALIASES = {
    'normal': Urgency.LOW,
    'urgent': Urgency.MEDIUM,
    'emergency': Urgency.HIGH,
}


def status_label(status):
    return STATUS_LABELS[status]


def parse_status(value):
    """Map an English enum value or a Chinese label to OrderStatus.

    Returns None when the value is not recognised.
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value in _STATUS_BY_LABEL:
        return _STATUS_BY_LABEL[value]
    try:
        return OrderStatus(value.lower())
    except ValueError:
        return None


def parse_enum(enum_class, value, aliases=None):
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    text = str(value).strip().lower()
    if aliases and text in aliases:
        return aliases[text]
    try:
        return enum_class(text)
    except ValueError:
        return None


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    if value is None:
        return None
    return float(Decimal(value))


def serialize_user(user):
    if user is None:
        return None
    return {
        'id': user.id,
        'phone': user.phone,
        'username': user.username,
        'name': user.name,
        'email': user.email,
        'role': user.role.value,
        'is_active': user.is_active,
        'created_at': _iso(user.created_at),
    }


def serialize_order(order):
    if order is None:
        return None
    rating = None
    if order.rating_score is not None:
        rating = {
            'score': order.rating_score,
            'comment': order.rating_comment,
            'rated_at': _iso(order.rated_at),
        }
    return {
        'id': order.id,
        'user_id': order.user_id,
        'device_type': order.device_type,
        'device_model': order.device_model,
        'service_type': order.service_type.value,
        'appointment_service': (
            order.appointment_service.value
            if order.appointment_service else None
        ),
        'liquid_metal': (
            order.liquid_metal.value if order.liquid_metal else None
        ),
        'problem_description': order.problem_description,
        'urgency': order.urgency.value,
        'contact_name': order.contact_name,
        'contact_phone': order.contact_phone,
        'appointment_time': _iso(order.appointment_time),
        'status': order.status.value,
        'status_label': status_label(order.status),
        'assigned_to': order.assigned_to,
        'repair_notes': order.repair_notes,
        'rating': rating,
        'amount': _money(order.amount),
        'payment': {
            'status': order.payment_status.value,
            'method': (
                order.payment_method.value if order.payment_method else None
            ),
            'payment_order_id': order.payment_order_id,
            'transaction_id': order.transaction_id,
            'paid_at': _iso(order.paid_at),
            'refund_amount': _money(order.refund_amount),
            'refund_reason': order.refund_reason,
            'refund_time': _iso(order.refund_time),
        },
        'created_at': _iso(order.created_at),
        'updated_at': _iso(order.updated_at),
        'completed_at': _iso(order.completed_at),
    }


def serialize_service_item(item):
    return {
        'id': item.id,
        'name': item.name,
        'code': item.code,
        'description': item.description,
        'base_price': _money(item.base_price),
        'estimated_duration': item.estimated_duration,
        'category': item.category.value,
        'required_skills': item.required_skills,
        'is_active': item.is_active,
        'created_at': _iso(item.created_at),
        'updated_at': _iso(item.updated_at),
    }


def _split(text):
    return [part.strip() for part in (text or '').split(',') if part.strip()]


def serialize_device_type(device_type):
    return {
        'id': device_type.id,
        'name': device_type.name,
        'code': device_type.code,
        'category': device_type.category,
        'brands': _split(device_type.brands),
        'description': device_type.description,
        'common_issues': _split(device_type.common_issues),
        'is_active': device_type.is_active,
        'created_at': _iso(device_type.created_at),
        'updated_at': _iso(device_type.updated_at),
    }


def serialize_pricing_strategy(strategy):
    return {
        'id': strategy.id,
        'name': strategy.name,
        'type': strategy.pricing_type.value,
        'rules': strategy.get_rules(),
        'service_types': [
            {'id': item.id, 'name': item.name, 'code': item.code}
            for item in strategy.service_items
        ],
        'device_types': [
            {'id': dt.id, 'name': dt.name, 'code': dt.code}
            for dt in strategy.device_types
        ],
        'is_active': strategy.is_active,
        'valid_from': _iso(strategy.valid_from),
        'valid_to': _iso(strategy.valid_to),
        'created_at': _iso(strategy.created_at),
        'updated_at': _iso(strategy.updated_at),
    }


def serialize_system_config(config):
    return {
        'key': config.key,
        'value': config.get_value(),
        'type': config.value_type.value,
        'category': config.category.value,
        'description': config.description,
        'is_editable': config.is_editable,
        'validation': config.get_validation(),
        'updated_at': _iso(config.updated_at),
    }


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }


def json_body():
    """Return the request's JSON object, or {} when there is no body.

    Any other JSON value (a list, a string, a number) is a validation error.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError({'body': 'JSON object expected'})
    return data
