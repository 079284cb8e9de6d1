"""Request payload validation.

Each ``validate_*`` function checks every field, collects all failures and
raises a single ``ValidationError`` listing them. On success it returns a
cleaned dict with enum members and parsed datetimes in place of raw strings.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import re

from app.errors import ValidationError
from app.models import (
    UserRole,
    STAFF_ROLES,
    ServiceType,
    AppointmentService,
    LiquidMetal,
    Urgency,
    PaymentMethod,
    ServiceCategory,
    PricingType,
    ConfigValueType,
    ConfigCategory,
)
from app.utils import parse_enum, parse_status, URGENCY_ALIASES

PHONE_RE = re.compile(r'^1[3-9]\d{9}$')
USERNAME_RE = re.compile(r'^[A-Za-z0-9_\u4e00-\u9fa5]{3,20}$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
CODE_RE = re.compile(r'^\d{4,6}$')
CATALOG_CODE_RE = re.compile(r'^[a-z][a-z0-9_]{1,49}$')
CONFIG_KEY_RE = re.compile(r'^[a-z][a-z0-9_.]{1,99}$')

PASSWORD_MIN = 6
PASSWORD_MAX = 128
NOTES_MAX = 1000


def is_valid_phone(phone):
    return bool(phone) and bool(PHONE_RE.match(phone))


def _text(data, key):
    value = data.get(key)
    if value is None:
        return ''
    return str(value).strip()


def _raise_if(errors):
    if errors:
        raise ValidationError(errors)


def parse_datetime(value):
    """Parse an ISO 8601 string into a naive UTC datetime, or None."""
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            return None
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_amount(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _check_password(errors, password):
    if not password:
        errors['password'] = 'Password is required'
    elif not isinstance(password, str):
        errors['password'] = 'Password must be a string'
    elif not PASSWORD_MIN <= len(password) <= PASSWORD_MAX:
        errors['password'] = (
            f'Password must be {PASSWORD_MIN}-{PASSWORD_MAX} characters'
        )


def _check_optional_profile(errors, data):
    username = _text(data, 'username')
    if username and not USERNAME_RE.match(username):
        errors['username'] = (
            'Username must be 3-20 characters '
            '(letters, numbers, underscore or Chinese characters)'
        )
    name = _text(data, 'name')
    if len(name) > 50:
        errors['name'] = 'Name must be at most 50 characters'
    email = _text(data, 'email')
    if email and not EMAIL_RE.match(email):
        errors['email'] = 'Invalid email address'
    return {
        'username': username or None,
        'name': name,
        'email': email,
    }


def validate_registration(data):
    errors = {}
    phone = _text(data, 'phone')
    if not is_valid_phone(phone):
        errors['phone'] = 'Invalid phone number'
    password = data.get('password') or ''
    _check_password(errors, password)
    profile = _check_optional_profile(errors, data)
    code = _text(data, 'code')
    if code and not CODE_RE.match(code):
        errors['code'] = 'Verification code must be 4-6 digits'
    _raise_if(errors)
    return dict(profile, phone=phone, password=password, code=code or None)


def validate_login(data):
    errors = {}
    identifier = _text(data, 'identifier') or _text(data, 'phone')
    if not identifier:
        errors['identifier'] = 'Phone number or username is required'
    elif not 3 <= len(identifier) <= 50:
        errors['identifier'] = 'Identifier must be 3-50 characters'
    password = data.get('password') or ''
    if not password:
        errors['password'] = 'Password is required'
    elif not isinstance(password, str):
        errors['password'] = 'Password must be a string'
    _raise_if(errors)
    return {'identifier': identifier, 'password': password}


def validate_phone_payload(data):
    phone = _text(data, 'phone')
    if not is_valid_phone(phone):
        raise ValidationError({'phone': 'Invalid phone number'})
    return phone


def validate_code_login(data):
    errors = {}
    phone = _text(data, 'phone')
    if not is_valid_phone(phone):
        errors['phone'] = 'Invalid phone number'
    code = _text(data, 'code')
    if not CODE_RE.match(code):
        errors['code'] = 'Verification code must be 4-6 digits'
    name = _text(data, 'name')
    if len(name) > 50:
        errors['name'] = 'Name must be at most 50 characters'
    _raise_if(errors)
    return {'phone': phone, 'code': code, 'name': name}


def validate_staff_user(data, require_password=True):
    """Validate an admin-created account (staff registration or user admin)."""
    errors = {}
    phone = _text(data, 'phone')
    if not is_valid_phone(phone):
        errors['phone'] = 'Invalid phone number'
    password = data.get('password') or ''
    if require_password or password:
        _check_password(errors, password)
    profile = _check_optional_profile(errors, data)
    role = parse_enum(UserRole, data.get('role'))
    if role is None:
        errors['role'] = 'Invalid role'
    _raise_if(errors)
    return dict(profile, phone=phone, password=password or None, role=role)


def validate_staff_registration(data):
    errors = {}
    for field in ('username', 'name'):
        if not _text(data, field):
            errors[field] = f'{field} is required'
    try:
        cleaned = validate_staff_user(data)
    except ValidationError as exc:
        errors = dict(exc.fields, **errors)
        cleaned = None
    if cleaned is not None and cleaned['role'] not in STAFF_ROLES:
        errors['role'] = 'Role must be admin, customer_service or repairman'
    _raise_if(errors)
    return cleaned


def validate_user_update(data, allow_role=False):
    errors = {}
    cleaned = {}
    if 'name' in data:
        name = _text(data, 'name')
        if len(name) > 50:
            errors['name'] = 'Name must be at most 50 characters'
        cleaned['name'] = name
    if 'email' in data:
        email = _text(data, 'email')
        if email and not EMAIL_RE.match(email):
            errors['email'] = 'Invalid email address'
        cleaned['email'] = email
    if 'username' in data:
        username = _text(data, 'username')
        if username and not USERNAME_RE.match(username):
            errors['username'] = 'Invalid username'
        cleaned['username'] = username or None
    if allow_role:
        if 'role' in data:
            role = parse_enum(UserRole, data.get('role'))
            if role is None:
                errors['role'] = 'Invalid role'
            cleaned['role'] = role
        if 'is_active' in data:
            if not isinstance(data.get('is_active'), bool):
                errors['is_active'] = 'is_active must be a boolean'
            cleaned['is_active'] = data.get('is_active')
    _raise_if(errors)
    return cleaned


def validate_order_payload(data):
    errors = {}
    cleaned = {}

    for field in ('device_type', 'device_model', 'contact_name'):
        value = _text(data, field)
        if not value:
            errors[field] = f'{field} is required'
        elif len(value) > 100:
            errors[field] = f'{field} must be at most 100 characters'
        cleaned[field] = value

    service_type = parse_enum(ServiceType, data.get('service_type'))
    if service_type is None:
        errors['service_type'] = 'service_type must be repair or appointment'
    cleaned['service_type'] = service_type

    raw_service = data.get('appointment_service')
    appointment_service = None
    if raw_service not in (None, ''):
        appointment_service = parse_enum(AppointmentService, raw_service)
        if appointment_service is None:
            errors['appointment_service'] = 'Unknown appointment service'
    cleaned['appointment_service'] = appointment_service

    raw_liquid = data.get('liquid_metal')
    liquid_metal = None
    if raw_liquid not in (None, ''):
        liquid_metal = parse_enum(LiquidMetal, raw_liquid)
        if liquid_metal is None:
            errors['liquid_metal'] = 'liquid_metal must be yes, no or uncertain'
    cleaned['liquid_metal'] = liquid_metal

    # Older clients send issue_description.
    description = (
        _text(data, 'problem_description')
        or _text(data, 'issue_description')
    )
    if len(description) > NOTES_MAX:
        errors['problem_description'] = (
            f'Description must be at most {NOTES_MAX} characters'
        )
    cleaned['problem_description'] = description or None

    raw_urgency = data.get('urgency')
    urgency = Urgency.LOW
    if raw_urgency not in (None, ''):
        urgency = parse_enum(Urgency, raw_urgency, URGENCY_ALIASES)
        if urgency is None:
            errors['urgency'] = 'Invalid urgency'
    cleaned['urgency'] = urgency

    contact_phone = _text(data, 'contact_phone')
    if not is_valid_phone(contact_phone):
        errors['contact_phone'] = 'Invalid contact phone'
    cleaned['contact_phone'] = contact_phone

    appointment_time = parse_datetime(data.get('appointment_time'))
    if appointment_time is None:
        errors['appointment_time'] = 'appointment_time must be ISO 8601'
    cleaned['appointment_time'] = appointment_time

    _raise_if(errors)
    return cleaned


def validate_status_update(data):
    errors = {}
    status = parse_status(data.get('status'))
    if status is None:
        errors['status'] = 'Invalid order status'
    notes = data.get('notes')
    if notes is None:
        notes = data.get('repair_notes')
    if notes is not None:
        notes = str(notes).strip()
        if len(notes) > NOTES_MAX:
            errors['notes'] = f'Notes must be at most {NOTES_MAX} characters'
    _raise_if(errors)
    return {'status': status, 'notes': notes or None}


def validate_rating(data):
    errors = {}
    score = data.get('score', data.get('rating'))
    if isinstance(score, bool) or not isinstance(score, int):
        try:
            score = int(str(score))
        except (TypeError, ValueError):
            score = None
    if score is None or not 1 <= score <= 5:
        errors['score'] = 'Score must be an integer between 1 and 5'
    comment = _text(data, 'comment')
    if len(comment) > 500:
        errors['comment'] = 'Comment must be at most 500 characters'
    _raise_if(errors)
    return {'score': score, 'comment': comment or None}


def validate_payment_method(data):
    method = parse_enum(PaymentMethod, data.get('payment_method'))
    if method is None:
        raise ValidationError({
            'payment_method': 'payment_method must be one of: ' + ', '.join(
                m.value for m in PaymentMethod)
        })
    return method


def validate_refund(data):
    errors = {}
    order_id = data.get('order_id', data.get('orderId'))
    if not order_id:
        errors['order_id'] = 'order_id is required'
    amount = parse_amount(data.get('refund_amount', data.get('amount')))
    if amount is None:
        errors['refund_amount'] = 'refund_amount must be a number'
    reason = _text(data, 'refund_reason') or _text(data, 'reason')
    if len(reason) > 500:
        errors['refund_reason'] = 'Reason must be at most 500 characters'
    _raise_if(errors)
    return {
        'order_id': order_id,
        'amount': amount,
        'reason': reason or None,
    }


# -- catalog and settings --------------------------------------------------

URGENCY_LEVELS = ('normal', 'urgent', 'emergency')
_LEVEL_BY_URGENCY = {
    urgency: level for level, urgency in URGENCY_ALIASES.items()}


def _wanted(data, field, partial):
    return not partial or field in data


def _check_text(errors, cleaned, data, field, partial, required=True,
                max_len=100):
    if not _wanted(data, field, partial):
        return
    value = _text(data, field)
    if required and not value:
        errors[field] = f'{field} is required'
    elif len(value) > max_len:
        errors[field] = f'{field} must be at most {max_len} characters'
    cleaned[field] = value


def _check_code(errors, cleaned, data, partial):
    if not _wanted(data, 'code', partial):
        return
    code = _text(data, 'code')
    if not CATALOG_CODE_RE.match(code):
        errors['code'] = (
            'code must be 2-50 lowercase letters, digits or underscores')
    cleaned['code'] = code


def _check_flag(errors, cleaned, data, field):
    if field in data:
        if not isinstance(data[field], bool):
            errors[field] = f'{field} must be a boolean'
        cleaned[field] = data[field]


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_id_list(errors, cleaned, data, field):
    if field not in data:
        return
    ids = data[field]
    if not isinstance(ids, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in ids):
        errors[field] = f'{field} must be a list of ids'
    else:
        cleaned[field] = list(dict.fromkeys(ids))


def _comma_list(value):
    if isinstance(value, list):
        return ','.join(str(item).strip() for item in value if item)
    return '' if value is None else str(value).strip()


def validate_service_item(data, partial=False):
    errors = {}
    cleaned = {}
    _check_text(errors, cleaned, data, 'name', partial)
    _check_code(errors, cleaned, data, partial)
    _check_text(errors, cleaned, data, 'description', partial,
                required=False, max_len=NOTES_MAX)
    if _wanted(data, 'base_price', partial):
        price = parse_amount(data.get('base_price'))
        if price is None or price < 0:
            errors['base_price'] = 'base_price must be a non-negative number'
        cleaned['base_price'] = price
    if 'estimated_duration' in data:
        duration = data['estimated_duration']
        if isinstance(duration, bool) or not isinstance(duration, int) \
                or duration < 0:
            errors['estimated_duration'] = (
                'estimated_duration must be a whole number of minutes')
        cleaned['estimated_duration'] = duration
    if 'category' in data:
        category = parse_enum(ServiceCategory, data['category'])
        if category is None:
            errors['category'] = 'category must be one of: ' + ', '.join(
                c.value for c in ServiceCategory)
        cleaned['category'] = category
    if 'required_skills' in data:
        skills = data['required_skills']
        if not isinstance(skills, list) or not all(
                isinstance(skill, str) for skill in skills):
            errors['required_skills'] = (
                'required_skills must be a list of text')
        cleaned['required_skills'] = skills
    _check_flag(errors, cleaned, data, 'is_active')
    _raise_if(errors)
    return cleaned


def validate_device_type(data, partial=False):
    errors = {}
    cleaned = {}
    _check_text(errors, cleaned, data, 'name', partial)
    _check_code(errors, cleaned, data, partial)
    _check_text(errors, cleaned, data, 'category', partial, max_len=50)
    _check_text(errors, cleaned, data, 'description', partial,
                required=False, max_len=NOTES_MAX)
    # Lists are accepted and stored comma separated.
    for field, max_len in (('brands', 500), ('common_issues', NOTES_MAX)):
        if _wanted(data, field, partial):
            value = _comma_list(data.get(field))
            if len(value) > max_len:
                errors[field] = f'{field} must be at most {max_len} characters'
            cleaned[field] = value
    _check_flag(errors, cleaned, data, 'is_active')
    _raise_if(errors)
    return cleaned


def _clean_discount_rule(rule):
    if not isinstance(rule, dict):
        return None
    discount_type = rule.get('discount_type')
    value = rule.get('discount_value')
    minimum = rule.get('min_order_amount')
    if discount_type not in ('percentage', 'fixed'):
        return None
    if not _is_number(value) or value < 0:
        return None
    if discount_type == 'percentage' and value > 100:
        return None
    if minimum is not None and (not _is_number(minimum) or minimum < 0):
        return None
    return {
        'condition': str(rule.get('condition') or '').strip(),
        'discount_type': discount_type,
        'discount_value': value,
        'min_order_amount': minimum,
    }


def validate_pricing_rules(rules):
    """Normalise a strategy's rules; returns (rules, error message)."""
    if rules is None:
        rules = {}
    if not isinstance(rules, dict):
        return None, 'rules must be an object'
    cleaned = {}
    for field in ('base_price', 'hourly_rate'):
        value = rules.get(field, 0)
        if not _is_number(value) or value < 0:
            return None, f'rules.{field} must be a non-negative number'
        cleaned[field] = value

    multipliers = rules.get('urgency_multiplier') or {}
    if not isinstance(multipliers, dict):
        return None, 'rules.urgency_multiplier must be an object'
    cleaned['urgency_multiplier'] = {}
    for level, default in zip(URGENCY_LEVELS, (1.0, 1.5, 2.0)):
        value = multipliers.get(level, default)
        if not _is_number(value) or value <= 0:
            return None, f'rules.urgency_multiplier.{level} must be positive'
        cleaned['urgency_multiplier'][level] = value

    discounts = rules.get('discount_rules') or []
    if not isinstance(discounts, list):
        return None, 'rules.discount_rules must be a list'
    cleaned['discount_rules'] = []
    for index, rule in enumerate(discounts):
        rule = _clean_discount_rule(rule)
        if rule is None:
            return None, f'rules.discount_rules[{index}] is invalid'
        cleaned['discount_rules'].append(rule)
    return cleaned, None


def validate_pricing_strategy(data, partial=False):
    errors = {}
    cleaned = {}
    _check_text(errors, cleaned, data, 'name', partial)
    if _wanted(data, 'type', partial):
        pricing_type = parse_enum(PricingType, data.get('type'))
        if pricing_type is None:
            errors['type'] = 'type must be one of: ' + ', '.join(
                t.value for t in PricingType)
        cleaned['pricing_type'] = pricing_type
    if _wanted(data, 'rules', partial):
        rules, error = validate_pricing_rules(data.get('rules'))
        if error:
            errors['rules'] = error
        cleaned['rules'] = rules
    _check_id_list(errors, cleaned, data, 'service_type_ids')
    _check_id_list(errors, cleaned, data, 'device_type_ids')
    _check_flag(errors, cleaned, data, 'is_active')
    for field in ('valid_from', 'valid_to'):
        if field in data:
            value = data[field]
            parsed = parse_datetime(value) if value is not None else None
            if value is not None and parsed is None:
                errors[field] = f'{field} must be ISO 8601'
            cleaned[field] = parsed
    if cleaned.get('valid_from') is None:
        cleaned.pop('valid_from', None)
    if cleaned.get('valid_from') and cleaned.get('valid_to') \
            and cleaned['valid_to'] < cleaned['valid_from']:
        errors['valid_to'] = 'valid_to must not be before valid_from'
    _raise_if(errors)
    return cleaned


def validate_price_quote(data):
    errors = {}
    cleaned = {}
    for field, legacy in (('service_type_id', 'serviceTypeId'),
                          ('device_type_id', 'deviceTypeId')):
        value = data.get(field, data.get(legacy))
        if value is not None and (
                isinstance(value, bool) or not isinstance(value, int)):
            errors[field] = f'{field} must be an id'
        cleaned[field] = value

    raw_urgency = data.get('urgency') or 'normal'
    level = None
    if isinstance(raw_urgency, str):
        level = raw_urgency.strip().lower()
        if level not in URGENCY_LEVELS:
            urgency = parse_enum(Urgency, level)
            level = _LEVEL_BY_URGENCY.get(urgency)
    if level is None:
        errors['urgency'] = 'urgency must be normal, urgent or emergency'
    cleaned['urgency'] = level

    duration = data.get('duration', 1)
    if not _is_number(duration) or duration <= 0:
        errors['duration'] = 'duration must be a positive number of hours'
    cleaned['duration'] = duration
    _raise_if(errors)
    return cleaned


def check_config_value(value, value_type, rules=None):
    """Return why ``value`` does not fit a setting, or None when it does."""
    rules = rules or {}
    if value is None:
        return 'value is required'
    if value_type == ConfigValueType.STRING:
        if not isinstance(value, str):
            return 'value must be a string'
        if rules.get('required') and not value.strip():
            return 'value is required'
        if rules.get('pattern') and not re.search(rules['pattern'], value):
            return f'value must match {rules["pattern"]}'
        if rules.get('options') and value not in rules['options']:
            return 'value must be one of: ' + ', '.join(rules['options'])
    elif value_type == ConfigValueType.NUMBER:
        if not _is_number(value):
            return 'value must be a number'
        if rules.get('min') is not None and value < rules['min']:
            return f'value must be at least {rules["min"]}'
        if rules.get('max') is not None and value > rules['max']:
            return f'value must be at most {rules["max"]}'
    elif value_type == ConfigValueType.BOOLEAN:
        if not isinstance(value, bool):
            return 'value must be a boolean'
    elif value_type == ConfigValueType.OBJECT:
        if not isinstance(value, dict):
            return 'value must be an object'
    elif value_type == ConfigValueType.ARRAY:
        if not isinstance(value, list):
            return 'value must be a list'
        options = rules.get('options')
        if options and any(item not in options for item in value):
            return 'every item must be one of: ' + ', '.join(options)
    return None


def _clean_config_rules(rules):
    if rules is None:
        return {}, None
    if not isinstance(rules, dict):
        return None, 'validation must be an object'
    cleaned = {}
    if 'required' in rules:
        if not isinstance(rules['required'], bool):
            return None, 'validation.required must be a boolean'
        cleaned['required'] = rules['required']
    for bound in ('min', 'max'):
        if rules.get(bound) is not None:
            if not _is_number(rules[bound]):
                return None, f'validation.{bound} must be a number'
            cleaned[bound] = rules[bound]
    if rules.get('pattern'):
        try:
            re.compile(rules['pattern'])
        except (re.error, TypeError):
            return None, 'validation.pattern is not a valid regular expression'
        cleaned['pattern'] = rules['pattern']
    if rules.get('options') is not None:
        options = rules['options']
        if not isinstance(options, list) or not all(
                isinstance(option, str) for option in options):
            return None, 'validation.options must be a list of text'
        cleaned['options'] = options
    return cleaned, None


def validate_system_config(data, partial=False):
    """Validate a setting definition. ``value`` is checked by the caller
    against the effective type and rules."""
    errors = {}
    cleaned = {}
    if not partial:
        key = _text(data, 'key')
        if not CONFIG_KEY_RE.match(key):
            errors['key'] = (
                'key must be 2-100 lowercase letters, digits, dots '
                'or underscores')
        cleaned['key'] = key
    if _wanted(data, 'value', partial):
        cleaned['value'] = data.get('value')
    if _wanted(data, 'type', partial):
        value_type = parse_enum(ConfigValueType, data.get('type'))
        if value_type is None:
            errors['type'] = 'type must be one of: ' + ', '.join(
                t.value for t in ConfigValueType)
        cleaned['value_type'] = value_type
    if _wanted(data, 'category', partial):
        category = parse_enum(ConfigCategory, data.get('category'))
        if category is None:
            errors['category'] = 'category must be one of: ' + ', '.join(
                c.value for c in ConfigCategory)
        cleaned['category'] = category
    _check_text(errors, cleaned, data, 'description', partial,
                required=False, max_len=255)
    _check_flag(errors, cleaned, data, 'is_editable')
    if 'validation' in data:
        rules, error = _clean_config_rules(data['validation'])
        if error:
            errors['validation'] = error
        cleaned['validation'] = rules
    _raise_if(errors)
    return cleaned


def validate_config_batch(data):
    entries = data.get('configs')
    if not isinstance(entries, list) or not entries:
        raise ValidationError({'configs': 'configs must be a non-empty list'})
    cleaned = []
    for entry in entries:
        if not isinstance(entry, dict) or 'value' not in entry \
                or not isinstance(entry.get('key'), str):
            raise ValidationError(
                {'configs': 'each entry needs a key and a value'})
        cleaned.append((entry['key'], entry['value']))
    return cleaned
