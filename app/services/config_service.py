"""Service catalog, device types, pricing strategies and system settings.

Catalog reads are open to every signed-in user; all writes are admin only
and gated in the blueprint. Settings are typed key/value pairs: every write
is checked against the setting's declared type and validation rules, and
settings flagged ``is_editable = False`` can be neither changed nor deleted.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.errors import DuplicateKey, Forbidden, NotFound, ValidationError
from app.models import (
    DeviceType,
    PricingStrategy,
    PricingStrategyDeviceType,
    PricingStrategyServiceItem,
    PricingType,
    ServiceItem,
    SystemConfig,
)
from app.validation import check_config_value

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def _commit_unique(message):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateKey(message)


def _get_or_404(model, object_id, label):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(f'{label} not found')
    return obj


def _apply(obj, fields):
    for field, value in fields.items():
        setattr(obj, field, value)


# -- service items and device types ----------------------------------------

def list_service_items(active_only=False):
    query = ServiceItem.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(
        ServiceItem.created_at.desc(), ServiceItem.id.desc()).all()


def get_service_item(item_id):
    return _get_or_404(ServiceItem, item_id, 'Service type')


def create_service_item(fields):
    item = ServiceItem()
    _apply(item, fields)
    db.session.add(item)
    _commit_unique('Service type name or code already exists')
    logger.info("Service type %s created", item.code)
    return item


def update_service_item(item_id, fields):
    item = get_service_item(item_id)
    _apply(item, fields)
    _commit_unique('Service type name or code already exists')
    return item


def delete_service_item(item_id):
    item = get_service_item(item_id)
    # Strategy links go with it.
    db.session.delete(item)
    db.session.commit()
    logger.info("Service type %s deleted", item_id)


def list_device_types(active_only=False):
    query = DeviceType.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(
        DeviceType.created_at.desc(), DeviceType.id.desc()).all()


def get_device_type(device_type_id):
    return _get_or_404(DeviceType, device_type_id, 'Device type')


def create_device_type(fields):
    device_type = DeviceType()
    _apply(device_type, fields)
    db.session.add(device_type)
    _commit_unique('Device type name or code already exists')
    logger.info("Device type %s created", device_type.code)
    return device_type


def update_device_type(device_type_id, fields):
    device_type = get_device_type(device_type_id)
    _apply(device_type, fields)
    _commit_unique('Device type name or code already exists')
    return device_type


def delete_device_type(device_type_id):
    device_type = get_device_type(device_type_id)
    db.session.delete(device_type)
    db.session.commit()
    logger.info("Device type %s deleted", device_type_id)


# -- pricing strategies -----------------------------------------------------

def _load_all(model, ids, field):
    rows = model.query.filter(model.id.in_(ids)).all() if ids else []
    by_id = {row.id: row for row in rows}
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise ValidationError(
            {field: 'Unknown ids: ' + ', '.join(str(i) for i in missing)})
    return [by_id[i] for i in ids]


def _apply_strategy(strategy, fields):
    """Set fields and links. Rolls back on unknown ids or bad dates."""
    fields = dict(fields)
    # A new strategy must not be flushed before its name is set.
    with db.session.no_autoflush:
        try:
            items = devices = None
            if 'service_type_ids' in fields:
                items = _load_all(ServiceItem,
                                  fields.pop('service_type_ids'),
                                  'service_type_ids')
            if 'device_type_ids' in fields:
                devices = _load_all(DeviceType,
                                    fields.pop('device_type_ids'),
                                    'device_type_ids')
            if 'rules' in fields:
                strategy.set_rules(fields.pop('rules'))
            _apply(strategy, fields)
            if strategy.valid_to and strategy.valid_from \
                    and strategy.valid_to < strategy.valid_from:
                raise ValidationError(
                    {'valid_to': 'valid_to must not be before valid_from'})
        except ValidationError:
            db.session.rollback()
            raise

        if items is not None:
            existing = {link.service_item_id: link
                        for link in strategy.service_links}
            strategy.service_links = [
                existing.get(item.id)
                or PricingStrategyServiceItem(service_item=item)
                for item in items
            ]
        if devices is not None:
            existing = {link.device_type_id: link
                        for link in strategy.device_links}
            strategy.device_links = [
                existing.get(device.id)
                or PricingStrategyDeviceType(device_type=device)
                for device in devices
            ]


def list_pricing_strategies():
    return PricingStrategy.query.order_by(
        PricingStrategy.created_at.desc(), PricingStrategy.id.desc()).all()


def get_pricing_strategy(strategy_id):
    return _get_or_404(PricingStrategy, strategy_id, 'Pricing strategy')


def create_pricing_strategy(fields):
    strategy = PricingStrategy()
    _apply_strategy(strategy, fields)
    db.session.add(strategy)
    _commit_unique('Pricing strategy name already exists')
    logger.info("Pricing strategy %s created", strategy.name)
    return strategy


def update_pricing_strategy(strategy_id, fields):
    strategy = get_pricing_strategy(strategy_id)
    _apply_strategy(strategy, fields)
    _commit_unique('Pricing strategy name already exists')
    return strategy


def delete_pricing_strategy(strategy_id):
    strategy = get_pricing_strategy(strategy_id)
    db.session.delete(strategy)
    db.session.commit()
    logger.info("Pricing strategy %s deleted", strategy_id)


def _decimal(value):
    return Decimal(str(value or 0))


def _matches(strategy, service_item_id, device_type_id):
    if service_item_id is not None and service_item_id not in {
            link.service_item_id for link in strategy.service_links}:
        return False
    if device_type_id is not None and device_type_id not in {
            link.device_type_id for link in strategy.device_links}:
        return False
    return True


def calculate_price(service_item_id=None, device_type_id=None,
                    urgency='normal', duration=1):
    """Quote a price with the first active strategy covering the request.

    A strategy whose base price is zero falls back to the service type's
    catalog price. Hourly strategies add ``hourly_rate * duration``. The
    urgency multiplier applies before discounts; every discount whose
    minimum the multiplied price reaches is applied, and the result never
    goes below zero.
    """
    service_item = None
    if service_item_id is not None:
        service_item = get_service_item(service_item_id)

    now = datetime.utcnow()
    candidates = PricingStrategy.query.filter(
        PricingStrategy.is_active.is_(True),
        PricingStrategy.valid_from <= now,
        or_(PricingStrategy.valid_to.is_(None),
            PricingStrategy.valid_to >= now),
    ).order_by(PricingStrategy.id).all()
    strategy = next(
        (s for s in candidates
         if _matches(s, service_item_id, device_type_id)),
        None)
    if strategy is None:
        raise NotFound('No matching pricing strategy')

    rules = strategy.get_rules()
    base_price = _decimal(rules.get('base_price'))
    if not base_price and service_item is not None:
        base_price = Decimal(service_item.base_price)
    if strategy.pricing_type == PricingType.HOURLY:
        base_price += _decimal(rules.get('hourly_rate')) * _decimal(duration)

    multiplier = _decimal(
        (rules.get('urgency_multiplier') or {}).get(urgency) or 1)
    price = base_price * multiplier

    applied = [
        rule for rule in rules.get('discount_rules') or []
        if not rule.get('min_order_amount')
        or price >= _decimal(rule['min_order_amount'])
    ]
    discount = Decimal('0')
    for rule in applied:
        value = _decimal(rule.get('discount_value'))
        if rule.get('discount_type') == 'percentage':
            discount += price * value / 100
        else:
            discount += value
    final_price = max(Decimal('0'), price - discount)

    return {
        'strategy_id': strategy.id,
        'strategy': strategy.name,
        'base_price': float(base_price.quantize(CENT, ROUND_HALF_UP)),
        'urgency': urgency,
        'urgency_multiplier': float(multiplier),
        'total_discount': float(discount.quantize(CENT, ROUND_HALF_UP)),
        'final_price': float(final_price.quantize(CENT, ROUND_HALF_UP)),
        'applied_discounts': applied,
    }


# -- system settings --------------------------------------------------------

def list_system_configs(category=None):
    query = SystemConfig.query
    if category is not None:
        query = query.filter_by(category=category)
    return query.order_by(SystemConfig.category, SystemConfig.key).all()


def get_system_config(key):
    config = SystemConfig.query.filter_by(key=key).first()
    if config is None:
        raise NotFound('Setting not found')
    return config


def _check_value(value, value_type, rules, field='value'):
    error = check_config_value(value, value_type, rules)
    if error:
        raise ValidationError({field: error})


def create_system_config(fields):
    fields = dict(fields)
    value = fields.pop('value')
    rules = fields.pop('validation', {})
    _check_value(value, fields['value_type'], rules)

    config = SystemConfig()
    _apply(config, fields)
    config.set_value(value)
    config.set_validation(rules)
    db.session.add(config)
    _commit_unique('Setting key already exists')
    logger.info("Setting %s created", config.key)
    return config


def update_system_config(key, fields):
    config = get_system_config(key)
    if not config.is_editable:
        raise Forbidden('This setting cannot be edited')

    fields = dict(fields)
    value = fields.pop('value', config.get_value())
    rules = fields.pop('validation', config.get_validation())
    _check_value(value, fields.get('value_type', config.value_type), rules)

    _apply(config, fields)
    config.set_value(value)
    config.set_validation(rules)
    db.session.commit()
    logger.info("Setting %s updated", key)
    return config


def delete_system_config(key):
    config = get_system_config(key)
    if not config.is_editable:
        raise Forbidden('This setting cannot be deleted')
    db.session.delete(config)
    db.session.commit()
    logger.info("Setting %s deleted", key)


def batch_update_system_configs(entries):
    """Set many values at once; all of them or none.

    Unknown and read-only keys are skipped, as in a single update they
    would be refused. Returns (updated configs, skipped keys).
    """
    updated = []
    skipped = []
    errors = {}
    for key, value in entries:
        config = SystemConfig.query.filter_by(key=key).first()
        if config is None or not config.is_editable:
            skipped.append(key)
            continue
        error = check_config_value(
            value, config.value_type, config.get_validation())
        if error:
            errors[key] = error
            continue
        config.set_value(value)
        updated.append(config)
    if errors:
        db.session.rollback()
        raise ValidationError(errors)
    db.session.commit()
    logger.info(
        "Settings batch: %d updated, %d skipped", len(updated), len(skipped))
    return updated, skipped
