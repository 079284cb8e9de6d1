from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from app.errors import ValidationError
from app.middleware import capability_required
from app.models import ConfigCategory
from app.services import config_service
from app.services.audit_service import log_audit
from app.utils import (
    json_body,
    parse_enum,
    serialize_device_type,
    serialize_pricing_strategy,
    serialize_service_item,
    serialize_system_config,
)
from app.validation import (
    validate_config_batch,
    validate_device_type,
    validate_price_quote,
    validate_pricing_strategy,
    validate_service_item,
    validate_system_config,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('config', __name__)


def _audit(action, target_type, target_id=None, payload=None):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload
    )


def _active_only():
    return request.args.get('active', '').lower() == 'true'


# Service types

@bp.route('/service-types', methods=['GET'])
@login_required
def list_service_types():
    items = config_service.list_service_items(active_only=_active_only())
    return jsonify({
        'ok': True,
        'data': [serialize_service_item(i) for i in items],
    })


@bp.route('/service-types/<int:item_id>', methods=['GET'])
@login_required
def get_service_type(item_id):
    item = config_service.get_service_item(item_id)
    return jsonify({'ok': True, 'data': serialize_service_item(item)})


@bp.route('/service-types', methods=['POST'])
@capability_required('config.manage')
def create_service_type():
    item = config_service.create_service_item(
        validate_service_item(json_body()))
    _audit('CONFIG_SERVICE_TYPE_CREATE', 'SERVICE_TYPE', item.id,
           {'code': item.code})
    return jsonify({'ok': True, 'data': serialize_service_item(item)}), 201


@bp.route('/service-types/<int:item_id>', methods=['PUT', 'PATCH'])
@capability_required('config.manage')
def update_service_type(item_id):
    fields = validate_service_item(json_body(), partial=True)
    item = config_service.update_service_item(item_id, fields)
    _audit('CONFIG_SERVICE_TYPE_UPDATE', 'SERVICE_TYPE', item.id,
           {'fields': sorted(fields)})
    return jsonify({'ok': True, 'data': serialize_service_item(item)})


@bp.route('/service-types/<int:item_id>', methods=['DELETE'])
@capability_required('config.manage')
def delete_service_type(item_id):
    config_service.delete_service_item(item_id)
    _audit('CONFIG_SERVICE_TYPE_DELETE', 'SERVICE_TYPE', item_id)
    return jsonify({'ok': True, 'message': 'Service type deleted'})


# Device types

@bp.route('/device-types', methods=['GET'])
@login_required
def list_device_types():
    device_types = config_service.list_device_types(
        active_only=_active_only())
    return jsonify({
        'ok': True,
        'data': [serialize_device_type(d) for d in device_types],
    })


@bp.route('/device-types/<int:device_type_id>', methods=['GET'])
@login_required
def get_device_type(device_type_id):
    device_type = config_service.get_device_type(device_type_id)
    return jsonify({'ok': True, 'data': serialize_device_type(device_type)})


@bp.route('/device-types', methods=['POST'])
@capability_required('config.manage')
def create_device_type():
    device_type = config_service.create_device_type(
        validate_device_type(json_body()))
    _audit('CONFIG_DEVICE_TYPE_CREATE', 'DEVICE_TYPE', device_type.id,
           {'code': device_type.code})
    return jsonify({
        'ok': True,
        'data': serialize_device_type(device_type),
    }), 201


@bp.route('/device-types/<int:device_type_id>', methods=['PUT', 'PATCH'])
@capability_required('config.manage')
def update_device_type(device_type_id):
    fields = validate_device_type(json_body(), partial=True)
    device_type = config_service.update_device_type(device_type_id, fields)
    _audit('CONFIG_DEVICE_TYPE_UPDATE', 'DEVICE_TYPE', device_type.id,
           {'fields': sorted(fields)})
    return jsonify({'ok': True, 'data': serialize_device_type(device_type)})


@bp.route('/device-types/<int:device_type_id>', methods=['DELETE'])
@capability_required('config.manage')
def delete_device_type(device_type_id):
    config_service.delete_device_type(device_type_id)
    _audit('CONFIG_DEVICE_TYPE_DELETE', 'DEVICE_TYPE', device_type_id)
    return jsonify({'ok': True, 'message': 'Device type deleted'})


# Pricing strategies

@bp.route('/pricing-strategies', methods=['GET'])
@login_required
def list_pricing_strategies():
    strategies = config_service.list_pricing_strategies()
    return jsonify({
        'ok': True,
        'data': [serialize_pricing_strategy(s) for s in strategies],
    })


@bp.route('/pricing-strategies/<int:strategy_id>', methods=['GET'])
@login_required
def get_pricing_strategy(strategy_id):
    strategy = config_service.get_pricing_strategy(strategy_id)
    return jsonify({'ok': True, 'data': serialize_pricing_strategy(strategy)})


@bp.route('/pricing-strategies', methods=['POST'])
@capability_required('config.manage')
def create_pricing_strategy():
    strategy = config_service.create_pricing_strategy(
        validate_pricing_strategy(json_body()))
    _audit('CONFIG_PRICING_CREATE', 'PRICING_STRATEGY', strategy.id,
           {'name': strategy.name})
    return jsonify({
        'ok': True,
        'data': serialize_pricing_strategy(strategy),
    }), 201


@bp.route('/pricing-strategies/<int:strategy_id>', methods=['PUT', 'PATCH'])
@capability_required('config.manage')
def update_pricing_strategy(strategy_id):
    fields = validate_pricing_strategy(json_body(), partial=True)
    strategy = config_service.update_pricing_strategy(strategy_id, fields)
    _audit('CONFIG_PRICING_UPDATE', 'PRICING_STRATEGY', strategy.id,
           {'fields': sorted(fields)})
    return jsonify({'ok': True, 'data': serialize_pricing_strategy(strategy)})


@bp.route('/pricing-strategies/<int:strategy_id>', methods=['DELETE'])
@capability_required('config.manage')
def delete_pricing_strategy(strategy_id):
    config_service.delete_pricing_strategy(strategy_id)
    _audit('CONFIG_PRICING_DELETE', 'PRICING_STRATEGY', strategy_id)
    return jsonify({'ok': True, 'message': 'Pricing strategy deleted'})


@bp.route('/pricing-strategies/calculate', methods=['POST'])
@login_required
def calculate_price():
    quote = validate_price_quote(json_body())
    result = config_service.calculate_price(
        service_item_id=quote['service_type_id'],
        device_type_id=quote['device_type_id'],
        urgency=quote['urgency'],
        duration=quote['duration'],
    )
    return jsonify({'ok': True, 'data': result})


# System settings

@bp.route('/system-configs', methods=['GET'])
@capability_required('config.manage')
def list_system_configs():
    category = None
    raw_category = request.args.get('category')
    if raw_category:
        category = parse_enum(ConfigCategory, raw_category)
        if category is None:
            raise ValidationError({'category': 'Unknown category'})
    configs = config_service.list_system_configs(category)
    return jsonify({
        'ok': True,
        'data': [serialize_system_config(c) for c in configs],
    })


@bp.route('/system-configs/<key>', methods=['GET'])
@capability_required('config.manage')
def get_system_config(key):
    config = config_service.get_system_config(key)
    return jsonify({'ok': True, 'data': serialize_system_config(config)})


@bp.route('/system-configs', methods=['POST'])
@capability_required('config.manage')
def create_system_config():
    config = config_service.create_system_config(
        validate_system_config(json_body()))
    _audit('CONFIG_SETTING_CREATE', 'SYSTEM_CONFIG', config.id,
           {'key': config.key, 'value': config.get_value()})
    return jsonify({'ok': True, 'data': serialize_system_config(config)}), 201


@bp.route('/system-configs/<key>', methods=['PUT', 'PATCH'])
@capability_required('config.manage')
def update_system_config(key):
    config = config_service.update_system_config(
        key, validate_system_config(json_body(), partial=True))
    _audit('CONFIG_SETTING_UPDATE', 'SYSTEM_CONFIG', config.id,
           {'key': key, 'value': config.get_value()})
    return jsonify({'ok': True, 'data': serialize_system_config(config)})


@bp.route('/system-configs/<key>', methods=['DELETE'])
@capability_required('config.manage')
def delete_system_config(key):
    config_service.delete_system_config(key)
    _audit('CONFIG_SETTING_DELETE', 'SYSTEM_CONFIG', payload={'key': key})
    return jsonify({'ok': True, 'message': 'Setting deleted'})


@bp.route('/system-configs/batch', methods=['POST'])
@capability_required('config.manage')
def batch_update_system_configs():
    entries = validate_config_batch(json_body())
    updated, skipped = config_service.batch_update_system_configs(entries)
    _audit('CONFIG_SETTING_BATCH', 'SYSTEM_CONFIG', payload={
        'updated': [c.key for c in updated],
        'skipped': skipped,
    })
    return jsonify({
        'ok': True,
        'data': [serialize_system_config(c) for c in updated],
        'skipped': skipped,
    })
