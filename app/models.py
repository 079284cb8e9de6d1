from app.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from sqlalchemy import CheckConstraint
import enum
import json


class UserRole(enum.Enum):
    USER = 'user'
    REPAIRMAN = 'repairman'
    CUSTOMER_SERVICE = 'customer_service'
    ADMIN = 'admin'


# Roles an admin may create through the staff registration endpoint.
STAFF_ROLES = (UserRole.ADMIN, UserRole.CUSTOMER_SERVICE, UserRole.REPAIRMAN)


class OrderStatus(enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class ServiceType(enum.Enum):
    REPAIR = 'repair'
    APPOINTMENT = 'appointment'


class AppointmentService(enum.Enum):
    CLEANING = 'cleaning'
    SCREEN_REPLACEMENT = 'screen_replacement'
    BATTERY_REPLACEMENT = 'battery_replacement'
    SYSTEM_REINSTALL = 'system_reinstall'
    SOFTWARE_INSTALL = 'software_install'


class LiquidMetal(enum.Enum):
    YES = 'yes'
    NO = 'no'
    UNCERTAIN = 'uncertain'


class Urgency(enum.Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class PaymentStatus(enum.Enum):
    UNPAID = 'unpaid'
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(enum.Enum):
    WECHAT = 'wechat'
    ALIPAY = 'alipay'
    BANK_CARD = 'bank_card'
    CASH = 'cash'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    phone = db.Column(db.String(20), unique=True, nullable=False, index=True)
    # Optional login handle; NULLs do not collide on the unique index.
    username = db.Column(
        db.String(32),
        unique=True,
        nullable=True,
        index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(50), nullable=False, default='')
    email = db.Column(db.String(120), nullable=False, default='')
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.USER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    orders = db.relationship(
        'Order',
        foreign_keys='Order.user_id',
        backref='owner',
        lazy='dynamic')
    assigned_orders = db.relationship(
        'Order',
        foreign_keys='Order.assigned_to',
        backref='repairman',
        lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.phone} role={self.role}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    # Nullable for anonymous walk-in orders.
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    device_type = db.Column(db.String(50), nullable=False)
    device_model = db.Column(db.String(100), nullable=False)
    service_type = db.Column(db.Enum(ServiceType), nullable=False)
    appointment_service = db.Column(
        db.Enum(AppointmentService), nullable=True)
    liquid_metal = db.Column(db.Enum(LiquidMetal), nullable=True)
    problem_description = db.Column(db.Text, nullable=True)
    urgency = db.Column(
        db.Enum(Urgency),
        default=Urgency.LOW,
        nullable=False)
    contact_name = db.Column(db.String(50), nullable=False)
    contact_phone = db.Column(db.String(20), nullable=False)
    appointment_time = db.Column(db.DateTime, nullable=False)

    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True)
    assigned_to = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    repair_notes = db.Column(db.Text, nullable=True)

    rating_score = db.Column(db.Integer, nullable=True)
    rating_comment = db.Column(db.Text, nullable=True)
    rated_at = db.Column(db.DateTime, nullable=True)

    # Snapshot of the price table at creation time.
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.UNPAID,
        nullable=False,
        index=True)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=True)
    payment_order_id = db.Column(
        db.String(40), unique=True, nullable=True, index=True)
    transaction_id = db.Column(db.String(100), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refund_reason = db.Column(db.String(500), nullable=True)
    refund_time = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            'rating_score IS NULL OR '
            '(rating_score >= 1 AND rating_score <= 5)',
            name='check_rating_range'),
        CheckConstraint('amount >= 0', name='check_amount_non_negative'),
    )

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., ORDER_CANCEL, PAYMENT_SUCCESS
    action = db.Column(db.String(100), nullable=False)
    # ORDER, USER
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'


class ServiceCategory(enum.Enum):
    REPAIR = 'repair'
    MAINTENANCE = 'maintenance'
    INSTALLATION = 'installation'
    CONSULTATION = 'consultation'


class PricingType(enum.Enum):
    FIXED = 'fixed'
    HOURLY = 'hourly'
    TIERED = 'tiered'
    DYNAMIC = 'dynamic'


class ConfigValueType(enum.Enum):
    STRING = 'string'
    NUMBER = 'number'
    BOOLEAN = 'boolean'
    OBJECT = 'object'
    ARRAY = 'array'


class ConfigCategory(enum.Enum):
    NOTIFICATION = 'notification'
    BUSINESS = 'business'
    SYSTEM = 'system'
    UI = 'ui'
    PAYMENT = 'payment'


def _dump_json(data):
    return json.dumps(data, ensure_ascii=False)


def _load_json(text, default):
    if text:
        return json.loads(text)
    return default


class ServiceItem(db.Model):
    """A bookable service in the catalog (cleaning, screen replacement...)."""
    __tablename__ = 'service_items'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default='')
    base_price = db.Column(db.Numeric(10, 2), nullable=False)
    # Minutes
    estimated_duration = db.Column(db.Integer, nullable=False, default=60)
    category = db.Column(
        db.Enum(ServiceCategory),
        nullable=False,
        default=ServiceCategory.REPAIR)
    required_skills_json = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    strategy_links = db.relationship(
        'PricingStrategyServiceItem',
        back_populates='service_item',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('base_price >= 0', name='check_base_price'),
    )

    @property
    def required_skills(self):
        return _load_json(self.required_skills_json, [])

    @required_skills.setter
    def required_skills(self, skills):
        self.required_skills_json = _dump_json(list(skills or []))

    def __repr__(self):
        return f'<ServiceItem {self.code}>'


class DeviceType(db.Model):
    __tablename__ = 'device_types'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    category = db.Column(db.String(50), nullable=False)
    # Comma separated
    brands = db.Column(db.String(500), nullable=False, default='')
    description = db.Column(db.Text, nullable=False, default='')
    # Comma separated
    common_issues = db.Column(db.Text, nullable=False, default='')
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    strategy_links = db.relationship(
        'PricingStrategyDeviceType',
        back_populates='device_type',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<DeviceType {self.code}>'


class PricingStrategy(db.Model):
    __tablename__ = 'pricing_strategies'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    pricing_type = db.Column(db.Enum(PricingType), nullable=False)
    # base_price, hourly_rate, urgency_multiplier, discount_rules
    rules_json = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    valid_from = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    # NULL means open ended
    valid_to = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    service_links = db.relationship(
        'PricingStrategyServiceItem',
        back_populates='strategy',
        cascade='all, delete-orphan')
    device_links = db.relationship(
        'PricingStrategyDeviceType',
        back_populates='strategy',
        cascade='all, delete-orphan')

    @property
    def service_items(self):
        return [link.service_item for link in self.service_links]

    @property
    def device_types(self):
        return [link.device_type for link in self.device_links]

    def get_rules(self):
        return _load_json(self.rules_json, {})

    def set_rules(self, rules):
        self.rules_json = _dump_json(rules)

    def __repr__(self):
        return f'<PricingStrategy {self.name} type={self.pricing_type}>'


class PricingStrategyServiceItem(db.Model):
    __tablename__ = 'pricing_strategy_service_items'

    strategy_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'pricing_strategies.id',
            ondelete='CASCADE'),
        primary_key=True)
    service_item_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'service_items.id',
            ondelete='CASCADE'),
        primary_key=True)

    strategy = db.relationship(
        'PricingStrategy', back_populates='service_links')
    service_item = db.relationship(
        'ServiceItem', back_populates='strategy_links')


class PricingStrategyDeviceType(db.Model):
    __tablename__ = 'pricing_strategy_device_types'

    strategy_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'pricing_strategies.id',
            ondelete='CASCADE'),
        primary_key=True)
    device_type_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'device_types.id',
            ondelete='CASCADE'),
        primary_key=True)

    strategy = db.relationship(
        'PricingStrategy', back_populates='device_links')
    device_type = db.relationship(
        'DeviceType', back_populates='strategy_links')


class SystemConfig(db.Model):
    __tablename__ = 'system_configs'

    id = db.Column(db.Integer, primary_key=True)
    # Dotted name, e.g. business.order.cancel_timeout
    key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    value_json = db.Column(db.Text, nullable=False)
    value_type = db.Column(db.Enum(ConfigValueType), nullable=False)
    category = db.Column(db.Enum(ConfigCategory), nullable=False)
    description = db.Column(db.String(255), nullable=False, default='')
    is_editable = db.Column(db.Boolean, default=True, nullable=False)
    # required, min, max, pattern, options
    validation_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    def get_value(self):
        return _load_json(self.value_json, None)

    def set_value(self, value):
        self.value_json = _dump_json(value)

    def get_validation(self):
        return _load_json(self.validation_json, {})

    def set_validation(self, rules):
        self.validation_json = _dump_json(rules) if rules else None

    def __repr__(self):
        return f'<SystemConfig {self.key}>'
