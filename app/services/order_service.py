"""Order lifecycle engine.

Status moves along ``pending -> confirmed -> in_progress -> completed``;
``cancelled`` is reachable from ``pending`` (and through a full refund).
Completed and cancelled orders are terminal. An assigned order is simply
``in_progress`` with ``assigned_to`` set. When a repairman is demoted,
deactivated or deleted, their open orders drop back to ``confirmed``.

Every mutation is one conditional UPDATE keyed on the expected prior state,
so concurrent staff actions cannot overwrite each other: the loser updates
zero rows and gets InvalidTransition. Notifications go out only after the
commit, through the injected dispatcher.
"""
from datetime import datetime
import logging

from flask import current_app

from app.extensions import db
from app.errors import (
    AlreadyRated,
    Forbidden,
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from app.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    User,
    UserRole,
    TERMINAL_STATUSES,
)
from app.services.payment_service import (
    generate_payment_order_id,
    get_service_price,
    simulate_gateway_response,
)
from app.utils import paginate_query
from app.validation import validate_order_payload

logger = logging.getLogger(__name__)

# Statuses a repairman may set on an order assigned to them.
REPAIRMAN_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.IN_PROGRESS,
    OrderStatus.COMPLETED,
)
ASSIGNABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
ORDER_DESK_ROLES = (UserRole.ADMIN, UserRole.CUSTOMER_SERVICE)


def _role_of(actor):
    if actor is None or not getattr(actor, 'is_authenticated', False):
        return None
    return actor.role


def _require_role(actor, roles):
    role = _role_of(actor)
    if role is None:
        raise Unauthenticated()
    if role not in roles:
        raise Forbidden()


class OrderLifecycle:

    def __init__(self, dispatcher, strict_ownership=True,
                 allow_anonymous=False):
        self.dispatcher = dispatcher
        self.strict_ownership = strict_ownership
        self.allow_anonymous = allow_anonymous

    # -- helpers ---------------------------------------------------------

    def _load(self, order_id):
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFound('Order not found')
        return order

    def _conditional_update(self, order_id, conditions, values):
        """UPDATE orders SET values WHERE id = order_id AND conditions.

        Returns the number of rows changed (0 or 1). Does not commit.
        """
        values.setdefault(Order.updated_at, datetime.utcnow())
        return Order.query.filter(Order.id == order_id, *conditions).update(
            values, synchronize_session=False)

    def _reject(self, order_id, error):
        """Explain a zero-row conditional update."""
        db.session.rollback()
        if db.session.get(Order, order_id) is None:
            raise NotFound('Order not found')
        raise error

    def _commit_and_reload(self, order_id):
        db.session.commit()
        return db.session.get(Order, order_id)

    def _check_owner(self, actor, order):
        if order.user_id is None and not self.strict_ownership:
            return
        if _role_of(actor) is None:
            raise Unauthenticated()
        if order.user_id != actor.id:
            # Other people's orders are invisible, not forbidden.
            raise NotFound('Order not found')

    def can_view(self, actor, order):
        role = _role_of(actor)
        if role is None:
            return order.user_id is None and not self.strict_ownership
        if role in ORDER_DESK_ROLES:
            return True
        if role == UserRole.REPAIRMAN:
            return order.assigned_to == actor.id
        return order.user_id == actor.id

    # -- queries ---------------------------------------------------------

    def get_order(self, actor, order_id):
        order = db.session.get(Order, order_id)
        if order is None or not self.can_view(actor, order):
            raise NotFound('Order not found')
        return order

    def list_orders(self, actor, status=None, assigned_to=None, page=1,
                    per_page=20):
        role = _role_of(actor)
        if role is None:
            raise Unauthenticated()
        query = Order.query
        if role == UserRole.USER:
            query = query.filter(Order.user_id == actor.id)
        elif role == UserRole.REPAIRMAN:
            query = query.filter(Order.assigned_to == actor.id)
        elif assigned_to is not None:
            query = query.filter(Order.assigned_to == assigned_to)
        if status is not None:
            query = query.filter(Order.status == status)
        query = query.order_by(Order.created_at.desc(), Order.id.desc())
        return paginate_query(query, page=page, per_page=per_page)

    def list_repairmen(self):
        return User.query.filter_by(
            role=UserRole.REPAIRMAN, is_active=True
        ).order_by(User.id).all()

    # -- lifecycle -------------------------------------------------------

    def create_order(self, actor, data):
        owner_id = None
        if _role_of(actor) is not None:
            owner_id = actor.id
        elif not self.allow_anonymous:
            raise Unauthenticated()

        fields = validate_order_payload(data)
        amount = get_service_price(
            fields['service_type'], fields['appointment_service'])
        order = Order(
            user_id=owner_id,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            amount=amount,
            **fields
        )
        db.session.add(order)
        db.session.commit()
        logger.info(
            "Order %s created by %s (amount=%s)",
            order.id, owner_id or 'anonymous', amount)
        self.dispatcher.new_order(order)
        return order

    def cancel_order(self, actor, order_id):
        order = self._load(order_id)
        self._check_owner(actor, order)
        rows = self._conditional_update(
            order_id,
            [Order.status == OrderStatus.PENDING],
            {Order.status: OrderStatus.CANCELLED},
        )
        if not rows:
            self._reject(order_id, InvalidTransition(
                'Only pending orders can be cancelled'))
        order = self._commit_and_reload(order_id)
        logger.info("Order %s cancelled", order_id)
        self.dispatcher.order_status_changed(order)
        return order

    def confirm_order(self, actor, order_id):
        _require_role(actor, ORDER_DESK_ROLES)
        self._load(order_id)
        rows = self._conditional_update(
            order_id,
            [Order.status == OrderStatus.PENDING],
            {Order.status: OrderStatus.CONFIRMED},
        )
        if not rows:
            self._reject(order_id, InvalidTransition(
                'Only pending orders can be confirmed'))
        order = self._commit_and_reload(order_id)
        logger.info("Order %s confirmed by %s", order_id, actor.id)
        self.dispatcher.order_status_changed(order)
        return order

    def assign_order(self, actor, order_id, repairman_id):
        _require_role(actor, ORDER_DESK_ROLES)
        repairman = db.session.get(User, repairman_id)
        if (repairman is None or repairman.role != UserRole.REPAIRMAN
                or not repairman.is_active):
            raise NotFound('Repairman not found')
        self._load(order_id)
        rows = self._conditional_update(
            order_id,
            [
                Order.status.in_(ASSIGNABLE_STATUSES),
                Order.assigned_to.is_(None),
            ],
            {
                Order.assigned_to: repairman.id,
                Order.status: OrderStatus.IN_PROGRESS,
            },
        )
        if not rows:
            self._reject(order_id, InvalidTransition(
                'Order is already assigned or can no longer be assigned'))
        order = self._commit_and_reload(order_id)
        logger.info(
            "Order %s assigned to repairman %s by %s",
            order_id, repairman.id, actor.id)
        self.dispatcher.order_assigned(order)
        self.dispatcher.order_status_changed(order)
        return order

    def release_repairman_orders(self, repairman_id):
        """Unassign the open orders of a repairman who leaves the pool.

        Released orders go back to ``confirmed`` so the order desk can
        dispatch them again. Does not commit: the caller commits together
        with its own change, then passes the ids to ``notify_released``.
        """
        open_orders = [
            Order.assigned_to == repairman_id,
            Order.status.notin_(TERMINAL_STATUSES),
        ]
        order_ids = [
            order_id for (order_id,) in
            db.session.query(Order.id).filter(*open_orders).all()
        ]
        if order_ids:
            Order.query.filter(Order.id.in_(order_ids), *open_orders).update(
                {
                    Order.assigned_to: None,
                    Order.status: OrderStatus.CONFIRMED,
                    Order.updated_at: datetime.utcnow(),
                },
                synchronize_session=False)
            logger.info(
                "Released %d open orders of repairman %s: %s",
                len(order_ids), repairman_id, order_ids)
        return order_ids

    def notify_released(self, order_ids):
        for order_id in order_ids:
            order = db.session.get(Order, order_id)
            if order is not None and order.assigned_to is None:
                self.dispatcher.order_status_changed(order)

    def update_order_status(self, actor, order_id, new_status, notes=None):
        order = self._load(order_id)
        if (_role_of(actor) != UserRole.REPAIRMAN
                or order.assigned_to != actor.id):
            raise Forbidden('Only the assigned repairman can update this order')
        if new_status not in REPAIRMAN_STATUSES:
            raise InvalidTransition(
                f'Repairmen cannot set status to {new_status.value}')
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f'Order is already {order.status.value}')

        current = order.status
        values = {}
        if notes is not None:
            values[Order.repair_notes] = notes
        if new_status != current:
            values[Order.status] = new_status
            if new_status == OrderStatus.COMPLETED:
                values[Order.completed_at] = datetime.utcnow()
        if not values:
            return order

        rows = self._conditional_update(
            order_id,
            [Order.status == current, Order.assigned_to == actor.id],
            values,
        )
        if not rows:
            self._reject(order_id, InvalidTransition(
                'Order status changed, reload and try again'))
        order = self._commit_and_reload(order_id)
        if new_status != current:
            logger.info(
                "Order %s status %s -> %s by repairman %s",
                order_id, current.value, new_status.value, actor.id)
            self.dispatcher.order_status_changed(order)
        return order

    def rate_order(self, actor, order_id, score, comment=None):
        if isinstance(score, bool) or not isinstance(score, int) \
                or not 1 <= score <= 5:
            raise ValidationError(
                {'score': 'Score must be an integer between 1 and 5'})
        order = self._load(order_id)
        self._check_owner(actor, order)
        if order.rating_score is not None:
            raise AlreadyRated()
        if order.status != OrderStatus.COMPLETED:
            raise InvalidTransition('Only completed orders can be rated')
        rows = self._conditional_update(
            order_id,
            [
                Order.status == OrderStatus.COMPLETED,
                Order.rating_score.is_(None),
            ],
            {
                Order.rating_score: score,
                Order.rating_comment: comment,
                Order.rated_at: datetime.utcnow(),
            },
        )
        if not rows:
            self._reject(order_id, AlreadyRated())
        order = self._commit_and_reload(order_id)
        logger.info("Order %s rated %s", order_id, score)
        return order

    # -- payment ---------------------------------------------------------

    def initiate_payment(self, actor, order_id, method):
        order = self._load(order_id)
        if _role_of(actor) not in ORDER_DESK_ROLES:
            self._check_owner(actor, order)
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition('Cancelled orders cannot be paid')
        if order.payment_status != PaymentStatus.UNPAID:
            raise InvalidState(
                f'Payment is already {order.payment_status.value}')

        reference = generate_payment_order_id()
        rows = self._conditional_update(
            order_id,
            [
                Order.payment_status == PaymentStatus.UNPAID,
                Order.status != OrderStatus.CANCELLED,
            ],
            {
                Order.payment_status: PaymentStatus.PENDING,
                Order.payment_method: method,
                Order.payment_order_id: reference,
            },
        )
        if not rows:
            self._reject(order_id, InvalidState(
                'Payment has already been initiated'))
        order = self._commit_and_reload(order_id)
        logger.info(
            "Payment %s initiated for order %s via %s",
            reference, order_id, method.value)
        return order, simulate_gateway_response(reference, method)

    def _load_by_reference(self, payment_order_ref):
        order = Order.query.filter_by(
            payment_order_id=payment_order_ref).first()
        if order is None:
            raise NotFound('Payment order not found')
        return order

    def mark_paid(self, payment_order_ref, transaction_ref=None):
        order = self._load_by_reference(payment_order_ref)
        order_id = order.id
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidState(
                f'Payment is {order.payment_status.value}, not pending')

        rows = self._conditional_update(
            order_id,
            [Order.payment_status == PaymentStatus.PENDING],
            {
                Order.payment_status: PaymentStatus.PAID,
                Order.paid_at: datetime.utcnow(),
                Order.transaction_id: transaction_ref,
            },
        )
        if not rows:
            self._reject(order_id, InvalidState('Payment is not pending'))
        # Same transaction: a paid pending order starts being worked on.
        moved = self._conditional_update(
            order_id,
            [Order.status == OrderStatus.PENDING],
            {Order.status: OrderStatus.IN_PROGRESS},
        )
        order = self._commit_and_reload(order_id)
        logger.info("Payment %s succeeded for order %s",
                    payment_order_ref, order_id)
        self.dispatcher.payment_succeeded(order)
        if moved:
            self.dispatcher.order_status_changed(order)
        return order

    def mark_failed(self, payment_order_ref, reason=None):
        order = self._load_by_reference(payment_order_ref)
        order_id = order.id
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidState(
                f'Payment is {order.payment_status.value}, not pending')
        rows = self._conditional_update(
            order_id,
            [Order.payment_status == PaymentStatus.PENDING],
            {Order.payment_status: PaymentStatus.FAILED},
        )
        if not rows:
            self._reject(order_id, InvalidState('Payment is not pending'))
        order = self._commit_and_reload(order_id)
        logger.warning("Payment %s failed for order %s: %s",
                       payment_order_ref, order_id, reason)
        self.dispatcher.payment_failed(order, reason)
        return order

    def refund(self, actor, order_id, amount, reason=None):
        _require_role(actor, ORDER_DESK_ROLES)
        order = self._load(order_id)
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidState('Only paid orders can be refunded')
        if amount is None or amount <= 0:
            raise InvalidAmount('Refund amount must be positive')
        if amount > order.amount:
            raise InvalidAmount('Refund amount exceeds the order amount')

        values = {
            Order.refund_amount: amount,
            Order.refund_reason: reason,
            Order.refund_time: datetime.utcnow(),
            Order.payment_status: PaymentStatus.REFUNDED,
        }
        full_refund = amount == order.amount
        if full_refund:
            values[Order.status] = OrderStatus.CANCELLED
        rows = self._conditional_update(
            order_id,
            [Order.payment_status == PaymentStatus.PAID],
            values,
        )
        if not rows:
            self._reject(order_id, InvalidState(
                'Only paid orders can be refunded'))
        order = self._commit_and_reload(order_id)
        logger.info(
            "Order %s refunded %s (%s) by %s",
            order_id, amount, 'full' if full_refund else 'partial', actor.id)
        self.dispatcher.refund_completed(order, operator_id=actor.id)
        if full_refund:
            self.dispatcher.order_status_changed(order)
        return order


def get_order_service():
    return current_app.extensions['order_lifecycle']
