"""Fan-out of order lifecycle events to live subscribers.

Delivery is fire-and-forget: nothing is persisted, retried or ordered, and a
failing channel never propagates into the request that triggered the event.
Rooms are ``user_<id>`` plus one room per staff role.
"""
from datetime import datetime, timezone
import logging

from app.models import UserRole
from app.utils import status_label

logger = logging.getLogger(__name__)

EVENT_NAME = 'notification'

ORDER_STATUS_CHANGE = 'order_status_change'
ORDER_ASSIGNMENT = 'order_assignment'
NEW_ORDER = 'new_order'
SYSTEM_MESSAGE = 'system_message'
PAYMENT_SUCCESS = 'payment_success'
PAYMENT_FAILED = 'payment_failed'
NEW_PAID_ORDER = 'new_paid_order'
REFUND_COMPLETED = 'refund_completed'

ADMIN_ROOM = UserRole.ADMIN.value
CUSTOMER_SERVICE_ROOM = UserRole.CUSTOMER_SERVICE.value
REPAIRMAN_ROOM = UserRole.REPAIRMAN.value
ROLE_ROOMS = (
    UserRole.USER.value,
    REPAIRMAN_ROOM,
    CUSTOMER_SERVICE_ROOM,
    ADMIN_ROOM,
)


def user_room(user_id):
    return f'user_{user_id}'


def build_event(event_type, message, order_id=None, **data):
    event = {
        'type': event_type,
        'message': message,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }
    if order_id is not None:
        event['orderId'] = order_id
    event.update(data)
    return event


def _order_brief(order):
    return {
        'deviceType': order.device_type,
        'deviceModel': order.device_model,
        'problemDescription': order.problem_description,
        'contactName': order.contact_name,
        'urgency': order.urgency.value,
    }


class SocketIOChannel:
    """Emits to Socket.IO rooms; ``room=None`` broadcasts to every client."""

    def __init__(self, socketio, event_name=EVENT_NAME):
        self.socketio = socketio
        self.event_name = event_name

    def emit(self, room, event):
        if room is None:
            self.socketio.emit(self.event_name, event)
        else:
            self.socketio.emit(self.event_name, event, to=room)


class MemoryChannel:
    """Keeps every delivery in a list. Used by tests and local runs."""

    def __init__(self):
        self.deliveries = []

    def emit(self, room, event):
        self.deliveries.append((room, event))

    def events_for(self, room):
        return [event for r, event in self.deliveries if r == room]

    def types_for(self, room):
        return [event['type'] for event in self.events_for(room)]

    def clear(self):
        self.deliveries.clear()


class NotificationDispatcher:

    def __init__(self, channel):
        self.channel = channel

    def publish(self, event, rooms):
        """Deliver ``event`` to each room once. Never raises."""
        delivered = 0
        for room in dict.fromkeys(rooms):
            try:
                self.channel.emit(room, event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Notification %s to %s failed: %s",
                    event.get('type'), room, e)
        logger.debug(
            "Notification %s delivered to %d room(s)",
            event.get('type'), delivered)
        return delivered

    def order_status_changed(self, order):
        event = build_event(
            ORDER_STATUS_CHANGE,
            f'订单 {order.id} 状态已更新为: {status_label(order.status)}',
            order_id=order.id,
            newStatus=order.status.value,
        )
        rooms = []
        if order.user_id:
            rooms.append(user_room(order.user_id))
        if order.assigned_to:
            rooms.append(user_room(order.assigned_to))
        rooms.extend([CUSTOMER_SERVICE_ROOM, ADMIN_ROOM])
        return self.publish(event, rooms)

    def order_assigned(self, order):
        event = build_event(
            ORDER_ASSIGNMENT,
            f'您有新的维修订单: {order.device_type} - '
            f'{order.problem_description or ""}',
            order_id=order.id,
            repairmanId=order.assigned_to,
            orderDetails=_order_brief(order),
        )
        return self.publish(
            event, [user_room(order.assigned_to), REPAIRMAN_ROOM])

    def new_order(self, order):
        event = build_event(
            NEW_ORDER,
            f'新订单创建: {order.device_type} - '
            f'{order.problem_description or ""}',
            order_id=order.id,
            orderDetails=_order_brief(order),
        )
        return self.publish(event, [CUSTOMER_SERVICE_ROOM, ADMIN_ROOM])

    def payment_succeeded(self, order):
        delivered = 0
        if order.user_id:
            delivered += self.publish(build_event(
                PAYMENT_SUCCESS,
                f'订单 {order.id} 支付成功',
                order_id=order.id,
                amount=float(order.amount),
                paymentTime=order.paid_at.isoformat() if order.paid_at else None,
            ), [user_room(order.user_id)])
        delivered += self.publish(build_event(
            NEW_PAID_ORDER,
            f'新的已支付订单: {order.id}',
            order_id=order.id,
            deviceType=order.device_type,
            amount=float(order.amount),
            contactName=order.contact_name,
        ), [ADMIN_ROOM, CUSTOMER_SERVICE_ROOM])
        return delivered

    def payment_failed(self, order, reason=None):
        if not order.user_id:
            return 0
        event = build_event(
            PAYMENT_FAILED,
            f'订单 {order.id} 支付失败',
            order_id=order.id,
            reason=reason or '支付失败，请重试',
        )
        return self.publish(event, [user_room(order.user_id)])

    def refund_completed(self, order, operator_id=None):
        event = build_event(
            REFUND_COMPLETED,
            f'订单 {order.id} 退款完成',
            order_id=order.id,
            refundAmount=float(order.refund_amount),
            refundTime=(
                order.refund_time.isoformat() if order.refund_time else None
            ),
            operatorId=operator_id,
        )
        rooms = []
        if order.user_id:
            rooms.append(user_room(order.user_id))
        rooms.extend([ADMIN_ROOM, CUSTOMER_SERVICE_ROOM])
        return self.publish(event, rooms)

    def system_message(self, target_role, message, data=None):
        """Broadcast to one role room, or to everyone when target is 'all'."""
        event = build_event(SYSTEM_MESSAGE, message, data=data or {})
        rooms = [None] if target_role == 'all' else [target_role]
        logger.info("System message sent to %s: %s", target_role, message)
        return self.publish(event, rooms)


def build_dispatcher(app, socketio=None):
    backend = app.config.get('NOTIFICATION_BACKEND', 'socketio')
    if backend == 'memory' or socketio is None:
        channel = MemoryChannel()
    else:
        channel = SocketIOChannel(socketio)
    logger.info("Notification backend: %s", type(channel).__name__)
    return NotificationDispatcher(channel)
