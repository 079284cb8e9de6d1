from datetime import datetime, timedelta
import logging

from sqlalchemy import case, func

from app.extensions import db
from app.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30


def _since(days):
    return datetime.utcnow() - timedelta(days=days)


def _rate(part, whole):
    if not whole:
        return 0.0
    return round(part * 100.0 / whole, 2)


def _avg(value):
    return round(float(value), 2) if value is not None else 0.0


def _counts(column, since):
    rows = db.session.query(column, func.count(Order.id)).filter(
        Order.created_at >= since
    ).group_by(column).order_by(func.count(Order.id).desc()).all()
    return [
        {'key': key.value if key is not None else None, 'count': count}
        for key, count in rows
    ]


def order_stats(days=DEFAULT_PERIOD_DAYS):
    since = _since(days)
    day = func.date(Order.created_at)
    daily = db.session.query(day, func.count(Order.id)).filter(
        Order.created_at >= since
    ).group_by(day).order_by(day).all()

    total = Order.query.filter(Order.created_at >= since).count()
    completed = Order.query.filter(
        Order.created_at >= since,
        Order.status == OrderStatus.COMPLETED,
    ).count()
    return {
        'by_status': _counts(Order.status, since),
        'by_service_type': _counts(Order.service_type, since),
        'by_urgency': _counts(Order.urgency, since),
        'daily_trend': [
            {'date': str(d), 'count': count} for d, count in daily
        ],
        'summary': {
            'total_orders': total,
            'completed_orders': completed,
            'completion_rate': _rate(completed, total),
        },
    }


def _rating_distribution(since):
    rows = db.session.query(
        Order.rating_score, func.count(Order.id)
    ).filter(
        Order.rating_score.isnot(None),
        Order.created_at >= since,
    ).group_by(Order.rating_score).order_by(Order.rating_score).all()
    distribution = {score: 0 for score in range(1, 6)}
    for score, count in rows:
        distribution[score] = count
    return [
        {'score': score, 'count': count}
        for score, count in distribution.items()
    ]


def repairman_stats(days=DEFAULT_PERIOD_DAYS):
    since = _since(days)
    completed = func.sum(
        case((Order.status == OrderStatus.COMPLETED, 1), else_=0))
    in_progress = func.sum(
        case((Order.status == OrderStatus.IN_PROGRESS, 1), else_=0))
    rows = db.session.query(
        User.id,
        User.name,
        User.phone,
        func.count(Order.id),
        completed,
        in_progress,
        func.avg(Order.rating_score),
    ).join(
        Order, Order.assigned_to == User.id
    ).filter(
        User.role == UserRole.REPAIRMAN,
        Order.created_at >= since,
    ).group_by(
        User.id, User.name, User.phone
    ).order_by(func.count(Order.id).desc()).all()

    workload = []
    for user_id, name, phone, total, done, active, avg_rating in rows:
        workload.append({
            'repairman_id': user_id,
            'name': name,
            'phone': phone,
            'total_orders': total,
            'completed_orders': int(done or 0),
            'in_progress_orders': int(active or 0),
            'avg_rating': _avg(avg_rating),
            'completion_rate': _rate(int(done or 0), total),
        })
    return {
        'workload': workload,
        'rating_distribution': _rating_distribution(since),
    }


def satisfaction_stats(days=DEFAULT_PERIOD_DAYS):
    since = _since(days)
    rated = [Order.rating_score.isnot(None), Order.created_at >= since]
    avg_rating, total = db.session.query(
        func.avg(Order.rating_score), func.count(Order.id)
    ).filter(*rated).one()
    by_service = db.session.query(
        Order.service_type,
        func.avg(Order.rating_score),
        func.count(Order.id),
    ).filter(*rated).group_by(Order.service_type).all()
    return {
        'rating_distribution': _rating_distribution(since),
        'avg_rating': _avg(avg_rating),
        'total_ratings': total,
        'by_service_type': [
            {
                'service_type': service_type.value,
                'avg_rating': _avg(avg),
                'count': count,
            }
            for service_type, avg, count in by_service
        ],
    }


def revenue_stats(days=DEFAULT_PERIOD_DAYS):
    since = _since(days)
    paid = [
        Order.payment_status == PaymentStatus.PAID,
        Order.created_at >= since,
    ]
    revenue, paid_orders, avg_value = db.session.query(
        func.coalesce(func.sum(Order.amount), 0),
        func.count(Order.id),
        func.avg(Order.amount),
    ).filter(*paid).one()
    refunded = db.session.query(
        func.coalesce(func.sum(Order.refund_amount), 0)
    ).filter(
        Order.payment_status == PaymentStatus.REFUNDED,
        Order.created_at >= since,
    ).scalar()
    by_method = db.session.query(
        Order.payment_method,
        func.coalesce(func.sum(Order.amount), 0),
        func.count(Order.id),
    ).filter(*paid).group_by(Order.payment_method).all()
    by_service = db.session.query(
        Order.service_type,
        func.coalesce(func.sum(Order.amount), 0),
        func.count(Order.id),
    ).filter(*paid).group_by(Order.service_type).all()
    return {
        'total_revenue': float(revenue or 0),
        'paid_orders': paid_orders,
        'avg_order_value': _avg(avg_value),
        'refunded_total': float(refunded or 0),
        'by_payment_method': [
            {
                'payment_method': method.value if method else None,
                'revenue': float(total or 0),
                'count': count,
            }
            for method, total, count in by_method
        ],
        'by_service_type': [
            {
                'service_type': service_type.value,
                'revenue': float(total or 0),
                'count': count,
            }
            for service_type, total, count in by_service
        ],
    }


def dashboard_stats():
    today = datetime.utcnow().replace(
        hour=0, minute=0, second=0, microsecond=0)
    open_statuses = (
        OrderStatus.PENDING,
        OrderStatus.CONFIRMED,
        OrderStatus.IN_PROGRESS,
    )
    today_revenue = db.session.query(
        func.coalesce(func.sum(Order.amount), 0)
    ).filter(
        Order.payment_status == PaymentStatus.PAID,
        Order.paid_at >= today,
    ).scalar()
    return {
        'total_orders': Order.query.count(),
        'today_orders': Order.query.filter(Order.created_at >= today).count(),
        'pending_orders': Order.query.filter(
            Order.status == OrderStatus.PENDING).count(),
        'open_orders': Order.query.filter(
            Order.status.in_(open_statuses)).count(),
        'unassigned_orders': Order.query.filter(
            Order.assigned_to.is_(None),
            Order.status.in_(open_statuses)).count(),
        'total_users': User.query.filter_by(role=UserRole.USER).count(),
        'active_repairmen': User.query.filter_by(
            role=UserRole.REPAIRMAN, is_active=True).count(),
        'today_revenue': float(today_revenue or 0),
    }
