# storefront/crud/order.py
from sqlalchemy.orm import Session
from typing import Optional, List
from storefront.models.order import Order, NON_TERMINAL_STATUSES

def get_order(db: Session, order_id: int) -> Optional[Order]:
    """Получить заказ по ID"""
    return db.query(Order).filter(Order.id == order_id).first()

def get_orders_to_poll(db: Session, limit: int = 50) -> List[Order]:
    """Незавершенные заказы, связанные с маркетплейсом"""
    return (
        db.query(Order)
        .filter(
            Order.status.in_(NON_TERMINAL_STATUSES),
            Order.remote_order_id.isnot(None)
        )
        .order_by(Order.id)
        .limit(limit)
        .all()
    )
