# orderbot/ordering/recommendations.py
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from ..models import MenuItem, Order, OrderItem, OrderStatus

# Orders in these states are not counted as sales.
_NOT_SOLD = (OrderStatus.DRAFT.value, OrderStatus.CANCELLED.value)

_TOTAL_SOLD = func.sum(OrderItem.quantity).label("total_sold")


def _sales(db: Session) -> Query:
    return (
        db.query(MenuItem, _TOTAL_SOLD)
        .join(OrderItem, OrderItem.menu_item_id == MenuItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status.notin_(_NOT_SOLD), MenuItem.is_available.is_(True))
        .group_by(MenuItem.id)
        .order_by(_TOTAL_SOLD.desc(), MenuItem.id)
    )


def top_selling_items(db: Session, limit: int = 3) -> List[MenuItem]:
    """Available menu items ranked by quantity sold across all customers."""
    return [item for item, _ in _sales(db).limit(limit).all()]


def favourite_item(db: Session, user_id: int) -> Optional[MenuItem]:
    row = _sales(db).filter(Order.user_id == user_id).first()
    return row[0] if row is not None else None
