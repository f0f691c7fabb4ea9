# orderbot/ordering/orders.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from ..db import utcnow
from ..errors import InvalidStatusTransition
from ..models import ADDRESS_NOT_PROVIDED, Order, OrderStatus
from .cart import CartLine, merge_line
from .menu import Catalog
from .pricing import current_prices, quote

logger = logging.getLogger(__name__)

# Allowed status moves. Anything not listed is rejected.
STATUS_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in STATUS_TRANSITIONS.get(current, frozenset())


@dataclass
class OrderItemView:
    menu_item_id: int
    name: str
    quantity: int
    notes: str
    price: float

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.price, 2)


@dataclass
class OrderView:
    """Read-time projection of an order, priced from the current catalog."""

    order_id: int
    status: OrderStatus
    customer_name: str
    phone_number: str
    delivery_address: str
    notes: str
    created_at: datetime
    items: List[OrderItemView] = field(default_factory=list)
    subtotal: float = 0.0
    delivery_fee: float = 0.0

    @property
    def total(self) -> float:
        return round(self.subtotal + self.delivery_fee, 2)

    def as_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "customer_name": self.customer_name,
            "phone_number": self.phone_number,
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "items": [
                {
                    "menu_item_id": i.menu_item_id,
                    "name": i.name,
                    "quantity": i.quantity,
                    "notes": i.notes,
                    "price": i.price,
                    "line_total": i.line_total,
                }
                for i in self.items
            ],
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
        }


def order_lines(order: Order) -> List[CartLine]:
    """Persisted items as cart lines, one per row, carrying the stored price."""
    return [
        CartLine(
            menu_item_id=i.menu_item_id,
            name=i.menu_item.name if i.menu_item is not None else f"Item #{i.menu_item_id}",
            quantity=i.quantity,
            notes=i.notes or "",
            unit_price=float(i.unit_price or 0.0),
        )
        for i in order.items
    ]


def project_order(order: Order, catalog: Catalog) -> OrderView:
    lines = order_lines(order)
    prices = current_prices(lines, catalog)
    q = quote(lines, catalog, order.delivery_address)
    items = [
        OrderItemView(
            menu_item_id=ln.menu_item_id,
            name=ln.name,
            quantity=ln.quantity,
            notes=ln.notes,
            price=prices[ln.menu_item_id],
        )
        for ln in lines
    ]
    return OrderView(
        order_id=order.id,
        status=OrderStatus(order.status),
        customer_name=order.customer_name,
        phone_number=order.phone_number,
        delivery_address=order.delivery_address,
        notes=order.notes or "",
        created_at=order.created_at,
        items=items,
        subtotal=q.subtotal,
        delivery_fee=q.delivery_fee,
    )


def cart_lines_from_order(order: Order, catalog: Catalog) -> List[CartLine]:
    """Persisted items back to cart lines; items gone from the menu are dropped.

    Rows that share a line identity are folded together with the cart's merge
    rules.
    """
    lines: List[CartLine] = []
    for item in order.items:
        menu_item = catalog.find_by_id(item.menu_item_id)
        if menu_item is None:
            logger.warning("draft %s references missing menu item %s, dropping it", order.id, item.menu_item_id)
            continue
        merge_line(
            lines,
            CartLine(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=item.quantity,
                notes=item.notes or "",
                unit_price=float(menu_item.price),
            ),
        )
    return lines


class OrderStore:
    """Queries over the orders table, keyed by internal user id."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _query(self):
        return self.db.query(Order).options(selectinload(Order.items))

    def get(self, order_id: int) -> Optional[Order]:
        return self._query().filter(Order.id == order_id).first()

    def find_draft(self, user_id: int) -> Optional[Order]:
        return (
            self._query()
            .filter(Order.user_id == user_id, Order.status == OrderStatus.DRAFT.value)
            .order_by(Order.id.desc())
            .first()
        )

    def create_draft(self, user_id: int, customer_name: str, phone_number: str, notes: str = "") -> Order:
        now = utcnow()
        order = Order(
            user_id=user_id,
            status=OrderStatus.DRAFT.value,
            customer_name=customer_name,
            phone_number=phone_number or "",
            delivery_address=ADDRESS_NOT_PROVIDED,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(order)
        self.db.flush()
        return order

    def delete(self, order: Order) -> None:
        self.db.delete(order)

    def pending(self, user_id: int) -> List[Order]:
        return (
            self._query()
            .filter(Order.user_id == user_id, Order.status == OrderStatus.PENDING.value)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def recent(self, user_id: int, limit: Optional[int] = None) -> List[Order]:
        q = self._query().filter(Order.user_id == user_id, Order.status != OrderStatus.DRAFT.value)
        q = q.order_by(Order.created_at.desc(), Order.id.desc())
        if limit and limit > 0:
            q = q.limit(limit)
        return q.all()

    def update_status(self, order: Order, new_status: OrderStatus) -> Order:
        current = OrderStatus(order.status)
        if not can_transition(current, new_status):
            raise InvalidStatusTransition(
                f"Order #{order.id} cannot move from {current.value} to {new_status.value}"
            )
        order.status = new_status.value
        order.updated_at = utcnow()
        self.db.commit()
        logger.info("order %s moved %s -> %s", order.id, current.value, new_status.value)
        return order


def order_history(db: Session, user_id: int, limit: int) -> List[OrderView]:
    catalog = Catalog(db)
    return [project_order(o, catalog) for o in OrderStore(db).recent(user_id, limit)]
