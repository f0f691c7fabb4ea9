# orderbot/ordering/reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..db import utcnow
from ..errors import EmptyOrder, UserNotFound
from ..models import Order, OrderItem, OrderStatus
from .cart import CartLine, line_key
from .directory import UserDirectory, UserRecord
from .menu import Catalog
from .orders import OrderStore, OrderView, cart_lines_from_order, order_lines, project_order
from .pricing import delivery_fee, subtotal
from .session_store import SessionStore, session_key

logger = logging.getLogger(__name__)

CHAT_ORDER_NOTE = "Order placed via chat"


@dataclass
class CancellationOutcome:
    draft_cancelled: bool = False
    draft_item_count: int = 0
    draft_subtotal: float = 0.0
    cancelled_order: Optional[OrderView] = None
    not_cancellable: List[OrderView] = field(default_factory=list)

    @property
    def anything_cancelled(self) -> bool:
        return self.draft_cancelled or self.cancelled_order is not None


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing} - {note}" if existing else note


class OrderReconciler:
    """Keeps the conversation cart and the user's single Draft order in step.

    The cart is the source of truth while a conversation is running; the draft
    is its durable copy so a restart (or a new conversation) can pick up where
    the customer left off.
    """

    def __init__(
        self,
        db: Session,
        store: SessionStore,
        catalog: Optional[Catalog] = None,
        directory: Optional[UserDirectory] = None,
        cancel_window_minutes: Optional[int] = None,
    ) -> None:
        self.db = db
        self.store = store
        self.catalog = catalog or Catalog(db)
        self.directory = directory or UserDirectory(db)
        self.orders = OrderStore(db)
        self.cancel_window = timedelta(
            minutes=settings.cancel_window_minutes if cancel_window_minutes is None else cancel_window_minutes
        )

    # ----------------------------
    # Session <-> draft
    # ----------------------------
    def load_into_session(self, conversation_id: str, user_id: Optional[str]) -> List[CartLine]:
        try:
            user = self.directory.resolve(user_id)
        except UserNotFound:
            logger.debug("no user for %r, nothing to load", user_id)
            return []

        draft = self.orders.find_draft(user.internal_id)
        if draft is None:
            logger.debug("no draft order for user %s", user_id)
            return []

        lines = cart_lines_from_order(draft, self.catalog)
        self.store.save(session_key(conversation_id, user_id), lines)
        logger.info("loaded draft %s (%d line(s)) into conversation %s", draft.id, len(lines), conversation_id)
        return lines

    def flush_to_draft(self, conversation_id: str, user_id: Optional[str]) -> Optional[Order]:
        """Persist the cart as the user's draft. Raises UserNotFound for guests."""
        user = self.directory.resolve(user_id)
        lines = self.store.get(session_key(conversation_id, user_id))
        try:
            return self._write_draft(conversation_id, user, lines)
        except StaleDataError:
            # the sweep deleted the draft under us
            self.db.rollback()
            logger.info("draft for user %s vanished mid-flush, writing a new one", user_id)
            return self._write_draft(conversation_id, user, lines)

    def _write_draft(self, conversation_id: str, user: UserRecord, lines: List[CartLine]) -> Optional[Order]:
        draft = self.orders.find_draft(user.internal_id)

        if not lines:
            if draft is not None:
                draft_id = draft.id
                self.orders.delete(draft)
                self.db.commit()
                logger.info("removed empty draft %s for user %s", draft_id, user.external_id)
            return None

        created = draft is None
        if created:
            draft = self.orders.create_draft(
                user.internal_id,
                customer_name=user.name,
                phone_number=user.phone,
                notes=f"Draft order from conversation {conversation_id}",
            )
            logger.info("created draft %s for user %s", draft.id, user.external_id)

        changed = self._merge_pass(draft, lines)
        if changed:
            draft.updated_at = utcnow()
            logger.debug("draft %s now holds %d item(s)", draft.id, len(draft.items))
        if changed or created:
            self.db.commit()
        return draft

    def _merge_pass(self, draft: Order, lines: List[CartLine]) -> bool:
        """Make the draft's items mirror ``lines``. Returns True if anything changed."""
        changed = False
        persisted = {}
        for item in list(draft.items):
            key = line_key(item.menu_item_id, item.notes)
            if key in persisted:
                # a duplicate row would never be matched again
                draft.items.remove(item)
                changed = True
                continue
            persisted[key] = item

        cart_keys = set()
        for ln in lines:
            if not ln.menu_item_id or ln.menu_item_id <= 0:
                continue
            cart_keys.add(ln.key)
            item = persisted.get(ln.key)
            if item is None:
                draft.items.append(
                    OrderItem(menu_item_id=ln.menu_item_id, quantity=ln.quantity, notes=ln.notes, unit_price=ln.unit_price)
                )
                changed = True
                logger.debug("draft %s: added item %s x%d", draft.id, ln.menu_item_id, ln.quantity)
            elif item.quantity != ln.quantity or item.notes != ln.notes or item.unit_price != ln.unit_price:
                logger.debug(
                    "draft %s: item %s quantity %d -> %d", draft.id, ln.menu_item_id, item.quantity, ln.quantity
                )
                item.quantity = ln.quantity
                item.notes = ln.notes
                item.unit_price = ln.unit_price
                changed = True

        for key, item in persisted.items():
            if key not in cart_keys:
                draft.items.remove(item)
                changed = True
                logger.debug("draft %s: removed item %s", draft.id, item.menu_item_id)

        return changed

    # ----------------------------
    # Submit
    # ----------------------------
    def promote_to_order(
        self,
        conversation_id: str,
        user_id: Optional[str],
        address: str,
        customer_name: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> OrderView:
        lines = self.store.get(session_key(conversation_id, user_id))
        if not lines:
            raise EmptyOrder()

        delivery_fee(address)  # raises UnsupportedDeliveryZone before anything is written
        user = self.directory.resolve(user_id)
        now = utcnow()

        draft = self.orders.find_draft(user.internal_id)
        if draft is not None:
            self._merge_pass(draft, lines)
            order = draft
            logger.info("converting draft %s into an order", draft.id)
        else:
            order = Order(
                user_id=user.internal_id,
                items=[
                    OrderItem(menu_item_id=ln.menu_item_id, quantity=ln.quantity, notes=ln.notes, unit_price=ln.unit_price)
                    for ln in lines
                    if ln.menu_item_id and ln.menu_item_id > 0
                ],
            )
            self.db.add(order)

        if not order.items:
            self.db.rollback()
            raise EmptyOrder()

        self._fill_delivery(order, user, address, customer_name, phone_number, now)
        self.db.commit()
        self.db.refresh(order)

        view = project_order(order, self.catalog)
        logger.info("order %s submitted by %s, total %.2f", order.id, user_id, view.total)
        return view

    @staticmethod
    def _fill_delivery(
        order: Order,
        user: UserRecord,
        address: str,
        customer_name: Optional[str],
        phone_number: Optional[str],
        now: datetime,
    ) -> None:
        order.status = OrderStatus.PENDING.value
        order.delivery_address = address.strip()
        order.customer_name = (customer_name or "").strip() or user.name
        order.phone_number = (phone_number or "").strip() or user.phone
        order.notes = CHAT_ORDER_NOTE
        order.created_at = now
        order.updated_at = now

    # ----------------------------
    # Cancel
    # ----------------------------
    def cancel(self, conversation_id: str, user_id: Optional[str], now: Optional[datetime] = None) -> CancellationOutcome:
        """Cancel the draft (always allowed) and the latest recently submitted order."""
        now = now or utcnow()
        key = session_key(conversation_id, user_id)
        lines = self.store.get(key)
        outcome = CancellationOutcome()

        user: Optional[UserRecord]
        try:
            user = self.directory.resolve(user_id)
        except UserNotFound:
            if not lines:
                raise
            user = None

        draft = self.orders.find_draft(user.internal_id) if user else None
        if lines:
            outcome.draft_cancelled = True
            outcome.draft_item_count = len(lines)
            outcome.draft_subtotal = subtotal(lines, self.catalog)
        elif draft is not None:
            draft_lines = order_lines(draft)
            outcome.draft_cancelled = True
            outcome.draft_item_count = len(draft_lines)
            outcome.draft_subtotal = subtotal(draft_lines, self.catalog)

        if draft is not None:
            draft.status = OrderStatus.CANCELLED.value
            draft.notes = _append_note(draft.notes, "Draft order cancelled by user via chat")
            draft.updated_at = now
            logger.info("draft %s cancelled for user %s", draft.id, user_id)
        self.store.clear(key)

        if user is not None:
            cutoff = now - self.cancel_window
            pending = self.orders.pending(user.internal_id)
            recent = [o for o in pending if o.created_at >= cutoff]
            if recent:
                order = recent[0]
                age = (now - order.created_at).total_seconds() / 60
                order.status = OrderStatus.CANCELLED.value
                order.notes = _append_note(order.notes, f"Order cancelled by user via chat after {age:.1f} minutes")
                order.updated_at = now
                outcome.cancelled_order = project_order(order, self.catalog)
                logger.info("order %s cancelled %.1f minute(s) after submission", order.id, age)
            for order in pending:
                if order.created_at < cutoff:
                    outcome.not_cancellable.append(project_order(order, self.catalog))

        self.db.commit()
        return outcome
