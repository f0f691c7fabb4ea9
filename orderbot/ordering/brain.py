# orderbot/ordering/brain.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..errors import (
    EmptyOrder,
    ItemNotFound,
    MalformedIntent,
    OperationFailed,
    OrderingError,
    ReplacementUnavailable,
    UserNotFound,
)
from .cart import (
    CartLine,
    build_summary,
    describe_line,
    find_lines,
    merge_line,
    normalize_notes,
    notes_from_extras,
    same_line,
)
from .directory import UserDirectory
from .intents import Intent, IntentPayload, ItemRequest
from .menu import Catalog
from .nlp import parse_ingredient_filter
from .orders import OrderView, order_history
from .pricing import current_prices
from .recommendations import favourite_item, top_selling_items
from .reconciler import OrderReconciler
from .reservations import ReservationAllocator, parse_slot
from .session_store import SessionStore, session_key

logger = logging.getLogger(__name__)


@dataclass
class Turn:
    conversation_id: str
    user_id: Optional[str]
    key: str


@dataclass
class TurnResult:
    reply: str
    cart: Optional[List[CartLine]] = None  # None: the cart was not touched
    errors: List[str] = field(default_factory=list)
    keyword: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[List[CartLine], IntentPayload, Turn], TurnResult]


class IntentDispatcher:
    """Applies one classified chat turn to the conversation cart.

    Every ``Intent`` has exactly one handler. Validation failures raised by a
    handler come back as a reply with the error kind in ``errors``; database
    failures are raised as ``OperationFailed``.
    """

    def __init__(self, db: Session, store: SessionStore, config: Optional[Settings] = None) -> None:
        self.db = db
        self.store = store
        self.settings = config or default_settings
        self.catalog = Catalog(db)
        self.directory = UserDirectory(db)
        self.reconciler = OrderReconciler(
            db,
            store,
            catalog=self.catalog,
            directory=self.directory,
            cancel_window_minutes=self.settings.cancel_window_minutes,
        )
        self.allocator = ReservationAllocator(
            db,
            capacity=self.settings.table_capacity,
            min_party=self.settings.min_party_size,
            max_party=self.settings.max_party_size,
            closed_weekday=self.settings.closed_weekday,
        )
        self._handlers: Dict[Intent, Handler] = {
            Intent.ADD: self._add,
            Intent.REMOVE: self._remove,
            Intent.REPLACE: self._replace,
            Intent.UPDATE_QUANTITY: self._update_quantity,
            Intent.SHOW_SUMMARY: self._show_summary,
            Intent.SUBMIT: self._submit,
            Intent.CANCEL: self._cancel,
            Intent.RESERVE: self._reserve,
            Intent.HISTORY: self._history,
            Intent.FILTERED_MENU: self._filtered_menu,
            Intent.RECOMMEND: self._recommend,
        }

    @property
    def handlers(self) -> Dict[Intent, Handler]:
        return dict(self._handlers)

    # ----------------------------
    # Entry points
    # ----------------------------
    def dispatch(self, payload: IntentPayload, conversation_id: str, user_id: Optional[str] = None) -> TurnResult:
        intent = payload.intent
        if intent is None:
            err = MalformedIntent(f"Unrecognized keyword: {payload.keyword!r}")
            logger.info("ignoring turn for %s: %s", conversation_id, err.message)
            return TurnResult(
                reply="Sorry, I didn't understand what you'd like to do. You can add items, "
                "ask for a summary, submit, cancel or book a table.",
                errors=[err.kind],
                keyword=payload.keyword,
            )

        turn = Turn(conversation_id, user_id, session_key(conversation_id, user_id))
        handler = self._handlers[intent]
        logger.debug("dispatching %s for %s", intent.value, turn.key)

        with self.store.lock(turn.key):
            cart = self.store.get(turn.key)
            try:
                result = handler(cart, payload, turn)
            except OrderingError as e:
                self.db.rollback()
                logger.info("%s rejected for %s: %s", intent.value, turn.key, e.message)
                return TurnResult(reply=self._error_reply(e), errors=[e.kind], keyword=intent.value)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("database failure while handling %s", intent.value)
                raise OperationFailed(f"{intent.value} failed") from e

        result.keyword = intent.value
        return result

    def start_session(self, conversation_id: str, user_id: Optional[str]) -> List[CartLine]:
        key = session_key(conversation_id, user_id)
        with self.store.lock(key):
            try:
                return self.reconciler.load_into_session(conversation_id, user_id)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("could not load draft for %s", key)
                raise OperationFailed("start session failed") from e

    def end_session(self, conversation_id: str, user_id: Optional[str]) -> None:
        key = session_key(conversation_id, user_id)
        with self.store.lock(key):
            try:
                self.reconciler.flush_to_draft(conversation_id, user_id)
            except UserNotFound:
                logger.debug("guest session %s ended, cart kept in memory only", key)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("could not flush draft for %s", key)
                raise OperationFailed("end session failed") from e

    # ----------------------------
    # Helpers
    # ----------------------------
    def _money(self, value: float) -> str:
        return f"{self.settings.currency_symbol}{value:.2f}"

    def _summary(self, cart: List[CartLine]) -> str:
        text, _ = build_summary(cart, current_prices(cart, self.catalog), currency_symbol=self.settings.currency_symbol)
        return text

    def _save(self, cart: List[CartLine], turn: Turn) -> None:
        self.store.save(turn.key, cart)
        try:
            self.reconciler.flush_to_draft(turn.conversation_id, turn.user_id)
        except UserNotFound:
            logger.debug("no account for %s, draft not persisted", turn.key)

    @staticmethod
    def _error_reply(err: OrderingError) -> str:
        if isinstance(err, UserNotFound):
            return "I couldn't find your account. Please sign in and try again."
        if isinstance(err, EmptyOrder):
            return "Your order is empty. Add something before submitting."
        if isinstance(err, ItemNotFound):
            return f"Sorry, I couldn't find {err.name or 'that item'} in your order or on the menu."
        if isinstance(err, ReplacementUnavailable):
            return f"Sorry, {err.name or 'that item'} isn't available as a replacement."
        return err.message

    def _new_line(self, req: ItemRequest, quantity: int) -> Optional[CartLine]:
        item = self.catalog.resolve(req.menu_item_id, req.name)
        if item is None:
            return None
        return CartLine(
            menu_item_id=item.id,
            name=item.name,
            quantity=quantity,
            notes=notes_from_extras(req.extras) or normalize_notes(req.notes),
            size=req.size,
            unit_price=float(item.price),
        )

    @staticmethod
    def _require_target(payload: IntentPayload) -> str:
        target = (payload.target_item_name or "").strip()
        if not target:
            raise MalformedIntent("Which item do you mean?")
        return target

    # ----------------------------
    # Cart handlers
    # ----------------------------
    def _add(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        if not payload.items:
            raise MalformedIntent("Tell me what you'd like to add.")

        added: List[CartLine] = []
        failed: List[str] = []
        for req in payload.items:
            line = self._new_line(req, req.quantity or 1)
            if line is None:
                label = req.name or f"item #{req.menu_item_id}"
                logger.warning("add: %r not on the menu, skipping", label)
                failed.append(label)
                continue
            merge_line(cart, line)
            added.append(line)

        if not added:
            raise ItemNotFound(", ".join(failed))

        self._save(cart, turn)
        reply = "Added ✅ " + ", ".join(describe_line(ln) for ln in added) + "\n\n" + self._summary(cart)
        if failed:
            reply += "\n\nI couldn't find: " + ", ".join(failed)
        return TurnResult(reply=reply, cart=cart)

    def _remove(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        target = self._require_target(payload)
        matches = find_lines(cart, target)
        if not matches:
            raise ItemNotFound(target)

        gone = {id(ln) for ln in matches}
        cart = [ln for ln in cart if id(ln) not in gone]
        self._save(cart, turn)
        removed = ", ".join(ln.name for ln in matches)
        return TurnResult(reply=f"Removed {removed}.\n\n{self._summary(cart)}", cart=cart)

    def _replace(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        target = self._require_target(payload)
        rep = payload.replacement_item
        if rep is None or not (rep.name or rep.menu_item_id):
            raise MalformedIntent("What should I replace it with?")

        matches = find_lines(cart, target)
        if not matches:
            raise ItemNotFound(target)
        old = matches[0]

        new = self._new_line(rep, rep.quantity or old.quantity)
        if new is None:
            raise ReplacementUnavailable(rep.name or f"item #{rep.menu_item_id}")

        pos = next(i for i, ln in enumerate(cart) if ln is old)
        del cart[pos]
        existing = next((ln for ln in cart if same_line(ln, new)), None)
        if existing is not None:
            existing.quantity += new.quantity
            existing.notes = new.notes
        else:
            cart.insert(pos, new)

        self._save(cart, turn)
        return TurnResult(
            reply=f"Replaced {old.name} with {describe_line(new)}.\n\n{self._summary(cart)}",
            cart=cart,
        )

    def _update_quantity(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        target = self._require_target(payload)
        if payload.new_quantity is None:
            raise MalformedIntent("How many would you like?")
        if payload.new_quantity <= 0:
            return self._remove(cart, payload, turn)

        matches = find_lines(cart, target)
        if not matches:
            raise ItemNotFound(target)
        line = matches[0]
        line.quantity = payload.new_quantity

        self._save(cart, turn)
        return TurnResult(reply=f"Updated: {describe_line(line)}\n\n{self._summary(cart)}", cart=cart)

    def _show_summary(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        return TurnResult(reply=self._summary(cart), cart=cart)

    # ----------------------------
    # Order handlers
    # ----------------------------
    def _submit(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        if not cart:
            raise EmptyOrder()
        address = (payload.delivery_address or "").strip()
        if not address:
            raise MalformedIntent("Please tell me your delivery address so I can place the order.")

        view = self.reconciler.promote_to_order(
            turn.conversation_id,
            turn.user_id,
            address,
            customer_name=payload.customer_name,
            phone_number=payload.phone_number,
        )
        self.store.clear(turn.key)

        reply = (
            f"Your order #{view.order_id} has been placed ✅\n"
            f"Subtotal: {self._money(view.subtotal)}\n"
            f"Delivery fee: {self._money(view.delivery_fee)}\n"
            f"Total: {self._money(view.total)}\n"
            f"Delivering to: {view.delivery_address}"
        )
        return TurnResult(reply=reply, cart=[], data={"order": view.as_dict()})

    def _cancel(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        outcome = self.reconciler.cancel(turn.conversation_id, turn.user_id)

        parts: List[str] = []
        if outcome.draft_cancelled:
            parts.append(
                f"Your current order ({outcome.draft_item_count} item(s), "
                f"{self._money(outcome.draft_subtotal)}) has been cancelled."
            )
        if outcome.cancelled_order is not None:
            o = outcome.cancelled_order
            parts.append(f"Order #{o.order_id} ({self._money(o.total)}) has been cancelled.")
        for o in outcome.not_cancellable:
            parts.append(
                f"Order #{o.order_id} was placed more than {self.settings.cancel_window_minutes} "
                "minutes ago and can no longer be cancelled."
            )
        if not parts:
            parts.append("You have no active order to cancel.")

        data: Dict[str, Any] = {
            "draft_cancelled": outcome.draft_cancelled,
            "cancelled_order": outcome.cancelled_order.as_dict() if outcome.cancelled_order else None,
            "not_cancellable": [o.order_id for o in outcome.not_cancellable],
        }
        return TurnResult(reply="\n".join(parts), cart=[], data=data)

    def _history(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        user = self.directory.resolve(turn.user_id)
        views = order_history(self.db, user.internal_id, self.settings.history_limit)
        if not views:
            return TurnResult(reply="You don't have any previous orders yet.")

        blocks = [self._describe_order(v) for v in views]
        return TurnResult(
            reply="Your recent orders:\n\n" + "\n\n".join(blocks),
            data={"orders": [v.as_dict() for v in views]},
        )

    def _describe_order(self, view: OrderView) -> str:
        lines = [f"Order #{view.order_id} ({view.status.value}) {view.created_at:%Y-%m-%d %H:%M}"]
        for item in view.items:
            text = f"  {item.quantity} × {item.name}"
            if item.notes:
                text += f" — {item.notes}"
            lines.append(text)
        lines.append(f"  Total: {self._money(view.total)}")
        return "\n".join(lines)

    # ----------------------------
    # Other handlers
    # ----------------------------
    def _reserve(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        req = payload.reservation
        if req is None:
            raise MalformedIntent("Please tell me the date, time and number of people for the booking.")

        day, time = parse_slot(req.date, req.time)
        name = (req.customer_name or payload.customer_name or "").strip()
        if not name:
            name = self.directory.resolve(turn.user_id).name

        r = self.allocator.allocate(name, day, time, req.party_size)
        return TurnResult(
            reply=f"Your table for {r.party_size} on {r.date.isoformat()} at {r.time} is booked ✅",
            data={
                "reservation": {
                    "id": r.id,
                    "customer_name": r.customer_name,
                    "date": r.date.isoformat(),
                    "time": r.time,
                    "party_size": r.party_size,
                }
            },
        )

    def _filtered_menu(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        ingredient = (payload.ingredient or "").strip()
        exclude = payload.exclude
        if not ingredient and payload.filter_text:
            ingredient, exclude = parse_ingredient_filter(payload.filter_text)
        if not ingredient:
            raise MalformedIntent("Which ingredient should I look for?")

        items = self.catalog.filter_by_ingredient(ingredient, exclude=exclude)
        label = f"without {ingredient}" if exclude else f"with {ingredient}"
        if not items:
            return TurnResult(reply=f"Sorry, I couldn't find any dishes {label}.")

        rows = [f"- {it.name} ({self._money(float(it.price))})" for it in items]
        return TurnResult(
            reply=f"Dishes {label}:\n" + "\n".join(rows),
            data={"menu": [{"id": it.id, "name": it.name, "price": float(it.price)} for it in items]},
        )

    def _recommend(self, cart: List[CartLine], payload: IntentPayload, turn: Turn) -> TurnResult:
        items = top_selling_items(self.db, self.settings.recommendation_limit)
        if not items:
            return TurnResult(reply="We don't have enough sales yet to recommend anything.")

        rows = [f"{i}. {it.name} ({self._money(float(it.price))})" for i, it in enumerate(items, start=1)]
        reply = "Our best sellers:\n" + "\n".join(rows)
        data: Dict[str, Any] = {
            "menu": [{"id": it.id, "name": it.name, "price": float(it.price)} for it in items],
            "favourite": None,
        }

        try:
            user = self.directory.resolve(turn.user_id)
        except UserNotFound:
            user = None
        favourite = favourite_item(self.db, user.internal_id) if user else None
        if favourite is not None:
            reply += f"\n\nYou usually go for the {favourite.name}."
            data["favourite"] = {"id": favourite.id, "name": favourite.name}
        return TurnResult(reply=reply, data=data)
