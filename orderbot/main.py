# orderbot/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from .ai_intent import interpret_message_llm
from .auth import create_token, decode_token, hash_password, new_external_id, verify_password
from .cleanup import draft_cleanup_loop
from .command_router import payload_from_tool_args
from .config import settings
from .conversations import ConversationLog
from .db import SessionLocal, get_db, init_db
from .errors import InvalidStatusTransition, OperationFailed, UnsupportedDeliveryZone, UserNotFound
from .menu import seed_menu
from .models import Conversation, MenuItem, OrderStatus, User
from .ordering.brain import IntentDispatcher, TurnResult
from .ordering.cart import CartLine
from .ordering.directory import UserDirectory
from .ordering.intents import Intent, IntentPayload
from .ordering.menu import Catalog
from .ordering.nlp import asks_for_recommendation, parse_ingredient_filter
from .ordering.orders import OrderStore, order_history, project_order
from .ordering.pricing import current_prices, delivery_fee, subtotal
from .ordering.recommendations import top_selling_items
from .ordering.reservations import ReservationAllocator
from .ordering.session_store import InMemorySessionStore, SessionStore, session_key

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SORRY = "Sorry, something went wrong on our side. Please try again in a moment."


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    db = SessionLocal()
    try:
        seed_menu(db)
    except (FileNotFoundError, ValueError):
        logger.exception("could not seed the menu")
    finally:
        db.close()

    app.state.session_store = InMemorySessionStore()

    stop = asyncio.Event()
    sweeper = asyncio.create_task(draft_cleanup_loop(stop)) if settings.cleanup_enabled else None
    yield
    stop.set()
    if sweeper is not None:
        await sweeper


app = FastAPI(
    title="Restaurant Ordering Chat API",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=lifespan,
)


# -------------------
# Schemas
# -------------------
class SignupIn(BaseModel):
    name: str
    email: EmailStr
    phone: str | None = None
    password: str


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class SessionIn(BaseModel):
    conversation_id: str | None = None


class ChatIn(BaseModel):
    conversation_id: str
    message: str


class IntentIn(BaseModel):
    conversation_id: str
    payload: Dict[str, Any]


class StatusIn(BaseModel):
    status: OrderStatus


# -------------------
# Dependencies
# -------------------
def _bearer_user_id(authorization: str | None) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = authorization.split(" ", 1)[1].strip()
    uid = decode_token(token)
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    return uid


def require_user_id(authorization: str | None = Header(default=None)) -> str:
    uid = _bearer_user_id(authorization)
    if not uid:
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return uid


def optional_user_id(authorization: str | None = Header(default=None)) -> Optional[str]:
    """Guests chat without a token; their cart lives only in memory."""
    return _bearer_user_id(authorization)


def require_staff(x_staff_key: str | None = Header(default=None)) -> None:
    if not settings.staff_api_key or x_staff_key != settings.staff_api_key:
        raise HTTPException(status_code=403, detail="Staff access required")


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_dispatcher(
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
) -> IntentDispatcher:
    return IntentDispatcher(db, store)


# -------------------
# Helpers
# -------------------
def _item_dict(it: MenuItem) -> Dict[str, Any]:
    return {
        "id": it.id,
        "name": it.name,
        "price": float(it.price),
        "category": it.category,
        "description": it.description or "",
    }


def _line_dict(ln: CartLine, prices: Dict[int, float]) -> Dict[str, Any]:
    price = prices.get(ln.menu_item_id, ln.unit_price)
    return {
        "menu_item_id": ln.menu_item_id,
        "name": ln.name,
        "quantity": ln.quantity,
        "size": ln.size,
        "notes": ln.notes,
        "unit_price": price,
        "line_total": round(price * ln.quantity, 2),
    }


def _cart_view(db: Session, lines: List[CartLine]) -> Dict[str, Any]:
    catalog = Catalog(db)
    prices = current_prices(lines, catalog)
    return {
        "items": [_line_dict(ln, prices) for ln in lines],
        "subtotal": subtotal(lines, catalog),
        "currency": settings.currency_symbol,
    }


def _turn_response(db: Session, store: SessionStore, result: TurnResult, conversation_id: str, user_id: Optional[str]):
    cart = store.get(session_key(conversation_id, user_id))
    return {
        "reply": result.reply,
        "keyword": result.keyword,
        "errors": result.errors,
        "conversation_id": conversation_id,
        "cart": _cart_view(db, cart),
        "data": result.data,
    }


def _chat_context(dispatcher: IntentDispatcher, store: SessionStore, conversation_id: str, user_id: Optional[str]):
    """Conversation record, recent transcript, menu and cart for one model call."""
    log = ConversationLog(dispatcher.db)
    conv = log.open(conversation_id, user_id)
    history = log.recent(conv, settings.chat_context_messages)
    lines = store.get(session_key(conversation_id, user_id))
    prices = current_prices(lines, dispatcher.catalog)
    menu_items = [_item_dict(it) for it in dispatcher.catalog.list_available()]
    return conv, history, menu_items, [_line_dict(ln, prices) for ln in lines]


def _finish_chat_turn(
    db: Session,
    store: SessionStore,
    conv: Conversation,
    message: str,
    result: TurnResult,
    conversation_id: str,
    user_id: Optional[str],
):
    ConversationLog(db).record(conv, message, result.reply)
    return _turn_response(db, store, result, conversation_id, user_id)


# -------------------
# Health
# -------------------
@app.get("/")
def root():
    return {"ok": True, "service": "orderbot"}


# -------------------
# Auth
# -------------------
@app.post("/auth/signup")
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == payload.email).first():
        raise HTTPException(status_code=400, detail="Email already exists")

    u = User(
        external_id=new_external_id(),
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    logger.info("new account %s", u.external_id)
    return {"ok": True, "user_id": u.external_id}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    u = db.query(User).filter(User.email == payload.email).first()
    if not u or not verify_password(payload.password, u.password_hash):
        raise HTTPException(status_code=401, detail="Bad credentials")
    return {"token": create_token(u.external_id)}


# -------------------
# Menu
# -------------------
@app.get("/menu")
def menu(db: Session = Depends(get_db)):
    return {"currency": settings.currency_symbol, "items": [_item_dict(it) for it in Catalog(db).list_available()]}


@app.get("/menu/filter")
def menu_filter(
    ingredient: str | None = None,
    exclude: bool = False,
    q: str | None = None,
    db: Session = Depends(get_db),
):
    """``?ingredient=onion&exclude=true`` or free text ``?q=no onion``."""
    if not ingredient and q:
        ingredient, exclude = parse_ingredient_filter(q)
    if not ingredient:
        raise HTTPException(status_code=400, detail="An ingredient is required")
    items = Catalog(db).filter_by_ingredient(ingredient, exclude=exclude)
    return {"ingredient": ingredient, "exclude": exclude, "items": [_item_dict(it) for it in items]}


@app.get("/menu/top-sellers")
def menu_top_sellers(limit: int | None = None, db: Session = Depends(get_db)):
    items = top_selling_items(db, limit or settings.recommendation_limit)
    return {"currency": settings.currency_symbol, "items": [_item_dict(it) for it in items]}


# -------------------
# Chat
# -------------------
@app.post("/chat/start-session")
def start_session(
    payload: SessionIn,
    user_id: Optional[str] = Depends(optional_user_id),
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    conversation_id = payload.conversation_id or uuid4().hex
    try:
        lines = dispatcher.start_session(conversation_id, user_id)
    except OperationFailed:
        raise HTTPException(status_code=503, detail=SORRY)
    ConversationLog(db).open(conversation_id, user_id)

    reply = "Welcome back! I kept your order for you." if lines else "Hi! What would you like to order?"
    return {"conversation_id": conversation_id, "reply": reply, "cart": _cart_view(db, lines)}


@app.post("/chat/end-session")
def end_session(
    payload: SessionIn,
    user_id: Optional[str] = Depends(optional_user_id),
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    db: Session = Depends(get_db),
):
    if not payload.conversation_id:
        raise HTTPException(status_code=400, detail="conversation_id is required")
    try:
        dispatcher.end_session(payload.conversation_id, user_id)
    except OperationFailed:
        raise HTTPException(status_code=503, detail=SORRY)
    ConversationLog(db).close(payload.conversation_id)
    return {"ok": True}


@app.post("/chat")
async def chat(
    payload: ChatIn,
    user_id: Optional[str] = Depends(optional_user_id),
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Please type your question or order first.")
    if len(payload.message) > settings.max_message_chars:
        raise HTTPException(
            status_code=400,
            detail=f"Your message is too long. Please keep it under {settings.max_message_chars} characters.",
        )
    if not (settings.llm_enabled and settings.openai_api_key):
        raise HTTPException(status_code=503, detail="The chat assistant is not configured")

    conv, history, menu_items, cart = await run_in_threadpool(
        _chat_context, dispatcher, store, payload.conversation_id, user_id
    )

    if asks_for_recommendation(payload.message):
        intent = IntentPayload(keyword=Intent.RECOMMEND.value)
    else:
        try:
            args = await interpret_message_llm(payload.message, menu_items, cart, history)
        except OperationFailed:
            raise HTTPException(status_code=503, detail=SORRY)
        intent = payload_from_tool_args(args)

    try:
        result = await run_in_threadpool(dispatcher.dispatch, intent, payload.conversation_id, user_id)
    except OperationFailed:
        raise HTTPException(status_code=503, detail=SORRY)
    return await run_in_threadpool(
        _finish_chat_turn, db, store, conv, payload.message, result, payload.conversation_id, user_id
    )


@app.post("/chat/intent")
def chat_intent(
    payload: IntentIn,
    user_id: Optional[str] = Depends(optional_user_id),
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    """Structured turn, for clients that classify the message themselves."""
    intent = payload_from_tool_args(payload.payload)
    try:
        result = dispatcher.dispatch(intent, payload.conversation_id, user_id)
    except OperationFailed:
        raise HTTPException(status_code=503, detail=SORRY)
    return _turn_response(db, store, result, payload.conversation_id, user_id)


# -------------------
# Orders
# -------------------
@app.get("/orders/my")
def my_orders(limit: int | None = None, user_id: str = Depends(require_user_id), db: Session = Depends(get_db)):
    try:
        user = UserDirectory(db).resolve(user_id)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    views = order_history(db, user.internal_id, limit or settings.history_limit)
    return {"orders": [v.as_dict() for v in views]}


@app.get("/orders/delivery-fee")
def delivery_fee_preview(address: str):
    try:
        fee = delivery_fee(address)
    except UnsupportedDeliveryZone as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"address": address, "delivery_fee": fee, "currency": settings.currency_symbol}


@app.put("/orders/{order_id}/status", dependencies=[Depends(require_staff)])
def update_order_status(order_id: int, payload: StatusIn, db: Session = Depends(get_db)):
    store = OrderStore(db)
    order = store.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        store.update_status(order, payload.status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
    return project_order(order, Catalog(db)).as_dict()


# -------------------
# Reservations
# -------------------
@app.get("/reservations/availability")
def reservation_availability(date: str, db: Session = Depends(get_db)):
    try:
        day = datetime.strptime(date.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")

    allocator = ReservationAllocator(db)
    return {
        "date": day.isoformat(),
        "closed": allocator.is_closed(day),
        "capacity": allocator.capacity,
        "slots": [
            {"time": s.time, "booked": s.booked, "remaining": s.remaining}
            for s in allocator.availability(day)
        ],
    }
