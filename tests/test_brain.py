from datetime import timedelta

from orderbot.command_router import payload_from_tool_args
from orderbot.models import MenuItem, Order, OrderItem, OrderStatus, Reservation, User
from orderbot.ordering.brain import IntentDispatcher
from orderbot.ordering.intents import Intent, IntentPayload, ItemRequest, ReservationRequest
from orderbot.ordering.reservations import restaurant_today
from orderbot.ordering.session_store import session_key

CONV = "conv-1"
ALICE = "u-alice"
KEY = session_key(CONV, ALICE)


def _add(dispatcher, *items, user=ALICE):
    payload = IntentPayload(keyword="add_to_order", items=[ItemRequest(**i) for i in items])
    return dispatcher.dispatch(payload, CONV, user)


def _cart(store, key=KEY):
    return [(ln.name, ln.quantity, ln.notes) for ln in store.get(key)]


def _next_weekday(weekday):
    today = restaurant_today() + timedelta(days=1)
    return today + timedelta(days=(weekday - today.weekday()) % 7)


def test_every_intent_has_a_handler(dispatcher):
    assert set(dispatcher.handlers) == set(Intent)


def test_intent_aliases():
    assert Intent.parse("specific") is Intent.FILTERED_MENU
    assert Intent.parse("توصية") is Intent.RECOMMEND
    assert Intent.parse("recommendation") is Intent.RECOMMEND
    assert Intent.parse(" Add_To_Order ") is Intent.ADD
    assert Intent.parse("confirm_order") is None
    assert Intent.parse(None) is None


def test_unknown_keyword_is_a_noop(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"})
    result = dispatcher.dispatch(IntentPayload(keyword="dance"), CONV, ALICE)

    assert result.errors == ["MalformedIntent"]
    assert result.cart is None
    assert _cart(store) == [("Pizza", 1, "")]


def test_missing_keyword_is_a_noop(dispatcher):
    result = dispatcher.dispatch(IntentPayload(), CONV, ALICE)
    assert result.errors == ["MalformedIntent"]


def test_repeated_add_merges(dispatcher, store):
    _add(dispatcher, {"menu_item_id": 1, "quantity": 2})
    result = _add(dispatcher, {"menu_item_id": 1, "quantity": 1})

    assert _cart(store) == [("Pizza", 3, "")]
    assert "3 × Pizza = ₪30.00" in result.reply
    assert result.keyword == "add_to_order"


def test_add_by_name_with_extras(dispatcher, store):
    _add(dispatcher, {"name": "chicken kebab", "extras": ["No Onion"], "quantity": 2})
    _add(dispatcher, {"name": "Chicken Kebab"})
    assert _cart(store) == [("Chicken Kebab", 2, "no onion"), ("Chicken Kebab", 1, "")]


def test_add_persists_draft(dispatcher, db):
    _add(dispatcher, {"name": "Pizza", "quantity": 2})
    draft = db.query(Order).filter(Order.status == OrderStatus.DRAFT.value).one()
    assert [(i.menu_item_id, i.quantity) for i in draft.items] == [(1, 2)]


def test_partial_add_reports_missing_items(dispatcher, store):
    result = _add(dispatcher, {"name": "Pizza"}, {"name": "Sushi"})

    assert result.errors == []
    assert "Sushi" in result.reply
    assert _cart(store) == [("Pizza", 1, "")]


def test_add_nothing_resolvable(dispatcher, store):
    result = _add(dispatcher, {"name": "Sushi"})
    assert result.errors == ["ItemNotFound"]
    assert store.get(KEY) == []


def test_add_unavailable_item_by_id(dispatcher, db, store):
    db.get(MenuItem, 1).is_available = False
    db.commit()
    result = _add(dispatcher, {"menu_item_id": 1})
    assert result.errors == ["ItemNotFound"]


def test_guest_cart_stays_in_memory(dispatcher, db, store):
    _add(dispatcher, {"name": "Tea"}, user=None)
    assert _cart(store, session_key(CONV, None)) == [("Tea", 1, "")]
    assert db.query(Order).count() == 0


def test_remove_matches_every_substring(dispatcher, store):
    _add(dispatcher, {"name": "Chicken Kebab"}, {"name": "Beef Kebab"}, {"name": "Tea"})
    result = dispatcher.dispatch(IntentPayload(keyword="remove_item", target_item_name="Kebab"), CONV, ALICE)

    assert result.errors == []
    assert _cart(store) == [("Tea", 1, "")]


def test_remove_last_item_deletes_draft(dispatcher, db, store):
    _add(dispatcher, {"name": "Tea"})
    dispatcher.dispatch(IntentPayload(keyword="remove_item", target_item_name="tea"), CONV, ALICE)

    assert store.get(KEY) == []
    assert db.query(Order).count() == 0


def test_remove_missing_item(dispatcher):
    _add(dispatcher, {"name": "Tea"})
    result = dispatcher.dispatch(IntentPayload(keyword="remove_item", target_item_name="pizza"), CONV, ALICE)
    assert result.errors == ["ItemNotFound"]


def test_replace_keeps_quantity_and_position(dispatcher, store):
    _add(dispatcher, {"name": "Pizza", "quantity": 2}, {"name": "Tea"})
    result = dispatcher.dispatch(
        IntentPayload(
            keyword="replace_item",
            target_item_name="pizza",
            replacement_item=ItemRequest(name="Falafel Sandwich", extras=["extra tahini"]),
        ),
        CONV,
        ALICE,
    )

    assert result.errors == []
    assert _cart(store) == [("Falafel Sandwich", 2, "extra tahini"), ("Tea", 1, "")]


def test_replace_merges_into_identical_line(dispatcher, store):
    _add(dispatcher, {"name": "Pizza", "quantity": 2}, {"name": "Tea"})
    dispatcher.dispatch(
        IntentPayload(keyword="replace_item", target_item_name="pizza", replacement_item=ItemRequest(name="Tea")),
        CONV,
        ALICE,
    )
    assert _cart(store) == [("Tea", 3, "")]


def test_replace_with_unknown_item(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"})
    result = dispatcher.dispatch(
        IntentPayload(keyword="replace_item", target_item_name="pizza", replacement_item=ItemRequest(name="Sushi")),
        CONV,
        ALICE,
    )
    assert result.errors == ["ReplacementUnavailable"]
    assert _cart(store) == [("Pizza", 1, "")]


def test_update_quantity(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"})
    dispatcher.dispatch(IntentPayload(keyword="update_quantity", target_item_name="pizza", new_quantity=4), CONV, ALICE)
    assert _cart(store) == [("Pizza", 4, "")]


def test_update_quantity_zero_removes(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"}, {"name": "Tea"})
    dispatcher.dispatch(IntentPayload(keyword="update_quantity", target_item_name="pizza", new_quantity=0), CONV, ALICE)
    assert _cart(store) == [("Tea", 1, "")]


def test_update_quantity_needs_a_number(dispatcher):
    _add(dispatcher, {"name": "Pizza"})
    result = dispatcher.dispatch(IntentPayload(keyword="update_quantity", target_item_name="pizza"), CONV, ALICE)
    assert result.errors == ["MalformedIntent"]


def test_show_summary(dispatcher):
    _add(dispatcher, {"name": "Pizza", "quantity": 2}, {"name": "Tea"})
    result = dispatcher.dispatch(IntentPayload(keyword="show_summary"), CONV, ALICE)
    assert "Subtotal: ₪25.00" in result.reply


def test_show_summary_empty(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="show_summary"), CONV, ALICE)
    assert result.reply == "Your order is empty."


def test_submit(dispatcher, db, store):
    _add(dispatcher, {"name": "Pizza", "quantity": 2}, {"name": "Tea"})
    result = dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Birzeit"), CONV, ALICE)

    assert result.errors == []
    assert result.data["order"]["subtotal"] == 25.0
    assert result.data["order"]["delivery_fee"] == 7.0
    assert result.data["order"]["total"] == 32.0
    assert "Total: ₪32.00" in result.reply
    assert store.get(KEY) == []
    assert db.query(Order).filter(Order.status == OrderStatus.PENDING.value).count() == 1
    assert db.query(Order).filter(Order.status == OrderStatus.DRAFT.value).count() == 0


def test_submit_empty_cart(dispatcher, db):
    db.add(Order(user_id=db.query(User).filter(User.external_id == "u-bob").one().id, status="Draft",
                 items=[OrderItem(menu_item_id=2, quantity=1)]))
    db.commit()

    result = dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Birzeit"), CONV, ALICE)

    assert result.errors == ["EmptyOrder"]
    assert db.query(Order).count() == 1
    assert db.query(Order).one().status == "Draft"


def test_submit_needs_address(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"})
    result = dispatcher.dispatch(IntentPayload(keyword="submit"), CONV, ALICE)
    assert result.errors == ["MalformedIntent"]
    assert len(store.get(KEY)) == 1


def test_submit_unsupported_zone_keeps_cart(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"})
    result = dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Hebron"), CONV, ALICE)
    assert result.errors == ["UnsupportedDeliveryZone"]
    assert "Hebron" in result.reply
    assert len(store.get(KEY)) == 1


def test_guest_cannot_submit(dispatcher, store):
    _add(dispatcher, {"name": "Pizza"}, user=None)
    result = dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Rawabi"), CONV, None)
    assert result.errors == ["UserNotFound"]
    assert len(store.get(session_key(CONV, None))) == 1


def test_cancel_draft_and_recent_order(dispatcher, db, store):
    _add(dispatcher, {"name": "Tea"})
    dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Rawabi"), CONV, ALICE)
    _add(dispatcher, {"name": "Pizza"}, {"name": "Tea"})

    result = dispatcher.dispatch(IntentPayload(keyword="cancel_order"), CONV, ALICE)

    assert result.errors == []
    assert result.data["draft_cancelled"] is True
    assert result.data["cancelled_order"] is not None
    assert "Your current order (2 item(s)" in result.reply
    assert store.get(KEY) == []
    assert {o.status for o in db.query(Order).all()} == {OrderStatus.CANCELLED.value}


def test_cancel_with_nothing(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="cancel_order"), CONV, ALICE)
    assert result.reply == "You have no active order to cancel."


def test_reserve_on_friday_is_rejected(dispatcher, db, store):
    _add(dispatcher, {"name": "Pizza"})
    friday = _next_weekday(4)
    result = dispatcher.dispatch(
        IntentPayload(
            keyword="reserve",
            reservation=ReservationRequest(date=friday.isoformat(), time="19:00", party_size=4),
        ),
        CONV,
        ALICE,
    )

    assert result.errors == ["ClosedDay"]
    assert db.query(Reservation).count() == 0
    assert _cart(store) == [("Pizza", 1, "")]


def test_reserve_uses_account_name(dispatcher, db, store):
    _add(dispatcher, {"name": "Pizza"})
    saturday = _next_weekday(5)
    result = dispatcher.dispatch(
        IntentPayload(
            keyword="reserve",
            reservation=ReservationRequest(date=saturday.isoformat(), time="19:30", party_size=3),
        ),
        CONV,
        ALICE,
    )

    assert result.errors == []
    assert result.cart is None
    assert db.query(Reservation).one().customer_name == "Alice"
    assert result.data["reservation"]["party_size"] == 3
    assert _cart(store) == [("Pizza", 1, "")]


def test_reserve_without_party_size_books_one_seat(dispatcher, db):
    saturday = _next_weekday(5)
    payload = payload_from_tool_args({"keyword": "reserve", "Reservation": {"Date": saturday.isoformat(), "Time": "19:00"}})

    result = dispatcher.dispatch(payload, CONV, ALICE)

    assert result.errors == []
    assert db.query(Reservation).one().party_size == 1


def test_reserve_bad_date(dispatcher):
    result = dispatcher.dispatch(
        IntentPayload(keyword="reserve", reservation=ReservationRequest(date="tomorrow", time="19:00", party_size=2)),
        CONV,
        ALICE,
    )
    assert result.errors == ["MalformedIntent"]


def test_history(dispatcher):
    for _ in range(4):
        _add(dispatcher, {"name": "Tea"})
        dispatcher.dispatch(IntentPayload(keyword="submit", delivery_address="Ramallah"), CONV, ALICE)
    _add(dispatcher, {"name": "Pizza"})

    result = dispatcher.dispatch(IntentPayload(keyword="get_order_history"), CONV, ALICE)

    assert len(result.data["orders"]) == 3
    assert all(o["status"] == "Pending" for o in result.data["orders"])
    assert all(o["total"] == 17.0 for o in result.data["orders"])


def test_history_empty(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="get_order_history"), CONV, ALICE)
    assert result.reply == "You don't have any previous orders yet."


def test_filtered_menu_from_free_text(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="specific", filter_text="no onion"), CONV, ALICE)
    names = {m["name"] for m in result.data["menu"]}

    assert "Pizza" in names
    assert "Falafel Sandwich" in names
    assert "Chicken Kebab" not in names
    assert "Beef Kebab" not in names
    assert result.keyword == "filtered_menu"


def test_filtered_menu_arabic(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="filtered_menu", filter_text="مع بصل"), CONV, ALICE)
    assert {m["name"] for m in result.data["menu"]} == {"Chicken Kebab", "Beef Kebab"}


def test_filtered_menu_include(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="filtered_menu", ingredient="tahini"), CONV, ALICE)
    assert {m["name"] for m in result.data["menu"]} == {"Falafel Sandwich", "Hummus"}


def test_session_roundtrip(db, store):
    first = IntentDispatcher(db, store)
    _add(first, {"name": "Pizza", "quantity": 2})
    first.end_session(CONV, ALICE)
    store.clear(KEY)

    lines = IntentDispatcher(db, store).start_session("conv-2", ALICE)
    assert [(ln.name, ln.quantity) for ln in lines] == [("Pizza", 2)]


def _sold(db, external_id, status, *items):
    user = db.query(User).filter(User.external_id == external_id).one()
    db.add(Order(
        user_id=user.id,
        status=status,
        items=[OrderItem(menu_item_id=item_id, quantity=qty) for item_id, qty in items],
    ))
    db.commit()


def test_recommend_lists_best_sellers_and_favourite(dispatcher, db, store):
    _sold(db, "u-bob", OrderStatus.PENDING.value, (2, 5))
    _sold(db, ALICE, OrderStatus.DELIVERED.value, (1, 2))
    _sold(db, ALICE, OrderStatus.DRAFT.value, (10, 9))
    _sold(db, "u-bob", OrderStatus.CANCELLED.value, (7, 20))

    result = dispatcher.dispatch(IntentPayload(keyword="recommend"), CONV, ALICE)

    assert result.errors == []
    assert [m["name"] for m in result.data["menu"]] == ["Tea", "Pizza"]
    assert result.reply.startswith("Our best sellers:\n1. Tea")
    assert result.data["favourite"]["name"] == "Pizza"
    assert result.cart is None


def test_recommend_without_sales(dispatcher):
    result = dispatcher.dispatch(IntentPayload(keyword="توصية"), CONV, None)
    assert result.reply == "We don't have enough sales yet to recommend anything."
    assert result.keyword == "recommend"
