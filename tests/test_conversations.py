from orderbot.conversations import ConversationLog
from orderbot.models import ChatMessage, Conversation


def test_open_creates_the_record_once(db):
    log = ConversationLog(db)
    first = log.open("c1", "u-alice")
    again = log.open("c1", "u-alice")

    assert first.id == again.id
    assert first.status == "Active"
    assert first.user_id is not None
    assert db.query(Conversation).count() == 1


def test_guest_conversation_has_no_owner(db):
    assert ConversationLog(db).open("c1", None).user_id is None


def test_close_and_reopen(db):
    log = ConversationLog(db)
    log.open("c1", "u-alice")
    log.close("c1")
    log.close("missing")

    conv = log.find("c1")
    assert conv.status == "Ended"
    assert conv.ended_at is not None

    assert log.open("c1", "u-alice").status == "Active"
    assert log.find("c1").ended_at is None


def test_recent_messages_oldest_first(db):
    log = ConversationLog(db)
    conv = log.open("c1", "u-alice")
    log.record(conv, "hi", "Hello! What would you like?")
    log.record(conv, "two teas", "")
    log.record(conv, "and a pizza", "Added ✅ 1 × Pizza")

    assert db.query(ChatMessage).count() == 5
    assert log.recent(conv, 3) == [
        {"role": "user", "content": "two teas"},
        {"role": "user", "content": "and a pizza"},
        {"role": "assistant", "content": "Added ✅ 1 × Pizza"},
    ]
    assert log.recent(conv, 0) == []
