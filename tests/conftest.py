import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LLM_ENABLED"] = "0"
os.environ["CLEANUP_ENABLED"] = "0"
os.environ["STAFF_API_KEY"] = "staff-key"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest

from orderbot.db import Base, SessionLocal, engine, init_db
from orderbot.menu import seed_menu
from orderbot.models import User
from orderbot.ordering.brain import IntentDispatcher
from orderbot.ordering.session_store import InMemorySessionStore


@pytest.fixture
def db():
    init_db()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_menu(session)
    session.add_all([
        User(external_id="u-alice", name="Alice", email="alice@example.com", phone="0591111111", password_hash="x"),
        User(external_id="u-bob", name="Bob", email="bob@example.com", phone=None, password_hash="x"),
    ])
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def dispatcher(db, store):
    return IntentDispatcher(db, store)
