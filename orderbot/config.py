# orderbot/config.py
from __future__ import annotations

import os

from pydantic import BaseModel

# Load .env locally (safe in prod too)
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


# -------------------
# Config (env-driven)
# -------------------
class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./orderbot.db")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    llm_enabled: bool = _as_bool(os.getenv("LLM_ENABLED"), True)
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "").strip()
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "₪")
    menu_seed_path: str = os.getenv("MENU_SEED_PATH", "")
    staff_api_key: str = os.getenv("STAFF_API_KEY", "").strip()

    # Reservations
    table_capacity: int = _as_int(os.getenv("TABLE_CAPACITY"), 7)
    min_party_size: int = _as_int(os.getenv("MIN_PARTY_SIZE"), 1)
    max_party_size: int = _as_int(os.getenv("MAX_PARTY_SIZE"), 10)
    closed_weekday: int = _as_int(os.getenv("CLOSED_WEEKDAY"), 4)  # Monday=0, Friday=4
    restaurant_timezone: str = os.getenv("RESTAURANT_TIMEZONE", "Asia/Hebron")

    # Orders
    cancel_window_minutes: int = _as_int(os.getenv("CANCEL_WINDOW_MINUTES"), 3)
    history_limit: int = _as_int(os.getenv("HISTORY_LIMIT"), 3)
    recommendation_limit: int = _as_int(os.getenv("RECOMMENDATION_LIMIT"), 3)

    # Chat
    max_message_chars: int = _as_int(os.getenv("MAX_MESSAGE_CHARS"), 2000)
    chat_context_messages: int = _as_int(os.getenv("CHAT_CONTEXT_MESSAGES"), 10)

    # Draft sweep
    cleanup_enabled: bool = _as_bool(os.getenv("CLEANUP_ENABLED"), True)
    draft_retention_hours: int = _as_int(os.getenv("DRAFT_RETENTION_HOURS"), 48)
    cleanup_interval_hours: int = _as_int(os.getenv("CLEANUP_INTERVAL_HOURS"), 12)
    cleanup_start_delay_seconds: int = _as_int(os.getenv("CLEANUP_START_DELAY_SECONDS"), 300)


settings = Settings()
