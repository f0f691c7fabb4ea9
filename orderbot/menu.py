# orderbot/menu.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session

from .config import settings
from .models import MenuItem

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def _menu_path() -> Path:
    raw = (settings.menu_seed_path or "").strip()
    return Path(raw) if raw else DATA_DIR / "menu.json"


def load_menu(path: Path | None = None) -> dict[str, Any]:
    menu_path = path or _menu_path()
    if not menu_path.exists():
        raise FileNotFoundError(f"Menu seed file not found: {menu_path}")

    try:
        return json.loads(menu_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {menu_path}: {e}") from e


def _menu_items(menu: dict[str, Any]) -> list[dict[str, Any]]:
    """Flat ``items`` list, or items nested under ``categories``."""
    out: list[dict[str, Any]] = []
    for it in (menu.get("items") or []):
        if isinstance(it, dict):
            out.append(it)
    for cat in (menu.get("categories") or []):
        if not isinstance(cat, dict):
            continue
        for it in (cat.get("items") or []):
            if isinstance(it, dict):
                out.append({**it, "category": it.get("category") or cat.get("name") or ""})
    return out


def seed_menu(db: Session, menu: dict[str, Any] | None = None) -> int:
    """Insert the seed catalog when the menu table is empty. Returns rows added."""
    if db.query(MenuItem).first() is not None:
        return 0

    menu = menu if menu is not None else load_menu()
    added = 0
    for it in _menu_items(menu):
        name = str(it.get("name") or "").strip()
        if not name:
            continue
        row = MenuItem(
            name=name,
            price=float(it.get("price") or 0.0),
            category=str(it.get("category") or ""),
            description=str(it.get("description") or ""),
            is_available=bool(it.get("is_available", True)),
        )
        if it.get("id"):
            row.id = int(it["id"])
        db.add(row)
        added += 1

    db.commit()
    logger.info("seeded %d menu item(s)", added)
    return added
