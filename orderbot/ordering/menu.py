# orderbot/ordering/menu.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import MenuItem
from .nlp import mentions


class Catalog:
    """Read access to the live menu. Prices are never cached here."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_available(self) -> List[MenuItem]:
        return (
            self.db.query(MenuItem)
            .filter(MenuItem.is_available.is_(True))
            .order_by(MenuItem.category, MenuItem.id)
            .all()
        )

    def find_by_id(self, item_id: Optional[int], available_only: bool = False) -> Optional[MenuItem]:
        if not item_id or int(item_id) <= 0:
            return None
        item = self.db.get(MenuItem, int(item_id))
        if item is None or (available_only and not item.is_available):
            return None
        return item

    def find_by_name(self, name: Optional[str]) -> Optional[MenuItem]:
        """Case-insensitive exact match among available items."""
        nm = (name or "").strip().lower()
        if not nm:
            return None
        return (
            self.db.query(MenuItem)
            .filter(MenuItem.is_available.is_(True), func.lower(MenuItem.name) == nm)
            .order_by(MenuItem.id)
            .first()
        )

    def resolve(self, item_id: Optional[int], name: Optional[str]) -> Optional[MenuItem]:
        """An explicit id wins; the name is only consulted when no id was sent."""
        if item_id and int(item_id) > 0:
            return self.find_by_id(item_id, available_only=True)
        return self.find_by_name(name)

    def price_of(self, item_id: int) -> Optional[float]:
        item = self.find_by_id(item_id)
        return float(item.price) if item is not None else None

    def prices_for(self, item_ids: Iterable[int]) -> Dict[int, float]:
        ids = {int(i) for i in item_ids if i}
        if not ids:
            return {}
        rows = self.db.query(MenuItem.id, MenuItem.price).filter(MenuItem.id.in_(ids)).all()
        return {row.id: float(row.price) for row in rows}

    def filter_by_ingredient(self, ingredient: str, exclude: bool = False) -> List[MenuItem]:
        items = self.list_available()
        if not (ingredient or "").strip():
            return items
        return [it for it in items if mentions(it.description, ingredient) != exclude]
