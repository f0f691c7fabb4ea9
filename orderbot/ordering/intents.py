# orderbot/ordering/intents.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Intent(str, Enum):
    ADD = "add_to_order"
    REMOVE = "remove_item"
    REPLACE = "replace_item"
    UPDATE_QUANTITY = "update_quantity"
    SHOW_SUMMARY = "show_summary"
    SUBMIT = "submit"
    CANCEL = "cancel_order"
    RESERVE = "reserve"
    HISTORY = "get_order_history"
    FILTERED_MENU = "filtered_menu"
    RECOMMEND = "recommend"

    @classmethod
    def parse(cls, keyword: Optional[str]) -> Optional["Intent"]:
        """Wire keyword -> Intent, ``None`` for anything unrecognized."""
        kw = (keyword or "").strip().lower().replace("-", "_").replace(" ", "_")
        if not kw:
            return None
        kw = _ALIASES.get(kw, kw)
        try:
            return cls(kw)
        except ValueError:
            return None


_ALIASES = {
    "add": "add_to_order",
    "remove": "remove_item",
    "replace": "replace_item",
    "summary": "show_summary",
    "cancel": "cancel_order",
    "history": "get_order_history",
    "specific": "filtered_menu",
    "recommendation": "recommend",
    "توصية": "recommend",
}


class ItemRequest(BaseModel):
    menu_item_id: int = 0
    name: str = ""
    quantity: Optional[int] = Field(default=None, ge=1)
    size: str = ""
    extras: List[str] = Field(default_factory=list)
    notes: str = ""


class ReservationRequest(BaseModel):
    date: str = ""
    time: str = ""
    party_size: int = 1
    customer_name: str = ""


class IntentPayload(BaseModel):
    """One chat turn, already classified."""

    keyword: Optional[str] = None
    items: List[ItemRequest] = Field(default_factory=list)
    target_item_name: Optional[str] = None
    replacement_item: Optional[ItemRequest] = None
    new_quantity: Optional[int] = None
    delivery_address: Optional[str] = None
    reservation: Optional[ReservationRequest] = None
    customer_name: Optional[str] = None
    phone_number: Optional[str] = None
    ingredient: Optional[str] = None
    exclude: bool = False
    filter_text: Optional[str] = None

    @property
    def intent(self) -> Optional[Intent]:
        return Intent.parse(self.keyword)
