# orderbot/ai_intent.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from .config import settings
from .errors import OperationFailed
from .ordering.intents import Intent

logger = logging.getLogger(__name__)

_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.openai_api_key or None, timeout=settings.llm_timeout_seconds)
    return _client


SYSTEM = """You are the ordering assistant of a restaurant that delivers to Rawabi, Birzeit and Ramallah.
Turn the customer's latest message into ONE call of the update_order tool.
Earlier messages of the conversation come first, for context only.
Rules:
- Never invent menu items; use the names (and ids) from menu_hints.
- Put each requested dish in Items with its quantity, size and extras (e.g. "no onion").
- For remove/replace/quantity changes fill target_item_name with the dish as it appears in the cart.
- Submitting needs a delivery address; pass it in DeliveryAddress.Address.
- Reservations need Date (YYYY-MM-DD), Time (HH:MM) and PartySize.
- For ingredient questions ("anything without onion?") use filtered_menu with filter_text.
- For "what do you recommend?" use recommend.
- The customer may write in English or Arabic.
"""

_ITEM_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "MenuItemId": {"type": ["integer", "null"]},
        "Name": {"type": "string"},
        "Size": {"type": ["string", "null"]},
        "Extras": {"type": "array", "items": {"type": "string"}},
        "Quantity": {"type": ["integer", "null"], "minimum": 1},
    },
    "required": ["Name"],
}

ORDER_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "update_order",
        "description": "Apply one customer action to the conversation's order.",
        "parameters": {
            "type": "object",
            "properties": {
                "keyword": {"type": "string", "enum": [i.value for i in Intent]},
                "Items": {"type": "array", "items": _ITEM_SCHEMA},
                "target_item_name": {"type": ["string", "null"]},
                "replacement_item": {"anyOf": [_ITEM_SCHEMA, {"type": "null"}]},
                "new_quantity": {"type": ["integer", "null"]},
                "CustomerName": {"type": ["string", "null"]},
                "PhoneNumber": {"type": ["string", "null"]},
                "DeliveryAddress": {
                    "type": ["object", "null"],
                    "properties": {
                        "Address": {"type": ["string", "null"]},
                        "PhoneNumber": {"type": ["string", "null"]},
                        "CustomerName": {"type": ["string", "null"]},
                    },
                },
                "Reservation": {
                    "type": ["object", "null"],
                    "properties": {
                        "Date": {"type": "string"},
                        "Time": {"type": "string"},
                        "PartySize": {"type": "integer"},
                        "CustomerName": {"type": ["string", "null"]},
                    },
                },
                "filter_text": {"type": ["string", "null"]},
            },
            "required": ["keyword"],
        },
    },
}


def _menu_hints(menu_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Keep hints small to control cost + latency.
    return [
        {"id": it.get("id"), "name": it.get("name"), "category": it.get("category")}
        for it in menu_items[:120]
    ]


async def interpret_message_llm(
    message: str,
    menu_items: List[Dict[str, Any]],
    cart: List[Dict[str, Any]],
    history: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """Ask the model for tool arguments. Returns ``{}`` when it made no tool call.

    ``history`` holds earlier turns of the conversation as chat messages.
    """
    payload = {
        "message": message,
        "cart": cart,
        "menu_hints": _menu_hints(menu_items),
    }

    try:
        resp = await get_client().chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM},
                *(history or []),
                {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
            ],
            tools=[ORDER_TOOL],
            tool_choice={"type": "function", "function": {"name": "update_order"}},
        )
    except OpenAIError as e:
        logger.exception("model call failed")
        raise OperationFailed("language model unavailable") from e

    choice = resp.choices[0].message
    if not choice.tool_calls:
        logger.info("model answered without a tool call")
        return {}
    raw = choice.tool_calls[0].function.arguments or "{}"
    try:
        args = json.loads(raw)
    except ValueError:
        logger.warning("model returned invalid tool arguments")
        return {}
    return args if isinstance(args, dict) else {}
