# orderbot/command_router.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .ordering.intents import IntentPayload

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", str(key)).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_snake(k): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _load(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            v = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("tool arguments are not valid JSON")
            return {}
        return v if isinstance(v, dict) else {}
    return {}


def _clean_item(item: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item, dict):
        return None
    out = dict(item)
    out["menu_item_id"] = out.get("menu_item_id") or 0
    out["name"] = (out.get("name") or "").strip()
    out["size"] = out.get("size") or ""
    out["notes"] = out.get("notes") or ""
    out["extras"] = [str(e) for e in (out.get("extras") or []) if e]
    qty = out.get("quantity")
    out["quantity"] = qty if isinstance(qty, int) and qty > 0 else None
    return out


def payload_from_tool_args(raw: Any) -> IntentPayload:
    """Raw tool-call arguments (dict or JSON text) -> IntentPayload.

    Accepts the model's PascalCase keys as well as snake_case, and a nested
    ``DeliveryAddress`` object carrying address, phone and name.
    """
    data = _snake_keys(_load(raw))
    if not data:
        return IntentPayload()

    keyword = data.get("keyword") or data.get("intent")

    address = data.get("delivery_address")
    if isinstance(address, dict):
        if not data.get("customer_name"):
            data["customer_name"] = address.get("customer_name")
        if not data.get("phone_number"):
            data["phone_number"] = address.get("phone_number")
        address = address.get("address")

    items = [i for i in (_clean_item(it) for it in (data.get("items") or [])) if i]
    replacement = _clean_item(data.get("replacement_item"))
    reservation = data.get("reservation") if isinstance(data.get("reservation"), dict) else None
    if reservation is not None:
        party_size = reservation.get("party_size")
        reservation = {
            "date": str(reservation.get("date") or ""),
            "time": str(reservation.get("time") or ""),
            "party_size": 1 if party_size in (None, "") else party_size,
            "customer_name": reservation.get("customer_name") or "",
        }

    try:
        return IntentPayload(
            keyword=keyword,
            items=items,
            target_item_name=data.get("target_item_name"),
            replacement_item=replacement,
            new_quantity=data.get("new_quantity"),
            delivery_address=address,
            reservation=reservation,
            customer_name=data.get("customer_name"),
            phone_number=data.get("phone_number"),
            ingredient=data.get("ingredient"),
            exclude=data.get("exclude") or False,
            filter_text=data.get("filter_text"),
        )
    except ValidationError as e:
        logger.warning("tool arguments for %r failed validation: %s", keyword, e)
        return IntentPayload(keyword=keyword if isinstance(keyword, str) else None)
