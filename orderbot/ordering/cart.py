# orderbot/ordering/cart.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple


def normalize_notes(notes: Optional[str]) -> str:
    """Trim + case-fold. None, "" and whitespace-only all become ""."""
    if not notes or not notes.strip():
        return ""
    return notes.strip().casefold()


def notes_from_extras(extras: Optional[Iterable[str]]) -> str:
    if not extras:
        return ""
    joined = ", ".join(e.strip() for e in extras if e and e.strip())
    return normalize_notes(joined)


def line_key(menu_item_id: int, notes: Optional[str]) -> Tuple[int, str]:
    """Identity of a line, shared by the cart and the persisted draft."""
    return int(menu_item_id), normalize_notes(notes)


@dataclass
class CartLine:
    menu_item_id: int
    name: str
    quantity: int = 1
    notes: str = ""
    size: str = ""
    unit_price: float = 0.0  # snapshot; the catalog price wins while the item exists

    def __post_init__(self) -> None:
        self.notes = normalize_notes(self.notes)
        self.size = (self.size or "").strip()

    @property
    def key(self) -> Tuple[int, str]:
        return line_key(self.menu_item_id, self.notes)

    def copy(self) -> "CartLine":
        return replace(self)


def same_line(a: CartLine, b: CartLine) -> bool:
    return a.key == b.key


def copy_lines(lines: Iterable[CartLine]) -> List[CartLine]:
    return [ln.copy() for ln in lines]


def merge_line(lines: List[CartLine], incoming: CartLine) -> CartLine:
    """Add ``incoming`` to ``lines`` in place.

    A line with the same identity gets the incoming quantity added and takes
    the incoming notes; anything else is appended. Returns the line that now
    holds the quantity.
    """
    for ln in lines:
        if same_line(ln, incoming):
            ln.quantity += incoming.quantity
            ln.notes = normalize_notes(incoming.notes)
            return ln
    added = incoming.copy()
    lines.append(added)
    return added


def find_lines(lines: Iterable[CartLine], target_name: str) -> List[CartLine]:
    """Lines whose name contains ``target_name`` (case-insensitive)."""
    needle = (target_name or "").strip().casefold()
    if not needle:
        return []
    return [ln for ln in lines if needle in (ln.name or "").casefold()]


def describe_line(line: CartLine) -> str:
    text = f"{line.quantity} × {line.name}"
    if line.size:
        text += f" ({line.size})"
    if line.notes:
        text += f" — {line.notes}"
    return text


def line_total(line: CartLine, prices: Dict[int, float]) -> float:
    price = prices.get(line.menu_item_id, line.unit_price)
    return round(line.quantity * float(price or 0.0), 2)


def build_summary(
    lines: List[CartLine],
    prices: Dict[int, float],
    currency_symbol: str = "₪",
) -> Tuple[str, float]:
    if not lines:
        return ("Your order is empty.", 0.0)

    out: List[str] = []
    subtotal = 0.0
    for i, line in enumerate(lines, start=1):
        lt = line_total(line, prices)
        subtotal += lt
        out.append(f"{i}. {describe_line(line)} = {currency_symbol}{lt:.2f}")

    subtotal = round(subtotal, 2)
    return ("Order summary:\n" + "\n".join(out) + f"\n\nSubtotal: {currency_symbol}{subtotal:.2f}", subtotal)
