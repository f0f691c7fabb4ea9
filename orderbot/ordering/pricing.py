# orderbot/ordering/pricing.py
"""Subtotals and delivery fees.

The zone table lives here and nowhere else. Subtotals always use the current
catalog price, so a price change shows up in carts that are not submitted yet
and in every read of an existing order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from ..errors import UnsupportedDeliveryZone
from ..models import ADDRESS_NOT_PROVIDED
from .cart import CartLine, line_total
from .menu import Catalog


@dataclass(frozen=True)
class DeliveryZone:
    name: str
    fee: float
    keywords: Tuple[str, ...]


# Checked in order, first match wins.
DELIVERY_ZONES: Tuple[DeliveryZone, ...] = (
    DeliveryZone("Rawabi", 0.0, ("rawabi", "روابي")),
    DeliveryZone("Birzeit", 7.0, ("birzeit", "بيرزيت")),
    DeliveryZone("Ramallah", 12.0, ("ramallah", "رام الله")),
)


@dataclass(frozen=True)
class Quote:
    subtotal: float
    delivery_fee: float

    @property
    def total(self) -> float:
        return round(self.subtotal + self.delivery_fee, 2)


def normalize_address(address: Optional[str]) -> str:
    return (address or "").strip().casefold()


def is_unset_address(address: Optional[str]) -> bool:
    norm = normalize_address(address)
    return not norm or norm == ADDRESS_NOT_PROVIDED.casefold()


def match_zone(address: Optional[str], zones: Iterable[DeliveryZone] = DELIVERY_ZONES) -> Optional[DeliveryZone]:
    norm = normalize_address(address)
    for zone in zones:
        if any(k in norm for k in zone.keywords):
            return zone
    return None


def delivery_fee(address: Optional[str], zones: Iterable[DeliveryZone] = DELIVERY_ZONES) -> float:
    if is_unset_address(address):
        return 0.0
    zone = match_zone(address, zones)
    if zone is None:
        raise UnsupportedDeliveryZone((address or "").strip())
    return zone.fee


def current_prices(lines: Iterable[CartLine], catalog: Catalog) -> Dict[int, float]:
    lines = list(lines)
    prices = catalog.prices_for(ln.menu_item_id for ln in lines)
    # items deleted from the catalog keep the price they were added at
    for ln in lines:
        prices.setdefault(ln.menu_item_id, float(ln.unit_price or 0.0))
    return prices


def subtotal(lines: Iterable[CartLine], catalog: Catalog) -> float:
    lines = list(lines)
    prices = current_prices(lines, catalog)
    return round(sum(line_total(ln, prices) for ln in lines), 2)


def quote(lines: Iterable[CartLine], catalog: Catalog, address: Optional[str]) -> Quote:
    lines = list(lines)
    return Quote(subtotal=subtotal(lines, catalog), delivery_fee=delivery_fee(address))
