# orderbot/ordering/reservations.py
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import utcnow
from ..errors import (
    ClosedDay,
    DuplicateReservation,
    InvalidPartySize,
    MalformedIntent,
    PastDate,
    SlotFull,
)
from ..models import Reservation

logger = logging.getLogger(__name__)


def restaurant_today(now: Optional[datetime] = None, tz: Optional[str] = None) -> date:
    """The calendar date at the restaurant. ``now`` is an aware datetime."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(tz or settings.restaurant_timezone)).date()


def parse_slot(date_text: Optional[str], time_text: Optional[str]) -> Tuple[date, str]:
    """``YYYY-MM-DD`` and ``HH:MM[:SS]`` -> (date, "HH:MM")."""
    try:
        day = datetime.strptime((date_text or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        raise MalformedIntent(f"Invalid reservation date: {date_text!r} (expected YYYY-MM-DD)")

    raw = (time_text or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return day, datetime.strptime(raw, fmt).strftime("%H:%M")
        except ValueError:
            continue
    raise MalformedIntent(f"Invalid reservation time: {time_text!r} (expected HH:MM)")


@dataclass
class SlotAvailability:
    time: str
    booked: int
    remaining: int


class ReservationAllocator:
    """Books tables against a fixed number of reservations per (date, time)."""

    def __init__(
        self,
        db: Session,
        capacity: Optional[int] = None,
        min_party: Optional[int] = None,
        max_party: Optional[int] = None,
        closed_weekday: Optional[int] = None,
    ) -> None:
        self.db = db
        self.capacity = settings.table_capacity if capacity is None else capacity
        self.min_party = settings.min_party_size if min_party is None else min_party
        self.max_party = settings.max_party_size if max_party is None else max_party
        self.closed_weekday = settings.closed_weekday if closed_weekday is None else closed_weekday

    def count_at(self, day: date, time: str) -> int:
        return (
            self.db.query(func.count(Reservation.id))
            .filter(Reservation.date == day, Reservation.time == time)
            .scalar()
            or 0
        )

    def find(self, customer_name: str, day: date, time: str) -> Optional[Reservation]:
        return (
            self.db.query(Reservation)
            .filter(
                func.lower(Reservation.customer_name) == (customer_name or "").strip().lower(),
                Reservation.date == day,
                Reservation.time == time,
            )
            .first()
        )

    def allocate(
        self,
        customer_name: str,
        day: date,
        time: str,
        party_size: int,
        today: Optional[date] = None,
    ) -> Reservation:
        """Validate and book. The first failing rule is raised, nothing is written."""
        today = today or restaurant_today()

        if day.weekday() == self.closed_weekday:
            raise ClosedDay(f"Sorry, the restaurant is closed on {calendar.day_name[self.closed_weekday]}s.")
        if party_size < self.min_party or party_size > self.max_party:
            raise InvalidPartySize(
                f"Party size must be between {self.min_party} and {self.max_party} people (got {party_size})."
            )
        if day < today:
            raise PastDate(f"{day.isoformat()} is in the past. Please pick a future date.")
        if self.count_at(day, time) >= self.capacity:
            raise SlotFull(f"No tables left on {day.isoformat()} at {time}. Please choose another time.")
        if self.find(customer_name, day, time) is not None:
            raise DuplicateReservation(
                f"{customer_name} already has a reservation on {day.isoformat()} at {time}."
            )

        reservation = Reservation(
            customer_name=customer_name.strip(),
            date=day,
            time=time,
            party_size=party_size,
            created_at=utcnow(),
        )
        self.db.add(reservation)
        self.db.commit()
        self.db.refresh(reservation)
        logger.info(
            "reservation %s: %s, %d people on %s at %s",
            reservation.id, reservation.customer_name, party_size, day.isoformat(), time,
        )
        return reservation

    def availability(self, day: date) -> List[SlotAvailability]:
        """Remaining capacity for every time already booked on ``day``."""
        rows = (
            self.db.query(Reservation.time, func.count(Reservation.id))
            .filter(Reservation.date == day)
            .group_by(Reservation.time)
            .order_by(Reservation.time)
            .all()
        )
        booked: Dict[str, int] = {t: int(n) for t, n in rows}
        return [
            SlotAvailability(time=t, booked=n, remaining=max(self.capacity - n, 0))
            for t, n in booked.items()
        ]

    def is_closed(self, day: date) -> bool:
        return day.weekday() == self.closed_weekday
