# orderbot/errors.py
"""Failures raised by the ordering core.

Everything deriving from ``OrderingError`` is a validation failure: the
dispatcher turns it into a reply for the customer. ``OperationFailed`` is
different, it means a collaborator (database, model) broke and the caller
decides what to tell the user.
"""
from __future__ import annotations


class OrderingError(Exception):
    kind = "OrderingError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class UserNotFound(OrderingError):
    kind = "UserNotFound"

    def __init__(self, user_id: str | None) -> None:
        super().__init__(f"User not found: {user_id!r}")
        self.user_id = user_id


class ItemNotFound(OrderingError):
    kind = "ItemNotFound"

    def __init__(self, name: str | None) -> None:
        super().__init__(f"No item matching {name!r}")
        self.name = name


class ReplacementUnavailable(OrderingError):
    kind = "ReplacementUnavailable"

    def __init__(self, name: str | None) -> None:
        super().__init__(f"Replacement item {name!r} is not available")
        self.name = name


class EmptyOrder(OrderingError):
    kind = "EmptyOrder"

    def __init__(self) -> None:
        super().__init__("The order has no items")


class UnsupportedDeliveryZone(OrderingError):
    kind = "UnsupportedDeliveryZone"

    def __init__(self, address: str) -> None:
        super().__init__(f"Delivery is not supported for the specified location: {address}")
        self.address = address


class ClosedDay(OrderingError):
    kind = "ClosedDay"


class InvalidPartySize(OrderingError):
    kind = "InvalidPartySize"


class PastDate(OrderingError):
    kind = "PastDate"


class SlotFull(OrderingError):
    kind = "SlotFull"


class DuplicateReservation(OrderingError):
    kind = "DuplicateReservation"


class MalformedIntent(OrderingError):
    kind = "MalformedIntent"


class InvalidStatusTransition(OrderingError):
    kind = "InvalidStatusTransition"


class OperationFailed(Exception):
    """A collaborator (store, catalog, directory, model) failed mid-operation."""
