# orderbot/ordering/directory.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..errors import UserNotFound
from ..models import User


@dataclass(frozen=True)
class UserRecord:
    internal_id: int
    external_id: str
    name: str
    phone: str


class UserDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(self, external_user_id: Optional[str]) -> UserRecord:
        if not external_user_id or external_user_id == "unknown":
            raise UserNotFound(external_user_id)
        u = self.db.query(User).filter(User.external_id == external_user_id).first()
        if u is None:
            raise UserNotFound(external_user_id)
        return UserRecord(
            internal_id=u.id,
            external_id=u.external_id,
            name=u.name,
            phone=u.phone or "",
        )
