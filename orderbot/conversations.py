# orderbot/conversations.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .db import utcnow
from .errors import UserNotFound
from .models import ChatMessage, Conversation
from .ordering.directory import UserDirectory

logger = logging.getLogger(__name__)

ACTIVE = "Active"
ENDED = "Ended"


class ConversationLog:
    """Conversation records and their message transcript."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find(self, conversation_id: str) -> Optional[Conversation]:
        return self.db.query(Conversation).filter(Conversation.conversation_id == conversation_id).first()

    def open(self, conversation_id: str, user_id: Optional[str]) -> Conversation:
        conv = self.find(conversation_id)
        if conv is not None:
            if conv.status != ACTIVE:
                conv.status = ACTIVE
                conv.ended_at = None
                self.db.commit()
            return conv

        try:
            owner = UserDirectory(self.db).resolve(user_id).internal_id
        except UserNotFound:
            owner = None
        conv = Conversation(conversation_id=conversation_id, user_id=owner, status=ACTIVE, started_at=utcnow())
        self.db.add(conv)
        self.db.commit()
        logger.info("conversation %s started", conversation_id)
        return conv

    def close(self, conversation_id: str) -> None:
        conv = self.find(conversation_id)
        if conv is None or conv.status == ENDED:
            return
        conv.status = ENDED
        conv.ended_at = utcnow()
        self.db.commit()
        logger.info("conversation %s ended", conversation_id)

    def record(self, conv: Conversation, user_text: str, reply: Optional[str]) -> None:
        now = utcnow()
        self.db.add(ChatMessage(conversation_id=conv.id, role="user", content=user_text, sent_at=now))
        if reply and reply.strip():
            self.db.add(ChatMessage(conversation_id=conv.id, role="assistant", content=reply, sent_at=now))
        self.db.commit()

    def recent(self, conv: Conversation, limit: int) -> List[Dict[str, str]]:
        """The last ``limit`` messages, oldest first, shaped for the model."""
        if limit <= 0:
            return []
        rows = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == conv.id)
            .order_by(ChatMessage.id.desc())
            .limit(limit)
            .all()
        )
        return [{"role": m.role, "content": m.content} for m in reversed(rows)]
