# orderbot/cleanup.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .db import SessionLocal, utcnow
from .models import Order, OrderStatus

logger = logging.getLogger(__name__)


def purge_stale_drafts(db: Session, now: Optional[datetime] = None, retention_hours: Optional[int] = None) -> int:
    """Delete drafts untouched for longer than the retention period."""
    now = now or utcnow()
    hours = settings.draft_retention_hours if retention_hours is None else retention_hours
    cutoff = now - timedelta(hours=hours)

    stale = (
        db.query(Order)
        .filter(Order.status == OrderStatus.DRAFT.value, Order.updated_at < cutoff)
        .all()
    )
    for order in stale:
        db.delete(order)
    db.commit()

    if stale:
        logger.info("deleted %d draft order(s) older than %d hours", len(stale), hours)
    return len(stale)


def _sweep_once() -> int:
    db = SessionLocal()
    try:
        return purge_stale_drafts(db)
    finally:
        db.close()


async def draft_cleanup_loop(stop: asyncio.Event) -> None:
    """Run the sweep every ``cleanup_interval_hours`` after an initial delay."""
    delay = settings.cleanup_start_delay_seconds
    interval = settings.cleanup_interval_hours * 3600
    logger.info("draft cleanup starts in %ds, then every %dh", delay, settings.cleanup_interval_hours)

    while True:
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
            break
        except asyncio.TimeoutError:
            pass

        try:
            await asyncio.to_thread(_sweep_once)
        except SQLAlchemyError:
            logger.exception("draft cleanup failed, retrying next interval")
        delay = interval

    logger.info("draft cleanup stopped")
