import logging
from datetime import datetime
from typing import List

from .database import DatabaseManager
from .models import NotificationEvent

logger = logging.getLogger(__name__)


async def collect_due(db: DatabaseManager, now: datetime) -> List[NotificationEvent]:
    """
    Collect notifications for episodes that aired by ``now`` and mark them sent.

    One event is produced per (anime, subscriber) pair. Every anime aired by
    ``now`` is flagged as notified in the same transaction, including titles
    without subscribers, so the next call starts from a clean slate.

    Raises:
        StoreError: the transaction was rolled back and no events are returned
    """
    async with db.transaction() as store:
        pairs = await store.due_subscriptions(now)
        events = [
            NotificationEvent(recipient_external_id=user.external_id, anime_title=anime.title)
            for anime, user in pairs
        ]
        marked = await store.mark_notified(now)

    logger.info(f"Collected {len(events)} notifications, marked {marked} anime as notified")
    return events
