"""
Schedule reconciliation.

Merges one schedule snapshot into the anime store inside a single
transaction: new titles are inserted, known titles get their next airing time
moved, and titles the provider no longer reports are deleted.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Sequence

from .database import DatabaseManager
from .models import AnimeRecord, ScheduleEntry

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def needs_update(record: AnimeRecord, next_episode_at: datetime) -> bool:
    """
    Decide whether a fresh airing time should replace the stored one.

    A record that was not notified yet follows the provider. A notified
    record only moves forward in time, so a correction to an already
    announced episode does not announce it twice.
    """
    if record.next_episode_at is None:
        return True
    if not record.notified:
        return next_episode_at != record.next_episode_at
    return next_episode_at > record.next_episode_at


async def reconcile(db: DatabaseManager, snapshot: Sequence[ScheduleEntry]) -> ReconcileResult:
    """
    Apply a schedule snapshot to the anime store.

    Args:
        db: Database manager providing the transaction scope
        snapshot: Entries from one provider fetch

    Returns:
        Counts of the changes applied

    Raises:
        StoreError: any database failure; nothing from this snapshot is committed
    """
    result = ReconcileResult()
    tracked = {entry.external_id for entry in snapshot if entry.next_episode_at is not None}

    logger.info(f"Reconciling {len(snapshot)} schedule entries ({len(tracked)} with an upcoming episode)")

    async with db.transaction() as store:
        for entry in snapshot:
            if entry.next_episode_at is None:
                result.skipped += 1
                continue

            existing = await store.find_by_external_id(entry.external_id)
            if existing is None:
                anime_id = await store.insert(entry)
                result.inserted += 1
                logger.debug(f"Tracking new anime {entry.external_id} (ID {anime_id})")
                continue

            if needs_update(existing, entry.next_episode_at):
                await store.update_next_episode_at(existing.id, entry.next_episode_at)
                result.updated += 1
                logger.debug(
                    f"Anime {entry.external_id} next episode moved "
                    f"{existing.next_episode_at} -> {entry.next_episode_at}"
                )
            else:
                result.unchanged += 1

        for record in await store.all_animes():
            if record.external_id not in tracked:
                await store.delete(record.id)
                result.deleted += 1
                logger.debug(f"Stopped tracking anime {record.external_id}")

    logger.info(
        f"Reconciliation complete: {result.inserted} new, {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.deleted} deleted, {result.skipped} skipped"
    )
    return result
