"""
Database module for the anime notifier.

This module handles PostgreSQL operations including:
- Connection pool lifecycle and schema bootstrap
- Transaction scopes that classify failures as StoreError
- Anime lookup, insert, update and delete primitives used by reconciliation
- The due-subscription join and bulk notified marking
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Tuple

import asyncpg
from asyncpg import Connection, Pool

from .config import Settings
from .errors import StoreError
from .models import AnimeRecord, ScheduleEntry, UserRecord

logger = logging.getLogger(__name__)

# Failures that abort a transaction
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS animes (
    id SERIAL PRIMARY KEY,
    external_id TEXT UNIQUE NOT NULL,
    rus_name TEXT,
    eng_name TEXT,
    image_url TEXT,
    next_episode_at TIMESTAMP WITH TIME ZONE,
    notification_sent BOOLEAN NOT NULL DEFAULT false
);

CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    external_id TEXT UNIQUE NOT NULL,
    username TEXT
);

CREATE TABLE IF NOT EXISTS subscriptions (
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    anime_id INTEGER NOT NULL REFERENCES animes(id) ON DELETE CASCADE,
    PRIMARY KEY (user_id, anime_id)
);

CREATE INDEX IF NOT EXISTS idx_animes_next_episode_at ON animes(next_episode_at);
CREATE INDEX IF NOT EXISTS idx_subscriptions_anime_id ON subscriptions(anime_id);
"""

ANIME_COLUMNS = "id, external_id, rus_name, eng_name, image_url, next_episode_at, notification_sent"

FIND_BY_EXTERNAL_ID_SQL = f"SELECT {ANIME_COLUMNS} FROM animes WHERE external_id = $1"

SELECT_ALL_ANIMES_SQL = f"SELECT {ANIME_COLUMNS} FROM animes"

INSERT_ANIME_SQL = """
INSERT INTO animes (external_id, rus_name, eng_name, image_url, next_episode_at, notification_sent)
VALUES ($1, $2, $3, $4, $5, false)
RETURNING id
"""

UPDATE_NEXT_EPISODE_SQL = "UPDATE animes SET next_episode_at = $2, notification_sent = false WHERE id = $1"

DELETE_ANIME_SQL = "DELETE FROM animes WHERE id = $1"

SELECT_DUE_SUBSCRIPTIONS_SQL = """
SELECT a.id, a.external_id, a.rus_name, a.eng_name, a.image_url, a.next_episode_at, a.notification_sent,
       u.id AS user_id, u.external_id AS user_external_id, u.username
FROM animes a
JOIN subscriptions s ON a.id = s.anime_id
JOIN users u ON u.id = s.user_id
WHERE a.next_episode_at <= $1 AND a.notification_sent = false
"""

MARK_NOTIFIED_SQL = "UPDATE animes SET notification_sent = true WHERE next_episode_at <= $1"


def _row_to_anime(row) -> AnimeRecord:
    return AnimeRecord(
        id=row['id'],
        external_id=row['external_id'],
        title_native=row['rus_name'],
        title_romanized=row['eng_name'],
        image_url=row['image_url'],
        next_episode_at=row['next_episode_at'],
        notified=bool(row['notification_sent']),
    )


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class AnimeStore:
    """Store primitives bound to one connection inside an open transaction."""

    def __init__(self, conn: Connection):
        self.conn = conn

    async def find_by_external_id(self, external_id: str) -> Optional[AnimeRecord]:
        row = await self.conn.fetchrow(FIND_BY_EXTERNAL_ID_SQL, external_id)
        return _row_to_anime(row) if row else None

    async def all_animes(self) -> List[AnimeRecord]:
        rows = await self.conn.fetch(SELECT_ALL_ANIMES_SQL)
        return [_row_to_anime(row) for row in rows]

    async def insert(self, entry: ScheduleEntry) -> int:
        """Insert a new anime with notified cleared and return its ID."""
        row = await self.conn.fetchrow(
            INSERT_ANIME_SQL,
            entry.external_id,
            entry.title_native,
            entry.title_romanized,
            entry.image_url,
            entry.next_episode_at,
        )
        return row['id']

    async def update_next_episode_at(self, anime_id: int, next_episode_at: datetime) -> None:
        """Move the next airing time; this always clears the notified flag."""
        await self.conn.execute(UPDATE_NEXT_EPISODE_SQL, anime_id, next_episode_at)

    async def delete(self, anime_id: int) -> None:
        await self.conn.execute(DELETE_ANIME_SQL, anime_id)

    async def due_subscriptions(self, now: datetime) -> List[Tuple[AnimeRecord, UserRecord]]:
        """(anime, subscriber) pairs whose episode aired by ``now`` and were not yet notified."""
        rows = await self.conn.fetch(SELECT_DUE_SUBSCRIPTIONS_SQL, now)
        pairs = []
        for row in rows:
            user = UserRecord(
                id=row['user_id'],
                external_id=row['user_external_id'],
                username=row['username'],
            )
            pairs.append((_row_to_anime(row), user))
        return pairs

    async def mark_notified(self, now: datetime) -> int:
        """Flag every anime aired by ``now`` as notified; returns the row count."""
        status = await self.conn.execute(MARK_NOTIFIED_SQL, now)
        return _affected_rows(status)


class DatabaseManager:
    """Manage the asyncpg pool and transactional access to the anime store."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.database_url = settings.database_url
        self.pool: Optional[Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables."""
        logger.info("Initializing database connection pool")
        try:
            self.pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_size,
                command_timeout=self.settings.db_command_timeout,
                max_inactive_connection_lifetime=self.settings.db_connection_lifetime,
            )
        except DB_ERRORS as e:
            raise StoreError(f"Could not connect to database: {e}") from e

        if self.settings.db_create_schema:
            await self.create_tables()
        logger.info("Database initialized successfully")

    async def close(self):
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Database connection pool closed")

    @asynccontextmanager
    async def get_connection(self):
        """Get a database connection from the pool."""
        if not self.pool:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AnimeStore]:
        """
        Open one transaction and yield a store bound to it.

        The transaction commits when the block exits normally and rolls back
        on any exception, including cancellation. Database failures raised
        anywhere inside the block surface as a single StoreError after the
        rollback.
        """
        try:
            async with self.get_connection() as conn:
                async with conn.transaction(isolation=self.settings.db_isolation):
                    yield AnimeStore(conn)
        except DB_ERRORS as e:
            logger.error(f"Transaction rolled back: {e}")
            raise StoreError(f"Transaction failed: {e}") from e

    async def create_tables(self):
        """Create database tables if they don't exist."""
        try:
            async with self.get_connection() as conn:
                await conn.execute(SCHEMA_SQL)
        except DB_ERRORS as e:
            raise StoreError(f"Could not create schema: {e}") from e

        logger.info("Database tables created/verified")
