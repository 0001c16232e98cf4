"""
Test doubles: an in-memory stand-in for the asyncpg pool, a scripted aiohttp
session and a sample provider calendar.

The fake connection understands exactly the statements defined in
``anime_notifier.database`` and snapshots its tables when a transaction
opens, restoring them if the transaction block raises.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime

from anime_notifier import database as sql


def ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.saved = None

    async def __aenter__(self):
        self.saved = copy.deepcopy((self.conn.animes, self.conn.users, self.conn.subscriptions, self.conn.next_id))
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.animes, self.conn.users, self.conn.subscriptions, self.conn.next_id = self.saved
            self.conn.rollbacks += 1
        return False


class FakeConnection:
    def __init__(self):
        self.animes = {}
        self.users = {}
        self.subscriptions = set()
        self.next_id = 1
        self.fail_on = set()
        self.failure = OSError("connection reset by peer")
        self.executed = []
        self.isolations = []
        self.commits = 0
        self.rollbacks = 0

    # -- seeding helpers --
    def _new_id(self) -> int:
        new_id = self.next_id
        self.next_id += 1
        return new_id

    def add_anime(self, external_id, next_episode_at, notified=False, eng_name=None, rus_name=None, image_url=None):
        anime_id = self._new_id()
        self.animes[anime_id] = {
            'id': anime_id,
            'external_id': external_id,
            'rus_name': rus_name,
            'eng_name': eng_name,
            'image_url': image_url,
            'next_episode_at': next_episode_at,
            'notification_sent': notified,
        }
        return anime_id

    def add_user(self, external_id, username=None):
        user_id = self._new_id()
        self.users[user_id] = {'id': user_id, 'external_id': external_id, 'username': username}
        return user_id

    def subscribe(self, user_id, anime_id):
        self.subscriptions.add((user_id, anime_id))

    def by_external_id(self, external_id):
        return next((row for row in self.animes.values() if row['external_id'] == external_id), None)

    # -- asyncpg surface --
    def transaction(self, isolation=None):
        self.isolations.append(isolation)
        return FakeTransaction(self)

    def _run(self, statement):
        self.executed.append(statement)
        if statement in self.fail_on:
            raise self.failure

    async def fetchrow(self, statement, *args):
        self._run(statement)
        if statement == sql.FIND_BY_EXTERNAL_ID_SQL:
            row = self.by_external_id(args[0])
            return dict(row) if row else None
        if statement == sql.INSERT_ANIME_SQL:
            external_id, rus_name, eng_name, image_url, next_episode_at = args
            assert self.by_external_id(external_id) is None, "unique violation on external_id"
            anime_id = self.add_anime(external_id, next_episode_at, False, eng_name, rus_name, image_url)
            return {'id': anime_id}
        raise AssertionError(f"unexpected fetchrow: {statement}")

    async def fetch(self, statement, *args):
        self._run(statement)
        if statement == sql.SELECT_ALL_ANIMES_SQL:
            return [dict(row) for _, row in sorted(self.animes.items())]
        if statement == sql.SELECT_DUE_SUBSCRIPTIONS_SQL:
            now = args[0]
            rows = []
            for user_id, anime_id in sorted(self.subscriptions):
                anime = self.animes.get(anime_id)
                if anime is None or anime['next_episode_at'] is None:
                    continue
                if anime['next_episode_at'] <= now and not anime['notification_sent']:
                    user = self.users[user_id]
                    rows.append(dict(anime, user_id=user['id'], user_external_id=user['external_id'],
                                     username=user['username']))
            return rows
        raise AssertionError(f"unexpected fetch: {statement}")

    async def execute(self, statement, *args):
        self._run(statement)
        if statement == sql.SCHEMA_SQL:
            return "CREATE TABLE"
        if statement == sql.UPDATE_NEXT_EPISODE_SQL:
            anime_id, next_episode_at = args
            row = self.animes.get(anime_id)
            if row is None:
                return "UPDATE 0"
            row['next_episode_at'] = next_episode_at
            row['notification_sent'] = False
            return "UPDATE 1"
        if statement == sql.DELETE_ANIME_SQL:
            anime_id = args[0]
            if self.animes.pop(anime_id, None) is None:
                return "DELETE 0"
            self.subscriptions = {s for s in self.subscriptions if s[1] != anime_id}
            return "DELETE 1"
        if statement == sql.MARK_NOTIFIED_SQL:
            now = args[0]
            count = 0
            for row in self.animes.values():
                if row['next_episode_at'] is not None and row['next_episode_at'] <= now:
                    row['notification_sent'] = True
                    count += 1
            return f"UPDATE {count}"
        raise AssertionError(f"unexpected execute: {statement}")


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self):
        self.closed = True


class FakeResponse:
    def __init__(self, status=200, body=""):
        self.status = status
        self.body = body.encode("utf-8") if isinstance(body, str) else body

    async def read(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    async def close(self):
        self.closed = True


CALENDAR = [
    {
        "next_episode": 5,
        "next_episode_at": "2024-01-05T17:30:00.000+03:00",
        "duration": 24,
        "anime": {
            "id": 52991,
            "name": "Sousou no Frieren",
            "russian": "Провожающая в последний путь Фрирен",
            "image": {"original": "/system/animes/original/52991.jpg", "preview": "/p.jpg"},
            "url": "/animes/52991",
        },
    },
    {
        "next_episode": 1,
        "next_episode_at": None,
        "duration": 0,
        "anime": {"id": 1, "name": "Announced", "russian": "Анонс", "image": {"original": "/1.jpg"}},
    },
]
