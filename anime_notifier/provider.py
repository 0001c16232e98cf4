import asyncio
import json
import logging
from typing import List, Optional

import aiohttp

from .config import Settings
from .errors import DecodeError, FetchError
from .models import ScheduleEntry, parse_schedule

logger = logging.getLogger(__name__)


class ScheduleProvider:
    """Fetches the current airing calendar from the schedule provider."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.url = settings.schedule_url
        self.verify_ssl = settings.schedule_verify_ssl
        self.headers = {"User-Agent": settings.schedule_user_agent, "Accept": "application/json"}
        self.timeout = aiohttp.ClientTimeout(total=settings.schedule_timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(self) -> List[ScheduleEntry]:
        """
        Download and decode one schedule snapshot.

        Raises:
            FetchError: provider unreachable, timed out or answered non-200
            DecodeError: body is not a valid calendar payload
        """
        logger.debug(f"Http request: GET {self.url}")
        try:
            async with self._get_session().get(self.url, headers=self.headers, ssl=self.verify_ssl) as response:
                body = await response.read()
                logger.debug(f"Http response: {response.status} ({len(body)} bytes)")
                if response.status != 200:
                    preview = body[:200].decode("utf-8", errors="replace")
                    raise FetchError(f"Schedule provider returned {response.status}: {preview}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"Could not fetch schedule from {self.url}: {e}") from e

        try:
            payload = json.loads(body)
        except ValueError as e:  # includes UnicodeDecodeError
            raise DecodeError(f"Schedule response is not valid UTF-8 JSON: {e}") from e

        entries = parse_schedule(payload)
        logger.info(f"Fetched {len(entries)} schedule entries")
        return entries
