"""
Notification dispatch to the message bus.

The bus is an ntfy compatible topic broker: every message is POSTed to
``{bus_url}/{subject}`` with the JSON payload as the body, and subscribers of
the topic (the chat bot) deliver it to the recipient.
"""

import asyncio
import logging
import re
from typing import Optional, Sequence

import aiohttp
from pydantic import ValidationError

from .config import Settings
from .errors import PublishError
from .models import NotificationEvent, OutboundMessage
from .observability import Metrics

logger = logging.getLogger(__name__)

CHAT_ID_PATTERN = re.compile(r"-?[0-9]+")


class BusPublisher:
    """Publishes raw payloads to topics of the message bus."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.bus_url = settings.bus_url.rstrip("/")
        self.bus_token = settings.bus_token
        self.timeout = aiohttp.ClientTimeout(total=settings.bus_timeout)
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

    async def publish(self, subject: str, data: bytes) -> None:
        """
        Publish one payload to ``subject``.

        Raises:
            PublishError: transport failure or a non-2xx response
        """
        headers = {"Content-Type": "application/json"}
        if self.bus_token:
            headers["Authorization"] = f"Bearer {self.bus_token}"

        url = f"{self.bus_url}/{subject}"
        try:
            async with self._get_session().post(url, data=data, headers=headers) as response:
                if not 200 <= response.status < 300:
                    body = await response.read()
                    preview = body[:200].decode("utf-8", errors="replace")
                    raise PublishError(f"Bus rejected message on {subject}: {response.status} - {preview}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"Could not publish to {url}: {e}") from e


def build_message(event: NotificationEvent, message_type: str, text_template: str) -> OutboundMessage:
    """
    Convert a notification event into the bus payload.

    Raises:
        PublishError: the recipient ID is not a numeric 64-bit chat ID
    """
    recipient = event.recipient_external_id
    if not isinstance(recipient, str) or CHAT_ID_PATTERN.fullmatch(recipient) is None:
        raise PublishError(f"Recipient {recipient!r} is not a numeric chat ID")

    try:
        return OutboundMessage(
            telegram_id=int(recipient),
            type=message_type,
            text=text_template.format(title=event.anime_title),
        )
    except ValidationError as e:
        raise PublishError(f"Recipient {recipient!r} is out of the chat ID range") from e


class Dispatcher:
    """Turns collected notification events into published bus messages."""

    def __init__(self, settings: Settings, publisher: BusPublisher, metrics: Optional[Metrics] = None):
        self.publisher = publisher
        self.subject = settings.bus_subject
        self.message_type = settings.notification_type
        self.text_template = settings.notification_text_template
        self.metrics = metrics

    async def dispatch(self, events: Sequence[NotificationEvent]) -> int:
        """
        Publish every event in order, stopping at the first failure.

        The anime behind these events are already marked as notified, so a
        failure here means the remaining recipients miss this airing.

        Returns:
            Number of messages published

        Raises:
            PublishError: the failing event; later events were not sent
        """
        published = 0
        for event in events:
            try:
                message = build_message(event, self.message_type, self.text_template)
                await self.publisher.publish(self.subject, message.to_bytes())
            except PublishError as e:
                if self.metrics:
                    self.metrics.publish_failures.inc()
                logger.error(
                    f"Dispatch halted after {published}/{len(events)} messages: {e}; "
                    f"{len(events) - published} recipients will not be notified"
                )
                raise
            published += 1
            if self.metrics:
                self.metrics.messages_published.inc()
            logger.debug(f"Notified {event.recipient_external_id} about {event.anime_title}")

        logger.info(f"Published {published} notifications to {self.subject}")
        return published
