"""
Data shapes shared by the schedule sync and notification pipeline.

Domain records are plain dataclasses. The provider's calendar payload and the
outbound bus message are pydantic models, since they cross a wire boundary and
need validation or aliasing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DecodeError

logger = logging.getLogger(__name__)


@dataclass
class ScheduleEntry:
    """One externally reported episode-airing event."""
    external_id: str
    title_native: Optional[str] = None
    title_romanized: Optional[str] = None
    image_url: Optional[str] = None
    next_episode_at: Optional[datetime] = None


@dataclass
class AnimeRecord:
    """Represents an anime tracked in the database."""
    id: int
    external_id: str
    title_native: Optional[str] = None
    title_romanized: Optional[str] = None
    image_url: Optional[str] = None
    next_episode_at: Optional[datetime] = None
    notified: bool = False

    @property
    def title(self) -> str:
        return self.title_romanized or self.title_native or self.external_id


@dataclass
class UserRecord:
    id: int
    external_id: str
    username: Optional[str] = None


@dataclass
class NotificationEvent:
    recipient_external_id: str
    anime_title: str


# Provider wire format
class ShikimoriImage(BaseModel):
    original: Optional[str] = None
    preview: Optional[str] = None


class ShikimoriAnime(BaseModel):
    id: int
    name: Optional[str] = None
    russian: Optional[str] = None
    image: Optional[ShikimoriImage] = None


class ShikimoriScheduleItem(BaseModel):
    next_episode: Optional[int] = None
    next_episode_at: Optional[datetime] = None
    duration: Optional[int] = None
    anime: ShikimoriAnime

    def to_entry(self) -> ScheduleEntry:
        return ScheduleEntry(
            external_id=str(self.anime.id),
            title_native=self.anime.russian,
            title_romanized=self.anime.name,
            image_url=self.anime.image.original if self.anime.image else None,
            next_episode_at=self.next_episode_at,
        )


def parse_schedule(payload: Any) -> List[ScheduleEntry]:
    """
    Convert a decoded calendar payload into schedule entries.

    Args:
        payload: Decoded JSON, expected to be a list of schedule items

    Returns:
        Schedule entries in payload order

    Raises:
        DecodeError: payload is not a list or an item fails validation
    """
    if not isinstance(payload, list):
        raise DecodeError(f"Schedule payload must be a JSON array, got {type(payload).__name__}")

    entries = []
    for index, raw in enumerate(payload):
        try:
            item = ShikimoriScheduleItem.model_validate(raw)
        except ValidationError as e:
            raise DecodeError(f"Invalid schedule item at index {index}: {e}") from e
        if item.next_episode_at is not None and item.next_episode_at.tzinfo is None:
            raise DecodeError(f"Schedule item at index {index} has a timestamp without offset")
        entries.append(item.to_entry())

    logger.debug(f"Decoded {len(entries)} schedule entries")
    return entries


class OutboundMessage(BaseModel):
    """Payload published to the message bus."""
    telegram_id: int = Field(alias="telegramId", ge=-2**63, le=2**63 - 1)
    type: str
    text: str

    model_config = ConfigDict(populate_by_name=True)

    def to_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")
