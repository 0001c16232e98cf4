import json

import pytest

from anime_notifier.errors import DecodeError, ErrorKind
from anime_notifier.models import OutboundMessage, ScheduleEntry, parse_schedule

from fakes import CALENDAR, ts


def test_parse_schedule_maps_provider_fields():
    entries = parse_schedule(CALENDAR)

    assert entries[0] == ScheduleEntry(
        external_id="52991",
        title_native="Провожающая в последний путь Фрирен",
        title_romanized="Sousou no Frieren",
        image_url="/system/animes/original/52991.jpg",
        next_episode_at=ts("2024-01-05T14:30:00Z"),
    )
    assert entries[1].next_episode_at is None


def test_parse_schedule_rejects_non_list():
    with pytest.raises(DecodeError) as exc_info:
        parse_schedule({"error": "rate limited"})
    assert exc_info.value.kind is ErrorKind.DECODE


def test_parse_schedule_rejects_bad_timestamp():
    broken = [dict(CALENDAR[0], next_episode_at="next friday")]
    with pytest.raises(DecodeError, match="index 0"):
        parse_schedule(broken)


def test_parse_schedule_rejects_missing_anime():
    with pytest.raises(DecodeError):
        parse_schedule([{"next_episode_at": "2024-01-05T17:30:00+03:00"}])


def test_outbound_message_wire_format():
    message = OutboundMessage(telegram_id=999, type="notification", text="Frieren")
    assert json.loads(message.to_bytes()) == {"telegramId": 999, "type": "notification", "text": "Frieren"}
