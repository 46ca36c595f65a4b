"""Named posting slots resolved against the user's timezone."""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.errors import CommandError
from ..store.models import User, utcnow

logger = logging.getLogger(__name__)

DEFAULT_POSTING_TIME = time(18, 0)

SLOT_LABELS = {
    "+1h": "In 1 hour",
    "+3h": "In 3 hours",
    "tomorrow_9am": "Tomorrow 9 AM",
    "tomorrow_12pm": "Tomorrow 12 PM",
    "tomorrow_6pm": "Tomorrow 6 PM",
    "best": "Best time",
}

_RELATIVE = {"+1h": timedelta(hours=1), "+3h": timedelta(hours=3)}
_TOMORROW = {"tomorrow_9am": time(9, 0), "tomorrow_12pm": time(12, 0), "tomorrow_6pm": time(18, 0)}


def user_zone(user: User):
    try:
        return ZoneInfo(user.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {user.timezone!r} for user {user.id}, using UTC")
        return timezone.utc


def parse_posting_time(value: Optional[str]) -> time:
    """Parse ``HH:MM``. Malformed values fall back to 18:00."""
    try:
        hours, minutes = (value or "").split(":")
        return time(int(hours), int(minutes))
    except ValueError:
        return DEFAULT_POSTING_TIME


def resolve_slot(slot: str, user: User, now: Optional[datetime] = None) -> datetime:
    """
    Turn a named slot into a UTC timestamp.

    ``best`` is the next occurrence of the user's posting time in their
    timezone; if today's has passed it rolls over to tomorrow.

    Raises:
        CommandError: If the slot is unknown
    """
    now = now or utcnow()
    if slot in _RELATIVE:
        return now + _RELATIVE[slot]

    zone = user_zone(user)
    local_now = now.astimezone(zone)

    if slot in _TOMORROW:
        day = local_now.date() + timedelta(days=1)
        local = datetime.combine(day, _TOMORROW[slot], tzinfo=zone)
        return local.astimezone(timezone.utc)

    if slot == "best":
        local = datetime.combine(local_now.date(), parse_posting_time(user.posting_time), tzinfo=zone)
        if local <= local_now:
            local = datetime.combine(
                local_now.date() + timedelta(days=1),
                parse_posting_time(user.posting_time),
                tzinfo=zone,
            )
        return local.astimezone(timezone.utc)

    raise CommandError(f"Unknown schedule option: {slot}. Choose one of: {', '.join(SLOT_LABELS)}")
