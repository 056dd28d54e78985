"""Local time, calendar date and active-hours handling."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import structlog

log = structlog.get_logger(__name__)


def get_zone(name: str | None, default: str) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to the default on unknown names."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            log.warning("unknown_timezone", timezone=name, fallback=default)
    return ZoneInfo(default)


def utc_now() -> datetime:
    return datetime.now(UTC)


def local_date_str(now: datetime, zone: ZoneInfo) -> str:
    """Calendar date (YYYY-MM-DD) of an instant in the given zone."""
    return now.astimezone(zone).date().isoformat()


def is_active_hour(now: datetime, zone: ZoneInfo, start_hour: int, end_hour: int) -> bool:
    """True if the local hour is within [start_hour, end_hour)."""
    hour = now.astimezone(zone).hour
    return start_hour <= hour < end_hour
