"""Shared value types."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class Location(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class TimedLocation(Location):
    """Location sample with the time it was taken."""

    timestamp: datetime = Field(default_factory=utc_now)
