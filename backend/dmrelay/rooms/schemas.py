"""Pydantic models for room messages."""
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A chat message as stored in a room log and broadcast to clients.

    Attributes:
        username: Display name of the sender.
        text: Message body.
        time: Absolute instant the server accepted the message (UTC).
        roomId: Canonical room id the message belongs to.
    """
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., description="Display name of the sender")
    text: str = Field(..., description="Message text")
    time: datetime = Field(default_factory=utc_now, description="UTC timestamp")
    roomId: str = Field(..., description="Canonical room id")

    @field_validator("time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Stored logs written without an offset are read as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_wire(self) -> dict:
        """JSON-ready dict, timestamp rendered as ISO-8601."""
        return self.model_dump(mode="json")


# Validates/serializes the on-disk representation of a room log.
MessageLog = TypeAdapter(List[Message])
