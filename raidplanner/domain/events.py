"""Domain events emitted during a raid's lifecycle."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class RaidCreated(BaseModel):
    """Fired when a new Raid is persisted."""

    raid_id: str


class RosterChanged(BaseModel):
    """Fired after a signup or cancellation has been persisted."""

    raid_id: str
    participant_id: str
    action: str


class RaidDeleted(BaseModel):
    """Fired after a raid has been removed from the store."""

    raid_id: str
    name: str
    origin_channel: str | None = None
    origin_message: str | None = None


class ReminderSent(BaseModel):
    """Fired once a reminder label has been recorded for a raid."""

    raid_id: str
    label: str
    sent_at: datetime
    delivered: bool
