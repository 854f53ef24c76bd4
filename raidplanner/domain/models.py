"""Domain models for the raid planner."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_validator

try:
    from enum import StrEnum
except ImportError:  # pragma: no cover - fallback for older Python runtimes

    class StrEnum(str, Enum):
        pass


class SignupStatus(StrEnum):
    ACCEPTED = "accepted"
    WAITLISTED = "waitlisted"
    REJECTED = "rejected"


class TriggerKind(StrEnum):
    REMINDER = "reminder"
    PERFORMANCE_FETCH = "performance_fetch"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_id_lock = threading.Lock()
_last_id = 0


def _new_id() -> str:
    """Millisecond timestamp id, bumped so ids stay strictly increasing."""
    global _last_id
    with _id_lock:
        candidate = int(time.time() * 1000)
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return str(candidate)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Participant(BaseModel):
    display_name: str
    role: str
    joined_at: datetime = Field(default_factory=_utcnow)


class WaitlistEntry(BaseModel):
    participant_id: str
    display_name: str
    role: str
    joined_at: datetime = Field(default_factory=_utcnow)


class Raid(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    scheduled_at: datetime
    capacity_by_role: dict[str, int] = Field(default_factory=dict)
    party_size: int = 8
    participants: dict[str, Participant] = Field(default_factory=dict)
    waitlist: list[WaitlistEntry] = Field(default_factory=list)
    reminders_sent: list[str] = Field(default_factory=list)
    raid_type: str | None = None
    guide_link: str | None = None
    origin_channel: str | None = None
    origin_message: str | None = None

    @field_validator("scheduled_at")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def role_count(self, role: str) -> int:
        return sum(1 for p in self.participants.values() if p.role == role)

    def is_waitlisted(self, participant_id: str) -> bool:
        return any(w.participant_id == participant_id for w in self.waitlist)


class Trigger(BaseModel):
    """A pending one-shot callback registration. Never persisted."""

    raid_id: str
    fires_at: datetime
    kind: TriggerKind
    label: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.raid_id, self.kind.value, self.label)


class CharacterRegistration(BaseModel):
    id: int
    name: str
    server: str
    region: str
    lodestone_id: int | None = None


class RecurringTemplate(BaseModel):
    days: list[str] = Field(min_length=1)
    time: str
    name: str

    @field_validator("time")
    @classmethod
    def _hh_mm(cls, value: str) -> str:
        hours, _, minutes = value.partition(":")
        if not (hours.isdigit() and minutes.isdigit()):
            raise ValueError("time must be HH:MM")
        if not (0 <= int(hours) < 24 and 0 <= int(minutes) < 60):
            raise ValueError("time must be HH:MM")
        return value


# ---------------------------------------------------------------------------
# Analytics records
# ---------------------------------------------------------------------------


class FightSummary(BaseModel):
    name: str
    kill: bool
    fight_percentage: float | None = None


class PerformanceReport(BaseModel):
    code: str
    title: str
    zone: str
    start_time: datetime
    end_time: datetime
    total_fights: int
    kills: int
    best_pull: float | None = None

    @computed_field
    @property
    def url(self) -> str:
        return f"https://www.fflogs.com/reports/{self.code}"

    @computed_field
    @property
    def duration(self) -> str:
        seconds = int((self.end_time - self.start_time).total_seconds())
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        if hours > 0:
            return f"{hours}:{minutes:02d}:{secs:02d}"
        return f"{minutes}:{secs:02d}"


class ZoneStats(BaseModel):
    total_pulls: int = 0
    total_kills: int = 0
    participation: int = 0
    best_pull: float = 0.0

    @computed_field
    @property
    def kill_ratio(self) -> str:
        if self.total_pulls == 0:
            return "N/A"
        return f"{self.total_kills / self.total_pulls * 100:.1f}%"


class ParticipantStats(BaseModel):
    participant_id: str
    character: str
    server: str
    role: str
    recent_logs: int


class StaticPerformance(BaseModel):
    raid_id: str
    raid_name: str
    scheduled_at: datetime
    participants: list[ParticipantStats] = Field(default_factory=list)
    zones: dict[str, ZoneStats] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


class PresentationField(BaseModel):
    name: str
    value: str
    inline: bool = False


class RaidPresentation(BaseModel):
    title: str
    description: str
    fields: list[PresentationField] = Field(default_factory=list)
    footer: str

    def as_text(self) -> str:
        lines = [f"**{self.title}**"]
        if self.description:
            lines.append(self.description)
        for f in self.fields:
            lines.append(f"__{f.name}__\n{f.value}")
        lines.append(self.footer)
        return "\n\n".join(lines)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class RaidSpec(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    scheduled_at: datetime
    raid_type: str | None = None
    guide_link: str | None = None
    roles: dict[str, int] = Field(default_factory=dict)
    party_size: int | None = None


class RaidCommandRequest(BaseModel):
    text: str


class SignupRequest(BaseModel):
    participant_id: str
    display_name: str
    role: str


class SignupResult(BaseModel):
    status: SignupStatus
    message: str

    @computed_field
    @property
    def success(self) -> bool:
        return self.status == SignupStatus.ACCEPTED


class CommandResult(BaseModel):
    success: bool
    message: str


class PingRequest(BaseModel):
    message: str = "Attention needed!"


class PingResult(BaseModel):
    participants: int
    raids: int
    message: str


class ScheduleResult(BaseModel):
    template_id: str
    created: int
    raid_ids: list[str] = Field(default_factory=list)
    message: str


class RegisterCharacterRequest(BaseModel):
    participant_id: str
    name: str
    server: str
    region: str | None = None


class RaidSummary(BaseModel):
    id: str
    name: str
    scheduled_at: datetime
    raid_type: str | None = None
    signed_up: int
    waitlisted: int


class RecentPerformance(BaseModel):
    character: CharacterRegistration
    reports: list[PerformanceReport]
