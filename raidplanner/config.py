"""Runtime settings and the static raid composition tables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return v


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name, "1" if default else "0").strip().lower()
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = _env(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Raid composition
# ---------------------------------------------------------------------------

ROLES = [
    "Tank",
    "Regen Healer",
    "Shield Healer",
    "Melee DPS",
    "Ranged DPS",
    "Caster DPS",
    "Flex",
]

# Flex is offered but unlimited (0 = no cap, hidden from the roster display).
DEFAULT_RAID_COMP = {
    "Tank": 2,
    "Regen Healer": 1,
    "Shield Healer": 1,
    "Melee DPS": 2,
    "Ranged DPS": 1,
    "Caster DPS": 1,
    "Flex": 0,
}

MAX_PARTY_SIZE = 8

# (label, minutes before the raid)
REMINDER_OFFSETS = [
    ("24 hours", 24 * 60),
    ("3 hours", 3 * 60),
    ("1 hour", 60),
]

RECURRING_TEMPLATES = {
    "raid1": {
        "days": ["Monday", "Tuesday", "Thursday"],
        "time": "20:00",
        "name": "Weekly Static Run",
    },
}


@dataclass(frozen=True)
class Settings:
    # -------------------------
    # Storage / scheduling
    # -------------------------
    data_dir: str = _env("RAIDPLANNER_DATA_DIR", "./data").strip() or "./data"
    timezone: str = _env("RAIDPLANNER_TIMEZONE", "UTC").strip() or "UTC"
    poll_seconds: int = _env_int("RAIDPLANNER_POLL_SECONDS", 30)
    post_raid_delay_minutes: int = _env_int("RAIDPLANNER_POST_RAID_DELAY_MINUTES", 30)
    recurring_weeks: int = _env_int("RAIDPLANNER_RECURRING_WEEKS", 4)

    # -------------------------
    # Logging
    # -------------------------
    log_level: str = _env("RAIDPLANNER_LOG_LEVEL", "INFO").strip() or "INFO"
    log_dir: str = _env("RAIDPLANNER_LOG_DIR", "logs").strip() or "logs"
    verbose: bool = _env_bool("RAIDPLANNER_VERBOSE", False)

    # -------------------------
    # Collaborators
    # -------------------------
    webhook_url: str = _env("RAIDPLANNER_WEBHOOK_URL", "").strip()
    fflogs_client_id: str = _env("FFLOGS_CLIENT_ID", "").strip()
    fflogs_client_secret: str = _env("FFLOGS_CLIENT_SECRET", "").strip()
    fflogs_region: str = _env("FFLOGS_REGION", "na").strip().lower() or "na"

    reminder_offsets: list[tuple[str, int]] = field(
        default_factory=lambda: list(REMINDER_OFFSETS)
    )

    @property
    def raids_path(self) -> str:
        return os.path.join(self.data_dir, "raids.json")

    @property
    def characters_path(self) -> str:
        return os.path.join(self.data_dir, "character_logs.json")


settings = Settings()
