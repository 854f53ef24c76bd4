"""Derive a raid's reminder and post-raid triggers from its schedule."""

from __future__ import annotations

from datetime import datetime, timedelta

from raidplanner.config import REMINDER_OFFSETS
from raidplanner.domain.models import Raid, Trigger, TriggerKind

DEFAULT_POST_RAID_DELAY = timedelta(minutes=30)


def reminder_triggers(
    raid: Raid,
    now: datetime,
    offsets: list[tuple[str, int]] | None = None,
) -> list[Trigger]:
    """Return reminder triggers still worth scheduling.

    A reminder is kept when its fire time (``scheduled_at - offset``) is in the
    future and its label has not already been recorded in ``reminders_sent``.
    """
    triggers: list[Trigger] = []
    for label, minutes in offsets or REMINDER_OFFSETS:
        fires_at = raid.scheduled_at - timedelta(minutes=minutes)
        if fires_at <= now or label in raid.reminders_sent:
            continue
        triggers.append(
            Trigger(
                raid_id=raid.id,
                fires_at=fires_at,
                kind=TriggerKind.REMINDER,
                label=label,
            )
        )
    return triggers


def performance_trigger(
    raid: Raid,
    now: datetime,
    delay: timedelta = DEFAULT_POST_RAID_DELAY,
) -> Trigger | None:
    fires_at = raid.scheduled_at + delay
    if fires_at <= now:
        return None
    return Trigger(
        raid_id=raid.id,
        fires_at=fires_at,
        kind=TriggerKind.PERFORMANCE_FETCH,
        label="post-raid",
    )


def reminder_text(raid: Raid, label: str) -> str:
    mentions = " ".join(f"<@{pid}>" for pid in raid.participants)
    content = f"**{label} Reminder** for {raid.name}! {mentions}".rstrip()
    if raid.guide_link:
        content += (
            f"\n\nDon't forget to study. We are using this guide: {raid.guide_link}"
        )
    return content
