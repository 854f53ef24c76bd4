"""Raid lifecycle controller: creation, roster changes, triggers, deletion."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable

from raidplanner.config import (
    DEFAULT_RAID_COMP,
    MAX_PARTY_SIZE,
    RECURRING_TEMPLATES,
    REMINDER_OFFSETS,
    ROLES,
)
from raidplanner.domain.bus import EventBus
from raidplanner.domain.events import RaidCreated, RaidDeleted, ReminderSent, RosterChanged
from raidplanner.domain.handlers import HandlerRegistry
from raidplanner.domain.models import (
    CharacterRegistration,
    PerformanceReport,
    PingResult,
    Raid,
    RaidPresentation,
    RaidSpec,
    RecurringTemplate,
    ScheduleResult,
    SignupResult,
    SignupStatus,
    StaticPerformance,
    Trigger,
)
from raidplanner.repos.store import CharacterStore, PersistenceError, RaidStore
from raidplanner.services.notifications import (
    LogNotifier,
    LogPublisher,
    Notifier,
    PresentationPublisher,
)
from raidplanner.services.performance import (
    AnalyticsProvider,
    build_static_performance,
    format_static_performance,
)
from raidplanner.services.recurrence import generate_occurrences
from raidplanner.services.reminders import (
    DEFAULT_POST_RAID_DELAY,
    performance_trigger,
    reminder_text,
    reminder_triggers,
)
from raidplanner.services.render import render_raid
from raidplanner.services.roster import RosterManager
from raidplanner.services.scheduler import TriggerScheduler

logger = logging.getLogger(__name__)


class RaidNotFound(LookupError):
    pass


class TemplateNotFound(LookupError):
    pass


class CharacterNotRegistered(LookupError):
    pass


class AnalyticsUnavailable(RuntimeError):
    """No analytics provider is configured."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RaidController:
    """Owns the raid and character stores and everything that acts on them.

    Reminder and post-raid callbacks are registered with the scheduler on
    creation and again by ``recover()`` after a restart; the callbacks look
    the raid up again when they fire and do nothing if it is gone.
    """

    def __init__(
        self,
        raid_store: RaidStore,
        character_store: CharacterStore,
        scheduler: TriggerScheduler,
        notifier: Notifier | None = None,
        publisher: PresentationPublisher | None = None,
        analytics: AnalyticsProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
        reminder_offsets: list[tuple[str, int]] | None = None,
        post_raid_delay: timedelta = DEFAULT_POST_RAID_DELAY,
        templates: dict[str, dict] | None = None,
        zone: tzinfo | None = None,
        default_region: str = "na",
        recurring_weeks: int = 4,
    ) -> None:
        self.raids = raid_store
        self.characters = character_store
        self.scheduler = scheduler
        self.notifier = notifier or LogNotifier()
        self.publisher = publisher or LogPublisher()
        self.analytics = analytics
        self.clock = clock
        self.reminder_offsets = reminder_offsets or REMINDER_OFFSETS
        self.post_raid_delay = post_raid_delay
        self.templates = RECURRING_TEMPLATES if templates is None else templates
        self.zone = zone or timezone.utc
        self.default_region = default_region
        self.recurring_weeks = recurring_weeks

        self.roster = RosterManager(raid_store, ROLES, clock)
        self.bus = EventBus()
        self.handlers = HandlerRegistry(self.bus, raid_store, self.publisher)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def recover(self) -> int:
        """Load both tables and re-derive pending triggers for every raid."""
        raids = self.raids.load()
        self.characters.load()
        scheduled = sum(self.schedule_triggers(raid) for raid in raids)
        logger.info("Recovered %d raids, %d pending triggers", len(raids), scheduled)
        return scheduled

    # ------------------------------------------------------------------
    # Creation / deletion
    # ------------------------------------------------------------------

    def create(self, spec: RaidSpec) -> Raid:
        scheduled_at = spec.scheduled_at
        if scheduled_at.tzinfo is None:
            # Wall-clock time in the configured zone.
            scheduled_at = scheduled_at.replace(tzinfo=self.zone)
        raid = Raid(
            name=spec.name,
            description=spec.description,
            scheduled_at=scheduled_at,
            capacity_by_role=dict(spec.roles) if spec.roles else dict(DEFAULT_RAID_COMP),
            party_size=spec.party_size or MAX_PARTY_SIZE,
            raid_type=spec.raid_type,
            guide_link=spec.guide_link,
        )
        self.raids.add(raid)
        logger.info("Created raid %s (%s) at %s", raid.id, raid.name, raid.scheduled_at)

        self.bus.publish(RaidCreated(raid_id=raid.id))
        self.schedule_triggers(raid)
        return raid

    def delete(self, raid_id: str) -> Raid:
        with self.raids.lock(raid_id):
            raid = self.raids.delete(raid_id)
        if raid is None:
            raise RaidNotFound(raid_id)
        self.scheduler.discard(raid_id)
        logger.info("Deleted raid %s (%s)", raid_id, raid.name)
        self.bus.publish(
            RaidDeleted(
                raid_id=raid_id,
                name=raid.name,
                origin_channel=raid.origin_channel,
                origin_message=raid.origin_message,
            )
        )
        return raid

    def get(self, raid_id: str) -> Raid:
        raid = self.raids.get(raid_id)
        if raid is None:
            raise RaidNotFound(raid_id)
        return raid

    def list_upcoming(self) -> list[Raid]:
        now = self.clock()
        upcoming = [r for r in self.raids.list_all() if r.scheduled_at > now]
        return sorted(upcoming, key=lambda r: r.scheduled_at)

    def render(self, raid: Raid) -> RaidPresentation:
        return render_raid(raid)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def sign_up(
        self, raid_id: str, participant_id: str, display_name: str, role: str
    ) -> SignupResult:
        with self.raids.lock(raid_id):
            raid = self.raids.get(raid_id)
            if raid is None:
                return SignupResult(status=SignupStatus.REJECTED, message="Raid not found!")
            result = self.roster.sign_up(raid, participant_id, display_name, role)
        if result.status != SignupStatus.REJECTED:
            self.bus.publish(
                RosterChanged(raid_id=raid_id, participant_id=participant_id, action=result.status)
            )
        return result

    def cancel(self, raid_id: str, participant_id: str) -> bool:
        with self.raids.lock(raid_id):
            raid = self.raids.get(raid_id)
            if raid is None:
                return False
            removed = self.roster.cancel(raid, participant_id)
        if removed:
            self.bus.publish(
                RosterChanged(raid_id=raid_id, participant_id=participant_id, action="cancelled")
            )
        return removed

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def schedule_triggers(self, raid: Raid) -> int:
        now = self.clock()
        scheduled = 0
        for trigger in reminder_triggers(raid, now, self.reminder_offsets):
            if self.scheduler.schedule_at(trigger, self._on_reminder):
                scheduled += 1
        post_raid = performance_trigger(raid, now, self.post_raid_delay)
        if post_raid is not None and self.scheduler.schedule_at(
            post_raid, self._on_performance_fetch
        ):
            scheduled += 1
        return scheduled

    def _on_reminder(self, trigger: Trigger) -> None:
        with self.raids.lock(trigger.raid_id):
            raid = self.raids.get(trigger.raid_id)
            if raid is None:
                logger.debug("Raid %s gone, skipping %s reminder", trigger.raid_id, trigger.label)
                return
            if trigger.label in raid.reminders_sent:
                return

            delivered = False
            if raid.origin_channel:
                message = reminder_text(raid, trigger.label)
                message += "\n\n" + render_raid(raid).as_text()
                try:
                    delivered = self.notifier.send(raid.origin_channel, message)
                except Exception:
                    logger.exception("Failed to send reminder for raid %s", raid.id)
            else:
                logger.warning("Raid %s has no channel, reminder not delivered", raid.id)

            raid.reminders_sent.append(trigger.label)
            try:
                self.raids.save(raid.id)
            except PersistenceError:
                raid.reminders_sent.remove(trigger.label)
                raise
            logger.info("Sent %s reminder for raid %s", trigger.label, raid.name)

        self.bus.publish(
            ReminderSent(
                raid_id=trigger.raid_id,
                label=trigger.label,
                sent_at=self.clock(),
                delivered=delivered,
            )
        )

    def _on_performance_fetch(self, trigger: Trigger) -> None:
        raid = self.raids.get(trigger.raid_id)
        if raid is None:
            logger.debug("Raid %s gone, skipping performance fetch", trigger.raid_id)
            return
        if self.analytics is None:
            logger.info("No analytics provider configured, skipping raid %s", raid.id)
            return
        logger.info("Auto-fetching logs for raid %s (ID: %s)", raid.name, raid.id)
        stats = build_static_performance(raid, self.characters, self.analytics)
        if not raid.origin_channel:
            return
        try:
            self.notifier.send(raid.origin_channel, format_static_performance(stats))
        except Exception:
            logger.exception("Failed to send logs report for raid %s", raid.id)

    # ------------------------------------------------------------------
    # Batch commands
    # ------------------------------------------------------------------

    def schedule_recurring(self, template_id: str) -> ScheduleResult:
        raw = self.templates.get(template_id)
        if raw is None:
            raise TemplateNotFound(template_id)
        template = RecurringTemplate.model_validate(raw)

        created: list[str] = []
        for day_name, start in generate_occurrences(
            template, self.clock(), weeks=self.recurring_weeks, zone=self.zone
        ):
            raid = self.create(
                RaidSpec(
                    name=f"{template.name} - {day_name}",
                    description=f"Regular {template_id} raid on {day_name}s",
                    scheduled_at=start,
                    raid_type=template_id,
                    roles=dict(DEFAULT_RAID_COMP),
                )
            )
            created.append(raid.id)

        return ScheduleResult(
            template_id=template_id,
            created=len(created),
            raid_ids=created,
            message=(
                f"Successfully scheduled {len(created)} instances of "
                f"{template_id} for the next {self.recurring_weeks} weeks."
            ),
        )

    def ping(self, raid_type: str, message: str, destination: str | None = None) -> PingResult:
        typed = [r for r in self.raids.list_all() if r.raid_type == raid_type]
        if not typed:
            return PingResult(
                participants=0, raids=0, message=f"No raids found with type '{raid_type}'."
            )

        participants: list[str] = []
        for raid in typed:
            for participant_id in raid.participants:
                if participant_id not in participants:
                    participants.append(participant_id)
        if not participants:
            return PingResult(
                participants=0,
                raids=len(typed),
                message=f"No participants found in raids of type '{raid_type}'.",
            )

        mentions = " ".join(f"<@{pid}>" for pid in participants)
        target = destination or next(
            (r.origin_channel for r in typed if r.origin_channel), raid_type
        )
        try:
            self.notifier.send(target, f"**[{raid_type}] {message}** {mentions}")
        except Exception:
            logger.exception("Failed to ping participants of %s", raid_type)

        return PingResult(
            participants=len(participants),
            raids=len(typed),
            message=(
                f"Successfully pinged {len(participants)} participants "
                f"from {len(typed)} raids."
            ),
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def register_character(
        self, participant_id: str, name: str, server: str, region: str | None = None
    ) -> CharacterRegistration | None:
        """Look the character up and store it; ``None`` when not found."""
        if self.analytics is None:
            raise AnalyticsUnavailable("No analytics provider configured")
        character = self.analytics.find_character(name, server, region or self.default_region)
        if character is None:
            return None
        self.characters.register(participant_id, character)
        logger.info("Registered %s (%s) for %s", character.name, character.server, participant_id)
        return character

    def recent_performance(
        self, participant_id: str, count: int = 5
    ) -> tuple[CharacterRegistration, list[PerformanceReport]]:
        character = self.characters.primary(participant_id)
        if character is None:
            raise CharacterNotRegistered(participant_id)
        if self.analytics is None:
            raise AnalyticsUnavailable("No analytics provider configured")
        return character, self.analytics.recent_reports(character.id, count)

    def static_performance(self, raid_id: str) -> StaticPerformance:
        raid = self.get(raid_id)
        if self.analytics is None:
            raise AnalyticsUnavailable("No analytics provider configured")
        return build_static_performance(raid, self.characters, self.analytics)
