"""Domain event handlers that keep the published raid presentation current."""

from __future__ import annotations

import logging

from raidplanner.domain.bus import EventBus
from raidplanner.domain.events import RaidCreated, RaidDeleted, ReminderSent, RosterChanged
from raidplanner.repos.store import PersistenceError, RaidStore
from raidplanner.services.notifications import PresentationPublisher
from raidplanner.services.render import render_raid

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires presentation handlers to the bus."""

    def __init__(
        self,
        bus: EventBus,
        raid_store: RaidStore,
        publisher: PresentationPublisher,
    ) -> None:
        self.bus = bus
        self.raid_store = raid_store
        self.publisher = publisher
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(RaidCreated, self.on_raid_created)
        self.bus.subscribe(RosterChanged, self.on_roster_changed)
        self.bus.subscribe(RaidDeleted, self.on_raid_deleted)
        self.bus.subscribe(ReminderSent, self.on_reminder_sent)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_raid_created(self, event: RaidCreated) -> None:
        stored = self.raid_store.get(event.raid_id)
        if stored is None:
            return

        try:
            channel, message = self.publisher.publish(render_raid(stored))
        except Exception:
            logger.exception("Failed to publish raid %s", event.raid_id)
            return

        with self.raid_store.lock(stored.id):
            stored.origin_channel = channel
            stored.origin_message = message
            try:
                self.raid_store.save(stored.id)
            except PersistenceError:
                # The raid itself is committed; only the handles are lost.
                logger.exception("Could not persist presentation handles for %s", stored.id)

    def on_roster_changed(self, event: RosterChanged) -> None:
        stored = self.raid_store.get(event.raid_id)
        if stored is None or not stored.origin_message:
            return
        with self.raid_store.lock(stored.id):
            presentation = render_raid(stored)
        try:
            self.publisher.update(
                stored.origin_channel or "", stored.origin_message, presentation
            )
        except Exception:
            logger.exception("Failed to update raid message for %s", event.raid_id)

    def on_raid_deleted(self, event: RaidDeleted) -> None:
        if not (event.origin_channel and event.origin_message):
            return
        try:
            self.publisher.retract(event.origin_channel, event.origin_message, event.name)
        except Exception:
            logger.exception("Failed to update deleted raid message for %s", event.raid_id)

    def on_reminder_sent(self, event: ReminderSent) -> None:
        if not event.delivered:
            logger.warning(
                "%s reminder for raid %s recorded but not delivered",
                event.label,
                event.raid_id,
            )
