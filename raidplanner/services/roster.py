"""Signup, waitlist and cancellation rules for a single raid."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from raidplanner.config import ROLES
from raidplanner.domain.models import (
    Participant,
    Raid,
    SignupResult,
    SignupStatus,
    WaitlistEntry,
)
from raidplanner.repos.store import PersistenceError, RaidStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RosterManager:
    """Applies roster mutations to a raid and persists them before returning.

    A mutation whose write fails is rolled back in memory and the
    ``PersistenceError`` propagates.
    """

    def __init__(
        self,
        store: RaidStore,
        roles: list[str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.roles = roles or ROLES
        self.clock = clock

    def sign_up(
        self, raid: Raid, participant_id: str, display_name: str, role: str
    ) -> SignupResult:
        if role not in self.roles:
            return SignupResult(
                status=SignupStatus.REJECTED,
                message=f"Invalid role. Please choose from: {', '.join(self.roles)}",
            )

        with self.store.lock(raid.id):
            existing = raid.participants.get(participant_id)
            if existing is not None:
                return SignupResult(
                    status=SignupStatus.REJECTED,
                    message=f"You're already signed up as {existing.role}",
                )
            if raid.is_waitlisted(participant_id):
                return SignupResult(
                    status=SignupStatus.REJECTED,
                    message="You're already on the waitlist for this raid",
                )

            # A limit of 0 never fills up.
            limit = raid.capacity_by_role.get(role, 0)
            if limit > 0 and raid.role_count(role) >= limit:
                entry = WaitlistEntry(
                    participant_id=participant_id,
                    display_name=display_name,
                    role=role,
                    joined_at=self.clock(),
                )
                self._commit(raid, lambda: raid.waitlist.append(entry))
                logger.info(
                    "Waitlisted %s as %s for raid %s", participant_id, role, raid.id
                )
                return SignupResult(
                    status=SignupStatus.WAITLISTED,
                    message=f"Role {role} is full. You've been added to the waitlist.",
                )

            participant = Participant(
                display_name=display_name, role=role, joined_at=self.clock()
            )
            self._commit(
                raid,
                lambda: raid.participants.__setitem__(participant_id, participant),
            )
            logger.info("Signed up %s as %s for raid %s", participant_id, role, raid.id)
            return SignupResult(
                status=SignupStatus.ACCEPTED,
                message=f"You've signed up for {raid.name} as {role}",
            )

    def cancel(self, raid: Raid, participant_id: str) -> bool:
        """Remove a participant and promote the first same-role waitlister."""
        with self.store.lock(raid.id):
            if participant_id not in raid.participants:
                return False

            def mutate() -> None:
                vacated = raid.participants.pop(participant_id)
                for index, entry in enumerate(raid.waitlist):
                    if entry.role == vacated.role:
                        promoted = raid.waitlist.pop(index)
                        raid.participants[promoted.participant_id] = Participant(
                            display_name=promoted.display_name,
                            role=promoted.role,
                            joined_at=self.clock(),
                        )
                        logger.info(
                            "Promoted %s from waitlist to %s in raid %s",
                            promoted.participant_id,
                            promoted.role,
                            raid.id,
                        )
                        break

            self._commit(raid, mutate)
            logger.info("Cancelled signup of %s for raid %s", participant_id, raid.id)
            return True

    def _commit(self, raid: Raid, mutate: Callable[[], None]) -> None:
        snapshot = (
            dict(raid.participants),
            list(raid.waitlist),
        )
        mutate()
        try:
            self.store.save(raid.id)
        except PersistenceError:
            raid.participants, raid.waitlist = snapshot
            logger.error("Roster change for raid %s not persisted, rolled back", raid.id)
            raise
