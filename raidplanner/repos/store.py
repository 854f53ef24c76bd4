"""Raid and character-registration stores over a whole-table persistence port."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator, Protocol

from raidplanner.domain.models import CharacterRegistration, Raid

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """A durable write (or read) of a table failed."""


class JsonTable(Protocol):
    """Load-entire-table / save-entire-table contract."""

    def load(self) -> dict[str, object]: ...

    def save(self, records: dict[str, object]) -> None: ...


class MemoryTable:
    """Table kept in memory as serialized JSON, for tests and dry runs."""

    def __init__(self, initial: dict[str, object] | None = None) -> None:
        self._blob = json.dumps(initial or {})
        self.saves = 0
        self.fail_next_save = False

    def load(self) -> dict[str, object]:
        return json.loads(self._blob)

    def save(self, records: dict[str, object]) -> None:
        if self.fail_next_save:
            self.fail_next_save = False
            raise PersistenceError("simulated write failure")
        self._blob = json.dumps(records)
        self.saves += 1


class JsonFileTable:
    """A JSON file rewritten in full on every save (atomic replace)."""

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> dict[str, object]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}") from exc

    def save(self, records: dict[str, object]) -> None:
        directory = os.path.dirname(self.path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc


class RaidStore:
    """Authoritative in-memory raid table, keyed by raid id.

    Callers mutate Raid records in place while holding ``lock(raid_id)`` and
    then call ``save(raid_id)``. Every save rewrites the whole table, but only
    the named raid is re-serialized; the others are written as of their last
    successful save, so an uncommitted change to another raid never reaches
    disk.
    """

    def __init__(self, table: JsonTable) -> None:
        self._table = table
        self._raids: dict[str, Raid] = {}
        self._guard = threading.RLock()
        self._locks: dict[str, threading.RLock] = {}
        self._committed: dict[str, dict] = {}

    def load(self) -> list[Raid]:
        records = self._table.load()
        with self._guard:
            self._raids = {
                raid_id: Raid.model_validate(record)
                for raid_id, record in records.items()
            }
            self._committed = {
                raid_id: raid.model_dump(mode="json")
                for raid_id, raid in self._raids.items()
            }
            logger.info("Loaded %d raids", len(self._raids))
            return list(self._raids.values())

    def save(self, raid_id: str | None = None) -> None:
        """Write the table; without *raid_id* every raid is re-serialized."""
        with self._guard:
            if raid_id is None:
                records = {
                    rid: raid.model_dump(mode="json")
                    for rid, raid in self._raids.items()
                }
            else:
                records = dict(self._committed)
                raid = self._raids.get(raid_id)
                if raid is None:
                    records.pop(raid_id, None)
                else:
                    records[raid_id] = raid.model_dump(mode="json")
            self._table.save(records)
            self._committed = records
        logger.debug("Saved %d raids", len(records))

    @contextmanager
    def lock(self, raid_id: str) -> Iterator[None]:
        """Serialize read-modify-persist cycles for one raid."""
        with self._guard:
            raid_lock = self._locks.setdefault(raid_id, threading.RLock())
        with raid_lock:
            yield

    def get(self, raid_id: str) -> Raid | None:
        return self._raids.get(raid_id)

    def list_all(self) -> list[Raid]:
        with self._guard:
            return list(self._raids.values())

    def add(self, raid: Raid) -> None:
        """Insert and persist; the insert is undone when the write fails."""
        with self._guard:
            self._raids[raid.id] = raid
            try:
                self.save(raid.id)
            except PersistenceError:
                self._raids.pop(raid.id, None)
                raise

    def delete(self, raid_id: str) -> Raid | None:
        with self._guard:
            raid = self._raids.pop(raid_id, None)
            if raid is None:
                return None
            try:
                self.save(raid_id)
            except PersistenceError:
                self._raids[raid_id] = raid
                raise
            self._locks.pop(raid_id, None)
            return raid


class CharacterStore:
    """Participant id -> registered characters (first entry is primary)."""

    def __init__(self, table: JsonTable) -> None:
        self._table = table
        self._characters: dict[str, list[CharacterRegistration]] = {}
        self._guard = threading.RLock()

    def load(self) -> None:
        records = self._table.load()
        with self._guard:
            self._characters = {
                participant_id: [CharacterRegistration.model_validate(c) for c in chars]
                for participant_id, chars in records.items()
            }
        logger.info("Loaded character registrations for %d participants", len(records))

    def save(self) -> None:
        with self._guard:
            records = {
                participant_id: [c.model_dump(mode="json") for c in chars]
                for participant_id, chars in self._characters.items()
            }
            self._table.save(records)

    def primary(self, participant_id: str) -> CharacterRegistration | None:
        chars = self._characters.get(participant_id)
        return chars[0] if chars else None

    def list_for(self, participant_id: str) -> list[CharacterRegistration]:
        return list(self._characters.get(participant_id, []))

    def register(self, participant_id: str, character: CharacterRegistration) -> None:
        """Add or replace (same id and server) a registration, then persist."""
        with self._guard:
            previous = list(self._characters.get(participant_id, []))
            chars = list(previous)
            for index, existing in enumerate(chars):
                if existing.id == character.id and existing.server == character.server:
                    chars[index] = character
                    break
            else:
                chars.append(character)
            self._characters[participant_id] = chars
            try:
                self.save()
            except PersistenceError:
                if previous:
                    self._characters[participant_id] = previous
                else:
                    self._characters.pop(participant_id, None)
                raise
