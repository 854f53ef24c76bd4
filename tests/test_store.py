"""Tests for the raid and character stores and their JSON tables."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from raidplanner.domain.models import CharacterRegistration, Raid
from raidplanner.repos.store import (
    CharacterStore,
    JsonFileTable,
    MemoryTable,
    PersistenceError,
    RaidStore,
)
from raidplanner.services.roster import RosterManager

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _make_raid(**overrides) -> Raid:
    defaults = dict(
        name="Eden Savage",
        scheduled_at=_NOW + timedelta(days=1),
        capacity_by_role={"Tank": 1, "Regen Healer": 1},
    )
    defaults.update(overrides)
    return Raid(**defaults)


def test_ids_are_unique_and_increasing():
    ids = [int(_make_raid().id) for _ in range(50)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_scheduled_at_normalized_to_utc():
    naive = _make_raid(scheduled_at=datetime(2026, 6, 2, 20, 0))
    offset = _make_raid(
        scheduled_at=datetime(2026, 6, 2, 22, 0, tzinfo=timezone(timedelta(hours=2)))
    )
    assert naive.scheduled_at == datetime(2026, 6, 2, 20, 0, tzinfo=timezone.utc)
    assert offset.scheduled_at.utcoffset() == timedelta(0)
    assert offset.scheduled_at == naive.scheduled_at


# ---------------------------------------------------------------------------
# RaidStore
# ---------------------------------------------------------------------------


def test_roster_round_trip_through_file(tmp_path):
    """Persist then reload reproduces participants, waitlist and reminders."""
    path = tmp_path / "data" / "raids.json"
    store = RaidStore(JsonFileTable(str(path)))
    roster = RosterManager(store, clock=lambda: _NOW)

    first = _make_raid()
    second = _make_raid(name="Weekly Static Run", raid_type="raid1")
    store.add(first)
    store.add(second)
    roster.sign_up(first, "u1", "Alice", "Tank")
    roster.sign_up(first, "u2", "Bob", "Tank")
    roster.sign_up(second, "u3", "Cid", "Regen Healer")
    first.reminders_sent.append("24 hours")
    store.save()

    reloaded = RaidStore(JsonFileTable(str(path)))
    raids = {raid.id: raid for raid in reloaded.load()}

    assert set(raids) == {first.id, second.id}
    for original in (first, second):
        again = raids[original.id]
        assert again.participants == original.participants
        assert again.waitlist == original.waitlist
        assert again.reminders_sent == original.reminders_sent
        assert again.scheduled_at == original.scheduled_at


def test_file_table_missing_file_loads_empty(tmp_path):
    assert JsonFileTable(str(tmp_path / "nope.json")).load() == {}


def test_file_table_corrupt_file_raises(tmp_path):
    path = tmp_path / "raids.json"
    path.write_text("{not json")
    with pytest.raises(PersistenceError):
        JsonFileTable(str(path)).load()


def test_file_table_writes_whole_table(tmp_path):
    path = tmp_path / "raids.json"
    table = JsonFileTable(str(path))
    table.save({"a": {"x": 1}, "b": {"x": 2}})
    table.save({"b": {"x": 3}})

    assert json.loads(path.read_text()) == {"b": {"x": 3}}


def test_file_table_unwritable_directory_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    table = JsonFileTable(str(blocker / "raids.json"))

    with pytest.raises(PersistenceError):
        table.save({})


def test_add_rolled_back_when_write_fails():
    table = MemoryTable()
    store = RaidStore(table)
    table.fail_next_save = True

    with pytest.raises(PersistenceError):
        store.add(_make_raid())

    assert store.list_all() == []


def test_delete_persists_and_returns_raid():
    table = MemoryTable()
    store = RaidStore(table)
    raid = _make_raid()
    store.add(raid)

    assert store.delete(raid.id) is raid
    assert store.get(raid.id) is None
    assert table.load() == {}
    assert store.delete(raid.id) is None


def test_delete_rolled_back_when_write_fails():
    table = MemoryTable()
    store = RaidStore(table)
    raid = _make_raid()
    store.add(raid)
    table.fail_next_save = True

    with pytest.raises(PersistenceError):
        store.delete(raid.id)

    assert store.get(raid.id) is raid


def test_save_of_one_raid_does_not_persist_another_raids_pending_change():
    """Only the saved raid is re-serialized; others keep their last committed record."""
    table = MemoryTable()
    store = RaidStore(table)
    first = _make_raid(name="First")
    second = _make_raid(name="Second")
    store.add(first)
    store.add(second)

    # An in-flight change to the second raid, not yet saved.
    second.reminders_sent.append("24 hours")
    first.reminders_sent.append("3 hours")
    store.save(first.id)

    on_disk = table.load()
    assert on_disk[first.id]["reminders_sent"] == ["3 hours"]
    assert on_disk[second.id]["reminders_sent"] == []

    # The second raid's own save fails, it rolls back, and disk still agrees.
    table.fail_next_save = True
    with pytest.raises(PersistenceError):
        store.save(second.id)
    second.reminders_sent.remove("24 hours")

    store.save(first.id)
    assert table.load()[second.id]["reminders_sent"] == []


# ---------------------------------------------------------------------------
# CharacterStore
# ---------------------------------------------------------------------------


def _character(**overrides) -> CharacterRegistration:
    defaults = dict(id=101, name="Warrior of Light", server="Gilgamesh", region="NA")
    defaults.update(overrides)
    return CharacterRegistration(**defaults)


def test_register_and_primary():
    table = MemoryTable()
    store = CharacterStore(table)

    store.register("u1", _character())
    store.register("u1", _character(id=202, name="Alt", server="Cactuar"))

    assert store.primary("u1").id == 101
    assert [c.id for c in store.list_for("u1")] == [101, 202]
    assert store.primary("u2") is None


def test_reregister_replaces_in_place():
    store = CharacterStore(MemoryTable())
    store.register("u1", _character())
    store.register("u1", _character(id=202, server="Cactuar"))

    store.register("u1", _character(name="Renamed"))

    chars = store.list_for("u1")
    assert len(chars) == 2
    assert chars[0].name == "Renamed"


def test_registrations_round_trip():
    table = MemoryTable()
    CharacterStore(table).register("u1", _character(lodestone_id=42))

    reloaded = CharacterStore(table)
    reloaded.load()

    assert reloaded.primary("u1") == _character(lodestone_id=42)


def test_failed_registration_not_kept():
    table = MemoryTable()
    store = CharacterStore(table)
    table.fail_next_save = True

    with pytest.raises(PersistenceError):
        store.register("u1", _character())

    assert store.primary("u1") is None
