"""Tests for signup, waitlist and cancellation rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from raidplanner.domain.models import Raid, SignupStatus
from raidplanner.repos.store import MemoryTable, PersistenceError, RaidStore
from raidplanner.services.roster import RosterManager

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def table():
    return MemoryTable()


@pytest.fixture()
def store(table):
    return RaidStore(table)


@pytest.fixture()
def roster(store):
    return RosterManager(store, clock=lambda: _NOW)


def _make_raid(store: RaidStore, **overrides) -> Raid:
    defaults = dict(
        name="Eden Savage",
        description="Weekly prog",
        scheduled_at=_NOW + timedelta(days=1),
        capacity_by_role={"Tank": 1, "Regen Healer": 1, "Flex": 0},
    )
    defaults.update(overrides)
    raid = Raid(**defaults)
    store.add(raid)
    return raid


# ---------------------------------------------------------------------------
# Sign up
# ---------------------------------------------------------------------------


def test_signup_accepted(store, roster):
    raid = _make_raid(store)

    result = roster.sign_up(raid, "u1", "Alice", "Tank")

    assert result.status == SignupStatus.ACCEPTED
    assert result.success is True
    assert raid.participants["u1"].role == "Tank"
    assert raid.participants["u1"].joined_at == _NOW


def test_signup_unknown_role_rejected(store, roster):
    raid = _make_raid(store)

    result = roster.sign_up(raid, "u1", "Alice", "Bard")

    assert result.status == SignupStatus.REJECTED
    assert "Invalid role" in result.message
    assert raid.participants == {}


def test_duplicate_signup_rejected_and_state_unchanged(store, table, roster):
    """Signing up twice is rejected and leaves the roster untouched."""
    raid = _make_raid(store)
    roster.sign_up(raid, "u1", "Alice", "Tank")
    before = raid.model_dump()
    saves_before = table.saves

    result = roster.sign_up(raid, "u1", "Alice", "Regen Healer")

    assert result.status == SignupStatus.REJECTED
    assert "already signed up as Tank" in result.message
    assert raid.model_dump() == before
    assert table.saves == saves_before


def test_waitlisted_participant_cannot_sign_up_again(store, roster):
    raid = _make_raid(store)
    roster.sign_up(raid, "u1", "Alice", "Tank")
    roster.sign_up(raid, "u2", "Bob", "Tank")

    result = roster.sign_up(raid, "u2", "Bob", "Regen Healer")

    assert result.status == SignupStatus.REJECTED
    assert "u2" not in raid.participants
    assert [w.participant_id for w in raid.waitlist] == ["u2"]


def test_full_role_goes_to_waitlist(store, roster):
    raid = _make_raid(store)
    roster.sign_up(raid, "u1", "Alice", "Tank")

    result = roster.sign_up(raid, "u2", "Bob", "Tank")

    assert result.status == SignupStatus.WAITLISTED
    assert result.success is False
    assert "Role Tank is full" in result.message
    assert "u2" not in raid.participants
    assert raid.waitlist[0].participant_id == "u2"
    assert raid.waitlist[0].role == "Tank"


def test_zero_limit_role_is_unbounded(store, roster):
    """A limit of 0 never fills up."""
    raid = _make_raid(store)

    for i in range(12):
        result = roster.sign_up(raid, f"u{i}", f"Player {i}", "Flex")
        assert result.status == SignupStatus.ACCEPTED

    assert raid.role_count("Flex") == 12
    assert raid.waitlist == []


def test_role_missing_from_composition_is_unbounded(store, roster):
    raid = _make_raid(store, capacity_by_role={"Tank": 1})

    assert roster.sign_up(raid, "u1", "Alice", "Melee DPS").status == SignupStatus.ACCEPTED
    assert roster.sign_up(raid, "u2", "Bob", "Melee DPS").status == SignupStatus.ACCEPTED


def test_capacity_never_exceeded(store, roster):
    raid = _make_raid(store, capacity_by_role={"Tank": 2, "Regen Healer": 1})
    roles = ["Tank", "Regen Healer"] * 5

    for i, role in enumerate(roles):
        roster.sign_up(raid, f"u{i}", f"Player {i}", role)

    for role, limit in raid.capacity_by_role.items():
        assert raid.role_count(role) <= limit
    assert len(raid.waitlist) == len(roles) - 3


def test_signup_persists(store, table, roster):
    raid = _make_raid(store)
    saves_before = table.saves

    roster.sign_up(raid, "u1", "Alice", "Tank")
    roster.sign_up(raid, "u2", "Bob", "Tank")

    assert table.saves == saves_before + 2
    stored = table.load()[raid.id]
    assert "u1" in stored["participants"]
    assert stored["waitlist"][0]["participant_id"] == "u2"


def test_failed_write_rolls_back_signup(store, table, roster):
    raid = _make_raid(store)
    table.fail_next_save = True

    with pytest.raises(PersistenceError):
        roster.sign_up(raid, "u1", "Alice", "Tank")

    assert raid.participants == {}


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


def test_cancel_unknown_participant_is_noop(store, table, roster):
    raid = _make_raid(store)
    saves_before = table.saves

    assert roster.cancel(raid, "nobody") is False
    assert table.saves == saves_before


def test_cancel_waitlisted_participant_is_noop(store, roster):
    raid = _make_raid(store)
    roster.sign_up(raid, "u1", "Alice", "Tank")
    roster.sign_up(raid, "u2", "Bob", "Tank")

    assert roster.cancel(raid, "u2") is False
    assert [w.participant_id for w in raid.waitlist] == ["u2"]


def test_cancel_promotes_same_role_waitlister(store, roster):
    """Tank:1: A accepted, B waitlisted, A cancels, B promoted."""
    raid = _make_raid(store, capacity_by_role={"Tank": 1})

    assert roster.sign_up(raid, "a", "A", "Tank").status == SignupStatus.ACCEPTED
    assert roster.sign_up(raid, "b", "B", "Tank").status == SignupStatus.WAITLISTED

    assert roster.cancel(raid, "a") is True

    assert list(raid.participants) == ["b"]
    assert raid.participants["b"].role == "Tank"
    assert raid.waitlist == []


def test_cancel_promotes_earliest_matching_entry_only(store, roster):
    raid = _make_raid(store)
    roster.sign_up(raid, "t1", "Tank One", "Tank")
    roster.sign_up(raid, "h1", "Healer One", "Regen Healer")
    roster.sign_up(raid, "h2", "Healer Two", "Regen Healer")
    roster.sign_up(raid, "t2", "Tank Two", "Tank")
    roster.sign_up(raid, "t3", "Tank Three", "Tank")

    roster.cancel(raid, "t1")

    assert "t2" in raid.participants
    assert "t3" not in raid.participants
    assert [w.participant_id for w in raid.waitlist] == ["h2", "t3"]


def test_cancel_without_matching_waitlist_frees_slot(store, roster):
    """No cross-role promotion: a healer waitlister stays put when a tank leaves."""
    raid = _make_raid(store)
    roster.sign_up(raid, "t1", "Tank One", "Tank")
    roster.sign_up(raid, "h1", "Healer One", "Regen Healer")
    roster.sign_up(raid, "h2", "Healer Two", "Regen Healer")
    waitlist_before = list(raid.waitlist)

    assert roster.cancel(raid, "t1") is True

    assert "t1" not in raid.participants
    assert raid.role_count("Tank") == 0
    assert raid.waitlist == waitlist_before


def test_failed_write_rolls_back_cancel(store, table, roster):
    raid = _make_raid(store, capacity_by_role={"Tank": 1})
    roster.sign_up(raid, "a", "A", "Tank")
    roster.sign_up(raid, "b", "B", "Tank")
    table.fail_next_save = True

    with pytest.raises(PersistenceError):
        roster.cancel(raid, "a")

    assert list(raid.participants) == ["a"]
    assert [w.participant_id for w in raid.waitlist] == ["b"]
