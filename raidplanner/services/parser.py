"""Parsing of the quoted-argument ``create`` command into a RaidSpec."""

from __future__ import annotations

import shlex
from datetime import datetime, timezone, tzinfo

import dateparser

from raidplanner.domain.models import RaidSpec

CREATE_USAGE = (
    'Format: "Raid Name" "Raid Description" "YYYY-MM-DD HH:MM" '
    "[type] [guide] [Role:count ...]"
)


class CommandError(ValueError):
    """The command text could not be turned into a request."""


def tokenize(text: str) -> list[str]:
    try:
        return shlex.split(text)
    except ValueError as exc:
        raise CommandError(f"Could not parse arguments: {exc}") from exc


def parse_datetime(raw: str, now: datetime, zone: tzinfo | None = None) -> datetime:
    """Parse a date string written in *zone* local time, returning UTC."""
    zone = zone or timezone.utc
    settings = {
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": now.astimezone(zone).replace(tzinfo=None),
        "RETURN_AS_TIMEZONE_AWARE": False,
    }
    result = dateparser.parse(raw, settings=settings)
    if result is None:
        raise CommandError("Invalid date format. Please use YYYY-MM-DD HH:MM")
    return result.replace(tzinfo=zone).astimezone(timezone.utc)


def _parse_roles(segments: list[str]) -> dict[str, int]:
    roles: dict[str, int] = {}
    for segment in segments:
        name, _, count = segment.rpartition(":")
        if not name or not count:
            continue
        try:
            roles[name.strip()] = int(count)
        except ValueError:
            roles[name.strip()] = 0
    return roles


def parse_create_command(
    text: str, now: datetime, zone: tzinfo | None = None
) -> RaidSpec:
    """Build a RaidSpec from ``"Name" "Description" "When" [type] [guide] [roles]``.

    The optional type is the fourth argument when it contains no ``:``; the
    guide follows when it is an http(s) URL; everything after are
    ``Role:count`` limits.
    """
    segments = tokenize(text)
    if segments and segments[0].lower() == "create":
        segments = segments[1:]
    if len(segments) < 3:
        raise CommandError(f"Missing arguments. {CREATE_USAGE}")

    name, description, when = segments[:3]
    raid_type = None
    guide_link = None
    index = 3

    if len(segments) > index and ":" not in segments[index]:
        raid_type = segments[index]
        index += 1

    if len(segments) > index and segments[index].startswith(("http://", "https://")):
        guide_link = segments[index]
        index += 1

    return RaidSpec(
        name=name,
        description=description,
        scheduled_at=parse_datetime(when, now, zone),
        raid_type=raid_type,
        guide_link=guide_link,
        roles=_parse_roles(segments[index:]),
    )
