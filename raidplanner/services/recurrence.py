"""Expand weekly raid templates into concrete future start times."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo

from dateutil import tz
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from raidplanner.domain.models import RecurringTemplate

_DAY_MAP = {
    "monday": MO,
    "tuesday": TU,
    "wednesday": WE,
    "thursday": TH,
    "friday": FR,
    "saturday": SA,
    "sunday": SU,
}


def resolve_timezone(name: str) -> tzinfo:
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {name}")
    return zone


def generate_occurrences(
    template: RecurringTemplate,
    now: datetime,
    weeks: int = 4,
    zone: tzinfo | None = None,
) -> list[tuple[str, datetime]]:
    """Return ``(day name, UTC start)`` pairs for the next *weeks* weeks.

    For each week offset and template day, the target date is the next
    occurrence of that weekday on or after today, plus ``7 * week`` days, with
    the template's time of day set on it in *zone*. Only instances strictly
    after *now* are returned. Calling this twice yields the same instances;
    de-duplicating created raids is up to the caller.
    """
    zone = zone or timezone.utc
    local_now = now.astimezone(zone)
    hours, minutes = (int(part) for part in template.time.split(":"))

    occurrences: list[tuple[str, datetime]] = []
    for week in range(weeks):
        for day_name in template.days:
            weekday = _DAY_MAP.get(day_name.lower())
            if weekday is None:
                raise ValueError(f"Unknown day of week: {day_name}")
            target = local_now + relativedelta(weekday=weekday(+1), weeks=week)
            target = target.replace(hour=hours, minute=minutes, second=0, microsecond=0)
            if target > local_now:
                occurrences.append((day_name, target.astimezone(timezone.utc)))
    return occurrences
