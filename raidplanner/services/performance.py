"""FFLogs analytics client and per-raid performance aggregation."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from raidplanner.domain.models import (
    CharacterRegistration,
    FightSummary,
    ParticipantStats,
    PerformanceReport,
    Raid,
    StaticPerformance,
    ZoneStats,
)
from raidplanner.repos.store import CharacterStore

logger = logging.getLogger(__name__)

FFLOGS_TOKEN_URL = "https://www.fflogs.com/oauth/token"
FFLOGS_API_URL = "https://www.fflogs.com/api/v2/client"

_CHARACTER_QUERY = """
query($name: String!, $server: String!, $region: String!) {
  characterData {
    character(name: $name, serverSlug: $server, serverRegion: $region) {
      id
      name
      server { name region { name } }
      lodestoneID
    }
  }
}
"""

_REPORTS_QUERY = """
query($id: Int!, $limit: Int!) {
  characterData {
    character(id: $id) {
      name
      server { name region { name } }
      recentReports(limit: $limit) {
        data {
          code
          title
          startTime
          endTime
          zone { name }
          fights { name kill fightPercentage }
        }
      }
    }
  }
}
"""


class FFLogsError(RuntimeError):
    """Authentication or lookup against the analytics provider failed."""


class AnalyticsProvider(Protocol):
    def find_character(
        self, name: str, server: str, region: str
    ) -> CharacterRegistration | None: ...

    def recent_reports(self, character_id: int, count: int) -> list[PerformanceReport]: ...


def _ms_to_datetime(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def summarize_report(raw: dict[str, Any]) -> PerformanceReport:
    """Turn one raw report into pull/kill counts and the best non-kill pull.

    ``fightPercentage`` is the boss HP left, so the best pull is reported as
    the progress made (100 - lowest remaining HP).
    """
    fights = [
        FightSummary(
            name=f.get("name", ""),
            kill=bool(f.get("kill")),
            fight_percentage=f.get("fightPercentage"),
        )
        for f in raw.get("fights") or []
    ]
    wipes = [
        f.fight_percentage
        for f in fights
        if not f.kill and f.fight_percentage is not None
    ]
    best_pull = None
    if wipes and min(wipes) < 100:
        best_pull = round(100 - min(wipes), 1)
    return PerformanceReport(
        code=raw["code"],
        title=raw.get("title", ""),
        zone=(raw.get("zone") or {}).get("name", "Unknown"),
        start_time=_ms_to_datetime(raw["startTime"]),
        end_time=_ms_to_datetime(raw["endTime"]),
        total_fights=len(fights),
        kills=sum(1 for f in fights if f.kill),
        best_pull=best_pull,
    )


class FFLogsClient:
    """GraphQL client authenticated with OAuth client credentials.

    The access token is cached until shortly before it expires.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        client: httpx.Client | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.client = client or httpx.Client(timeout=15.0)
        self._token: str | None = None
        self._token_expires = 0.0

    def _get_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires:
            return self._token
        if not (self.client_id and self.client_secret):
            raise FFLogsError("FFLogs credentials are not configured")
        try:
            r = self.client.post(
                FFLOGS_TOKEN_URL,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
            r.raise_for_status()
            payload = r.json()
            token = payload["access_token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise FFLogsError("Failed to authenticate with FFLogs API") from exc

        self._token = token
        # Refresh an hour early.
        self._token_expires = time.monotonic() + max(payload.get("expires_in", 86400) - 3600, 60)
        logger.info("FFLogs token obtained")
        return self._token

    def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        token = self._get_token()
        try:
            r = self.client.post(
                FFLOGS_API_URL,
                json={"query": query, "variables": variables},
                headers={"Authorization": f"Bearer {token}"},
            )
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FFLogsError("FFLogs request failed") from exc
        if body.get("errors"):
            raise FFLogsError(f"FFLogs returned errors: {body['errors']}")
        return body.get("data") or {}

    def find_character(
        self, name: str, server: str, region: str
    ) -> CharacterRegistration | None:
        data = self._query(
            _CHARACTER_QUERY, {"name": name, "server": server, "region": region}
        )
        character = (data.get("characterData") or {}).get("character")
        if not character:
            return None
        return CharacterRegistration(
            id=character["id"],
            name=character["name"],
            server=character["server"]["name"],
            region=character["server"]["region"]["name"],
            lodestone_id=character.get("lodestoneID"),
        )

    def recent_reports(self, character_id: int, count: int) -> list[PerformanceReport]:
        data = self._query(_REPORTS_QUERY, {"id": character_id, "limit": count})
        character = (data.get("characterData") or {}).get("character")
        if not character:
            raise FFLogsError("Character not found")
        raw_reports = (character.get("recentReports") or {}).get("data") or []
        return [summarize_report(raw) for raw in raw_reports]


def build_static_performance(
    raid: Raid,
    characters: CharacterStore,
    provider: AnalyticsProvider,
    count: int = 10,
) -> StaticPerformance:
    """Aggregate recent reports of every registered participant by zone.

    Participants without a registered character are skipped, as are those
    whose lookup fails for any reason; the rest of the report is still built.
    """
    stats = StaticPerformance(
        raid_id=raid.id, raid_name=raid.name, scheduled_at=raid.scheduled_at
    )
    for participant_id, participant in list(raid.participants.items()):
        character = characters.primary(participant_id)
        if character is None:
            continue
        try:
            reports = provider.recent_reports(character.id, count)
        except FFLogsError as exc:
            logger.warning(
                "Skipping %s (%s) in performance report: %s",
                participant_id,
                character.name,
                exc,
            )
            continue
        except Exception:
            logger.exception(
                "Skipping %s (%s) in performance report", participant_id, character.name
            )
            continue

        stats.participants.append(
            ParticipantStats(
                participant_id=participant_id,
                character=character.name,
                server=character.server,
                role=participant.role,
                recent_logs=len(reports),
            )
        )
        for report in reports:
            zone = stats.zones.setdefault(report.zone, ZoneStats())
            zone.total_pulls += report.total_fights
            zone.total_kills += report.kills
            zone.participation += 1
            if report.best_pull is not None and report.best_pull > zone.best_pull:
                zone.best_pull = report.best_pull
    return stats


def format_static_performance(stats: StaticPerformance) -> str:
    lines = [f"**Raid Performance Report: {stats.raid_name}**"]
    if not stats.zones:
        lines.append("No recent raid logs found for participants.")
    for zone_name, zone in stats.zones.items():
        lines.append(
            f"__{zone_name}__\n"
            f"Pulls: {zone.total_pulls} | Kills: {zone.total_kills} | "
            f"Success Rate: {zone.kill_ratio}\nBest Pull: {zone.best_pull}%"
        )
    if stats.participants:
        lines.append(
            "__Participants with FFLogs Data__\n"
            + "\n".join(f"{p.character} ({p.server}) - {p.role}" for p in stats.participants)
        )
    return "\n\n".join(lines)
