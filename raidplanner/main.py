"""FastAPI application: the command surface of the raid planner."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from raidplanner.config import Settings, settings
from raidplanner.domain.models import (
    CharacterRegistration,
    CommandResult,
    PingRequest,
    PingResult,
    Raid,
    RaidCommandRequest,
    RaidPresentation,
    RaidSpec,
    RaidSummary,
    RecentPerformance,
    RegisterCharacterRequest,
    ScheduleResult,
    SignupRequest,
    SignupResult,
    StaticPerformance,
)
from raidplanner.logging_config import setup_logging
from raidplanner.repos.store import CharacterStore, JsonFileTable, PersistenceError, RaidStore
from raidplanner.services.lifecycle import (
    AnalyticsUnavailable,
    CharacterNotRegistered,
    RaidController,
    RaidNotFound,
    TemplateNotFound,
)
from raidplanner.services.notifications import LogNotifier, WebhookNotifier
from raidplanner.services.parser import CommandError, parse_create_command
from raidplanner.services.performance import FFLogsClient, FFLogsError
from raidplanner.services.recurrence import resolve_timezone
from raidplanner.services.scheduler import TriggerScheduler

logger = logging.getLogger(__name__)


def build_controller(config: Settings = settings) -> RaidController:
    """Wire a controller backed by JSON files in ``config.data_dir``."""
    analytics = None
    if config.fflogs_client_id and config.fflogs_client_secret:
        analytics = FFLogsClient(config.fflogs_client_id, config.fflogs_client_secret)
    notifier = WebhookNotifier(config.webhook_url) if config.webhook_url else LogNotifier()

    return RaidController(
        raid_store=RaidStore(JsonFileTable(config.raids_path)),
        character_store=CharacterStore(JsonFileTable(config.characters_path)),
        scheduler=TriggerScheduler(poll_seconds=config.poll_seconds),
        notifier=notifier,
        analytics=analytics,
        reminder_offsets=config.reminder_offsets,
        post_raid_delay=timedelta(minutes=config.post_raid_delay_minutes),
        zone=resolve_timezone(config.timezone),
        default_region=config.fflogs_region,
        recurring_weeks=config.recurring_weeks,
    )


def create_app(controller: RaidController | None = None, start_background: bool = True) -> FastAPI:
    controller = controller or build_controller()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_background:
            setup_logging(settings.log_level, settings.log_dir, settings.verbose)
            controller.recover()
            controller.scheduler.start()
        yield
        if start_background:
            controller.scheduler.stop()

    app = FastAPI(title="Raid Planner", lifespan=lifespan)
    app.state.controller = controller

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable, change not saved"})

    @app.exception_handler(AnalyticsUnavailable)
    async def analytics_unavailable_handler(request: Request, exc: AnalyticsUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(FFLogsError)
    async def fflogs_error_handler(request: Request, exc: FFLogsError):
        logger.warning("FFLogs failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    # ── Raids ─────────────────────────────────────────────────────────

    @app.post("/raids", response_model=Raid)
    def create_raid(spec: RaidSpec) -> Raid:
        """Create a raid from structured fields."""
        return controller.create(spec)

    @app.post("/raids/command", response_model=Raid)
    def create_raid_from_command(payload: RaidCommandRequest) -> Raid:
        """Create a raid from ``"Name" "Description" "When" [type] [guide] [roles]``."""
        try:
            spec = parse_create_command(payload.text, controller.clock(), controller.zone)
        except (CommandError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return controller.create(spec)

    @app.get("/raids", response_model=list[RaidSummary])
    def list_upcoming_raids() -> list[RaidSummary]:
        return [
            RaidSummary(
                id=raid.id,
                name=raid.name,
                scheduled_at=raid.scheduled_at,
                raid_type=raid.raid_type,
                signed_up=len(raid.participants),
                waitlisted=len(raid.waitlist),
            )
            for raid in controller.list_upcoming()
        ]

    @app.get("/raids/{raid_id}", response_model=Raid)
    def get_raid(raid_id: str) -> Raid:
        try:
            return controller.get(raid_id)
        except RaidNotFound:
            raise HTTPException(status_code=404, detail="Raid not found")

    @app.get("/raids/{raid_id}/presentation", response_model=RaidPresentation)
    def get_raid_presentation(raid_id: str) -> RaidPresentation:
        try:
            return controller.render(controller.get(raid_id))
        except RaidNotFound:
            raise HTTPException(status_code=404, detail="Raid not found")

    @app.delete("/raids/{raid_id}", response_model=CommandResult)
    def delete_raid(raid_id: str) -> CommandResult:
        try:
            raid = controller.delete(raid_id)
        except RaidNotFound:
            raise HTTPException(status_code=404, detail="Raid not found")
        return CommandResult(success=True, message=f'Raid "{raid.name}" has been deleted.')

    # ── Roster ────────────────────────────────────────────────────────

    @app.post("/raids/{raid_id}/signups", response_model=SignupResult)
    def join_raid(raid_id: str, body: SignupRequest) -> SignupResult:
        if controller.raids.get(raid_id) is None:
            raise HTTPException(status_code=404, detail="Raid not found")
        return controller.sign_up(raid_id, body.participant_id, body.display_name, body.role)

    @app.delete("/raids/{raid_id}/signups/{participant_id}", response_model=CommandResult)
    def cancel_signup(raid_id: str, participant_id: str) -> CommandResult:
        if controller.raids.get(raid_id) is None:
            raise HTTPException(status_code=404, detail="Raid not found")
        if controller.cancel(raid_id, participant_id):
            return CommandResult(success=True, message="You have been removed from the raid.")
        return CommandResult(success=False, message="You are not signed up for this raid.")

    # ── Batch commands ────────────────────────────────────────────────

    @app.post("/templates/{template_id}/schedule", response_model=ScheduleResult)
    def schedule_recurring(template_id: str) -> ScheduleResult:
        try:
            return controller.schedule_recurring(template_id)
        except TemplateNotFound:
            available = ", ".join(controller.templates)
            raise HTTPException(
                status_code=404,
                detail=f"Invalid raid template. Available templates: {available}",
            )

    @app.post("/raid-types/{raid_type}/ping", response_model=PingResult)
    def ping_participants(raid_type: str, body: PingRequest) -> PingResult:
        return controller.ping(raid_type, body.message)

    # ── Analytics ─────────────────────────────────────────────────────

    @app.post("/characters", response_model=CharacterRegistration)
    def register_character(body: RegisterCharacterRequest) -> CharacterRegistration:
        character = controller.register_character(
            body.participant_id, body.name, body.server, body.region
        )
        if character is None:
            region = (body.region or controller.default_region).upper()
            raise HTTPException(
                status_code=404,
                detail=f'Character "{body.name}" not found on server "{body.server}" ({region})',
            )
        return character

    @app.get("/characters/{participant_id}/reports", response_model=RecentPerformance)
    def recent_performance(participant_id: str, count: int = 5) -> RecentPerformance:
        try:
            character, reports = controller.recent_performance(participant_id, count)
        except CharacterNotRegistered:
            raise HTTPException(status_code=404, detail="You have no registered characters.")
        return RecentPerformance(character=character, reports=reports)

    @app.get("/raids/{raid_id}/performance", response_model=StaticPerformance)
    def static_performance(raid_id: str) -> StaticPerformance:
        try:
            return controller.static_performance(raid_id)
        except RaidNotFound:
            raise HTTPException(status_code=404, detail="Raid not found")

    # ── Clock ─────────────────────────────────────────────────────────

    @app.post("/tick")
    def tick(now: datetime | None = None) -> dict:
        """Fire every trigger due at *now* (defaults to the controller clock)."""
        current_time = now or controller.clock()
        if current_time.tzinfo is None:
            current_time = current_time.replace(tzinfo=timezone.utc)
        fired = controller.scheduler.run_due(current_time)
        return {
            "time": current_time.isoformat(),
            "triggers_fired": [
                {"raid_id": t.raid_id, "kind": t.kind.value, "label": t.label} for t in fired
            ],
        }

    return app


app = create_app()
