"""Pure rendering of a raid into its display representation."""

from __future__ import annotations

from raidplanner.domain.models import PresentationField, Raid, RaidPresentation


def _timestamp(raid: Raid) -> str:
    epoch = int(raid.scheduled_at.timestamp())
    return f"<t:{epoch}:F>\n<t:{epoch}:R>"


def render_raid(raid: Raid) -> RaidPresentation:
    """Render *raid*; output depends only on the raid's state.

    Roles with a limit of 0 are not shown. Names inside a role follow signup
    order.
    """
    fields = [PresentationField(name="Date & Time", value=_timestamp(raid))]

    for role, limit in raid.capacity_by_role.items():
        if limit <= 0:
            continue
        signed_up = [p.display_name for p in raid.participants.values() if p.role == role]
        fields.append(
            PresentationField(
                name=f"{role} ({len(signed_up)}/{limit})",
                value="\n".join(signed_up) if signed_up else "None",
                inline=True,
            )
        )

    if raid.waitlist:
        fields.append(
            PresentationField(
                name="Waitlist",
                value="\n".join(f"{w.display_name} ({w.role})" for w in raid.waitlist),
            )
        )

    description = raid.description
    if raid.guide_link:
        description += f"\n\n**Guide:** {raid.guide_link}"

    footer = f"Raid ID: {raid.id}"
    if raid.raid_type:
        footer += f" | Type: {raid.raid_type}"

    return RaidPresentation(
        title=raid.name, description=description, fields=fields, footer=footer
    )
