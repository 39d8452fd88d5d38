"""``dronewatch scan`` — one discovery + resolution cycle."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click

from dronewatch.cli.serve import build_discovery
from dronewatch.location.resolver import build_resolver
from dronewatch.presence.cache import PresenceCache

if TYPE_CHECKING:
    from dronewatch.cli.main import AppContext
    from dronewatch.models.config import AppSettings


@click.command("scan")
@click.option(
    "--discovery-command",
    default=None,
    help="Command printing one 'name|instance|battery|rssi' line per nearby device",
)
@click.option("--no-ip", is_flag=True, default=False, help="Skip IP geolocation")
@click.pass_obj
def scan_cmd(app_ctx: AppContext, discovery_command: str | None, no_ip: bool) -> None:
    """Scan once for nearby devices and print where they are."""
    settings = app_ctx.settings.merge_overrides(discovery_command=discovery_command)
    asyncio.run(_cmd_scan(app_ctx, settings, use_ip=not no_ip))


async def _cmd_scan(app_ctx: AppContext, settings: AppSettings, *, use_ip: bool) -> None:
    formatter = app_ctx.formatter
    resolver = build_resolver(
        ip_url=settings.ip_geolocation_url if use_ip else None,
        timeout=settings.source_timeout,
    )
    cache = PresenceCache(
        build_discovery(settings),
        resolver,
        staleness_window=settings.staleness_window,
        device_keywords=settings.device_keywords,
    )
    try:
        entries = await cache.run_cycle()
        selected = cache.selected()
    finally:
        await resolver.aclose()

    if formatter.format == "json":
        formatter.output(
            {
                "devices": [e.to_dict() for e in entries],
                "selected": selected.device_id if selected else None,
            },
            command="scan",
        )
    elif not entries:
        formatter.rich.info("[dim]No devices found.[/dim]")
    else:
        formatter.rich.presence(entries, selected.device_id if selected else None)
        if selected is not None:
            formatter.rich.info(
                f"Selected: [bold]{selected.display_name}[/bold] "
                f"({resolver.describe(selected.device_id)})"
            )
