"""Persistence queries: ``latest`` and ``history``."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import click

from dronewatch.storage.gateway import SQLiteGateway

if TYPE_CHECKING:
    from dronewatch.cli.main import AppContext


@click.command("latest")
@click.argument("device_id")
@click.pass_obj
def latest_cmd(app_ctx: AppContext, device_id: str) -> None:
    """Show the most recent reading stored for DEVICE_ID."""
    asyncio.run(_cmd_latest(app_ctx, device_id))


async def _cmd_latest(app_ctx: AppContext, device_id: str) -> None:
    formatter = app_ctx.formatter
    gateway = SQLiteGateway(app_ctx.settings.database_url)
    await gateway.open()
    try:
        record = await gateway.get_latest(device_id)
    finally:
        await gateway.close()

    if record is None:
        formatter.output_error(
            code="not_found",
            message=f"No telemetry stored for {device_id}",
            command="latest",
        )
        raise SystemExit(1)

    if formatter.format == "json":
        formatter.output(record, command="latest")
    else:
        formatter.rich.telemetry(record)


@click.command("history")
@click.argument("device_id")
@click.option(
    "--limit", "-n", type=click.IntRange(min=1), default=50, show_default=True,
    help="Maximum readings to return",
)
@click.pass_obj
def history_cmd(app_ctx: AppContext, device_id: str, limit: int) -> None:
    """List stored readings for DEVICE_ID, newest first."""
    asyncio.run(_cmd_history(app_ctx, device_id, limit))


async def _cmd_history(app_ctx: AppContext, device_id: str, limit: int) -> None:
    formatter = app_ctx.formatter
    gateway = SQLiteGateway(app_ctx.settings.database_url)
    await gateway.open()
    try:
        records = await gateway.get_history(device_id, limit)
    finally:
        await gateway.close()

    if formatter.format == "json":
        formatter.output(records, command="history")
    elif not records:
        formatter.rich.info(f"[dim]No telemetry stored for {device_id}.[/dim]")
    else:
        formatter.rich.telemetry_history(device_id, records)
