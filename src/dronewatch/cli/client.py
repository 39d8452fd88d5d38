"""Observer-side commands: ``watch`` and ``send``."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

import click

from dronewatch.client.observer import ObserverClient
from dronewatch.errors import PayloadError, ReconnectExhaustedError
from dronewatch.hub.codec import encode_record, parse_payload
from dronewatch.models.telemetry import TelemetryRecord

if TYPE_CHECKING:
    from dronewatch.cli.main import AppContext
    from dronewatch.client.reconnect import ConnectionState

logger = logging.getLogger(__name__)


@click.command("watch")
@click.option("--url", default=None, help="Hub URL (default: DRONEWATCH_OBSERVER_URL)")
@click.option("--count", "-n", type=int, default=None, help="Exit after N broadcasts")
@click.pass_obj
def watch_cmd(app_ctx: AppContext, url: str | None, count: int | None) -> None:
    """Print every broadcast from a hub, reconnecting on drops."""
    settings = app_ctx.settings.merge_overrides(observer_url=url)
    asyncio.run(
        _cmd_watch(
            app_ctx,
            settings.observer_url,
            count=count,
            reconnect_delay=settings.reconnect_delay,
            max_attempts=settings.max_reconnect_attempts,
        )
    )


async def _cmd_watch(
    app_ctx: AppContext,
    url: str,
    *,
    count: int | None,
    reconnect_delay: float,
    max_attempts: int,
) -> None:
    formatter = app_ctx.formatter
    is_rich = formatter.format == "rich"
    done = asyncio.Event()

    def _on_message(record: TelemetryRecord, raw: str) -> None:
        if is_rich:
            formatter.rich.telemetry(record)
        else:
            formatter.stream_line(raw)
        if count is not None and client.received_count >= count:
            done.set()

    def _on_state(state: ConnectionState) -> None:
        if is_rich:
            formatter.rich.info(f"[dim]{url}: {state}[/dim]")

    client = ObserverClient(
        url,
        _on_message,
        reconnect_delay=reconnect_delay,
        max_attempts=max_attempts,
    )
    client.controller.add_listener(_on_state)

    failed = asyncio.ensure_future(client.run_until_failed())
    finished = asyncio.ensure_future(done.wait())
    try:
        await asyncio.wait([failed, finished], return_when=asyncio.FIRST_COMPLETED)
        if failed.done():
            failed.result()
    except ReconnectExhaustedError as exc:
        formatter.output_error(
            code="reconnect_exhausted",
            message=str(exc),
            command="watch",
            attempts=exc.attempts,
        )
        raise SystemExit(1) from exc
    finally:
        failed.cancel()
        finished.cancel()
        await client.close()


@click.command("send")
@click.argument("payload", required=False, default=None)
@click.option("--url", default=None, help="Hub URL (default: DRONEWATCH_OBSERVER_URL)")
@click.option("--device", "device_id", default=None, help="Device ID (builds the payload)")
@click.option("--lat", "latitude", type=float, default=None)
@click.option("--lon", "longitude", type=float, default=None)
@click.option("--battery", type=click.IntRange(0, 100), default=None)
@click.option("--altitude", type=float, default=None)
@click.option("--status", default=None)
@click.pass_obj
def send_cmd(
    app_ctx: AppContext,
    payload: str | None,
    url: str | None,
    device_id: str | None,
    latitude: float | None,
    longitude: float | None,
    battery: int | None,
    altitude: float | None,
    status: str | None,
) -> None:
    """Push one reading to a hub.

    Either pass a raw JSON PAYLOAD, or build one with --device/--lat/--lon/--battery.
    """
    settings = app_ctx.settings.merge_overrides(observer_url=url)
    message = _build_payload(payload, device_id, latitude, longitude, battery, altitude, status)
    asyncio.run(_cmd_send(app_ctx, settings.observer_url, message))


def _build_payload(
    payload: str | None,
    device_id: str | None,
    latitude: float | None,
    longitude: float | None,
    battery: int | None,
    altitude: float | None,
    status: str | None,
) -> str:
    if payload is not None:
        # Sent verbatim; validate only so the user hears about typos here.
        try:
            parse_payload(payload)
        except PayloadError as exc:
            raise click.BadParameter(str(exc), param_hint="PAYLOAD") from exc
        return payload

    missing = [
        name
        for name, value in (
            ("--device", device_id),
            ("--lat", latitude),
            ("--lon", longitude),
            ("--battery", battery),
        )
        if value is None
    ]
    if missing:
        raise click.UsageError(f"Provide a JSON PAYLOAD or {', '.join(missing)}")

    record = TelemetryRecord.model_validate(
        {
            "deviceId": device_id,
            "latitude": latitude,
            "longitude": longitude,
            "batteryLevel": battery,
            "altitude": altitude,
            "status": status,
        }
    )
    return encode_record(record)


async def _cmd_send(app_ctx: AppContext, url: str, message: str) -> None:
    import websockets.asyncio.client as ws_client

    formatter = app_ctx.formatter
    async with ws_client.connect(url, open_timeout=10) as ws:
        await ws.send(message)
    logger.debug("Sent %d byte(s) to %s", len(message), url)

    if formatter.format == "rich":
        formatter.rich.info(f"[green]Sent[/green] to {url}: {message}")
    else:
        formatter.output({"sent": json.loads(message), "url": url}, command="send")
