"""``dronewatch serve`` — run the hub, HTTP ingress and presence loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING, Any

import click

from dronewatch.errors import PersistenceError
from dronewatch.hub.hub import TelemetryHub
from dronewatch.hub.ingress import create_ingress_app
from dronewatch.hub.server import HubServer
from dronewatch.location.resolver import build_resolver
from dronewatch.presence.cache import PresenceCache
from dronewatch.presence.discovery import CommandDiscovery, NullDiscovery
from dronewatch.presence.relay import PresenceRelay
from dronewatch.storage.gateway import SQLiteGateway

if TYPE_CHECKING:
    from dronewatch.cli.main import AppContext
    from dronewatch.models.config import AppSettings
    from dronewatch.presence.discovery import DiscoveryBackend

logger = logging.getLogger(__name__)


async def _safe_uvicorn_serve(server: Any, port: int) -> None:
    """Run ``uvicorn.Server.serve()`` converting its bind-failure exit.

    Uvicorn calls ``sys.exit(1)`` when it cannot bind the port, which would
    otherwise take down the event loop before the task result is read.
    """
    try:
        await server.serve()
    except SystemExit as exc:
        if exc.code == 0:
            return
        raise OSError(f"HTTP ingress failed to start on port {port}") from exc


def build_discovery(settings: AppSettings) -> DiscoveryBackend:
    if settings.discovery_command:
        return CommandDiscovery(settings.discovery_command, timeout=settings.source_timeout)
    logger.info("No discovery command configured — presence stays empty")
    return NullDiscovery()


@click.command("serve")
@click.option("--host", default=None, help="Listen address (default: DRONEWATCH_HUB_HOST)")
@click.option("--port", type=int, default=None, help="WebSocket port (default: 7070)")
@click.option("--http-port", type=int, default=None, help="HTTP ingress port (default: 7071)")
@click.option("--no-http", is_flag=True, default=False, help="Do not start the HTTP ingress")
@click.option(
    "--discovery-command",
    default=None,
    help="Command printing one 'name|instance|battery|rssi' line per nearby device",
)
@click.option("--scan-interval", type=float, default=None, help="Seconds between scans")
@click.option(
    "--forward-presence/--no-forward-presence",
    default=None,
    help="Publish presence entries through the hub",
)
@click.pass_obj
def serve_cmd(
    app_ctx: AppContext,
    host: str | None,
    port: int | None,
    http_port: int | None,
    no_http: bool,
    discovery_command: str | None,
    scan_interval: float | None,
    forward_presence: bool | None,
) -> None:
    """Run the telemetry hub until Ctrl+C or SIGTERM."""
    settings = app_ctx.settings.merge_overrides(
        hub_host=host,
        hub_port=port,
        http_port=http_port,
        discovery_command=discovery_command,
        scan_interval=scan_interval,
        forward_presence=forward_presence,
    )
    asyncio.run(_cmd_serve(app_ctx, settings, with_http=not no_http))


async def _cmd_serve(app_ctx: AppContext, settings: AppSettings, *, with_http: bool) -> None:
    formatter = app_ctx.formatter
    is_rich = formatter.format == "rich"

    gateway = SQLiteGateway(settings.database_url)
    try:
        await gateway.open()
    except PersistenceError as exc:
        # The hub still broadcasts without persistence.
        logger.warning("Could not open %s: %s", settings.database_url, exc)

    hub = TelemetryHub(
        gateway,
        default_device_id=settings.default_device_id,
        send_timeout=settings.send_timeout,
    )
    server = HubServer(hub, host=settings.hub_host, port=settings.hub_port)

    resolver = build_resolver(
        ip_url=settings.ip_geolocation_url,
        timeout=settings.source_timeout,
    )
    presence = PresenceCache(
        build_discovery(settings),
        resolver,
        interval=settings.scan_interval,
        staleness_window=settings.staleness_window,
        device_keywords=settings.device_keywords,
    )
    if settings.forward_presence:
        presence.add_listener(PresenceRelay(hub))

    # -- SIGTERM handler for graceful container/systemd shutdown --
    shutdown_event = asyncio.Event()

    def _handle_sigterm() -> None:
        logger.info("SIGTERM received — shutting down gracefully")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if hasattr(signal, "SIGTERM"):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGTERM, _handle_sigterm)

    uvi_server: Any = None
    http_task: asyncio.Task[None] | None = None
    try:
        await server.start()

        if with_http:
            import uvicorn

            app = create_ingress_app(hub, gateway, presence)
            uvi_cfg = uvicorn.Config(
                app, host=settings.hub_host, port=settings.http_port, log_level="warning"
            )
            uvi_server = uvicorn.Server(uvi_cfg)
            http_task = asyncio.create_task(_safe_uvicorn_serve(uvi_server, settings.http_port))

        presence.start()

        if is_rich:
            formatter.rich.info(f"Telemetry hub listening on [cyan]{server.url}[/cyan]")
            if with_http:
                formatter.rich.info(
                    f"HTTP ingress on [cyan]http://{settings.hub_host}:{settings.http_port}[/cyan]"
                )
            if hub.degraded:
                formatter.rich.info("[yellow]Persistence unavailable — broadcast only[/yellow]")
            formatter.rich.info("Press Ctrl+C to stop.")
        else:
            formatter.output(
                {"status": "listening", "url": server.url, "degraded": hub.degraded},
                command="serve",
            )

        await _wait_for_shutdown(shutdown_event, http_task)
    finally:
        await _shutdown(presence, server, uvi_server, http_task, resolver, gateway)
        if is_rich:
            formatter.rich.info(
                f"[dim]Stopped after {hub.message_count} message(s), "
                f"{presence.cycle_count} discovery cycle(s).[/dim]"
            )


async def _wait_for_shutdown(
    shutdown_event: asyncio.Event, http_task: asyncio.Task[None] | None
) -> None:
    """Block until SIGTERM, Ctrl+C, or the HTTP ingress dies."""
    waiters: list[asyncio.Future[Any]] = [asyncio.ensure_future(shutdown_event.wait())]
    if http_task is not None:
        waiters.append(http_task)
    try:
        done, _pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        return
    finally:
        waiters[0].cancel()
    # Re-raise a failed ingress so the operator sees why serve stopped.
    if http_task is not None and http_task in done:
        http_task.result()


async def _shutdown(
    presence: PresenceCache,
    server: HubServer,
    uvi_server: Any,
    http_task: asyncio.Task[None] | None,
    resolver: Any,
    gateway: SQLiteGateway,
) -> None:
    """Tear down in order; a failing step never skips the ones after it."""
    try:
        await presence.stop()
    except Exception:
        logger.warning("Error stopping presence loop", exc_info=True)

    try:
        await server.stop()
    except Exception:
        logger.warning("Error closing observer connections", exc_info=True)

    if uvi_server is not None:
        uvi_server.should_exit = True
    if http_task is not None and not http_task.done():
        try:
            await http_task
        except (asyncio.CancelledError, OSError):
            pass
        except Exception:
            logger.warning("Error stopping HTTP ingress", exc_info=True)

    try:
        await resolver.aclose()
    except Exception:
        logger.warning("Error releasing location resolver", exc_info=True)

    try:
        await gateway.close()
    except Exception:
        logger.warning("Error closing persistence gateway", exc_info=True)
