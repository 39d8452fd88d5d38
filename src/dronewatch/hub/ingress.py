"""HTTP ingress and read API (Starlette).

``POST /api/telemetry`` accepts the same JSON object a device would push
over the WebSocket and runs it through the hub; the other routes are
read-only views over persistence and presence.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from dronewatch.errors import PayloadError, PersistenceError
from dronewatch.hub.hub import stats

if TYPE_CHECKING:
    from starlette.requests import Request

    from dronewatch.hub.hub import TelemetryHub
    from dronewatch.presence.cache import PresenceCache
    from dronewatch.storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 1000


def create_ingress_app(
    hub: TelemetryHub,
    gateway: PersistenceGateway | None = None,
    presence: PresenceCache | None = None,
) -> Starlette:
    """Build the ASGI app.  Serve it with uvicorn next to the WebSocket hub."""

    async def post_telemetry(request: Request) -> JSONResponse:
        # Observers get text frames, so the verbatim body is rebroadcast as str.
        try:
            body = (await request.body()).decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.info("Rejected HTTP telemetry: body is not UTF-8 (%s)", exc.reason)
            return _rejected(f"body is not valid UTF-8: {exc.reason}")
        try:
            record = await hub.ingest(body)
        except PayloadError as exc:
            logger.info("Rejected HTTP telemetry: %s", exc)
            return _rejected(str(exc))
        return JSONResponse({"status": "accepted", "deviceId": record.device_id})

    async def get_latest(request: Request) -> JSONResponse:
        if gateway is None:
            return _unavailable()
        device_id = request.path_params["device_id"]
        try:
            record = await gateway.get_latest(device_id)
        except PersistenceError as exc:
            return _unavailable(str(exc))
        if record is None:
            return JSONResponse({"error": f"no telemetry for {device_id}"}, status_code=404)
        return JSONResponse(record.to_wire())

    async def get_history(request: Request) -> JSONResponse:
        if gateway is None:
            return _unavailable()
        device_id = request.path_params["device_id"]
        try:
            limit = int(request.query_params.get("limit", DEFAULT_HISTORY_LIMIT))
        except ValueError:
            return JSONResponse({"error": "limit must be an integer"}, status_code=400)
        limit = max(0, min(limit, MAX_HISTORY_LIMIT))
        try:
            records = await gateway.get_history(device_id, limit)
        except PersistenceError as exc:
            return _unavailable(str(exc))
        return JSONResponse([r.to_wire() for r in records])

    async def get_presence(request: Request) -> JSONResponse:
        if presence is None:
            return JSONResponse({"devices": [], "selected": None})
        entries = presence.snapshot()
        selected = presence.selected()
        return JSONResponse(
            {
                "devices": [e.to_dict() for e in entries],
                "selected": selected.to_dict() if selected is not None else None,
            }
        )

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", **stats(hub)})

    routes = [
        Route("/api/telemetry", post_telemetry, methods=["POST"]),
        Route("/api/devices/{device_id}/latest", get_latest, methods=["GET"]),
        Route("/api/devices/{device_id}/history", get_history, methods=["GET"]),
        Route("/api/presence", get_presence, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
    ]
    return Starlette(routes=routes)


def _unavailable(detail: str = "persistence not configured") -> JSONResponse:
    return JSONResponse({"error": detail}, status_code=503)


def _rejected(error: str) -> JSONResponse:
    return JSONResponse({"status": "rejected", "error": error}, status_code=400)
