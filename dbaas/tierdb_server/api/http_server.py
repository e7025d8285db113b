"""
HTTP server implementation for TierDB.

This module provides the caller-facing REST API on top of RecordAccess,
plus operational endpoints for the archival engine.

Endpoints:
    GET    /v1/records/{record_id}   Get a record from whichever tier holds it
    PUT    /v1/records/{record_id}   Write a record (always to the primary store)
    DELETE /v1/records/{record_id}   Delete a record from every tier
    GET    /v1/health                Health check
    GET    /v1/archival/stats        Engine, access and status counters
    POST   /v1/archival/run          Run one archival pass now

Invariants:
    - The record contract is tier-agnostic: 200, 404 or 503
    - The serving tier is reported only as metadata (served_from, X-Served-From)
    - JSON request/response format; payloads travel base64-encoded

How to change safely:
    - Never return tier-specific error codes from record endpoints
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from aiohttp import web

from ..access import RecordAccess
from ..archival import ArchivalEngine
from ..config import HttpConfig
from ..errors import InvalidRecordError, RecordStoreError
from ..records import Deleted, Found, Record

logger = logging.getLogger(__name__)


def create_http_app(
    access: RecordAccess,
    engine: ArchivalEngine | None = None,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for TierDB.

    Args:
        access: RecordAccess facade
        engine: Archival engine for the operational endpoints
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    # Add routes
    app.router.add_get("/v1/records/{record_id}", partial(handle_get_record, access=access))
    app.router.add_put("/v1/records/{record_id}", partial(handle_put_record, access=access))
    app.router.add_delete("/v1/records/{record_id}", partial(handle_delete_record, access=access))
    app.router.add_get("/v1/health", partial(handle_health, access=access))
    app.router.add_get(
        "/v1/archival/stats", partial(handle_archival_stats, access=access, engine=engine)
    )
    app.router.add_post("/v1/archival/run", partial(handle_archival_run, engine=engine))

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        # Add CORS headers
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, PUT, POST, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Trace-ID"
        response.headers["Access-Control-Expose-Headers"] = "X-Served-From"

        return response

    app.middlewares.append(cors_middleware)

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except InvalidRecordError as e:
            return web.json_response(
                {"error": e.message, "error_code": "INVALID_ARGUMENT"},
                status=400,
            )
        except RecordStoreError as e:
            # Tier failures surface as a single "unavailable" outcome
            logger.error(
                "Store failure while handling request",
                extra={"path": request.path, "code": e.code, "error": e.message},
            )
            return web.json_response(
                {"error": "Record store temporarily unavailable", "error_code": "UNAVAILABLE"},
                status=503,
            )
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.insert(0, error_middleware)

    return app


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "INVALID_ARGUMENT"}),
        content_type="application/json",
    )


def record_to_json(record: Record, served_from: str | None = None) -> dict[str, Any]:
    """Serialize a record for a JSON response."""
    data = {
        "record_id": record.record_id,
        "partition_key": record.partition_key,
        "timestamp": record.timestamp,
        "schema_version": record.schema_version,
        "status": record.status.value,
        "payload_b64": base64.b64encode(record.payload).decode("ascii"),
    }
    if served_from is not None:
        data["served_from"] = served_from
    return data


def parse_record_body(record_id: str, body: Any) -> Record:
    """Build a Record from a PUT body.

    The payload is given either as "payload_b64" (opaque bytes, base64) or
    as "payload" (any JSON value, stored as compact UTF-8 JSON).

    Raises:
        web.HTTPBadRequest: If the body is malformed
    """
    if not isinstance(body, dict):
        raise _bad_request("Request body must be a JSON object")

    if "payload_b64" in body:
        try:
            payload = base64.b64decode(body["payload_b64"], validate=True)
        except (binascii.Error, TypeError, ValueError):
            raise _bad_request("payload_b64 is not valid base64")
    elif "payload" in body:
        payload = json.dumps(body["payload"], separators=(",", ":")).encode("utf-8")
    else:
        raise _bad_request("payload_b64 or payload is required")

    timestamp = body.get("timestamp", 0)
    schema_version = body.get("schema_version", 1)
    if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp < 0:
        raise _bad_request("timestamp must be a non-negative integer (Unix ms)")
    if not isinstance(schema_version, int) or isinstance(schema_version, bool):
        raise _bad_request("schema_version must be an integer")

    partition_key = body.get("partition_key") or ""
    if not isinstance(partition_key, str):
        raise _bad_request("partition_key must be a string")

    return Record(
        record_id=record_id,
        payload=payload,
        partition_key=partition_key,
        timestamp=timestamp,
        schema_version=schema_version,
    )


async def handle_get_record(request: web.Request, access: RecordAccess) -> web.Response:
    """Handle GET /v1/records/{record_id} - Get record from any tier."""
    record_id = request.match_info["record_id"]

    result = await access.get(record_id)

    if not isinstance(result, Found):
        return web.json_response(
            {"error": f"Record not found: {record_id}", "error_code": "NOT_FOUND"},
            status=404,
        )

    served_from = result.tier.value
    return web.json_response(
        record_to_json(result.record, served_from),
        headers={"X-Served-From": served_from},
    )


async def handle_put_record(request: web.Request, access: RecordAccess) -> web.Response:
    """Handle PUT /v1/records/{record_id} - Write record."""
    record_id = request.match_info["record_id"]

    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _bad_request("Invalid JSON body")

    record = parse_record_body(record_id, body)
    stored = await access.put(record)
    return web.json_response(record_to_json(stored))


async def handle_delete_record(request: web.Request, access: RecordAccess) -> web.Response:
    """Handle DELETE /v1/records/{record_id} - Delete record from every tier."""
    record_id = request.match_info["record_id"]

    result = await access.delete(record_id)

    if not isinstance(result, Deleted):
        return web.json_response(
            {"error": f"Record not found: {record_id}", "error_code": "NOT_FOUND"},
            status=404,
        )
    return web.json_response(
        {
            "deleted": True,
            "record_id": result.record_id,
            "tiers": [t.value for t in result.tiers],
        }
    )


async def handle_health(request: web.Request, access: RecordAccess) -> web.Response:
    """Handle GET /v1/health - Health check."""
    checks: dict[str, Any] = {}
    try:
        await access.primary.count_by_status()
        checks["primary"] = "ok"
    except RecordStoreError as e:
        checks["primary"] = e.code
    checks["archive"] = "ok" if getattr(access.archive, "is_connected", True) else "disconnected"

    healthy = all(v == "ok" for v in checks.values())
    return web.json_response(
        {"healthy": healthy, "checks": checks},
        status=200 if healthy else 503,
    )


async def handle_archival_stats(
    request: web.Request,
    access: RecordAccess,
    engine: ArchivalEngine | None,
) -> web.Response:
    """Handle GET /v1/archival/stats - Tiering statistics."""
    result = {
        "primary_records": await access.primary.count_by_status(),
        "access": access.stats,
        "engine": engine.stats if engine else None,
    }
    return web.json_response(result)


async def handle_archival_run(request: web.Request, engine: ArchivalEngine | None) -> web.Response:
    """Handle POST /v1/archival/run - Run one archival pass."""
    if engine is None:
        return web.json_response(
            {"error": "Archival engine is not configured", "error_code": "UNAVAILABLE"},
            status=503,
        )

    result = await engine.run_once()
    status = 409 if result.skipped else 200
    return web.json_response(result.to_dict(), status=status)


class HttpServer:
    """Runs the HTTP application on an aiohttp AppRunner.

    Example:
        >>> server = HttpServer(create_http_app(access, engine), "0.0.0.0", 8081)
        >>> await server.start()
        >>> await server.stop()
    """

    def __init__(self, app: web.Application, host: str = "0.0.0.0", port: int = 8081) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start serving."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info(f"HTTP server running on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop serving and release the listener."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
