"""
HTTP server implementation for SpaceSync.

Exposes the push and pull endpoints plus a health probe:
- POST /api/replicache/{space_id}/push
- POST /api/replicache/{space_id}/pull
- GET  /v1/health

Invariants:
    - JSON request/response format
    - SyncError subclasses map to fixed status codes (see _status_for)
    - Unexpected errors return a generic 500 body; details only go to the log

How to change safely:
    - Keep the push/pull paths stable; deployed clients hardcode them
    - New error types need an entry in _STATUS_BY_ERROR
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..errors import (
    MutationGapError,
    MutatorError,
    RequestValidationError,
    StoreUnavailableError,
    SyncError,
    TransactionExhaustedError,
    UnknownSpaceError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[SyncError], int], ...] = (
    (StoreUnavailableError, 503),
    (UnknownSpaceError, 404),
    (TransactionExhaustedError, 409),
    (MutationGapError, 400),
    (MutatorError, 400),
    (RequestValidationError, 400),
)


def _status_for(error: SyncError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def create_http_app(
    servicer: Any,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for SpaceSync.

    Args:
        servicer: SyncServicer instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    app.router.add_post("/api/replicache/{space_id}/push", lambda r: handle_push(r, servicer))
    app.router.add_post("/api/replicache/{space_id}/pull", lambda r: handle_pull(r, servicer))
    app.router.add_get("/v1/health", lambda r: handle_health(r, servicer))

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"

        return response

    # Errors are turned into responses inside the CORS layer so they carry CORS headers too
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except SyncError as e:
            status = _status_for(e)
            if status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e.message}", extra=e.details)
            else:
                logger.warning(f"{request.method} {request.path} rejected: {e.message}")
            body = e.to_dict()
            if isinstance(e, RequestValidationError):
                body["details"] = e.errors
            return web.json_response(body, status=status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": "Internal server error", "error_code": "INTERNAL", "retryable": False},
                status=500,
            )

    app.middlewares.append(cors_middleware)
    app.middlewares.append(error_middleware)

    return app


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except ValueError:  # JSONDecodeError or a body that is not UTF-8
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "error_code": "INVALID_ARGUMENT"}),
            content_type="application/json",
        )


async def handle_push(request: web.Request, servicer: Any) -> web.Response:
    """Handle POST /api/replicache/{space_id}/push - Apply a mutation batch."""
    space_id = request.match_info["space_id"]
    body = await _read_json(request)
    result = await servicer.push(space_id, body)
    return web.json_response(result)


async def handle_pull(request: web.Request, servicer: Any) -> web.Response:
    """Handle POST /api/replicache/{space_id}/pull - Changes since a cookie."""
    space_id = request.match_info["space_id"]
    body = await _read_json(request)
    result = await servicer.pull(space_id, body)
    return web.json_response(result)


async def handle_health(request: web.Request, servicer: Any) -> web.Response:
    """Handle GET /v1/health - Health check."""
    result = await servicer.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)
