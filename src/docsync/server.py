"""
HTTP transport for the replication protocol.

Routes (under the configured prefix, ``/api/replicate`` by default):
- GET  /pull        next page of changed documents
- POST /push        apply change rows, returns conflicts
- GET  /checkpoint  checkpoint of the most recent write
Plus GET /health at the root.
"""

import json
from typing import Any, Optional

from aiohttp import web
from aiohttp.log import access_logger

from .service import ReplicationService
from .utils.config import DocSyncConfig
from .utils.errors import DocSyncError
from .utils.logging import get_logger

logger = get_logger("docsync.server")

SERVICE_KEY = web.AppKey("replication_service", ReplicationService)
CONFIG_KEY = web.AppKey("config", DocSyncConfig)

CORS_ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


def _parse_limit(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _first(query, *names: str) -> Optional[str]:
    for name in names:
        if name in query:
            return query[name]
    return None


async def handle_pull(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    query = request.query
    body = await service.pull_from_params(
        updated_at=_first(query, "lastUpdatedAt", "updatedAt"),
        doc_id=_first(query, "lastDocId", "id"),
        limit=_parse_limit(query.get("limit")),
        token=query.get("checkpoint"),
    )
    return web.json_response(body)


async def handle_push(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        payload: Any = await request.json()
    except ValueError:
        # Covers invalid JSON and bodies that are not valid UTF-8.
        logger.info("push_rejected", reason="invalid_json")
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Request body must be JSON"}),
            content_type="application/json",
        )

    if isinstance(payload, dict) and isinstance(payload.get("changeRows"), list):
        rows = payload["changeRows"]
    elif isinstance(payload, list):
        rows = payload
    else:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Expected a list of change rows or {\"changeRows\": [...]}"}),
            content_type="application/json",
        )

    conflicts = await service.push(rows)
    return web.json_response(conflicts)


async def handle_checkpoint(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response({"checkpoint": await service.current_checkpoint()})


async def handle_health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        details = await service.health_check()
    except DocSyncError as e:
        return web.json_response({"healthy": False, **e.to_dict()}, status=503)
    return web.json_response({"healthy": True, "details": details})


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except DocSyncError as e:
        logger.error(
            "request_failed",
            path=request.path,
            code=e.code,
            error=e.message,
            retryable=e.is_retryable,
        )
        status = 503 if e.is_retryable else 500
        headers = {}
        if e.get_retry_after():
            headers["Retry-After"] = str(e.get_retry_after())
        return web.json_response(e.to_dict(), status=status, headers=headers)


def cors_middleware_factory(config: DocSyncConfig):
    allowed = config.server.cors_allowed_origins
    max_age = str(config.server.cors_max_age)

    def allow_origin(origin: Optional[str]) -> Optional[str]:
        if "*" in allowed:
            return "*"
        if origin and origin in allowed:
            return origin
        return None

    def add_cors_headers(request: web.Request, headers) -> None:
        origin = allow_origin(request.headers.get("Origin"))
        if origin is None:
            return
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = CORS_ALLOWED_METHODS
        headers["Access-Control-Allow-Headers"] = request.headers.get(
            "Access-Control-Request-Headers", "*"
        )
        headers["Access-Control-Max-Age"] = max_age
        if origin != "*":
            headers["Vary"] = "Origin"

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
            response = web.Response(status=204)
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                add_cors_headers(request, e.headers)
                raise
        add_cors_headers(request, response.headers)
        return response

    return cors_middleware


def create_app(
    config: Optional[DocSyncConfig] = None,
    service: Optional[ReplicationService] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        config: Server configuration (defaults apply when None)
        service: Pre-built replication service; built from config when None

    Returns:
        Application whose startup/cleanup hooks open and close the store
    """
    config = config or DocSyncConfig()
    service = service or ReplicationService.from_config(config)

    app = web.Application(middlewares=[cors_middleware_factory(config), error_middleware])
    app[CONFIG_KEY] = config
    app[SERVICE_KEY] = service

    prefix = config.server.route_prefix
    app.router.add_get(f"{prefix}/pull", handle_pull)
    app.router.add_post(f"{prefix}/push", handle_push)
    app.router.add_get(f"{prefix}/checkpoint", handle_checkpoint)
    app.router.add_get("/health", handle_health)

    async def on_startup(app: web.Application) -> None:
        await app[SERVICE_KEY].initialize()
        logger.info("server_started", route_prefix=prefix)

    async def on_cleanup(app: web.Application) -> None:
        await app[SERVICE_KEY].close()
        logger.info("server_stopped")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run(config: DocSyncConfig) -> None:
    """Serve until interrupted."""
    app = create_app(config)
    web.run_app(
        app,
        host=config.server.host,
        port=config.server.port,
        print=None,
        access_log=access_logger if config.debug else None,
    )


__all__ = ['create_app', 'run', 'SERVICE_KEY', 'CONFIG_KEY']
