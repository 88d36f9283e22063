"""
REST / HTTP API server for the AssetGate gateway.

Built on ``aiohttp``; each request runs as its own task and opens its own
network session.

Endpoints
---------
POST /register                 Register + enroll an identity (idempotent)
POST /createAsset              Submit CreateAsset
POST /transferAsset            Submit TransferAsset
GET  /assets?org=&userId=      GetAllAssets query
GET  /assets/{id}?org=&userId= ReadAsset query
GET  /assets/{id}/history      GetAssetHistory query
GET  /health                   Liveness and configured target

Errors
------
Every failure is caught once, by the error middleware, and rendered as
``{"error": <kind>, "message": <description>}``.  With
``error_mode = "flat"`` the status is always 500; with ``"detailed"`` it
is the status attached to the error kind.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``, default 1 MiB).

Usage:
    api = APIServer(service, server_config)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from assetgate_core.errors import GatewayError, InvalidInput
from assetgate_core.logging_config import ACCESS_LOG_FORMAT

if TYPE_CHECKING:
    from assetgate_core.config import ServerConfig
    from assetgate_core.service import AssetGatewayService

logger = logging.getLogger("assetgate.api")

SERVICE_KEY = web.AppKey("service", object)
CONFIG_KEY = web.AppKey("server_config", object)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        # refill tokens
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST/PUT/DELETE.

    Only the ``X-API-Key`` header is read, never query parameters.
    """

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers.

    The ``*`` wildcard is **not** supported; list concrete origins.
    """

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def _make_error_middleware(error_mode: str):
    """Render every non-HTTP exception as a JSON error body."""

    detailed = error_mode == "detailed"

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except GatewayError as exc:
            status = exc.status if detailed else 500
            logger.warning(f"{request.method} {request.path} failed: {exc.kind}: {exc.message}")
            return web.json_response(exc.to_dict(), status=status, dumps=_json_dumps)
        except Exception as exc:
            logger.exception(f"{request.method} {request.path} failed unexpectedly")
            return web.json_response(
                {"error": "InternalError", "message": str(exc) or type(exc).__name__},
                status=500,
            )

    return error_middleware


def build_app(service: AssetGatewayService, server_config: ServerConfig) -> web.Application:
    """Assemble the aiohttp application (middlewares, routes, state)."""
    cfg = server_config
    middlewares: list = []

    if cfg.rate_limit_rpm > 0:
        middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
    if cfg.cors_origins:
        middlewares.append(_make_cors_middleware(cfg.cors_origins))
    if cfg.api_key:
        middlewares.append(_make_api_key_middleware(cfg.api_key))
    # innermost, so CORS headers still land on error responses
    middlewares.append(_make_error_middleware(cfg.error_mode))

    app = web.Application(middlewares=middlewares, client_max_size=cfg.max_body_bytes)
    app[SERVICE_KEY] = service
    app[CONFIG_KEY] = cfg
    _register_routes(app)
    return app


# ═══════════════════════════════════════════════════════════════════
#  Routes
# ═══════════════════════════════════════════════════════════════════

def _register_routes(app: web.Application) -> None:
    app.router.add_get("/health", _health)
    app.router.add_post("/register", _register)
    app.router.add_post("/createAsset", _create_asset)
    app.router.add_post("/transferAsset", _transfer_asset)
    app.router.add_get("/assets", _all_assets)
    app.router.add_get("/assets/{id}", _read_asset)
    app.router.add_get("/assets/{id}/history", _asset_history)


def _service(request: web.Request) -> AssetGatewayService:
    return request.app[SERVICE_KEY]


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:  # bad JSON, bad UTF-8, oversized int literals
        raise InvalidInput("Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise InvalidInput("JSON body must be an object")
    return body


def _committed(result) -> web.Response:
    return web.json_response({
        "status": "committed",
        "function": result.function,
        "result": result.value,
    }, dumps=_json_dumps)


async def _health(request: web.Request) -> web.Response:
    service = _service(request)
    return web.json_response({
        "ok": True,
        "channel": service.config.channel_name,
        "chaincode": service.config.chaincode_name,
        "backend": service.config.backend,
        "discovery": service.config.discovery_enabled,
    })


async def _register(request: web.Request) -> web.Response:
    """
    POST /register
    Body: {"org": "Org1MSP", "userId": "alice"}
    """
    body = await _json_body(request)
    result = await _service(request).register(body.get("org"), body.get("userId"))
    return web.json_response(result.to_dict())


async def _create_asset(request: web.Request) -> web.Response:
    """
    POST /createAsset
    Body: {"org": "Org1MSP", "userId": "alice",
           "data": {"airlinePartNumber": "PART11", "productID": "X1",
                    "quantity": "5", "owner": "Raymond"}}
    """
    body = await _json_body(request)
    result = await _service(request).create_asset(body.get("org"), body.get("userId"), body.get("data"))
    return _committed(result)


async def _transfer_asset(request: web.Request) -> web.Response:
    """
    POST /transferAsset
    Body: {"org": "Org1MSP", "userId": "alice",
           "data": {"airlinePartNumber": "PART3", "newOwner": "Omar"}}
    """
    body = await _json_body(request)
    result = await _service(request).transfer_asset(body.get("org"), body.get("userId"), body.get("data"))
    return _committed(result)


async def _all_assets(request: web.Request) -> web.Response:
    q = request.query
    result = await _service(request).all_assets(q.get("org"), q.get("userId"))
    return web.json_response({"result": result.value}, dumps=_json_dumps)


async def _read_asset(request: web.Request) -> web.Response:
    q = request.query
    result = await _service(request).read_asset(q.get("org"), q.get("userId"), request.match_info["id"])
    return web.json_response({"result": result.value}, dumps=_json_dumps)


async def _asset_history(request: web.Request) -> web.Response:
    q = request.query
    result = await _service(request).asset_history(q.get("org"), q.get("userId"), request.match_info["id"])
    return web.json_response({"result": result.value}, dumps=_json_dumps)


# ═══════════════════════════════════════════════════════════════════
#  Server lifecycle
# ═══════════════════════════════════════════════════════════════════

class APIServer:
    """Thin aiohttp wrapper around an :class:`AssetGatewayService`."""

    def __init__(self, service: AssetGatewayService, server_config: ServerConfig):
        self.service = service
        self.config = server_config
        self.host = server_config.host
        self.port = server_config.port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._app = build_app(self.service, self.config)
        runner_kwargs: dict[str, Any] = {"access_log_format": ACCESS_LOG_FORMAT}
        if not self.config.access_log:
            runner_kwargs = {"access_log": None}
        self._runner = web.AppRunner(self._app, **runner_kwargs)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)
