import logging
import time
from enum import Enum

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from chat_proxy.app_proxy import ApiProxy
from chat_proxy.config import ProxyConfig
from chat_proxy.static_files import StaticFileServer

logger = logging.getLogger("uvicorn.error")

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-session-id, x-username",
    "Access-Control-Max-Age": "86400",
}


class RouteKind(str, Enum):
    PREFLIGHT = "preflight"
    API_PROXY = "api-proxy"
    HEALTH = "health"
    DEBUG = "debug"
    STATIC = "static"


def classify(method: str, path: str, config: ProxyConfig) -> RouteKind:
    """Pick the handler for a request; the first matching rule wins."""
    if method.upper() == "OPTIONS":
        return RouteKind.PREFLIGHT
    if path.startswith(config.api_prefix + "/"):
        return RouteKind.API_PROXY
    if path == config.health_path:
        return RouteKind.HEALTH
    if path == config.debug_path and config.enable_debug_endpoint:
        return RouteKind.DEBUG
    return RouteKind.STATIC


def preflight_response() -> Response:
    return Response(status_code=200, headers=PREFLIGHT_HEADERS)


def health_response() -> JSONResponse:
    return JSONResponse(
        {
            "status": "healthy",
            "proxy": "running",
            "timestamp": int(time.time() * 1000),
        }
    )


def debug_response(config: ProxyConfig) -> JSONResponse:
    return JSONResponse(config.debug_snapshot())


def build_router(
    config: ProxyConfig, proxy: ApiProxy, static_server: StaticFileServer
) -> APIRouter:
    """Single catch-all route dispatching on classify()."""
    router = APIRouter()

    if config.enable_debug_endpoint:
        logger.warning(
            f"Debug endpoint enabled at {config.debug_path}; it exposes configuration"
        )

    async def dispatch(request: Request) -> Response:
        route = classify(request.method, request.url.path, config)
        request.state.route = route

        if route is RouteKind.PREFLIGHT:
            return preflight_response()
        if route is RouteKind.API_PROXY:
            return await proxy.forward(request)
        if route is RouteKind.HEALTH:
            return health_response()
        if route is RouteKind.DEBUG:
            return debug_response(config)
        return await static_server.serve(request.url.path)

    # An empty methods list matches any verb, so extension methods such as
    # PROPFIND reach the proxy too (None would mean GET only)
    router.add_route("/{path:path}", dispatch, methods=[], include_in_schema=False)
    return router
