import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace

from chat_proxy.config import ProxyConfig
from chat_proxy.utils import clip
from chat_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# Connection-specific headers; the proxy opens its own upstream connection
EXCLUDED_REQUEST_HEADERS = {
    b"host",
    b"connection",
    b"upgrade",
    b"keep-alive",
}

# Hop-by-hop headers that should NOT be relayed back (RFC 2616)
HOP_BY_HOP_HEADERS = {
    b"connection",
    b"keep-alive",
    b"proxy-authenticate",
    b"proxy-authorization",
    b"te",
    b"trailers",
    b"transfer-encoding",
    b"upgrade",
}

# httpx has already decoded the body, so these no longer describe it
STALE_ENTITY_HEADERS = {
    b"content-encoding",
    b"content-length",
}

BODYLESS_METHODS = {"GET", "HEAD"}

CORS_ORIGIN_HEADER = {"Access-Control-Allow-Origin": "*"}


def _request_path(request: Request) -> str:
    """
    The undecoded request path when the server provides it, so that escaped
    characters such as %2F reach the upstream unchanged.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


def get_target_url(request: Request, config: ProxyConfig) -> str:
    """Construct the upstream URL: API prefix stripped, query kept verbatim."""
    path = _request_path(request)
    if not path.startswith(config.api_prefix + "/"):
        path = request.url.path
    if path.startswith(config.api_prefix):
        path = path[len(config.api_prefix):]

    target = f"{config.api_url}{path}"

    query_string = str(request.url.query)
    if query_string:
        target = f"{target}?{query_string}"
    return target


def prepare_headers(request: Request) -> Dict[bytes, bytes]:
    """
    Prepare headers for forwarding to the upstream API.
    Connection-specific headers are dropped; duplicates keep the last value.
    Values stay raw bytes: obs-text such as Latin-1 user names is valid HTTP
    but does not survive httpx's ASCII encoding of str values.
    """
    headers = {}
    for name, value in request.headers.raw:
        name_lower = name.lower()
        if name_lower in EXCLUDED_REQUEST_HEADERS:
            continue
        headers[name_lower] = value
    return headers


def sanitize_response_headers(
    headers: Iterable[Tuple[bytes, bytes]],
) -> List[Tuple[bytes, bytes]]:
    """Drop hop-by-hop and stale entity headers, keeping repeated ones like set-cookie."""
    sanitized = []
    for name, value in headers:
        name_lower = name.lower()
        if name_lower in HOP_BY_HOP_HEADERS or name_lower in STALE_ENTITY_HEADERS:
            continue
        sanitized.append((name_lower, value))
    return sanitized


def is_html_response(response: httpx.Response) -> bool:
    return "text/html" in response.headers.get("content-type", "").lower()


def unavailable_response(exception: Exception) -> JSONResponse:
    return JSONResponse(
        {
            "error": "API server unavailable",
            "details": "Failed to connect to chat API server",
            "errorMessage": format_exception_message(exception),
        },
        status_code=503,
        headers=CORS_ORIGIN_HEADER,
    )


def misrouted_response() -> JSONResponse:
    return JSONResponse(
        {
            "error": "Unexpected HTML response from API server",
            "details": "This suggests a routing issue",
        },
        status_code=502,
        headers=CORS_ORIGIN_HEADER,
    )


async def stream_response(response: httpx.Response) -> AsyncIterator[bytes]:
    """
    Relay the decoded upstream body chunk by chunk and release the upstream
    connection afterwards.
    """
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        # Status and headers are already sent; abort the body
        log_exception_with_details(
            logger, "[API-Proxy] Upstream body stream interrupted", e
        )
        raise
    finally:
        await response.aclose()


async def _read_preview(response: httpx.Response, limit: int = 200) -> str:
    try:
        async for chunk in response.aiter_bytes():
            return chunk[:limit].decode("utf-8", errors="replace")
    except httpx.HTTPError:
        return ""
    finally:
        await response.aclose()
    return ""


class ApiProxy:
    """
    Forwards /api/* requests to the chat API service.

    One AsyncClient (and its connection pool) is shared by all requests and
    closed by the application lifespan.
    """

    def __init__(
        self, config: ProxyConfig, client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.proxy_timeout),
            follow_redirects=False,  # 3xx responses are relayed to the client
        )
        # httpx sends "Connection: keep-alive" by default; the pool manages that itself
        for name in EXCLUDED_REQUEST_HEADERS:
            self.client.headers.pop(name.decode("latin-1"), None)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def forward(self, request: Request) -> Response:
        """
        Forward one request upstream and turn the answer into a client response:
        - upstream unreachable or timed out -> 503 JSON
        - upstream answered with HTML -> 502 JSON
        - anything else -> status and body relayed, headers sanitized
        """
        target_url = get_target_url(request, self.config)

        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.target_url", target_url)
            span.set_attribute("proxy.method", request.method)

            logger.debug(
                f"[API-Proxy] {request.method} {request.url.path} -> {target_url}"
            )

            headers = prepare_headers(request)
            body = None
            if request.method.upper() not in BODYLESS_METHODS:
                body = await request.body()

            try:
                upstream_request = self.client.build_request(
                    method=request.method,
                    url=target_url,
                    headers=headers,
                    content=body,
                )
                upstream = await self.client.send(upstream_request, stream=True)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                log_exception_with_details(
                    logger, f"[API-Proxy] Upstream {target_url} unavailable:", e
                )
                span.set_attribute(
                    "proxy.error",
                    "timeout" if isinstance(e, httpx.TimeoutException) else "unavailable",
                )
                return unavailable_response(e)

            span.set_attribute("proxy.status_code", upstream.status_code)
            logger.debug(
                f"[API-Proxy] Upstream answered {upstream.status_code} "
                f"{upstream.reason_phrase} for {target_url}"
            )

            if is_html_response(upstream):
                preview = await _read_preview(upstream)
                logger.warning(
                    f"[API-Proxy] Got HTML instead of an API response from {target_url}, "
                    f"possible routing issue. Body preview: {clip(preview)}"
                )
                span.set_attribute("proxy.error", "unexpected_html")
                return misrouted_response()

            response = StreamingResponse(
                stream_response(upstream),
                status_code=upstream.status_code,
            )
            response.raw_headers.extend(sanitize_response_headers(upstream.headers.raw))
            if "access-control-allow-origin" not in response.headers:
                response.headers["access-control-allow-origin"] = "*"
            return response
