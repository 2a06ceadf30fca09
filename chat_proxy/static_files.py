"""Static file serving for the compiled single-page web application.

Paths are resolved against the asset root on every request; nothing is
cached in-process. Unknown paths fall back to the index document so that
the client-side router can handle deep links.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Optional

from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from chat_proxy.config import ProxyConfig
from chat_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

MIME_TYPES = {
    ".html": "text/html",
    ".js": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".wasm": "application/wasm",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

# Build output is content-hashed; only the HTML entry point may change in place
NO_CACHE = "no-cache"
LONG_LIVED_CACHE = "public, max-age=31536000, immutable"


def content_type_for(path: str) -> str:
    return MIME_TYPES.get(PurePosixPath(path).suffix.lower(), DEFAULT_MIME_TYPE)


def cache_control_for(path: str) -> str:
    return NO_CACHE if path.lower().endswith(".html") else LONG_LIVED_CACHE


class StaticFileServer:
    """Serves files from the asset root with SPA fallback.

    Security: resolves symlinks and verifies the final path is within the
    asset root to prevent path traversal. The root itself is resolved per
    request, so a release symlink swapped by a deploy takes effect at once.
    """

    __slots__ = ("_index", "_root")

    def __init__(self, config: ProxyConfig) -> None:
        self._root = Path(config.static_root).absolute()
        self._index = config.index_file

    @property
    def root(self) -> Path:
        return self._root.resolve()

    def resolve(self, path: str) -> Optional[Path]:
        """Map a URL path onto the asset root, None when it escapes the root."""
        relative = path.lstrip("/")
        try:
            root = self._root.resolve()
            file_path = (root / relative).resolve() if relative else root
        except (OSError, ValueError):
            return None
        if not file_path.is_relative_to(root):
            return None
        return file_path

    async def serve(self, path: str) -> Response:
        """Serve a file, the SPA fallback, or an error page."""
        if path == "/":
            path = f"/{self._index}"

        file_path = await run_in_threadpool(self.resolve, path)
        if file_path is None:
            logger.warning(f"[Static] Rejected path outside asset root: {path}")
            return PlainTextResponse("Forbidden", status_code=403)

        try:
            if not await run_in_threadpool(file_path.is_file):
                return await self._spa_fallback(path)

            body = await run_in_threadpool(file_path.read_bytes)
        except OSError as e:
            log_exception_with_details(logger, f"[Static] Failed to read {path}:", e)
            return PlainTextResponse("Internal server error", status_code=500)

        content_type = content_type_for(path)
        logger.debug(f"[Static] {path} ({content_type})")
        return Response(
            content=body,
            headers={
                "Content-Type": content_type,
                "Cache-Control": cache_control_for(path),
            },
        )

    async def _spa_fallback(self, path: str) -> Response:
        """Serve the index document for unknown paths, 404 when it is missing too."""
        index_path = self._root / self._index
        if not await run_in_threadpool(index_path.is_file):
            return PlainTextResponse("File not found", status_code=404)

        body = await run_in_threadpool(index_path.read_bytes)
        logger.debug(f"[Static] SPA fallback: {path} -> /{self._index}")
        return Response(
            content=body,
            headers={
                "Content-Type": "text/html",
                "Cache-Control": NO_CACHE,
            },
        )
