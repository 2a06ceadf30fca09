import logging
import time
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from chat_proxy.app_proxy import ApiProxy
from chat_proxy.config import ProxyConfig
from chat_proxy.routes import build_router
from chat_proxy.static_files import StaticFileServer
from chat_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed
    proxy responses. A large upstream body would otherwise produce one span
    per relayed chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(service_name: str = SERVICE_NAME) -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": service_name}))
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )


configure_tracing()

app_info = Info("chat_proxy_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def create_app(
    config: Optional[ProxyConfig] = None,
    proxy: Optional[ApiProxy] = None,
    observability: bool = True,
) -> FastAPI:
    """
    Build the proxy application.

    The catch-all dispatcher is registered last so that /metrics, when
    observability is on, is matched before static files.
    """
    config = config or ProxyConfig.from_env()
    proxy = proxy or ApiProxy(config)
    static_server = StaticFileServer(config)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(
            f"Reverse proxy ready: {config.api_prefix}/* -> {config.api_url}, "
            f"static files /* -> {static_server.root}"
        )
        try:
            yield
        finally:
            await proxy.aclose()

    # Docs routes would shadow static paths of the web app
    app = FastAPI(
        title=config.service_name,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        route = getattr(request.state, "route", None)
        query = f"?{request.url.query}" if request.url.query else ""
        logger.info(
            f"{request.method} {request.url.path}{query} -> {response.status_code} "
            f"[{route.value if route else '-'}] ({elapsed_ms:.1f} ms)"
        )
        return response

    if observability:
        Instrumentator().instrument(app).expose(app, include_in_schema=False)
        FastAPIInstrumentor.instrument_app(app)

    app.include_router(build_router(config, proxy, static_server))
    return app


app = create_app()
