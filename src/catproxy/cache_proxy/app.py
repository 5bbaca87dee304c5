"""Cache-aside proxy service in front of the status-code image service."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..common.errors import InvalidRequest
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import ProxySettings
from .handler import ALLOWED_METHODS, INTERNAL_ERROR, METHOD_NOT_ALLOWED, CacheAsideHandler, plain_response
from .router import parse_cache_key
from .store import FileCacheStore
from .upstream import UpstreamFetcher


LOGGER = structlog.get_logger("catproxy.cache_proxy")

# Methods routed to the handler. Any other method is refused by the router and answered by
# `plain_http_error`, which still validates the path first.
ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


class CacheProxyState:
    def __init__(self, settings: ProxySettings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http = http_client
        self.store = FileCacheStore(settings.cache_root)
        self.fetcher = UpstreamFetcher(http_client, settings.upstream_base_url)
        self.handler = CacheAsideHandler(
            self.store,
            self.fetcher,
            max_body_bytes=settings.max_body_bytes,
            single_flight=settings.single_flight,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: ProxySettings = app.state.settings
    transport: Optional[httpx.AsyncBaseTransport] = app.state.upstream_transport
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.upstream_timeout_seconds),
        follow_redirects=True,
        transport=transport,
    )
    app.state.cache_state = CacheProxyState(settings, http_client)
    LOGGER.info(
        "server_started",
        url=f"http://{settings.host}:{settings.port}/",
        cache_root=str(settings.cache_root.resolve()),
        upstream=settings.upstream_base_url,
        single_flight=settings.single_flight,
    )
    try:
        yield
    finally:
        await http_client.aclose()


def get_state(request: Request) -> CacheProxyState:
    return request.app.state.cache_state  # type: ignore[attr-defined]


def raw_request_path(request: Request) -> str:
    """Return the request path as received, percent-encoding intact and query stripped."""

    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return request.url.path
    return raw_path.decode("latin-1").split("?", 1)[0]


def create_app(
    settings: Optional[ProxySettings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or ProxySettings()
    configure_logging("catproxy.cache_proxy", settings.log_level)
    configure_tracing(
        service_name="catproxy.cache_proxy",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.upstream_transport = upstream_transport
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:  # noqa: BLE001
            duration = time.perf_counter() - start
            LOGGER.exception(
                "unhandled_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)

        duration = time.perf_counter() - start
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            LOGGER.warning("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def plain_http_error(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            try:
                parse_cache_key(raw_request_path(request))
            except InvalidRequest as invalid:
                return plain_response(invalid.status_code, invalid.message)
            return plain_response(exc.status_code, METHOD_NOT_ALLOWED, headers={"Allow": ", ".join(ALLOWED_METHODS)})
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)

    @app.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
    async def proxy(request: Request) -> Response:
        try:
            cache_key = parse_cache_key(raw_request_path(request))
        except InvalidRequest as exc:
            return plain_response(exc.status_code, exc.message)
        state = get_state(request)
        return await state.handler.handle(request.method, cache_key, request.stream())

    return app
