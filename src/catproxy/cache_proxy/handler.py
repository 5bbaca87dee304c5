"""Cache-aside request handling: read-through GET, PUT and DELETE."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import Response, status
from fastapi.responses import PlainTextResponse
from opentelemetry import trace

from ..common.errors import (
    CacheEntryNotFound,
    CacheError,
    InvalidRequest,
    UpstreamUnavailable,
)
from .store import CacheStore
from .upstream import UpstreamFetcher


LOGGER = structlog.get_logger("catproxy.cache_proxy")
TRACER = trace.get_tracer("catproxy.cache_proxy")

IMAGE_MEDIA_TYPE = "image/jpeg"
ALLOWED_METHODS = ("GET", "PUT", "DELETE")

NOT_FOUND = "Not Found"
CREATED = "Created"
DELETED = "Deleted"
EMPTY_BODY = "Bad Request: empty body"
PAYLOAD_TOO_LARGE = "Payload Too Large"
METHOD_NOT_ALLOWED = "Method Not Allowed"
INTERNAL_ERROR = "Internal Server Error"


def plain_response(status_code: int, message: str, headers: Optional[dict[str, str]] = None) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code, headers=headers)


def image_response(data: bytes) -> Response:
    # Content-Length is derived from the body.
    return Response(content=data, status_code=status.HTTP_200_OK, media_type=IMAGE_MEDIA_TYPE)


async def read_body(stream: AsyncIterator[bytes], limit: int) -> bytes:
    """Buffer a request body, refusing anything over ``limit`` bytes."""

    buffer = bytearray()
    async for chunk in stream:
        buffer.extend(chunk)
        if len(buffer) > limit:
            raise InvalidRequest(PAYLOAD_TOO_LARGE, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
    return bytes(buffer)


class KeyedLocks:
    """Per-key asyncio locks, discarded once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                self._locks.pop(key, None)


class CacheAsideHandler:
    """Drives one request for a validated cache key through the store and upstream."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: UpstreamFetcher,
        max_body_bytes: int,
        single_flight: bool = False,
    ):
        self._store = store
        self._fetcher = fetcher
        self._max_body_bytes = max_body_bytes
        self._locks = KeyedLocks() if single_flight else None

    @property
    def locks(self) -> Optional[KeyedLocks]:
        """Per-key read-through locks, or ``None`` when single-flight is off."""
        return self._locks

    async def handle(
        self,
        method: str,
        cache_key: str,
        body: Optional[AsyncIterator[bytes]] = None,
    ) -> Response:
        method = method.upper()
        try:
            if method == "GET":
                return await self.get(cache_key)
            if method == "PUT":
                return await self.put(cache_key, body)
            if method == "DELETE":
                return await self.delete(cache_key)
            return plain_response(
                status.HTTP_405_METHOD_NOT_ALLOWED,
                METHOD_NOT_ALLOWED,
                headers={"Allow": ", ".join(ALLOWED_METHODS)},
            )
        except InvalidRequest as exc:
            return plain_response(exc.status_code, exc.message)
        except Exception:  # noqa: BLE001
            LOGGER.exception("unhandled_error", method=method, cache_key=cache_key)
            return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)

    async def get(self, cache_key: str) -> Response:
        with TRACER.start_as_current_span("cache_proxy.get", attributes={"catproxy.cache_key": cache_key}) as span:
            try:
                data = await self._store.read(cache_key)
            except CacheEntryNotFound:
                span.set_attribute("catproxy.cache_hit", False)
                LOGGER.info("cache_miss", cache_key=cache_key)
                return await self._read_through(cache_key)
            except CacheError as exc:
                LOGGER.error("cache_read_failed", cache_key=cache_key, reason=exc.reason)
                return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)
            span.set_attribute("catproxy.cache_hit", True)
            span.set_attribute("catproxy.bytes", len(data))
            LOGGER.info("cache_hit", cache_key=cache_key, bytes=len(data))
            return image_response(data)

    async def _read_through(self, cache_key: str) -> Response:
        if self._locks is None:
            return await self._fetch_and_populate(cache_key)

        async with self._locks.hold(cache_key):
            # Another request may have populated the entry while we waited.
            try:
                data = await self._store.read(cache_key)
            except CacheEntryNotFound:
                return await self._fetch_and_populate(cache_key)
            except CacheError as exc:
                LOGGER.error("cache_read_failed", cache_key=cache_key, reason=exc.reason)
                return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)
            LOGGER.info("cache_hit", cache_key=cache_key, bytes=len(data), after_wait=True)
            return image_response(data)

    async def _fetch_and_populate(self, cache_key: str) -> Response:
        try:
            data = await self._fetcher.fetch(cache_key)
        except UpstreamUnavailable:
            return plain_response(status.HTTP_404_NOT_FOUND, NOT_FOUND)

        try:
            await self._store.write(cache_key, data)
        except CacheError as exc:
            LOGGER.warning("cache_populate_failed", cache_key=cache_key, reason=exc.reason)
        else:
            LOGGER.info("cache_write", cache_key=cache_key, bytes=len(data), source="upstream")
        return image_response(data)

    async def put(self, cache_key: str, body: Optional[AsyncIterator[bytes]]) -> Response:
        with TRACER.start_as_current_span("cache_proxy.put", attributes={"catproxy.cache_key": cache_key}) as span:
            data = await read_body(body, self._max_body_bytes) if body is not None else b""
            if not data:
                return plain_response(status.HTTP_400_BAD_REQUEST, EMPTY_BODY)
            try:
                await self._store.write(cache_key, data)
            except CacheError as exc:
                LOGGER.error("cache_write_failed", cache_key=cache_key, reason=exc.reason)
                return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)
            span.set_attribute("catproxy.bytes_written", len(data))
            LOGGER.info("cache_write", cache_key=cache_key, bytes=len(data), source="client")
            return plain_response(status.HTTP_201_CREATED, CREATED)

    async def delete(self, cache_key: str) -> Response:
        with TRACER.start_as_current_span("cache_proxy.delete", attributes={"catproxy.cache_key": cache_key}):
            try:
                await self._store.delete(cache_key)
            except CacheEntryNotFound:
                return plain_response(status.HTTP_404_NOT_FOUND, NOT_FOUND)
            except CacheError as exc:
                LOGGER.error("cache_delete_failed", cache_key=cache_key, reason=exc.reason)
                return plain_response(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)
            LOGGER.info("cache_delete", cache_key=cache_key)
            return plain_response(status.HTTP_200_OK, DELETED)
