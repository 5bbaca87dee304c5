"""Client for the upstream image service."""

from __future__ import annotations

import httpx
import structlog
from opentelemetry import trace

from ..common.errors import UpstreamUnavailable


LOGGER = structlog.get_logger("catproxy.cache_proxy.upstream")
TRACER = trace.get_tracer("catproxy.cache_proxy.upstream")


class UpstreamFetcher:
    """Fetch the image for a status code, one attempt per call.

    Every failure mode surfaces as :class:`UpstreamUnavailable`; upstream status codes and
    error bodies are never passed on.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self._client = client
        self._base_url = base_url.rstrip("/")

    def url_for(self, cache_key: str) -> str:
        return f"{self._base_url}/{cache_key}"

    async def fetch(self, cache_key: str) -> bytes:
        url = self.url_for(cache_key)
        with TRACER.start_as_current_span("upstream.fetch", attributes={"catproxy.cache_key": cache_key}) as span:
            try:
                response = await self._client.get(url, headers={"Accept": "image/*"})
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                span.set_attribute("http.status_code", exc.response.status_code)
                raise self._unavailable(cache_key, url, f"status {exc.response.status_code}") from exc
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise self._unavailable(cache_key, url, type(exc).__name__) from exc

            content_type = response.headers.get("content-type", "")
            if not content_type.lower().startswith("image/"):
                raise self._unavailable(cache_key, url, f"unexpected content type {content_type!r}")
            data = response.content
            if not data:
                raise self._unavailable(cache_key, url, "empty body")

            span.set_attribute("catproxy.bytes", len(data))
            LOGGER.info("upstream_fetch", cache_key=cache_key, url=url, bytes=len(data))
            return data

    @staticmethod
    def _unavailable(cache_key: str, url: str, reason: str) -> UpstreamUnavailable:
        LOGGER.info("upstream_unavailable", cache_key=cache_key, url=url, reason=reason)
        return UpstreamUnavailable(cache_key, reason)
