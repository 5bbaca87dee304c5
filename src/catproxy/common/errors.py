"""Exception types shared across the proxy."""

from __future__ import annotations


class CatProxyError(Exception):
    """Base class for proxy errors."""


class InvalidRequest(CatProxyError):
    """A request rejected before any cache or network I/O.

    ``message`` is sent to the client verbatim.
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CacheError(CatProxyError):
    def __init__(self, cache_key: str, reason: str = "") -> None:
        super().__init__(f"{cache_key}: {reason}" if reason else cache_key)
        self.cache_key = cache_key
        self.reason = reason


class CacheEntryNotFound(CacheError):
    pass


class CacheReadError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


class CacheDeleteError(CacheError):
    pass


class UpstreamUnavailable(CatProxyError):
    """The image service could not supply content for a key, for whatever reason."""

    def __init__(self, cache_key: str, reason: str) -> None:
        super().__init__(f"{cache_key}: {reason}")
        self.cache_key = cache_key
        self.reason = reason
