"""Path validation for incoming cache requests."""

from __future__ import annotations

import re

from ..common.errors import InvalidRequest


CACHE_KEY_PATTERN = re.compile(r"[0-9]{3}")

BAD_PATH_MESSAGE = "Bad request. Expected path like /200"
BAD_CODE_MESSAGE = "Bad request. Expected three-digit HTTP status code in path, e.g. /200"


def is_cache_key(value: str) -> bool:
    return CACHE_KEY_PATTERN.fullmatch(value) is not None


def parse_cache_key(path: str) -> str:
    """Return the cache key addressed by ``path`` or raise :class:`InvalidRequest`.

    ``path`` is the raw request path, still percent-encoded and without the query string.
    Empty segments are dropped, so ``/200``, ``/200/`` and ``//200`` all address ``200``.
    Encoded characters are never decoded, so ``/200%2F`` and ``/200%3Fx`` are rejected.
    """

    segments = [segment for segment in path.split("/") if segment]
    if len(segments) != 1:
        raise InvalidRequest(BAD_PATH_MESSAGE)
    cache_key = segments[0]
    if not is_cache_key(cache_key):
        raise InvalidRequest(BAD_CODE_MESSAGE)
    return cache_key
