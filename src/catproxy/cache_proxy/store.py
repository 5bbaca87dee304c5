"""Cache storage keyed by status code."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from uuid import uuid4

import structlog

from ..common.errors import (
    CacheDeleteError,
    CacheEntryNotFound,
    CacheReadError,
    CacheWriteError,
)
from .router import is_cache_key


LOGGER = structlog.get_logger("catproxy.cache_proxy.store")

ENTRY_SUFFIX = ".jpg"


class CacheStore:
    async def read(self, cache_key: str) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    async def write(self, cache_key: str, blob: bytes) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, cache_key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class FileCacheStore(CacheStore):
    """One file per key under ``root``, named ``<code>.jpg``."""

    def __init__(self, root: Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, cache_key: str) -> Path:
        if not is_cache_key(cache_key):
            raise ValueError(f"invalid cache key {cache_key!r}")
        return self._root / f"{cache_key}{ENTRY_SUFFIX}"

    async def read(self, cache_key: str) -> bytes:
        path = self.path_for(cache_key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(cache_key) from exc
        except OSError as exc:
            raise CacheReadError(cache_key, str(exc)) from exc

    async def write(self, cache_key: str, blob: bytes) -> None:
        path = self.path_for(cache_key)
        try:
            await asyncio.to_thread(_replace_file, path, blob)
        except OSError as exc:
            raise CacheWriteError(cache_key, str(exc)) from exc
        LOGGER.debug("cache_entry_stored", cache_key=cache_key, path=str(path), bytes=len(blob))

    async def delete(self, cache_key: str) -> None:
        path = self.path_for(cache_key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(cache_key) from exc
        except OSError as exc:
            raise CacheDeleteError(cache_key, str(exc)) from exc


def _replace_file(path: Path, blob: bytes) -> None:
    # Readers see the previous entry or the new one, never a partial write.
    temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
    try:
        with temp_path.open("wb") as file_obj:
            file_obj.write(blob)
        os.replace(temp_path, path)
    except OSError:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise
