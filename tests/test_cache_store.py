from __future__ import annotations

from pathlib import Path

import pytest

from catproxy.cache_proxy.store import FileCacheStore
from catproxy.common.errors import CacheDeleteError, CacheEntryNotFound, CacheReadError, CacheWriteError


@pytest.mark.anyio
async def test_write_then_read_returns_same_bytes(cache_root: Path) -> None:
    store = FileCacheStore(cache_root)

    await store.write("200", b"\x00\x01payload")

    assert await store.read("200") == b"\x00\x01payload"
    assert (cache_root / "200.jpg").read_bytes() == b"\x00\x01payload"


@pytest.mark.anyio
async def test_write_replaces_existing_entry(cache_root: Path) -> None:
    store = FileCacheStore(cache_root)
    await store.write("418", b"first")
    await store.write("418", b"second")

    assert await store.read("418") == b"second"
    # no temporary files left behind
    assert sorted(p.name for p in cache_root.iterdir()) == ["418.jpg"]


@pytest.mark.anyio
async def test_read_missing_entry_raises_not_found(cache_root: Path) -> None:
    store = FileCacheStore(cache_root)
    with pytest.raises(CacheEntryNotFound) as exc:
        await store.read("404")
    assert exc.value.cache_key == "404"


@pytest.mark.anyio
async def test_read_fault_is_distinct_from_missing(cache_root: Path) -> None:
    (cache_root / "500.jpg").mkdir()
    store = FileCacheStore(cache_root)

    with pytest.raises(CacheReadError):
        await store.read("500")


@pytest.mark.anyio
async def test_write_fault_raises_write_error(cache_root: Path) -> None:
    (cache_root / "503.jpg").mkdir()
    store = FileCacheStore(cache_root)

    with pytest.raises(CacheWriteError):
        await store.write("503", b"data")
    assert [p.name for p in cache_root.iterdir()] == ["503.jpg"]


@pytest.mark.anyio
async def test_write_into_missing_root_raises_write_error(tmp_path: Path) -> None:
    store = FileCacheStore(tmp_path / "absent")
    with pytest.raises(CacheWriteError):
        await store.write("200", b"data")


@pytest.mark.anyio
async def test_delete_removes_entry(cache_root: Path) -> None:
    store = FileCacheStore(cache_root)
    await store.write("201", b"created")

    await store.delete("201")

    assert not (cache_root / "201.jpg").exists()
    with pytest.raises(CacheEntryNotFound):
        await store.delete("201")


@pytest.mark.anyio
async def test_delete_fault_raises_delete_error(cache_root: Path) -> None:
    (cache_root / "502.jpg").mkdir()
    store = FileCacheStore(cache_root)

    with pytest.raises(CacheDeleteError):
        await store.delete("502")


def test_path_for_rejects_unvalidated_keys(cache_root: Path) -> None:
    store = FileCacheStore(cache_root)
    assert store.path_for("200") == cache_root / "200.jpg"
    with pytest.raises(ValueError):
        store.path_for("../200")
