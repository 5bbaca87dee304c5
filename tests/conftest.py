from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from catproxy.cache_proxy.app import create_app
from catproxy.common.settings import ProxySettings
from tests.utils.upstream import UPSTREAM_URL, FakeUpstream


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    root = tmp_path / "cache"
    root.mkdir()
    return root


@pytest.fixture
def make_settings(cache_root: Path) -> Callable[..., ProxySettings]:
    def _make(**overrides) -> ProxySettings:
        values = {
            "host": "127.0.0.1",
            "port": 8080,
            "cache_root": cache_root,
            "upstream_base_url": UPSTREAM_URL,
        }
        values.update(overrides)
        return ProxySettings(**values)

    return _make


@pytest.fixture
def client(make_settings, upstream: FakeUpstream) -> TestClient:
    app = create_app(make_settings(), upstream_transport=upstream.transport())
    with TestClient(app) as test_client:
        yield test_client
