import os
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from chatgate.chat_proxy.app import create_app  # noqa: E402
from chatgate.chat_proxy.config import ProxyConfig  # noqa: E402


class UpstreamRecorder:
    """MockTransport handler that records every upstream request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.handler = lambda request: httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=b"data: {}\n\n",
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def clear_gateway_env(monkeypatch):
    for key in list(os.environ.keys()):
        if key.startswith("CHAT_PROXY_") or key in {"API_KEY", "PORT"}:
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def proxy_cfg(tmp_path):
    return ProxyConfig(
        log_path=str(tmp_path / "logs" / "chat_proxy.jsonl"),
        model_tags_path=str(tmp_path / "data" / "modelTags.json"),
    )


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def make_client(proxy_cfg, upstream):
    """Build a TestClient; keyword arguments override config fields."""

    def _make(**overrides) -> TestClient:
        for key, value in overrides.items():
            setattr(proxy_cfg, key, value)
        return TestClient(create_app(proxy_cfg, transport=upstream.transport))

    return _make
