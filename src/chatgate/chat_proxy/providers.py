"""Upstream request construction per vendor.

Each builder turns a validated :class:`ChatRequest` into an
:class:`UpstreamTarget`. Builders are pure: no I/O, no logging, so the exact
URL, headers and body bytes can be asserted in isolation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict
from urllib.parse import quote, urlencode

from .config import ProxyConfig
from .errors import err_invalid_provider, err_missing_model
from .models import ChatRequest, Provider


@dataclass(frozen=True)
class UpstreamTarget:
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def redacted_url(self) -> str:
        """URL safe for logs: the query string may carry the API key."""
        return self.url.split("?", 1)[0]


def _encode(body: Dict[str, Any]) -> bytes:
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _require_model(request: ChatRequest) -> str:
    model = request.model
    if not isinstance(model, str) or not model.strip():
        raise err_missing_model()
    return model


def build_openai_target(
    request: ChatRequest, api_key: str, cfg: ProxyConfig
) -> UpstreamTarget:
    model = _require_model(request)
    body: Dict[str, Any] = {"model": model}
    if request.messages is not None:
        body["messages"] = request.messages
    body["stream"] = True
    # Passthrough fields are merged last and win on conflicts.
    body.update(request.extra)
    return UpstreamTarget(
        url=cfg.openai_base_url.rstrip("/") + "/chat/completions",
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        body=_encode(body),
    )


def build_google_target(
    request: ChatRequest, api_key: str, cfg: ProxyConfig
) -> UpstreamTarget:
    model = _require_model(request)
    # Callers send Google-native fields (contents, generationConfig, ...) at the
    # top level; ``messages`` is not part of Google's schema and is dropped.
    query = urlencode({"key": api_key, "alt": "sse"})
    url = (
        f"{cfg.google_base_url.rstrip('/')}/models/"
        f"{quote(model, safe='.-_')}:streamGenerateContent?{query}"
    )
    return UpstreamTarget(
        url=url,
        headers={"Content-Type": "application/json"},
        body=_encode(request.extra),
    )


_BUILDERS: Dict[
    Provider, Callable[[ChatRequest, str, ProxyConfig], UpstreamTarget]
] = {
    Provider.OPENAI: build_openai_target,
    Provider.GOOGLE: build_google_target,
}


def build_target(
    request: ChatRequest, api_key: str, cfg: ProxyConfig
) -> tuple[Provider, UpstreamTarget]:
    provider = Provider.parse(request.provider)
    if provider is None:
        raise err_invalid_provider()
    return provider, _BUILDERS[provider](request, api_key, cfg)
