from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Callable, Optional

import anyio
import httpx

from .config import ProxyConfig
from .errors import (
    UpstreamStatusError,
    err_missing_api_key,
    err_upstream_unreachable,
)
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator, MetricSample
from .models import ChatRequest, Provider
from .providers import UpstreamTarget, build_target

logger = logging.getLogger(__name__)

# Upstream error bodies are logged, but only this much of them.
_LOG_BODY_LIMIT = 400


class RelayStream:
    """Successful upstream response exposed as an async byte iterator.

    Chunks are yielded exactly as httpx hands them over. The upstream response
    is closed when iteration ends, fails, or :meth:`aclose` is called (the app
    calls it after the downstream response finishes, including on client
    disconnect).
    """

    def __init__(
        self,
        response: httpx.Response,
        provider: Provider,
        model: str,
        started_at: float,
        on_close: Callable[["RelayStream"], None],
    ):
        self.response = response
        self.provider = provider
        self.model = model
        self.started_at = started_at
        self.first_chunk_at: Optional[float] = None
        self.bytes_out = 0
        self.completed = False
        self.error: Optional[BaseException] = None
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes():
                if not chunk:
                    continue
                if self.first_chunk_at is None:
                    self.first_chunk_at = time.time()
                self.bytes_out += len(chunk)
                yield chunk
            self.completed = True
        except httpx.HTTPError as exc:
            # Headers are already out; the caller only sees the stream end.
            self.error = exc
            logger.warning(
                "Upstream %s stream broke after %d bytes: %s",
                self.provider.value,
                self.bytes_out,
                exc,
            )
            raise
        finally:
            with anyio.CancelScope(shield=True):
                await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.response.aclose()
        finally:
            self._on_close(self)

    @property
    def outcome(self) -> str:
        if self.completed:
            return "streamed"
        if self.error is not None:
            return "failed"
        return "aborted"


class ChatForwarder:
    def __init__(
        self,
        cfg: ProxyConfig,
        metrics: MetricsAggregator,
        logger: JsonlLogger,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cfg = cfg
        self.metrics = metrics
        self.logger = logger
        timeout = httpx.Timeout(cfg.read_timeout_s, connect=cfg.connect_timeout_s)
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    def resolve_api_key(self, header_value: str | None) -> str:
        key = (header_value or "").strip() or (self.cfg.api_key or "").strip()
        if not key:
            raise err_missing_api_key()
        return key

    async def handle_chat(
        self, payload: dict[str, Any], header_key: str | None
    ) -> RelayStream:
        """Validate, dispatch upstream and return the open relay.

        Raises :class:`ProxyError` for local failures and
        :class:`UpstreamStatusError` when upstream answers non-2xx.
        """
        api_key = self.resolve_api_key(header_key)
        request = ChatRequest.model_validate(payload)
        provider, target = build_target(request, api_key, self.cfg)
        model = str(request.model)
        started_at = time.time()
        try:
            response = await self._send(target)
        except UpstreamStatusError as exc:
            logger.warning(
                "Upstream API error from %s: %s %s",
                provider.value,
                exc.status_code,
                exc.body[:_LOG_BODY_LIMIT].decode("utf-8", errors="replace"),
            )
            self.record(provider, model, exc.status_code, "upstream_error", started_at)
            raise
        except httpx.TransportError as exc:
            logger.error(
                "Upstream %s unreachable at %s: %s",
                provider.value,
                target.redacted_url(),
                exc,
            )
            self.record(provider, model, 502, "unreachable", started_at)
            raise err_upstream_unreachable() from exc
        return RelayStream(response, provider, model, started_at, self._finish_relay)

    async def _send(self, target: UpstreamTarget) -> httpx.Response:
        request = self.client.build_request(
            target.method, target.url, headers=target.headers, content=target.body
        )
        response = await self.client.send(request, stream=True)
        if response.is_success:
            return response
        try:
            body = await response.aread()
        finally:
            await response.aclose()
        raise UpstreamStatusError(
            response.status_code, body, response.headers.get("content-type")
        )

    def _finish_relay(self, relay: RelayStream) -> None:
        self.record(
            relay.provider,
            relay.model,
            relay.response.status_code,
            relay.outcome,
            relay.started_at,
            first_chunk_at=relay.first_chunk_at,
            bytes_out=relay.bytes_out,
        )

    def record(
        self,
        provider: Provider,
        model: str,
        status_code: int,
        outcome: str,
        started_at: float,
        first_chunk_at: float | None = None,
        bytes_out: int = 0,
    ) -> None:
        now = time.time()
        ttfb_ms = (first_chunk_at - started_at) * 1000 if first_chunk_at else None
        duration_ms = (now - started_at) * 1000
        self.metrics.add(
            MetricSample(
                ts=now,
                provider=provider.value,
                model=model,
                status_code=status_code,
                outcome=outcome,
                ttfb_ms=ttfb_ms,
                bytes_out=bytes_out,
                duration_ms=duration_ms,
            )
        )
        self.logger.log(
            {
                "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(now)),
                "provider": provider.value,
                "model": model,
                "status": status_code,
                "outcome": outcome,
                "bytes_out": bytes_out,
                "duration_ms": round(duration_ms, 1),
            }
        )
