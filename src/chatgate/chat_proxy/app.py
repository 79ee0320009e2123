from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from .config import ProxyConfig
from .errors import (
    ProxyError,
    UpstreamStatusError,
    err_internal,
    err_invalid_json,
    err_invalid_tags_request,
    err_not_found,
    err_payload_too_large,
    err_stats_unavailable,
    err_tags_write_failed,
)
from .forwarder import ChatForwarder
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator
from .model_tags import ModelTagStore
from .models import ModelTagsUpdate
from .rate_limit import FixedWindowRateLimiter, rate_limited
from .system_stats import collect_system_stats

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    # Set explicitly so no charset parameter is appended.
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def _read_json_body(req: Request, max_bytes: int) -> dict:
    declared = req.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise err_payload_too_large(max_bytes)
    raw = await req.body()
    if len(raw) > max_bytes:
        raise err_payload_too_large(max_bytes)
    try:
        payload = json.loads(raw or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise err_invalid_json(str(exc)) from exc
    if not isinstance(payload, dict):
        raise err_invalid_json("expected a JSON object")
    return payload


def create_app(
    cfg: ProxyConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the gateway app around one config instance.

    ``transport`` replaces the network layer of the upstream client; tests pass
    an ``httpx.MockTransport``.
    """
    cfg = cfg or ProxyConfig.load()
    metrics = MetricsAggregator()
    request_log = JsonlLogger(cfg.log_path, cfg.max_log_bytes)
    forwarder = ChatForwarder(cfg, metrics, request_log, transport=transport)
    tag_store = ModelTagStore(cfg.model_tags_path)
    chat_limiter = FixedWindowRateLimiter(cfg.chat_rate_limit, cfg.rate_limit_window_s)
    status_limiter = FixedWindowRateLimiter(
        cfg.status_rate_limit, cfg.rate_limit_window_s
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await forwarder.aclose()

    app = FastAPI(title="chatgate", version="0.1", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(req: Request, exc: ProxyError):
        log = logger.warning if exc.status_code >= 500 else logger.info
        log("%s %s -> %s %s", req.method, req.url.path, exc.status_code, exc.err_type)
        return JSONResponse(
            status_code=exc.status_code, content=exc.detail, headers=exc.headers
        )

    chat_guard = rate_limited(
        chat_limiter, "chat", "Too many chat requests. Please wait a moment."
    )
    status_guard = rate_limited(status_limiter, "status", "Too many status requests.")

    @app.post("/api/chat", dependencies=[Depends(chat_guard)])
    async def chat(req: Request):
        payload = await _read_json_body(req, cfg.max_body_bytes)
        try:
            relay = await forwarder.handle_chat(payload, req.headers.get("x-api-key"))
        except ProxyError:
            raise
        except UpstreamStatusError as exc:
            media_type = exc.content_type or "text/plain; charset=utf-8"
            return Response(
                content=exc.body, status_code=exc.status_code, media_type=media_type
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Proxy error: %s", exc)
            raise err_internal() from exc
        return StreamingResponse(
            relay,
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
            background=BackgroundTask(relay.aclose),
        )

    @app.get("/api/status", dependencies=[Depends(status_guard)])
    async def system_status():
        try:
            return collect_system_stats()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error fetching stats: %s", exc)
            raise err_stats_unavailable() from exc

    @app.get("/api/model-tags")
    async def get_model_tags():
        return tag_store.read()

    @app.put("/api/model-tags")
    async def put_model_tags(req: Request):
        try:
            payload = await _read_json_body(req, cfg.max_body_bytes)
        except ProxyError as exc:
            if exc.status_code == 413:
                raise
            raise err_invalid_tags_request() from exc
        try:
            update = ModelTagsUpdate.model_validate(payload)
        except ValidationError as exc:
            raise err_invalid_tags_request() from exc
        try:
            tag_store.set_tags(update.model_id, update.tags)
        except OSError as exc:
            logger.exception("Error writing model tags: %s", exc)
            raise err_tags_write_failed() from exc
        return {"success": True, "modelId": update.model_id, "tags": update.tags}

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "uptime_seconds": metrics.uptime(),
        }

    @app.get("/api/metrics")
    async def metrics_api():
        if not cfg.enable_metrics:
            raise ProxyError(404, "disabled", "Metrics disabled")
        return metrics.summary()

    if cfg.static_dir:
        _mount_static(app, Path(cfg.static_dir).expanduser())

    return app


def _mount_static(app: FastAPI, root: Path) -> None:
    """Serve a built single-page app; unknown non-API paths get index.html."""
    root = root.resolve()
    index = root / "index.html"
    if not index.is_file():
        logger.warning("Static dir %s has no index.html; static serving disabled", root)
        return

    @app.get("/{full_path:path}", include_in_schema=False)
    async def spa(full_path: str):
        if full_path == "api" or full_path.startswith("api/"):
            raise err_not_found("/" + full_path)
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)
        return FileResponse(index)
