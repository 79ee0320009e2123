from __future__ import annotations

from fastapi import HTTPException


class ProxyError(HTTPException):
    """Locally generated failure rendered as ``{"error": message}``."""

    def __init__(
        self,
        status_code: int,
        err_type: str,
        message: str,
        headers: dict[str, str] | None = None,
    ):
        self.err_type = err_type
        super().__init__(
            status_code=status_code, detail={"error": message}, headers=headers
        )


class UpstreamStatusError(Exception):
    """Upstream answered with a non-success status; relayed verbatim."""

    def __init__(self, status_code: int, body: bytes, content_type: str | None):
        self.status_code = status_code
        self.body = body
        self.content_type = content_type
        super().__init__(f"upstream returned HTTP {status_code}")


def err_missing_api_key() -> ProxyError:
    return ProxyError(401, "missing_api_key", "Missing API Key")


def err_invalid_provider() -> ProxyError:
    return ProxyError(400, "invalid_provider", "Invalid provider")


def err_missing_model() -> ProxyError:
    return ProxyError(400, "missing_model", "Missing model")


def err_invalid_json(reason: str) -> ProxyError:
    return ProxyError(400, "invalid_json", f"Invalid JSON body: {reason}")


def err_payload_too_large(limit: int) -> ProxyError:
    return ProxyError(
        413, "payload_too_large", f"Request body exceeds limit {limit} bytes"
    )


def err_rate_limited(message: str, headers: dict[str, str]) -> ProxyError:
    return ProxyError(429, "rate_limited", message, headers=headers)


def err_upstream_unreachable() -> ProxyError:
    return ProxyError(502, "upstream_unreachable", "Upstream API unreachable")


def err_internal() -> ProxyError:
    return ProxyError(500, "internal_error", "Internal Server Error")


def err_not_found(path: str) -> ProxyError:
    return ProxyError(404, "not_found", f"Not found: {path}")


def err_stats_unavailable() -> ProxyError:
    return ProxyError(500, "stats_unavailable", "Failed to fetch system stats")


def err_invalid_tags_request() -> ProxyError:
    return ProxyError(
        400,
        "invalid_tags_request",
        "Invalid request. Expected { modelId, tags: [] }",
    )


def err_tags_write_failed() -> ProxyError:
    return ProxyError(500, "tags_write_failed", "Failed to save model tags")
