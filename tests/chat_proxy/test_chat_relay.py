import json
import logging

import httpx
import pytest

from chatgate.chat_proxy import forwarder as forwarder_module

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _chat(client, body, key="sk-test"):
    headers = {"x-api-key": key} if key else {}
    return client.post("/api/chat", json=body, headers=headers)


@pytest.mark.parametrize(
    "body",
    [
        {"provider": "anthropic", "model": "claude", "messages": []},
        {"model": "gpt-4o", "messages": []},
        {"provider": 7, "model": "gpt-4o"},
        {"provider": "OpenAI", "model": "gpt-4o"},
    ],
)
def test_unsupported_provider_rejected_without_upstream_call(make_client, upstream, body):
    client = make_client()
    r = _chat(client, body)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid provider"}
    assert upstream.requests == []


def test_missing_api_key_rejected_without_upstream_call(make_client, upstream):
    client = make_client(api_key=None)
    r = _chat(client, {"provider": "openai", "model": "gpt-4o"}, key=None)
    assert r.status_code == 401
    assert r.json() == {"error": "Missing API Key"}
    assert upstream.requests == []


def test_missing_key_checked_before_provider(make_client, upstream):
    client = make_client()
    r = _chat(client, {"provider": "nope"}, key=None)
    assert r.status_code == 401


def test_header_key_beats_configured_fallback(make_client, upstream):
    client = make_client(api_key="sk-fallback")
    r = _chat(client, {"provider": "openai", "model": "gpt-4o"}, key="sk-header")
    assert r.status_code == 200
    assert upstream.requests[0].headers["authorization"] == "Bearer sk-header"


def test_fallback_key_used_without_header(make_client, upstream):
    client = make_client(api_key="sk-fallback")
    r = _chat(client, {"provider": "openai", "model": "gpt-4o"}, key=None)
    assert r.status_code == 200
    assert upstream.requests[0].headers["authorization"] == "Bearer sk-fallback"


def test_openai_request_shape_and_stream_headers(make_client, upstream):
    client = make_client()
    messages = [{"role": "user", "content": "hi"}]
    r = _chat(client, {"provider": "openai", "model": "gpt-4o", "messages": messages})

    assert r.status_code == 200
    assert r.headers["content-type"] == "text/event-stream"
    assert r.headers["cache-control"] == "no-cache"

    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == OPENAI_URL
    assert json.loads(sent.content) == {
        "model": "gpt-4o",
        "messages": messages,
        "stream": True,
    }


def test_openai_passthrough_fields_forwarded(make_client, upstream):
    client = make_client()
    r = _chat(
        client,
        {
            "provider": "openai",
            "model": "gpt-4o",
            "messages": [],
            "temperature": 0.2,
            "response_format": {"type": "text"},
        },
    )
    assert r.status_code == 200
    body = json.loads(upstream.requests[0].content)
    assert list(body) == ["model", "messages", "stream", "temperature", "response_format"]
    assert "provider" not in body


def test_google_request_shape(make_client, upstream):
    client = make_client()
    contents = [{"parts": [{"text": "hi"}]}]
    r = _chat(
        client,
        {"provider": "google", "model": "gemini-pro", "contents": contents},
        key="g-key",
    )
    assert r.status_code == 200

    sent = upstream.requests[0]
    assert "models/gemini-pro:streamGenerateContent" in sent.url.path
    assert sent.url.params["alt"] == "sse"
    assert sent.url.params["key"] == "g-key"
    assert "authorization" not in sent.headers
    assert json.loads(sent.content) == {"contents": contents}


def test_success_relays_bytes_in_order_unchanged(make_client, upstream):
    chunks = [
        b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n',
        b'data: {"choices":[{"delta":{"content":"lo"}}]}',
        b"\n\ndata: [DONE]\n\n",
    ]

    async def body():
        for chunk in chunks:
            yield chunk

    upstream.handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=body()
    )
    client = make_client()
    r = _chat(client, {"provider": "openai", "model": "gpt-4o", "messages": []})
    assert r.status_code == 200
    assert r.content == b"".join(chunks)


def test_upstream_error_status_and_body_relayed_verbatim(make_client, upstream):
    upstream.handler = lambda request: httpx.Response(
        429,
        headers={"content-type": "application/json"},
        content=b'{"error":"rate limited"}',
    )
    client = make_client()
    r = _chat(client, {"provider": "openai", "model": "gpt-4o", "messages": []})
    assert r.status_code == 429
    assert r.content == b'{"error":"rate limited"}'


def test_upstream_plain_text_error_not_rewrapped(make_client, upstream):
    upstream.handler = lambda request: httpx.Response(
        404, content=b"model gemini-nope not found"
    )
    client = make_client()
    r = _chat(client, {"provider": "google", "model": "gemini-nope", "contents": []})
    assert r.status_code == 404
    assert r.content == b"model gemini-nope not found"


def test_transport_failure_reported_without_retry(make_client, upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.handler = refuse
    client = make_client()
    r = _chat(client, {"provider": "openai", "model": "gpt-4o", "messages": []})
    assert r.status_code == 502
    assert r.json() == {"error": "Upstream API unreachable"}
    assert len(upstream.requests) == 1


def test_unexpected_failure_before_streaming_is_internal_error(
    make_client, upstream, monkeypatch
):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(forwarder_module, "build_target", explode)
    client = make_client()
    r = _chat(client, {"provider": "openai", "model": "gpt-4o", "messages": []})
    assert r.status_code == 500
    assert r.json() == {"error": "Internal Server Error"}
    assert upstream.requests == []


def test_invalid_json_body(make_client, upstream):
    client = make_client()
    r = client.post(
        "/api/chat",
        content=b"{not json",
        headers={"x-api-key": "k", "content-type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid JSON body")
    assert upstream.requests == []


def test_missing_model_rejected(make_client, upstream):
    client = make_client()
    r = _chat(client, {"provider": "openai", "model": "", "messages": []})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing model"}
    assert upstream.requests == []


def test_oversized_body_rejected(make_client, upstream):
    client = make_client(max_body_bytes=64)
    r = _chat(
        client, {"provider": "openai", "model": "gpt-4o", "messages": ["x" * 200]}
    )
    assert r.status_code == 413
    assert upstream.requests == []


def test_request_log_omits_api_key(make_client, upstream, proxy_cfg):
    client = make_client()
    r = _chat(
        client,
        {"provider": "google", "model": "gemini-pro", "contents": []},
        key="sk-very-secret",
    )
    assert r.status_code == 200

    with open(proxy_cfg.log_path, encoding="utf-8") as fh:
        lines = [json.loads(line) for line in fh if line.strip()]
    assert lines, "request log should have an entry"
    assert lines[-1]["provider"] == "google"
    assert lines[-1]["outcome"] == "streamed"
    with open(proxy_cfg.log_path, encoding="utf-8") as fh:
        assert "sk-very-secret" not in fh.read()


def test_local_errors_are_logged_with_their_type(make_client, caplog):
    client = make_client()
    with caplog.at_level(logging.INFO, logger="chatgate.chat_proxy.app"):
        r = client.post("/api/chat", json={"provider": "openai", "model": "m"})
    assert r.status_code == 401
    assert "POST /api/chat -> 401 missing_api_key" in caplog.text
