import json

from chatgate.chat_proxy import app as app_module
from chatgate.chat_proxy.model_tags import ModelTagStore


def test_status_reports_cpu_and_memory(make_client):
    client = make_client()
    r = client.get("/api/status")
    assert r.status_code == 200
    body = r.json()
    assert isinstance(body["cpu"]["cores"], list)
    assert isinstance(body["cpu"]["avg"], (int, float))
    memory = body["memory"]
    assert memory["total"] > 0
    assert 0 <= memory["used"] <= memory["total"]
    assert 0 <= memory["percentage"] <= 100


def test_status_failure_returns_500(make_client, monkeypatch):
    def broken():
        raise RuntimeError("psutil unavailable")

    monkeypatch.setattr(app_module, "collect_system_stats", broken)
    client = make_client()
    r = client.get("/api/status")
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch system stats"}


def test_model_tags_roundtrip_and_delete(make_client, proxy_cfg):
    client = make_client()
    assert client.get("/api/model-tags").json() == {}

    r = client.put("/api/model-tags", json={"modelId": "gpt-4o", "tags": ["fast", "vision"]})
    assert r.status_code == 200
    assert r.json() == {"success": True, "modelId": "gpt-4o", "tags": ["fast", "vision"]}
    client.put("/api/model-tags", json={"modelId": "gemini-pro", "tags": ["cheap"]})

    assert client.get("/api/model-tags").json() == {
        "gpt-4o": ["fast", "vision"],
        "gemini-pro": ["cheap"],
    }
    with open(proxy_cfg.model_tags_path, encoding="utf-8") as fh:
        assert json.load(fh)["gemini-pro"] == ["cheap"]

    r = client.put("/api/model-tags", json={"modelId": "gpt-4o", "tags": []})
    assert r.status_code == 200
    assert client.get("/api/model-tags").json() == {"gemini-pro": ["cheap"]}


def test_model_tags_rejects_malformed_update(make_client):
    client = make_client()
    expected = {"error": "Invalid request. Expected { modelId, tags: [] }"}
    for body in ({"tags": []}, {"modelId": "m", "tags": "fast"}, {"modelId": "", "tags": []}):
        r = client.put("/api/model-tags", json=body)
        assert r.status_code == 400
        assert r.json() == expected

    r = client.put(
        "/api/model-tags", content=b"[", headers={"content-type": "application/json"}
    )
    assert r.status_code == 400


def test_model_tags_write_failure(make_client, monkeypatch):
    def fail(self, tags):
        raise OSError("read-only file system")

    monkeypatch.setattr(ModelTagStore, "_write", fail)
    client = make_client()
    r = client.put("/api/model-tags", json={"modelId": "m", "tags": ["x"]})
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to save model tags"}


def test_unreadable_tag_file_reads_as_empty(tmp_path):
    path = tmp_path / "modelTags.json"
    path.write_text("{broken", encoding="utf-8")
    assert ModelTagStore(path).read() == {}


def test_model_tags_oversize_body_keeps_413(make_client):
    client = make_client(max_body_bytes=64)
    r = client.put("/api/model-tags", json={"modelId": "m", "tags": ["x" * 100]})
    assert r.status_code == 413
    assert r.json()["error"].startswith("Request body exceeds limit")
