import importlib
import os

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def proxy_app(monkeypatch, tmp_path):
    config_path = tmp_path / "proxy.toml"
    monkeypatch.setenv("CHAT_PROXY_CONFIG_FILE", str(config_path))
    for key in list(os.environ.keys()):
        if key.startswith("CHAT_PROXY_") and key != "CHAT_PROXY_CONFIG_FILE":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("API_MASTER_KEY", raising=False)
    monkeypatch.setenv("CHAT_PROXY_LOG_PATH", str(tmp_path / "logs" / "proxy.jsonl"))

    import assistant2api.chat_proxy.config_loader as loader_module
    import assistant2api.chat_proxy.app as app_module

    loader_module.update_config_file({"api_master_key": "sk-config"})
    importlib.reload(app_module)

    client = TestClient(app_module.app)
    return loader_module, client, config_path


AUTH = {"Authorization": "Bearer sk-config"}


def test_read_proxy_config_endpoint(proxy_app):
    loader_module, client, config_path = proxy_app

    response = client.get("/v1/config/chat-proxy", headers=AUTH)
    assert response.status_code == 200

    payload = response.json()
    assert payload["config_file_path"] == str(config_path)
    assert payload["runtime"]["api_master_key"] == "sk*****ig"
    assert payload["file"]["api_master_key"] == "sk*****ig"
    assert payload["runtime"]["stream_chunk_size"] == 5
    assert payload["precedence"][0].startswith("Environment")


def test_config_endpoint_requires_key(proxy_app):
    _, client, _ = proxy_app

    assert client.get("/v1/config/chat-proxy").status_code == 401


def test_update_proxy_config_endpoint(proxy_app):
    loader_module, client, _ = proxy_app

    response = client.put(
        "/v1/config/chat-proxy",
        json={"port": 8123, "stream_delay_ms": 35},
        headers=AUTH,
    )
    assert response.status_code == 200, response.text

    payload = response.json()
    assert payload["status"] == "written"
    assert payload["requires_restart"] is True
    assert payload["file"]["port"] == 8123
    assert payload["file"]["stream_delay_ms"] == 35

    file_cfg = loader_module.load_file_config()
    assert file_cfg["port"] == 8123
    assert file_cfg["stream_delay_ms"] == 35


def test_update_proxy_config_rejects_bad_payloads(proxy_app):
    _, client, _ = proxy_app

    unknown = client.put("/v1/config/chat-proxy", json={"gpu": 1}, headers=AUTH)
    assert unknown.status_code == 400
    assert unknown.json()["error"]["code"] == "invalid_request"

    empty = client.put("/v1/config/chat-proxy", json={}, headers=AUTH)
    assert empty.status_code == 400

    bad_chunk = client.put(
        "/v1/config/chat-proxy", json={"stream_chunk_size": 0}, headers=AUTH
    )
    assert bad_chunk.status_code == 400
    assert "stream_chunk_size" in bad_chunk.json()["error"]["message"]
