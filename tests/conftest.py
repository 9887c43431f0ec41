import json
import os
import tempfile
from pathlib import Path

import httpx
import pytest

# The app module loads its config at import time; keep it away from the repo.
_RUNTIME_DIR = Path(tempfile.mkdtemp(prefix="chat_proxy_tests_"))
os.environ["CHAT_PROXY_CONFIG_FILE"] = str(_RUNTIME_DIR / "chat_proxy.toml")
os.environ["CHAT_PROXY_LOG_PATH"] = str(_RUNTIME_DIR / "chat_proxy.jsonl")
os.environ.pop("CHAT_PROXY_API_MASTER_KEY", None)
os.environ.pop("API_MASTER_KEY", None)


class FakeUpstream:
    """Stand-in for the upstream endpoint, patched over ``httpx.AsyncClient.post``."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.body = {"response": "Hello World"}
        self.raw = None
        self.error = None

    async def post(self, url, content=None, headers=None):
        self.calls.append(
            {"url": url, "payload": json.loads(content), "headers": dict(headers or {})}
        )
        if self.error is not None:
            raise self.error
        request = httpx.Request("POST", url)
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw, request=request)
        return httpx.Response(self.status_code, json=self.body, request=request)


@pytest.fixture
def fake_upstream(monkeypatch):
    fake = FakeUpstream()

    async def _post(self, url, content=None, headers=None, **kwargs):
        return await fake.post(url, content=content, headers=headers)

    monkeypatch.setattr(httpx.AsyncClient, "post", _post)
    return fake


@pytest.fixture
def proxy_client(monkeypatch, fake_upstream):
    from fastapi.testclient import TestClient
    from assistant2api.chat_proxy import app as app_module

    monkeypatch.setattr(app_module._cfg, "api_master_key", "1")
    monkeypatch.setattr(app_module._cfg, "stream_delay_ms", 0)
    monkeypatch.setattr(app_module._cfg, "stream_chunk_size", 5)
    return TestClient(app_module.app)


def _parse_sse(body: str) -> list:
    assert body.endswith("\n\n")
    events = []
    for block in body.split("\n\n")[:-1]:
        assert block.startswith("data: "), block
        data = block[len("data: ") :]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.fixture
def parse_sse():
    """Split an SSE body into decoded JSON chunks; ``[DONE]`` stays a string."""
    return _parse_sse
