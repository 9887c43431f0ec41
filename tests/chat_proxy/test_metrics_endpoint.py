from assistant2api.chat_proxy import app as app_module
from assistant2api.chat_proxy.metrics import MetricsAggregator


def test_metrics_disabled_by_default(proxy_client, monkeypatch):
    monkeypatch.setattr(app_module._cfg, "enable_metrics", False)

    r = proxy_client.get("/v1/metrics")

    assert r.status_code == 404
    assert r.json()["error"]["code"] == "disabled"


def test_metrics_after_requests(proxy_client, fake_upstream, monkeypatch):
    monkeypatch.setattr(app_module._cfg, "enable_metrics", True)
    monkeypatch.setattr(app_module, "_metrics", MetricsAggregator())

    # make a few non-stream requests
    for _ in range(3):
        r = proxy_client.post(
            "/v1/chat/completions",
            json={"model": "essay-writer", "messages": [{"role": "user", "content": "Hi"}]},
        )
        assert r.status_code == 200
    streamed = proxy_client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hi"}], "stream": True},
    )
    assert streamed.text.endswith("data: [DONE]\n\n")

    m = proxy_client.get("/v1/metrics")
    assert m.status_code == 200
    body = m.json()
    assert body["rolling"]["count"] == 4
    assert body["requests"] == {"total_requests": 4, "streaming_requests": 1}
    assert body["outcomes"] == {"completed": 4}
    assert isinstance(body["rolling"]["avg_upstream_ms"], (int, float))
    assert body["rolling"]["avg_upstream_ms"] >= 0


def test_metrics_summary_without_samples():
    summary = MetricsAggregator().summary()

    assert summary["rolling"] == {"count": 0}
    assert summary["requests"]["total_requests"] == 0


def test_health(proxy_client):
    r = proxy_client.get("/v1/health")

    assert r.status_code == 200
    assert r.json()["status"] == "ok"
