import httpx

from assistant2api.chat_proxy import app as app_module


def _chat(client, **overrides):
    payload = {
        "model": "email-writer",
        "messages": [{"role": "user", "content": "Hi"}],
        "stream": False,
    }
    payload.update(overrides)
    return client.post("/v1/chat/completions", json=payload)


def test_chat_basic(proxy_client, fake_upstream):
    fake_upstream.body = {"response": "Hello"}

    r = _chat(proxy_client)

    assert r.status_code == 200
    body = r.json()
    assert body["object"] == "chat.completion"
    assert body["model"] == "email-writer"
    assert body["id"].startswith("chatcmpl-")
    assert body["id"] == r.headers["x-request-id"]
    assert body["choices"][0]["message"] == {"role": "assistant", "content": "Hello"}
    assert body["usage"] == {"prompt_tokens": 2, "completion_tokens": 5, "total_tokens": 7}


def test_upstream_payload_and_headers(proxy_client, fake_upstream):
    _chat(
        proxy_client,
        messages=[
            {"role": "user", "content": "older"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "write me an email"},
        ],
    )

    call = fake_upstream.calls[0]
    assert call["url"] == app_module._cfg.upstream_url
    assert call["payload"]["text"] == "write me an email"
    assert call["payload"]["id"] == "email-writer"
    assert call["payload"]["tone"] == "professional"
    assert call["payload"]["chatId"]
    assert call["headers"]["Content-Type"] == "text/plain;charset=UTF-8"
    assert call["headers"]["Referer"].endswith("/iframe/email-writer?lang=en")
    assert call["headers"]["Origin"] == app_module._cfg.origin_url


def test_unknown_model_maps_to_default_tool(proxy_client, fake_upstream):
    r = _chat(proxy_client, model="gpt-4o")

    assert r.status_code == 200
    assert r.json()["model"] == "gpt-4o"
    assert fake_upstream.calls[0]["payload"]["id"] == "brainstorm-tool"


def test_missing_model_uses_default(proxy_client, fake_upstream):
    r = proxy_client.post(
        "/v1/chat/completions", json={"messages": [{"role": "user", "content": "Hi"}]}
    )

    assert r.status_code == 200
    assert r.json()["model"] == "brainstorm-tool"


def test_upstream_responses_list_and_fallback(proxy_client, fake_upstream):
    fake_upstream.body = {"responses": ["from list", "ignored"]}
    assert _chat(proxy_client).json()["choices"][0]["message"]["content"] == "from list"

    fake_upstream.body = {"something": "else"}
    content = _chat(proxy_client).json()["choices"][0]["message"]["content"]
    assert content == app_module._cfg.fallback_content


def test_empty_upstream_text_gives_empty_completion(proxy_client, fake_upstream):
    fake_upstream.body = {"response": "", "responses": [""]}

    body = _chat(proxy_client).json()

    assert body["choices"][0]["message"]["content"] == ""
    assert body["usage"]["completion_tokens"] == 0


def test_upstream_error_status_is_reported(proxy_client, fake_upstream):
    fake_upstream.status_code = 503
    fake_upstream.raw = b"maintenance"

    r = _chat(proxy_client)

    assert r.status_code == 502
    err = r.json()["error"]
    assert err["code"] == "upstream_error"
    assert err["type"] == "api_error"
    assert "503" in err["message"] and "maintenance" in err["message"]


def test_upstream_transport_error_is_reported(proxy_client, fake_upstream):
    fake_upstream.error = httpx.ConnectError("connection refused")

    r = _chat(proxy_client, stream=True)

    assert r.status_code == 502
    assert r.json()["error"]["code"] == "upstream_error"


def test_upstream_non_json_body_is_reported(proxy_client, fake_upstream):
    fake_upstream.raw = b"<html>oops</html>"

    r = _chat(proxy_client)

    assert r.status_code == 502
    assert r.json()["error"]["code"] == "upstream_error"


def test_invalid_json_body(proxy_client, fake_upstream):
    r = proxy_client.post(
        "/v1/chat/completions",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_json"
    assert fake_upstream.calls == []


def test_empty_messages_rejected(proxy_client, fake_upstream):
    r = _chat(proxy_client, messages=[])

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"
    assert fake_upstream.calls == []


def test_malformed_messages_rejected(proxy_client, fake_upstream):
    r = _chat(proxy_client, messages=[{"content": "no role"}])

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_auth_enforced_with_real_key(proxy_client, fake_upstream, monkeypatch):
    monkeypatch.setattr(app_module._cfg, "api_master_key", "sk-secret")

    assert _chat(proxy_client).status_code == 401
    wrong = proxy_client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hi"}]},
        headers={"Authorization": "Bearer nope"},
    )
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "unauthorized"
    ok = proxy_client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "Hi"}]},
        headers={"Authorization": "Bearer sk-secret"},
    )
    assert ok.status_code == 200


def test_unknown_path_returns_error_body(proxy_client):
    r = proxy_client.get("/v2/nothing")

    assert r.status_code == 404
    assert r.json() == {
        "error": {
            "message": "Path not found: /v2/nothing",
            "type": "api_error",
            "code": "not_found",
        }
    }


def test_cors_preflight(proxy_client):
    r = proxy_client.options(
        "/v1/chat/completions",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        },
    )

    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"


def test_cockpit_page(proxy_client):
    r = proxy_client.get("/")

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert "/v1/chat/completions" in r.text
    assert app_module._cfg.default_model in r.text


def test_cockpit_page_hides_real_key(proxy_client, monkeypatch):
    monkeypatch.setattr(app_module._cfg, "api_master_key", "sk-cockpit-secret")

    r = proxy_client.get("/")

    assert r.status_code == 200
    assert "sk-cockpit-secret" not in r.text
    assert "sk*************et" in r.text
