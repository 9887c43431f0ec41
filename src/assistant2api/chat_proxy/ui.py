"""Developer cockpit served at ``/``: endpoint details and a streaming test console."""

from __future__ import annotations

import html
import json
from string import Template

from .config import ProxyConfig
from .config_loader import mask_secret

_PAGE = Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>$project_name - developer cockpit</title>
<style>
  :root { --bg:#121212; --panel:#1E1E1E; --border:#333; --text:#E0E0E0; --muted:#888;
          --primary:#FFBF00; --ok:#66BB6A; --err:#CF6679; }
  * { box-sizing: border-box; }
  body { font-family: 'Segoe UI', system-ui, sans-serif; background: var(--bg); color: var(--text);
         margin: 0; height: 100vh; display: flex; }
  aside { width: 360px; background: var(--panel); border-right: 1px solid var(--border); padding: 20px; overflow-y: auto; }
  main { flex: 1; display: flex; flex-direction: column; padding: 20px; }
  h1 { font-size: 18px; margin: 0 0 16px; }
  .version { font-size: 12px; color: var(--muted); font-weight: normal; }
  .card { background: #252525; border: 1px solid var(--border); border-radius: 6px; padding: 12px; margin-bottom: 14px; }
  .label { font-size: 12px; color: var(--muted); display: block; margin-bottom: 6px; }
  .code { background: #111; padding: 8px; border-radius: 4px; font-family: monospace; font-size: 12px;
          color: var(--primary); word-break: break-all; cursor: pointer; }
  .status { font-size: 12px; margin-bottom: 16px; }
  .dot { display: inline-block; width: 8px; height: 8px; border-radius: 50%; background: #555; margin-right: 6px; }
  .dot.ok { background: var(--ok); } .dot.err { background: var(--err); }
  #output { flex: 1; overflow-y: auto; background: var(--panel); border: 1px solid var(--border);
            border-radius: 8px 8px 0 0; padding: 15px; line-height: 1.6; }
  .msg { margin-bottom: 12px; white-space: pre-wrap; }
  .msg.user { color: var(--primary); font-weight: bold; }
  .msg.sys { color: var(--muted); font-size: 12px; font-style: italic; }
  .msg.err { color: var(--err); }
  .input { display: flex; gap: 10px; padding: 15px; background: #252525; border: 1px solid var(--border); border-top: none; }
  textarea { flex: 1; height: 50px; resize: none; background: #2A2A2A; color: var(--text); border: 1px solid var(--border); padding: 10px; }
  button { background: var(--primary); border: none; padding: 0 20px; font-weight: bold; cursor: pointer; }
  button:disabled { background: #555; cursor: not-allowed; }
</style>
</head>
<body>
<aside>
  <h1>$project_name <span class="version">v$project_version</span></h1>
  <div class="status"><span class="dot" id="dot"></span><span id="status-text">checking...</span></div>
  <div class="card"><span class="label">API endpoint</span>
    <div class="code" onclick="copyText(this.textContent)">$origin/v1/chat/completions</div></div>
  <div class="card"><span class="label">API key</span>
    <div class="code" onclick="copyText(this.textContent)">$api_key</div></div>
  <div class="card"><span class="label">Default model</span>
    <div class="code" onclick="copyText(this.textContent)">$default_model</div></div>
  <div class="card"><span class="label">OpenAI Python SDK</span>
<pre style="font-size:12px;color:var(--muted);overflow-x:auto">import openai
client = openai.OpenAI(base_url="$origin/v1", api_key="$api_key")
resp = client.chat.completions.create(
    model="$default_model",
    messages=[{"role": "user", "content": "Hello"}],
    stream=True,
)
for chunk in resp:
    print(chunk.choices[0].delta.content or "", end="")</pre></div>
</aside>
<main>
  <div id="output">
    <div class="msg sys">Ready. Upstream: $upstream_url</div>
    <div class="msg sys">Responses are pseudo-streamed: the full answer is replayed in small chunks.</div>
  </div>
  <div class="input">
    <textarea id="input" placeholder="Type a prompt (Enter to send, Shift+Enter for a newline)"></textarea>
    <button id="send">Send</button>
  </div>
</main>
<script>
const CONFIG = $client_config;
const output = document.getElementById('output');
const input = document.getElementById('input');
const sendBtn = document.getElementById('send');

function copyText(text) { navigator.clipboard.writeText(text.trim()); }

// Non-default keys are never embedded in the page; ask once per tab.
function apiKey() {
  if (CONFIG.apiKey) return CONFIG.apiKey;
  let key = sessionStorage.getItem('apiKey');
  if (!key) {
    key = window.prompt('API key') || '';
    sessionStorage.setItem('apiKey', key);
  }
  return key;
}

function appendMsg(kind, text) {
  const div = document.createElement('div');
  div.className = 'msg ' + kind;
  div.textContent = text;
  output.appendChild(div);
  output.scrollTop = output.scrollHeight;
  return div;
}

async function checkHealth() {
  const dot = document.getElementById('dot');
  const label = document.getElementById('status-text');
  try {
    const res = await fetch(CONFIG.modelsUrl, { headers: { 'Authorization': 'Bearer ' + apiKey() } });
    if (!res.ok) throw new Error('status ' + res.status);
    dot.className = 'dot ok'; label.textContent = 'service healthy';
  } catch (e) {
    dot.className = 'dot err'; label.textContent = 'service unavailable';
  }
}

async function send() {
  const text = input.value.trim();
  if (!text) return;
  input.value = '';
  input.disabled = sendBtn.disabled = true;
  appendMsg('user', text);
  const answer = appendMsg('ai', '');
  try {
    const res = await fetch(CONFIG.endpoint, {
      method: 'POST',
      headers: { 'Content-Type': 'application/json', 'Authorization': 'Bearer ' + apiKey() },
      body: JSON.stringify({ model: CONFIG.defaultModel, messages: [{ role: 'user', content: text }], stream: true })
    });
    if (!res.ok) throw new Error(await res.text());
    const reader = res.body.getReader();
    const decoder = new TextDecoder();
    let buffer = '';
    while (true) {
      const { done, value } = await reader.read();
      if (done) break;
      buffer += decoder.decode(value, { stream: true });
      const lines = buffer.split('\\n');
      buffer = lines.pop();
      for (const line of lines) {
        if (!line.startsWith('data: ')) continue;
        const data = line.slice(6);
        if (data === '[DONE]') continue;
        try {
          const content = JSON.parse(data).choices[0].delta.content;
          if (content) { answer.textContent += content; output.scrollTop = output.scrollHeight; }
        } catch (e) {}
      }
    }
  } catch (e) {
    appendMsg('err', 'Error: ' + e.message);
  } finally {
    input.disabled = sendBtn.disabled = false;
    input.focus();
  }
}

sendBtn.addEventListener('click', send);
input.addEventListener('keydown', (e) => {
  if (e.key === 'Enter' && !e.shiftKey) { e.preventDefault(); send(); }
});
checkHealth();
</script>
</body>
</html>
"""
)


def render_cockpit(cfg: ProxyConfig, origin: str) -> str:
    origin = origin.rstrip("/")
    client_config = {
        "apiKey": cfg.api_master_key if cfg.weak_auth else None,
        "endpoint": f"{origin}/v1/chat/completions",
        "modelsUrl": f"{origin}/v1/models",
        "models": list(cfg.models),
        "defaultModel": cfg.default_model,
    }
    # Embedded in a <script> block; keep "</" from closing it early.
    client_json = json.dumps(client_config).replace("</", "<\\/")
    return _PAGE.substitute(
        project_name=html.escape(cfg.project_name),
        project_version=html.escape(cfg.project_version),
        origin=html.escape(origin),
        api_key=html.escape(
            cfg.api_master_key if cfg.weak_auth else mask_secret(cfg.api_master_key)
        ),
        default_model=html.escape(cfg.default_model),
        upstream_url=html.escape(cfg.upstream_url),
        client_config=client_json,
    )
