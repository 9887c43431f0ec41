from __future__ import annotations

import json
import logging
import time
import uuid

import httpx

from .catalog import upstream_headers
from .config import ProxyConfig
from .errors import err_upstream

logger = logging.getLogger(__name__)


class UpstreamClient:
    """One-shot client for the upstream free-tool endpoint."""

    def __init__(self, cfg: ProxyConfig, client: httpx.AsyncClient | None = None):
        self.cfg = cfg
        self.client = client or httpx.AsyncClient(
            timeout=cfg.upstream_timeout_ms / 1000
        )

    def build_payload(self, prompt: str, tool_id: str) -> dict:
        return {
            "tone": self.cfg.upstream_tone,
            "language": self.cfg.upstream_language,
            "text": prompt,
            "chatId": str(uuid.uuid4()),
            "id": tool_id,
        }

    def extract_content(self, data) -> str:
        if isinstance(data, dict):
            if data.get("response"):
                return str(data["response"])
            responses = data.get("responses")
            if isinstance(responses, list) and responses:
                return str(responses[0])
        return self.cfg.fallback_content

    async def generate(self, prompt: str, tool_id: str) -> str:
        """Return the complete generated text for ``prompt``.

        Raises :class:`ProxyError` (502) on transport failures, non-2xx
        statuses and undecodable bodies. Nothing is retried.
        """
        payload = self.build_payload(prompt, tool_id)
        headers = upstream_headers(self.cfg.origin_url, self.cfg.user_agent, tool_id)
        started = time.perf_counter()
        try:
            resp = await self.client.post(
                self.cfg.upstream_url,
                content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.error("[upstream] POST %s failed: %s", self.cfg.upstream_url, exc)
            raise err_upstream(None, str(exc) or type(exc).__name__) from exc

        elapsed_ms = (time.perf_counter() - started) * 1000
        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text
            logger.error(
                "[upstream] %s returned %s: %s", tool_id, resp.status_code, body[:200]
            )
            raise err_upstream(resp.status_code, body)
        try:
            data = resp.json()
        except ValueError as exc:
            logger.error("[upstream] %s returned a non-JSON body", tool_id)
            raise err_upstream(resp.status_code, "invalid JSON in response") from exc
        content = self.extract_content(data)
        logger.info(
            "[upstream] %s answered %d chars in %.0f ms",
            tool_id,
            len(content),
            elapsed_ms,
        )
        return content

    async def aclose(self) -> None:
        await self.client.aclose()
