"""Static upstream tables: exposed model names and browser fingerprint headers.

The upstream only understands a tool ``id``; every model we list maps one to
one onto such a tool.
"""

from __future__ import annotations

from typing import Dict, Tuple

MODEL_TOOL_IDS: Tuple[str, ...] = (
    "brainstorm-tool",
    "blog-post-generator",
    "social-media-post",
    "email-writer",
    "essay-writer",
    "paragraph-writer",
)

DEFAULT_MODEL = "brainstorm-tool"

# Fixed timestamp reported by /v1/models for every entry.
MODEL_CREATED_TS = 1677610602

FINGERPRINT_HEADERS: Dict[str, str] = {
    "Content-Type": "text/plain;charset=UTF-8",
    "Accept": "*/*",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "sec-ch-ua": '"Chromium";v="142", "Google Chrome";v="142", "Not_A Brand";v="99"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-origin",
    "priority": "u=1, i",
}


def upstream_headers(origin_url: str, user_agent: str, tool_id: str) -> Dict[str, str]:
    headers = dict(FINGERPRINT_HEADERS)
    origin = origin_url.rstrip("/")
    headers["Origin"] = origin
    headers["Referer"] = f"{origin}/iframe/{tool_id}?lang=en"
    headers["User-Agent"] = user_agent
    return headers


def model_cards(models, owned_by: str) -> list[dict]:
    return [
        {
            "id": model_id,
            "object": "model",
            "created": MODEL_CREATED_TS,
            "owned_by": owned_by,
        }
        for model_id in models
    ]
