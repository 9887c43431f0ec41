from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .catalog import DEFAULT_MODEL, MODEL_TOOL_IDS

WEAK_MASTER_KEY = "1"


@dataclass
class ProxyConfig:
    host: str = "127.0.0.1"
    port: int = 8100
    api_master_key: str = WEAK_MASTER_KEY
    project_name: str = "perfectassistant-2api"
    project_version: str = "1.0.0"
    upstream_url: str = "https://perfectassistant.ai/ai/free"
    origin_url: str = "https://perfectassistant.ai"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
    )
    upstream_timeout_ms: int = 120_000
    upstream_tone: str = "professional"
    upstream_language: str = "chinese"
    fallback_content: str = "Unable to obtain a valid reply."
    models: List[str] = field(default_factory=lambda: list(MODEL_TOOL_IDS))
    default_model: str = DEFAULT_MODEL
    # Pseudo-streaming cadence
    stream_chunk_size: int = 5
    stream_delay_ms: int = 20
    stream_max_duration_s: int = 300  # 0 = unbounded
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    enable_metrics: bool = False
    log_dir: str = "logs"
    log_path: str = "logs/chat_proxy.jsonl"
    max_log_bytes: int = 25_000_000
    log_retention_days: int = 30
    log_prompts: bool = False
    config_file_path: Optional[str] = None

    @property
    def weak_auth(self) -> bool:
        return self.api_master_key == WEAK_MASTER_KEY

    def resolve_tool_id(self, model: str | None) -> str:
        """Map a requested model name onto the upstream tool id."""
        if model and model in self.models:
            return model
        return self.default_model

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()
