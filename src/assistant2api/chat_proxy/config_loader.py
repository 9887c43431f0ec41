from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Union, get_args, get_origin, get_type_hints

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .config import ProxyConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "CHAT_PROXY_CONFIG_FILE"
ENV_PREFIX = "CHAT_PROXY_"
DEFAULT_CONFIG_PATH = Path("configs/chat_proxy.toml")

# Unprefixed variables that older deployments already set.
ENV_ALIASES: dict[str, str] = {"api_master_key": "API_MASTER_KEY"}

_SECTION_MAP: dict[str, list[str]] = {
    "server": ["host", "port", "cors_allow_origins", "enable_metrics"],
    "auth": ["api_master_key"],
    "project": ["project_name", "project_version"],
    "upstream": [
        "upstream_url",
        "origin_url",
        "user_agent",
        "upstream_timeout_ms",
        "upstream_tone",
        "upstream_language",
        "fallback_content",
    ],
    "models": ["models", "default_model"],
    "streaming": [
        "stream_chunk_size",
        "stream_delay_ms",
        "stream_max_duration_s",
    ],
    "logging": [
        "log_dir",
        "log_path",
        "max_log_bytes",
        "log_retention_days",
        "log_prompts",
    ],
}


def _field_types() -> dict[str, Any]:
    hints = get_type_hints(ProxyConfig)
    return {f.name: hints.get(f.name) for f in fields(ProxyConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer setting")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        parts = [item.strip() for item in value.split(",")]
        return [item for item in parts if item]
    return [str(item) for item in value]


def _coerce_optional(value: Any, caster: Callable[[Any], Any]) -> Any:
    if value in ("", None):
        return None
    return caster(value)


_CASTERS: dict[Any, Callable[[Any], Any]] = {
    bool: _coerce_bool,
    int: _coerce_int,
    str: _coerce_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    origin = get_origin(field_type)
    if origin is None:
        caster = _CASTERS.get(field_type)
        return caster(value) if caster else value

    if origin is list:
        return _coerce_list(value)

    if origin is Union:
        args = [arg for arg in get_args(field_type) if arg is not type(None)]
        if len(args) == 1:
            caster = _CASTERS.get(args[0])
            if caster:
                return _coerce_optional(value, caster)
    return value


# Lower bounds for numeric settings; values below them are rejected.
_MINIMUMS: dict[str, int] = {
    "port": 0,
    "upstream_timeout_ms": 1,
    "stream_chunk_size": 1,
    "stream_delay_ms": 0,
    "stream_max_duration_s": 0,
    "max_log_bytes": 1,
    "log_retention_days": 0,
}


def _checked(key: str, value: Any) -> Any:
    minimum = _MINIMUMS.get(key)
    if minimum is not None and value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value!r}")
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _env_name(key: str) -> str:
    return f"{ENV_PREFIX}{key.upper()}"


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    env = os.environ
    field_types = _field_types()
    for key in list(config):
        raw = env.get(_env_name(key))
        if raw is None and key in ENV_ALIASES:
            raw = env.get(ENV_ALIASES[key])
        if raw is None:
            continue
        try:
            config[key] = _checked(key, _coerce_value(field_types.get(key), raw))
        except (TypeError, ValueError):
            logger.warning(
                "[config] Ignoring invalid value %r for %s", raw, _env_name(key)
            )
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _checked(key, _coerce_value(field_types.get(key), value))
        except (TypeError, ValueError):
            logger.warning("[config] Invalid value %r for %s; using default", value, key)
            normalized[key] = default_value
    return normalized


def config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_config(ProxyConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))
    return _normalize(base)


def load_proxy_config() -> ProxyConfig:
    path = config_path()
    _ensure_config_file(path)
    normalized = _normalize(_read_config_file(path))
    normalized = _apply_env_overrides(normalized)
    cfg = ProxyConfig(**normalized)
    cfg.config_file_path = str(path)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        inner = ", ".join(_format_value(item) for item in value)
        return f"[{inner}]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(config: ProxyConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    config_dict.pop("config_file_path", None)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: config_dict[key] for key in keys if key in config_dict}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: ProxyConfig, path: Path | None = None) -> None:
    path = Path(path or config_path()).expanduser()
    lines: list[str] = [
        "# Chat proxy configuration.",
        "# Generated automatically. Environment variables (CHAT_PROXY_*) win at runtime.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_format_value(value)}")

    # Same directory so the final replace stays on one filesystem.
    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="chat_proxy_config_", suffix=".toml", dir=str(path.parent)
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def update_config_file(updates: dict[str, Any]) -> ProxyConfig:
    path = config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))

    unknown = [key for key in updates if key not in base]
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")

    field_types = _field_types()
    for key, value in updates.items():
        _checked(key, _coerce_value(field_types.get(key), value))

    base.update(updates)
    file_config = ProxyConfig(**_normalize(base))
    file_config.config_file_path = str(path)
    write_config(file_config, path)
    return load_proxy_config()


def list_env_overrides() -> dict[str, str]:
    overrides = {
        key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)
    }
    for alias in ENV_ALIASES.values():
        if alias in os.environ:
            overrides[alias] = os.environ[alias]
    return overrides


def mask_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return value[:2] + "*" * (len(value) - 4) + value[-2:]
