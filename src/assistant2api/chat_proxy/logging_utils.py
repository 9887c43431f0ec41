"""Logging setup for the proxy process plus the per-request JSONL log."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = ["configure_logging", "RequestLog"]

_MANAGED_HANDLER_FLAG = "_chat_proxy_managed_handler"


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()


def configure_logging(
    log_name: str,
    *,
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
) -> Path:
    """Route root logging to ``<log_dir>/<log_name>.log`` (and the console).

    ``CHAT_PROXY_LOG_DIR`` wins over ``log_dir``. Calling this again replaces
    the handlers installed by the previous call.
    """

    env_override = os.environ.get("CHAT_PROXY_LOG_DIR")
    target_directory = Path(env_override or log_dir or "logs").expanduser()
    target_directory.mkdir(parents=True, exist_ok=True)
    log_path = target_directory / f"{log_name}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    _remove_managed_handlers(root_logger)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if include_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _MANAGED_HANDLER_FLAG, True)
        root_logger.addHandler(handler)

    logging.captureWarnings(True)
    return log_path


class RequestLog:
    """Append-only JSONL log with one record per chat request.

    The active file is rotated to ``<path>.<timestamp>`` once it grows past
    ``max_bytes``; rotated files older than ``retention_days`` are removed.
    Write failures never reach the request path.
    """

    def __init__(
        self,
        path: str,
        max_bytes: int = 25_000_000,
        retention_days: int = 30,
        include_prompts: bool = False,
    ):
        self.path = path
        self.max_bytes = max_bytes
        self.retention_days = retention_days
        self.include_prompts = include_prompts
        log_dir = os.path.dirname(path)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError:
                logging.getLogger(__name__).warning(
                    "[request-log] cannot create %s", log_dir
                )

    def _prune_rotated(self) -> None:
        if self.retention_days <= 0:
            return
        directory = Path(self.path).parent
        prefix = Path(self.path).name + "."
        cutoff = time.time() - self.retention_days * 86_400
        for candidate in directory.glob(prefix + "*"):
            try:
                if candidate.stat().st_mtime < cutoff:
                    candidate.unlink()
            except OSError:
                continue

    def _rotate_if_needed(self) -> None:
        try:
            if (
                os.path.exists(self.path)
                and os.path.getsize(self.path) > self.max_bytes
            ):
                ts = time.strftime("%Y%m%d-%H%M%S")
                os.rename(self.path, f"{self.path}.{ts}")
                self._prune_rotated()
        except OSError:
            logging.getLogger(__name__).warning(
                "[request-log] rotation of %s failed", self.path
            )

    def log(self, record: Dict[str, Any]) -> None:
        self._rotate_if_needed()
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError:
            logging.getLogger(__name__).warning(
                "[request-log] write to %s failed", self.path
            )

    def record(
        self,
        *,
        request_id: str,
        model: str,
        tool_id: str,
        stream: bool,
        status: int,
        outcome: str,
        prompt: str = "",
        completion_chars: int = 0,
        error_code: str | None = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
            "request_id": request_id,
            "model": model,
            "tool_id": tool_id,
            "stream": stream,
            "status": status,
            "outcome": outcome,
            "prompt_chars": len(prompt),
            "completion_chars": completion_chars,
        }
        if error_code:
            entry["error_code"] = error_code
        if self.include_prompts:
            entry["prompt"] = prompt
        self.log(entry)
