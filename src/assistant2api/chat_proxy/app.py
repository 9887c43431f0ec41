from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Optional

from fastapi import Body, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import require_authorized
from .catalog import model_cards
from .completions import build_completion, extract_prompt
from .config import ProxyConfig
from .config_loader import (
    ENV_ALIASES,
    list_env_overrides,
    load_file_config,
    mask_secret,
    update_config_file,
)
from .errors import (
    ProxyError,
    err_internal,
    err_invalid_json,
    err_invalid_request,
    err_not_found,
)
from .logging_utils import RequestLog
from .metrics import MetricSample, MetricsAggregator
from .models import ChatCompletionRequest, ModelList
from .streaming import (
    EmitOutcome,
    PseudoStreamEmitter,
    StreamSession,
    new_completion_id,
    stream_frames,
)
from .ui import render_cockpit
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

_cfg = ProxyConfig.load()
_metrics = MetricsAggregator()
_request_log = RequestLog(
    _cfg.log_path,
    _cfg.max_log_bytes,
    retention_days=_cfg.log_retention_days,
    include_prompts=_cfg.log_prompts,
)
_upstream = UpstreamClient(_cfg)

CONFIG_PRECEDENCE = [
    "Environment variables (CHAT_PROXY_*, API_MASTER_KEY)",
    "Config file (configs/chat_proxy.toml)",
    "Built-in defaults",
]
_SECRET_KEYS = {"api_master_key"}
_SECRET_ENV = {"CHAT_PROXY_API_MASTER_KEY", *ENV_ALIASES.values()}

app = FastAPI(title="Chat Proxy (pseudo-streaming)", version=_cfg.project_version)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cfg.cors_allow_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(ProxyError)
async def _proxy_error_handler(request: Request, exc: ProxyError):
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        err = err_not_found(request.url.path)
        return JSONResponse(status_code=404, content=err.detail)
    code = "method_not_allowed" if exc.status_code == 405 else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {"message": str(exc.detail), "type": "api_error", "code": code}
        },
        headers=getattr(exc, "headers", None),
    )


def _emitter() -> PseudoStreamEmitter:
    return PseudoStreamEmitter(
        chunk_size=_cfg.stream_chunk_size,
        delay_ms=_cfg.stream_delay_ms,
        max_duration_s=_cfg.stream_max_duration_s or None,
    )


def _record(
    *,
    request_id: str,
    model: str,
    tool_id: str,
    prompt: str,
    stream: bool,
    outcome: str,
    started: float,
    upstream_ms: float,
    chars_out: int,
    status: int = 200,
) -> None:
    _metrics.add(
        MetricSample(
            ts=time.time(),
            model=model,
            upstream_ms=upstream_ms,
            duration_ms=(time.perf_counter() - started) * 1000,
            chars_out=chars_out,
            stream=stream,
            outcome=outcome,
        )
    )
    _request_log.record(
        request_id=request_id,
        model=model,
        tool_id=tool_id,
        stream=stream,
        status=status,
        outcome=outcome,
        prompt=prompt,
        completion_chars=chars_out,
    )


async def _parse_chat_request(req: Request) -> ChatCompletionRequest:
    try:
        payload = await req.json()
    except ValueError as exc:
        raise err_invalid_json() from exc
    if not isinstance(payload, dict):
        raise err_invalid_json()
    try:
        parsed = ChatCompletionRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise err_invalid_request(
            f"Invalid request body at '{where}': {first.get('msg', 'invalid')}"
        ) from exc
    if not parsed.messages:
        raise err_invalid_request("messages must not be empty")
    return parsed


@app.post("/v1/chat/completions")
async def chat_completions(
    req: Request, authorization: Optional[str] = Header(default=None)
):
    require_authorized(_cfg, authorization)
    chat = await _parse_chat_request(req)
    prompt = extract_prompt(chat.messages)
    model = chat.model or _cfg.default_model
    tool_id = _cfg.resolve_tool_id(model)
    request_id = new_completion_id()
    created = int(time.time())
    started = time.perf_counter()
    emitter = None
    if chat.stream:
        try:
            emitter = _emitter()
        except ValueError as exc:
            logger.error("[app] invalid streaming settings: %s", exc)
            raise err_internal(str(exc)) from exc

    try:
        content = await _upstream.generate(prompt, tool_id)
    except ProxyError as exc:
        _request_log.record(
            request_id=request_id,
            model=model,
            tool_id=tool_id,
            stream=bool(chat.stream),
            status=exc.status_code,
            outcome="error",
            prompt=prompt,
            error_code=exc.code,
        )
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("[app] %s failed before streaming", request_id)
        raise err_internal(str(exc)) from exc
    upstream_ms = (time.perf_counter() - started) * 1000

    if emitter is not None:
        session = StreamSession.start(
            model, content, session_id=request_id, created=created
        )

        def _finished(outcome: EmitOutcome) -> None:
            _record(
                request_id=request_id,
                model=model,
                tool_id=tool_id,
                prompt=prompt,
                stream=True,
                outcome=outcome.value,
                started=started,
                upstream_ms=upstream_ms,
                chars_out=session.sent,
            )

        return StreamingResponse(
            stream_frames(emitter, session, on_finish=_finished),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "X-Request-ID": request_id,
            },
        )

    body = build_completion(request_id, created, model, prompt, content)
    _record(
        request_id=request_id,
        model=model,
        tool_id=tool_id,
        prompt=prompt,
        stream=False,
        outcome=EmitOutcome.COMPLETED.value,
        started=started,
        upstream_ms=upstream_ms,
        chars_out=len(content),
    )
    return JSONResponse(content=body, headers={"X-Request-ID": request_id})


@app.get("/v1/models")
async def list_models_api(authorization: Optional[str] = Header(default=None)):
    require_authorized(_cfg, authorization)
    listing = ModelList(data=model_cards(_cfg.models, _cfg.project_name))
    return listing.model_dump()


@app.get("/", response_class=HTMLResponse)
async def cockpit(req: Request):
    return HTMLResponse(
        render_cockpit(_cfg, str(req.base_url)),
        headers={"Cache-Control": "no-cache"},
    )


def _masked(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: mask_secret(value) if key in _SECRET_KEYS else value
        for key, value in values.items()
    }


def _env_snapshot() -> dict[str, str]:
    return {
        key: mask_secret(value) if key in _SECRET_ENV else value
        for key, value in list_env_overrides().items()
    }


@app.get("/v1/config/chat-proxy")
async def read_chat_proxy_config(authorization: Optional[str] = Header(default=None)):
    require_authorized(_cfg, authorization)
    runtime_dict = asdict(ProxyConfig.load())
    config_path = runtime_dict.pop("config_file_path", None)
    return JSONResponse(
        content={
            "runtime": _masked(runtime_dict),
            "file": _masked(load_file_config()),
            "config_file_path": config_path,
            "env_overrides": _env_snapshot(),
            "precedence": CONFIG_PRECEDENCE,
        }
    )


@app.put("/v1/config/chat-proxy")
async def update_chat_proxy_config(
    payload: dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(default=None),
):
    require_authorized(_cfg, authorization)
    if not isinstance(payload, dict) or not payload:
        raise err_invalid_request("Request body must be a non-empty object.")
    try:
        updated = update_config_file(payload)
    except KeyError as exc:
        raise err_invalid_request(str(exc.args[0])) from exc
    except ValueError as exc:
        raise err_invalid_request(str(exc)) from exc
    except OSError as exc:
        logger.exception("[app] Failed to update chat proxy config.")
        raise err_internal("failed to write configuration") from exc

    runtime_dict = asdict(updated)
    config_path = runtime_dict.pop("config_file_path", None)
    return JSONResponse(
        content={
            "status": "written",
            "runtime": _masked(runtime_dict),
            "file": _masked(load_file_config()),
            "config_file_path": config_path,
            "env_overrides": _env_snapshot(),
            "precedence": CONFIG_PRECEDENCE,
            "requires_restart": True,
            "message": "Config file updated. Restart the proxy to apply changes.",
        }
    )


@app.get("/v1/metrics")
async def metrics_api():
    if not _cfg.enable_metrics:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "message": "Metrics disabled",
                    "type": "api_error",
                    "code": "disabled",
                }
            },
        )
    return _metrics.summary()


@app.get("/v1/health")
async def health():
    return {"status": "ok", "uptime_seconds": _metrics.summary().get("uptime_seconds")}


@app.on_event("startup")
async def _startup():  # pragma: no cover
    if _cfg.weak_auth:
        logger.warning(
            "[app] Running with the weak master key; every request is accepted. "
            "Set API_MASTER_KEY or CHAT_PROXY_API_MASTER_KEY."
        )
    logger.info(
        "[app] %s v%s proxying %s (chunk=%d chars, delay=%d ms)",
        _cfg.project_name,
        _cfg.project_version,
        _cfg.upstream_url,
        _cfg.stream_chunk_size,
        _cfg.stream_delay_ms,
    )


@app.on_event("shutdown")
async def _shutdown():  # pragma: no cover
    await _upstream.aclose()


def main():  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host=_cfg.host, port=_cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
