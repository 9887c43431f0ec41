from __future__ import annotations

from fastapi import HTTPException


class ProxyError(HTTPException):
    """HTTP error whose detail is an OpenAI-style ``{"error": {...}}`` body."""

    def __init__(self, status_code: int, code: str, message: str):
        payload = {"error": {"message": message, "type": "api_error", "code": code}}
        super().__init__(status_code=status_code, detail=payload)

    @property
    def code(self) -> str:
        return self.detail["error"]["code"]


def err_unauthorized() -> ProxyError:
    return ProxyError(401, "unauthorized", "Unauthorized")


def err_invalid_json() -> ProxyError:
    return ProxyError(400, "invalid_json", "Invalid JSON request body")


def err_invalid_request(reason: str) -> ProxyError:
    return ProxyError(400, "invalid_request", reason)


def err_not_found(path: str) -> ProxyError:
    return ProxyError(404, "not_found", f"Path not found: {path}")


def err_upstream(status: int | None, body: str) -> ProxyError:
    if status is None:
        return ProxyError(502, "upstream_error", f"Upstream service error: {body}")
    return ProxyError(
        502, "upstream_error", f"Upstream service error: {status} - {body}"
    )


def err_internal(reason: str) -> ProxyError:
    return ProxyError(500, "internal_error", f"Internal processing error: {reason}")
