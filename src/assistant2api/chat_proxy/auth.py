from __future__ import annotations

import secrets

from .config import ProxyConfig
from .errors import err_unauthorized


def is_authorized(cfg: ProxyConfig, authorization: str | None) -> bool:
    """Check an ``Authorization`` header against the master key.

    The weak default key accepts every request.
    """
    if cfg.weak_auth:
        return True
    if not authorization:
        return False
    expected = f"Bearer {cfg.api_master_key}"
    return secrets.compare_digest(authorization.encode(), expected.encode())


def require_authorized(cfg: ProxyConfig, authorization: str | None) -> None:
    if not is_authorized(cfg, authorization):
        raise err_unauthorized()
