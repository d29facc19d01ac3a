"""
Lightweight API auth helpers.

Supports optional API, admin, and metrics tokens via headers, and
resolves the already-authenticated caller for the ingestion adapter.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..config import settings


def _extract_token(authorization: str | None, x_api_key: str | None) -> str | None:
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def _require(expected: str | None, authorization: str | None, x_api_key: str | None) -> None:
    if not expected:
        return
    token = _extract_token(authorization, x_api_key)
    if token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_api_token(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> None:
    """Require API token if configured."""
    _require(settings.api_token, authorization, x_api_key)


def require_admin_token(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> None:
    """Require admin token if configured."""
    _require(settings.admin_token, authorization, x_api_key)


def require_metrics_token(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> None:
    """Require metrics token if configured."""
    _require(settings.metrics_token, authorization, x_api_key)


def resolve_user_id(request: Request) -> Optional[str]:
    """
    Caller identity set by the upstream authentication layer.

    Falls back to the X-User-Id header only when it is trusted
    (TRUST_USER_ID_HEADER, default on outside production).
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return str(user_id)
    if settings.user_id_header_trusted:
        header = request.headers.get("X-User-Id")
        if header and header.strip():
            return header.strip()
    return None
