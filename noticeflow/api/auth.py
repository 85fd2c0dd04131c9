"""Authentication and tenant dependencies for the operations API.

A single global API token (``APIConfig.api_token``, NOTICEFLOW_API_TOKEN)
guards every route. When it is not set, authentication is disabled
(development mode). The tenant is read from the header named by
``APIConfig.tenant_header``.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, Request

from noticeflow.config.settings import APIConfig


def get_api_config() -> APIConfig:
    """Read the API config at call time (supports test overrides)."""
    return APIConfig()


def _get_bearer_token(authorization: str = Header(default="")) -> str:
    if authorization.startswith("Bearer "):
        return authorization[7:]
    return ""


async def require_api_auth(
    token: str = Depends(_get_bearer_token),
    config: APIConfig = Depends(get_api_config),
) -> str:
    if not config.api_token:
        return ""  # Auth disabled
    if not secrets.compare_digest(token, config.api_token):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")
    return token


async def require_tenant(
    request: Request,
    _: str = Depends(require_api_auth),
    config: APIConfig = Depends(get_api_config),
) -> str:
    """Tenant id from the configured tenant header, after authentication."""
    tenant_id = request.headers.get(config.tenant_header, "").strip()
    if not tenant_id:
        raise HTTPException(status_code=400, detail=f"{config.tenant_header} header is required")
    return tenant_id
