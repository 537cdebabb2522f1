"""
Keycloak JWT Authentication middleware.

Validates Bearer tokens from checkout, payment and reviewer clients against
the Keycloak JWKS endpoint. Reviewer routes additionally require the
configured reviewer role (realm or client role).
Disabled in development via AUTH_ENABLED=false.
"""
from __future__ import annotations

from typing import Optional

import httpx
import structlog
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.core.config import Settings, get_settings

logger = structlog.get_logger()
security = HTTPBearer(auto_error=False)

_jwks_cache: Optional[dict] = None


async def _fetch_jwks(keycloak_url: str) -> dict:
    global _jwks_cache
    if _jwks_cache:
        return _jwks_cache
    async with httpx.AsyncClient() as client:
        resp = await client.get(f"{keycloak_url}/protocol/openid-connect/certs")
        resp.raise_for_status()
        _jwks_cache = resp.json()
        return _jwks_cache


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    FastAPI dependency: extracts and validates the JWT.
    Returns the decoded token payload (claims).
    """
    if not settings.auth_enabled:
        return {"sub": "dev-user", "realm_access": {"roles": [settings.reviewer_role]}}

    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = credentials.credentials
    try:
        jwks = await _fetch_jwks(settings.keycloak_url)
        unverified_header = jwt.get_unverified_header(token)
        key = next(
            (k for k in jwks.get("keys", []) if k["kid"] == unverified_header.get("kid")),
            None,
        )
        if not key:
            raise HTTPException(status_code=401, detail="Invalid token signing key")

        payload = jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            audience=settings.keycloak_audience,
            issuer=settings.keycloak_url,
        )
        return payload

    except JWTError as e:
        logger.warning("jwt_validation_failed", error=str(e))
        raise HTTPException(status_code=401, detail=f"Token validation failed: {e}")


def token_roles(payload: dict, client_id: str) -> set[str]:
    roles = set(payload.get("realm_access", {}).get("roles", []))
    roles.update(payload.get("resource_access", {}).get(client_id, {}).get("roles", []))
    return roles


async def require_reviewer(
    token_payload: dict = Depends(verify_token),
    settings: Settings = Depends(get_settings),
) -> dict:
    """FastAPI dependency: token must carry the reviewer role."""
    if settings.reviewer_role not in token_roles(token_payload, settings.keycloak_client_id):
        logger.warning("reviewer_role_missing", subject=token_payload.get("sub"))
        raise HTTPException(status_code=403, detail=f"Role '{settings.reviewer_role}' required")
    return token_payload
