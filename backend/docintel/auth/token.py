"""
Bearer token verification for the pipeline API.

The CRM front end signs users in through an OIDC provider (AWS Cognito or
Auth0) and forwards the access token. Every pipeline route is scoped to the
organization named in that token:

    Cognito   custom:organization_id
    Auth0     <AUTH_CLAIM_NAMESPACE>/organization_id
    fallback  organization_id

Tokens are RS256. Public keys come from <issuer>/.well-known/jwks.json and
are cached per issuer for an hour; a token whose `kid` is not in the cached
set triggers one refetch, which covers provider key rotation.

Whether the caller may touch a particular document is not a token question:
services.triggers asks the document store.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated, Any
from uuid import UUID

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from pydantic import BaseModel

from docintel.core.config import settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=True)

_JWKS_CACHE: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)
_JWKS_TTL_SECONDS = 3600


class TokenPayload(BaseModel):
    """The caller, as far as the pipeline cares."""
    sub:             str          # provider user ID
    email:           str
    organization_id: UUID
    exp:             int
    iss:             str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# Signing keys
# ---------------------------------------------------------------------------

async def _fetch_jwks(issuer: str) -> dict:
    fetched = _JWKS_CACHE.get(issuer)
    if fetched is not None and time.monotonic() - fetched[1] < _JWKS_TTL_SECONDS:
        return fetched[0]

    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(f"{issuer.rstrip('/')}/.well-known/jwks.json")
        response.raise_for_status()
        jwks = response.json()

    _JWKS_CACHE[issuer] = (jwks, time.monotonic())
    logger.info("JWKS fetched | issuer=%s keys=%d", issuer, len(jwks.get("keys", [])))
    return jwks


def _key_for(jwks: dict, kid: str | None) -> dict | None:
    return next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)


async def _get_signing_key(token: str) -> Any:
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError as exc:
        raise _unauthorized("Invalid token header") from exc

    issuer = settings.auth_issuer
    key_data = _key_for(await _fetch_jwks(issuer), kid)
    if key_data is None:
        # Unknown kid: the provider may have rotated keys since our fetch
        _JWKS_CACHE.pop(issuer, None)
        key_data = _key_for(await _fetch_jwks(issuer), kid)
    if key_data is None:
        logger.warning("No JWKS key for token | issuer=%s kid=%s", issuer, kid)
        raise _unauthorized(f"Unable to find signing key for kid={kid}")

    return jwk.construct(key_data)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

def _organization_claims() -> tuple[str, ...]:
    return (
        "custom:organization_id",
        f"{settings.auth_claim_namespace.rstrip('/')}/organization_id",
        "organization_id",
    )


def _extract_organization_id(claims: dict) -> UUID:
    raw = next((claims[name] for name in _organization_claims() if claims.get(name)), None)
    if raw is None:
        raise _unauthorized("Token missing organization_id claim")
    try:
        return UUID(str(raw))
    except ValueError as exc:
        raise _unauthorized(f"Invalid organization_id in token: {raw}") from exc


async def verify_token(token: str) -> TokenPayload:
    signing_key = await _get_signing_key(token)
    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
    except ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except JWTError as exc:
        logger.info("Token rejected | reason=%s", exc)
        raise _unauthorized(f"Invalid token: {exc}") from exc

    return TokenPayload(
        sub=claims["sub"],
        email=claims.get("email", ""),
        organization_id=_extract_organization_id(claims),
        exp=claims["exp"],
        iss=claims["iss"],
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> TokenPayload:
    """FastAPI dependency: the verified caller of the current request."""
    return await verify_token(credentials.credentials)
