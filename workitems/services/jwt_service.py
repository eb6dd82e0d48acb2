"""
Access-token verification for the work-item API.

Tokens are minted by the identity provider and carry the caller's tenant
and roles. This module verifies them against the shared secret and turns
the claims into a ``Principal``. ``issue_access_token`` mints the same
shape for the CLI and the test suite.

Claims:
    sub        user id                        (required)
    tenant_id  tenant the caller acts in      (required)
    exp        expiry                         (required)
    roles      list of role names, or a comma-separated string
    email      optional
    type       must be "access"
    iss / aud  checked only when JWT_ISSUER / JWT_AUDIENCE are set

Settings: JWT_SECRET_KEY (falls back to SECRET_KEY), JWT_ALGORITHM,
JWT_ACCESS_EXPIRES, JWT_LEEWAY_SECONDS, JWT_ISSUER, JWT_AUDIENCE.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

import jwt
from flask import current_app

from workitems.core.principal import Principal

DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("sub", "tenant_id", "exp")


class TokenSettings(NamedTuple):
    secret: str
    algorithm: str
    issuer: str | None
    audience: str | None
    leeway: int
    expires: int


def token_settings() -> TokenSettings:
    cfg = current_app.config
    return TokenSettings(
        secret=cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"],
        algorithm=cfg.get("JWT_ALGORITHM") or "HS256",
        issuer=cfg.get("JWT_ISSUER") or None,
        audience=cfg.get("JWT_AUDIENCE") or None,
        leeway=int(cfg.get("JWT_LEEWAY_SECONDS", 0)),
        expires=int(cfg.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)),
    )


def _normalize_roles(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, list) and all(isinstance(role, str) for role in raw):
        return raw
    raise jwt.InvalidTokenError("roles claim must be a list of role names")


def issue_access_token(principal: Principal, expires_in: int | None = None) -> str:
    """Mint an access token for ``principal``."""
    settings = token_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": principal.id,
        "email": principal.email,
        "tenant_id": principal.tenant_id,
        "roles": sorted(principal.roles),
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in if expires_in is not None else settings.expires),
        "jti": str(uuid.uuid4()),
    }
    if settings.issuer:
        payload["iss"] = settings.issuer
    if settings.audience:
        payload["aud"] = settings.audience
    return jwt.encode(payload, settings.secret, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict:
    """
    Verify an access token and return its claims with ``roles`` normalized
    to a list.

    Raises jwt.ExpiredSignatureError for stale tokens and
    jwt.InvalidTokenError for anything else that fails verification.
    """
    settings = token_settings()
    payload = jwt.decode(
        token,
        settings.secret,
        algorithms=[settings.algorithm],
        issuer=settings.issuer,
        audience=settings.audience,
        leeway=settings.leeway,
        options={"require": list(REQUIRED_CLAIMS)},
    )
    if payload.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected {TOKEN_TYPE} token, got {payload.get('type')}")
    if not payload["sub"] or not payload["tenant_id"]:
        raise jwt.InvalidTokenError("sub and tenant_id must not be empty")
    payload["roles"] = _normalize_roles(payload.get("roles"))
    return payload


def principal_from_token(token: str) -> Principal:
    """Verify ``token`` and build the caller's principal from its claims."""
    return Principal.from_claims(decode_access_token(token))
