"""Security helpers for Auth0 integration."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterable

import httpx
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from ..db import get_session_dependency
from app.backend.src.models import User

LOGGER = structlog.get_logger(__name__)

ALGORITHMS = ["RS256"]
_scheme = HTTPBearer(auto_error=False)


# -------------------------------------------------------
# JWKS + Token Utilities
# -------------------------------------------------------

@lru_cache()
def _fetch_jwks(domain: str) -> dict[str, Any]:
    """Fetch (and cache) the JWKS for the given Auth0 domain."""
    jwks_url = f"https://{domain}/.well-known/jwks.json"
    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(jwks_url)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as exc:
        LOGGER.warning("jwks_fetch_failed", domain=domain, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to retrieve JWKS",
        ) from exc


def _get_rsa_key(token: str, domain: str) -> dict[str, str] | None:
    """Return the RSA key that matches the token header."""
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header",
        ) from exc

    kid = unverified_header.get("kid")
    if not kid:
        return None

    for key in _fetch_jwks(domain).get("keys", []):
        if key.get("kid") == kid:
            return {name: key.get(name) for name in ("kty", "kid", "use", "n", "e")}
    return None


def _collect_audience_values(raw_value: str | None) -> list[str]:
    """Split the configured audience string into slash-normalised values."""
    if not raw_value:
        return []
    values: list[str] = []
    for part in raw_value.replace(",", " ").split():
        trimmed = part.strip().rstrip("/")
        for option in (trimmed, f"{trimmed}/"):
            if trimmed and option not in values:
                values.append(option)
    return values


def _decode_token(token: str, *, domain: str, audiences: list[str]) -> dict[str, Any]:
    """Decode and validate an Auth0 access token."""
    rsa_key = _get_rsa_key(token, domain)
    if not rsa_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unable to validate token",
        )

    try:
        payload = jwt.decode(
            token,
            rsa_key,
            algorithms=ALGORITHMS,
            issuer=f"https://{domain}/",
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    claim = payload.get("aud")
    token_audiences = [claim] if isinstance(claim, str) else [
        entry for entry in (claim or []) if isinstance(entry, str)
    ]
    if not set(_collect_audience_values(" ".join(token_audiences))) & set(audiences):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token audience",
        )
    return payload


# -------------------------------------------------------
# User Resolution
# -------------------------------------------------------

def _resolve_user(session: Session, payload: dict[str, Any]) -> User:
    """Map a verified Auth0 payload to an application user.

    Unknown subjects are linked by email; users are never auto-created since
    batch operations need a staff role assigned by an administrator.
    """
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing subject",
        )

    user = session.execute(select(User).where(User.auth0_sub == subject)).scalar_one_or_none()
    if user:
        return user

    email = payload.get("email")
    if email:
        user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user:
            user.auth0_sub = subject
            session.add(user)
            session.commit()
            LOGGER.info("auth0_subject_linked", user_id=user.id)
            return user

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="User record not found",
    )


# -------------------------------------------------------
# Current User + Role Enforcement
# -------------------------------------------------------

def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_scheme),
    session: Session = Depends(get_session_dependency),
) -> User:
    """Resolve the authenticated user from the Auth0 bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    settings = get_settings()
    audiences = _collect_audience_values(settings.auth0_audience)
    if not settings.auth0_domain or not audiences:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Auth0 configuration is incomplete",
        )

    payload = _decode_token(
        credentials.credentials,
        domain=settings.auth0_domain,
        audiences=audiences,
    )
    user = _resolve_user(session, payload)
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    return user


def _enforce_roles(user: User, allowed_roles: set[str], *, allow_admin: bool = True) -> User:
    """Ensure the authenticated user has one of the allowed roles."""
    role = (user.role or "").lower()
    if role in allowed_roles or (allow_admin and role == "admin"):
        return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Insufficient permissions",
    )


def require_admin_user(user: User = Depends(get_current_user)) -> User:
    """Dependency ensuring the caller is an administrator."""
    return _enforce_roles(user, {"admin"}, allow_admin=False)


def require_role(
    roles: Iterable[str],
    *,
    allow_admin: bool = True,
):
    """Return a dependency that enforces one of the provided roles."""
    normalized_roles = {value.lower() for value in roles}

    def dependency(user: User = Depends(get_current_user)) -> User:
        return _enforce_roles(user, normalized_roles, allow_admin=allow_admin)

    return dependency


require_batch_operator = require_role({"moderator"})


__all__ = [
    "get_current_user",
    "require_admin_user",
    "require_batch_operator",
    "require_role",
]
