"""Caller identity for the text detection service.

Three outcomes:
1. No token: anonymous caller (when DETECT_ALLOW_ANONYMOUS is on), which may
   create and process jobs without an owner.
2. Shared bearer token: local dev only (ignored when K_SERVICE is set).
3. Google OIDC ID token: verified with google-auth; the email (or sub)
   becomes the job owner identity.

The resulting Identity selects the RLS role and user id for the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from detect_service.config import (
    DETECT_ALLOW_ANONYMOUS,
    DETECT_ALLOWED_ISSUERS,
    DETECT_OIDC_AUDIENCE,
    DETECT_SHARED_TOKEN,
    IS_CLOUD_RUN,
)
from detect_service.db import ROLE_ANON, ROLE_AUTHENTICATED

logger = logging.getLogger(__name__)

# Cache the Google transport session for token verification
_transport = google_requests.Request()

# Paths that skip auth
_PUBLIC_PATHS = {"/liveness", "/readiness", "/docs", "/openapi.json"}


@dataclass(frozen=True)
class Identity:
    """Caller identity; ``user_id`` is None for anonymous callers."""

    user_id: str | None
    role: str
    principal: str

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


ANONYMOUS = Identity(user_id=None, role=ROLE_ANON, principal="anonymous")


async def get_identity(request: Request) -> Identity:
    """Resolve the caller identity from the request.

    Raises HTTPException 401 for a missing token when anonymous access is
    disabled, or for any token that fails verification.
    """
    token = _extract_token(request)
    if not token:
        if DETECT_ALLOW_ANONYMOUS:
            return ANONYMOUS
        raise HTTPException(status_code=401, detail="Missing authorization token")

    # Try shared token first (dev only)
    if not IS_CLOUD_RUN and DETECT_SHARED_TOKEN and token == DETECT_SHARED_TOKEN:
        return Identity(
            user_id="dev-user",
            role=ROLE_AUTHENTICATED,
            principal="dev-user@local",
        )

    try:
        claims = id_token.verify_token(token, _transport, audience=DETECT_OIDC_AUDIENCE)
        issuer = str(claims.get("iss", "")).strip()
        if issuer not in DETECT_ALLOWED_ISSUERS:
            raise HTTPException(status_code=401, detail="Invalid token issuer")

        principal = claims.get("email", "") or claims.get("sub", "")
        if not principal:
            raise HTTPException(
                status_code=401, detail="Token missing email and sub claims"
            )

        return Identity(
            user_id=principal,
            role=ROLE_AUTHENTICATED,
            principal=principal,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.warning("Token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token") from e


def _extract_token(request: Request) -> str | None:
    """Extract bearer token from the Authorization header."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def is_public_path(path: str) -> bool:
    """Check if the request path skips identity resolution."""
    return path in _PUBLIC_PATHS or path.startswith("/docs")


def require_auth_on_cloud_run() -> None:
    """Safety check: shared token must not be usable on Cloud Run."""
    if IS_CLOUD_RUN and DETECT_SHARED_TOKEN:
        logger.warning(
            "DETECT_SHARED_TOKEN is set on Cloud Run and will be ignored. "
            "Use OIDC tokens for authentication in production."
        )
    if IS_CLOUD_RUN and not DETECT_OIDC_AUDIENCE:
        raise RuntimeError("DETECT_OIDC_AUDIENCE must be set on Cloud Run")
