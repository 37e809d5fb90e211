# =============================================================================
# Auth Dependencies — FastAPI Dependency Injection for Authentication
# =============================================================================
#
# get_current_user() resolves the caller:
#   - auth disabled → the fixed local user (no header needed)
#   - auth enabled  → Bearer token checked against the identity service
#
# HTTPBearer(auto_error=False) so that a missing header is handled here
# (401 with a clear message, or ignored when auth is off).
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from insurechat.config import settings
from insurechat.services.identity import (
    CurrentUser,
    IdentityClient,
    IdentityError,
    get_identity_client,
    local_user,
)

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    identity: IdentityClient = Depends(get_identity_client),
) -> CurrentUser:
    """
    FastAPI dependency returning the authenticated user.

    Raises:
        HTTPException 401: Missing, invalid or expired token
        HTTPException 503: Identity service unavailable
    """
    if not settings.auth_enabled:
        return local_user()

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing session token. Provide "
            "'Authorization: Bearer <token>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await identity.get_user(credentials.credentials)
    except IdentityError as e:
        if e.unauthorized:
            raise HTTPException(
                status_code=401,
                detail=str(e),
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
        logger.error("Identity lookup failed: %s", e)
        raise HTTPException(status_code=503, detail=str(e)) from e
