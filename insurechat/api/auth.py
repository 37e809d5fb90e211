# =============================================================================
# Auth API — Current User and Sign-Out
# =============================================================================
#
#   GET  /auth/me        — who am I
#   POST /auth/sign-out  — end the session and drop its conversations
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from insurechat.agents.pipeline import ConversationRegistry, get_registry
from insurechat.api.deps import get_current_user
from insurechat.config import settings
from insurechat.models.responses import UserResponse
from insurechat.services.identity import (
    CurrentUser,
    IdentityClient,
    IdentityError,
    get_identity_client,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/me", response_model=UserResponse, summary="Current user")
async def me(user: CurrentUser = Depends(get_current_user)) -> UserResponse:
    return UserResponse(id=user.id, email=user.email)


@router.post("/sign-out", status_code=204, summary="Sign out")
async def sign_out(
    user: CurrentUser = Depends(get_current_user),
    identity: IdentityClient = Depends(get_identity_client),
    registry: ConversationRegistry = Depends(get_registry),
) -> None:
    """
    End the caller's session with the identity service and forget their
    idle conversations. Conversations with a stage call in flight are kept
    until that call finishes.
    """
    if settings.auth_enabled and user.token:
        try:
            await identity.sign_out(user.token)
        except IdentityError as e:
            logger.error("Sign-out failed: %s", e)
            raise HTTPException(status_code=503, detail=str(e)) from e

    dropped = registry.discard_owner(user.id)
    logger.info("User %s signed out (%d conversations dropped)", user.id, dropped)
