# =============================================================================
# Identity Client — Hosted Session Provider
# =============================================================================
#
# Users sign in against a hosted identity service; this service only ever
# sees the resulting bearer token. Two calls are needed:
#
#   GET  {identity_url}/user    → the current user for a token
#   POST {identity_url}/logout  → end that session
#
# Both send the token as `Authorization: Bearer ...` and the project key
# as `apikey`, the convention of GoTrue-style auth servers.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from insurechat.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated user, as reported by the identity service."""

    id: str
    email: str | None = None
    token: str | None = None


class IdentityError(RuntimeError):
    """The identity service rejected the token or could not be reached."""

    def __init__(self, message: str, *, unauthorized: bool = False) -> None:
        super().__init__(message)
        self.unauthorized = unauthorized


class IdentityClient:
    """Thin async wrapper over the identity service's user/logout endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {}
        resolved_key = api_key if api_key is not None else settings.identity_api_key
        if resolved_key:
            headers["apikey"] = resolved_key
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.identity_url).rstrip("/"),
            timeout=settings.identity_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_user(self, token: str) -> CurrentUser:
        """
        Resolve a bearer token to its user.

        Raises:
            IdentityError: unauthorized=True for 401/403, otherwise the
                service failed or answered without a user id.
        """
        try:
            response = await self._client.get(
                "/user", headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            logger.error("Identity service unreachable: %s", e)
            raise IdentityError(f"Identity service unreachable: {e}") from e

        if response.status_code in (401, 403):
            raise IdentityError("Invalid or expired session.", unauthorized=True)
        if not response.is_success:
            logger.error("Identity service returned HTTP %d", response.status_code)
            raise IdentityError(
                f"Identity service error: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Identity service returned a non-JSON body")
            raise IdentityError("Identity service returned an invalid response.") from e
        if not isinstance(data, dict):
            logger.error("Identity service returned %s instead of a user", type(data).__name__)
            raise IdentityError("Identity service returned an invalid response.")

        user_id = data.get("id")
        if not user_id:
            raise IdentityError("Identity service returned no user.", unauthorized=True)
        return CurrentUser(id=str(user_id), email=data.get("email"), token=token)

    async def sign_out(self, token: str) -> None:
        """End the session behind `token`. An already-ended session is fine."""
        try:
            response = await self._client.post(
                "/logout", headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise IdentityError(f"Identity service unreachable: {e}") from e

        if response.status_code in (401, 403, 404):
            logger.info("Sign-out for a session that was already gone")
            return
        if not response.is_success:
            raise IdentityError(
                f"Identity service error: HTTP {response.status_code}"
            )


def local_user() -> CurrentUser:
    """The fixed user every request runs as when auth is disabled."""
    return CurrentUser(id=settings.local_user_id, email=settings.local_user_email)


_client: IdentityClient | None = None


def get_identity_client() -> IdentityClient:
    """Lazy singleton, like the agent client."""
    global _client
    if _client is None:
        _client = IdentityClient()
    return _client


async def close_identity_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
