# =============================================================================
# Remote Agent Client — Stage Invocation over HTTP
# =============================================================================
#
# Issues exactly one POST per stage call:
#
#   POST {agent_base_url}/{stage.endpoint}
#   Content-Type: text/plain
#   body: JSON text of the composed request
#
# and hands the response body to the decoder.
#
# FAILURE SEMANTICS:
#   - non-2xx status            → StageFailedError (transport)
#   - connect/read error        → StageFailedError (transport)
#   - timeout                   → StageFailedError (transport)
#   - `error` inside a 2xx body → a normal DecodedResult with .error set
#
# No retries. Every stage, including the auto-chained ones, is bounded by
# the same `stage_timeout_seconds`.
#
# ARCHITECTURE:
#   StageInvoker (Protocol)
#   ├── AgentClient            — httpx.AsyncClient implementation
#   └── get_agent_client()     — lazy singleton, reads from config
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Protocol

import httpx

from insurechat.agents.decoder import DecodedResult, decode_response
from insurechat.agents.stages import StageDescriptor
from insurechat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StageFailedError(RuntimeError):
    """A stage call failed at the transport level and produced no result."""

    def __init__(
        self,
        stage_id: str,
        reason: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{stage_id} failed: {reason}")
        self.stage_id = stage_id
        self.reason = reason
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class StageInvoker(Protocol):
    """Anything that can run one stage call and decode its response."""

    async def invoke(
        self,
        stage: StageDescriptor,
        body: dict[str, Any],
    ) -> DecodedResult:
        """
        Call the stage endpoint once.

        Raises:
            StageFailedError: On non-success status, network error or timeout.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation: httpx
# ---------------------------------------------------------------------------


class AgentClient:
    """
    Async HTTP client for the remote agent service.

    One pooled httpx.AsyncClient per instance. `transport` exists for
    tests (httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.agent_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.stage_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
            headers={"Content-Type": settings.agent_content_type},
        )
        logger.info(
            "Initialized AgentClient (base_url=%s, timeout=%.1fs)",
            self.base_url, self.timeout,
        )

    async def __aenter__(self) -> AgentClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def invoke(
        self,
        stage: StageDescriptor,
        body: dict[str, Any],
    ) -> DecodedResult:
        """POST the body to the stage endpoint and decode the response."""
        payload = json.dumps(body, ensure_ascii=False)
        start = time.monotonic()

        logger.info(
            "Calling %s (/%s): fields=%s, feedback=%s",
            stage.id, stage.endpoint, sorted(body), "feedback" in body,
        )

        try:
            # httpx timeouts are per-phase; wait_for bounds the whole call
            response = await asyncio.wait_for(
                self._client.post(f"/{stage.endpoint}", content=payload),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("%s timed out after %.1fs", stage.id, self.timeout)
            raise StageFailedError(
                stage.id, f"timed out after {self.timeout:.0f}s",
            ) from e
        except httpx.RequestError as e:
            logger.error("%s network error: %s", stage.id, e)
            raise StageFailedError(stage.id, f"network error: {e}") from e

        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.is_success:
            logger.error(
                "%s returned HTTP %d: %s",
                stage.id, response.status_code, response.text[:200],
            )
            raise StageFailedError(
                stage.id,
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            raw: Any = response.json()
        except ValueError:
            raw = response.text

        result = decode_response(raw)
        logger.info(
            "%s complete in %dms (fields=%d, upstream_error=%s)",
            stage.id, latency_ms, len(result.fields), result.error is not None,
        )
        return result


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_client: AgentClient | None = None


def get_agent_client() -> AgentClient:
    """
    Return the process-wide AgentClient, creating it on first use.

    Also usable as a FastAPI dependency (overridable in tests).
    """
    global _client
    if _client is None:
        _client = AgentClient()
    return _client


async def close_agent_client() -> None:
    """Close the singleton client (application shutdown)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
