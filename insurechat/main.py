# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
# Run locally:
#   uvicorn insurechat.main:app --reload --port 8080
#
# LIFESPAN:
#   startup  — configure logging, create tables (if enabled)
#   shutdown — close the pooled HTTP clients (agents, identity)
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from insurechat.api import auth, conversations, documents
from insurechat.config import settings
from insurechat.db.engine import create_tables
from insurechat.models.responses import HealthResponse
from insurechat.services.agent_client import close_agent_client
from insurechat.services.identity import close_identity_client

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    if settings.database_create_tables:
        await create_tables()
    logger.info(
        "%s %s started (agents at %s)",
        settings.app_name, settings.app_version, settings.agent_base_url,
    )
    yield
    await close_agent_client()
    await close_identity_client()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Insurance analysis assistant: a five-stage remote agent pipeline "
            "with human approval after the first and the last stage."
        ),
        lifespan=lifespan,
    )
    application.include_router(conversations.router)
    application.include_router(documents.router)
    application.include_router(auth.router)

    # Uploaded files, addressed by build_download_url()
    application.mount(
        "/files",
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="files",
    )

    @application.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return application


app = create_app()
