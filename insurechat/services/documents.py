# =============================================================================
# Document Store — Upload Validation, Storage and Download Links
# =============================================================================
#
# Users attach their insurance documents (policy PDFs, premium tables as
# CSV) to a conversation. This module holds the storage logic; the route
# handlers in api/documents.py stay thin.
#
# FLOW (upload):
#   1. validate_upload()  — type and size checks, before anything is written
#   2. extract_text()     — CSV text (capped); PDFs get a pending note
#   3. store_document()   — write file to disk, insert `sources` row,
#                           commit, remove the file again if that fails
#
# File layout: {upload_dir}/{user_id}/{timestamp}-{filename}
# The stored path is relative to upload_dir; build_download_url() turns it
# into an absolute link under download_base_url.
# =============================================================================

from __future__ import annotations

import logging
import time
from pathlib import Path, PurePosixPath
from urllib.parse import quote, urljoin

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insurechat.config import Settings
from insurechat.db.models import Source

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({
    "application/pdf",
    "text/csv",
    "application/vnd.ms-excel",
})

PDF_PENDING_NOTE = "Text extraction for PDF will be available in future updates."


class DocumentValidationError(ValueError):
    """The upload was rejected before anything was stored."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def is_csv(filename: str, content_type: str | None) -> bool:
    return content_type == "text/csv" or filename.lower().endswith(".csv")


def validate_upload(
    filename: str | None,
    content_type: str | None,
    size: int,
    max_bytes: int,
) -> str:
    """
    Check an upload and return its safe file name.

    Raises:
        DocumentValidationError: missing name, wrong type, empty or too big.
    """
    if not filename:
        raise DocumentValidationError("No file provided.")

    safe_name = PurePosixPath(filename.replace("\\", "/")).name
    if not safe_name or safe_name in (".", ".."):
        raise DocumentValidationError("Invalid file name.")

    if content_type not in ALLOWED_CONTENT_TYPES and not safe_name.lower().endswith(".csv"):
        raise DocumentValidationError("Only PDF and CSV files are accepted.")

    if size == 0:
        raise DocumentValidationError("Uploaded file is empty.")

    if size > max_bytes:
        raise DocumentValidationError(
            f"File must not exceed {max_bytes // (1024 * 1024)}MB."
        )
    return safe_name


def extract_text(
    content: bytes,
    filename: str,
    content_type: str | None,
    limit: int,
) -> str:
    """CSV uploads keep their text (first `limit` chars); PDFs get a note."""
    if is_csv(filename, content_type):
        return content.decode("utf-8", errors="replace")[:limit]
    return PDF_PENDING_NOTE


def build_download_url(path: str, base_url: str) -> str:
    """
    Turn a stored (server-relative) path into an absolute download link.

    Absolute http(s) URLs are returned unchanged. Leading "./" and "/" are
    dropped so the path always lands under `base_url`.
    """
    if path.startswith(("http://", "https://")):
        return path
    relative = path.replace("\\", "/")
    while relative.startswith("./"):
        relative = relative[2:]
    relative = relative.lstrip("/")
    return urljoin(base_url.rstrip("/") + "/", quote(relative))


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


async def list_documents(session: AsyncSession, user_id: str) -> list[Source]:
    """The user's documents, newest first."""
    stmt = (
        select(Source)
        .where(Source.user_id == user_id)
        .order_by(Source.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_document(
    session: AsyncSession,
    user_id: str,
    document_id: int,
) -> Source | None:
    source = await session.get(Source, document_id)
    if source is None or source.user_id != user_id:
        return None
    return source


async def store_document(
    session: AsyncSession,
    settings: Settings,
    user_id: str,
    filename: str,
    content_type: str | None,
    content: bytes,
) -> Source:
    """
    Validate, write to disk and record one uploaded document.

    Raises:
        DocumentValidationError: If the upload is rejected.
    """
    safe_name = validate_upload(
        filename, content_type, len(content), settings.max_upload_bytes,
    )

    timestamp = int(time.time() * 1000)
    relative_path = f"{user_id}/{timestamp}-{safe_name}"
    file_path = Path(settings.upload_dir) / relative_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(content)

    logger.info(
        "Saved upload: %s (%d bytes) → %s", safe_name, len(content), file_path,
    )

    source = Source(
        user_id=user_id,
        name=safe_name,
        file_path=relative_path,
        file_type=content_type or "application/octet-stream",
        file_size=len(content),
        extracted_text=extract_text(
            content, safe_name, content_type, settings.extracted_text_limit,
        ),
        metadata_={"original_name": filename, "upload_timestamp": timestamp},
    )
    # The stored file must not outlive a row that failed to commit
    session.add(source)
    try:
        await session.flush()
        await session.commit()
        await session.refresh(source)
    except Exception:
        logger.exception("Failed to record %s, removing stored file", safe_name)
        file_path.unlink(missing_ok=True)
        raise

    logger.info("Source saved to database: id=%d", source.id)
    return source
