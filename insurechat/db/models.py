# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# ┌──────────────────────────────┐
# │  sources                     │
# ├──────────────────────────────┤
# │ id (PK)                      │
# │ user_id (identity user id)   │
# │ name                         │
# │ file_path (relative)         │
# │ file_type (MIME)             │
# │ file_size                    │
# │ extracted_text               │
# │ metadata_ (jsonb)            │
# │ created_at                   │
# └──────────────────────────────┘
#
# Users live in the hosted identity service, so `user_id` is a plain
# string column with no foreign key. Pipeline state and transcripts are
# in-process only and have no tables.
# =============================================================================

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Source(Base):
    """An uploaded insurance document (policy PDF or premium CSV)."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owner, as reported by the identity service
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Original file name (sanitised to its last path component)
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Path relative to settings.upload_dir: "{user_id}/{timestamp}-{name}"
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    file_type: Mapped[str] = mapped_column(String(200), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # CSV text (capped) or a pending-extraction note for PDFs
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Trailing underscore avoids clashing with DeclarativeBase.metadata
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_sources_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Source(id={self.id}, name='{self.name}', user='{self.user_id}')>"
