"""SQLAlchemy 2.0 declarative models for plugin artifacts.

Uses dialect-agnostic types (Uuid, JSON, LargeBinary) so models work with
both PostgreSQL (production) and SQLite (tests).

The `plugins` table mirrors the plugin document the dashboard stores:
only the columns the artifact layer reads or writes are mapped here.
Source files and chat history live with the CRUD layer.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, deferred, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Plugin(Base):
    """A plugin document and its most recent compiled JAR.

    At most one active row exists per (user_id, plugin_name). Soft-deleted
    rows (is_active = false) are kept for history and never read as
    artifacts. The jar_* columns are replaced together on every successful
    compile; there is no partial-update path.
    """

    __tablename__ = "plugins"
    __table_args__ = (
        Index(
            "uq_plugins_user_plugin_active",
            "user_id",
            "plugin_name",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    plugin_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    minecraft_version: Mapped[Optional[str]] = mapped_column(Text)
    dependencies: Mapped[Optional[list[str]]] = mapped_column(JSON)
    # version / author / mainClass / apiVersion
    plugin_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )

    # Deferred so listings and info queries never pull the blob.
    jar_file: Mapped[Optional[bytes]] = deferred(mapped_column(LargeBinary))
    jar_file_name: Mapped[Optional[str]] = mapped_column(Text)
    jar_file_size: Mapped[Optional[int]] = mapped_column(Integer)
    jar_file_checksum: Mapped[Optional[str]] = mapped_column(Text)
    jar_compiled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class DownloadTokenRedemption(Base):
    """Redemption counter for a download token.

    Only written when ENFORCE_TOKEN_DOWNLOAD_LIMITS is on. Keyed by the
    SHA-256 of the token's random component, never the token itself.
    """

    __tablename__ = "download_token_redemptions"

    token_hash: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    plugin_name: Mapped[str] = mapped_column(Text, nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
