"""Artifact Store: compiled JAR blobs and their metadata in Postgres.

One live artifact per (user_id, plugin_name). Writes are full replaces of
the jar_* columns inside the caller's transaction, so a cancelled request
rolls back to the previous JAR rather than leaving a partial one.
Concurrent writers to the same key resolve last-write-wins.

Metadata reads (`get_info`, `list_for_user`, `exists`) never select the
`jar_file` column; only `get_binary` loads the blob.

Every call is bounded by `timeout` seconds. SQLAlchemy errors and
timeouts surface as `StorageUnavailable`, which the gateway reports as a
500. It is never confused with "not found".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, TypeVar

from sqlalchemy import and_, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from jarvault.artifacts.normalize import default_file_name, info_from_record, summary_from_record
from jarvault.artifacts.schemas import ArtifactInfo, ArtifactStats, PluginSummary
from jarvault.core.errors import ArtifactNotFound, StorageUnavailable
from jarvault.db.models import Plugin

logger = logging.getLogger(__name__)

JAR_CONTENT_TYPE = "application/java-archive"
DEFAULT_STORAGE_TIMEOUT = 30.0

T = TypeVar("T")


@dataclass(frozen=True)
class ArtifactBinary:
    content: bytes
    file_name: str
    file_size: int
    content_type: str = JAR_CONTENT_TYPE
    checksum: Optional[str] = None


def _has_binary():
    return and_(Plugin.jar_file.is_not(None), func.length(Plugin.jar_file) > 0)


class ArtifactStore:
    def __init__(self, session: AsyncSession, timeout: float = DEFAULT_STORAGE_TIMEOUT) -> None:
        self.session = session
        self.timeout = timeout

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Artifact store %s timed out after %.1fs", operation, self.timeout)
            raise StorageUnavailable(f"Artifact storage timed out during {operation}") from exc
        except SQLAlchemyError as exc:
            logger.error("Artifact store %s failed: %s", operation, exc)
            raise StorageUnavailable(f"Artifact storage failed during {operation}") from exc

    def _active(self, user_id: str, plugin_name: str):
        return select(Plugin).where(
            Plugin.user_id == user_id,
            Plugin.plugin_name == plugin_name,
            Plugin.is_active.is_(True),
        )

    async def put_artifact(
        self,
        user_id: str,
        plugin_name: str,
        binary: bytes,
        file_name: Optional[str] = None,
        checksum: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        synced: bool = False,
    ) -> Plugin:
        """Store a compiled JAR, replacing any previous one for this plugin.

        The checksum is stored only when supplied; callers that want one
        recorded compute it themselves (see `integrity.verify`). `synced`
        marks a JAR pulled from the build backend.
        """
        if not binary:
            raise ValueError("Refusing to store an empty JAR")

        async def _put() -> Plugin:
            result = await self.session.execute(self._active(user_id, plugin_name))
            plugin = result.scalar_one_or_none()
            now = datetime.now(timezone.utc)
            if plugin is None:
                plugin = Plugin(user_id=user_id, plugin_name=plugin_name, created_at=now)
                self.session.add(plugin)

            plugin.jar_file = bytes(binary)
            plugin.jar_file_name = file_name or default_file_name(plugin_name)
            plugin.jar_file_size = len(binary)
            plugin.jar_file_checksum = checksum
            plugin.jar_compiled_at = now
            plugin.updated_at = now
            if synced:
                plugin.last_synced_at = now
            if metadata:
                _apply_metadata(plugin, metadata)

            await self.session.flush()
            return plugin

        plugin = await self._run("put", _put())
        logger.info(
            "Stored JAR %s for %s/%s (%d bytes)",
            plugin.jar_file_name, user_id, plugin_name, plugin.jar_file_size,
        )
        return plugin

    async def exists(self, user_id: str, plugin_name: str) -> bool:
        async def _exists() -> bool:
            result = await self.session.execute(
                select(func.count())
                .select_from(Plugin)
                .where(
                    Plugin.user_id == user_id,
                    Plugin.plugin_name == plugin_name,
                    Plugin.is_active.is_(True),
                    _has_binary(),
                )
            )
            return result.scalar_one() > 0

        return await self._run("exists", _exists())

    async def get_info(self, user_id: str, plugin_name: str) -> Optional[ArtifactInfo]:
        """Metadata for the live artifact, or None when unavailable."""

        async def _info() -> Optional[Plugin]:
            result = await self.session.execute(
                self._active(user_id, plugin_name).where(_has_binary())
            )
            return result.scalar_one_or_none()

        plugin = await self._run("info", _info())
        if plugin is None:
            return None
        return info_from_record(plugin)

    async def get_binary(self, user_id: str, plugin_name: str) -> ArtifactBinary:
        async def _binary() -> Optional[Plugin]:
            result = await self.session.execute(
                self._active(user_id, plugin_name).options(undefer(Plugin.jar_file))
            )
            return result.scalar_one_or_none()

        plugin = await self._run("download", _binary())
        if plugin is None or not plugin.jar_file:
            raise ArtifactNotFound(
                "JAR file not found",
                hint="Please compile your plugin first",
            )

        content = bytes(plugin.jar_file)
        return ArtifactBinary(
            content=content,
            file_name=plugin.jar_file_name or default_file_name(plugin_name),
            file_size=plugin.jar_file_size or len(content),
            checksum=plugin.jar_file_checksum,
        )

    async def list_for_user(self, user_id: str) -> list[PluginSummary]:
        """A user's compiled plugins, most recently compiled first."""

        async def _list() -> list[Plugin]:
            result = await self.session.execute(
                select(Plugin)
                .where(
                    Plugin.user_id == user_id,
                    Plugin.is_active.is_(True),
                    _has_binary(),
                )
                .order_by(Plugin.jar_compiled_at.desc(), Plugin.updated_at.desc())
            )
            return list(result.scalars().all())

        plugins = await self._run("list", _list())
        return [summary_from_record(plugin) for plugin in plugins]

    async def soft_delete(self, user_id: str, plugin_name: str) -> bool:
        """Mark the plugin inactive. Returns False when nothing was live."""

        async def _delete() -> bool:
            result = await self.session.execute(self._active(user_id, plugin_name))
            plugin = result.scalar_one_or_none()
            if plugin is None:
                return False
            plugin.is_active = False
            plugin.updated_at = datetime.now(timezone.utc)
            await self.session.flush()
            return True

        deleted = await self._run("delete", _delete())
        if deleted:
            logger.info("Soft-deleted plugin %s/%s", user_id, plugin_name)
        return deleted

    async def stats(self) -> ArtifactStats:
        async def _stats():
            result = await self.session.execute(
                select(
                    func.count(Plugin.id),
                    func.coalesce(func.sum(Plugin.jar_file_size), 0),
                    func.count(distinct(Plugin.user_id)),
                ).where(Plugin.is_active.is_(True), _has_binary())
            )
            return result.one()

        total_jars, total_size, unique_users = await self._run("stats", _stats())
        return ArtifactStats(
            total_jars=total_jars or 0,
            total_size=int(total_size or 0),
            total_downloads=0,
            unique_users=unique_users or 0,
        )


def _apply_metadata(plugin: Plugin, metadata: dict[str, Any]) -> None:
    """Copy descriptive fields onto the row. Unknown keys are ignored."""
    if metadata.get("description"):
        plugin.description = metadata["description"]
    if metadata.get("minecraftVersion"):
        plugin.minecraft_version = metadata["minecraftVersion"]
    if isinstance(metadata.get("dependencies"), list):
        plugin.dependencies = list(metadata["dependencies"])
    extra = {
        key: metadata[key]
        for key in ("version", "author", "mainClass", "apiVersion")
        if metadata.get(key)
    }
    if extra:
        plugin.plugin_metadata = {**(plugin.plugin_metadata or {}), **extra}
