"""Normalisation of artifact documents into the canonical read shapes.

Plugin data arrives from two places with different optional fields: the
local `plugins` table and the external build backend's JSON. Both are
mapped here, field by field, into `ArtifactInfo` / `PluginSummary`, with
the same fixed defaults for anything missing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

from jarvault.artifacts.schemas import ArtifactInfo, ArtifactMetadata, PluginSummary
from jarvault.db.models import Plugin

DEFAULT_VERSION = "1.0.0"
DEFAULT_AUTHOR = "Unknown"
DEFAULT_DESCRIPTION = "No description available"
DEFAULT_MINECRAFT_VERSION = "1.20.1"
UNKNOWN_PLUGIN_NAME = "Unknown"

ARTIFACT_ROUTE_PREFIX = "/artifact"


def _segment(value: str) -> str:
    return quote(value, safe="")


def download_url(user_id: str, plugin_name: str) -> str:
    return f"{ARTIFACT_ROUTE_PREFIX}/{_segment(user_id)}/{_segment(plugin_name)}"


def secure_download_url(user_id: str, plugin_name: str, token: Optional[str] = None) -> str:
    url = f"{download_url(user_id, plugin_name)}/secure"
    if token:
        url += f"?token={quote(token, safe='')}"
    return url


def default_file_name(plugin_name: str) -> str:
    return f"{plugin_name}.jar"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _first(*values: Any) -> Any:
    """First value that is neither None nor empty."""
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any, default: Optional[str] = None) -> Optional[str]:
    """A scalar as a string. Missing, empty and container values give `default`."""
    if value is None or isinstance(value, (dict, list)):
        return default
    text = str(value)
    return text if text else default


def _int(value: Any, default: int = 0) -> int:
    """Integer counts and sizes; anything unparseable (e.g. "1.2 MB") gives `default`."""
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _timestamp(value: Any) -> Optional[str]:
    """ISO-8601 text for the timestamp encodings the backend has sent.

    Accepts ISO strings (passed through), datetimes, epoch milliseconds
    and Mongo extended JSON (``{"$date": ...}``, ``{"$numberLong": ...}``).
    """
    if isinstance(value, dict):
        value = _first(value.get("$date"), value.get("$numberLong"))
        if isinstance(value, dict):
            value = value.get("$numberLong")
        if isinstance(value, str) and value.lstrip("-").isdigit():
            value = int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return None
    return _text(value)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _metadata(
    version: Any,
    author: Any,
    description: Any,
    minecraft_version: Any,
    dependencies: Any,
) -> ArtifactMetadata:
    return ArtifactMetadata(
        version=_text(version, DEFAULT_VERSION),
        author=_text(author, DEFAULT_AUTHOR),
        description=_text(description, DEFAULT_DESCRIPTION),
        minecraft_version=_text(minecraft_version, DEFAULT_MINECRAFT_VERSION),
        dependencies=_string_list(dependencies),
    )


def unavailable_info(user_id: str, plugin_name: str) -> ArtifactInfo:
    return ArtifactInfo(
        available=False,
        download_url=download_url(user_id, plugin_name),
        secure_download_url=secure_download_url(user_id, plugin_name),
        metadata=_metadata(None, None, None, None, None),
    )


def info_from_record(plugin: Plugin) -> ArtifactInfo:
    """Build info from a local row. Must not touch the deferred jar_file."""
    meta = plugin.plugin_metadata or {}
    return ArtifactInfo(
        available=True,
        file_name=plugin.jar_file_name or default_file_name(plugin.plugin_name),
        file_size=plugin.jar_file_size or 0,
        last_modified=_iso(plugin.jar_compiled_at or plugin.updated_at),
        checksum=plugin.jar_file_checksum,
        download_url=download_url(plugin.user_id, plugin.plugin_name),
        secure_download_url=secure_download_url(plugin.user_id, plugin.plugin_name),
        metadata=_metadata(
            meta.get("version"),
            meta.get("author"),
            plugin.description,
            plugin.minecraft_version,
            plugin.dependencies,
        ),
    )


def info_from_backend(user_id: str, plugin_name: str, data: dict[str, Any]) -> ArtifactInfo:
    """Build info from the backend's download-info JSON.

    The backend has answered with both a nested ``metadata`` object and
    flat plugin-document fields over time; either is accepted. Its values
    are loosely typed, so every field is coerced rather than trusted.
    """
    if not data.get("available", data.get("exists", False)):
        return unavailable_info(user_id, plugin_name)

    meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return ArtifactInfo(
        available=True,
        file_name=_text(
            _first(data.get("fileName"), data.get("jarFileName")),
            default_file_name(plugin_name),
        ),
        file_size=_int(_first(data.get("fileSize"), data.get("jarFileSize"))),
        last_modified=_timestamp(
            _first(data.get("lastModified"), data.get("jarCompiledAt"), data.get("updatedAt"))
        ),
        checksum=_text(_first(data.get("checksum"), data.get("jarFileChecksum"))),
        download_url=download_url(user_id, plugin_name),
        secure_download_url=secure_download_url(user_id, plugin_name),
        metadata=_metadata(
            _first(meta.get("version"), data.get("version")),
            _first(meta.get("author"), data.get("author")),
            _first(meta.get("description"), data.get("description")),
            _first(meta.get("minecraftVersion"), data.get("minecraftVersion")),
            _first(meta.get("dependencies"), data.get("dependencies")),
        ),
    )


def summary_from_record(plugin: Plugin) -> PluginSummary:
    return PluginSummary(
        id=str(plugin.id),
        user_id=plugin.user_id,
        plugin_name=plugin.plugin_name,
        description=plugin.description or DEFAULT_DESCRIPTION,
        minecraft_version=plugin.minecraft_version or DEFAULT_MINECRAFT_VERSION,
        jar_file_name=plugin.jar_file_name or default_file_name(plugin.plugin_name),
        jar_file_size=plugin.jar_file_size or 0,
        jar_compiled_at=_iso(plugin.jar_compiled_at),
        checksum=plugin.jar_file_checksum,
        last_synced_at=_iso(plugin.last_synced_at or plugin.updated_at),
        total_files=plugin.total_files or 0,
        total_size=plugin.total_size or 0,
        created_at=_iso(plugin.created_at),
        updated_at=_iso(plugin.updated_at),
    )


def summary_from_backend(user_id: str, data: dict[str, Any]) -> PluginSummary:
    plugin_name = _text(_first(data.get("pluginName"), data.get("name")), UNKNOWN_PLUGIN_NAME)
    document_id = _first(data.get("_id"), data.get("id"))
    if isinstance(document_id, dict):
        # Mongo extended JSON: {"$oid": "..."}
        document_id = document_id.get("$oid")
    files = data.get("files")
    return PluginSummary(
        id=_text(document_id, f"{user_id}-{plugin_name}"),
        user_id=_text(data.get("userId"), user_id),
        plugin_name=plugin_name,
        description=_text(data.get("description"), DEFAULT_DESCRIPTION),
        minecraft_version=_text(data.get("minecraftVersion"), DEFAULT_MINECRAFT_VERSION),
        jar_file_name=_text(data.get("jarFileName"), default_file_name(plugin_name)),
        jar_file_size=_int(data.get("jarFileSize")),
        jar_compiled_at=_timestamp(_first(data.get("jarCompiledAt"), data.get("lastModified"))),
        checksum=_text(_first(data.get("jarFileChecksum"), data.get("checksum"))),
        last_synced_at=_timestamp(_first(data.get("lastSyncedAt"), data.get("updatedAt"))),
        total_files=_int(
            data.get("totalFiles"), len(files) if isinstance(files, list) else 0
        ),
        total_size=_int(data.get("totalSize")),
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )
