"""Tests for mapping local rows and backend JSON into the canonical shapes."""

from datetime import datetime, timezone

from jarvault.artifacts.normalize import (
    DEFAULT_AUTHOR,
    DEFAULT_DESCRIPTION,
    DEFAULT_MINECRAFT_VERSION,
    DEFAULT_VERSION,
    download_url,
    info_from_backend,
    info_from_record,
    secure_download_url,
    summary_from_backend,
    summary_from_record,
    unavailable_info,
)
from jarvault.db.models import Plugin


class TestUrls:
    def test_download_url(self) -> None:
        assert download_url("user-1", "SuperPlugin") == "/artifact/user-1/SuperPlugin"

    def test_secure_url_without_token(self) -> None:
        assert secure_download_url("user-1", "SuperPlugin") == "/artifact/user-1/SuperPlugin/secure"

    def test_segments_and_token_are_quoted(self) -> None:
        url = secure_download_url("user 1", "My/Plugin", "ab+c=")
        assert url == "/artifact/user%201/My%2FPlugin/secure?token=ab%2Bc%3D"


class TestUnavailableInfo:
    def test_placeholder_shape(self) -> None:
        info = unavailable_info("user-1", "Missing")
        assert info.available is False
        assert info.file_name is None
        assert info.file_size is None
        assert info.metadata.version == DEFAULT_VERSION == "1.0.0"
        assert info.metadata.author == DEFAULT_AUTHOR
        assert info.metadata.description == DEFAULT_DESCRIPTION
        assert info.metadata.minecraft_version == DEFAULT_MINECRAFT_VERSION
        assert info.download_url
        assert info.secure_download_url

    def test_wire_shape_is_camel_case(self) -> None:
        body = unavailable_info("user-1", "Missing").model_dump(by_alias=True)
        assert body["downloadUrl"] == "/artifact/user-1/Missing"
        assert body["secureDownloadUrl"] == "/artifact/user-1/Missing/secure"
        assert body["metadata"]["minecraftVersion"] == "1.20.1"


class TestInfoFromRecord:
    def test_defaults_fill_missing_fields(self) -> None:
        compiled = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        plugin = Plugin(
            user_id="user-1",
            plugin_name="SuperPlugin",
            jar_file_size=2048,
            jar_file_checksum="abc",
            jar_compiled_at=compiled,
        )
        info = info_from_record(plugin)
        assert info.available is True
        assert info.file_name == "SuperPlugin.jar"
        assert info.file_size == 2048
        assert info.checksum == "abc"
        assert info.last_modified == compiled.isoformat()
        assert info.metadata.version == "1.0.0"
        assert info.metadata.dependencies == []


class TestInfoFromBackend:
    def test_unavailable_answer_becomes_placeholder(self) -> None:
        info = info_from_backend("user-1", "P", {"available": False})
        assert info == unavailable_info("user-1", "P")

    def test_nested_metadata(self) -> None:
        info = info_from_backend(
            "user-1",
            "P",
            {
                "available": True,
                "fileName": "P-1.2.jar",
                "fileSize": 4096,
                "lastModified": "2025-01-01T00:00:00Z",
                "metadata": {"version": "1.2", "author": "alex", "dependencies": ["Vault"]},
            },
        )
        assert info.available is True
        assert info.file_name == "P-1.2.jar"
        assert info.file_size == 4096
        assert info.last_modified == "2025-01-01T00:00:00Z"
        assert info.metadata.version == "1.2"
        assert info.metadata.author == "alex"
        assert info.metadata.description == DEFAULT_DESCRIPTION
        assert info.metadata.dependencies == ["Vault"]
        # URLs always point at this service, never the backend.
        assert info.download_url == "/artifact/user-1/P"

    def test_flat_plugin_document(self) -> None:
        info = info_from_backend(
            "user-1",
            "P",
            {
                "exists": True,
                "jarFileName": "p.jar",
                "jarFileSize": "77",
                "jarCompiledAt": "2025-02-02T00:00:00Z",
                "description": "Flat",
                "minecraftVersion": "1.19",
            },
        )
        assert info.file_name == "p.jar"
        assert info.file_size == 77
        assert info.last_modified == "2025-02-02T00:00:00Z"
        assert info.metadata.description == "Flat"
        assert info.metadata.minecraft_version == "1.19"

    def test_missing_file_name_defaults_to_plugin_name(self) -> None:
        info = info_from_backend("user-1", "P", {"available": True})
        assert info.file_name == "P.jar"
        assert info.file_size == 0


class TestSummaries:
    def test_summary_from_backend_defaults(self) -> None:
        summary = summary_from_backend("user-1", {"_id": "abc", "files": [{}, {}]})
        assert summary.id == "abc"
        assert summary.user_id == "user-1"
        assert summary.plugin_name == "Unknown"
        assert summary.description == DEFAULT_DESCRIPTION
        assert summary.minecraft_version == DEFAULT_MINECRAFT_VERSION
        assert summary.jar_file_name == "Unknown.jar"
        assert summary.total_files == 2

    def test_summary_serialises_id_as_underscore_id(self) -> None:
        summary = summary_from_backend("user-1", {"pluginName": "P", "jarFileSize": 10})
        body = summary.model_dump(by_alias=True)
        assert body["_id"] == "user-1-P"
        assert body["jarFileSize"] == 10

    def test_summary_from_record(self) -> None:
        plugin = Plugin(
            user_id="user-1",
            plugin_name="P",
            description="Desc",
            jar_file_name="p.jar",
            jar_file_size=12,
            total_files=3,
            total_size=900,
        )
        summary = summary_from_record(plugin)
        assert summary.plugin_name == "P"
        assert summary.description == "Desc"
        assert summary.minecraft_version == DEFAULT_MINECRAFT_VERSION
        assert summary.jar_file_size == 12
        assert summary.total_files == 3
        assert summary.total_size == 900


class TestLooselyTypedBackendValues:
    def test_numeric_metadata_is_stringified(self) -> None:
        info = info_from_backend(
            "user-1", "P", {"available": True, "version": 2, "minecraftVersion": 1.2}
        )
        assert info.metadata.version == "2"
        assert info.metadata.minecraft_version == "1.2"

    def test_non_string_dependencies_are_dropped(self) -> None:
        info = info_from_backend(
            "user-1", "P", {"available": True, "dependencies": ["Vault", 3, None, {"name": "x"}]}
        )
        assert info.metadata.dependencies == ["Vault"]

    def test_container_metadata_falls_back_to_default(self) -> None:
        info = info_from_backend("user-1", "P", {"available": True, "author": {"name": "alex"}})
        assert info.metadata.author == DEFAULT_AUTHOR

    def test_epoch_millis_last_modified(self) -> None:
        info = info_from_backend("user-1", "P", {"available": True, "lastModified": 1700000000000})
        assert info.last_modified == "2023-11-14T22:13:20+00:00"

    def test_unparseable_file_size_defaults_to_zero(self) -> None:
        info = info_from_backend("user-1", "P", {"available": True, "fileSize": "1.2 MB"})
        assert info.file_size == 0

    def test_numeric_checksum_and_file_name(self) -> None:
        info = info_from_backend(
            "user-1", "P", {"available": True, "fileName": 42, "checksum": 1234}
        )
        assert info.file_name == "42"
        assert info.checksum == "1234"

    def test_mongo_extended_json_in_summary(self) -> None:
        summary = summary_from_backend(
            "user-1",
            {
                "_id": {"$oid": "65a1b2c3d4e5f60718293a4b"},
                "pluginName": "P",
                "createdAt": {"$date": "2025-01-01T00:00:00Z"},
                "updatedAt": {"$date": {"$numberLong": "1700000000000"}},
                "jarFileSize": "not a number",
                "totalSize": 12.0,
            },
        )
        assert summary.id == "65a1b2c3d4e5f60718293a4b"
        assert summary.created_at == "2025-01-01T00:00:00Z"
        assert summary.updated_at == "2023-11-14T22:13:20+00:00"
        assert summary.last_synced_at == "2023-11-14T22:13:20+00:00"
        assert summary.jar_file_size == 0
        assert summary.total_size == 12

    def test_numeric_plugin_name_and_user_id(self) -> None:
        summary = summary_from_backend("user-1", {"pluginName": 7, "userId": 99})
        assert summary.plugin_name == "7"
        assert summary.user_id == "99"
        assert summary.jar_file_name == "7.jar"
