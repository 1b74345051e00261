"""Pydantic schemas for artifact endpoints.

Field names are camelCase on the wire (the dashboard's contract) and
snake_case in Python; FastAPI serialises response models by alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ArtifactMetadata(_WireModel):
    version: str
    author: str
    description: str
    minecraft_version: str = Field(..., alias="minecraftVersion")
    dependencies: list[str] = Field(default_factory=list)


class ArtifactInfo(_WireModel):
    """Availability answer. Same shape whether or not a JAR exists.

    When `available` is false the file fields are null but `metadata`
    carries placeholder defaults and both download URLs are populated, so
    the client can still build its follow-up requests.
    """

    available: bool
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    last_modified: Optional[str] = Field(default=None, alias="lastModified")
    checksum: Optional[str] = None
    download_url: str = Field(..., alias="downloadUrl")
    secure_download_url: str = Field(..., alias="secureDownloadUrl")
    temporary_token: Optional[str] = Field(default=None, alias="temporaryToken")
    metadata: ArtifactMetadata


class ExistsResponse(BaseModel):
    exists: bool


class TokenRequest(_WireModel):
    """Options for a download token. `expiresIn` is in milliseconds."""

    expires_in: Optional[int] = Field(default=None, alias="expiresIn", gt=0)
    max_downloads: int = Field(default=1, alias="maxDownloads", ge=1)
    ip_restrictions: list[str] = Field(default_factory=list, alias="ipRestrictions")


class TokenResponse(_WireModel):
    token: str
    expires_at: str = Field(..., alias="expiresAt")
    download_url: str = Field(..., alias="downloadUrl")
    max_downloads: int = Field(..., alias="maxDownloads")
    ip_restrictions: list[str] = Field(default_factory=list, alias="ipRestrictions")
    issued_at: str = Field(..., alias="issuedAt")
    issued_by: str = Field(..., alias="issuedBy")
    valid_for: str = Field(..., alias="validFor")


class PluginSummary(_WireModel):
    """One row of a user's JAR dashboard listing. Never carries the binary."""

    id: str = Field(..., alias="_id")
    user_id: str = Field(..., alias="userId")
    plugin_name: str = Field(..., alias="pluginName")
    description: str
    minecraft_version: str = Field(..., alias="minecraftVersion")
    jar_file_name: str = Field(..., alias="jarFileName")
    jar_file_size: int = Field(..., alias="jarFileSize")
    jar_compiled_at: Optional[str] = Field(default=None, alias="jarCompiledAt")
    checksum: Optional[str] = None
    last_synced_at: Optional[str] = Field(default=None, alias="lastSyncedAt")
    total_files: int = Field(default=0, alias="totalFiles")
    total_size: int = Field(default=0, alias="totalSize")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class ArtifactRecordResponse(_WireModel):
    """Response after storing a compiled JAR."""

    user_id: str = Field(..., alias="userId")
    plugin_name: str = Field(..., alias="pluginName")
    file_name: str = Field(..., alias="fileName")
    file_size: int = Field(..., alias="fileSize")
    checksum: Optional[str] = None
    compiled_at: str = Field(..., alias="compiledAt")


class ArtifactStats(_WireModel):
    total_jars: int = Field(default=0, alias="totalJars")
    total_size: int = Field(default=0, alias="totalSize")
    # Downloads are not tracked per artifact; always 0.
    total_downloads: int = Field(default=0, alias="totalDownloads")
    unique_users: int = Field(default=0, alias="uniqueUsers")


class JarSyncResponse(_WireModel):
    """Result of pulling a JAR from the build backend into the local store."""

    success: bool = True
    message: str
    file_size: int = Field(..., alias="fileSize")
    last_modified: str = Field(..., alias="lastModified")
    checksum: Optional[str] = None
