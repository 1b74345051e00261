"""Artifact endpoints: availability, downloads, tokens and integrity checks.

Session-authenticated routes require the caller to own `{user_id}`.
The secure download route takes no session: the capability token in
`?token=` is the credential.

Rate limiting: token issuance is throttled per principal via SlowAPI
(TOKEN_RATE_LIMIT, default 30/minute).
"""

import logging
import re
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.background import BackgroundTask

from jarvault.artifacts.backend import BackendClient, BackendDownload
from jarvault.artifacts.integrity import IntegrityReport
from jarvault.artifacts.ledger import RedemptionLedger
from jarvault.artifacts.normalize import default_file_name
from jarvault.artifacts.schemas import (
    ArtifactInfo,
    ArtifactRecordResponse,
    ArtifactStats,
    ExistsResponse,
    JarSyncResponse,
    PluginSummary,
    TokenRequest,
    TokenResponse,
)
from jarvault.artifacts.service import DistributionGateway
from jarvault.artifacts.store import JAR_CONTENT_TYPE, ArtifactBinary, ArtifactStore
from jarvault.auth.dependencies import (
    Principal,
    client_ip,
    ensure_owner,
    get_admin,
    get_current_principal,
    get_owner,
)
from jarvault.core.config import Settings, get_settings
from jarvault.core.errors import ArtifactNotFound, ArtifactTooLarge
from jarvault.core.limiter import limiter
from jarvault.db.session import get_db

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["artifacts"])

_FILENAME_RE = re.compile(r'filename="?([^";]+)"?')

# Secure downloads are never cached and may not be embedded anywhere.
_SECURE_HEADERS = {
    "Content-Security-Policy": "default-src 'none'",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_backend(settings: Settings = Depends(get_settings)) -> BackendClient:
    return BackendClient.from_settings(settings)


def get_gateway(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    backend: BackendClient = Depends(get_backend),
) -> DistributionGateway:
    ledger = RedemptionLedger(db) if settings.enforce_token_download_limits else None
    store = ArtifactStore(db, timeout=settings.storage_timeout_seconds)
    return DistributionGateway(store, backend, settings, ledger)


def _disposition(file_name: str) -> str:
    return f'attachment; filename="{file_name}"'


def _etag(file_name: str) -> str:
    return f'"{quote(file_name, safe="")}"'


def _binary_response(
    artifact: ArtifactBinary,
    report: Optional[IntegrityReport],
    headers: dict[str, str],
) -> Response:
    headers = {
        **headers,
        "Content-Disposition": _disposition(artifact.file_name),
        "Content-Length": str(len(artifact.content)),
    }
    checksum = report.checksum if report else artifact.checksum
    if checksum:
        headers["X-Artifact-Checksum"] = checksum
    if report is not None:
        headers["X-Integrity-Valid"] = "true" if report.is_valid else "false"
    return Response(content=artifact.content, media_type=artifact.content_type, headers=headers)


async def _read_upload(request: Request, limit: int) -> bytes:
    """Read the raw request body, refusing anything larger than `limit` bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise ArtifactTooLarge(f"JAR file exceeds the {limit} byte limit")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise ArtifactTooLarge(f"JAR file exceeds the {limit} byte limit")
    return bytes(body)


async def _relay_backend(download: BackendDownload, plugin_name: str) -> Response:
    if not download.ok:
        try:
            detail = await download.aread_text()
        finally:
            await download.aclose()
        logger.error("Backend download error: %d %s", download.status_code, detail[:200])
        return JSONResponse(
            status_code=download.status_code,
            content={
                "error": f"Download failed: {download.status_code} - {detail}",
                "reason": "backend_error",
            },
        )

    headers = download.relayed_headers()
    file_name = default_file_name(plugin_name)
    match = _FILENAME_RE.search(headers.get("content-disposition", ""))
    if match:
        file_name = match.group(1)
    headers.update({name.lower(): value for name, value in _SECURE_HEADERS.items()})
    # Only the backend honours Range.
    headers.setdefault("accept-ranges", "bytes")
    headers["content-type"] = JAR_CONTENT_TYPE
    headers["content-disposition"] = _disposition(file_name)

    return StreamingResponse(
        download.aiter_raw(),
        status_code=download.status_code,
        headers=headers,
        background=BackgroundTask(download.aclose),
    )


@router.get("/artifact/{user_id}/{plugin_name}/info", response_model=ArtifactInfo)
async def get_artifact_info(
    user_id: str,
    plugin_name: str,
    include_token: bool = Query(default=False, alias="includeToken"),
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> ArtifactInfo:
    """Availability and metadata. Same shape whether or not a JAR exists."""
    return await gateway.availability(
        user_id, plugin_name, issuer=principal.user_id, include_token=include_token
    )


@router.get("/artifact/{user_id}/{plugin_name}/exists", response_model=ExistsResponse)
async def artifact_exists(
    user_id: str,
    plugin_name: str,
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> ExistsResponse:
    return ExistsResponse(exists=await gateway.exists(user_id, plugin_name))


@router.get("/artifact/{user_id}/{plugin_name}")
async def download_artifact(
    user_id: str,
    plugin_name: str,
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> Response:
    """Direct download of the stored JAR for its owner."""
    artifact, report = await gateway.local_download(user_id, plugin_name)
    logger.info("Direct download of %s/%s (%d bytes)", user_id, plugin_name, artifact.file_size)
    return _binary_response(
        artifact,
        report,
        {
            "Cache-Control": "private, no-cache",
            "ETag": _etag(artifact.file_name),
        },
    )


@router.post("/artifact/{user_id}/{plugin_name}/token", response_model=TokenResponse)
@limiter.limit(settings.token_rate_limit)
async def issue_download_token(
    request: Request,
    user_id: str,
    plugin_name: str,
    body: TokenRequest = TokenRequest(),
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> TokenResponse:
    """Mint a time-boxed download capability for the owner's plugin."""
    return gateway.issue_token(user_id, plugin_name, body, issuer=principal.user_id)


@router.get("/artifact/{user_id}/{plugin_name}/secure")
async def secure_download(
    request: Request,
    user_id: str,
    plugin_name: str,
    token: Optional[str] = Query(default=None),
    range_header: Optional[str] = Header(default=None, alias="Range"),
    gateway: DistributionGateway = Depends(get_gateway),
) -> Response:
    """Token-gated download: local JAR first, backend proxy otherwise."""
    payload = await gateway.redeem(token, user_id, plugin_name, client_ip(request))
    result = await gateway.secure_download(user_id, plugin_name, range_header)

    if isinstance(result, BackendDownload):
        try:
            if result.ok:
                await gateway.record_redemption(payload)
            return await _relay_backend(result, plugin_name)
        except Exception:
            await result.aclose()
            raise

    artifact, report = result
    await gateway.record_redemption(payload)
    logger.info("Secure download of %s/%s (%d bytes)", user_id, plugin_name, artifact.file_size)
    return _binary_response(artifact, report, dict(_SECURE_HEADERS))


@router.get("/artifact/{user_id}/{plugin_name}/integrity")
async def check_integrity(
    user_id: str,
    plugin_name: str,
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
    gateway: DistributionGateway = Depends(get_gateway),
) -> dict:
    """Run the integrity verifier over the stored JAR (owner or admin)."""
    ensure_owner(user_id, principal, settings, allow_admin=True, action="check")
    report = await gateway.integrity_check(user_id, plugin_name)
    return {
        "userId": user_id,
        "pluginName": plugin_name,
        "isValid": report.is_valid,
        "integrity": report.to_dict(),
    }


@router.put(
    "/artifact/{user_id}/{plugin_name}",
    response_model=ArtifactRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_artifact(
    request: Request,
    user_id: str,
    plugin_name: str,
    file_name: Optional[str] = Header(default=None, alias="X-File-Name"),
    checksum: Optional[str] = Header(default=None, alias="X-Checksum"),
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> ArtifactRecordResponse:
    """Store a freshly compiled JAR (raw request body), replacing the previous one."""
    binary = await _read_upload(request, gateway.settings.max_artifact_bytes)
    plugin = await gateway.store_artifact(user_id, plugin_name, binary, file_name, checksum)
    return ArtifactRecordResponse(
        user_id=plugin.user_id,
        plugin_name=plugin.plugin_name,
        file_name=plugin.jar_file_name,
        file_size=plugin.jar_file_size,
        checksum=plugin.jar_file_checksum,
        compiled_at=plugin.jar_compiled_at.isoformat(),
    )


@router.put("/artifact/{user_id}/{plugin_name}/sync", response_model=JarSyncResponse)
async def sync_artifact(
    user_id: str,
    plugin_name: str,
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
    gateway: DistributionGateway = Depends(get_gateway),
) -> JarSyncResponse:
    """Copy the build backend's JAR for this plugin into the local store."""
    ensure_owner(user_id, principal, settings, action="sync")
    return await gateway.sync_from_backend(user_id, plugin_name)


@router.delete("/artifact/{user_id}/{plugin_name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_artifact(
    user_id: str,
    plugin_name: str,
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> Response:
    if not await gateway.store.soft_delete(user_id, plugin_name):
        raise ArtifactNotFound("Plugin not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/artifacts/stats", response_model=ArtifactStats)
async def artifact_stats(
    principal: Principal = Depends(get_admin),
    gateway: DistributionGateway = Depends(get_gateway),
) -> ArtifactStats:
    return await gateway.store.stats()


@router.get("/artifacts/{user_id}", response_model=list[PluginSummary])
async def list_artifacts(
    user_id: str,
    principal: Principal = Depends(get_owner),
    gateway: DistributionGateway = Depends(get_gateway),
) -> list[PluginSummary]:
    """The user's compiled plugins for the JAR dashboard."""
    return await gateway.list_for_user(user_id)
