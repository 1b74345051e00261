"""Distribution gateway: composes store, verifier, token codec and backend.

Request-scoped and stateless across requests. The fallback protocol:

  1. Read the local store.
  2. Only on a definitive "not found locally", ask the external backend
     and normalise its answer into the canonical shape.
  3. A local storage *error* is never papered over by the backend; it
     propagates as StorageUnavailable (500).

Nothing else is retried.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Union

from pydantic import ValidationError

from jarvault.artifacts import integrity, tokens
from jarvault.artifacts.backend import BackendClient, BackendDownload
from jarvault.artifacts.integrity import IntegrityReport
from jarvault.artifacts.ledger import RedemptionLedger
from jarvault.artifacts.normalize import (
    info_from_backend,
    secure_download_url,
    summary_from_backend,
    unavailable_info,
)
from jarvault.artifacts.schemas import (
    ArtifactInfo,
    JarSyncResponse,
    PluginSummary,
    TokenRequest,
    TokenResponse,
)
from jarvault.artifacts.store import ArtifactBinary, ArtifactStore
from jarvault.core.config import Settings
from jarvault.core.errors import (
    ArtifactNotFound,
    ArtifactTooLarge,
    BackendTimeout,
    BackendUnavailable,
    IntegrityFailed,
    InvalidRequest,
    MalformedToken,
    TokenRejected,
)

logger = logging.getLogger(__name__)

# Token minted alongside an info response when includeToken=true.
TEMPORARY_TOKEN_TTL = timedelta(minutes=5)
TEMPORARY_TOKEN_DOWNLOADS = 1


class DistributionGateway:
    def __init__(
        self,
        store: ArtifactStore,
        backend: BackendClient,
        settings: Settings,
        ledger: Optional[RedemptionLedger] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.settings = settings
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Metadata reads
    # ------------------------------------------------------------------

    async def availability(
        self,
        user_id: str,
        plugin_name: str,
        issuer: Optional[str] = None,
        include_token: bool = False,
    ) -> ArtifactInfo:
        info = await self.store.get_info(user_id, plugin_name)
        if info is None:
            info = await self._backend_info(user_id, plugin_name)

        if include_token and info.available:
            issued = tokens.issue(
                user_id,
                plugin_name,
                expires_in=TEMPORARY_TOKEN_TTL,
                max_downloads=TEMPORARY_TOKEN_DOWNLOADS,
                ip_restrictions=[],
                issuer=issuer or user_id,
            )
            info = info.model_copy(update={"temporary_token": issued.encoded})
        return info

    async def _backend_info(self, user_id: str, plugin_name: str) -> ArtifactInfo:
        if not self.backend.configured:
            return unavailable_info(user_id, plugin_name)
        try:
            data = await self.backend.get_download_info(user_id, plugin_name)
        except (BackendUnavailable, BackendTimeout) as exc:
            logger.warning(
                "Backend info lookup for %s/%s failed: %s", user_id, plugin_name, exc.message
            )
            return unavailable_info(user_id, plugin_name)
        if data is None:
            return unavailable_info(user_id, plugin_name)
        try:
            return info_from_backend(user_id, plugin_name, data)
        except ValidationError as exc:
            logger.warning(
                "Backend info for %s/%s could not be normalised: %s", user_id, plugin_name, exc
            )
            return unavailable_info(user_id, plugin_name)

    async def exists(self, user_id: str, plugin_name: str) -> bool:
        if await self.store.exists(user_id, plugin_name):
            return True
        if not self.backend.configured:
            return False
        try:
            return await self.backend.jar_exists(user_id, plugin_name)
        except (BackendUnavailable, BackendTimeout) as exc:
            logger.warning(
                "Backend existence check for %s/%s failed: %s",
                user_id, plugin_name, exc.message,
            )
            return False

    async def list_for_user(self, user_id: str) -> list[PluginSummary]:
        """Local listing; the backend is asked only when the local list is empty.

        Backend failures propagate here (503/408): an empty dashboard would
        be indistinguishable from "no plugins".
        """
        local = await self.store.list_for_user(user_id)
        if local or not self.backend.configured:
            return local
        remote = await self.backend.list_plugins(user_id)
        return [summary_from_backend(user_id, item) for item in remote]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(
        self,
        user_id: str,
        plugin_name: str,
        options: TokenRequest,
        issuer: str,
    ) -> TokenResponse:
        expires_ms = options.expires_in or self.settings.token_default_expires_ms
        if expires_ms > self.settings.token_max_expires_ms:
            raise InvalidRequest(
                f"expiresIn may not exceed {self.settings.token_max_expires_ms} ms"
            )
        if options.max_downloads > self.settings.token_max_downloads:
            raise InvalidRequest(
                f"maxDownloads may not exceed {self.settings.token_max_downloads}"
            )

        issued = tokens.issue(
            user_id,
            plugin_name,
            expires_in=timedelta(milliseconds=expires_ms),
            max_downloads=options.max_downloads,
            ip_restrictions=options.ip_restrictions,
            issuer=issuer,
        )
        payload = issued.payload
        logger.info(
            "Issued download token for %s/%s (expires %s, max %d downloads)",
            user_id, plugin_name, payload.expires_at.isoformat(), payload.max_downloads,
        )
        return TokenResponse(
            token=issued.encoded,
            expires_at=payload.expires_at.isoformat(),
            download_url=secure_download_url(user_id, plugin_name, issued.encoded),
            max_downloads=payload.max_downloads,
            ip_restrictions=payload.ip_restrictions,
            issued_at=payload.issued_at.isoformat(),
            issued_by=payload.issued_by,
            valid_for=f"{expires_ms // 60000} minutes",
        )

    async def redeem(
        self,
        encoded: Optional[str],
        user_id: str,
        plugin_name: str,
        client_ip: str,
    ) -> tokens.TokenPayload:
        """Decode and validate a token. Raises on anything but VALID.

        With the ledger enabled the recorded count is consulted here so an
        exhausted token never reaches the backend; the binding check is
        the claim made by `record_redemption`.
        """
        if not encoded:
            raise MalformedToken("Token is required for secure downloads")

        payload = tokens.decode(encoded)
        if payload is None:
            raise MalformedToken()

        recorded = await self.ledger.count(payload) if self.ledger else None
        outcome = tokens.validate(
            payload, user_id, plugin_name, client_ip, download_count=recorded
        )
        if outcome is not tokens.TokenStatus.VALID:
            self._reject(outcome, user_id, plugin_name)
        return payload

    async def record_redemption(self, payload: tokens.TokenPayload) -> None:
        """Count a download against the token; raises once its allowance is gone."""
        if not self.ledger:
            return
        if await self.ledger.claim(payload) is None:
            self._reject(
                tokens.TokenStatus.DOWNLOADS_EXHAUSTED, payload.user_id, payload.plugin_name
            )

    @staticmethod
    def _reject(outcome: tokens.TokenStatus, user_id: str, plugin_name: str) -> None:
        status_code, message = tokens.REJECTIONS[outcome]
        logger.warning(
            "Rejected download token for %s/%s: %s", user_id, plugin_name, outcome.value
        )
        raise TokenRejected(status_code, outcome.value, message)

    # ------------------------------------------------------------------
    # Binary reads
    # ------------------------------------------------------------------

    async def local_download(self, user_id: str, plugin_name: str) -> tuple[ArtifactBinary, Optional[IntegrityReport]]:
        artifact = await self.store.get_binary(user_id, plugin_name)
        report = None
        if self.settings.verify_downloads:
            report = integrity.verify(artifact.content, artifact.file_size, artifact.file_name)
            if not report.is_valid:
                logger.warning(
                    "Serving %s/%s despite integrity indicators: %s",
                    user_id, plugin_name, "; ".join(report.corruption_indicators),
                )
        return artifact, report

    async def secure_download(
        self,
        user_id: str,
        plugin_name: str,
        range_header: Optional[str] = None,
    ) -> Union[tuple[ArtifactBinary, Optional[IntegrityReport]], BackendDownload]:
        """Local bytes when present, otherwise an open backend stream."""
        try:
            return await self.local_download(user_id, plugin_name)
        except ArtifactNotFound:
            if not self.backend.configured:
                raise
        logger.info("No local JAR for %s/%s; proxying to backend", user_id, plugin_name)
        return await self.backend.open_download(user_id, plugin_name, range_header)

    async def integrity_check(self, user_id: str, plugin_name: str) -> IntegrityReport:
        """Verify the stored (or backend) JAR; raises IntegrityFailed on indicators."""
        try:
            artifact = await self.store.get_binary(user_id, plugin_name)
            report = integrity.verify(artifact.content, artifact.file_size, artifact.file_name)
        except ArtifactNotFound:
            if not self.backend.configured:
                raise
            data = await self.backend.get_download_info(user_id, plugin_name)
            normalised = info_from_backend(user_id, plugin_name, data or {})
            if not normalised.available:
                raise ArtifactNotFound(
                    "JAR file not available from backend",
                    hint="Please compile your plugin first",
                )
            content = await self.backend.fetch_binary(user_id, plugin_name)
            report = integrity.verify(content, normalised.file_size, normalised.file_name or "")

        logger.info(
            "Integrity check for %s/%s: %s (%d issues)",
            user_id, plugin_name,
            "valid" if report.is_valid else "corrupted",
            len(report.corruption_indicators),
        )
        if not report.is_valid:
            raise IntegrityFailed(report.to_dict())
        return report

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store_artifact(
        self,
        user_id: str,
        plugin_name: str,
        binary: bytes,
        file_name: Optional[str],
        checksum: Optional[str],
        expected_size: Optional[int] = None,
        metadata: Optional[dict] = None,
        synced: bool = False,
    ):
        """Store a compiled JAR, recording its SHA-256.

        A supplied checksum must match the bytes received; otherwise the
        upload was corrupted in transit and is refused.
        """
        if not binary:
            raise InvalidRequest("Request body must contain the JAR bytes")
        if len(binary) > self.settings.max_artifact_bytes:
            raise ArtifactTooLarge(
                f"JAR file exceeds the {self.settings.max_artifact_bytes} byte limit"
            )
        report = integrity.verify(
            binary, len(binary) if expected_size is None else expected_size, file_name or ""
        )
        if checksum and checksum.lower() != report.checksum:
            raise InvalidRequest(
                "Checksum mismatch: upload does not match the supplied SHA-256"
            )
        if not report.is_valid:
            raise IntegrityFailed(report.to_dict(), "Refusing to store a corrupted JAR")
        return await self.store.put_artifact(
            user_id,
            plugin_name,
            binary,
            file_name,
            checksum=report.checksum,
            metadata=metadata,
            synced=synced,
        )

    async def sync_from_backend(self, user_id: str, plugin_name: str) -> JarSyncResponse:
        """Pull the backend's compiled JAR into the local store.

        The bytes go through the same checks as an upload, plus the size
        the backend reports for them. Backend timeouts surface as 408 and
        connection failures as 503.
        """
        if not self.backend.configured:
            raise BackendUnavailable("Backend API not configured")

        data = await self.backend.get_download_info(user_id, plugin_name)
        info = info_from_backend(user_id, plugin_name, data or {})
        content = await self.backend.fetch_binary(
            user_id, plugin_name, max_bytes=self.settings.max_artifact_bytes
        )

        metadata = info.metadata.model_dump(by_alias=True) if info.available else None
        plugin = await self.store_artifact(
            user_id,
            plugin_name,
            content,
            info.file_name,
            checksum=None,
            expected_size=info.file_size or None,
            metadata=metadata,
            synced=True,
        )
        logger.info("Synced %s/%s from backend (%d bytes)", user_id, plugin_name, len(content))
        return JarSyncResponse(
            message="JAR file synced successfully",
            file_size=plugin.jar_file_size,
            last_modified=plugin.jar_compiled_at.isoformat(),
            checksum=plugin.jar_file_checksum,
        )
