"""Error taxonomy for the artifact distribution layer.

Every failure a route can surface is an `ArtifactError` subclass carrying
an HTTP status, a machine-readable `reason` and a human-readable message.
Routes and services raise; `artifact_error_handler` (registered in
`create_app()`) is the single place they are rendered:

    {"error": "<message>", "reason": "<reason>", "hint": "<next step>"}

`hint` is omitted when there is no actionable next step.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ArtifactError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    reason: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, hint: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.hint = hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.message, "reason": self.reason}
        if self.hint:
            body["hint"] = self.hint
        return body


class ArtifactNotFound(ArtifactError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "not_found"
    default_message = "JAR file not found"


class InvalidRequest(ArtifactError):
    status_code = status.HTTP_400_BAD_REQUEST
    reason = "invalid_request"
    default_message = "Invalid request"


class Unauthorized(ArtifactError):
    status_code = status.HTTP_401_UNAUTHORIZED
    reason = "unauthorized"
    default_message = "Unauthorized"


class Forbidden(ArtifactError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = "forbidden"
    default_message = "Access denied"


class MalformedToken(ArtifactError):
    status_code = status.HTTP_400_BAD_REQUEST
    reason = "malformed"
    default_message = "Invalid token format"


class TokenRejected(ArtifactError):
    """A decodable token that failed validation.

    The status and reason come from the validation outcome, so each
    outcome stays distinct and user-visible.
    """

    def __init__(self, status_code: int, reason: str, message: str) -> None:
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class ArtifactTooLarge(ArtifactError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    reason = "too_large"
    default_message = "JAR file exceeds the maximum upload size"


class StorageUnavailable(ArtifactError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    reason = "storage_unavailable"
    default_message = "Artifact storage is unavailable"


class BackendUnavailable(ArtifactError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    reason = "backend_unavailable"
    default_message = "Backend unavailable"


class BackendTimeout(ArtifactError):
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    reason = "timeout"
    default_message = "Download timeout - file too large or backend unavailable"


class IntegrityFailed(ArtifactError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    reason = "integrity_failed"
    default_message = "JAR integrity check failed"

    def __init__(self, report: dict, message: Optional[str] = None) -> None:
        self.report = report
        super().__init__(message, hint="Recompile the plugin to produce a fresh JAR")

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["integrity"] = self.report
        return body


async def artifact_error_handler(request: Request, exc: ArtifactError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)",
            request.method, request.url.path, exc.message, exc.reason,
        )
    else:
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method, request.url.path, exc.message, exc.reason,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
