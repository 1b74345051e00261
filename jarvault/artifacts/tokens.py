"""Self-describing download capability tokens.

A token is the whole grant serialised as JSON and base64-encoded; the
client presents the same string back on redemption. There is no
server-side token table, so possession of the string is the only access
control and the embedded ``downloadCount`` is whatever it was at issuance.
``maxDownloads`` is therefore only enforced across requests when the
redemption ledger is enabled (see `jarvault.artifacts.ledger`).

Tokens are not signed. Forging one requires knowing nothing beyond the
owner's user id and plugin name, so they must only be minted for, and
handed to, the authenticated owner.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

TOKEN_ENTROPY_BYTES = 32


class TokenPayload(BaseModel):
    """The grant carried inside an encoded token (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = Field(..., min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    plugin_name: str = Field(..., alias="pluginName", min_length=1)
    expires_at: datetime = Field(..., alias="expiresAt")
    max_downloads: int = Field(..., alias="maxDownloads", ge=0)
    download_count: int = Field(default=0, alias="downloadCount", ge=0)
    ip_restrictions: list[str] = Field(default_factory=list, alias="ipRestrictions")
    # Older dashboard builds wrote createdAt / createdBy.
    issued_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("issuedAt", "createdAt", "issued_at"),
        serialization_alias="issuedAt",
    )
    issued_by: str = Field(
        ...,
        validation_alias=AliasChoices("issuedBy", "createdBy", "issued_by"),
        serialization_alias="issuedBy",
    )

    @field_validator("expires_at", "issued_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @field_validator("ip_restrictions", mode="before")
    @classmethod
    def none_is_unrestricted(cls, v):
        return [] if v is None else v


class TokenStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    WRONG_OWNER = "wrong_owner"
    DOWNLOADS_EXHAUSTED = "downloads_exhausted"
    IP_NOT_ALLOWED = "ip_not_allowed"


# HTTP status and user-facing message for each rejection.
REJECTIONS: dict[TokenStatus, tuple[int, str]] = {
    TokenStatus.EXPIRED: (401, "Token has expired"),
    TokenStatus.WRONG_OWNER: (401, "Invalid token for this plugin"),
    TokenStatus.DOWNLOADS_EXHAUSTED: (401, "Token download limit exceeded"),
    TokenStatus.IP_NOT_ALLOWED: (403, "IP address not authorized"),
}


@dataclass(frozen=True)
class IssuedToken:
    encoded: str
    payload: TokenPayload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def encode(payload: TokenPayload) -> str:
    raw = payload.model_dump_json(by_alias=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode(encoded: Optional[str]) -> Optional[TokenPayload]:
    """Decode a token string. Returns None for anything malformed.

    Accepts both the URL-safe and the standard base64 alphabet, with or
    without padding. A ``+`` that arrived as a space through an
    unencoded query string is restored.
    """
    if not encoded or not encoded.strip():
        return None

    text = encoded.strip().replace(" ", "+").replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        document = json.loads(base64.b64decode(text, validate=True))
        return TokenPayload.model_validate(document)
    except ValueError as exc:
        # binascii.Error, JSONDecodeError, UnicodeDecodeError and
        # pydantic's ValidationError are all ValueErrors.
        logger.debug("Rejected malformed download token: %s", type(exc).__name__)
        return None


def issue(
    user_id: str,
    plugin_name: str,
    expires_in: timedelta,
    max_downloads: int,
    ip_restrictions: Optional[list[str]],
    issuer: str,
    now: Optional[datetime] = None,
) -> IssuedToken:
    now = now or _utcnow()
    payload = TokenPayload(
        token=secrets.token_hex(TOKEN_ENTROPY_BYTES),
        user_id=user_id,
        plugin_name=plugin_name,
        expires_at=now + expires_in,
        max_downloads=max_downloads,
        download_count=0,
        ip_restrictions=list(ip_restrictions or []),
        issued_at=now,
        issued_by=issuer,
    )
    return IssuedToken(encoded=encode(payload), payload=payload)


def validate(
    payload: TokenPayload,
    user_id: str,
    plugin_name: str,
    client_ip: Optional[str],
    now: Optional[datetime] = None,
    download_count: Optional[int] = None,
) -> TokenStatus:
    """Check a decoded token against a redemption request.

    Order: expiry, identity, usage, IP. `download_count` overrides the
    embedded counter when a redemption ledger supplies the real value.
    """
    now = now or _utcnow()
    if now > payload.expires_at:
        return TokenStatus.EXPIRED

    if payload.user_id != user_id or payload.plugin_name != plugin_name:
        return TokenStatus.WRONG_OWNER

    used = payload.download_count if download_count is None else download_count
    if used >= payload.max_downloads:
        return TokenStatus.DOWNLOADS_EXHAUSTED

    if payload.ip_restrictions and client_ip not in payload.ip_restrictions:
        return TokenStatus.IP_NOT_ALLOWED

    return TokenStatus.VALID


def token_hash(payload: TokenPayload) -> str:
    return hashlib.sha256(payload.token.encode("utf-8")).hexdigest()
