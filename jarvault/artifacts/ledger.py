"""Redemption ledger for download tokens.

Tokens carry their own download counter, which the server can never
write back. When ENFORCE_TOKEN_DOWNLOAD_LIMITS is on, the gateway keeps
the real count here, keyed by the hash of the token's random component.

`count()` is a plain read used to turn away exhausted tokens early.
`claim()` is the authoritative step: a single upsert that increments the
counter only while it is below ``maxDownloads``, so concurrent
redemptions of the same token can never exceed the limit.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jarvault.artifacts.tokens import TokenPayload, token_hash
from jarvault.core.errors import StorageUnavailable
from jarvault.db.models import DownloadTokenRedemption

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE ... RETURNING
_UPSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class RedemptionLedger:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def count(self, payload: TokenPayload) -> int:
        """Redemptions recorded so far, never less than the embedded counter."""
        try:
            result = await self.session.execute(
                select(DownloadTokenRedemption.download_count).where(
                    DownloadTokenRedemption.token_hash == token_hash(payload)
                )
            )
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to read token redemptions: {exc}") from exc
        recorded = result.scalar_one_or_none() or 0
        return max(recorded, payload.download_count)

    async def claim(self, payload: TokenPayload) -> Optional[int]:
        """Take one download from the token's allowance.

        Returns the new count, or None when the allowance is already used up.
        """
        if payload.download_count >= payload.max_downloads:
            return None

        dialect = self.session.get_bind().dialect.name
        insert = _UPSERTS.get(dialect)
        if insert is None:
            raise StorageUnavailable(f"Token redemption ledger does not support {dialect}")

        now = datetime.now(timezone.utc)
        table = DownloadTokenRedemption.__table__
        statement = (
            insert(table)
            .values(
                token_hash=token_hash(payload),
                user_id=payload.user_id,
                plugin_name=payload.plugin_name,
                download_count=payload.download_count + 1,
                first_redeemed_at=now,
                last_redeemed_at=now,
            )
            .on_conflict_do_update(
                index_elements=[table.c.token_hash],
                set_={
                    "download_count": table.c.download_count + 1,
                    "last_redeemed_at": now,
                },
                where=table.c.download_count < payload.max_downloads,
            )
            .returning(table.c.download_count)
        )
        try:
            result = await self.session.execute(statement)
            claimed = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Failed to record token redemption: {exc}") from exc

        if claimed is None:
            logger.info(
                "Download token for %s/%s has no redemptions left",
                payload.user_id, payload.plugin_name,
            )
        else:
            logger.info(
                "Recorded download token redemption %d/%d for %s/%s",
                claimed, payload.max_downloads, payload.user_id, payload.plugin_name,
            )
        return claimed
