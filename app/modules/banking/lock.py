"""
Single-flight guard for sync passes.

A lease stored on the banking configuration row: acquired with a conditional
UPDATE (free or expired), released by token. A pass that dies without
releasing blocks new passes only until the lease expires.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.modules.banking.models import BankingConfig
from app.utils.datetime import as_utc, utc_now

logger = logging.getLogger(__name__)


class SyncLease:
    def __init__(self, ttl_minutes: Optional[int] = None):
        self.ttl = timedelta(minutes=ttl_minutes or config.sync_lock_ttl_minutes)

    async def acquire(self, db: AsyncSession, config_id: int) -> Optional[str]:
        """Returns the lease token, or None when another pass holds the lease."""
        now = utc_now()
        token = str(uuid.uuid4())
        result = await db.execute(
            update(BankingConfig)
            .where(
                BankingConfig.id == config_id,
                or_(
                    BankingConfig.sync_lock_token.is_(None),
                    BankingConfig.sync_lock_expires_at.is_(None),
                    BankingConfig.sync_lock_expires_at < now,
                ),
            )
            .values(sync_lock_token=token, sync_lock_expires_at=now + self.ttl)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount != 1:
            logger.info(f"Sync lease for banking config {config_id} is held by another pass")
            return None
        logger.debug(f"Acquired sync lease {token} for banking config {config_id}")
        return token

    async def release(self, db: AsyncSession, config_id: int, token: str) -> bool:
        result = await db.execute(
            update(BankingConfig)
            .where(BankingConfig.id == config_id, BankingConfig.sync_lock_token == token)
            .values(sync_lock_token=None, sync_lock_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount != 1:
            logger.warning(f"Sync lease {token} for banking config {config_id} was already gone")
            return False
        return True

    async def is_held(self, db: AsyncSession, banking_config: BankingConfig) -> bool:
        await db.refresh(banking_config)
        if banking_config.sync_lock_token is None or banking_config.sync_lock_expires_at is None:
            return False
        return as_utc(banking_config.sync_lock_expires_at) > utc_now()
