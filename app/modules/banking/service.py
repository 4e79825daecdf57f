"""
Sync orchestrator: one reconciliation pass per banking configuration.

    lease -> decrypt -> window -> acquire -> ingest (filter, dedup, persist,
    match, warn) -> history + checkpoint -> release

Decryption and acquisition failures end the pass without touching
last_sync_at, and so does anything unexpected: the run is recorded as failed
and a result is returned instead of an exception. Per-transaction failures
are counted and the pass goes on.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import config
from app.core.db.engine import AsyncSessionLocal
from app.core.exceptions import (
    AcquisitionError,
    BankingNotConfiguredError,
    SecretDecryptionError,
    SyncInProgressError,
)
from app.modules.banking.acquisition import (
    AcquisitionAdapter,
    BankCredentials,
    SyncWindow,
    build_acquisition_adapter,
)
from app.modules.banking.dto import (
    BankingStatusResponse,
    ConnectionTestResponse,
    SyncResult,
    SyncRunResponse,
)
from app.modules.banking.encryption import SecretCipher
from app.modules.banking.lock import SyncLease
from app.modules.banking.models import BankingConfig, SyncRun, SyncRunStatus
from app.modules.transactions.ingestion import IngestSummary, TransactionIngestor
from app.modules.transactions.models import TransactionSource
from app.utils.datetime import as_utc, utc_now

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    def __init__(
        self,
        ingestor: Optional[TransactionIngestor] = None,
        adapter: Optional[AcquisitionAdapter] = None,
        session_factory: Optional[async_sessionmaker] = None,
        lease: Optional[SyncLease] = None,
        cipher_factory: Callable[[], SecretCipher] = SecretCipher,
    ):
        self.logger = logger
        self.ingestor = ingestor or TransactionIngestor()
        self.adapter = adapter
        self.session_factory = session_factory or AsyncSessionLocal
        self.lease = lease or SyncLease()
        self.cipher_factory = cipher_factory
        # In-process handles for cancellation; the lease is the real guard
        self._running: Dict[int, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def get_config(self, db: AsyncSession) -> Optional[BankingConfig]:
        result = await db.execute(select(BankingConfig).order_by(BankingConfig.id).limit(1))
        return result.scalar_one_or_none()

    async def require_config(self, db: AsyncSession) -> BankingConfig:
        banking_config = await self.get_config(db)
        if banking_config is None:
            raise BankingNotConfiguredError("Banking is not configured")
        if not banking_config.sync_enabled:
            raise BankingNotConfiguredError("Bank sync is disabled")
        return banking_config

    def compute_window(
        self, banking_config: BankingConfig, now: Optional[datetime] = None
    ) -> SyncWindow:
        """[last_sync_at - backdate, now), or the initial lookback on the first run."""
        now = now or utc_now()
        if banking_config.last_sync_at is not None:
            start = as_utc(banking_config.last_sync_at) - timedelta(days=config.sync_backdate_days)
        else:
            start = now - timedelta(days=config.sync_initial_lookback_days)
        return SyncWindow(start=start, end=now)

    def _adapter(self) -> AcquisitionAdapter:
        return self.adapter or build_acquisition_adapter()

    def _credentials(self, banking_config: BankingConfig) -> BankCredentials:
        cipher = self.cipher_factory()
        return BankCredentials(
            bank_code=banking_config.bank_code,
            login_id=banking_config.login_id,
            secret=cipher.decrypt(banking_config.encrypted_secret),
            endpoint_url=banking_config.endpoint_url,
            account_number=banking_config.account_number,
        )

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    async def _begin(self, db: AsyncSession, trigger: str):
        banking_config = await self.require_config(db)
        token = await self.lease.acquire(db, banking_config.id)
        if token is None:
            raise SyncInProgressError()

        run = SyncRun(
            banking_config_id=banking_config.id,
            status=SyncRunStatus.RUNNING,
            trigger=trigger,
            started_at=utc_now(),
        )
        db.add(run)
        await db.commit()
        self.logger.info(f"Sync run {run.id} started ({trigger}) for banking config {banking_config.id}")
        return banking_config, run, token

    async def start(self, db: AsyncSession, trigger: str = "manual") -> SyncRunResponse:
        """Take the lease and run the pass in the background."""
        banking_config, run, token = await self._begin(db, trigger)
        config_id = banking_config.id

        task = asyncio.create_task(self._run_detached(config_id, run.id, token))
        self._running[config_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._running.get(config_id) is done:
                self._running.pop(config_id, None)

        task.add_done_callback(_forget)
        return SyncRunResponse.model_validate(run)

    async def sync_now(self, db: AsyncSession, trigger: str = "scheduled") -> SyncResult:
        """Take the lease and run the pass inline."""
        banking_config, run, token = await self._begin(db, trigger)
        return await self.run_pass(db, banking_config.id, run.id, token)

    async def cancel(self, db: AsyncSession) -> bool:
        banking_config = await self.get_config(db)
        if banking_config is None:
            return False
        task = self._running.get(banking_config.id)
        if task is None or task.done():
            return False
        task.cancel()
        self.logger.info(f"Cancellation requested for sync of banking config {banking_config.id}")
        return True

    async def _run_detached(self, config_id: int, run_id: int, token: str) -> None:
        async with self.session_factory() as db:
            await self.run_pass(db, config_id, run_id, token)

    # ------------------------------------------------------------------
    # The pass
    # ------------------------------------------------------------------

    async def run_pass(
        self, db: AsyncSession, config_id: int, run_id: int, token: str
    ) -> SyncResult:
        try:
            banking_config = await db.get(BankingConfig, config_id)
            run = await db.get(SyncRun, run_id)

            try:
                credentials = self._credentials(banking_config)
            except SecretDecryptionError as e:
                return await self._fail(db, banking_config, run, f"Secret decryption failed: {e}")

            window = self.compute_window(banking_config)
            adapter = self._adapter()
            run.window_start = window.start
            run.window_end = window.end
            run.acquisition_method = adapter.method
            await db.commit()

            try:
                items = await adapter.fetch(window, credentials)
            except AcquisitionError as e:
                return await self._fail(db, banking_config, run, str(e.detail), window)
            except Exception as e:
                self.logger.error(f"Acquisition for sync run {run_id} raised {e!r}", exc_info=True)
                return await self._fail(db, banking_config, run, f"Acquisition failed: {e}", window)

            summary = await self.ingestor.ingest_many(
                db, items, TransactionSource.SYNC, sync_run_id=run.id
            )
            # Per-item rollbacks expire loaded rows
            await db.refresh(banking_config)
            await db.refresh(run)
            return await self._complete(db, banking_config, run, window, len(items), summary)

        except asyncio.CancelledError:
            self.logger.warning(f"Sync run {run_id} cancelled; checkpoint not advanced")
            await db.rollback()
            await self._close_run(run_id, SyncRunStatus.CANCELLED, ["Cancelled"])
            raise
        except Exception as e:
            self.logger.error(f"Sync run {run_id} crashed: {e}", exc_info=True)
            await db.rollback()
            message = f"Unexpected error: {e}"
            await self._close_run(run_id, SyncRunStatus.FAILED, [message], config_id=config_id)
            return SyncResult(run_id=run_id, status=SyncRunStatus.FAILED, errors=[message])
        finally:
            await self._release(config_id, token)

    async def _complete(
        self,
        db: AsyncSession,
        banking_config: BankingConfig,
        run: SyncRun,
        window: SyncWindow,
        fetched: int,
        summary: IngestSummary,
    ) -> SyncResult:
        run.status = SyncRunStatus.SUCCESS
        run.finished_at = utc_now()
        run.fetched_count = fetched
        run.imported_count = summary.imported
        run.skipped_count = summary.skipped
        run.blacklisted_count = summary.blacklisted
        run.matched_count = summary.matched
        run.warnings_count = summary.warnings
        run.failed_count = summary.failed
        run.errors = summary.errors or None

        banking_config.last_sync_at = window.end
        banking_config.last_sync_error = (
            f"{summary.failed} transaction(s) failed" if summary.failed else None
        )
        await db.commit()

        self.logger.info(
            f"Sync run {run.id} completed: fetched={fetched} imported={summary.imported} "
            f"skipped={summary.skipped} blacklisted={summary.blacklisted} failed={summary.failed}"
        )
        return SyncResult(
            run_id=run.id,
            status=run.status,
            window_start=window.start,
            window_end=window.end,
            fetched=fetched,
            imported=summary.imported,
            skipped=summary.skipped,
            blacklisted=summary.blacklisted,
            matched=summary.matched,
            warnings=summary.warnings,
            failed=summary.failed,
            errors=summary.errors,
        )

    async def _fail(
        self,
        db: AsyncSession,
        banking_config: BankingConfig,
        run: SyncRun,
        message: str,
        window: Optional[SyncWindow] = None,
    ) -> SyncResult:
        self.logger.error(f"Sync run {run.id} failed: {message}")
        run.status = SyncRunStatus.FAILED
        run.finished_at = utc_now()
        run.errors = [message]
        banking_config.last_sync_error = message
        await db.commit()
        return SyncResult(
            run_id=run.id,
            status=SyncRunStatus.FAILED,
            window_start=window.start if window else None,
            window_end=window.end if window else None,
            errors=[message],
        )

    async def _close_run(
        self,
        run_id: int,
        status: SyncRunStatus,
        errors: List[str],
        config_id: Optional[int] = None,
    ) -> None:
        """
        Record the end of a run from a fresh session (the pass's own may be
        unusable). With config_id the first error also becomes last_sync_error.
        """
        async with self.session_factory() as db:
            run = await db.get(SyncRun, run_id)
            if run is None or run.status != SyncRunStatus.RUNNING:
                return
            run.status = status
            run.finished_at = utc_now()
            run.errors = errors
            if config_id is not None:
                banking_config = await db.get(BankingConfig, config_id)
                if banking_config is not None:
                    banking_config.last_sync_error = errors[0]
            await db.commit()

    async def _release(self, config_id: int, token: str) -> None:
        async with self.session_factory() as db:
            await self.lease.release(db, config_id, token)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def status(self, db: AsyncSession) -> BankingStatusResponse:
        banking_config = await self.get_config(db)
        if banking_config is None:
            return BankingStatusResponse(configured=False, acquisition_method=config.acquisition_method)

        last_run = await db.scalar(
            select(SyncRun)
            .where(SyncRun.banking_config_id == banking_config.id)
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(1)
        )
        task = self._running.get(banking_config.id)
        running = (task is not None and not task.done()) or await self.lease.is_held(db, banking_config)
        return BankingStatusResponse(
            configured=True,
            sync_enabled=banking_config.sync_enabled,
            bank_name=banking_config.bank_name,
            account_number=banking_config.account_number,
            acquisition_method=config.acquisition_method,
            last_sync_at=banking_config.last_sync_at,
            last_sync_error=banking_config.last_sync_error,
            sync_running=running,
            last_run=SyncRunResponse.model_validate(last_run) if last_run else None,
        )

    async def history(self, db: AsyncSession, limit: int = 20, offset: int = 0) -> List[SyncRunResponse]:
        result = await db.execute(
            select(SyncRun)
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [SyncRunResponse.model_validate(run) for run in result.scalars().all()]

    async def test_connection(self, db: AsyncSession) -> ConnectionTestResponse:
        """Decrypt the secret and ask for an empty window."""
        banking_config = await self.get_config(db)
        if banking_config is None:
            raise BankingNotConfiguredError("Banking is not configured")

        method = config.acquisition_method
        try:
            adapter = self._adapter()
            method = adapter.method
            credentials = self._credentials(banking_config)
            now = utc_now()
            transactions = await adapter.fetch(SyncWindow(start=now, end=now), credentials)
        except SecretDecryptionError as e:
            return ConnectionTestResponse(ok=False, acquisition_method=method, error=str(e))
        except AcquisitionError as e:
            return ConnectionTestResponse(ok=False, acquisition_method=method, error=str(e.detail))
        return ConnectionTestResponse(ok=True, acquisition_method=method, transactions=len(transactions))
