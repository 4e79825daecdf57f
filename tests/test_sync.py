"""Tests for the sync orchestrator, its lease and the scheduled job."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import dependencies
from app.core.exceptions import BankingNotConfiguredError, SyncInProgressError
from app.core.scheduler import jobs
from app.modules.banking.models import BankingConfig, SyncRun, SyncRunStatus
from app.modules.banking.service import SyncOrchestrator
from app.modules.transactions.models import BankTransaction
from app.utils.datetime import as_utc, utc_now
from tests.helpers import TRUSTED_IBAN, DirectoryFactory, FakeAcquisitionAdapter, make_tx


class TestComputeWindow:
    """Tests for SyncOrchestrator.compute_window."""

    async def test_initial_lookback(self, factory: DirectoryFactory, orchestrator: SyncOrchestrator) -> None:
        """Test the first pass looks back the configured number of days."""
        banking_config = await factory.banking_config()
        now = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)

        window = orchestrator.compute_window(banking_config, now)

        assert window.start == now - timedelta(days=90)
        assert window.end == now

    async def test_backdates_checkpoint(self, factory: DirectoryFactory, orchestrator: SyncOrchestrator) -> None:
        """Test later passes overlap the previous window by one day."""
        banking_config = await factory.banking_config(
            last_sync_at=datetime(2025, 5, 10, 6, 0, tzinfo=timezone.utc)
        )
        now = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)

        window = orchestrator.compute_window(banking_config, now)

        assert window.start == datetime(2025, 5, 9, 6, 0, tzinfo=timezone.utc)
        assert window.end == now


class TestSyncNow:
    """Tests for a complete inline pass."""

    async def test_successful_pass(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test transactions are ingested, matched and the checkpoint advanced."""
        child = await factory.child()
        await factory.fee(child, "45.40")
        await factory.trusted(child, TRUSTED_IBAN)
        banking_config = await factory.banking_config(secret="54321")
        adapter.transactions = [make_tx("45.40"), make_tx("-12.00"), make_tx("45.40")]

        result = await orchestrator.sync_now(db, trigger="manual")

        assert result.status == SyncRunStatus.SUCCESS
        assert result.fetched == 3
        assert result.imported == 1
        assert result.skipped == 2
        assert result.matched == 1
        assert adapter.credentials[0].secret == "54321"

        await db.refresh(banking_config)
        assert as_utc(banking_config.last_sync_at) == result.window_end
        assert banking_config.sync_lock_token is None
        assert banking_config.last_sync_error is None

        run = await db.get(SyncRun, result.run_id)
        assert run.acquisition_method == "fake"
        assert run.imported_count == 1
        assert run.finished_at is not None

    async def test_reimport_is_a_noop(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test overlapping windows do not duplicate transactions."""
        await factory.banking_config()
        adapter.transactions = [make_tx("45.40"), make_tx("30.00")]

        await orchestrator.sync_now(db)
        second = await orchestrator.sync_now(db)

        assert second.imported == 0
        assert second.skipped == 2
        rows = (await db.execute(select(BankTransaction))).scalars().all()
        assert len(rows) == 2
        assert adapter.calls[1].start < adapter.calls[0].end

    async def test_decryption_failure(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test an unreadable secret fails the pass before the bank is contacted."""
        banking_config = await factory.banking_config(encrypted_secret="garbage")

        result = await orchestrator.sync_now(db)

        assert result.status == SyncRunStatus.FAILED
        assert result.errors[0].startswith("Secret decryption failed")
        assert adapter.calls == []
        await db.refresh(banking_config)
        assert banking_config.last_sync_at is None
        assert banking_config.sync_lock_token is None

    async def test_acquisition_failure(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a failing bank keeps the checkpoint and records the error."""
        banking_config = await factory.banking_config()
        adapter.error = "PIN blocked"

        result = await orchestrator.sync_now(db)

        assert result.status == SyncRunStatus.FAILED
        assert result.errors == ["Bank acquisition service error: PIN blocked"]
        await db.refresh(banking_config)
        assert banking_config.last_sync_at is None
        assert banking_config.last_sync_error == "Bank acquisition service error: PIN blocked"

    async def test_adapter_crash_is_reported(
        self,
        db: AsyncSession,
        session_factory,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
        monkeypatch,
    ) -> None:
        """Test an adapter raising something unexpected still ends in a failed run and a result."""
        banking_config = await factory.banking_config()

        async def _broken_fetch(window, credentials):
            raise RuntimeError("runner returned a list")

        monkeypatch.setattr(adapter, "fetch", _broken_fetch)

        result = await orchestrator.sync_now(db)

        assert result.status == SyncRunStatus.FAILED
        assert result.errors == ["Acquisition failed: runner returned a list"]
        async with session_factory() as fresh:
            run = await fresh.get(SyncRun, result.run_id)
            stored = await fresh.get(BankingConfig, banking_config.id)
        assert run.status == SyncRunStatus.FAILED
        assert run.finished_at is not None
        assert stored.last_sync_at is None
        assert stored.sync_lock_token is None

    async def test_crash_while_ingesting_is_reported(
        self,
        db: AsyncSession,
        session_factory,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
        monkeypatch,
    ) -> None:
        """Test a failure outside the per-item handling closes the run instead of leaving it running."""
        banking_config = await factory.banking_config()
        adapter.transactions = [make_tx("45.40")]

        async def _broken_ingest(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(orchestrator.ingestor, "ingest_many", _broken_ingest)

        result = await orchestrator.sync_now(db)

        assert result.status == SyncRunStatus.FAILED
        assert result.errors == ["Unexpected error: disk full"]
        async with session_factory() as fresh:
            run = await fresh.get(SyncRun, result.run_id)
            stored = await fresh.get(BankingConfig, banking_config.id)
        assert run.status == SyncRunStatus.FAILED
        assert run.errors == ["Unexpected error: disk full"]
        assert stored.last_sync_error == "Unexpected error: disk full"
        assert stored.last_sync_at is None
        assert stored.sync_lock_token is None

    async def test_not_configured(self, db: AsyncSession, orchestrator: SyncOrchestrator) -> None:
        """Test a pass needs a banking configuration."""
        with pytest.raises(BankingNotConfiguredError):
            await orchestrator.sync_now(db)

    async def test_disabled(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test a disabled configuration is not synced."""
        await factory.banking_config(sync_enabled=False)

        with pytest.raises(BankingNotConfiguredError):
            await orchestrator.sync_now(db)


class TestSyncLease:
    """Tests for the single-flight lease."""

    async def test_held_lease_rejects_second_pass(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a pass is refused while another holds the lease."""
        banking_config = await factory.banking_config()
        token = await orchestrator.lease.acquire(db, banking_config.id)
        assert token is not None

        with pytest.raises(SyncInProgressError):
            await orchestrator.sync_now(db)

        assert adapter.calls == []
        assert await orchestrator.lease.release(db, banking_config.id, token)

    async def test_expired_lease_is_reclaimed(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a lease left behind by a crashed pass expires."""
        await factory.banking_config(
            sync_lock_token="left-by-crash",
            sync_lock_expires_at=utc_now() - timedelta(minutes=1),
        )

        result = await orchestrator.sync_now(db)

        assert result.status == SyncRunStatus.SUCCESS

    async def test_release_with_wrong_token(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test only the holder can release the lease."""
        banking_config = await factory.banking_config()
        token = await orchestrator.lease.acquire(db, banking_config.id)

        assert not await orchestrator.lease.release(db, banking_config.id, "someone-else")
        assert await orchestrator.lease.is_held(db, banking_config)
        assert await orchestrator.lease.release(db, banking_config.id, token)
        assert not await orchestrator.lease.is_held(db, banking_config)


class TestBackgroundSync:
    """Tests for start and cancel."""

    async def test_start_runs_in_background(
        self,
        db: AsyncSession,
        session_factory,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test start returns the running run and the pass completes on its own."""
        banking_config = await factory.banking_config()
        adapter.transactions = [make_tx("45.40")]

        run = await orchestrator.start(db, trigger="manual")
        assert run.status == SyncRunStatus.RUNNING
        await orchestrator._running[banking_config.id]

        async with session_factory() as fresh:
            stored = await fresh.get(SyncRun, run.id)
            assert stored.status == SyncRunStatus.SUCCESS
            assert stored.imported_count == 1
            status = await orchestrator.status(fresh)
            assert not status.sync_running
            assert status.last_run.id == run.id

    async def test_cancel(
        self,
        db: AsyncSession,
        session_factory,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a cancelled pass is recorded and releases the lease without a checkpoint."""
        banking_config = await factory.banking_config()
        adapter.transactions = [make_tx("45.40")]
        adapter.block = asyncio.Event()

        run = await orchestrator.start(db)
        task = orchestrator._running[banking_config.id]
        await adapter.started.wait()

        assert (await orchestrator.status(db)).sync_running
        assert await orchestrator.cancel(db)
        with pytest.raises(asyncio.CancelledError):
            await task

        async with session_factory() as fresh:
            stored = await fresh.get(SyncRun, run.id)
            assert stored.status == SyncRunStatus.CANCELLED
            assert stored.errors == ["Cancelled"]
            stored_config = await fresh.get(BankingConfig, banking_config.id)
            assert stored_config.sync_lock_token is None
            assert stored_config.last_sync_at is None
            assert (await fresh.execute(select(BankTransaction))).scalars().all() == []

    async def test_cancel_without_running_pass(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test cancel reports when there is nothing to cancel."""
        assert not await orchestrator.cancel(db)
        await factory.banking_config()
        assert not await orchestrator.cancel(db)


class TestStatusAndHistory:
    """Tests for status, history and test_connection."""

    async def test_status_unconfigured(self, db: AsyncSession, orchestrator: SyncOrchestrator) -> None:
        """Test status without a banking configuration."""
        status = await orchestrator.status(db)

        assert not status.configured
        assert status.last_run is None

    async def test_status_after_pass(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test status reports the last run and the checkpoint."""
        await factory.banking_config()
        result = await orchestrator.sync_now(db)

        status = await orchestrator.status(db)

        assert status.configured
        assert status.bank_name == "SozialBank"
        assert not status.sync_running
        assert status.last_run.id == result.run_id
        assert status.last_run.status == SyncRunStatus.SUCCESS
        assert status.last_sync_at is not None

    async def test_history_newest_first(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test the run history is ordered newest first."""
        await factory.banking_config()
        first = await orchestrator.sync_now(db)
        second = await orchestrator.sync_now(db)

        history = await orchestrator.history(db)

        assert [run.id for run in history] == [second.run_id, first.run_id]
        assert len(await orchestrator.history(db, limit=1)) == 1

    async def test_connection_ok(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test a working connection."""
        await factory.banking_config()

        response = await orchestrator.test_connection(db)

        assert response.ok
        assert response.acquisition_method == "fake"

    async def test_connection_error(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a failing connection is reported, not raised."""
        await factory.banking_config()
        adapter.error = "host unreachable"

        response = await orchestrator.test_connection(db)

        assert not response.ok
        assert "host unreachable" in response.error

    async def test_connection_bad_secret(
        self,
        db: AsyncSession,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test an undecryptable secret is reported without contacting the bank."""
        await factory.banking_config(encrypted_secret="garbage")

        response = await orchestrator.test_connection(db)

        assert not response.ok
        assert adapter.calls == []


class TestScheduledSync:
    """Tests for the scheduler job."""

    @pytest.fixture(autouse=True)
    def wire_job(self, monkeypatch: pytest.MonkeyPatch, session_factory, orchestrator: SyncOrchestrator) -> None:
        monkeypatch.setattr(jobs, "AsyncSessionLocal", session_factory)
        monkeypatch.setattr(dependencies, "get_sync_orchestrator", lambda: orchestrator)

    async def test_skips_when_not_configured(self) -> None:
        """Test the job is a no-op without a banking configuration."""
        outcome = await jobs.run_scheduled_sync()

        assert outcome["status"] == "skipped"

    async def test_runs_a_pass(
        self, factory: DirectoryFactory, adapter: FakeAcquisitionAdapter
    ) -> None:
        """Test the job runs an inline pass and summarizes it."""
        await factory.banking_config()
        adapter.transactions = [make_tx("45.40")]

        outcome = await jobs.run_scheduled_sync()

        assert outcome["status"] == "success"
        assert outcome["imported"] == 1

    async def test_skips_when_lease_held(
        self, db: AsyncSession, factory: DirectoryFactory, orchestrator: SyncOrchestrator
    ) -> None:
        """Test the job skips while a pass holds the lease."""
        banking_config = await factory.banking_config()
        await orchestrator.lease.acquire(db, banking_config.id)

        outcome = await jobs.run_scheduled_sync()

        assert outcome == {"status": "skipped", "reason": "in progress"}
