"""
Shared ingestion path for synced and uploaded transactions:
filter -> dedup -> persist -> match -> warn.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.known_ibans.service import KnownIBANService
from app.modules.matching.engine import MatchingEngine
from app.modules.transactions.dedup import DeduplicationGate, compute_dedup_key
from app.modules.transactions.dto import NormalizedTransaction
from app.modules.transactions.models import BankTransaction, MatchState, TransactionSource
from app.modules.warnings.models import TransactionWarning
from app.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class IngestStatus(str, Enum):
    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    OUTGOING = "outgoing"
    BLACKLISTED = "blacklisted"
    FAILED = "failed"


@dataclass
class IngestOutcome:
    status: IngestStatus
    transaction: Optional[BankTransaction] = None
    warnings_raised: int = 0
    error: Optional[str] = None


@dataclass
class IngestSummary:
    """Counters of one sync pass or upload."""

    total: int = 0
    imported: int = 0
    duplicates: int = 0
    outgoing: int = 0
    blacklisted: int = 0
    failed: int = 0
    matched: int = 0
    warnings: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.duplicates + self.outgoing

    def add(self, outcome: IngestOutcome) -> None:
        self.total += 1
        self.warnings += outcome.warnings_raised
        if outcome.status == IngestStatus.IMPORTED:
            self.imported += 1
            if outcome.transaction is not None and outcome.transaction.match_state in (
                MatchState.MATCHED,
                MatchState.ALLOCATED,
            ):
                self.matched += 1
        elif outcome.status == IngestStatus.DUPLICATE:
            self.duplicates += 1
        elif outcome.status == IngestStatus.OUTGOING:
            self.outgoing += 1
        elif outcome.status == IngestStatus.BLACKLISTED:
            self.blacklisted += 1
        else:
            self.failed += 1
            if outcome.error:
                self.errors.append(outcome.error)


class TransactionIngestor:
    def __init__(
        self,
        known_ibans: Optional[KnownIBANService] = None,
        matching_engine: Optional[MatchingEngine] = None,
        dedup_gate: Optional[DeduplicationGate] = None,
    ):
        self.logger = logger
        self.known_ibans = known_ibans or KnownIBANService()
        self.matching_engine = matching_engine or MatchingEngine(known_ibans=self.known_ibans)
        self.dedup_gate = dedup_gate or DeduplicationGate()

    async def ingest(
        self,
        db: AsyncSession,
        item: NormalizedTransaction,
        source: TransactionSource,
        import_batch_id: Optional[int] = None,
        sync_run_id: Optional[int] = None,
    ) -> IngestOutcome:
        """
        Run one record through the pipeline. Flushes only; the caller commits
        on success and rolls back on any exception.
        """
        if not item.is_incoming:
            return IngestOutcome(IngestStatus.OUTGOING)

        if await self.known_ibans.is_blacklisted(db, item.payer_iban):
            self.logger.debug(f"Skipping transaction from blacklisted IBAN {item.payer_iban}")
            return IngestOutcome(IngestStatus.BLACKLISTED)

        dedup_key = compute_dedup_key(item)
        if await self.dedup_gate.exists(db, dedup_key):
            return IngestOutcome(IngestStatus.DUPLICATE)

        transaction = BankTransaction(
            booking_date=item.booking_date,
            value_date=item.value_date or item.booking_date,
            payer_name=item.payer_name,
            payer_iban=item.payer_iban,
            description=item.description,
            amount=item.amount,
            currency=item.currency,
            imported_at=utc_now(),
            source=source,
            dedup_key=dedup_key,
            match_state=MatchState.UNMATCHED,
            hidden=False,
            import_batch_id=import_batch_id,
            sync_run_id=sync_run_id,
            allocations=[],
        )
        try:
            async with db.begin_nested():
                db.add(transaction)
        except IntegrityError:
            # Inserted by a concurrent ingestion path after the exists() check
            self.logger.info(f"Dedup key {dedup_key[:12]} inserted concurrently, skipping")
            return IngestOutcome(IngestStatus.DUPLICATE)

        await self.matching_engine.match(db, transaction)
        warnings_raised = await self._open_warning_count(db, transaction.id)

        return IngestOutcome(
            IngestStatus.IMPORTED, transaction=transaction, warnings_raised=warnings_raised
        )

    async def ingest_many(
        self,
        db: AsyncSession,
        items: List[NormalizedTransaction],
        source: TransactionSource,
        import_batch_id: Optional[int] = None,
        sync_run_id: Optional[int] = None,
    ) -> IngestSummary:
        """
        Ingest records one by one, committing each. A failing record is rolled
        back, logged and counted; it never stops the rest.
        """
        summary = IngestSummary()
        for index, item in enumerate(items):
            try:
                outcome = await self.ingest(
                    db, item, source, import_batch_id=import_batch_id, sync_run_id=sync_run_id
                )
                await db.commit()
            except Exception as e:
                await db.rollback()
                message = f"Record {index + 1} ({item.booking_date}, {item.amount} {item.currency}): {e}"
                self.logger.error(f"Failed to ingest transaction: {message}")
                outcome = IngestOutcome(IngestStatus.FAILED, error=message)
            summary.add(outcome)

        self.logger.info(
            f"Ingested {summary.total} record(s): {summary.imported} imported, "
            f"{summary.duplicates} duplicate, {summary.outgoing} outgoing, "
            f"{summary.blacklisted} blacklisted, {summary.failed} failed, {summary.matched} matched"
        )
        return summary

    @staticmethod
    async def _open_warning_count(db: AsyncSession, transaction_id: int) -> int:
        result = await db.execute(
            select(func.count(TransactionWarning.id)).where(
                TransactionWarning.transaction_id == transaction_id,
                TransactionWarning.resolved_at.is_(None),
            )
        )
        return result.scalar_one()
