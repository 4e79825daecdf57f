"""
Operator-facing reconciliation: listings, suggestions and the manual
mutations on bank transactions (match, allocate, unmatch, dismiss, hide).

Every mutation checks the match-state transition table before touching
anything, and the row version guards against two operators working on the
same transaction at once.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    AllocationError,
    ConcurrentModificationError,
    TransactionNotFoundError,
    ValidationError,
)
from app.modules.children.dto import ChildSummary, FeeResponse
from app.modules.children.service import FeeDirectoryService
from app.modules.known_ibans.service import KnownIBANService
from app.modules.matching.engine import MatchingEngine
from app.modules.matching.types import MatchedBy
from app.modules.reconciliation.dto import (
    AllocationItemModel,
    ChildTransactionSuggestion,
    FeeSuggestion,
    RescanResponse,
    SuggestionsResponse,
)
from app.modules.transactions.dto import TransactionListResponse, TransactionResponse
from app.modules.transactions.models import BankTransaction, MatchState
from app.modules.transactions.state import OPEN_STATES, ensure_transition, transition
from app.modules.warnings.models import ResolutionType, WarningKind
from app.utils.datetime import utc_now

logger = logging.getLogger(__name__)

SETTLED_STATES = (MatchState.MATCHED, MatchState.ALLOCATED)
CENT = Decimal("0.01")
MANUAL_CONFIDENCE = 1.0
# Upper bound of open transactions scored for one child
CHILD_SCAN_LIMIT = 500


def is_lock_conflict(error: OperationalError) -> bool:
    return "database is locked" in str(error.orig)


class ReconciliationService:
    def __init__(
        self,
        engine: Optional[MatchingEngine] = None,
        fee_directory: Optional[FeeDirectoryService] = None,
        known_ibans: Optional[KnownIBANService] = None,
    ):
        self.logger = logger
        self.known_ibans = known_ibans or KnownIBANService()
        self.fee_directory = fee_directory or FeeDirectoryService()
        self.engine = engine or MatchingEngine(
            known_ibans=self.known_ibans, fee_directory=self.fee_directory
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _visible_incoming(states: Sequence[MatchState]):
        return (
            BankTransaction.match_state.in_(list(states)),
            BankTransaction.amount > 0,
            BankTransaction.hidden.is_(False),
        )

    async def list_transactions(
        self, db: AsyncSession, states: Sequence[MatchState], limit: int = 50, offset: int = 0
    ) -> TransactionListResponse:
        conditions = self._visible_incoming(states)
        total = await db.scalar(select(func.count(BankTransaction.id)).where(*conditions))
        result = await db.execute(
            select(BankTransaction)
            .where(*conditions)
            .order_by(BankTransaction.booking_date.desc(), BankTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return TransactionListResponse(
            items=[TransactionResponse.model_validate(tx) for tx in result.scalars().all()],
            total=total or 0,
            limit=limit,
            offset=offset,
        )

    async def list_unmatched(self, db: AsyncSession, limit: int = 50, offset: int = 0) -> TransactionListResponse:
        return await self.list_transactions(db, OPEN_STATES, limit, offset)

    async def list_matched(self, db: AsyncSession, limit: int = 50, offset: int = 0) -> TransactionListResponse:
        return await self.list_transactions(db, SETTLED_STATES, limit, offset)

    async def get_transaction(self, db: AsyncSession, transaction_id: int) -> BankTransaction:
        transaction = await db.get(BankTransaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def suggestions(self, db: AsyncSession, transaction_id: int) -> SuggestionsResponse:
        """Ranked ways of settling the transaction; nothing is applied."""
        transaction = await self.get_transaction(db, transaction_id)
        outcome = await self.engine.evaluate(db, transaction)
        candidates = sorted(outcome.candidates, key=lambda c: c.confidence, reverse=True)
        return SuggestionsResponse(
            transaction_id=transaction.id,
            match_state=transaction.match_state,
            candidates=[
                FeeSuggestion(
                    child=ChildSummary.model_validate(candidate.child),
                    fees=[FeeResponse.model_validate(fee) for fee in candidate.fees],
                    total=candidate.total,
                    confidence=candidate.confidence,
                    matched_by=candidate.matched_by.value,
                )
                for candidate in candidates
            ],
        )

    async def child_suggestions(
        self,
        db: AsyncSession,
        child_id: int,
        min_confidence: float = 0.5,
        limit: int = 20,
    ) -> List[ChildTransactionSuggestion]:
        """Open transactions that probably pay for the given child."""
        child = await self.fee_directory.get_child(db, child_id)
        open_fees = await self.fee_directory.get_open_fees(db, child_id)

        result = await db.execute(
            select(BankTransaction)
            .where(*self._visible_incoming(OPEN_STATES))
            .order_by(BankTransaction.booking_date.desc(), BankTransaction.id.desc())
            .limit(CHILD_SCAN_LIMIT)
        )
        suggestions: List[ChildTransactionSuggestion] = []
        for transaction in result.scalars().all():
            scored = await self.engine.score_for_child(db, transaction, child, open_fees)
            if scored is None:
                continue
            confidence, matched_by, fee = scored
            if confidence < min_confidence:
                continue
            suggestions.append(
                ChildTransactionSuggestion(
                    transaction=TransactionResponse.model_validate(transaction),
                    confidence=confidence,
                    matched_by=matched_by.value,
                    fee_id=fee.id if fee else None,
                )
            )
        suggestions.sort(key=lambda s: (s.confidence, s.fee_id is not None), reverse=True)
        return suggestions[:limit]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _optimistic(self, db: AsyncSession, transaction_id: int):
        """
        Turn a lost race into a 409. The version check reports it as
        StaleDataError; SQLite refuses the write of a session that read before
        the other one committed with "database is locked".
        """
        try:
            yield
        except (StaleDataError, OperationalError) as e:
            if isinstance(e, OperationalError) and not is_lock_conflict(e):
                raise
            await db.rollback()
            self.logger.warning(f"Transaction {transaction_id} was modified concurrently")
            raise ConcurrentModificationError()

    async def _load(
        self, db: AsyncSession, transaction_id: int, expected_version: Optional[int]
    ) -> BankTransaction:
        transaction = await self.get_transaction(db, transaction_id)
        if expected_version is not None and transaction.version != expected_version:
            raise ConcurrentModificationError()
        return transaction

    async def manual_match(
        self,
        db: AsyncSession,
        transaction_id: int,
        fee_id: int,
        expected_version: Optional[int] = None,
    ) -> BankTransaction:
        """Book the whole transaction onto one fee chosen by the operator."""
        async with self._optimistic(db, transaction_id):
            transaction = await self._load(db, transaction_id, expected_version)
            ensure_transition(transaction, MatchState.MATCHED)

            fee = await self.fee_directory.get_fee(db, fee_id)
            if fee.is_paid:
                raise AllocationError(f"Fee {fee_id} is already paid")

            await self.engine.settle(
                db,
                transaction,
                [(fee, Decimal(transaction.amount))],
                state=MatchState.MATCHED,
                matched_by=MatchedBy.MANUAL,
                confidence=MANUAL_CONFIDENCE,
            )
            await db.commit()

        self.logger.info(f"Transaction {transaction_id} manually matched to fee {fee_id}")
        return transaction

    async def allocate(
        self,
        db: AsyncSession,
        transaction_id: int,
        items: Sequence[AllocationItemModel],
        expected_version: Optional[int] = None,
    ) -> BankTransaction:
        """
        Split the transaction across fees. The parts must add up to the
        transaction amount exactly; otherwise nothing changes.
        """
        async with self._optimistic(db, transaction_id):
            transaction = await self._load(db, transaction_id, expected_version)
            ensure_transition(transaction, MatchState.ALLOCATED)

            if not items:
                raise AllocationError("At least one allocation is required")
            fee_ids = [item.fee_id for item in items]
            if len(set(fee_ids)) != len(fee_ids):
                raise AllocationError("A fee may appear only once per allocation")
            if any(item.amount <= 0 for item in items):
                raise AllocationError("Allocation amounts must be positive")
            if any(item.amount != item.amount.quantize(CENT) for item in items):
                raise AllocationError("Allocation amounts must be whole cents")

            total = sum((item.amount for item in items), Decimal("0.00"))
            if total != Decimal(transaction.amount):
                raise AllocationError(
                    f"Allocations add up to {total}, transaction amount is {transaction.amount}"
                )

            # Money this transaction already put on a fee is available again
            own: Dict[int, Decimal] = {
                allocation.fee_id: Decimal(allocation.amount) for allocation in transaction.allocations
            }
            fees = []
            for item in items:
                fee = await self.fee_directory.get_fee(db, item.fee_id)
                available = fee.outstanding + own.get(fee.id, Decimal("0.00"))
                if item.amount > available:
                    raise AllocationError(
                        f"Fee {fee.id} has {available} outstanding, cannot allocate {item.amount}"
                    )
                fees.append((fee, item.amount))

            if transaction.allocations:
                await self.engine.ledger.release(db, transaction)

            await self.engine.settle(
                db,
                transaction,
                fees,
                state=MatchState.ALLOCATED,
                matched_by=MatchedBy.MANUAL,
                confidence=MANUAL_CONFIDENCE,
            )
            await db.commit()

        self.logger.info(f"Transaction {transaction_id} allocated across fees {fee_ids}")
        return transaction

    async def unmatch(
        self, db: AsyncSession, transaction_id: int, expected_version: Optional[int] = None
    ) -> BankTransaction:
        """Undo a match or allocation; fees stay paid only if other payments cover them."""
        async with self._optimistic(db, transaction_id):
            transaction = await self._load(db, transaction_id, expected_version)
            if transaction.match_state not in SETTLED_STATES:
                raise ValidationError(
                    f"Transaction {transaction_id} is {transaction.match_state.value}, nothing to unmatch"
                )
            ensure_transition(transaction, MatchState.UNMATCHED)

            await self.engine.ledger.release(db, transaction)
            transition(transaction, MatchState.UNMATCHED)
            transaction.matched_fee_id = None
            transaction.matched_child_id = None
            transaction.matched_amount = None
            transaction.matched_by = None
            transaction.match_confidence = None
            transaction.matched_at = None
            await self.engine.warnings.resolve_open_for_transaction(
                db,
                transaction.id,
                ResolutionType.DISMISSED,
                note="Transaction unmatched",
                kinds=[WarningKind.LATE_PAYMENT],
            )
            await db.commit()

        self.logger.info(f"Transaction {transaction_id} unmatched")
        return transaction

    async def dismiss(
        self,
        db: AsyncSession,
        transaction_id: int,
        blacklist_iban: bool = False,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> BankTransaction:
        async with self._optimistic(db, transaction_id):
            transaction = await self._load(db, transaction_id, expected_version)
            if blacklist_iban and not transaction.payer_iban:
                raise ValidationError(f"Transaction {transaction_id} has no payer IBAN to blacklist")
            transition(transaction, MatchState.DISMISSED)
            transaction.dismissed_at = utc_now()

            await self.engine.warnings.resolve_open_for_transaction(
                db, transaction.id, ResolutionType.DISMISSED, note=reason or "Transaction dismissed"
            )
            if blacklist_iban:
                await self.known_ibans.stage_blacklist(
                    db,
                    transaction.payer_iban,
                    payer_name=transaction.payer_name,
                    reason=reason,
                    source_transaction_id=transaction.id,
                )
            await db.commit()

        self.logger.info(
            f"Transaction {transaction_id} dismissed{' and payer IBAN blacklisted' if blacklist_iban else ''}"
        )
        return transaction

    async def set_hidden(
        self,
        db: AsyncSession,
        transaction_id: int,
        hidden: bool,
        expected_version: Optional[int] = None,
    ) -> BankTransaction:
        """Toggle visibility; the match state is left alone."""
        async with self._optimistic(db, transaction_id):
            transaction = await self._load(db, transaction_id, expected_version)
            if transaction.hidden == hidden:
                return transaction
            transaction.hidden = hidden
            transaction.hidden_at = utc_now() if hidden else None
            await db.commit()

        self.logger.info(f"Transaction {transaction_id} {'hidden' if hidden else 'unhidden'}")
        return transaction

    async def hide(self, db: AsyncSession, transaction_id: int, expected_version: Optional[int] = None):
        return await self.set_hidden(db, transaction_id, True, expected_version)

    async def unhide(self, db: AsyncSession, transaction_id: int, expected_version: Optional[int] = None):
        return await self.set_hidden(db, transaction_id, False, expected_version)

    async def rescan(self, db: AsyncSession) -> RescanResponse:
        """Run the matching engine again over every open, visible incoming transaction."""
        result = await db.execute(
            select(BankTransaction.id)
            .where(*self._visible_incoming(OPEN_STATES))
            .order_by(BankTransaction.booking_date, BankTransaction.id)
        )
        transaction_ids = list(result.scalars().all())

        response = RescanResponse(scanned=len(transaction_ids))
        for transaction_id in transaction_ids:
            try:
                transaction = await self.get_transaction(db, transaction_id)
                outcome = await self.engine.match(db, transaction)
                await db.commit()
            except Exception as e:
                await db.rollback()
                self.logger.error(f"Rescan of transaction {transaction_id} failed: {e}")
                response.failed += 1
                continue

            if outcome.state == MatchState.MATCHED:
                response.matched += 1
            elif outcome.state == MatchState.ALLOCATED:
                response.allocated += 1
            elif outcome.state == MatchState.SUGGESTED:
                response.suggested += 1
            else:
                response.unmatched += 1

        self.logger.info(
            f"Rescan of {response.scanned} transaction(s): {response.matched} matched, "
            f"{response.allocated} allocated, {response.suggested} suggested, {response.failed} failed"
        )
        return response
