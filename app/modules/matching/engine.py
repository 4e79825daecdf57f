"""
Matching engine: resolves an incoming transaction to a child and an open fee.

Stages, first decisive one wins:
    1. trusted payer IBAN           -> that child
    2. member number in the text    -> that child
    3. fuzzy payer/parent names     -> every child above the threshold
Fees of the candidate children are then compared against the amount. Exactly
one equal fee is a match, a single fee+reminder pair is an allocation, and
anything else is left as a suggestion for an operator. A payment from a
trusted account that settles nothing gets a warning saying why (bulk, partial,
overpayment, no open fee, no active child).
"""

import logging
import re
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.modules.children.models import Child, Fee
from app.modules.children.service import FeeDirectoryService
from app.modules.known_ibans.service import KnownIBANService
from app.modules.matching.similarity import name_similarity
from app.modules.matching.types import (
    COMBINED_FEE_BOOST,
    MAX_COMBINED_CONFIDENCE,
    MEMBER_NUMBER_CONFIDENCE,
    TRUSTED_IBAN_CONFIDENCE,
    ChildCandidate,
    FeeCandidate,
    MatchedBy,
    MatchOutcome,
    WarningDraft,
)
from app.modules.transactions.allocations import FeeLedger
from app.modules.transactions.models import BankTransaction, MatchState
from app.modules.transactions.state import OPEN_STATES, transition
from app.modules.warnings.models import ResolutionType, WarningKind
from app.modules.warnings.service import WarningService
from app.utils.datetime import utc_now
from app.utils.text import normalize_match_text

logger = logging.getLogger(__name__)

# Name matches never outrank identification by account or member number
MAX_NAME_CONFIDENCE = 0.93


@lru_cache(maxsize=8)
def _member_pattern(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


def extract_member_numbers(text: str, pattern: Optional[str] = None) -> List[str]:
    """All member-number tokens in the normalized text, in order of appearance."""
    compiled = _member_pattern(pattern or config.member_number_pattern)
    tokens: List[str] = []
    for match in compiled.finditer(normalize_match_text(text)):
        token = match.group(1) if compiled.groups else match.group(0)
        if token and token not in tokens:
            tokens.append(token)
    return tokens


def match_text(transaction: BankTransaction) -> str:
    return " ".join(part for part in (transaction.payer_name, transaction.description) if part)


class MatchingEngine:
    def __init__(
        self,
        known_ibans: Optional[KnownIBANService] = None,
        fee_directory: Optional[FeeDirectoryService] = None,
        warnings: Optional[WarningService] = None,
        ledger: Optional[FeeLedger] = None,
    ):
        self.logger = logger
        self.known_ibans = known_ibans or KnownIBANService()
        self.fee_directory = fee_directory or FeeDirectoryService()
        self.warnings = warnings or WarningService(self.fee_directory)
        self.ledger = ledger or FeeLedger()

    # ------------------------------------------------------------------
    # Child resolution
    # ------------------------------------------------------------------

    async def find_children(
        self, db: AsyncSession, transaction: BankTransaction
    ) -> List[ChildCandidate]:
        trusted_child_id = await self.known_ibans.lookup_trusted(db, transaction.payer_iban)
        if trusted_child_id is not None:
            child = await db.get(Child, trusted_child_id)
            if child is not None and child.is_active:
                return [ChildCandidate(child, TRUSTED_IBAN_CONFIDENCE, MatchedBy.TRUSTED_IBAN)]

        for token in extract_member_numbers(match_text(transaction)):
            child = await self.fee_directory.get_child_by_member_number(db, token)
            if child is not None:
                return [ChildCandidate(child, MEMBER_NUMBER_CONFIDENCE, MatchedBy.MEMBER_NUMBER)]

        candidates: List[ChildCandidate] = []
        for child in await self.fee_directory.get_children_with_open_fees(db):
            score = self.name_score(transaction, child)
            if score >= config.name_similarity_threshold:
                candidates.append(
                    ChildCandidate(child, round(min(score, MAX_NAME_CONFIDENCE), 4), MatchedBy.NAME)
                )
        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)
        return candidates

    @staticmethod
    def name_score(transaction: BankTransaction, child: Child) -> float:
        """Best similarity of the payer name to a parent, or of the text to the child."""
        scores = [
            name_similarity(transaction.payer_name, parent.first_name, parent.last_name)
            for parent in child.parents
        ]
        scores.append(name_similarity(transaction.description, child.first_name, child.last_name))
        return max(scores)

    # ------------------------------------------------------------------
    # Evaluation (read only)
    # ------------------------------------------------------------------

    async def evaluate(self, db: AsyncSession, transaction: BankTransaction) -> MatchOutcome:
        if not transaction.is_incoming:
            return MatchOutcome(state=MatchState.UNMATCHED)

        children = await self.find_children(db, transaction)
        if not children:
            return MatchOutcome(
                state=MatchState.UNMATCHED,
                warning=await self._orphaned_trusted_warning(db, transaction),
            )

        fees_by_child = await self.fee_directory.get_open_fees_by_child(
            db, [candidate.child.id for candidate in children]
        )
        for candidate in children:
            candidate.open_fees = fees_by_child.get(candidate.child.id, [])

        amount = Decimal(transaction.amount)
        outcome = MatchOutcome(state=MatchState.SUGGESTED, children=children)

        exact = [
            FeeCandidate(candidate.child, [fee], candidate.confidence, candidate.matched_by)
            for candidate in children
            for fee in candidate.open_fees
            if fee.outstanding == amount
        ]
        if len(exact) == 1:
            outcome.state = MatchState.MATCHED
            outcome.selected = exact[0]
            outcome.candidates = exact
            return outcome

        if len(exact) > 1:
            outcome.candidates = exact
            if outcome.decisive:
                child = children[0].child
                outcome.warning = WarningDraft(
                    kind=WarningKind.MULTIPLE_OPEN_FEES,
                    message=(
                        f"{len(exact)} open fees of {amount} {transaction.currency} "
                        f"for {child.full_name}, pick one"
                    ),
                    child_id=child.id,
                )
            return outcome

        combined = self._combined_candidates(children, amount)
        if len(combined) == 1:
            outcome.state = MatchState.ALLOCATED
            outcome.selected = combined[0]
            outcome.candidates = combined
            return outcome
        if combined:
            outcome.candidates = combined
            return outcome

        # A child, but nothing that adds up: show its open fees for manual work
        outcome.candidates = [
            FeeCandidate(candidate.child, [fee], candidate.confidence, candidate.matched_by)
            for candidate in children
            for fee in candidate.open_fees
        ]
        if children[0].matched_by == MatchedBy.TRUSTED_IBAN:
            outcome.warning = self._amount_warning(children[0], amount, transaction.currency)
        return outcome

    @staticmethod
    def bulk_count(amount: Decimal) -> int:
        """
        Number of regular payments the amount could bundle: an exact multiple
        (two or more) of the food fee, the membership fee or food fee plus
        reminder. 1 when it is none of these.
        """
        references = (
            Decimal(config.food_fee_amount),
            Decimal(config.membership_fee_amount),
            Decimal(config.food_fee_amount) + Decimal(config.late_fee_amount),
        )
        for reference in references:
            if reference <= 0 or amount < reference * 2:
                continue
            if amount % reference == 0:
                return int(amount / reference)
        return 1

    def _amount_warning(
        self, candidate: ChildCandidate, amount: Decimal, currency: str
    ) -> WarningDraft:
        """Why a payment from a trusted account did not settle anything."""
        child = candidate.child
        count = self.bulk_count(amount)
        if count > 1:
            return WarningDraft(
                kind=WarningKind.POSSIBLE_BULK,
                message=f"{amount} {currency} for {child.full_name} may bundle {count} payments",
                child_id=child.id,
            )

        if candidate.open_fees:
            fee = candidate.open_fees[0]
            kind = WarningKind.PARTIAL_PAYMENT if amount < fee.outstanding else WarningKind.OVERPAYMENT
            label = "Partial payment" if kind == WarningKind.PARTIAL_PAYMENT else "Overpayment"
            return WarningDraft(
                kind=kind,
                message=(
                    f"{label} for {child.full_name}: received {amount} {currency}, "
                    f"expected {fee.outstanding}"
                ),
                child_id=child.id,
                fee_id=fee.id,
            )

        return WarningDraft(
            kind=WarningKind.NO_MATCHING_FEE,
            message=f"No open fee for {child.full_name} ({amount} {currency})",
            child_id=child.id,
        )

    async def _orphaned_trusted_warning(
        self, db: AsyncSession, transaction: BankTransaction
    ) -> Optional[WarningDraft]:
        """A trusted account whose child is gone or inactive still deserves a look."""
        child_id = await self.known_ibans.lookup_trusted(db, transaction.payer_iban)
        if child_id is None:
            return None
        child = await db.get(Child, child_id)
        return WarningDraft(
            kind=WarningKind.UNEXPECTED_AMOUNT,
            message=(
                f"Payment of {transaction.amount} {transaction.currency} from a trusted account "
                f"without an active child"
            ),
            child_id=child.id if child is not None else None,
        )

    @staticmethod
    def _combined_candidates(
        children: Sequence[ChildCandidate], amount: Decimal
    ) -> List[FeeCandidate]:
        """Fee plus its own reminder fee adding up to the amount."""
        combined: List[FeeCandidate] = []
        for candidate in children:
            open_by_id: Dict[int, Fee] = {fee.id: fee for fee in candidate.open_fees}
            for reminder in candidate.open_fees:
                original = open_by_id.get(reminder.reminder_for_id) if reminder.reminder_for_id else None
                if original is None:
                    continue
                if original.outstanding + reminder.outstanding != amount:
                    continue
                combined.append(
                    FeeCandidate(
                        candidate.child,
                        [original, reminder],
                        min(candidate.confidence + COMBINED_FEE_BOOST, MAX_COMBINED_CONFIDENCE),
                        candidate.matched_by,
                    )
                )
        return combined

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    async def match(self, db: AsyncSession, transaction: BankTransaction) -> MatchOutcome:
        """
        Evaluate the transaction and apply the outcome. Only open transactions
        (unmatched/suggested) are touched. Flushes, never commits.
        """
        if transaction.match_state not in OPEN_STATES:
            return MatchOutcome(state=transaction.match_state)

        outcome = await self.evaluate(db, transaction)

        if outcome.selected is not None:
            selected = outcome.selected
            await self.settle(
                db,
                transaction,
                [(fee, fee.outstanding) for fee in selected.fees],
                state=outcome.state,
                matched_by=selected.matched_by,
                confidence=selected.confidence,
            )
            self.logger.info(
                f"Transaction {transaction.id} {outcome.state.value} to fee(s) "
                f"{[fee.id for fee in selected.fees]} of child {selected.child.id} "
                f"via {selected.matched_by.value} ({selected.confidence:.2f})"
            )
        elif outcome.state == MatchState.SUGGESTED:
            transition(transaction, MatchState.SUGGESTED)
            self.logger.info(
                f"Transaction {transaction.id} suggested: {len(outcome.children)} child(ren), "
                f"{len(outcome.candidates)} fee candidate(s)"
            )
        elif transaction.match_state != MatchState.UNMATCHED:
            transition(transaction, MatchState.UNMATCHED)

        if outcome.warning is not None:
            await self.warnings.raise_warning(
                db,
                transaction_id=transaction.id,
                kind=outcome.warning.kind,
                message=outcome.warning.message,
                child_id=outcome.warning.child_id,
                fee_id=outcome.warning.fee_id,
            )

        await db.flush()
        return outcome

    async def settle(
        self,
        db: AsyncSession,
        transaction: BankTransaction,
        allocations: Sequence[Tuple[Fee, Decimal]],
        state: MatchState,
        matched_by: MatchedBy,
        confidence: Optional[float] = None,
    ) -> None:
        """
        Book the transaction onto fees and run the post-match actions:
        resolve its open warnings, trust an unknown payer IBAN for the child
        and check for a late payment.
        """
        transition(transaction, state)

        fees = [fee for fee, _ in allocations]
        for fee, amount in allocations:
            self.ledger.settle(transaction, fee, amount)

        child_ids = {fee.child_id for fee in fees}
        child_id = child_ids.pop() if len(child_ids) == 1 else None

        transaction.matched_fee_id = fees[0].id if fees else None
        transaction.matched_child_id = child_id
        transaction.matched_amount = sum((Decimal(amount) for _, amount in allocations), Decimal("0.00"))
        transaction.matched_by = matched_by.value
        transaction.match_confidence = confidence
        transaction.matched_at = utc_now()
        await db.flush()

        await self.warnings.resolve_open_for_transaction(
            db, transaction.id, ResolutionType.MATCHED, note=f"{state.value} via {matched_by.value}"
        )
        if child_id is not None:
            await self.known_ibans.register_trusted_if_unknown(
                db,
                transaction.payer_iban,
                child_id,
                payer_name=transaction.payer_name,
                source_transaction_id=transaction.id,
            )
        await self.warnings.check_late_payment(db, transaction, fees)

    # ------------------------------------------------------------------
    # Per-child scoring (child suggestions view)
    # ------------------------------------------------------------------

    async def score_for_child(
        self,
        db: AsyncSession,
        transaction: BankTransaction,
        child: Child,
        open_fees: Sequence[Fee],
    ) -> Optional[Tuple[float, MatchedBy, Optional[Fee]]]:
        """How likely the transaction pays for this particular child."""
        if not transaction.is_incoming:
            return None

        if await self.known_ibans.lookup_trusted(db, transaction.payer_iban) == child.id:
            confidence, matched_by = TRUSTED_IBAN_CONFIDENCE, MatchedBy.TRUSTED_IBAN
        elif child.member_number in extract_member_numbers(match_text(transaction)):
            confidence, matched_by = MEMBER_NUMBER_CONFIDENCE, MatchedBy.MEMBER_NUMBER
        else:
            score = self.name_score(transaction, child)
            if score <= 0:
                return None
            confidence, matched_by = min(score, MAX_NAME_CONFIDENCE), MatchedBy.NAME

        amount = Decimal(transaction.amount)
        fee = next((fee for fee in open_fees if fee.outstanding == amount), None)
        if fee is not None and matched_by == MatchedBy.NAME:
            confidence = min(confidence + 0.05, MAX_NAME_CONFIDENCE)
        return round(confidence, 4), matched_by, fee
