"""Match-state transition table for bank transactions."""

from typing import Dict, FrozenSet

from app.core.exceptions import IllegalTransitionError
from app.modules.transactions.models import BankTransaction, MatchState

TRANSITIONS: Dict[MatchState, FrozenSet[MatchState]] = {
    MatchState.UNMATCHED: frozenset(
        {MatchState.SUGGESTED, MatchState.MATCHED, MatchState.ALLOCATED, MatchState.DISMISSED}
    ),
    MatchState.SUGGESTED: frozenset(
        {
            MatchState.UNMATCHED,
            MatchState.SUGGESTED,
            MatchState.MATCHED,
            MatchState.ALLOCATED,
            MatchState.DISMISSED,
        }
    ),
    # A confirmed match is only undone through an explicit unmatch, or split further
    MatchState.MATCHED: frozenset({MatchState.UNMATCHED, MatchState.ALLOCATED}),
    MatchState.ALLOCATED: frozenset({MatchState.UNMATCHED}),
    MatchState.DISMISSED: frozenset(),
}

# States the matching engine may still change on its own
OPEN_STATES = (MatchState.UNMATCHED, MatchState.SUGGESTED)


def can_transition(current: MatchState, target: MatchState) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(transaction: BankTransaction, target: MatchState) -> None:
    """Raise IllegalTransitionError unless the transaction may move to target."""
    if transaction.amount is not None and not transaction.is_incoming:
        raise IllegalTransitionError(transaction.match_state.value, target.value)
    if not can_transition(transaction.match_state, target):
        raise IllegalTransitionError(transaction.match_state.value, target.value)


def transition(transaction: BankTransaction, target: MatchState) -> None:
    ensure_transition(transaction, target)
    transaction.match_state = target
