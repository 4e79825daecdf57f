"""Tests for the match-state transition table."""

from decimal import Decimal

import pytest

from app.core.exceptions import IllegalTransitionError
from app.modules.transactions.models import BankTransaction, MatchState
from app.modules.transactions.state import can_transition, ensure_transition, transition


def _tx(state: MatchState, amount: str = "45.40") -> BankTransaction:
    return BankTransaction(amount=Decimal(amount), match_state=state)


class TestCanTransition:
    """Tests for the allowed transitions."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (MatchState.UNMATCHED, MatchState.SUGGESTED),
            (MatchState.UNMATCHED, MatchState.MATCHED),
            (MatchState.UNMATCHED, MatchState.DISMISSED),
            (MatchState.SUGGESTED, MatchState.SUGGESTED),
            (MatchState.SUGGESTED, MatchState.ALLOCATED),
            (MatchState.MATCHED, MatchState.UNMATCHED),
            (MatchState.MATCHED, MatchState.ALLOCATED),
            (MatchState.ALLOCATED, MatchState.UNMATCHED),
        ],
    )
    def test_allowed(self, current: MatchState, target: MatchState) -> None:
        """Test the forward path and explicit unmatch are allowed."""
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (MatchState.MATCHED, MatchState.DISMISSED),
            (MatchState.ALLOCATED, MatchState.DISMISSED),
            (MatchState.ALLOCATED, MatchState.MATCHED),
            (MatchState.MATCHED, MatchState.SUGGESTED),
            (MatchState.UNMATCHED, MatchState.UNMATCHED),
        ],
    )
    def test_rejected(self, current: MatchState, target: MatchState) -> None:
        """Test settled transactions cannot be dismissed or moved sideways."""
        assert not can_transition(current, target)

    def test_dismissed_is_terminal(self) -> None:
        """Test nothing leaves the dismissed state."""
        for target in MatchState:
            assert not can_transition(MatchState.DISMISSED, target)


class TestEnsureTransition:
    """Tests for ensure_transition and transition."""

    def test_transition_changes_state(self) -> None:
        """Test a legal transition is applied."""
        tx = _tx(MatchState.UNMATCHED)

        transition(tx, MatchState.MATCHED)

        assert tx.match_state == MatchState.MATCHED

    def test_illegal_transition_raises(self) -> None:
        """Test an illegal transition raises and leaves the state alone."""
        tx = _tx(MatchState.DISMISSED)

        with pytest.raises(IllegalTransitionError) as exc_info:
            transition(tx, MatchState.MATCHED)

        assert exc_info.value.status_code == 422
        assert exc_info.value.current == "dismissed"
        assert tx.match_state == MatchState.DISMISSED

    def test_outgoing_transaction_never_moves(self) -> None:
        """Test outgoing transactions cannot enter the matching states."""
        tx = _tx(MatchState.UNMATCHED, amount="-45.40")

        with pytest.raises(IllegalTransitionError):
            ensure_transition(tx, MatchState.MATCHED)
