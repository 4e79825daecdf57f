from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from app.modules.children.models import Child, Fee
from app.modules.transactions.models import MatchState
from app.modules.warnings.models import WarningKind


class MatchedBy(str, Enum):
    """How the child behind a transaction was identified."""

    TRUSTED_IBAN = "trusted_iban"
    MEMBER_NUMBER = "member_number"
    NAME = "name"
    MANUAL = "manual"


TRUSTED_IBAN_CONFIDENCE = 0.99
MEMBER_NUMBER_CONFIDENCE = 0.95
COMBINED_FEE_BOOST = 0.02
MAX_COMBINED_CONFIDENCE = 0.99


@dataclass
class ChildCandidate:
    """A child the payment may belong to."""

    child: Child
    confidence: float
    matched_by: MatchedBy
    open_fees: List[Fee] = field(default_factory=list)


@dataclass
class FeeCandidate:
    """One way of settling the payment: a single fee or a fee with its reminder."""

    child: Child
    fees: List[Fee]
    confidence: float
    matched_by: MatchedBy

    @property
    def total(self) -> Decimal:
        return sum((fee.outstanding for fee in self.fees), Decimal("0.00"))


@dataclass
class WarningDraft:
    kind: WarningKind
    message: str
    child_id: Optional[int] = None
    fee_id: Optional[int] = None


@dataclass
class MatchOutcome:
    """Result of evaluating a transaction; applying it is a separate step."""

    state: MatchState
    children: List[ChildCandidate] = field(default_factory=list)
    candidates: List[FeeCandidate] = field(default_factory=list)
    selected: Optional[FeeCandidate] = None
    warning: Optional[WarningDraft] = None

    @property
    def decisive(self) -> bool:
        """The child was identified by account or member number, not by name."""
        return len(self.children) == 1 and self.children[0].matched_by in (
            MatchedBy.TRUSTED_IBAN,
            MatchedBy.MEMBER_NUMBER,
        )
