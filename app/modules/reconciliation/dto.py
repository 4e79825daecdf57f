from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Optional

from app.modules.children.dto import ChildSummary, FeeResponse
from app.modules.transactions.dto import TransactionResponse
from app.modules.transactions.models import MatchState


class VersionedActionModel(BaseModel):
    expected_version: Optional[int] = Field(
        None, description="Version the client last saw; the action fails if the row moved on"
    )


class ManualMatchModel(VersionedActionModel):
    fee_id: int = Field(..., description="Fee the transaction pays")


class AllocationItemModel(BaseModel):
    fee_id: int
    amount: Decimal = Field(..., gt=0, description="Part of the transaction booked onto this fee")


class AllocateModel(VersionedActionModel):
    allocations: List[AllocationItemModel] = Field(..., min_length=1)


class DismissTransactionModel(VersionedActionModel):
    blacklist_iban: bool = Field(False, description="Also exclude the payer account from now on")
    reason: Optional[str] = None


class FeeSuggestion(BaseModel):
    child: ChildSummary
    fees: List[FeeResponse]
    total: Decimal
    confidence: float
    matched_by: str


class SuggestionsResponse(BaseModel):
    transaction_id: int
    match_state: MatchState
    candidates: List[FeeSuggestion]


class ChildTransactionSuggestion(BaseModel):
    transaction: TransactionResponse
    confidence: float
    matched_by: str
    fee_id: Optional[int] = Field(None, description="Open fee of the child with the same amount")


class RescanResponse(BaseModel):
    scanned: int = 0
    matched: int = 0
    allocated: int = 0
    suggested: int = 0
    unmatched: int = 0
    failed: int = 0
