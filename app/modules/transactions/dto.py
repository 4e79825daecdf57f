from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from app.modules.transactions.models import MatchState, TransactionSource
from app.utils.text import normalize_iban


class NormalizedTransaction(BaseModel):
    """Transaction as delivered by any acquisition path (sync runner or CSV)."""

    booking_date: date = Field(..., description="Date the bank booked the transaction")
    value_date: Optional[date] = Field(None, description="Value date, defaults to booking date")
    payer_name: Optional[str] = Field(None, description="Account holder of the counterparty")
    payer_iban: Optional[str] = Field(None, description="Counterparty IBAN")
    description: Optional[str] = Field(None, description="Remittance information")
    amount: Decimal = Field(..., description="Signed amount, positive for incoming payments")
    currency: str = Field("EUR", description="ISO currency code")

    @field_validator("payer_iban")
    @classmethod
    def _clean_iban(cls, value: Optional[str]) -> Optional[str]:
        return normalize_iban(value)

    @field_validator("payer_name", "description")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return (value or "EUR").strip().upper() or "EUR"

    @property
    def is_incoming(self) -> bool:
        return self.amount > 0


class AllocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    fee_id: int
    amount: Decimal


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_date: date
    value_date: date
    payer_name: Optional[str] = None
    payer_iban: Optional[str] = None
    description: Optional[str] = None
    amount: Decimal
    currency: str
    imported_at: datetime
    source: TransactionSource
    match_state: MatchState
    matched_fee_id: Optional[int] = None
    matched_child_id: Optional[int] = None
    matched_amount: Optional[Decimal] = None
    matched_by: Optional[str] = None
    match_confidence: Optional[float] = None
    matched_at: Optional[datetime] = None
    hidden: bool
    version: int = Field(..., description="Row version for optimistic concurrency")
    allocations: List[AllocationResponse] = []


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    total: int
    limit: int
    offset: int
