from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from app.modules.known_ibans.models import IBANStatus


class BlacklistIBANModel(BaseModel):
    iban: str = Field(..., min_length=5, description="Payer IBAN to exclude from reconciliation")
    payer_name: Optional[str] = Field(None, description="Account holder name, for reference")
    reason: Optional[str] = Field(None, description="Why the account is excluded")


class LinkTrustedIBANModel(BaseModel):
    child_id: int = Field(..., description="Child the account pays for")
    payer_name: Optional[str] = Field(None, description="Account holder name, for reference")


class CreateTrustedIBANModel(LinkTrustedIBANModel):
    iban: str = Field(..., min_length=5, description="Payer IBAN")


class KnownIBANResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    iban: str
    status: IBANStatus
    child_id: Optional[int] = None
    payer_name: Optional[str] = None
    reason: Optional[str] = None
    source_transaction_id: Optional[int] = None
    created_at: datetime


class TrustedIBANResponse(BaseModel):
    iban: str
    child_id: int
    child_name: str
    member_number: str
    payer_name: Optional[str] = None
    transaction_count: int = Field(0, description="Transactions received from this account")
    created_at: datetime
