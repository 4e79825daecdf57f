from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from app.modules.children.dto import FeeResponse
from app.modules.warnings.models import ResolutionType, WarningKind


class WarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: int
    kind: WarningKind
    message: str
    child_id: Optional[int] = None
    fee_id: Optional[int] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolution_type: Optional[ResolutionType] = None
    resolution_note: Optional[str] = None


class WarningDetailResponse(WarningResponse):
    """Open warning together with the transaction it was raised for."""

    booking_date: date
    payer_name: Optional[str] = None
    payer_iban: Optional[str] = None
    amount: Decimal
    child_name: Optional[str] = None


class DismissWarningModel(BaseModel):
    note: Optional[str] = Field(None, description="Why the warning is dismissed")


class LateFeeResolutionResponse(BaseModel):
    warning: WarningResponse
    reminder_fee: FeeResponse
