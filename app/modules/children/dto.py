from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from app.modules.children.models import FeeType


class ChildSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_number: str
    first_name: str
    last_name: str


class FeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Fee ID")
    child_id: int
    fee_type: FeeType
    year: int
    month: Optional[int] = None
    amount: Decimal
    due_date: date
    reminder_for_id: Optional[int] = Field(None, description="Fee this reminder was raised for")
    paid_amount: Decimal
    paid_at: Optional[datetime] = None
    is_paid: bool
