from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class ImportBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_name: str
    total_rows: int
    imported_count: int
    skipped_count: int = Field(..., description="Duplicates, outgoing and unreadable rows")
    matched_count: int
    warnings_count: int
    blacklisted_count: int
    failed_count: int
    uploaded_by: Optional[str] = None
    created_at: datetime


class ImportReceipt(ImportBatchResponse):
    """Batch counters plus what went wrong with individual rows."""

    errors: List[str] = []
