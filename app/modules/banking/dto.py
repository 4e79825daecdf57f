from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from app.modules.banking.models import SyncRunStatus


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: SyncRunStatus
    trigger: str
    acquisition_method: Optional[str] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    started_at: datetime
    finished_at: Optional[datetime] = None
    fetched_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    blacklisted_count: int = 0
    matched_count: int = 0
    warnings_count: int = 0
    failed_count: int = 0
    errors: Optional[List[str]] = None


class SyncResult(BaseModel):
    """Aggregate outcome of one pass; failures are reported here, not raised."""

    run_id: int
    status: SyncRunStatus
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    fetched: int = 0
    imported: int = 0
    skipped: int = Field(0, description="Duplicates and outgoing transactions")
    blacklisted: int = 0
    matched: int = 0
    warnings: int = 0
    failed: int = 0
    errors: List[str] = []


class BankingStatusResponse(BaseModel):
    configured: bool
    sync_enabled: bool = False
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    acquisition_method: str
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    sync_running: bool = False
    last_run: Optional[SyncRunResponse] = None


class ConnectionTestResponse(BaseModel):
    ok: bool
    acquisition_method: str
    transactions: int = 0
    error: Optional[str] = None


class CancelSyncResponse(BaseModel):
    cancelled: bool
