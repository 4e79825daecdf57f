from datetime import datetime
from enum import Enum
from sqlalchemy import JSON, Boolean, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from typing import Any, List, Optional

from app.core.db.base import BaseModel


class BankingConfig(BaseModel):
    """
    Bank access for the sync runner. The secret is stored encrypted; the
    sync_lock_* columns form a lease so only one pass runs per configuration
    and a crashed pass frees it once the lease expires.
    """

    __tablename__ = "banking_configs"

    bank_name: Mapped[str] = mapped_column(String, nullable=False)

    bank_code: Mapped[str] = mapped_column(String(20), nullable=False, comment="BLZ / BIC")

    login_id: Mapped[str] = mapped_column(String, nullable=False)

    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)

    endpoint_url: Mapped[str] = mapped_column(String, nullable=False)

    account_number: Mapped[str] = mapped_column(String(34), nullable=False)

    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="End of the last completed sync window"
    )

    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sync_lock_token: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    sync_lock_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<BankingConfig(bank='{self.bank_name}', account='{self.account_number}')>"


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncRun(BaseModel):
    """History row of one sync pass."""

    __tablename__ = "sync_runs"

    banking_config_id: Mapped[int] = mapped_column(
        ForeignKey("banking_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[SyncRunStatus] = mapped_column(
        SAEnum(
            SyncRunStatus,
            name="sync_run_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=SyncRunStatus.RUNNING,
        nullable=False,
    )

    trigger: Mapped[str] = mapped_column(String(20), default="manual", nullable=False)

    acquisition_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    window_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    window_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    fetched_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    imported_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    blacklisted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    matched_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    warnings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    errors: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncRun(id={self.id}, status={self.status.value}, imported={self.imported_count})>"
