from datetime import datetime
from enum import Enum
from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from app.core.db.base import BaseModel


class WarningKind(str, Enum):
    NO_MATCHING_FEE = "NO_MATCHING_FEE"
    MULTIPLE_OPEN_FEES = "MULTIPLE_OPEN_FEES"
    LATE_PAYMENT = "LATE_PAYMENT"
    PARTIAL_PAYMENT = "PARTIAL_PAYMENT"
    OVERPAYMENT = "OVERPAYMENT"
    POSSIBLE_BULK = "POSSIBLE_BULK"
    UNEXPECTED_AMOUNT = "UNEXPECTED_AMOUNT"


class ResolutionType(str, Enum):
    DISMISSED = "dismissed"
    MATCHED = "matched"
    LATE_FEE_CREATED = "late_fee_created"


class TransactionWarning(BaseModel):
    """
    Reviewable anomaly raised for a transaction. Resolved, never deleted.
    At most one open warning of a kind exists per transaction.
    """

    __tablename__ = "transaction_warnings"
    __table_args__ = (
        Index(
            "uq_transaction_warnings_open_kind",
            "transaction_id",
            "kind",
            unique=True,
            sqlite_where=text("resolved_at IS NULL"),
            postgresql_where=text("resolved_at IS NULL"),
        ),
    )

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("bank_transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    kind: Mapped[WarningKind] = mapped_column(
        SAEnum(WarningKind, name="warning_kind", native_enum=False, length=30), nullable=False
    )

    message: Mapped[str] = mapped_column(Text, nullable=False)

    child_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("children.id", ondelete="SET NULL"), nullable=True, index=True
    )

    fee_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fees.id", ondelete="SET NULL"), nullable=True
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    resolution_type: Mapped[Optional[ResolutionType]] = mapped_column(
        SAEnum(
            ResolutionType,
            name="warning_resolution",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )

    resolution_note: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    def __repr__(self) -> str:
        return f"<TransactionWarning(tx={self.transaction_id}, kind={self.kind.value}, open={self.is_open})>"
