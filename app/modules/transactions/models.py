from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import List, Optional

from app.core.db.base import BaseModel
from app.utils.datetime import utc_now


class MatchState(str, Enum):
    UNMATCHED = "unmatched"
    SUGGESTED = "suggested"
    MATCHED = "matched"
    ALLOCATED = "allocated"
    DISMISSED = "dismissed"


class TransactionSource(str, Enum):
    SYNC = "sync"
    UPLOAD = "upload"
    MANUAL = "manual"


def _enum_values(enum):
    return [member.value for member in enum]


class BankTransaction(BaseModel):
    """
    Incoming bank transaction. Created once (dedup_key is unique) and never
    deleted; dismissal and hiding are flags.
    """

    __tablename__ = "bank_transactions"
    __table_args__ = (
        UniqueConstraint("dedup_key", name="uq_bank_transactions_dedup_key"),
        Index("idx_bank_transactions_state", "match_state", "hidden"),
        Index("idx_bank_transactions_booking_date", "booking_date"),
        Index("idx_bank_transactions_payer_iban", "payer_iban"),
    )

    booking_date: Mapped[date] = mapped_column(Date, nullable=False)

    value_date: Mapped[date] = mapped_column(Date, nullable=False)

    payer_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    payer_iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    source: Mapped[TransactionSource] = mapped_column(
        SAEnum(
            TransactionSource,
            name="transaction_source",
            native_enum=False,
            length=10,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    dedup_key: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="sha256 of the normalized transaction identity"
    )

    # Match state
    match_state: Mapped[MatchState] = mapped_column(
        SAEnum(
            MatchState,
            name="match_state",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        default=MatchState.UNMATCHED,
        nullable=False,
    )

    matched_fee_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fees.id"), nullable=True, index=True
    )

    matched_child_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("children.id"), nullable=True, index=True
    )

    matched_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    matched_by: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="trusted_iban, member_number, name, combined or manual"
    )

    match_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Visibility, independent of match_state
    hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    hidden_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    import_batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("import_batches.id"), nullable=True, index=True
    )

    sync_run_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("sync_runs.id"), nullable=True, index=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    allocations: Mapped[List["PaymentAllocation"]] = relationship(
        "PaymentAllocation",
        back_populates="transaction",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_incoming(self) -> bool:
        return Decimal(self.amount) > 0

    def __repr__(self) -> str:
        return (
            f"<BankTransaction(id={self.id}, amount={self.amount} {self.currency}, "
            f"state={self.match_state.value})>"
        )


class PaymentAllocation(BaseModel):
    """Part of a transaction's amount settled against one fee."""

    __tablename__ = "payment_allocations"
    __table_args__ = (
        UniqueConstraint("transaction_id", "fee_id", name="uq_payment_allocations_tx_fee"),
    )

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("bank_transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    fee_id: Mapped[int] = mapped_column(ForeignKey("fees.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    transaction: Mapped["BankTransaction"] = relationship(
        "BankTransaction", back_populates="allocations", lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<PaymentAllocation(tx={self.transaction_id}, fee={self.fee_id}, amount={self.amount})>"
