from datetime import datetime
from enum import Enum
from sqlalchemy import CheckConstraint, DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from sqlalchemy import func

from app.core.db.base import Base
from app.utils.datetime import utc_now


class IBANStatus(str, Enum):
    BLACKLISTED = "blacklisted"
    TRUSTED = "trusted"


class KnownIBAN(Base):
    """Bank account identifier the reconciliation core already knows about."""

    __tablename__ = "known_ibans"
    __table_args__ = (
        CheckConstraint(
            "(status = 'trusted' AND child_id IS NOT NULL) OR (status = 'blacklisted')",
            name="ck_known_ibans_trusted_child",
        ),
    )

    iban: Mapped[str] = mapped_column(String(34), primary_key=True)

    status: Mapped[IBANStatus] = mapped_column(
        SAEnum(
            IBANStatus,
            name="iban_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        index=True,
    )

    child_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("children.id", ondelete="SET NULL"), nullable=True, index=True
    )

    payer_name: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, comment="Account holder name as last seen on a transaction"
    )

    reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    source_transaction_id: Mapped[Optional[int]] = mapped_column(
        nullable=True, comment="Transaction that caused the entry, if any"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<KnownIBAN(iban='{self.iban}', status={self.status.value}, child_id={self.child_id})>"
