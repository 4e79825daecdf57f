from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from typing import List, Optional

from app.core.db.base import Base, BaseModel


class FeeType(str, Enum):
    MEMBERSHIP = "MEMBERSHIP"
    FOOD = "FOOD"
    CHILDCARE = "CHILDCARE"
    REMINDER = "REMINDER"


# Fee types billed per month; only these can be paid late.
MONTHLY_FEE_TYPES = (FeeType.FOOD, FeeType.CHILDCARE)


child_parents = Table(
    "child_parents",
    Base.metadata,
    Column("child_id", ForeignKey("children.id", ondelete="CASCADE"), primary_key=True),
    Column("parent_id", ForeignKey("parents.id", ondelete="CASCADE"), primary_key=True),
)


class Child(BaseModel):
    """Child as seen by the fee directory (owned by the children domain)."""

    __tablename__ = "children"

    member_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )

    first_name: Mapped[str] = mapped_column(String, nullable=False)

    last_name: Mapped[str] = mapped_column(String, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parents: Mapped[List["Parent"]] = relationship(
        "Parent", secondary=child_parents, back_populates="children", lazy="selectin"
    )

    fees: Mapped[List["Fee"]] = relationship(
        "Fee", back_populates="child", lazy="noload"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Child(member_number='{self.member_number}', name='{self.full_name}')>"


class Parent(BaseModel):
    __tablename__ = "parents"

    first_name: Mapped[str] = mapped_column(String, nullable=False)

    last_name: Mapped[str] = mapped_column(String, nullable=False)

    children: Mapped[List["Child"]] = relationship(
        "Child", secondary=child_parents, back_populates="parents", lazy="noload"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Parent(name='{self.full_name}')>"


class Fee(BaseModel):
    """
    A fee owed for a child.

    paid_amount is the running total of payment allocations against the fee;
    paid_at is set once that total reaches the fee amount.
    """

    __tablename__ = "fees"
    __table_args__ = (
        Index("idx_fees_child_open", "child_id", "paid_at"),
    )

    child_id: Mapped[int] = mapped_column(
        ForeignKey("children.id"), nullable=False, index=True
    )

    fee_type: Mapped[FeeType] = mapped_column(
        SAEnum(FeeType, name="fee_type", native_enum=False, length=20), nullable=False
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    reminder_for_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fees.id"), nullable=True, index=True,
        comment="Original fee a REMINDER fee was raised for",
    )

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    child: Mapped["Child"] = relationship("Child", back_populates="fees", lazy="noload")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    @property
    def outstanding(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.paid_amount or 0)

    def __repr__(self) -> str:
        period = f"{self.year}-{self.month:02d}" if self.month else str(self.year)
        return f"<Fee(type={self.fee_type.value}, period={period}, amount={self.amount})>"
