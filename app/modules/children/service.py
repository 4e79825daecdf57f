import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ChildNotFoundError, FeeNotFoundError
from app.modules.children.models import Child, Fee, FeeType
from app.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class FeeDirectoryService:
    """
    Read access to children, their parents and their fees.

    The children domain owns these records; reconciliation only reads them,
    settles fees through payment allocations and raises reminder fees.
    """

    def __init__(self):
        self.logger = logger

    async def get_child(self, db: AsyncSession, child_id: int) -> Child:
        child = await db.get(Child, child_id)
        if child is None:
            raise ChildNotFoundError(child_id)
        return child

    async def get_child_by_member_number(
        self, db: AsyncSession, member_number: str
    ) -> Optional[Child]:
        result = await db.execute(
            select(Child).where(
                Child.member_number == member_number, Child.is_active.is_(True)
            )
        )
        return result.scalar_one_or_none()

    async def get_fee(self, db: AsyncSession, fee_id: int) -> Fee:
        fee = await db.get(Fee, fee_id)
        if fee is None:
            raise FeeNotFoundError(fee_id)
        return fee

    async def get_open_fees(self, db: AsyncSession, child_id: int) -> List[Fee]:
        """Unpaid fees of a child, oldest due date first."""
        result = await db.execute(
            select(Fee)
            .where(Fee.child_id == child_id, Fee.paid_at.is_(None))
            .order_by(Fee.due_date, Fee.id)
        )
        return list(result.scalars().all())

    async def get_open_fees_by_child(
        self, db: AsyncSession, child_ids: List[int]
    ) -> Dict[int, List[Fee]]:
        if not child_ids:
            return {}
        result = await db.execute(
            select(Fee)
            .where(Fee.child_id.in_(child_ids), Fee.paid_at.is_(None))
            .order_by(Fee.due_date, Fee.id)
        )
        fees_by_child: Dict[int, List[Fee]] = {child_id: [] for child_id in child_ids}
        for fee in result.scalars().all():
            fees_by_child[fee.child_id].append(fee)
        return fees_by_child

    async def get_children_with_open_fees(self, db: AsyncSession) -> List[Child]:
        """Active children owing at least one fee, parents loaded."""
        open_fee_children = select(Fee.child_id).where(Fee.paid_at.is_(None))
        result = await db.execute(
            select(Child)
            .where(Child.is_active.is_(True), Child.id.in_(open_fee_children))
            .order_by(Child.id)
        )
        return list(result.scalars().all())

    async def get_children_by_ids(self, db: AsyncSession, child_ids: List[int]) -> Dict[int, Child]:
        if not child_ids:
            return {}
        result = await db.execute(select(Child).where(Child.id.in_(child_ids)))
        return {child.id: child for child in result.scalars().all()}

    async def create_reminder_fee(
        self,
        db: AsyncSession,
        original: Fee,
        amount: Decimal,
        due_in_days: int,
        today: Optional[date] = None,
    ) -> Fee:
        """Raise a REMINDER fee (late surcharge) against an existing fee."""
        today = today or utc_now().date()
        reminder = Fee(
            child_id=original.child_id,
            fee_type=FeeType.REMINDER,
            year=original.year,
            month=original.month,
            amount=amount,
            due_date=today + timedelta(days=due_in_days),
            reminder_for_id=original.id,
            paid_amount=Decimal("0.00"),
        )
        db.add(reminder)
        await db.flush()
        self.logger.info(
            f"Created reminder fee {reminder.id} ({amount}) for fee {original.id} of child {original.child_id}"
        )
        return reminder
