import logging
from decimal import Decimal
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.children.models import Fee
from app.modules.transactions.models import BankTransaction, PaymentAllocation
from app.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class FeeLedger:
    """Books transaction money onto fees and takes it back off."""

    def __init__(self):
        self.logger = logger

    def settle(self, transaction: BankTransaction, fee: Fee, amount: Decimal) -> PaymentAllocation:
        allocation = PaymentAllocation(fee_id=fee.id, amount=amount)
        transaction.allocations.append(allocation)

        fee.paid_amount = Decimal(fee.paid_amount or 0) + Decimal(amount)
        if fee.paid_amount >= Decimal(fee.amount) and fee.paid_at is None:
            fee.paid_at = utc_now()
        self.logger.debug(f"Allocated {amount} of transaction {transaction.id} to fee {fee.id}")
        return allocation

    async def release(self, db: AsyncSession, transaction: BankTransaction) -> List[Fee]:
        """
        Remove every allocation of the transaction. A fee stays paid only if
        other transactions still cover it.
        """
        touched: List[Fee] = []
        for allocation in list(transaction.allocations):
            fee = await db.get(Fee, allocation.fee_id)
            if fee is None:
                continue
            fee.paid_amount = max(
                Decimal(fee.paid_amount or 0) - Decimal(allocation.amount), Decimal("0.00")
            )
            if fee.paid_amount < Decimal(fee.amount):
                fee.paid_at = None
            touched.append(fee)

        transaction.allocations.clear()
        # Deletes must reach the database before the same fee can be allocated again
        await db.flush()
        if touched:
            self.logger.info(
                f"Released allocations of transaction {transaction.id} on fees {[fee.id for fee in touched]}"
            )
        return touched
