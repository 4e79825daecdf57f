import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.exceptions import ValidationError, WarningNotFoundError
from app.modules.children.models import Child, Fee, MONTHLY_FEE_TYPES
from app.modules.children.service import FeeDirectoryService
from app.modules.transactions.models import BankTransaction
from app.modules.warnings.dto import WarningDetailResponse
from app.modules.warnings.models import ResolutionType, TransactionWarning, WarningKind
from app.utils.datetime import month_deadline, utc_now

logger = logging.getLogger(__name__)


class WarningService:
    """Raises, lists and resolves transaction warnings."""

    def __init__(self, fee_directory: Optional[FeeDirectoryService] = None):
        self.logger = logger
        self.fee_directory = fee_directory or FeeDirectoryService()

    async def get_open(
        self, db: AsyncSession, transaction_id: int, kind: WarningKind
    ) -> Optional[TransactionWarning]:
        result = await db.execute(
            select(TransactionWarning).where(
                TransactionWarning.transaction_id == transaction_id,
                TransactionWarning.kind == kind,
                TransactionWarning.resolved_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def raise_warning(
        self,
        db: AsyncSession,
        transaction_id: int,
        kind: WarningKind,
        message: str,
        child_id: Optional[int] = None,
        fee_id: Optional[int] = None,
    ) -> Optional[TransactionWarning]:
        """
        Create an open warning unless one of the same kind is already open for
        the transaction. Returns None in that case. Flushes only.
        """
        if await self.get_open(db, transaction_id, kind) is not None:
            return None

        warning = TransactionWarning(
            transaction_id=transaction_id,
            kind=kind,
            message=message,
            child_id=child_id,
            fee_id=fee_id,
        )
        try:
            async with db.begin_nested():
                db.add(warning)
        except IntegrityError:
            # Raised concurrently by another ingestion path
            self.logger.debug(f"Open {kind.value} warning already exists for transaction {transaction_id}")
            return None

        self.logger.info(f"Raised {kind.value} warning for transaction {transaction_id}: {message}")
        return warning

    async def resolve_open_for_transaction(
        self,
        db: AsyncSession,
        transaction_id: int,
        resolution: ResolutionType,
        note: Optional[str] = None,
        kinds: Optional[Sequence[WarningKind]] = None,
    ) -> int:
        """Resolve open warnings of a transaction (all kinds unless given). Flushes only."""
        stmt = (
            update(TransactionWarning)
            .where(
                TransactionWarning.transaction_id == transaction_id,
                TransactionWarning.resolved_at.is_(None),
            )
            .values(resolved_at=utc_now(), resolution_type=resolution, resolution_note=note)
            .execution_options(synchronize_session="fetch")
        )
        if kinds:
            stmt = stmt.where(TransactionWarning.kind.in_(list(kinds)))
        result = await db.execute(stmt)
        if result.rowcount:
            self.logger.info(
                f"Resolved {result.rowcount} warning(s) of transaction {transaction_id} as {resolution.value}"
            )
        return result.rowcount or 0

    async def check_late_payment(
        self, db: AsyncSession, transaction: BankTransaction, fees: Sequence[Fee]
    ) -> Optional[TransactionWarning]:
        """Flag a payment booked after the monthly deadline of a fee it settled."""
        for fee in fees:
            if fee.fee_type not in MONTHLY_FEE_TYPES or not fee.month:
                continue
            deadline = month_deadline(fee.year, fee.month, config.late_payment_day)
            if transaction.booking_date <= deadline:
                continue
            message = (
                f"Payment booked on {transaction.booking_date.isoformat()}, after day "
                f"{config.late_payment_day} of {fee.year}-{fee.month:02d}"
            )
            return await self.raise_warning(
                db,
                transaction_id=transaction.id,
                kind=WarningKind.LATE_PAYMENT,
                message=message,
                child_id=fee.child_id,
                fee_id=fee.id,
            )
        return None

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def list_warnings(
        self,
        db: AsyncSession,
        include_resolved: bool = False,
        kind: Optional[WarningKind] = None,
        child_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[WarningDetailResponse]:
        query = (
            select(TransactionWarning, BankTransaction, Child)
            .join(BankTransaction, BankTransaction.id == TransactionWarning.transaction_id)
            .outerjoin(Child, Child.id == TransactionWarning.child_id)
            .order_by(TransactionWarning.created_at.desc(), TransactionWarning.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if not include_resolved:
            query = query.where(TransactionWarning.resolved_at.is_(None))
        if kind is not None:
            query = query.where(TransactionWarning.kind == kind)
        if child_id is not None:
            query = query.where(TransactionWarning.child_id == child_id)

        result = await db.execute(query)
        return [
            WarningDetailResponse(
                id=warning.id,
                transaction_id=warning.transaction_id,
                kind=warning.kind,
                message=warning.message,
                child_id=warning.child_id,
                fee_id=warning.fee_id,
                created_at=warning.created_at,
                resolved_at=warning.resolved_at,
                resolution_type=warning.resolution_type,
                resolution_note=warning.resolution_note,
                booking_date=transaction.booking_date,
                payer_name=transaction.payer_name,
                payer_iban=transaction.payer_iban,
                amount=transaction.amount,
                child_name=child.full_name if child else None,
            )
            for warning, transaction, child in result.all()
        ]

    async def get_warning(self, db: AsyncSession, warning_id: int) -> TransactionWarning:
        warning = await db.get(TransactionWarning, warning_id)
        if warning is None:
            raise WarningNotFoundError(warning_id)
        return warning

    async def dismiss(
        self, db: AsyncSession, warning_id: int, note: Optional[str] = None
    ) -> TransactionWarning:
        warning = await self.get_warning(db, warning_id)
        if not warning.is_open:
            raise ValidationError(f"Warning {warning_id} is already resolved")

        warning.resolved_at = utc_now()
        warning.resolution_type = ResolutionType.DISMISSED
        warning.resolution_note = note
        await db.commit()
        self.logger.info(f"Dismissed warning {warning_id}")
        return warning

    async def resolve_with_late_fee(
        self, db: AsyncSession, warning_id: int
    ) -> Tuple[TransactionWarning, Fee]:
        """
        Settle an open LATE_PAYMENT warning by charging a reminder fee on the
        late fee's child and resolving the warning.
        """
        warning = await self.get_warning(db, warning_id)
        if warning.kind != WarningKind.LATE_PAYMENT:
            raise ValidationError("Only late payment warnings can be resolved with a late fee")
        if not warning.is_open:
            raise ValidationError(f"Warning {warning_id} is already resolved")
        if warning.fee_id is None:
            raise ValidationError(f"Warning {warning_id} is not linked to a fee")

        original = await self.fee_directory.get_fee(db, warning.fee_id)
        reminder = await self.fee_directory.create_reminder_fee(
            db,
            original=original,
            amount=config.late_fee_amount,
            due_in_days=config.late_fee_due_days,
        )

        warning.resolved_at = utc_now()
        warning.resolution_type = ResolutionType.LATE_FEE_CREATED
        warning.resolution_note = f"Late fee of {config.late_fee_amount} created (fee {reminder.id})"
        await db.commit()
        self.logger.info(f"Resolved warning {warning_id} with reminder fee {reminder.id}")
        return warning, reminder
