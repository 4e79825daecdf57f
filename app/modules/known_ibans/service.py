import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import KnownIBANNotFoundError, ValidationError
from app.modules.children.models import Child
from app.modules.known_ibans.dto import KnownIBANResponse, TrustedIBANResponse
from app.modules.known_ibans.models import IBANStatus, KnownIBAN
from app.modules.transactions.models import BankTransaction
from app.utils.text import normalize_iban

logger = logging.getLogger(__name__)


class KnownIBANService:
    """
    Registry of blacklisted and trusted payer accounts.

    Queried per transaction; nothing is cached between calls so a change made
    by an operator is visible to the next ingested transaction.
    """

    def __init__(self):
        self.logger = logger

    async def get(self, db: AsyncSession, iban: str) -> Optional[KnownIBAN]:
        normalized = normalize_iban(iban)
        if normalized is None:
            return None
        return await db.get(KnownIBAN, normalized)

    async def is_blacklisted(self, db: AsyncSession, iban: Optional[str]) -> bool:
        if not iban:
            return False
        entry = await self.get(db, iban)
        return entry is not None and entry.status == IBANStatus.BLACKLISTED

    async def lookup_trusted(self, db: AsyncSession, iban: Optional[str]) -> Optional[int]:
        """Child bound to a trusted IBAN, if any."""
        if not iban:
            return None
        entry = await self.get(db, iban)
        if entry is None or entry.status != IBANStatus.TRUSTED:
            return None
        return entry.child_id

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def blacklist(
        self,
        db: AsyncSession,
        iban: str,
        payer_name: Optional[str] = None,
        reason: Optional[str] = None,
        source_transaction_id: Optional[int] = None,
    ) -> KnownIBAN:
        """Blacklist an IBAN. A trusted entry is converted and loses its child."""
        entry = await self.stage_blacklist(db, iban, payer_name, reason, source_transaction_id)
        await db.commit()
        return entry

    async def stage_blacklist(
        self,
        db: AsyncSession,
        iban: str,
        payer_name: Optional[str] = None,
        reason: Optional[str] = None,
        source_transaction_id: Optional[int] = None,
    ) -> KnownIBAN:
        """Same as blacklist() but flushes only, for callers owning the transaction."""
        normalized = self._require_iban(iban)
        entry = await db.get(KnownIBAN, normalized)
        if entry is None:
            entry = KnownIBAN(iban=normalized)
            db.add(entry)
        entry.status = IBANStatus.BLACKLISTED
        entry.child_id = None
        entry.payer_name = payer_name or entry.payer_name
        entry.reason = reason
        entry.source_transaction_id = source_transaction_id
        await db.flush()
        self.logger.info(f"Blacklisted IBAN {normalized}")
        return entry

    async def remove_blacklisted(self, db: AsyncSession, iban: str) -> None:
        normalized = self._require_iban(iban)
        entry = await db.get(KnownIBAN, normalized)
        if entry is None or entry.status != IBANStatus.BLACKLISTED:
            raise KnownIBANNotFoundError(normalized)
        await db.delete(entry)
        await db.commit()
        self.logger.info(f"Removed IBAN {normalized} from blacklist")

    async def link_trusted(
        self,
        db: AsyncSession,
        iban: str,
        child_id: int,
        payer_name: Optional[str] = None,
    ) -> KnownIBAN:
        """Bind an IBAN to a child; an operator may lift a blacklisting this way."""
        normalized = self._require_iban(iban)
        if await db.get(Child, child_id) is None:
            raise ValidationError(f"Child {child_id} does not exist")

        entry = await db.get(KnownIBAN, normalized)
        if entry is None:
            entry = KnownIBAN(iban=normalized)
            db.add(entry)
        entry.status = IBANStatus.TRUSTED
        entry.child_id = child_id
        entry.payer_name = payer_name or entry.payer_name
        entry.reason = None
        await db.commit()
        self.logger.info(f"Linked IBAN {normalized} to child {child_id}")
        return entry

    async def unlink_trusted(self, db: AsyncSession, iban: str) -> None:
        """Forget a trusted IBAN. Existing warnings keep their child reference."""
        normalized = self._require_iban(iban)
        entry = await db.get(KnownIBAN, normalized)
        if entry is None or entry.status != IBANStatus.TRUSTED:
            raise KnownIBANNotFoundError(normalized)
        await db.delete(entry)
        await db.commit()
        self.logger.info(f"Unlinked trusted IBAN {normalized} from child {entry.child_id}")

    async def register_trusted_if_unknown(
        self,
        db: AsyncSession,
        iban: Optional[str],
        child_id: int,
        payer_name: Optional[str] = None,
        source_transaction_id: Optional[int] = None,
    ) -> bool:
        """
        Remember the payer account of a confirmed match. Flushes only; the
        caller owns the transaction. Known entries are never overwritten.
        """
        normalized = normalize_iban(iban)
        if normalized is None:
            return False
        if await db.get(KnownIBAN, normalized) is not None:
            return False
        db.add(
            KnownIBAN(
                iban=normalized,
                status=IBANStatus.TRUSTED,
                child_id=child_id,
                payer_name=payer_name,
                source_transaction_id=source_transaction_id,
            )
        )
        await db.flush()
        self.logger.info(f"Registered IBAN {normalized} as trusted for child {child_id}")
        return True

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_blacklisted(self, db: AsyncSession) -> List[KnownIBANResponse]:
        result = await db.execute(
            select(KnownIBAN)
            .where(KnownIBAN.status == IBANStatus.BLACKLISTED)
            .order_by(KnownIBAN.created_at.desc(), KnownIBAN.iban)
        )
        return [KnownIBANResponse.model_validate(entry) for entry in result.scalars().all()]

    async def list_trusted(
        self, db: AsyncSession, child_id: Optional[int] = None
    ) -> List[TrustedIBANResponse]:
        """Trusted IBANs with their child and how many transactions came from them."""
        tx_count = (
            select(func.count(BankTransaction.id))
            .where(BankTransaction.payer_iban == KnownIBAN.iban)
            .correlate(KnownIBAN)
            .scalar_subquery()
        )
        query = (
            select(KnownIBAN, Child, tx_count)
            .join(Child, Child.id == KnownIBAN.child_id)
            .where(KnownIBAN.status == IBANStatus.TRUSTED)
            .order_by(Child.last_name, Child.first_name, KnownIBAN.iban)
        )
        if child_id is not None:
            query = query.where(KnownIBAN.child_id == child_id)

        result = await db.execute(query)
        return [
            TrustedIBANResponse(
                iban=entry.iban,
                child_id=child.id,
                child_name=child.full_name,
                member_number=child.member_number,
                payer_name=entry.payer_name,
                transaction_count=count or 0,
                created_at=entry.created_at,
            )
            for entry, child, count in result.all()
        ]

    @staticmethod
    def _require_iban(iban: str) -> str:
        normalized = normalize_iban(iban)
        if normalized is None:
            raise ValidationError("IBAN is required")
        return normalized
