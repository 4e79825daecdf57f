"""
Deduplication gate.

Sync windows overlap by a day and uploads may repeat synced data, so every
incoming record is reduced to a key over its identifying fields. The key is
checked right before insertion; the unique constraint on
bank_transactions.dedup_key settles races between concurrent ingestion paths.
"""

import hashlib
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.transactions.dto import NormalizedTransaction
from app.modules.transactions.models import BankTransaction
from app.utils.text import normalize_iban, normalize_match_text

_CENT = Decimal("0.01")
_EMPTY_MARKER = "-"


def normalize_description(description: Optional[str]) -> str:
    return normalize_match_text(description)


def dedup_identity(item: NormalizedTransaction) -> str:
    """Canonical identity string. Currency is always part of it."""
    amount = Decimal(item.amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return "|".join(
        [
            item.booking_date.isoformat(),
            normalize_iban(item.payer_iban) or _EMPTY_MARKER,
            format(amount, "f"),
            (item.currency or "EUR").upper(),
            normalize_description(item.description) or _EMPTY_MARKER,
        ]
    )


def compute_dedup_key(item: NormalizedTransaction) -> str:
    return hashlib.sha256(dedup_identity(item).encode("utf-8")).hexdigest()


class DeduplicationGate:
    async def exists(self, db: AsyncSession, dedup_key: str) -> bool:
        result = await db.execute(
            select(BankTransaction.id).where(BankTransaction.dedup_key == dedup_key).limit(1)
        )
        return result.scalar_one_or_none() is not None
