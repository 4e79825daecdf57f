"""Builders and fakes shared by the test modules."""

import asyncio
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AcquisitionError
from app.modules.banking.acquisition import BankCredentials, SyncWindow
from app.modules.banking.encryption import SecretCipher
from app.modules.banking.models import BankingConfig
from app.modules.children.models import Child, Fee, FeeType, Parent
from app.modules.known_ibans.models import IBANStatus, KnownIBAN
from app.modules.transactions.dto import NormalizedTransaction

OPERATOR_HEADERS = {"Authorization": "Bearer test-operator"}

TRUSTED_IBAN = "DE89370400440532013000"
OTHER_IBAN = "DE02120300000000202051"

CSV_HEADER = ";".join(
    [
        "Bezeichnung Auftragskonto",
        "IBAN Auftragskonto",
        "BIC Auftragskonto",
        "Bankname Auftragskonto",
        "Buchungstag",
        "Valutadatum",
        "Name Zahlungsbeteiligter",
        "IBAN Zahlungsbeteiligter",
        "BIC (SWIFT-Code) Zahlungsbeteiligter",
        "Buchungstext",
        "Verwendungszweck",
        "Betrag",
        "Waehrung",
    ]
)


def csv_row(booking: str, name: str, iban: str, description: str, amount: str, currency: str = "EUR") -> str:
    """One line of a bank CSV export in the default column layout."""
    return ";".join(
        [
            "Kita Konto",
            "DE12370205000001234567",
            "BFSWDE33XXX",
            "SozialBank",
            booking,
            booking,
            name,
            iban,
            "",
            "Gutschrift",
            description,
            amount,
            currency,
        ]
    )


def csv_export(*rows: str, encoding: str = "iso-8859-1") -> bytes:
    return "\n".join([CSV_HEADER, *rows]).encode(encoding)


def make_tx(
    amount: str,
    booking_date: date = date(2025, 5, 3),
    payer_name: Optional[str] = "Erika Mustermann",
    payer_iban: Optional[str] = TRUSTED_IBAN,
    description: Optional[str] = "Essensgeld Mai",
    currency: str = "EUR",
) -> NormalizedTransaction:
    """Build a normalized transaction as an acquisition adapter would deliver it."""
    return NormalizedTransaction(
        booking_date=booking_date,
        value_date=booking_date,
        payer_name=payer_name,
        payer_iban=payer_iban,
        description=description,
        amount=Decimal(amount),
        currency=currency,
    )


class FakeAcquisitionAdapter:
    """In-memory adapter standing in for the sync runner."""

    method = "fake"

    def __init__(self, transactions: Optional[List[NormalizedTransaction]] = None):
        self.transactions = list(transactions or [])
        self.error: Optional[str] = None
        self.block: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.calls: List[SyncWindow] = []
        self.credentials: List[BankCredentials] = []

    async def fetch(self, window: SyncWindow, credentials: BankCredentials) -> List[NormalizedTransaction]:
        self.calls.append(window)
        self.credentials.append(credentials)
        self.started.set()
        if self.block is not None:
            await self.block.wait()
        if self.error:
            raise AcquisitionError(self.error)
        return list(self.transactions)


class DirectoryFactory:
    """Creates fee-directory and registry rows, committing each one."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._member = 10000

    async def child(
        self,
        first_name: str = "Lena",
        last_name: str = "Mustermann",
        parents: Optional[List[tuple]] = None,
        member_number: Optional[str] = None,
        is_active: bool = True,
    ) -> Child:
        self._member += 1
        child = Child(
            member_number=member_number or str(self._member),
            first_name=first_name,
            last_name=last_name,
            is_active=is_active,
            parents=[Parent(first_name=f, last_name=l) for f, l in (parents or [("Erika", last_name)])],
        )
        self.db.add(child)
        await self.db.commit()
        return child

    async def fee(
        self,
        child: Child,
        amount: str,
        fee_type: FeeType = FeeType.FOOD,
        year: int = 2025,
        month: Optional[int] = 5,
        due_date: date = date(2025, 5, 1),
        reminder_for: Optional[Fee] = None,
    ) -> Fee:
        fee = Fee(
            child_id=child.id,
            fee_type=fee_type,
            year=year,
            month=month,
            amount=Decimal(amount),
            due_date=due_date,
            reminder_for_id=reminder_for.id if reminder_for else None,
            paid_amount=Decimal("0.00"),
        )
        self.db.add(fee)
        await self.db.commit()
        return fee

    async def trusted(self, child: Child, iban: str = TRUSTED_IBAN) -> KnownIBAN:
        entry = KnownIBAN(iban=iban, status=IBANStatus.TRUSTED, child_id=child.id)
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def blacklisted(self, iban: str = OTHER_IBAN) -> KnownIBAN:
        entry = KnownIBAN(iban=iban, status=IBANStatus.BLACKLISTED, reason="test")
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def banking_config(self, secret: str = "12345", **overrides) -> BankingConfig:
        values = dict(
            bank_name="SozialBank",
            bank_code="37020500",
            login_id="kita-login",
            encrypted_secret=SecretCipher().encrypt(secret),
            endpoint_url="https://fints.example.de/fints",
            account_number="DE12370205000001234567",
            sync_enabled=True,
        )
        values.update(overrides)
        banking_config = BankingConfig(**values)
        self.db.add(banking_config)
        await self.db.commit()
        return banking_config

