"""Tests for the HTTP surface: auth, error shape and the main routes."""

import asyncio
from datetime import date
from decimal import Decimal

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.banking.service import SyncOrchestrator
from app.modules.transactions.models import BankTransaction, TransactionSource
from tests.helpers import (
    OPERATOR_HEADERS,
    OTHER_IBAN,
    TRUSTED_IBAN,
    DirectoryFactory,
    FakeAcquisitionAdapter,
    csv_export,
    csv_row,
    make_tx,
)

IMPORT_HEADERS = {"X-Import-Token": "test-import"}


async def _unmatched_tx(db: AsyncSession, ingestor, amount: str = "45.40"):
    summary = await ingestor.ingest_many(
        db, [make_tx(amount, payer_name="Max Power", payer_iban=OTHER_IBAN)], TransactionSource.SYNC
    )
    assert summary.imported == 1

    return await db.scalar(select(BankTransaction).where(BankTransaction.amount == Decimal(amount)))


class TestAuth:
    """Tests for operator and import credentials."""

    async def test_missing_token(self, client: httpx.AsyncClient) -> None:
        """Test operator routes reject anonymous requests with the error envelope."""
        response = await client.get("/transactions/unmatched")

        assert response.status_code == 401
        assert response.json() == {"error": {"message": "Operator authentication required"}}

    async def test_wrong_token(self, client: httpx.AsyncClient) -> None:
        """Test an unknown bearer token is rejected."""
        response = await client.get("/warnings/", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    async def test_any_configured_operator_token(self, client: httpx.AsyncClient) -> None:
        """Test every configured operator token is accepted."""
        response = await client.get(
            "/known-ibans/blacklist", headers={"Authorization": "Bearer second-operator"}
        )

        assert response.status_code == 200

    async def test_import_token_is_not_an_operator(self, client: httpx.AsyncClient) -> None:
        """Test the import credential only opens the upload route."""
        response = await client.get("/imports/history", headers={"Authorization": "Bearer test-import"})

        assert response.status_code == 401

    async def test_health_is_public(self, client: httpx.AsyncClient) -> None:
        """Test the health check needs no credentials."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.headers["X-Request-ID"]


class TestTransactionRoutes:
    """Tests for /transactions."""

    async def test_list_and_get(self, client: httpx.AsyncClient, db: AsyncSession, ingestor) -> None:
        """Test the unmatched list and the detail view."""
        tx = await _unmatched_tx(db, ingestor)

        listed = await client.get("/transactions/unmatched", headers=OPERATOR_HEADERS)
        detail = await client.get(f"/transactions/{tx.id}", headers=OPERATOR_HEADERS)

        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["items"][0]["id"] == tx.id
        assert detail.json()["match_state"] == "unmatched"
        assert Decimal(detail.json()["amount"]) == Decimal("45.40")

    async def test_unknown_transaction(self, client: httpx.AsyncClient) -> None:
        """Test a missing transaction is a 404 with the error envelope."""
        response = await client.get("/transactions/999", headers=OPERATOR_HEADERS)

        assert response.status_code == 404
        assert response.json() == {"error": {"message": "Transaction not found"}}

    async def test_match_and_stale_version(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test a manual match and a second attempt with the old version."""
        child = await factory.child()
        fee = await factory.fee(child, "45.40")
        tx = await _unmatched_tx(db, ingestor)

        matched = await client.post(
            f"/transactions/{tx.id}/match",
            json={"fee_id": fee.id, "expected_version": tx.version},
            headers=OPERATOR_HEADERS,
        )
        stale = await client.post(
            f"/transactions/{tx.id}/unmatch",
            json={"expected_version": tx.version},
            headers=OPERATOR_HEADERS,
        )

        assert matched.status_code == 200
        assert matched.json()["match_state"] == "matched"
        assert matched.json()["matched_fee_id"] == fee.id
        assert matched.json()["version"] > tx.version
        assert stale.status_code == 409
        assert "modified concurrently" in stale.json()["error"]["message"]

    async def test_allocate_with_wrong_sum(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test allocations that do not add up are rejected."""
        child = await factory.child()
        first = await factory.fee(child, "30.00")
        second = await factory.fee(child, "15.40", month=6)
        tx = await _unmatched_tx(db, ingestor)

        rejected = await client.post(
            f"/transactions/{tx.id}/allocate",
            json={
                "allocations": [
                    {"fee_id": first.id, "amount": "30.00"},
                    {"fee_id": second.id, "amount": "10.00"},
                ]
            },
            headers=OPERATOR_HEADERS,
        )
        accepted = await client.post(
            f"/transactions/{tx.id}/allocate",
            json={
                "allocations": [
                    {"fee_id": first.id, "amount": "30.00"},
                    {"fee_id": second.id, "amount": "15.40"},
                ]
            },
            headers=OPERATOR_HEADERS,
        )

        assert rejected.status_code == 422
        assert accepted.status_code == 200
        assert accepted.json()["match_state"] == "allocated"
        assert len(accepted.json()["allocations"]) == 2

    async def test_allocate_sub_cent_amounts(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test allocation parts must be whole cents."""
        child = await factory.child()
        first = await factory.fee(child, "30.00")
        second = await factory.fee(child, "30.00", month=6)
        tx = await _unmatched_tx(db, ingestor)

        response = await client.post(
            f"/transactions/{tx.id}/allocate",
            json={
                "allocations": [
                    {"fee_id": first.id, "amount": "20.005"},
                    {"fee_id": second.id, "amount": "25.395"},
                ]
            },
            headers=OPERATOR_HEADERS,
        )

        assert response.status_code == 422
        assert response.json() == {"error": {"message": "Allocation amounts must be whole cents"}}

    async def test_allocate_requires_items(self, client: httpx.AsyncClient, db: AsyncSession, ingestor) -> None:
        """Test an empty allocation list fails request validation."""
        tx = await _unmatched_tx(db, ingestor)

        response = await client.post(
            f"/transactions/{tx.id}/allocate", json={"allocations": []}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Validation failed"

    async def test_dismiss_with_blacklist_and_hide(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor
    ) -> None:
        """Test dismissing a transaction blacklists its payer, and hiding needs no body."""
        tx = await _unmatched_tx(db, ingestor)
        other = await _unmatched_tx(db, ingestor, amount="12.00")

        dismissed = await client.post(
            f"/transactions/{tx.id}/dismiss",
            json={"blacklist_iban": True, "reason": "landlord"},
            headers=OPERATOR_HEADERS,
        )
        hidden = await client.post(f"/transactions/{other.id}/hide", headers=OPERATOR_HEADERS)
        blacklist = await client.get("/known-ibans/blacklist", headers=OPERATOR_HEADERS)

        assert dismissed.json()["match_state"] == "dismissed"
        assert hidden.json()["hidden"] is True
        assert hidden.json()["match_state"] == "unmatched"
        assert [entry["iban"] for entry in blacklist.json()] == [OTHER_IBAN]

    async def test_suggestions(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test candidate fees for a transaction from a trusted account."""
        child = await factory.child()
        await factory.fee(child, "45.40")
        await factory.fee(child, "20.00", month=6)
        await factory.trusted(child, TRUSTED_IBAN)
        await ingestor.ingest_many(db, [make_tx("99.00")], TransactionSource.SYNC)
        unmatched = await client.get("/transactions/unmatched", headers=OPERATOR_HEADERS)
        tx_id = unmatched.json()["items"][0]["id"]

        response = await client.get(f"/transactions/{tx_id}/suggestions", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        assert response.json()["candidates"][0]["child"]["id"] == child.id


class TestWarningRoutes:
    """Tests for /warnings."""

    async def test_list_and_dismiss(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test open warnings are listed and can be dismissed with a note."""
        child = await factory.child()
        await factory.trusted(child, TRUSTED_IBAN)
        await ingestor.ingest_many(db, [make_tx("99.00")], TransactionSource.SYNC)

        listed = await client.get("/warnings/", headers=OPERATOR_HEADERS)
        warning_id = listed.json()[0]["id"]
        dismissed = await client.post(
            f"/warnings/{warning_id}/dismiss", json={"note": "donation"}, headers=OPERATOR_HEADERS
        )
        again = await client.get("/warnings/", headers=OPERATOR_HEADERS)

        assert listed.json()[0]["kind"] == "NO_MATCHING_FEE"
        assert dismissed.json()["resolution_type"] == "dismissed"
        assert dismissed.json()["resolution_note"] == "donation"
        assert again.json() == []

    async def test_resolve_late_fee(
        self, client: httpx.AsyncClient, db: AsyncSession, ingestor, factory: DirectoryFactory
    ) -> None:
        """Test a late payment warning can be turned into a reminder fee."""
        child = await factory.child()
        await factory.fee(child, "45.40")
        await factory.trusted(child, TRUSTED_IBAN)
        await ingestor.ingest_many(
            db, [make_tx("45.40", booking_date=date(2025, 5, 25))], TransactionSource.SYNC
        )
        listed = await client.get("/warnings/", params={"kind": "LATE_PAYMENT"}, headers=OPERATOR_HEADERS)

        response = await client.post(
            f"/warnings/{listed.json()[0]['id']}/resolve-late-fee", headers=OPERATOR_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["warning"]["resolution_type"] == "late_fee_created"
        assert response.json()["reminder_fee"]["fee_type"] == "REMINDER"
        assert Decimal(response.json()["reminder_fee"]["amount"]) == Decimal("10.00")

    async def test_unknown_warning(self, client: httpx.AsyncClient) -> None:
        """Test a missing warning is a 404."""
        response = await client.post("/warnings/404/dismiss", headers=OPERATOR_HEADERS)

        assert response.status_code == 404


class TestKnownIBANRoutes:
    """Tests for /known-ibans."""

    async def test_blacklist_roundtrip(self, client: httpx.AsyncClient) -> None:
        """Test adding and removing a blacklisted IBAN."""
        created = await client.post(
            "/known-ibans/blacklist",
            json={"iban": "de02 1203 0000 0000 2020 51", "reason": "spam"},
            headers=OPERATOR_HEADERS,
        )
        removed = await client.delete(f"/known-ibans/blacklist/{OTHER_IBAN}", headers=OPERATOR_HEADERS)
        missing = await client.delete(f"/known-ibans/blacklist/{OTHER_IBAN}", headers=OPERATOR_HEADERS)

        assert created.status_code == 201
        assert created.json()["iban"] == OTHER_IBAN
        assert created.json()["status"] == "blacklisted"
        assert removed.status_code == 204
        assert missing.status_code == 404

    async def test_trusted_link_and_unlink(self, client: httpx.AsyncClient, factory: DirectoryFactory) -> None:
        """Test creating, listing and unlinking a trusted IBAN."""
        child = await factory.child()

        created = await client.post(
            "/known-ibans/trusted",
            json={"iban": TRUSTED_IBAN, "child_id": child.id},
            headers=OPERATOR_HEADERS,
        )
        for_child = await client.get(f"/known-ibans/trusted/children/{child.id}", headers=OPERATOR_HEADERS)
        unlinked = await client.post(f"/known-ibans/trusted/{TRUSTED_IBAN}/unlink", headers=OPERATOR_HEADERS)
        after = await client.get("/known-ibans/trusted", headers=OPERATOR_HEADERS)

        assert created.status_code == 201
        assert for_child.json()[0]["member_number"] == child.member_number
        assert unlinked.status_code == 204
        assert after.json() == []

    async def test_link_unknown_child(self, client: httpx.AsyncClient) -> None:
        """Test linking to a missing child is a validation error."""
        response = await client.post(
            f"/known-ibans/trusted/{TRUSTED_IBAN}/link", json={"child_id": 999}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Child 999 does not exist"


class TestImportRoutes:
    """Tests for /imports."""

    async def test_upload_with_import_token(self, client: httpx.AsyncClient) -> None:
        """Test an unattended upload with the scoped import token."""
        content = csv_export(csv_row("03.05.2025", "Max Power", "", "Spende", "20,00"))

        response = await client.post(
            "/imports/upload", files={"file": ("mai.csv", content, "text/csv")}, headers=IMPORT_HEADERS
        )
        history = await client.get("/imports/history", headers=OPERATOR_HEADERS)

        assert response.status_code == 201
        assert response.json()["imported_count"] == 1
        assert response.json()["uploaded_by"] == "import_token"
        assert history.json()[0]["file_name"] == "mai.csv"

    async def test_upload_requires_credential(self, client: httpx.AsyncClient) -> None:
        """Test an anonymous upload is rejected."""
        content = csv_export(csv_row("03.05.2025", "Max Power", "", "Spende", "20,00"))

        response = await client.post("/imports/upload", files={"file": ("mai.csv", content, "text/csv")})

        assert response.status_code == 401

    async def test_unreadable_upload(self, client: httpx.AsyncClient) -> None:
        """Test a file without rows is rejected."""
        response = await client.post(
            "/imports/upload", files={"file": ("empty.csv", b"", "text/csv")}, headers=OPERATOR_HEADERS
        )

        assert response.status_code == 422


class TestBankingRoutes:
    """Tests for /banking."""

    async def test_status_unconfigured(self, client: httpx.AsyncClient) -> None:
        """Test status before banking is configured."""
        response = await client.get("/banking/status", headers=OPERATOR_HEADERS)

        assert response.status_code == 200
        assert response.json()["configured"] is False

    async def test_sync_not_configured(self, client: httpx.AsyncClient) -> None:
        """Test a sync cannot be started without a configuration."""
        response = await client.post("/banking/sync", headers=OPERATOR_HEADERS)

        assert response.status_code == 422

    async def test_sync_accepted_and_conflict(
        self,
        client: httpx.AsyncClient,
        factory: DirectoryFactory,
        adapter: FakeAcquisitionAdapter,
        orchestrator: SyncOrchestrator,
    ) -> None:
        """Test a sync starts in the background and a second trigger conflicts."""
        banking_config = await factory.banking_config()
        adapter.transactions = [make_tx("45.40")]
        adapter.block = asyncio.Event()

        started = await client.post("/banking/sync", headers=OPERATOR_HEADERS)
        task = orchestrator._running[banking_config.id]
        await adapter.started.wait()
        conflict = await client.post("/banking/sync", headers=OPERATOR_HEADERS)
        adapter.block.set()
        await task
        history = await client.get("/banking/sync/history", headers=OPERATOR_HEADERS)

        assert started.status_code == 202
        assert started.json()["status"] == "running"
        assert conflict.status_code == 409
        assert conflict.json() == {"error": {"message": "A bank sync is already in progress"}}
        assert history.json()[0]["status"] == "success"
        assert history.json()[0]["imported_count"] == 1

    async def test_cancel_without_running_sync(self, client: httpx.AsyncClient, factory: DirectoryFactory) -> None:
        """Test cancel answers false when nothing runs."""
        await factory.banking_config()

        response = await client.post("/banking/sync/cancel", headers=OPERATOR_HEADERS)

        assert response.json() == {"cancelled": False}

    async def test_connection(self, client: httpx.AsyncClient, factory: DirectoryFactory) -> None:
        """Test the connection check through the API."""
        await factory.banking_config()

        response = await client.post("/banking/test-connection", headers=OPERATOR_HEADERS)

        assert response.json()["ok"] is True
