from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.core.auth import require_operator
from app.core.dependencies import DatabaseDep, ReconciliationServiceDep
from app.core.exceptions import ValidationError
from app.modules.reconciliation.dto import (
    AllocateModel,
    ChildTransactionSuggestion,
    DismissTransactionModel,
    ManualMatchModel,
    RescanResponse,
    SuggestionsResponse,
    VersionedActionModel,
)
from app.modules.transactions.dto import TransactionListResponse, TransactionResponse

router = APIRouter(
    prefix="/transactions",
    tags=["transactions"],
    dependencies=[Depends(require_operator)],
)


@router.get("/unmatched", response_model=TransactionListResponse)
async def list_unmatched(
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Incoming transactions still waiting for a fee (unmatched or suggested)"""
    return await service.list_unmatched(db, limit=limit, offset=offset)


@router.get("/matched", response_model=TransactionListResponse)
async def list_matched(
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await service.list_matched(db, limit=limit, offset=offset)


@router.post("/rescan", response_model=RescanResponse)
async def rescan(db: DatabaseDep, service: ReconciliationServiceDep):
    """Run matching again, e.g. after fees or trusted IBANs changed"""
    return await service.rescan(db)


@router.get("/children/{child_id}/suggestions", response_model=List[ChildTransactionSuggestion])
async def child_suggestions(
    child_id: int,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    min_confidence: float = Query(0.5, ge=0.0, le=1.0),
    limit: int = Query(20, ge=1, le=100),
):
    return await service.child_suggestions(
        db, child_id, min_confidence=min_confidence, limit=limit
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: int, db: DatabaseDep, service: ReconciliationServiceDep):
    return await service.get_transaction(db, transaction_id)


@router.get("/{transaction_id}/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(transaction_id: int, db: DatabaseDep, service: ReconciliationServiceDep):
    """Candidate fees for a transaction, best first"""
    return await service.suggestions(db, transaction_id)


@router.post("/{transaction_id}/match", response_model=TransactionResponse)
async def manual_match(
    transaction_id: int,
    data: ManualMatchModel,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
):
    return await service.manual_match(
        db, transaction_id, data.fee_id, expected_version=data.expected_version
    )


@router.post("/{transaction_id}/allocate", response_model=TransactionResponse)
async def allocate(
    transaction_id: int,
    data: AllocateModel,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
):
    """Split a transaction across several fees; amounts must add up exactly"""
    if not data.allocations:
        raise ValidationError("At least one allocation is required")

    return await service.allocate(
        db, transaction_id, data.allocations, expected_version=data.expected_version
    )


@router.post("/{transaction_id}/unmatch", response_model=TransactionResponse)
async def unmatch(
    transaction_id: int,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    data: Optional[VersionedActionModel] = None,
):
    return await service.unmatch(
        db, transaction_id, expected_version=data.expected_version if data else None
    )


@router.post("/{transaction_id}/dismiss", response_model=TransactionResponse)
async def dismiss(
    transaction_id: int,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    data: Optional[DismissTransactionModel] = None,
):
    data = data or DismissTransactionModel()
    return await service.dismiss(
        db,
        transaction_id,
        blacklist_iban=data.blacklist_iban,
        reason=data.reason,
        expected_version=data.expected_version,
    )


@router.post("/{transaction_id}/hide", response_model=TransactionResponse)
async def hide(
    transaction_id: int,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    data: Optional[VersionedActionModel] = None,
):
    return await service.hide(
        db, transaction_id, expected_version=data.expected_version if data else None
    )


@router.post("/{transaction_id}/unhide", response_model=TransactionResponse)
async def unhide(
    transaction_id: int,
    db: DatabaseDep,
    service: ReconciliationServiceDep,
    data: Optional[VersionedActionModel] = None,
):
    return await service.unhide(
        db, transaction_id, expected_version=data.expected_version if data else None
    )
