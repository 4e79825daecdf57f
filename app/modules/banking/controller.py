from fastapi import APIRouter, Depends, Query
from typing import List

from app.core.auth import require_operator
from app.core.dependencies import DatabaseDep, SyncOrchestratorDep
from app.modules.banking.dto import (
    BankingStatusResponse,
    CancelSyncResponse,
    ConnectionTestResponse,
    SyncRunResponse,
)

router = APIRouter(
    prefix="/banking",
    tags=["banking"],
    dependencies=[Depends(require_operator)],
)


@router.post("/sync", response_model=SyncRunResponse, status_code=202)
async def trigger_sync(db: DatabaseDep, orchestrator: SyncOrchestratorDep):
    """
    Start a sync pass in the background. Fails with 409 while another pass
    holds the lease. Poll /banking/status or /banking/sync/history for the result.
    """
    return await orchestrator.start(db, trigger="manual")


@router.post("/sync/cancel", response_model=CancelSyncResponse)
async def cancel_sync(db: DatabaseDep, orchestrator: SyncOrchestratorDep):
    return CancelSyncResponse(cancelled=await orchestrator.cancel(db))


@router.get("/status", response_model=BankingStatusResponse)
async def banking_status(db: DatabaseDep, orchestrator: SyncOrchestratorDep):
    return await orchestrator.status(db)


@router.get("/sync/history", response_model=List[SyncRunResponse])
async def sync_history(
    db: DatabaseDep,
    orchestrator: SyncOrchestratorDep,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return await orchestrator.history(db, limit=limit, offset=offset)


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(db: DatabaseDep, orchestrator: SyncOrchestratorDep):
    """Decrypt the stored secret and ask the bank for an empty window"""
    return await orchestrator.test_connection(db)
