"""
Centralized dependency management
Singletons for stateless services, per-request for DB sessions
"""

from functools import lru_cache
from typing import AsyncGenerator, Annotated
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends


from app.core.auth import require_operator, require_upload_credential
from app.core.db.engine import get_db_util
from app.modules.banking.service import SyncOrchestrator
from app.modules.children.service import FeeDirectoryService
from app.modules.imports.service import ImportService
from app.modules.known_ibans.service import KnownIBANService
from app.modules.matching.engine import MatchingEngine
from app.modules.reconciliation.service import ReconciliationService
from app.modules.transactions.ingestion import TransactionIngestor
from app.modules.warnings.service import WarningService


# ============================================================================
# PER-REQUEST DEPENDENCIES (New instance per request)
# ============================================================================


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session - NEW per request
    Automatically commits/rollbacks and closes
    """
    async for session in get_db_util():
        yield session


# ============================================================================
# SERVICE LAYER (Singletons that accept DB session)
# ============================================================================


@lru_cache()
def get_fee_directory():
    """Fee directory - SINGLETON"""
    return FeeDirectoryService()


@lru_cache()
def get_known_iban_service():
    """Known-IBAN registry - SINGLETON (no caching of registry rows)"""
    return KnownIBANService()


@lru_cache()
def get_warning_service():
    """Warning service - SINGLETON"""
    return WarningService(fee_directory=get_fee_directory())


@lru_cache()
def get_matching_engine():
    """Matching engine - SINGLETON"""
    return MatchingEngine(
        known_ibans=get_known_iban_service(),
        fee_directory=get_fee_directory(),
        warnings=get_warning_service(),
    )


@lru_cache()
def get_ingestor():
    """Ingestion pipeline shared by sync and upload - SINGLETON"""
    return TransactionIngestor(
        known_ibans=get_known_iban_service(),
        matching_engine=get_matching_engine(),
    )


@lru_cache()
def get_reconciliation_service():
    """Manual reconciliation - SINGLETON"""
    return ReconciliationService(
        engine=get_matching_engine(),
        fee_directory=get_fee_directory(),
        known_ibans=get_known_iban_service(),
    )


@lru_cache()
def get_import_service():
    """CSV import - SINGLETON"""
    return ImportService(ingestor=get_ingestor())


# ============================================================================
# ORCHESTRATOR (Singleton holding the running sync task)
# ============================================================================


@lru_cache()
def get_sync_orchestrator():
    """
    Sync orchestrator - SINGLETON
    Must be shared so cancel and status see the task started by trigger
    """
    return SyncOrchestrator(ingestor=get_ingestor())


# ============================================================================
# FASTAPI DEPENDENCY TYPE ALIASES
# ============================================================================

# Database dependencies
DatabaseDep = Annotated[AsyncSession, Depends(get_db)]

# Auth dependencies
OperatorDep = Annotated[str, Depends(require_operator)]
UploadCredentialDep = Annotated[str, Depends(require_upload_credential)]

# Service dependencies
FeeDirectoryDep = Annotated[FeeDirectoryService, Depends(get_fee_directory)]
KnownIBANServiceDep = Annotated[KnownIBANService, Depends(get_known_iban_service)]
WarningServiceDep = Annotated[WarningService, Depends(get_warning_service)]
ReconciliationServiceDep = Annotated[ReconciliationService, Depends(get_reconciliation_service)]
ImportServiceDep = Annotated[ImportService, Depends(get_import_service)]
SyncOrchestratorDep = Annotated[SyncOrchestrator, Depends(get_sync_orchestrator)]
