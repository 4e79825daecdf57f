"""
Background jobs for the scheduler.
These functions run outside of request context and manage their own DB sessions.
"""

import logging

from app.core.db.engine import AsyncSessionLocal
from app.core.exceptions import BankingNotConfiguredError, SyncInProgressError

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "bank_sync"


async def run_scheduled_sync() -> dict:
    """
    Run one bank sync pass.

    Skips quietly when banking is not configured or another pass holds the
    lease; failures of the pass itself are recorded on its sync run.

    Returns:
        Summary of the pass
    """
    # Import here to avoid circular imports
    from app.core.dependencies import get_sync_orchestrator

    orchestrator = get_sync_orchestrator()

    logger.info("Starting scheduled bank sync")

    async with AsyncSessionLocal() as db:
        try:
            result = await orchestrator.sync_now(db, trigger="scheduled")
        except BankingNotConfiguredError as e:
            logger.debug(f"Scheduled sync skipped: {e.detail}")
            return {"status": "skipped", "reason": e.detail}
        except SyncInProgressError:
            logger.info("Scheduled sync skipped: a pass is already running")
            return {"status": "skipped", "reason": "in progress"}
        except Exception as e:
            logger.error(f"Error in scheduled sync: {e}", exc_info=True)
            return {"status": "error", "error": str(e)}

    logger.info(
        f"Scheduled sync finished with status {result.status.value}: "
        f"{result.imported} imported, {result.failed} failed"
    )
    return {
        "status": result.status.value,
        "run_id": result.run_id,
        "imported": result.imported,
        "skipped": result.skipped,
        "failed": result.failed,
    }
