from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.core.auth import require_operator
from app.core.dependencies import DatabaseDep, WarningServiceDep
from app.modules.children.dto import FeeResponse
from app.modules.warnings.dto import (
    DismissWarningModel,
    LateFeeResolutionResponse,
    WarningDetailResponse,
    WarningResponse,
)
from app.modules.warnings.models import WarningKind

router = APIRouter(
    prefix="/warnings",
    tags=["warnings"],
    dependencies=[Depends(require_operator)],
)


@router.get("/", response_model=List[WarningDetailResponse])
async def list_warnings(
    db: DatabaseDep,
    warning_service: WarningServiceDep,
    include_resolved: bool = False,
    kind: Optional[WarningKind] = None,
    child_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Open warnings by default, newest first"""
    return await warning_service.list_warnings(
        db,
        include_resolved=include_resolved,
        kind=kind,
        child_id=child_id,
        limit=limit,
        offset=offset,
    )


@router.post("/{warning_id}/dismiss", response_model=WarningResponse)
async def dismiss_warning(
    warning_id: int,
    db: DatabaseDep,
    warning_service: WarningServiceDep,
    data: Optional[DismissWarningModel] = None,
):
    return await warning_service.dismiss(db, warning_id, note=data.note if data else None)


@router.post("/{warning_id}/resolve-late-fee", response_model=LateFeeResolutionResponse)
async def resolve_with_late_fee(
    warning_id: int,
    db: DatabaseDep,
    warning_service: WarningServiceDep,
):
    """Charge the configured late fee for a late payment and close the warning"""
    warning, reminder = await warning_service.resolve_with_late_fee(db, warning_id)
    return LateFeeResolutionResponse(
        warning=WarningResponse.model_validate(warning),
        reminder_fee=FeeResponse.model_validate(reminder),
    )
