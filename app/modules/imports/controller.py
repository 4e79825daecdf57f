from fastapi import APIRouter, Depends, File, Query, UploadFile
from typing import List

from app.core.auth import require_operator
from app.core.dependencies import DatabaseDep, ImportServiceDep, UploadCredentialDep
from app.core.exceptions import ValidationError
from app.modules.imports.dto import ImportBatchResponse, ImportReceipt

router = APIRouter(prefix="/imports", tags=["imports"])


@router.post("/upload", response_model=ImportReceipt, status_code=201)
async def upload_csv(
    db: DatabaseDep,
    import_service: ImportServiceDep,
    uploaded_by: UploadCredentialDep,
    file: UploadFile = File(...),
):
    """Import a bank CSV export; re-uploading the same file imports nothing twice"""
    content = await file.read()
    if not content:
        raise ValidationError("Uploaded file is empty")

    return await import_service.upload(
        db, file_name=file.filename or "upload.csv", content=content, uploaded_by=uploaded_by
    )


@router.get(
    "/history",
    response_model=List[ImportBatchResponse],
    dependencies=[Depends(require_operator)],
)
async def import_history(
    db: DatabaseDep,
    import_service: ImportServiceDep,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return await import_service.history(db, limit=limit, offset=offset)
