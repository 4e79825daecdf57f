import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.imports.dto import ImportBatchResponse, ImportReceipt
from app.modules.imports.models import ImportBatch
from app.modules.transactions.csv_parser import BankCSVParser
from app.modules.transactions.ingestion import TransactionIngestor
from app.modules.transactions.models import TransactionSource

logger = logging.getLogger(__name__)


class ImportService:
    """Manual CSV uploads: parse, run through ingestion, keep a receipt."""

    def __init__(
        self,
        ingestor: Optional[TransactionIngestor] = None,
        parser: Optional[BankCSVParser] = None,
    ):
        self.logger = logger
        self.ingestor = ingestor or TransactionIngestor()
        self.parser = parser

    def _parser(self) -> BankCSVParser:
        return self.parser or BankCSVParser()

    async def upload(
        self,
        db: AsyncSession,
        file_name: str,
        content: bytes,
        uploaded_by: Optional[str] = None,
    ) -> ImportReceipt:
        # An unreadable file is rejected before anything is stored
        parsed = self._parser().parse(content)

        batch = ImportBatch(
            file_name=file_name,
            total_rows=parsed.total_rows,
            imported_count=0,
            skipped_count=0,
            matched_count=0,
            warnings_count=0,
            blacklisted_count=0,
            failed_count=0,
            uploaded_by=uploaded_by,
        )
        db.add(batch)
        await db.commit()
        self.logger.info(
            f"Import batch {batch.id}: {file_name} with {parsed.total_rows} row(s), "
            f"{parsed.malformed_rows} unreadable"
        )

        summary = await self.ingestor.ingest_many(
            db, parsed.transactions, TransactionSource.UPLOAD, import_batch_id=batch.id
        )

        await db.refresh(batch)
        batch.imported_count = summary.imported
        batch.skipped_count = summary.skipped + parsed.malformed_rows
        batch.matched_count = summary.matched
        batch.warnings_count = summary.warnings
        batch.blacklisted_count = summary.blacklisted
        batch.failed_count = summary.failed
        await db.commit()

        receipt = ImportReceipt.model_validate(batch)
        receipt.errors = parsed.errors + summary.errors
        return receipt

    async def history(self, db: AsyncSession, limit: int = 20, offset: int = 0) -> List[ImportBatchResponse]:
        result = await db.execute(
            select(ImportBatch)
            .order_by(ImportBatch.created_at.desc(), ImportBatch.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [ImportBatchResponse.model_validate(batch) for batch in result.scalars().all()]
