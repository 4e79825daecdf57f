from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from app.core.db.base import BaseModel


class ImportBatch(BaseModel):
    """Receipt of one manual CSV upload."""

    __tablename__ = "import_batches"

    file_name: Mapped[str] = mapped_column(String, nullable=False)

    total_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    imported_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    skipped_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Duplicates, outgoing and unreadable rows"
    )

    matched_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    warnings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    blacklisted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    uploaded_by: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="operator or import_token"
    )

    def __repr__(self) -> str:
        return f"<ImportBatch(file='{self.file_name}', imported={self.imported_count}, skipped={self.skipped_count})>"
