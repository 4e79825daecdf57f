"""
Bank CSV export parser.

The column layout is bank specific and comes from configuration
(CSV_COLUMNS, "field:index" pairs). The default fits the BFS/SozialBank
export: semicolon separated, ISO-8859-1, German dates and amounts.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from app.core.config import config
from app.core.exceptions import CSVFormatError
from app.modules.transactions.dto import NormalizedTransaction

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("booking_date", "amount")


@dataclass
class ParsedCSV:
    transactions: List[NormalizedTransaction]
    total_rows: int
    malformed_rows: int = 0
    errors: List[str] = field(default_factory=list)


def parse_german_amount(value: str) -> Decimal:
    """'1.234,56' -> Decimal('1234.56'); '-45,40' -> Decimal('-45.40')."""
    cleaned = (value or "").strip().replace(" ", "")
    if not cleaned:
        raise ValueError("empty amount")
    cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        return Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"invalid amount '{value}'") from e


class BankCSVParser:
    def __init__(
        self,
        columns: Optional[Dict[str, int]] = None,
        delimiter: Optional[str] = None,
        encoding: Optional[str] = None,
        date_format: Optional[str] = None,
    ):
        self.columns = columns or config.csv_column_map
        self.delimiter = delimiter or config.csv_delimiter
        self.encoding = encoding or config.csv_encoding
        self.date_format = date_format or config.csv_date_format

        missing = [name for name in REQUIRED_COLUMNS if name not in self.columns]
        if missing:
            raise CSVFormatError(f"CSV column layout lacks {', '.join(missing)}")

    def parse(self, content: bytes) -> ParsedCSV:
        """
        Parse an export. The first row is a header. Rows that cannot be read
        are skipped and counted; the result is sorted by booking date so older
        payments settle older fees first.
        """
        try:
            text = content.decode(self.encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise CSVFormatError(f"File is not {self.encoding} encoded: {e}")
        text = text.lstrip("\ufeff")

        reader = csv.reader(io.StringIO(text), delimiter=self.delimiter)
        header = next(reader, None)
        if header is None:
            raise CSVFormatError("CSV file is empty")

        transactions: List[NormalizedTransaction] = []
        errors: List[str] = []
        total_rows = 0
        for line_number, row in enumerate(reader, start=2):
            if not any(cell.strip() for cell in row):
                continue
            total_rows += 1
            try:
                transactions.append(self._parse_row(row))
            except (ValueError, IndexError) as e:
                errors.append(f"Line {line_number}: {e}")

        if errors:
            logger.warning(f"Skipped {len(errors)} malformed CSV row(s)")
        transactions.sort(key=lambda tx: tx.booking_date)
        return ParsedCSV(
            transactions=transactions,
            total_rows=total_rows,
            malformed_rows=len(errors),
            errors=errors,
        )

    def _cell(self, row: List[str], name: str) -> Optional[str]:
        index = self.columns.get(name)
        if index is None:
            return None
        if index >= len(row):
            if name in REQUIRED_COLUMNS:
                raise IndexError(f"row has {len(row)} columns, need more than {index}")
            return None
        value = row[index].strip()
        return value or None

    def _parse_date(self, value: Optional[str]) -> date:
        if not value:
            raise ValueError("empty date")
        return datetime.strptime(value, self.date_format).date()

    def _parse_row(self, row: List[str]) -> NormalizedTransaction:
        booking_date = self._parse_date(self._cell(row, "booking_date"))
        try:
            value_date = self._parse_date(self._cell(row, "value_date"))
        except ValueError:
            value_date = booking_date

        return NormalizedTransaction(
            booking_date=booking_date,
            value_date=value_date,
            payer_name=self._cell(row, "payer_name"),
            payer_iban=self._cell(row, "payer_iban"),
            description=self._cell(row, "description"),
            amount=parse_german_amount(self._cell(row, "amount") or ""),
            currency=self._cell(row, "currency") or "EUR",
        )
