"""CSV import domain service."""

import csv
from pathlib import Path
from typing import Iterable, Optional
import logging
import re

from homeledger.database.base import Database
from homeledger.domain.errors import ValidationError
from homeledger.domain.import_executor import ImportExecutor, ImportResult
from homeledger.domain.import_preview import ImportPreview

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "amount", "description")

# Header spellings (lower-cased, non-alphanumerics removed) to field names
COLUMN_ALIASES = {
    "date": "date",
    "transactiondate": "date",
    "posteddate": "date",
    "amount": "amount",
    "type": "type",
    "transactiontype": "type",
    "description": "description",
    "merchant": "merchant",
    "merchantname": "merchant",
    "payee": "merchant",
    "category": "category",
    "notes": "notes",
    "note": "notes",
    "memo": "notes",
    "externalid": "external_id",
    "transactionid": "external_id",
    "id": "id",
    "account": "account",
    "accountname": "account",
}

RawRow = tuple[int, dict[str, Optional[str]]]


def normalize_column_name(header: str) -> Optional[str]:
    """Map a CSV header to a known field name, or None if it isn't one."""
    key = re.sub(r"[^a-z0-9]", "", header.lower())
    return COLUMN_ALIASES.get(key)


class CSVImportService:
    """Service for importing CSV files."""

    def __init__(self, db: Database, executor: Optional[ImportExecutor] = None):
        """Initialize CSV import service.

        Args:
            db: Database instance
            executor: Import executor (a default one is created if omitted)
        """
        self.db = db
        self.executor = executor or ImportExecutor(db)

    def read_csv(self, csv_file_path: str) -> list[RawRow]:
        """Read a CSV file into (row number, normalized field mapping) pairs.

        Row numbers are file line numbers: the header is row 1. Blank lines
        are dropped. Columns with unknown headers are ignored.

        Raises:
            FileNotFoundError: If the CSV file doesn't exist
            ValidationError: If the header lacks a required column
        """
        csv_path = Path(csv_file_path)
        if not csv_path.exists():
            raise FileNotFoundError(f"CSV file not found: {csv_file_path}")

        with open(csv_path, "r", encoding="utf-8-sig", newline="") as f:
            # Try to detect delimiter
            sample = f.read(4096)
            f.seek(0)
            try:
                delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
            except csv.Error:
                delimiter = ","

            reader = csv.DictReader(f, delimiter=delimiter)
            if reader.fieldnames is None:
                raise ValidationError("CSV file has no columns")

            header_map: dict[str, str] = {}
            for header in reader.fieldnames:
                field_name = normalize_column_name(header or "")
                if field_name is not None and field_name not in header_map.values():
                    header_map[header] = field_name

            missing = [col for col in REQUIRED_COLUMNS if col not in header_map.values()]
            if missing:
                raise ValidationError(f"CSV file missing required columns: {', '.join(missing)}")

            rows: list[RawRow] = []
            for row in reader:
                values = {
                    field_name: (row.get(header) or "").strip() or None
                    for header, field_name in header_map.items()
                }
                if not any(values.values()):
                    continue
                # line_num counts physical lines read so far
                rows.append((reader.line_num, values))

        logger.debug(f"Read {len(rows)} rows from {csv_path.name}")
        return rows

    def preview_csv(
        self, csv_file_path: str, account_id: Optional[int] = None, protect_manual: bool = False
    ) -> ImportPreview:
        """Preview importing a CSV file without writing.

        Rows with an account column go to the account of that name; the
        others go to ``account_id``.

        Raises:
            FileNotFoundError: If the CSV file doesn't exist
            ValidationError: If the header lacks a required column
            NotFoundError: If the default account doesn't exist
        """
        return self.executor.preview(self.read_csv(csv_file_path), account_id, protect_manual)

    def execute_csv(
        self,
        csv_file_path: str,
        account_id: Optional[int] = None,
        skip_row_numbers: Iterable[int] = (),
        protect_manual: bool = False,
    ) -> ImportResult:
        """Import a CSV file.

        Args:
            csv_file_path: Path to CSV file
            account_id: Default account for rows without an account column value
            skip_row_numbers: Row numbers (as shown by the preview) to leave out
            protect_manual: Leave matched manual transactions untouched

        Returns:
            ImportResult

        Raises:
            FileNotFoundError: If the CSV file doesn't exist
            ValidationError: If the header lacks a required column
            NotFoundError: If the default account doesn't exist
        """
        rows = self.read_csv(csv_file_path)
        return self.executor.execute(rows, account_id, skip_row_numbers, protect_manual)
