"""
File Parsing Service.

Turns uploaded bank statements and company ledgers into raw row dicts keyed
by canonical field names (date, description, amount, ...). Parsing never
validates values; that is the row validator's job.

Supported formats:
- OFX / QFX via ofxparse
- CSV and XLSX via pandas, with header aliases for common Portuguese and
  English column names
"""
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd
from ofxparse import OfxParser

from ledgermatch.exceptions.exceptions import EmptyFileException, ReadFileException
from ledgermatch.utils.parsing import clean_string, is_missing, normalize_text, parse_amount

logger = logging.getLogger("ledgermatch.upload.file_parser")

OFX_EXTENSIONS = (".ofx", ".qfx")
XLSX_ENGINE = "openpyxl"

# Canonical field -> accepted header names (compared after normalize_text)
COLUMN_ALIASES: Dict[str, List[str]] = {
    "date": [
        "data", "date", "data lancamento", "data_lancamento", "data do lancamento",
        "dt", "transaction date", "posting date", "value date", "data movimento",
    ],
    "description": [
        "descricao", "description", "historico", "memo", "narrative", "details",
        "detalhes", "lancamento", "discriminacao",
    ],
    "amount": ["valor", "amount", "value", "montante", "valor (r$)", "valor r$", "total"],
    "category": ["categoria", "category"],
    "transaction_type": ["tipo", "type", "transaction_type", "tipo_transacao", "tipo de transacao", "natureza"],
    "cost_center": ["centro de custo", "centro_de_custo", "centro custo", "cost_center", "cost center"],
    "department": ["departamento", "department", "setor"],
    "project": ["projeto", "project"],
    "observations": ["observacoes", "observacao", "observations", "notes", "obs"],
    "external_id": ["id", "fitid", "reference", "referencia", "documento", "doc", "numero documento"],
}
DEBIT_ALIASES = ["debito", "debit", "saida", "saidas", "dr", "money out"]
CREDIT_ALIASES = ["credito", "credit", "entrada", "entradas", "cr", "money in"]

# Header row is spreadsheet row 1, so data row i is row i + 2
SPREADSHEET_ROW_OFFSET = 2


@dataclass
class ParsedFile:
    """Rows extracted from one file, in file order."""
    file_format: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    bank_name: Optional[str] = None
    unmapped_columns: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


class FileParser:
    """Parses file bytes into raw rows carrying their source row number."""

    def parse(self, content: bytes, filename: str) -> ParsedFile:
        """
        Parse a file into raw rows.

        Raises:
            ReadFileException: If the content cannot be read in its declared format.
            EmptyFileException: If the file holds no data rows.
        """
        ext = self._get_extension(filename)
        if ext in OFX_EXTENSIONS:
            parsed = self._parse_ofx(content, filename)
        elif ext == ".csv":
            parsed = self._parse_frame(self._read_csv(content, filename), "csv")
        elif ext == ".xlsx":
            parsed = self._parse_frame(self._read_xlsx(content, filename), "xlsx")
        else:
            raise ReadFileException(f"No parser available for '{ext}' files")

        if not parsed.rows:
            raise EmptyFileException(f"No data rows found in {filename}")

        logger.info(
            f"Parsed {parsed.row_count} rows from {filename}",
            extra={
                "file_name": filename,
                "file_format": parsed.file_format,
                "row_count": parsed.row_count,
                "unmapped_columns": parsed.unmapped_columns,
            }
        )
        return parsed

    def _get_extension(self, filename: str) -> str:
        if "." in filename:
            return "." + filename.lower().rsplit(".", 1)[-1]
        return ""

    # ------------------------------------------------------------------
    # OFX
    # ------------------------------------------------------------------

    def _parse_ofx(self, content: bytes, filename: str) -> ParsedFile:
        try:
            ofx = OfxParser.parse(io.BytesIO(content))
        except Exception as e:
            raise ReadFileException(f"Failed to parse OFX file {filename}: {str(e)}") from e

        parsed = ParsedFile(file_format="ofx")
        row_number = 0
        for account in ofx.accounts:
            institution = getattr(account, "institution", None)
            organization = getattr(institution, "organization", None) if institution else None
            if organization and not parsed.bank_name:
                parsed.bank_name = str(organization).strip()

            statement = getattr(account, "statement", None)
            if statement is None:
                continue
            for tx in statement.transactions:
                row_number += 1
                parsed.rows.append({
                    "row_number": row_number,
                    "date": tx.date,
                    "description": clean_string(tx.memo) or clean_string(tx.payee),
                    "amount": tx.amount,
                    "transaction_type": None,
                    "category": None,
                    "external_id": clean_string(getattr(tx, "id", None)),
                })
        return parsed

    # ------------------------------------------------------------------
    # CSV / XLSX
    # ------------------------------------------------------------------

    def _detect_separator(self, content: bytes) -> str:
        """Semicolon for exports that use it (common with decimal commas), comma otherwise."""
        header = content.split(b"\n", 1)[0]
        return ";" if header.count(b";") > header.count(b",") else ","

    def _read_csv(self, content: bytes, filename: str) -> pd.DataFrame:
        separator = self._detect_separator(content)
        for encoding in ("utf-8-sig", "latin-1"):
            try:
                return pd.read_csv(
                    io.BytesIO(content),
                    sep=separator,
                    dtype=str,
                    encoding=encoding,
                    # Blank lines stay as empty rows so row numbers match the file
                    skip_blank_lines=False,
                )
            except UnicodeDecodeError:
                continue
            except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
                raise ReadFileException(f"Failed to read CSV file {filename}: {str(e)}") from e
        raise ReadFileException(f"Failed to decode CSV file {filename}")

    def _read_xlsx(self, content: bytes, filename: str) -> pd.DataFrame:
        try:
            return pd.read_excel(io.BytesIO(content), sheet_name=0, engine=XLSX_ENGINE)
        except Exception as e:
            raise ReadFileException(f"Failed to read Excel file {filename}: {str(e)}") from e

    def _map_columns(self, df: pd.DataFrame) -> Dict[str, Any]:
        """
        Map canonical field names to raw column labels.

        Returns:
            Dict of canonical field -> raw column, plus '_debit' / '_credit'
            when split amount columns are present.
        """
        normalized = {normalize_text(str(col)): col for col in df.columns}
        mapping: Dict[str, Any] = {}

        for field_name, aliases in COLUMN_ALIASES.items():
            for alias in [field_name] + aliases:
                if alias in normalized:
                    mapping[field_name] = normalized[alias]
                    break

        for key, aliases in (("_debit", DEBIT_ALIASES), ("_credit", CREDIT_ALIASES)):
            for alias in aliases:
                if alias in normalized:
                    mapping[key] = normalized[alias]
                    break

        return mapping

    def _parse_frame(self, df: pd.DataFrame, file_format: str) -> ParsedFile:
        df = df.dropna(how="all")
        mapping = self._map_columns(df)
        mapped = set(mapping.values())
        parsed = ParsedFile(
            file_format=file_format,
            unmapped_columns=[str(col) for col in df.columns if col not in mapped],
        )

        for index, record in zip(df.index, df.to_dict("records")):
            row: Dict[str, Any] = {"row_number": int(index) + SPREADSHEET_ROW_OFFSET}
            for field_name in COLUMN_ALIASES:
                column = mapping.get(field_name)
                value = record.get(column) if column is not None else None
                row[field_name] = None if is_missing(value) else value

            if row["amount"] is None and ("_debit" in mapping or "_credit" in mapping):
                row["amount"] = self._combine_debit_credit(
                    record.get(mapping.get("_debit")),
                    record.get(mapping.get("_credit")),
                )

            parsed.rows.append(row)
        return parsed

    def _combine_debit_credit(self, debit: Any, credit: Any) -> Any:
        """Signed amount from split debit/credit cells; raw text is kept when unreadable."""
        if is_missing(debit) and is_missing(credit):
            return None
        try:
            debit_value = abs(parse_amount(debit)) if not is_missing(debit) else 0
            credit_value = abs(parse_amount(credit)) if not is_missing(credit) else 0
        except ValueError:
            return debit if not is_missing(debit) else credit
        return credit_value - debit_value
