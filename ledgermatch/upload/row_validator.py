"""
Row validation.

Each raw row becomes either a ValidEntry ready to store or an
IncompleteEntry whose error names the offending field(s). Row problems never
raise; they are reported back so the user can correct them.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from ledgermatch.pydanticModels.uploadModels import IncompleteEntry, ValidEntry
from ledgermatch.sqlModels.ledgerEntities import BankTransactionType, CompanyEntryType
from ledgermatch.sqlModels.uploadEntities import SourceKind
from ledgermatch.upload.categories import default_category, normalize_category
from ledgermatch.utils.parsing import clean_string, is_missing, normalize_text, parse_amount, parse_date

REQUIRED_FIELDS = ("date", "description", "amount")
OPTIONAL_TEXT_FIELDS = ("cost_center", "department", "project", "observations", "external_id")
DESCRIPTION_MAX_LENGTH = 500

# Accepted spellings -> (is_inflow)
_TYPE_ALIASES: Dict[str, bool] = {
    "credit": True, "credito": True, "c": True, "cr": True, "entrada": True,
    "income": True, "receita": True, "recebimento": True,
    "debit": False, "debito": False, "d": False, "dr": False, "saida": False,
    "expense": False, "despesa": False, "pagamento": False,
}


def _resolve_type(source_kind: str, is_inflow: bool) -> str:
    if source_kind == SourceKind.BANK.value:
        return BankTransactionType.CREDIT.value if is_inflow else BankTransactionType.DEBIT.value
    return CompanyEntryType.INCOME.value if is_inflow else CompanyEntryType.EXPENSE.value


def _display_value(value: Any) -> Any:
    """JSON-friendly form of a raw cell for echoing back to the client."""
    if is_missing(value):
        return None
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, np.generic):
        return value.item()
    return value


def validate_row(raw: Dict[str, Any], source_kind: str) -> Union[ValidEntry, IncompleteEntry]:
    """
    Validate one raw row.

    Args:
        raw: Row dict keyed by canonical field names, with 'row_number'.
        source_kind: 'bank' or 'company'; decides the transaction type vocabulary.

    Returns:
        ValidEntry when every required field parses, otherwise IncompleteEntry.
    """
    row_number = int(raw.get("row_number") or 0)
    errors: List[str] = []

    missing = [name for name in REQUIRED_FIELDS if is_missing(raw.get(name))]
    if missing:
        errors.append(f"Missing required field(s): {', '.join(missing)}")

    entry_date: Optional[date] = None
    if "date" not in missing:
        try:
            entry_date = parse_date(raw["date"])
        except ValueError as e:
            errors.append(str(e))

    amount: Optional[Decimal] = None
    if "amount" not in missing:
        try:
            amount = parse_amount(raw["amount"])
        except ValueError as e:
            errors.append(str(e))

    is_inflow: Optional[bool] = None
    raw_type = raw.get("transaction_type")
    if not is_missing(raw_type):
        is_inflow = _TYPE_ALIASES.get(normalize_text(str(raw_type)))
        if is_inflow is None:
            errors.append(f"Invalid transaction_type: '{raw_type}'")

    if errors:
        fields = {name: _display_value(raw.get(name)) for name in IncompleteEntry.model_fields
                  if name not in ("row_number", "error")}
        return IncompleteEntry(row_number=row_number, error="; ".join(errors), **fields)

    description = clean_string(raw["description"])[:DESCRIPTION_MAX_LENGTH]

    if is_inflow is None:
        is_inflow = amount >= 0
    # Stored amounts carry the direction: inflows positive, outflows negative
    amount = abs(amount) if is_inflow else -abs(amount)

    category = normalize_category(clean_string(raw.get("category"))) or default_category(description)

    optional = {name: clean_string(raw.get(name)) for name in OPTIONAL_TEXT_FIELDS}

    return ValidEntry(
        row_number=row_number,
        date=entry_date,
        description=description,
        amount=amount,
        transaction_type=_resolve_type(source_kind, is_inflow),
        category=category,
        **optional,
    )
