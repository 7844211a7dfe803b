"""Pydantic models for uploads, incomplete rows and correction resubmissions."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class IncompleteEntry(BaseModel):
    """A row that failed validation, kept with whatever fields it had."""
    row_number: int
    error: str
    date: Optional[Any] = None
    description: Optional[Any] = None
    amount: Optional[Any] = None
    category: Optional[Any] = None
    transaction_type: Optional[Any] = None
    cost_center: Optional[Any] = None
    department: Optional[Any] = None
    project: Optional[Any] = None
    observations: Optional[Any] = None
    external_id: Optional[Any] = None


class ValidEntry(BaseModel):
    """A row that passed validation and is ready to store."""
    row_number: int
    date: date
    description: str
    amount: Decimal
    transaction_type: str
    category: str
    external_id: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None
    project: Optional[str] = None
    observations: Optional[str] = None


class CorrectedEntry(BaseModel):
    """
    One entry in a correction resubmission.

    A missing `corrected` flag counts as corrected; entries flagged
    `corrected: false` are dropped before validation.
    """
    model_config = ConfigDict(extra="ignore")

    row_number: Optional[int] = None
    error: Optional[str] = None
    corrected: Optional[bool] = None
    date: Optional[Any] = None
    description: Optional[Any] = None
    amount: Optional[Any] = None
    category: Optional[Any] = None
    transaction_type: Optional[Any] = None
    cost_center: Optional[Any] = None
    department: Optional[Any] = None
    project: Optional[Any] = None
    observations: Optional[Any] = None
    external_id: Optional[Any] = None

    def raw_row(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"row_number", "error", "corrected"})


class CorrectionSubmission(BaseModel):
    entries: List[CorrectedEntry] = Field(default_factory=list)
    source_kind: Literal["bank", "company"] = "company"
    batch_id: Optional[int] = None


class UploadHistoryItem(BaseModel):
    id: int
    filename: str
    source_kind: str
    status: str
    bank_name: Optional[str] = None
    file_size: Optional[int] = None
    items_imported: int
    duplicates_found: int
    items_incomplete: int
    total_entries_processed: int
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)
