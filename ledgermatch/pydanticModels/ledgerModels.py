"""Pydantic models for listing and editing ledger records."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_serializer


class TransactionResponse(BaseModel):
    id: int
    upload_batch_id: Optional[int] = None
    bank_name: Optional[str] = None
    external_id: Optional[str] = None
    date: date
    description: str
    amount: Decimal
    transaction_type: str
    category: Optional[str] = None
    justification: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)


class CompanyEntryResponse(BaseModel):
    id: int
    upload_batch_id: Optional[int] = None
    date: date
    description: str
    amount: Decimal
    transaction_type: str
    category: Optional[str] = None
    cost_center: Optional[str] = None
    department: Optional[str] = None
    project: Optional[str] = None
    observations: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)


class TransactionUpdate(BaseModel):
    """Explicit edit of a bank transaction. Only provided fields change."""
    date: Optional[str] = None
    amount: Optional[str | float] = None
    description: Optional[str] = None
    category: Optional[str] = None
    transaction_type: Optional[str] = None
    justification: Optional[str] = None
