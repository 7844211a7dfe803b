"""Pydantic models for reconciliation requests."""
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field


class AnomalyRunRequest(BaseModel):
    """Date window for an anomaly-aware run. Both bounds are inclusive."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BatchDecisionRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)
