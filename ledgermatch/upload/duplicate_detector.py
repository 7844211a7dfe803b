"""
Duplicate file detection.

A file's identity is the SHA-256 of its bytes; the filename plays no part.
The check is read-only. The fingerprint is only recorded when the ingestion
that follows commits.
"""
import hashlib
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgermatch.sqlModels.uploadEntities import UploadBatch, UploadStatus
from ledgermatch.utils.parsing import normalize_text


def compute_fingerprint(content: bytes) -> str:
    """Deterministic fingerprint of raw file bytes."""
    return hashlib.sha256(content).hexdigest()


def compute_row_fingerprint(
    entry_date: date,
    amount: Decimal,
    description: str,
    external_id: Optional[str] = None,
) -> str:
    """Fingerprint of a ledger row, used to skip rows already stored."""
    parts = [entry_date.isoformat(), f"{amount:.2f}", normalize_text(description)]
    if external_id:
        parts.append(external_id.strip())
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass
class DuplicateCheckResult:
    is_duplicate: bool
    original_upload_date: Optional[str] = None
    original_filename: Optional[str] = None
    original_batch_id: Optional[int] = None


class DuplicateDetector:
    """Looks up accepted upload batches by content fingerprint."""

    def __init__(self, db: Session):
        self.db = db

    def check(self, fingerprint: str) -> DuplicateCheckResult:
        stmt = (
            select(UploadBatch)
            .where(
                UploadBatch.content_fingerprint == fingerprint,
                UploadBatch.status != UploadStatus.DUPLICATE.value,
            )
            .order_by(UploadBatch.uploaded_at.asc(), UploadBatch.id.asc())
            .limit(1)
        )
        original = self.db.execute(stmt).scalar_one_or_none()
        if original is None:
            return DuplicateCheckResult(is_duplicate=False)

        return DuplicateCheckResult(
            is_duplicate=True,
            original_upload_date=original.uploaded_at.isoformat() if original.uploaded_at else None,
            original_filename=original.filename,
            original_batch_id=original.id,
        )
