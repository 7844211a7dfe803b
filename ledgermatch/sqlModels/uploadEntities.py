"""
UploadBatch Database Model.

One row per file submission, including rejected duplicate attempts so the
upload history shows them.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, BigInteger, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledgermatch.database.db_configs import Base


class SourceKind(PyEnum):
    """Which side of the reconciliation a file feeds."""
    BANK = "bank"
    COMPANY = "company"


class UploadStatus(PyEnum):
    PROCESSED = "processed"
    PARTIAL = "partial"      # at least one row needs correction
    DUPLICATE = "duplicate"  # rejected attempt, no rows stored


class UploadBatch(Base):
    """
    Upload batch model.

    `active_fingerprint` mirrors `content_fingerprint` for accepted batches
    and is NULL for duplicate attempts; its unique constraint is what keeps
    two accepted batches from sharing a fingerprint, even when the uploads
    race each other.
    """
    __tablename__ = "upload_batches"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(String(255), nullable=False)
    source_kind = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=UploadStatus.PROCESSED.value)

    # SHA-256 hex digest of the raw bytes
    content_fingerprint = Column(String(64), nullable=False, index=True)
    active_fingerprint = Column(String(64), nullable=True)

    file_size = Column(BigInteger, nullable=True)
    bank_name = Column(String(255), nullable=True)
    storage_path = Column(String(500), nullable=True)

    # Ingestion counts
    items_imported = Column(Integer, default=0, nullable=False)
    duplicates_found = Column(Integer, default=0, nullable=False)
    items_incomplete = Column(Integer, default=0, nullable=False)
    total_entries_processed = Column(Integer, default=0, nullable=False)

    uploaded_at = Column(DateTime, server_default=func.now(), nullable=False)

    transactions = relationship("Transaction", back_populates="upload_batch")
    company_entries = relationship("CompanyEntry", back_populates="upload_batch")

    __table_args__ = (
        UniqueConstraint('active_fingerprint', name='uq_upload_active_fingerprint'),
        Index('ix_upload_kind_uploaded', 'source_kind', 'uploaded_at'),
    )

    def __repr__(self):
        return f"<UploadBatch(id={self.id}, filename='{self.filename}', status='{self.status}')>"
