"""
Ledger Database Models.

Transaction holds bank statement lines; CompanyEntry holds company ledger
lines. Both are immutable once stored, apart from the explicit edit
endpoint, and each carries a unique row fingerprint used to skip rows that
were already imported.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledgermatch.database.db_configs import Base


class BankTransactionType(PyEnum):
    CREDIT = "credit"
    DEBIT = "debit"


class CompanyEntryType(PyEnum):
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(Base):
    """Bank-side transaction parsed from a statement file."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    upload_batch_id = Column(Integer, ForeignKey("upload_batches.id"), nullable=True, index=True)

    bank_name = Column(String(255), nullable=True)
    external_id = Column(String(255), nullable=True)  # FITID for OFX statements

    date = Column(Date, nullable=False, index=True)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)  # signed: credits positive, debits negative
    transaction_type = Column(String(20), nullable=False, index=True)
    category = Column(String(100), nullable=True, index=True)
    justification = Column(String(1000), nullable=True)

    row_fingerprint = Column(String(64), nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    upload_batch = relationship("UploadBatch", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint('row_fingerprint', name='uq_transaction_row_fingerprint'),
        Index('ix_transaction_date_amount', 'date', 'amount'),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, date={self.date}, amount={self.amount})>"


class CompanyEntry(Base):
    """Company-side financial entry parsed from a ledger spreadsheet."""
    __tablename__ = "company_entries"

    id = Column(Integer, primary_key=True, index=True)
    upload_batch_id = Column(Integer, ForeignKey("upload_batches.id"), nullable=True, index=True)

    date = Column(Date, nullable=False, index=True)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    transaction_type = Column(String(20), nullable=False, index=True)
    category = Column(String(100), nullable=True, index=True)
    cost_center = Column(String(100), nullable=True)
    department = Column(String(100), nullable=True)
    project = Column(String(100), nullable=True)
    observations = Column(String(1000), nullable=True)

    row_fingerprint = Column(String(64), nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    upload_batch = relationship("UploadBatch", back_populates="company_entries")

    __table_args__ = (
        UniqueConstraint('row_fingerprint', name='uq_company_entry_row_fingerprint'),
        Index('ix_company_entry_date_amount', 'date', 'amount'),
    )

    def __repr__(self):
        return f"<CompanyEntry(id={self.id}, date={self.date}, amount={self.amount})>"
