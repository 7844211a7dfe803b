"""
ReconciliationMatch Database Model.

A proposed pairing of one bank Transaction with one CompanyEntry. Matches
start as pending and are decided exactly once.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ledgermatch.database.db_configs import Base


class MatchStatus(PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class AnomalySeverity(PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReconciliationMatch(Base):
    """
    Reconciliation match model.

    `pending_bank_ref` and `pending_company_ref` hold the referenced ids only
    while the match is pending and are cleared when it is decided. Their
    unique constraints allow at most one pending match per transaction and
    per company entry.
    """
    __tablename__ = "reconciliation_matches"

    id = Column(Integer, primary_key=True, index=True)
    bank_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    company_entry_id = Column(Integer, ForeignKey("company_entries.id"), nullable=False, index=True)

    match_score = Column(Float, nullable=False)
    score_breakdown = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=MatchStatus.PENDING.value, index=True)
    run_id = Column(String(100), nullable=True, index=True)

    pending_bank_ref = Column(Integer, nullable=True)
    pending_company_ref = Column(Integer, nullable=True)

    # Anomaly annotations (anomaly-aware runs only)
    is_anomaly = Column(Boolean, default=False, nullable=False)
    anomaly_type = Column(String(50), nullable=True)
    anomaly_severity = Column(String(20), nullable=True, index=True)
    anomaly_score = Column(Float, nullable=True)
    anomaly_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    decided_at = Column(DateTime, nullable=True)

    bank_transaction = relationship("Transaction", foreign_keys=[bank_transaction_id])
    company_entry = relationship("CompanyEntry", foreign_keys=[company_entry_id])

    __table_args__ = (
        UniqueConstraint('pending_bank_ref', name='uq_match_pending_bank_ref'),
        UniqueConstraint('pending_company_ref', name='uq_match_pending_company_ref'),
        Index('ix_match_pair', 'bank_transaction_id', 'company_entry_id'),
    )

    def __repr__(self):
        return (
            f"<ReconciliationMatch(id={self.id}, bank={self.bank_transaction_id}, "
            f"company={self.company_entry_id}, status='{self.status}')>"
        )
