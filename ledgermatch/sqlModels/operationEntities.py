"""
DeletionRequest Database Model.

Server-side state for the preview / confirmation / execution sequence of a
guarded deletion.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from ledgermatch.database.db_configs import Base


class DeletionStage(PyEnum):
    PREVIEWED = "previewed"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"


class DeletionRequest(Base):
    __tablename__ = "deletion_requests"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, index=True, nullable=False)
    operation = Column(String(50), nullable=False)
    days_old = Column(Integer, nullable=False)
    stage = Column(String(20), nullable=False, default=DeletionStage.PREVIEWED.value)
    preview_counts = Column(JSON, nullable=True)
    # Cutoff behind the confirmation record list; execution never goes past it
    confirmed_cutoff = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<DeletionRequest(id={self.id}, operation='{self.operation}', stage='{self.stage}')>"
