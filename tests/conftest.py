"""Test fixtures: in-memory database, archive storage and API client."""
from __future__ import annotations

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_TEST_DATA_DELETION"] = "true"

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ledgermatch.sqlModels  # noqa: F401
from ledgermatch.database.db_configs import Base, enable_sqlite_savepoints, get_database, utc_now
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.storage.config import get_storage
from ledgermatch.storage.local_storage import LocalStorage
from ledgermatch.upload.duplicate_detector import compute_row_fingerprint


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared by every session in a test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, autocommit=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Session for service-level tests."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    """Archive storage rooted in a temporary directory."""
    return LocalStorage(base_path=str(tmp_path / "uploads"))


@pytest.fixture
def client(session_factory, storage):
    """API client wired to the test database and storage."""
    from ledgermatch.main import app

    def _get_test_database():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_database] = _get_test_database
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _add_transaction(
    db,
    amount: str,
    on: date,
    description: str,
    created_at=None,
    external_id: Optional[str] = None,
) -> Transaction:
    value = Decimal(amount)
    txn = Transaction(
        date=on,
        description=description,
        amount=value,
        transaction_type="credit" if value >= 0 else "debit",
        category="outros",
        external_id=external_id,
        row_fingerprint=compute_row_fingerprint(on, value, description, external_id),
    )
    if created_at is not None:
        txn.created_at = created_at
        txn.updated_at = created_at
    db.add(txn)
    db.flush()
    return txn


def _add_entry(db, amount: str, on: date, description: str, created_at=None) -> CompanyEntry:
    value = Decimal(amount)
    entry = CompanyEntry(
        date=on,
        description=description,
        amount=value,
        transaction_type="income" if value >= 0 else "expense",
        category="outros",
        row_fingerprint=compute_row_fingerprint(on, value, description),
    )
    if created_at is not None:
        entry.created_at = created_at
        entry.updated_at = created_at
    db.add(entry)
    db.flush()
    return entry


@pytest.fixture
def add_transaction(db_session):
    """Insert a bank transaction: add_transaction("-120.00", date, "Supplier")."""
    def _add(amount: str, on: date, description: str, **kwargs) -> Transaction:
        return _add_transaction(db_session, amount, on, description, **kwargs)
    return _add


@pytest.fixture
def add_entry(db_session):
    """Insert a company entry: add_entry("-120.00", date, "Supplier")."""
    def _add(amount: str, on: date, description: str, **kwargs) -> CompanyEntry:
        return _add_entry(db_session, amount, on, description, **kwargs)
    return _add


@pytest.fixture
def days_ago():
    """Naive UTC timestamp N days in the past."""
    def _days_ago(days: int):
        return utc_now() - timedelta(days=days)
    return _days_ago
