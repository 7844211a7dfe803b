"""Tests for the preview / confirmation / execution deletion sequence."""
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from ledgermatch.exceptions.exceptions import (
    DeletionSequenceException,
    FeatureDisabledException,
    InvalidRequestException,
)
from ledgermatch.operations.data_deletion import AgedDataDeletion
from ledgermatch.operations.guarded import CONFIRMATION_PHRASE
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.sqlModels.operationEntities import DeletionRequest
from ledgermatch.sqlModels.reconciliationEntities import ReconciliationMatch
from ledgermatch.sqlModels.uploadEntities import UploadBatch

DAY = date(2026, 9, 10)


@pytest.fixture
def operation(db_session, storage) -> AgedDataDeletion:
    return AgedDataDeletion(db_session, storage=storage, enabled=True, min_days_old=1, ttl_minutes=15)


@pytest.fixture
def aged_data(db_session, add_transaction, add_entry, days_ago):
    """
    One old batch holding an old and a recent transaction, a recent entry,
    and a pending match between the old transaction and the recent entry.
    """
    batch = UploadBatch(
        filename="antigo.ofx",
        source_kind="bank",
        status="processed",
        content_fingerprint="f" * 64,
        active_fingerprint="f" * 64,
        uploaded_at=days_ago(10),
    )
    db_session.add(batch)
    db_session.flush()

    old_txn = add_transaction("-300.00", DAY, "Fornecedor antigo", created_at=days_ago(10))
    recent_txn = add_transaction("-45.00", DAY, "Tarifa bancaria")
    old_txn.upload_batch_id = batch.id
    recent_txn.upload_batch_id = batch.id
    entry = add_entry("-300.00", DAY, "Fornecedor antigo")
    db_session.add(ReconciliationMatch(
        bank_transaction_id=old_txn.id,
        company_entry_id=entry.id,
        match_score=0.9,
        status="pending",
        pending_bank_ref=old_txn.id,
        pending_company_ref=entry.id,
    ))
    db_session.commit()
    return {"old_txn": old_txn.id, "recent_txn": recent_txn.id, "entry": entry.id, "batch": batch.id}


def _ids(db, model):
    return db.execute(select(model.id)).scalars().all()


class TestHappyPath:
    def test_full_sequence(self, db_session, operation, aged_data):
        preview = operation.preview(7)

        assert preview["mode"] == "preview"
        assert preview["counts"] == {
            "reconciliation_matches": 1,
            "transactions": 1,
            "company_entries": 0,
            "upload_batches": 1,
        }
        assert preview["total_records"] == 3
        assert _ids(db_session, Transaction) != []

        confirmation = operation.confirm(7, preview["token"])

        assert confirmation["records"]["transactions"] == [aged_data["old_txn"]]
        assert confirmation["confirmation_phrase"] == CONFIRMATION_PHRASE

        result = operation.execute(7, preview["token"], force=True, confirm_text=CONFIRMATION_PHRASE)

        assert result["total_deleted"] == 3
        assert _ids(db_session, ReconciliationMatch) == []
        assert _ids(db_session, Transaction) == [aged_data["recent_txn"]]
        assert _ids(db_session, CompanyEntry) == [aged_data["entry"]]
        assert _ids(db_session, UploadBatch) == []
        surviving = db_session.execute(
            select(Transaction.upload_batch_id).where(Transaction.id == aged_data["recent_txn"])
        ).scalar_one()
        assert surviving is None

    def test_archived_upload_is_removed(self, operation, storage, aged_data):
        name = storage.archive_name("f" * 64, "antigo.ofx")
        storage.save_file("bank", name, b"OFXHEADER:100")
        token = operation.preview(7)["token"]
        operation.confirm(7, token)

        result = operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)

        assert result["archived_files_removed"] == 1
        assert result["archived_files_failed"] == []
        assert not storage.file_exists("bank", name)

    def test_execution_stops_at_the_confirmed_cutoff(self, db_session, operation, aged_data,
                                                     add_transaction, days_ago, monkeypatch):
        token = operation.preview(7)["token"]
        confirmation = operation.confirm(7, token)
        # Six days old: not listed at confirmation, past the threshold two days later
        unlisted = add_transaction("-80.00", DAY, "Tarifa avulsa", created_at=days_ago(6)).id
        db_session.commit()
        monkeypatch.setattr(operation, "cutoff_for", lambda days_old: days_ago(days_old - 2))

        result = operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)

        assert confirmation["records"]["transactions"] == [aged_data["old_txn"]]
        assert result["deleted"]["transactions"] == 1
        assert result["cutoff_date"] == confirmation["cutoff_date"]
        assert sorted(_ids(db_session, Transaction)) == sorted([aged_data["recent_txn"], unlisted])

    def test_token_cannot_be_replayed(self, operation, aged_data):
        token = operation.preview(7)["token"]
        operation.confirm(7, token)
        operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)

        with pytest.raises(DeletionSequenceException):
            operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)
        with pytest.raises(DeletionSequenceException):
            operation.confirm(7, token)

    def test_preview_deletes_nothing(self, db_session, operation, aged_data):
        operation.preview(7)

        assert len(_ids(db_session, Transaction)) == 2
        assert len(_ids(db_session, ReconciliationMatch)) == 1


class TestGuards:
    def test_disabled(self, db_session):
        disabled = AgedDataDeletion(db_session, enabled=False)

        with pytest.raises(FeatureDisabledException) as exc_info:
            disabled.preview(7)

        assert exc_info.value.status_code == 403
        assert exc_info.value.error_code == "FORBIDDEN"

    @pytest.mark.parametrize("days_old", [0, -3, "abc", 2.5, None])
    def test_invalid_days_old(self, operation, days_old):
        with pytest.raises(InvalidRequestException):
            operation.preview(days_old)

    def test_confirmation_needs_a_token(self, operation):
        with pytest.raises(DeletionSequenceException) as exc_info:
            operation.confirm(7, None)
        assert exc_info.value.status_code == 409

    def test_unknown_token(self, operation):
        with pytest.raises(DeletionSequenceException):
            operation.confirm(7, "not-a-real-token")

    def test_execution_cannot_skip_confirmation(self, operation, aged_data):
        token = operation.preview(7)["token"]

        with pytest.raises(DeletionSequenceException):
            operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)

    def test_days_old_must_match_preview(self, operation):
        token = operation.preview(7)["token"]

        with pytest.raises(DeletionSequenceException) as exc_info:
            operation.confirm(30, token)
        assert exc_info.value.details["previewed_days_old"] == 7

    def test_execution_requires_force_and_phrase(self, db_session, operation, aged_data):
        token = operation.preview(7)["token"]
        operation.confirm(7, token)

        with pytest.raises(InvalidRequestException):
            operation.execute(7, token, force=False, confirm_text=CONFIRMATION_PHRASE)
        with pytest.raises(InvalidRequestException):
            operation.execute(7, token, force=True, confirm_text="delete")

        assert len(_ids(db_session, Transaction)) == 2
        result = operation.execute(7, token, force=True, confirm_text=CONFIRMATION_PHRASE)
        assert result["total_deleted"] == 3

    def test_expired_request(self, db_session, operation, days_ago):
        token = operation.preview(7)["token"]
        request = db_session.execute(
            select(DeletionRequest).where(DeletionRequest.token == token)
        ).scalar_one()
        request.expires_at = days_ago(1)
        db_session.commit()

        with pytest.raises(DeletionSequenceException, match="expired"):
            operation.confirm(7, token)
