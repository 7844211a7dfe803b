"""Deletion of aged ledger data behind the guarded operation sequence."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from ledgermatch.exceptions.exceptions import StorageUnavailableException
from ledgermatch.operations.guarded import GuardedOperation
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.sqlModels.reconciliationEntities import ReconciliationMatch
from ledgermatch.sqlModels.uploadEntities import UploadBatch, UploadStatus
from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.config import get_storage


class AgedDataDeletion(GuardedOperation):
    """
    Deletes records created before the cutoff.

    Matches go first: any match created before the cutoff, or referencing a
    transaction or entry that is about to be deleted. Surviving rows that
    point at a deleted upload batch are detached from it. Once the deletion
    is committed, the archived raw files of the deleted batches are removed.
    """

    operation_name = "test_data_deletion"

    def __init__(self, db: Session, storage: Optional[StorageBackend] = None, **kwargs):
        super().__init__(db, **kwargs)
        self.storage = storage or get_storage()
        self._pending_archives: List[Tuple[str, str]] = []

    def _old_transactions(self, cutoff: datetime):
        return select(Transaction.id).where(Transaction.created_at < cutoff)

    def _old_entries(self, cutoff: datetime):
        return select(CompanyEntry.id).where(CompanyEntry.created_at < cutoff)

    def _old_batches(self, cutoff: datetime):
        return select(UploadBatch.id).where(UploadBatch.uploaded_at < cutoff)

    def _match_condition(self, cutoff: datetime):
        return or_(
            ReconciliationMatch.created_at < cutoff,
            ReconciliationMatch.bank_transaction_id.in_(self._old_transactions(cutoff)),
            ReconciliationMatch.company_entry_id.in_(self._old_entries(cutoff)),
        )

    def _count(self, stmt) -> int:
        return self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def collect_counts(self, cutoff: datetime) -> Dict[str, int]:
        return {
            "reconciliation_matches": self._count(
                select(ReconciliationMatch.id).where(self._match_condition(cutoff))
            ),
            "transactions": self._count(self._old_transactions(cutoff)),
            "company_entries": self._count(self._old_entries(cutoff)),
            "upload_batches": self._count(self._old_batches(cutoff)),
        }

    def collect_records(self, cutoff: datetime) -> Dict[str, Any]:
        def ids(stmt):
            return list(self.db.execute(stmt.order_by(stmt.selected_columns[0])).scalars().all())

        return {
            "reconciliation_matches": ids(select(ReconciliationMatch.id).where(self._match_condition(cutoff))),
            "transactions": ids(self._old_transactions(cutoff)),
            "company_entries": ids(self._old_entries(cutoff)),
            "upload_batches": ids(self._old_batches(cutoff)),
        }

    def perform(self, cutoff: datetime) -> Dict[str, int]:
        # Matches reference transactions and entries, which reference batches
        matches = self.db.execute(
            delete(ReconciliationMatch)
            .where(self._match_condition(cutoff))
            .execution_options(synchronize_session=False)
        ).rowcount
        transactions = self.db.execute(
            delete(Transaction)
            .where(Transaction.created_at < cutoff)
            .execution_options(synchronize_session=False)
        ).rowcount
        entries = self.db.execute(
            delete(CompanyEntry)
            .where(CompanyEntry.created_at < cutoff)
            .execution_options(synchronize_session=False)
        ).rowcount

        self._pending_archives = [
            (source_kind, self.storage.archive_name(fingerprint, filename))
            for source_kind, fingerprint, filename in self.db.execute(
                select(UploadBatch.source_kind, UploadBatch.content_fingerprint, UploadBatch.filename)
                .where(UploadBatch.uploaded_at < cutoff, UploadBatch.status != UploadStatus.DUPLICATE.value)
            ).all()
        ]

        old_batches = self._old_batches(cutoff)
        for model in (Transaction, CompanyEntry):
            self.db.execute(
                update(model)
                .where(model.upload_batch_id.in_(old_batches))
                .values(upload_batch_id=None)
                .execution_options(synchronize_session=False)
            )
        batches = self.db.execute(
            delete(UploadBatch)
            .where(UploadBatch.uploaded_at < cutoff)
            .execution_options(synchronize_session=False)
        ).rowcount

        return {
            "reconciliation_matches": matches,
            "transactions": transactions,
            "company_entries": entries,
            "upload_batches": batches,
        }

    def after_commit(self) -> Dict[str, Any]:
        removed = 0
        failed = []
        for folder, name in self._pending_archives:
            try:
                if self.storage.delete_file(folder, name):
                    removed += 1
            except StorageUnavailableException as e:
                self.logger.warning(
                    f"Could not remove archived upload {folder}/{name}",
                    extra={"folder": folder, "file_name": name, "error_message": e.message}
                )
                failed.append(f"{folder}/{name}")
        self._pending_archives = []
        return {"archived_files_removed": removed, "archived_files_failed": failed}
