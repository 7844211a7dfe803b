"""
Ingestion Orchestrator.

Drives one file submission end to end:

    input gate -> duplicate check -> parse -> validate rows -> store

Everything that is stored (the batch record, its rows and the archived raw
file) goes in a single database transaction, so a failure part-way leaves no
trace and the same file can simply be submitted again.
"""
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ledgermatch.config.settings import settings
from ledgermatch.customLogging.logger import log_exception, log_operation
from ledgermatch.exceptions.exceptions import (
    DatabaseUnavailableException,
    DuplicateFileException,
    EmptyFileException,
    FileTooLargeException,
    InvalidRequestException,
    RecordNotFoundException,
    StorageUnavailableException,
    UnsupportedFileTypeException,
)
from ledgermatch.pydanticModels.uploadModels import CorrectedEntry, IncompleteEntry, ValidEntry
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.sqlModels.uploadEntities import SourceKind, UploadBatch, UploadStatus
from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.config import get_storage
from ledgermatch.upload.corrections import select_corrected
from ledgermatch.upload.duplicate_detector import (
    DuplicateDetector,
    compute_fingerprint,
    compute_row_fingerprint,
)
from ledgermatch.upload.file_parser import FileParser
from ledgermatch.upload.row_validator import validate_row

logger = logging.getLogger("ledgermatch.upload.ingestion")


@dataclass
class IngestionReport:
    """
    Outcome of one ingestion or correction resubmission.

    Every row processed lands in exactly one of imported, duplicates or
    incomplete.
    """
    filename: str
    source_kind: str
    status: str
    batch_id: Optional[int] = None
    bank_name: Optional[str] = None
    items_imported: int = 0
    duplicates_found: int = 0
    incomplete_items: List[IncompleteEntry] = field(default_factory=list)
    total_credits: Decimal = Decimal("0")
    total_debits: Decimal = Decimal("0")

    @property
    def items_incomplete(self) -> int:
        return len(self.incomplete_items)

    @property
    def total_entries_processed(self) -> int:
        return self.items_imported + self.duplicates_found + self.items_incomplete

    def to_dict(self) -> dict:
        data = {
            "batch_id": self.batch_id,
            "filename": self.filename,
            "source_kind": self.source_kind,
            "status": self.status,
            "items_imported": self.items_imported,
            "saved_count": self.items_imported,
            "duplicates_found": self.duplicates_found,
            "items_incomplete": self.items_incomplete,
            "total_entries_processed": self.total_entries_processed,
            "incomplete_items": [entry.model_dump() for entry in self.incomplete_items],
        }
        if self.source_kind == SourceKind.BANK.value:
            data["bank_name"] = self.bank_name
            data["summary"] = {
                "total_credits": float(self.total_credits),
                "total_debits": float(self.total_debits),
            }
        return data


def _check_source_kind(source_kind: str) -> str:
    kinds = [kind.value for kind in SourceKind]
    if source_kind not in kinds:
        raise InvalidRequestException(f"Invalid source kind '{source_kind}'. Expected one of: {kinds}")
    return source_kind


class IngestionOrchestrator:
    """
    Coordinates duplicate detection, parsing, validation and storage.

    Args:
        db: Database session; the orchestrator commits or rolls it back.
        storage: Archive for raw uploads. Defaults to the configured backend.
        parser: File parser. Defaults to FileParser().
    """

    def __init__(
        self,
        db: Session,
        storage: Optional[StorageBackend] = None,
        parser: Optional[FileParser] = None,
    ):
        self.db = db
        self.storage = storage or get_storage()
        self.parser = parser or FileParser()
        self.detector = DuplicateDetector(db)

    # ------------------------------------------------------------------
    # Input gate
    # ------------------------------------------------------------------

    def validate_input(self, filename: str, content: bytes, source_kind: str) -> None:
        """
        Reject files by extension, size or emptiness before any other work.

        Raises:
            UnsupportedFileTypeException, FileTooLargeException, EmptyFileException
        """
        allowed = settings.allowed_extensions(source_kind)
        extension = self.storage.get_file_extension(filename or "")
        if extension not in allowed:
            raise UnsupportedFileTypeException(extension or "(none)", allowed)

        if len(content) > settings.max_upload_size_bytes:
            raise FileTooLargeException(len(content), settings.MAX_UPLOAD_SIZE_MB)

        if not content.strip():
            raise EmptyFileException()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, filename: str, content: bytes, source_kind: str) -> IngestionReport:
        """
        Ingest one uploaded file.

        Raises:
            DuplicateFileException: If the content was already ingested.
            StorageUnavailableException / DatabaseUnavailableException: If a
                backing service fails; nothing is stored in that case.
        """
        started = time.perf_counter()
        source_kind = _check_source_kind(source_kind)
        self.validate_input(filename, content, source_kind)

        fingerprint = compute_fingerprint(content)
        existing = self.detector.check(fingerprint)
        if existing.is_duplicate:
            self._record_duplicate_attempt(filename, fingerprint, source_kind, len(content))
            raise DuplicateFileException(filename, existing.original_upload_date, existing.original_batch_id)

        parsed = self.parser.parse(content, filename)
        valid, incomplete = self._validate_rows(parsed.rows, source_kind)

        report = IngestionReport(
            filename=filename,
            source_kind=source_kind,
            status=UploadStatus.PARTIAL.value if incomplete else UploadStatus.PROCESSED.value,
            bank_name=parsed.bank_name,
            incomplete_items=incomplete,
        )

        try:
            batch = UploadBatch(
                filename=filename,
                source_kind=source_kind,
                status=report.status,
                content_fingerprint=fingerprint,
                active_fingerprint=fingerprint,
                file_size=len(content),
                bank_name=parsed.bank_name,
            )
            self.db.add(batch)
            try:
                self.db.flush()
            except IntegrityError:
                # Same content committed by a concurrent upload since the check above
                self.db.rollback()
                raced = self.detector.check(fingerprint)
                self._record_duplicate_attempt(filename, fingerprint, source_kind, len(content))
                raise DuplicateFileException(filename, raced.original_upload_date, raced.original_batch_id)

            self._store_entries(valid, source_kind, batch.id, parsed.bank_name, report)

            batch.items_imported = report.items_imported
            batch.duplicates_found = report.duplicates_found
            batch.items_incomplete = report.items_incomplete
            batch.total_entries_processed = report.total_entries_processed

            batch.storage_path = self.storage.save_file(
                source_kind, self.storage.archive_name(fingerprint, filename), content
            )

            self.db.commit()
            report.batch_id = batch.id
        except (DuplicateFileException, StorageUnavailableException):
            self.db.rollback()
            raise
        except OperationalError as e:
            self.db.rollback()
            log_exception(logger, "Ingestion aborted", e, file_name=filename, source_kind=source_kind)
            raise DatabaseUnavailableException(f"Database unavailable while storing {filename}") from e

        log_operation(
            logger,
            f"{source_kind}_ingestion",
            success=True,
            started_at=started,
            batch_id=report.batch_id,
            file_name=filename,
            status=report.status,
            items_imported=report.items_imported,
            duplicates_found=report.duplicates_found,
            items_incomplete=report.items_incomplete,
        )
        return report

    def resubmit(
        self,
        entries: Sequence[CorrectedEntry],
        source_kind: str = SourceKind.COMPANY.value,
        batch_id: Optional[int] = None,
    ) -> IngestionReport:
        """
        Re-validate and store user-corrected rows.

        Entries flagged `corrected: false` are dropped. Rows that still fail
        validation come back as incomplete again. The batch record keeps the
        counts of its original upload; correction outcomes are reported only
        in the returned report.

        Raises:
            NothingToSaveException: If no corrected entries remain.
            RecordNotFoundException: If batch_id does not exist.
        """
        source_kind = _check_source_kind(source_kind)
        selected = select_corrected(entries)

        batch: Optional[UploadBatch] = None
        if batch_id is not None:
            batch = self.db.get(UploadBatch, batch_id)
            if batch is None or batch.status == UploadStatus.DUPLICATE.value:
                raise RecordNotFoundException(f"Upload batch {batch_id} not found")

        rows = []
        for position, entry in enumerate(selected, start=1):
            row = entry.raw_row()
            row["row_number"] = entry.row_number or position
            rows.append(row)
        valid, incomplete = self._validate_rows(rows, source_kind)

        report = IngestionReport(
            filename=batch.filename if batch else "corrections",
            source_kind=source_kind,
            status=UploadStatus.PARTIAL.value if incomplete else UploadStatus.PROCESSED.value,
            batch_id=batch.id if batch else None,
            bank_name=batch.bank_name if batch else None,
            incomplete_items=incomplete,
        )

        try:
            self._store_entries(valid, source_kind, report.batch_id, report.bank_name, report)
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            log_exception(logger, "Correction resubmission aborted", e, batch_id=report.batch_id)
            raise DatabaseUnavailableException("Database unavailable while storing corrections") from e

        log_operation(
            logger,
            "corrections_resubmitted",
            success=True,
            batch_id=report.batch_id,
            submitted=len(selected),
            items_imported=report.items_imported,
            duplicates_found=report.duplicates_found,
            items_incomplete=report.items_incomplete,
        )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_rows(self, rows, source_kind: str) -> Tuple[List[ValidEntry], List[IncompleteEntry]]:
        valid: List[ValidEntry] = []
        incomplete: List[IncompleteEntry] = []
        for raw in rows:
            result = validate_row(raw, source_kind)
            if isinstance(result, IncompleteEntry):
                incomplete.append(result)
            else:
                valid.append(result)
        return valid, incomplete

    def _store_entries(
        self,
        entries: List[ValidEntry],
        source_kind: str,
        batch_id: Optional[int],
        bank_name: Optional[str],
        report: IngestionReport,
    ) -> None:
        """
        Insert valid rows one at a time, counting rows already present as duplicates.

        Each insert runs in its own SAVEPOINT so a duplicate only rolls back that row.
        """
        table = Transaction.__table__ if source_kind == SourceKind.BANK.value else CompanyEntry.__table__

        for entry in entries:
            record = self._build_record(entry, source_kind, batch_id, bank_name)
            nested = self.db.begin_nested()
            try:
                self.db.execute(table.insert().values(**record))
                nested.commit()
            except IntegrityError:
                nested.rollback()
                report.duplicates_found += 1
                logger.debug(f"Skipped duplicate row {entry.row_number} ({record['row_fingerprint'][:12]})")
                continue

            report.items_imported += 1
            if entry.amount >= 0:
                report.total_credits += entry.amount
            else:
                report.total_debits += abs(entry.amount)

        if report.duplicates_found:
            logger.info(
                "Duplicate rows skipped during ingestion",
                extra={
                    "batch_id": batch_id,
                    "source_kind": source_kind,
                    "imported": report.items_imported,
                    "skipped": report.duplicates_found,
                }
            )

    def _build_record(
        self,
        entry: ValidEntry,
        source_kind: str,
        batch_id: Optional[int],
        bank_name: Optional[str],
    ) -> dict:
        record = {
            "upload_batch_id": batch_id,
            "date": entry.date,
            "description": entry.description,
            "amount": entry.amount,
            "transaction_type": entry.transaction_type,
            "category": entry.category,
        }
        if source_kind == SourceKind.BANK.value:
            record.update({
                "bank_name": bank_name,
                "external_id": entry.external_id,
                "row_fingerprint": compute_row_fingerprint(
                    entry.date, entry.amount, entry.description, entry.external_id
                ),
            })
        else:
            record.update({
                "cost_center": entry.cost_center,
                "department": entry.department,
                "project": entry.project,
                "observations": entry.observations,
                "row_fingerprint": compute_row_fingerprint(entry.date, entry.amount, entry.description),
            })
        return record

    def _record_duplicate_attempt(self, filename: str, fingerprint: str, source_kind: str, size: int) -> None:
        """Keep a history row for a rejected duplicate submission."""
        self.db.add(UploadBatch(
            filename=filename,
            source_kind=source_kind,
            status=UploadStatus.DUPLICATE.value,
            content_fingerprint=fingerprint,
            active_fingerprint=None,
            file_size=size,
        ))
        self.db.commit()
        logger.warning(
            f"Duplicate upload rejected: {filename}",
            extra={"file_name": filename, "fingerprint": fingerprint, "source_kind": source_kind}
        )
