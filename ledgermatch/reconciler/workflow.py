"""
Reconciliation Workflow.

Proposes matches between bank transactions and company entries and takes
them through their lifecycle:

    pending --confirm--> confirmed
    pending --reject---> rejected

Rules enforced here and by the database:
- A transaction or entry with a pending or confirmed match is never proposed
  again; a pair that was rejected is never proposed again.
- At most one pending match per transaction and per entry, enforced by the
  unique pending-reference columns at insert time, so concurrent runs cannot
  double-book a record.
- Decisions are conditional updates from pending; anything else is a
  conflict.
"""
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ledgermatch.config.settings import settings
from ledgermatch.customLogging.logger import log_operation
from ledgermatch.database.db_configs import utc_now
from ledgermatch.exceptions.exceptions import (
    ConflictException,
    InvalidRequestException,
    MatchingTimeoutException,
    RecordNotFoundException,
)
from ledgermatch.reconciler.anomaly import AnomalyDetector, AnomalyFlag, StatisticalAnomalyDetector
from ledgermatch.reconciler.matcher import (
    LedgerSnapshot,
    MatchCandidate,
    ReconciliationMatcher,
    WeightedMatcher,
    snapshot_rows,
)
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.sqlModels.reconciliationEntities import MatchStatus, ReconciliationMatch

logger = logging.getLogger("ledgermatch.reconciler")

MODE_STANDARD = "standard"
MODE_ANOMALY_AWARE = "anomaly_aware"

ACTIVE_STATUSES = (MatchStatus.PENDING.value, MatchStatus.CONFIRMED.value)


def generate_run_id() -> str:
    """Generate a unique run ID: RUN-YYYYMMDD-HHMMSS-shortid."""
    now = datetime.now()
    short_id = uuid.uuid4().hex[:8]
    return f"RUN-{now.strftime('%Y%m%d-%H%M%S')}-{short_id}"


@dataclass
class RunReport:
    """Summary of one reconciliation run."""
    run_id: str
    mode: str
    bank_transactions_considered: int = 0
    company_entries_considered: int = 0
    matches_created: int = 0
    skipped_conflicts: int = 0
    anomalies_detected: int = 0
    anomalies_flagged: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    match_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "run_id": self.run_id,
            "mode": self.mode,
            "bank_transactions_considered": self.bank_transactions_considered,
            "company_entries_considered": self.company_entries_considered,
            "matches_created": self.matches_created,
            "skipped_conflicts": self.skipped_conflicts,
            "match_ids": self.match_ids,
        }
        if self.mode == MODE_ANOMALY_AWARE:
            data.update({
                "anomalies_detected": self.anomalies_detected,
                "anomalies_flagged": self.anomalies_flagged,
                "start_date": self.start_date.isoformat() if self.start_date else None,
                "end_date": self.end_date.isoformat() if self.end_date else None,
            })
        return data


@dataclass
class BatchDecisionResult:
    action: str
    processed: int = 0
    succeeded: int = 0
    errors: List[dict] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "total_processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": round(self.succeeded / self.processed, 4) if self.processed else 0.0,
            "errors": self.errors,
        }


class ReconciliationWorkflow:
    """
    Reconciliation run and decision service.

    Args:
        db: Database session; each public operation commits its own work.
        matcher: Candidate scorer. Defaults to WeightedMatcher with the
            configured score threshold.
        anomaly_detector: Used by anomaly-aware runs. Defaults to
            StatisticalAnomalyDetector.
        timeout_seconds: Upper bound for the matching step.
    """

    def __init__(
        self,
        db: Session,
        matcher: Optional[ReconciliationMatcher] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.db = db
        self.matcher = matcher or WeightedMatcher(threshold=settings.MATCH_SCORE_THRESHOLD)
        self.anomaly_detector = anomaly_detector or StatisticalAnomalyDetector()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.MATCHING_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_pending(self) -> List[ReconciliationMatch]:
        stmt = (
            select(ReconciliationMatch)
            .options(
                selectinload(ReconciliationMatch.bank_transaction),
                selectinload(ReconciliationMatch.company_entry),
            )
            .where(ReconciliationMatch.status == MatchStatus.PENDING.value)
            .order_by(ReconciliationMatch.match_score.desc(), ReconciliationMatch.id.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_match(self, match_id: int) -> ReconciliationMatch:
        match = self.db.get(ReconciliationMatch, match_id)
        if match is None:
            raise RecordNotFoundException(f"Reconciliation match {match_id} not found", details={"match_id": match_id})
        return match

    def list_anomalies(self, severity: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[int, List[ReconciliationMatch]]:
        conditions = [ReconciliationMatch.is_anomaly.is_(True)]
        if severity:
            conditions.append(ReconciliationMatch.anomaly_severity == severity)

        total = self.db.execute(
            select(func.count(ReconciliationMatch.id)).where(and_(*conditions))
        ).scalar_one()
        stmt = (
            select(ReconciliationMatch)
            .options(
                selectinload(ReconciliationMatch.bank_transaction),
                selectinload(ReconciliationMatch.company_entry),
            )
            .where(and_(*conditions))
            .order_by(ReconciliationMatch.anomaly_score.desc(), ReconciliationMatch.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return total, list(self.db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start_reconciliation(self) -> RunReport:
        """Propose matches across all eligible records."""
        started = time.perf_counter()
        report = RunReport(run_id=generate_run_id(), mode=MODE_STANDARD)
        transactions, entries, rejected_pairs = self._eligible_snapshots()
        report.bank_transactions_considered = len(transactions)
        report.company_entries_considered = len(entries)

        candidates = self._match_with_timeout(transactions, entries, rejected_pairs)
        self._persist_candidates(candidates, report, flags={})

        log_operation(
            logger,
            "reconciliation_run",
            success=True,
            started_at=started,
            run_id=report.run_id,
            mode=report.mode,
            matches_created=report.matches_created,
            skipped_conflicts=report.skipped_conflicts,
        )
        return report

    def start_anomaly_aware_reconciliation(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> RunReport:
        """
        Propose matches inside a date window, annotating those whose bank
        transaction the anomaly detector flags. Annotated matches stay pending.

        Raises:
            InvalidRequestException: If start_date is after end_date.
        """
        started = time.perf_counter()
        end_date = end_date or date.today()
        start_date = start_date or (end_date - timedelta(days=settings.ANOMALY_WINDOW_DAYS))
        if start_date > end_date:
            raise InvalidRequestException(
                "start_date must be on or before end_date",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )

        report = RunReport(
            run_id=generate_run_id(),
            mode=MODE_ANOMALY_AWARE,
            start_date=start_date,
            end_date=end_date,
        )

        window_transactions = snapshot_rows(
            self.db.execute(
                select(Transaction)
                .where(Transaction.date >= start_date, Transaction.date <= end_date)
                .order_by(Transaction.id)
            ).scalars().all()
        )
        flags = self.anomaly_detector.detect(window_transactions)
        report.anomalies_detected = len(flags)

        transactions, entries, rejected_pairs = self._eligible_snapshots(start_date, end_date)
        report.bank_transactions_considered = len(transactions)
        report.company_entries_considered = len(entries)

        candidates = self._match_with_timeout(transactions, entries, rejected_pairs)
        self._persist_candidates(candidates, report, flags=flags)

        log_operation(
            logger,
            "reconciliation_run",
            success=True,
            started_at=started,
            run_id=report.run_id,
            mode=report.mode,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            matches_created=report.matches_created,
            anomalies_detected=report.anomalies_detected,
            anomalies_flagged=report.anomalies_flagged,
        )
        return report

    def _eligible_snapshots(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Tuple[List[LedgerSnapshot], List[LedgerSnapshot], Set[Tuple[int, int]]]:
        """Records with no pending or confirmed match, plus the rejected pairs to avoid."""
        blocked_bank = select(ReconciliationMatch.bank_transaction_id).where(
            ReconciliationMatch.status.in_(ACTIVE_STATUSES)
        )
        blocked_company = select(ReconciliationMatch.company_entry_id).where(
            ReconciliationMatch.status.in_(ACTIVE_STATUSES)
        )

        txn_stmt = select(Transaction).where(Transaction.id.not_in(blocked_bank))
        entry_stmt = select(CompanyEntry).where(CompanyEntry.id.not_in(blocked_company))
        if start_date is not None:
            txn_stmt = txn_stmt.where(Transaction.date >= start_date)
            entry_stmt = entry_stmt.where(CompanyEntry.date >= start_date)
        if end_date is not None:
            txn_stmt = txn_stmt.where(Transaction.date <= end_date)
            entry_stmt = entry_stmt.where(CompanyEntry.date <= end_date)

        transactions = snapshot_rows(self.db.execute(txn_stmt.order_by(Transaction.id)).scalars().all())
        entries = snapshot_rows(self.db.execute(entry_stmt.order_by(CompanyEntry.id)).scalars().all())

        rejected_pairs = {
            (bank_id, company_id)
            for bank_id, company_id in self.db.execute(
                select(ReconciliationMatch.bank_transaction_id, ReconciliationMatch.company_entry_id)
                .where(ReconciliationMatch.status == MatchStatus.REJECTED.value)
            ).all()
        }
        return transactions, entries, rejected_pairs

    def _match_with_timeout(
        self,
        transactions: Sequence[LedgerSnapshot],
        entries: Sequence[LedgerSnapshot],
        rejected_pairs: Set[Tuple[int, int]],
    ) -> List[MatchCandidate]:
        """
        Run the matcher on snapshots in a worker thread, bounded by the timeout.

        The worker only sees plain snapshots, so an abandoned run cannot touch
        the session.
        """
        if not transactions or not entries:
            return []

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="matcher")
        future = executor.submit(self.matcher.best_candidates, transactions, entries, rejected_pairs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as e:
            future.cancel()
            logger.error(
                "Matching timed out",
                extra={
                    "timeout_seconds": self.timeout_seconds,
                    "transactions": len(transactions),
                    "entries": len(entries),
                }
            )
            raise MatchingTimeoutException(self.timeout_seconds) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _persist_candidates(
        self,
        candidates: List[MatchCandidate],
        report: RunReport,
        flags: Dict[int, AnomalyFlag],
    ) -> None:
        """
        Insert candidates as pending matches, one SAVEPOINT each.

        A candidate whose transaction or entry was claimed since the snapshot
        (pending-reference constraint, or a confirmation in between) is skipped.
        """
        table = ReconciliationMatch.__table__

        for candidate in candidates:
            if self._has_confirmed_match(candidate):
                report.skipped_conflicts += 1
                continue

            flag = flags.get(candidate.bank_transaction_id)
            values = {
                "bank_transaction_id": candidate.bank_transaction_id,
                "company_entry_id": candidate.company_entry_id,
                "match_score": candidate.score,
                "score_breakdown": candidate.breakdown,
                "status": MatchStatus.PENDING.value,
                "run_id": report.run_id,
                "pending_bank_ref": candidate.bank_transaction_id,
                "pending_company_ref": candidate.company_entry_id,
                "is_anomaly": flag is not None,
                "anomaly_type": flag.anomaly_type if flag else None,
                "anomaly_severity": flag.severity if flag else None,
                "anomaly_score": flag.score if flag else None,
                "anomaly_reason": flag.reason if flag else None,
            }

            nested = self.db.begin_nested()
            try:
                result = self.db.execute(table.insert().values(**values))
                nested.commit()
            except IntegrityError:
                nested.rollback()
                report.skipped_conflicts += 1
                logger.debug(
                    f"Skipped candidate {candidate.bank_transaction_id}->{candidate.company_entry_id}: already pending"
                )
                continue

            report.matches_created += 1
            report.match_ids.append(result.inserted_primary_key[0])
            if flag is not None:
                report.anomalies_flagged += 1

        self.db.commit()

    def _has_confirmed_match(self, candidate: MatchCandidate) -> bool:
        stmt = select(ReconciliationMatch.id).where(
            ReconciliationMatch.status == MatchStatus.CONFIRMED.value,
            or_(
                ReconciliationMatch.bank_transaction_id == candidate.bank_transaction_id,
                ReconciliationMatch.company_entry_id == candidate.company_entry_id,
            ),
        ).limit(1)
        return self.db.execute(stmt).first() is not None

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def confirm(self, match_id: int) -> ReconciliationMatch:
        return self._decide(match_id, MatchStatus.CONFIRMED)

    def reject(self, match_id: int) -> ReconciliationMatch:
        return self._decide(match_id, MatchStatus.REJECTED)

    def _decide(self, match_id: int, new_status: MatchStatus) -> ReconciliationMatch:
        """
        Move a match out of pending.

        Raises:
            RecordNotFoundException: Unknown match id.
            ConflictException: The match is no longer pending.
        """
        stmt = (
            update(ReconciliationMatch)
            .where(
                ReconciliationMatch.id == match_id,
                ReconciliationMatch.status == MatchStatus.PENDING.value,
            )
            .values(
                status=new_status.value,
                decided_at=utc_now(),
                pending_bank_ref=None,
                pending_company_ref=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            self.db.rollback()
            match = self.get_match(match_id)
            raise ConflictException(
                f"Reconciliation match {match_id} is already {match.status}",
                details={
                    "match_id": match_id,
                    "current_status": match.status,
                    "requested_status": new_status.value,
                },
            )

        self.db.commit()
        match = self.get_match(match_id)

        log_operation(
            logger,
            f"match_{new_status.value}",
            success=True,
            match_id=match_id,
            bank_transaction_id=match.bank_transaction_id,
            company_entry_id=match.company_entry_id,
        )
        return match

    def batch_confirm(self, match_ids: Sequence[int]) -> BatchDecisionResult:
        return self._decide_many(match_ids, MatchStatus.CONFIRMED)

    def batch_reject(self, match_ids: Sequence[int]) -> BatchDecisionResult:
        return self._decide_many(match_ids, MatchStatus.REJECTED)

    def _decide_many(self, match_ids: Sequence[int], new_status: MatchStatus) -> BatchDecisionResult:
        result = BatchDecisionResult(action=new_status.value)
        for match_id in dict.fromkeys(match_ids):
            result.processed += 1
            try:
                self._decide(match_id, new_status)
                result.succeeded += 1
            except (RecordNotFoundException, ConflictException) as e:
                result.errors.append({"id": match_id, "error_code": e.error_code, "message": e.message})
        return result

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def report(self) -> dict:
        """Reconciliation summary and confirmed cash flow, computed on demand."""
        counts = dict(
            self.db.execute(
                select(ReconciliationMatch.status, func.count(ReconciliationMatch.id))
                .group_by(ReconciliationMatch.status)
            ).all()
        )
        total = sum(counts.values())
        confirmed = counts.get(MatchStatus.CONFIRMED.value, 0)

        average_score = self.db.execute(
            select(func.avg(ReconciliationMatch.match_score))
            .where(ReconciliationMatch.status == MatchStatus.CONFIRMED.value)
        ).scalar()
        anomalies = self.db.execute(
            select(func.count(ReconciliationMatch.id)).where(ReconciliationMatch.is_anomaly.is_(True))
        ).scalar_one()

        credits, debits = self.db.execute(
            select(
                func.coalesce(func.sum(case((Transaction.amount > 0, Transaction.amount), else_=0)), 0),
                func.coalesce(func.sum(case((Transaction.amount < 0, -Transaction.amount), else_=0)), 0),
            )
            .select_from(ReconciliationMatch)
            .join(Transaction, Transaction.id == ReconciliationMatch.bank_transaction_id)
            .where(ReconciliationMatch.status == MatchStatus.CONFIRMED.value)
        ).one()
        credits, debits = float(credits), float(debits)

        recent = self.db.execute(
            select(ReconciliationMatch)
            .where(ReconciliationMatch.decided_at.is_not(None))
            .order_by(ReconciliationMatch.decided_at.desc(), ReconciliationMatch.id.desc())
            .limit(10)
        ).scalars().all()

        return {
            "summary": {
                "total_records": total,
                "confirmed": confirmed,
                "pending": counts.get(MatchStatus.PENDING.value, 0),
                "rejected": counts.get(MatchStatus.REJECTED.value, 0),
                "reconciliation_rate": round(confirmed / total, 4) if total else 0.0,
                "average_match_score": round(float(average_score), 4) if average_score is not None else 0.0,
                "anomalies": anomalies,
            },
            "financials": {
                "total_reconciled_value": round(credits + debits, 2),
                "reconciled_credits": round(credits, 2),
                "reconciled_debits": round(debits, 2),
                "net_reconciled_flow": round(credits - debits, 2),
            },
            "recent_activity": [
                {
                    "id": match.id,
                    "status": match.status,
                    "match_score": match.match_score,
                    "decided_at": match.decided_at.isoformat() if match.decided_at else None,
                }
                for match in recent
            ],
            "generated_at": utc_now().isoformat(),
        }
