"""Tests for reconciliation runs and match decisions."""
from __future__ import annotations

import time
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from ledgermatch.exceptions.exceptions import (
    ConflictException,
    InvalidRequestException,
    MatchingTimeoutException,
    RecordNotFoundException,
)
from ledgermatch.reconciler.matcher import WeightedMatcher
from ledgermatch.reconciler.workflow import ReconciliationWorkflow
from ledgermatch.sqlModels.reconciliationEntities import ReconciliationMatch

DAY = date(2026, 9, 10)


class SlowMatcher(WeightedMatcher):
    def best_candidates(self, transactions, entries, excluded_pairs=None):
        time.sleep(0.5)
        return super().best_candidates(transactions, entries, excluded_pairs)


@pytest.fixture
def workflow(db_session) -> ReconciliationWorkflow:
    return ReconciliationWorkflow(db_session)


@pytest.fixture
def three_pairs(db_session, add_transaction, add_entry):
    """Three bank transactions, each with one obvious ledger counterpart."""
    pairs = []
    for amount, description in (("-1200.00", "Aluguel escritorio"),
                                ("-89.90", "Material de escritorio"),
                                ("3500.00", "Recebimento cliente Alfa")):
        txn = add_transaction(amount, DAY, description)
        entry = add_entry(amount, DAY + timedelta(days=1), description)
        pairs.append((txn.id, entry.id))
    db_session.commit()
    return pairs


def _match_count(db, status=None) -> int:
    stmt = select(func.count()).select_from(ReconciliationMatch)
    if status:
        stmt = stmt.where(ReconciliationMatch.status == status)
    return db.execute(stmt).scalar_one()


class TestStartReconciliation:
    def test_proposes_one_match_per_pair(self, db_session, workflow, three_pairs):
        report = workflow.start_reconciliation()

        assert report.matches_created == 3
        assert report.bank_transactions_considered == 3
        pending = workflow.list_pending()
        assert {(m.bank_transaction_id, m.company_entry_id) for m in pending} == set(three_pairs)
        assert all(m.status == "pending" and m.run_id == report.run_id for m in pending)
        assert report.run_id.startswith("RUN-")

    def test_second_run_creates_nothing(self, db_session, workflow, three_pairs):
        workflow.start_reconciliation()

        again = workflow.start_reconciliation()

        assert again.matches_created == 0
        assert _match_count(db_session) == 3

    def test_confirmed_records_stay_out(self, db_session, workflow, three_pairs):
        first = workflow.start_reconciliation()
        workflow.confirm(first.match_ids[0])

        again = workflow.start_reconciliation()

        assert again.matches_created == 0
        assert _match_count(db_session, "confirmed") == 1

    def test_rejected_pair_is_not_proposed_again(self, db_session, workflow, add_transaction, add_entry):
        add_transaction("-450.00", DAY, "Servico de limpeza")
        add_entry("-450.00", DAY, "Servico de limpeza")
        db_session.commit()

        [match_id] = workflow.start_reconciliation().match_ids
        workflow.reject(match_id)
        again = workflow.start_reconciliation()

        assert again.matches_created == 0
        assert again.bank_transactions_considered == 1

    def test_rejected_transaction_can_pair_with_another_entry(self, db_session, workflow,
                                                              add_transaction, add_entry):
        add_transaction("-450.00", DAY, "Servico de limpeza")
        first_entry = add_entry("-450.00", DAY, "Servico de limpeza")
        db_session.commit()
        [match_id] = workflow.start_reconciliation().match_ids
        workflow.reject(match_id)

        second_entry = add_entry("-450.00", DAY + timedelta(days=2), "Limpeza mensal servico")
        db_session.commit()
        again = workflow.start_reconciliation()

        assert again.matches_created == 1
        proposed = workflow.get_match(again.match_ids[0])
        assert proposed.company_entry_id == second_entry.id != first_entry.id

    def test_nothing_to_match(self, workflow):
        report = workflow.start_reconciliation()

        assert report.matches_created == 0
        assert report.to_dict()["mode"] == "standard"

    def test_timeout(self, db_session, three_pairs):
        slow = ReconciliationWorkflow(db_session, matcher=SlowMatcher(), timeout_seconds=0.05)

        with pytest.raises(MatchingTimeoutException) as exc_info:
            slow.start_reconciliation()

        assert exc_info.value.status_code == 504
        assert exc_info.value.error_code == "TIMEOUT"
        assert _match_count(db_session) == 0


class TestOverlappingRuns:
    def test_stale_snapshot_adds_no_second_pending_match(self, db_session, session_factory,
                                                         three_pairs, monkeypatch):
        other_session = session_factory()
        try:
            late = ReconciliationWorkflow(other_session)
            stale = late._eligible_snapshots()
            other_session.rollback()

            first = ReconciliationWorkflow(db_session).start_reconciliation()
            monkeypatch.setattr(late, "_eligible_snapshots", lambda *args, **kwargs: stale)
            second = late.start_reconciliation()
        finally:
            other_session.close()

        assert first.matches_created == 3
        assert second.matches_created == 0
        assert second.skipped_conflicts == 3
        pending_per_transaction = db_session.execute(
            select(ReconciliationMatch.bank_transaction_id, func.count())
            .where(ReconciliationMatch.status == "pending")
            .group_by(ReconciliationMatch.bank_transaction_id)
        ).all()
        assert sorted(tuple(row) for row in pending_per_transaction) == sorted((txn_id, 1) for txn_id, _ in three_pairs)


class TestDecisions:
    def test_confirm(self, db_session, workflow, three_pairs):
        match_id = workflow.start_reconciliation().match_ids[0]

        match = workflow.confirm(match_id)

        assert match.status == "confirmed"
        assert match.decided_at is not None
        assert match.pending_bank_ref is None
        assert match.pending_company_ref is None

    def test_reject_after_confirm_is_a_conflict(self, workflow, three_pairs):
        match_id = workflow.start_reconciliation().match_ids[0]
        workflow.confirm(match_id)

        with pytest.raises(ConflictException) as exc_info:
            workflow.reject(match_id)

        assert exc_info.value.status_code == 409
        assert exc_info.value.error_code == "CONFLICT"
        assert exc_info.value.details["current_status"] == "confirmed"
        assert workflow.get_match(match_id).status == "confirmed"

    def test_confirm_twice_is_a_conflict(self, workflow, three_pairs):
        match_id = workflow.start_reconciliation().match_ids[0]
        workflow.confirm(match_id)

        with pytest.raises(ConflictException):
            workflow.confirm(match_id)

    def test_unknown_match(self, workflow):
        with pytest.raises(RecordNotFoundException):
            workflow.confirm(12345)

    def test_batch_confirm_reports_failures(self, workflow, three_pairs):
        ids = workflow.start_reconciliation().match_ids
        workflow.reject(ids[0])

        result = workflow.batch_confirm(ids + [999]).to_dict()

        assert result["total_processed"] == 4
        assert result["succeeded"] == 2
        assert result["failed"] == 2
        assert {error["id"] for error in result["errors"]} == {ids[0], 999}
        assert result["success_rate"] == 0.5

    def test_batch_reject(self, db_session, workflow, three_pairs):
        ids = workflow.start_reconciliation().match_ids

        result = workflow.batch_reject(ids)

        assert result.succeeded == 3
        assert _match_count(db_session, "rejected") == 3


class TestAnomalyAwareRun:
    @pytest.fixture
    def window_with_outlier(self, db_session, add_transaction, add_entry):
        today = date.today()
        for i, amount in enumerate(["-100.00", "-101.00", "-99.00", "-100.00", "-102.00", "-98.00"]):
            add_transaction(amount, today - timedelta(days=i + 1), f"Fornecedor recorrente {i}")
        big = add_transaction("-10000.00", today - timedelta(days=2), "Transferencia investimento")
        add_entry("-10000.00", today - timedelta(days=2), "Transferencia investimento")
        ordinary = add_entry("-100.00", today - timedelta(days=1), "Fornecedor recorrente 0")
        db_session.commit()
        return big.id, ordinary.id

    def test_flagged_match_stays_pending(self, workflow, window_with_outlier):
        big_id, _ = window_with_outlier

        report = workflow.start_anomaly_aware_reconciliation()

        assert report.matches_created == 2
        assert report.anomalies_flagged == 1
        assert report.anomalies_detected >= 1
        flagged = [m for m in workflow.list_pending() if m.is_anomaly]
        assert len(flagged) == 1
        assert flagged[0].bank_transaction_id == big_id
        assert flagged[0].status == "pending"
        assert flagged[0].anomaly_type == "amount_outlier"
        assert flagged[0].anomaly_severity == "critical"

    def test_anomaly_listing(self, workflow, window_with_outlier):
        workflow.start_anomaly_aware_reconciliation()

        total, anomalies = workflow.list_anomalies(severity="critical")
        assert total == 1
        assert anomalies[0].anomaly_reason

        total, _ = workflow.list_anomalies(severity="low")
        assert total == 0

    def test_window_excludes_older_records(self, workflow, window_with_outlier):
        today = date.today()

        report = workflow.start_anomaly_aware_reconciliation(start_date=today, end_date=today)

        assert report.matches_created == 0
        assert report.bank_transactions_considered == 0

    def test_inverted_window(self, workflow):
        with pytest.raises(InvalidRequestException):
            workflow.start_anomaly_aware_reconciliation(
                start_date=date(2026, 9, 30), end_date=date(2026, 9, 1)
            )


class TestReport:
    def test_report_counts_and_cash_flow(self, workflow, three_pairs):
        ids = workflow.start_reconciliation().match_ids
        by_txn = {workflow.get_match(i).bank_transaction_id: i for i in ids}
        rent_txn, material_txn, income_txn = (pair[0] for pair in three_pairs)
        workflow.confirm(by_txn[rent_txn])
        workflow.confirm(by_txn[income_txn])
        workflow.reject(by_txn[material_txn])

        report = workflow.report()

        assert report["summary"]["total_records"] == 3
        assert report["summary"]["confirmed"] == 2
        assert report["summary"]["rejected"] == 1
        assert report["summary"]["pending"] == 0
        assert report["summary"]["reconciliation_rate"] == pytest.approx(0.6667)
        assert report["financials"]["reconciled_credits"] == 3500.0
        assert report["financials"]["reconciled_debits"] == 1200.0
        assert report["financials"]["net_reconciled_flow"] == 2300.0
        assert len(report["recent_activity"]) == 3

    def test_average_score_covers_confirmed_matches_only(self, workflow, three_pairs):
        ids = workflow.start_reconciliation().match_ids
        workflow.confirm(ids[0])
        workflow.reject(ids[1])
        confirmed_score = workflow.get_match(ids[0]).match_score

        report = workflow.report()

        assert report["summary"]["average_match_score"] == pytest.approx(round(confirmed_score, 4))

    def test_average_score_without_confirmations(self, workflow, three_pairs):
        workflow.start_reconciliation()

        assert workflow.report()["summary"]["average_match_score"] == 0.0
