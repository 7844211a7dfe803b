"""
Reconciliation Controller.

Endpoints for proposing matches between bank transactions and company
entries, and for deciding them.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from ledgermatch.database.db_configs import get_database
from ledgermatch.middleware.security import RATE_LIMITS, limiter
from ledgermatch.pydanticModels.reconciliationModels import AnomalyRunRequest, BatchDecisionRequest
from ledgermatch.reconciler.workflow import ReconciliationWorkflow
from ledgermatch.sqlModels.reconciliationEntities import ReconciliationMatch

router = APIRouter(prefix='/api/v1/reconciliation', tags=['Reconciliation Endpoints'])


# ============================================================================
# Helper Functions
# ============================================================================

def _ledger_side(record) -> Optional[dict]:
    if record is None:
        return None
    return {
        "id": record.id,
        "date": record.date.isoformat() if record.date else None,
        "description": record.description,
        "amount": float(record.amount) if record.amount is not None else None,
        "transaction_type": record.transaction_type,
        "category": record.category,
    }


def match_to_response(match: ReconciliationMatch) -> dict:
    """Convert ReconciliationMatch model to response dict."""
    return {
        "id": match.id,
        "bank_transaction_id": match.bank_transaction_id,
        "company_entry_id": match.company_entry_id,
        "match_score": match.match_score,
        "score_breakdown": match.score_breakdown,
        "status": match.status,
        "run_id": match.run_id,
        "is_anomaly": match.is_anomaly,
        "anomaly_type": match.anomaly_type,
        "anomaly_severity": match.anomaly_severity,
        "anomaly_score": match.anomaly_score,
        "anomaly_reason": match.anomaly_reason,
        "created_at": match.created_at.isoformat() if match.created_at else None,
        "decided_at": match.decided_at.isoformat() if match.decided_at else None,
        "bank_transaction": _ledger_side(match.bank_transaction),
        "company_entry": _ledger_side(match.company_entry),
    }


def _success(message: str, data, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        content={"success": True, "message": message, "data": data},
        status_code=status_code,
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/pending")
async def list_pending_matches(db: Session = Depends(get_database)):
    """Pending matches, best score first."""
    matches = ReconciliationWorkflow(db).list_pending()
    return JSONResponse(content={
        "success": True,
        "message": f"{len(matches)} pending matches",
        "records": [match_to_response(match) for match in matches],
        "total": len(matches),
    })


@router.post("/start")
@limiter.limit(RATE_LIMITS["reconcile"])
async def start_reconciliation(request: Request, db: Session = Depends(get_database)):
    """
    Propose matches for every transaction and entry that has none.

    Running it again with no new data creates no new matches.
    """
    report = ReconciliationWorkflow(db).start_reconciliation()
    return _success(f"{report.matches_created} matches proposed", report.to_dict())


@router.post("/start-with-anomaly-detection")
@limiter.limit(RATE_LIMITS["reconcile"])
async def start_anomaly_aware_reconciliation(
    request: Request,
    window: Optional[AnomalyRunRequest] = None,
    db: Session = Depends(get_database),
):
    """
    Propose matches inside a date window and annotate suspicious ones.

    Defaults to the last ANOMALY_WINDOW_DAYS days. Annotated matches are
    still pending and need a decision like any other.
    """
    window = window or AnomalyRunRequest()
    report = ReconciliationWorkflow(db).start_anomaly_aware_reconciliation(
        start_date=window.start_date,
        end_date=window.end_date,
    )
    return _success(
        f"{report.matches_created} matches proposed, {report.anomalies_flagged} flagged",
        report.to_dict(),
    )


@router.post("/batch-confirm")
async def batch_confirm_matches(payload: BatchDecisionRequest, db: Session = Depends(get_database)):
    """Confirm several matches; failures are reported per id."""
    result = ReconciliationWorkflow(db).batch_confirm(payload.ids)
    return _success(f"{result.succeeded} of {result.processed} matches confirmed", result.to_dict())


@router.post("/batch-reject")
async def batch_reject_matches(payload: BatchDecisionRequest, db: Session = Depends(get_database)):
    """Reject several matches; failures are reported per id."""
    result = ReconciliationWorkflow(db).batch_reject(payload.ids)
    return _success(f"{result.succeeded} of {result.processed} matches rejected", result.to_dict())


@router.post("/{match_id}/confirm")
async def confirm_match(match_id: int, db: Session = Depends(get_database)):
    """Confirm a pending match. Deciding an already-decided match is a 409."""
    match = ReconciliationWorkflow(db).confirm(match_id)
    return _success(f"Match {match_id} confirmed", match_to_response(match))


@router.post("/{match_id}/reject")
async def reject_match(match_id: int, db: Session = Depends(get_database)):
    """Reject a pending match. The same pair is never proposed again."""
    match = ReconciliationWorkflow(db).reject(match_id)
    return _success(f"Match {match_id} rejected", match_to_response(match))


@router.get("/report")
async def reconciliation_report(db: Session = Depends(get_database)):
    """Summary counts and reconciled cash flow."""
    return _success("Reconciliation report", ReconciliationWorkflow(db).report())


@router.get("/anomalies")
async def list_anomalies(
    severity: Optional[Literal["low", "medium", "high", "critical"]] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_database),
):
    """Matches flagged by anomaly-aware runs, most anomalous first."""
    total, matches = ReconciliationWorkflow(db).list_anomalies(severity=severity, limit=limit, offset=offset)
    return _success(
        f"{total} anomalies",
        {
            "total": total,
            "limit": limit,
            "offset": offset,
            "anomalies": [match_to_response(match) for match in matches],
        },
    )
