"""
File Upload Controller.

Handles bank statement and company ledger uploads.

Endpoints:
- POST /bank: Upload a bank statement (OFX, QFX, CSV, XLSX)
- POST /company: Upload a company ledger (XLSX, CSV)
- POST /corrected: Resubmit corrected incomplete rows
- GET /history: Recent upload batches
"""
from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from ledgermatch.database.db_configs import get_database
from ledgermatch.middleware.security import RATE_LIMITS, limiter
from ledgermatch.pydanticModels.uploadModels import CorrectionSubmission, UploadHistoryItem
from ledgermatch.sqlModels.uploadEntities import SourceKind, UploadBatch
from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.config import get_storage
from ledgermatch.upload.ingestion import IngestionOrchestrator, IngestionReport

router = APIRouter(prefix='/api/v1/upload', tags=['File Upload Endpoints'])


def _upload_response(report: IngestionReport) -> JSONResponse:
    if report.items_incomplete:
        message = (
            f"{report.items_imported} entries imported, "
            f"{report.items_incomplete} need correction"
        )
    else:
        message = f"{report.items_imported} entries imported"
    return JSONResponse(
        content={"success": True, "message": message, "data": report.to_dict()},
        status_code=201,
    )


async def _ingest_upload(file: UploadFile, source_kind: str, db: Session, storage: StorageBackend) -> JSONResponse:
    content = await file.read()
    orchestrator = IngestionOrchestrator(db, storage=storage)
    report = orchestrator.ingest(file.filename or "", content, source_kind)
    return _upload_response(report)


@router.post("/bank", status_code=201)
@limiter.limit(RATE_LIMITS["upload"])
async def upload_bank_statement(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_database),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Upload a bank statement.

    The file is rejected with 409 if identical content was already ingested.
    Rows that fail validation are returned as `incomplete_items` for
    correction; everything else is stored.
    """
    return await _ingest_upload(file, SourceKind.BANK.value, db, storage)


@router.post("/company", status_code=201)
@limiter.limit(RATE_LIMITS["upload"])
async def upload_company_ledger(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_database),
    storage: StorageBackend = Depends(get_storage),
):
    """Upload a company ledger export. Same contract as /bank."""
    return await _ingest_upload(file, SourceKind.COMPANY.value, db, storage)


@router.post("/corrected", status_code=201)
@limiter.limit(RATE_LIMITS["upload"])
async def upload_corrected_entries(
    request: Request,
    submission: CorrectionSubmission,
    db: Session = Depends(get_database),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Resubmit rows that came back incomplete.

    Entries flagged `corrected: false` are ignored; if nothing remains the
    request fails with NOTHING_TO_SAVE.
    """
    orchestrator = IngestionOrchestrator(db, storage=storage)
    report = orchestrator.resubmit(
        submission.entries,
        source_kind=submission.source_kind,
        batch_id=submission.batch_id,
    )
    return _upload_response(report)


@router.get("/history")
async def upload_history(
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_database),
):
    """Most recent upload batches, duplicate attempts included."""
    batches = db.execute(
        select(UploadBatch)
        .order_by(UploadBatch.uploaded_at.desc(), UploadBatch.id.desc())
        .limit(limit)
    ).scalars().all()

    items = [UploadHistoryItem.model_validate(batch).model_dump(mode="json") for batch in batches]
    return JSONResponse(content={
        "success": True,
        "message": f"{len(items)} uploads",
        "data": {"uploads": items, "count": len(items)},
    })
