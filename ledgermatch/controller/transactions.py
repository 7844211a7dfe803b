"""
Ledger Records Controller.

Read access to stored bank transactions and company entries, plus the one
explicit edit path for a bank transaction.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from ledgermatch.customLogging.logger import get_logger, log_operation
from ledgermatch.database.db_configs import get_database
from ledgermatch.exceptions.exceptions import ConflictException, InvalidRequestException, RecordNotFoundException
from ledgermatch.pydanticModels.ledgerModels import CompanyEntryResponse, TransactionResponse, TransactionUpdate
from ledgermatch.pydanticModels.uploadModels import IncompleteEntry
from ledgermatch.sqlModels.ledgerEntities import CompanyEntry, Transaction
from ledgermatch.sqlModels.uploadEntities import SourceKind
from ledgermatch.upload.duplicate_detector import compute_row_fingerprint
from ledgermatch.upload.row_validator import validate_row

logger = get_logger(__name__)

router = APIRouter(prefix='/api/v1', tags=['Ledger Records'])


def _apply_filters(stmt, model, start_date, end_date, transaction_type, category):
    if start_date:
        stmt = stmt.where(model.date >= start_date)
    if end_date:
        stmt = stmt.where(model.date <= end_date)
    if transaction_type:
        stmt = stmt.where(model.transaction_type == transaction_type.lower())
    if category:
        stmt = stmt.where(model.category == category.lower())
    return stmt


def _paginate(db: Session, model, stmt, limit: int, offset: int):
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(model.date.desc(), model.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return total, rows


@router.get("/transactions")
async def list_transactions(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    transaction_type: Optional[str] = Query(default=None, description="credit or debit"),
    category: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_database),
):
    """List bank transactions, newest first."""
    stmt = _apply_filters(select(Transaction), Transaction, start_date, end_date, transaction_type, category)
    total, rows = _paginate(db, Transaction, stmt, limit, offset)

    return JSONResponse(content={
        "success": True,
        "message": f"{total} transactions",
        "data": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "transactions": [TransactionResponse.model_validate(row).model_dump(mode="json") for row in rows],
        },
    })


@router.put("/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: int,
    changes: TransactionUpdate,
    db: Session = Depends(get_database),
):
    """
    Edit a bank transaction.

    The merged record goes through the same row validation as an upload, and
    its row fingerprint is recomputed. An edit that would make it identical
    to another stored transaction is a conflict.
    """
    txn = db.get(Transaction, transaction_id)
    if txn is None:
        raise RecordNotFoundException(f"Transaction {transaction_id} not found")

    updates = changes.model_dump(exclude_unset=True)
    if not updates:
        raise InvalidRequestException("No fields to update")

    merged = {
        "row_number": 0,
        "date": txn.date,
        "description": txn.description,
        "amount": txn.amount,
        "transaction_type": txn.transaction_type,
        "category": txn.category,
        "external_id": txn.external_id,
    }
    # A new amount without a type takes its direction from its own sign
    if "amount" in updates and "transaction_type" not in updates:
        merged["transaction_type"] = None
    merged.update({k: v for k, v in updates.items() if k != "justification"})

    result = validate_row(merged, SourceKind.BANK.value)
    if isinstance(result, IncompleteEntry):
        raise InvalidRequestException(result.error, details={"transaction_id": transaction_id})

    txn.date = result.date
    txn.description = result.description
    txn.amount = result.amount
    txn.transaction_type = result.transaction_type
    txn.category = result.category
    if "justification" in updates:
        txn.justification = updates["justification"]
    txn.row_fingerprint = compute_row_fingerprint(result.date, result.amount, result.description, txn.external_id)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictException(
            "Another transaction with the same date, amount and description already exists",
            details={"transaction_id": transaction_id},
        )
    db.refresh(txn)

    log_operation(logger, "transaction_updated", success=True, transaction_id=transaction_id,
                  fields=sorted(updates))
    return JSONResponse(content={
        "success": True,
        "message": f"Transaction {transaction_id} updated",
        "data": TransactionResponse.model_validate(txn).model_dump(mode="json"),
    })


@router.get("/company-entries")
async def list_company_entries(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    transaction_type: Optional[str] = Query(default=None, description="income or expense"),
    category: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_database),
):
    """List company entries, newest first."""
    stmt = _apply_filters(select(CompanyEntry), CompanyEntry, start_date, end_date, transaction_type, category)
    total, rows = _paginate(db, CompanyEntry, stmt, limit, offset)

    return JSONResponse(content={
        "success": True,
        "message": f"{total} company entries",
        "data": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "entries": [CompanyEntryResponse.model_validate(row).model_dump(mode="json") for row in rows],
        },
    })


@router.get("/company-entries/summary")
async def company_entries_summary(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: Session = Depends(get_database),
):
    """Income and expense totals, overall and per category."""
    stmt = _apply_filters(
        select(
            CompanyEntry.transaction_type,
            CompanyEntry.category,
            func.count(CompanyEntry.id),
            func.coalesce(func.sum(CompanyEntry.amount), 0),
        ),
        CompanyEntry, start_date, end_date, None, None,
    ).group_by(CompanyEntry.transaction_type, CompanyEntry.category)

    totals = {"income": 0.0, "expense": 0.0}
    by_category = {}
    entry_count = 0
    for entry_type, category, count, amount in db.execute(stmt).all():
        value = abs(float(amount))
        totals[entry_type] = totals.get(entry_type, 0.0) + value
        bucket = by_category.setdefault(category or "outros", {"income": 0.0, "expense": 0.0, "count": 0})
        bucket[entry_type] = round(bucket.get(entry_type, 0.0) + value, 2)
        bucket["count"] += count
        entry_count += count

    return JSONResponse(content={
        "success": True,
        "message": "Company entries summary",
        "data": {
            "entry_count": entry_count,
            "total_income": round(totals["income"], 2),
            "total_expense": round(totals["expense"], 2),
            "net": round(totals["income"] - totals["expense"], 2),
            "by_category": by_category,
        },
    })
