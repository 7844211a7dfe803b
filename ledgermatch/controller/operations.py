"""
Operations Controller.

Guarded deletion of aged data. The three modes must be called in order and
each call after the first carries the token returned by the previous one:

    ?mode=preview&days_old=N
    ?mode=confirmation&days_old=N&token=...
    ?mode=execution&days_old=N&token=...&force=true&confirm_text=DELETE
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from ledgermatch.database.db_configs import get_database
from ledgermatch.middleware.security import RATE_LIMITS, limiter
from ledgermatch.operations.data_deletion import AgedDataDeletion
from ledgermatch.storage.base import StorageBackend
from ledgermatch.storage.config import get_storage

router = APIRouter(prefix='/api/v1', tags=['Operations'])

_MESSAGES = {
    "preview": "Preview generated. Call again with mode=confirmation and the token.",
    "confirmation": "Review the records, then call mode=execution with force=true and the confirmation phrase.",
    "execution": "Deletion completed",
}


@router.get("/test-data")
@limiter.limit(RATE_LIMITS["test_data"])
async def aged_data_deletion(
    request: Request,
    mode: Literal["preview", "confirmation", "execution"] = Query(...),
    days_old: int = Query(...),
    token: Optional[str] = Query(default=None),
    force: bool = Query(default=False),
    confirm_text: Optional[str] = Query(default=None),
    db: Session = Depends(get_database),
    storage: StorageBackend = Depends(get_storage),
):
    """Preview, confirm or execute deletion of records older than days_old."""
    operation = AgedDataDeletion(db, storage=storage)

    if mode == "preview":
        data = operation.preview(days_old)
    elif mode == "confirmation":
        data = operation.confirm(days_old, token)
    else:
        data = operation.execute(days_old, token, force=force, confirm_text=confirm_text)

    return JSONResponse(content={"success": True, "message": _MESSAGES[mode], "data": data})
