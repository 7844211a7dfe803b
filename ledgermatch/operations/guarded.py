"""
Guarded destructive operations.

A GuardedOperation runs in three calls that must happen in order:

    preview(days_old)                              -> counts + token
    confirm(days_old, token)                       -> full record list + phrase
    execute(days_old, token, force, confirm_text)  -> deletion

Execution deletes only what the confirmation listed: it uses the cutoff
stored at confirmation when that is earlier than the current one.

The sequence lives in a DeletionRequest row, so the server (not the client)
decides whether a stage may run. Each stage advances the row with a
conditional update, which also makes a token single-use. Parameters are
re-validated on every call, and the whole operation sits behind a feature
flag.
"""
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledgermatch.config.settings import settings
from ledgermatch.customLogging.logger import LoggerMixin, log_operation
from ledgermatch.database.db_configs import utc_now
from ledgermatch.exceptions.exceptions import (
    DeletionSequenceException,
    FeatureDisabledException,
    InvalidRequestException,
)
from ledgermatch.sqlModels.operationEntities import DeletionRequest, DeletionStage

CONFIRMATION_PHRASE = "DELETE"


class GuardedOperation(LoggerMixin, ABC):
    """
    Base class for preview / confirmation / execution operations.

    Subclasses describe what the operation touches through `collect_counts`,
    `collect_records` and `perform`, all keyed by a cutoff timestamp derived
    from `days_old`.
    """

    operation_name: str = "guarded_operation"
    confirmation_phrase: str = CONFIRMATION_PHRASE

    def __init__(
        self,
        db: Session,
        enabled: Optional[bool] = None,
        min_days_old: Optional[int] = None,
        ttl_minutes: Optional[int] = None,
    ):
        self.db = db
        self.enabled = settings.ENABLE_TEST_DATA_DELETION if enabled is None else enabled
        self.min_days_old = settings.DELETION_MIN_DAYS_OLD if min_days_old is None else min_days_old
        self.ttl_minutes = settings.DELETION_REQUEST_TTL_MINUTES if ttl_minutes is None else ttl_minutes

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def collect_counts(self, cutoff: datetime) -> Dict[str, int]:
        pass

    @abstractmethod
    def collect_records(self, cutoff: datetime) -> Dict[str, Any]:
        pass

    @abstractmethod
    def perform(self, cutoff: datetime) -> Dict[str, int]:
        """Carry out the operation inside the caller's transaction."""
        pass

    def after_commit(self) -> Dict[str, Any]:
        """Work that must only happen once the deletion is committed."""
        return {}

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def ensure_enabled(self) -> None:
        if not self.enabled:
            raise FeatureDisabledException(
                f"{self.operation_name} is disabled. Set ENABLE_TEST_DATA_DELETION=true to enable it."
            )

    def validate_days_old(self, days_old: Any) -> int:
        if isinstance(days_old, bool):
            raise InvalidRequestException("days_old must be an integer")
        try:
            value = int(days_old)
        except (TypeError, ValueError):
            raise InvalidRequestException("days_old must be an integer", details={"days_old": days_old})
        if value != days_old and str(value) != str(days_old).strip():
            raise InvalidRequestException("days_old must be an integer", details={"days_old": days_old})
        if value < self.min_days_old:
            raise InvalidRequestException(
                f"days_old must be at least {self.min_days_old}",
                details={"days_old": value, "minimum": self.min_days_old},
            )
        return value

    def cutoff_for(self, days_old: int) -> datetime:
        return utc_now() - timedelta(days=days_old)

    def _load_request(self, token: Optional[str], days_old: int, expected: DeletionStage) -> DeletionRequest:
        if not token:
            raise DeletionSequenceException(
                "A token from the previous stage is required",
                details={"expected_stage": expected.value},
            )

        request = self.db.execute(
            select(DeletionRequest).where(
                DeletionRequest.token == token,
                DeletionRequest.operation == self.operation_name,
            )
        ).scalar_one_or_none()
        if request is None:
            raise DeletionSequenceException("Unknown token. Start again with a preview.")
        if request.stage != expected.value:
            raise DeletionSequenceException(
                f"Request is at stage '{request.stage}', expected '{expected.value}'",
                details={"current_stage": request.stage, "expected_stage": expected.value},
            )
        if request.expires_at < utc_now():
            raise DeletionSequenceException("Request has expired. Start again with a preview.")
        if request.days_old != days_old:
            raise DeletionSequenceException(
                "days_old does not match the previewed request",
                details={"previewed_days_old": request.days_old, "days_old": days_old},
            )
        return request

    def _advance(self, request: DeletionRequest, current: DeletionStage, target: DeletionStage, **values) -> None:
        """Move the request to the next stage; losing a race counts as out of order."""
        result = self.db.execute(
            update(DeletionRequest)
            .where(DeletionRequest.id == request.id, DeletionRequest.stage == current.value)
            .values(stage=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise DeletionSequenceException("Request was already advanced by another call")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def preview(self, days_old: Any) -> Dict[str, Any]:
        self.ensure_enabled()
        days_old = self.validate_days_old(days_old)
        cutoff = self.cutoff_for(days_old)
        counts = self.collect_counts(cutoff)

        request = DeletionRequest(
            token=secrets.token_hex(16),
            operation=self.operation_name,
            days_old=days_old,
            stage=DeletionStage.PREVIEWED.value,
            preview_counts=counts,
            expires_at=utc_now() + timedelta(minutes=self.ttl_minutes),
        )
        self.db.add(request)
        self.db.commit()

        self.logger.warning(
            f"{self.operation_name} previewed",
            extra={"days_old": days_old, "counts": counts, "request_id": request.id}
        )
        return {
            "mode": "preview",
            "token": request.token,
            "days_old": days_old,
            "cutoff_date": cutoff.isoformat(),
            "counts": counts,
            "total_records": sum(counts.values()),
            "expires_at": request.expires_at.isoformat(),
            "next_step": "confirmation",
        }

    def confirm(self, days_old: Any, token: Optional[str]) -> Dict[str, Any]:
        self.ensure_enabled()
        days_old = self.validate_days_old(days_old)
        request = self._load_request(token, days_old, DeletionStage.PREVIEWED)
        cutoff = self.cutoff_for(days_old)
        records = self.collect_records(cutoff)

        self._advance(
            request, DeletionStage.PREVIEWED, DeletionStage.CONFIRMED,
            confirmed_at=utc_now(), confirmed_cutoff=cutoff,
        )
        self.db.commit()

        self.logger.warning(
            f"{self.operation_name} confirmation issued",
            extra={"days_old": days_old, "request_id": request.id}
        )
        return {
            "mode": "confirmation",
            "token": token,
            "days_old": days_old,
            "cutoff_date": cutoff.isoformat(),
            "records": records,
            "confirmation_phrase": self.confirmation_phrase,
            "next_step": "execution",
        }

    def execute(
        self,
        days_old: Any,
        token: Optional[str],
        force: bool = False,
        confirm_text: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.ensure_enabled()
        days_old = self.validate_days_old(days_old)
        if not force:
            raise InvalidRequestException("Execution requires force=true")
        if confirm_text != self.confirmation_phrase:
            raise InvalidRequestException(
                f"Execution requires confirm_text='{self.confirmation_phrase}'"
            )
        request = self._load_request(token, days_old, DeletionStage.CONFIRMED)
        cutoff = self.cutoff_for(days_old)
        # Rows that aged past the threshold after confirmation were never listed
        if request.confirmed_cutoff is not None:
            cutoff = min(cutoff, request.confirmed_cutoff)

        try:
            self._advance(request, DeletionStage.CONFIRMED, DeletionStage.EXECUTED, executed_at=utc_now())
            deleted = self.perform(cutoff)
            self.db.commit()
        except DeletionSequenceException:
            raise
        except Exception:
            self.db.rollback()
            raise
        cleanup = self.after_commit()

        log_operation(
            self.logger,
            self.operation_name,
            success=True,
            days_old=days_old,
            request_id=request.id,
            **{f"deleted_{name}": count for name, count in deleted.items()},
        )
        return {
            "mode": "execution",
            "days_old": days_old,
            "cutoff_date": cutoff.isoformat(),
            "deleted": deleted,
            "total_deleted": sum(deleted.values()),
            **cleanup,
        }
