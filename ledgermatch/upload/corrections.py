"""
Correction loop state.

A CorrectionSession holds the incomplete entries from one ingestion while a
user edits them. Only entries the user actually touched are resubmitted.
"""
import copy
from typing import Any, Dict, Iterable, List

from ledgermatch.exceptions.exceptions import InvalidRequestException, NothingToSaveException
from ledgermatch.pydanticModels.uploadModels import CorrectedEntry, IncompleteEntry

BOOKKEEPING_KEYS = ("row_number", "error", "corrected")


class CorrectionSession:
    """
    Editable copy of a batch's incomplete entries.

    Each entry keeps its original values so `reset` can restore them; the
    `corrected` flag is set by any edit and cleared by a reset.
    """

    def __init__(self, incomplete_entries: Iterable[IncompleteEntry]):
        self._originals: List[Dict[str, Any]] = [entry.model_dump() for entry in incomplete_entries]
        self._entries: List[Dict[str, Any]] = [
            {**copy.deepcopy(original), "corrected": False} for original in self._originals
        ]

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return [dict(entry) for entry in self._entries]

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self._entries):
            raise InvalidRequestException(f"No incomplete entry at position {index}")

    def edit(self, index: int, field: str, value: Any) -> Dict[str, Any]:
        self._check_index(index)
        if field in BOOKKEEPING_KEYS or field not in CorrectedEntry.model_fields:
            raise InvalidRequestException(f"Field '{field}' cannot be edited")
        entry = self._entries[index]
        entry[field] = value
        entry["corrected"] = True
        return dict(entry)

    def reset(self, index: int) -> Dict[str, Any]:
        """Restore the original values of one entry and clear its corrected flag."""
        self._check_index(index)
        self._entries[index] = {**copy.deepcopy(self._originals[index]), "corrected": False}
        return dict(self._entries[index])

    def corrected_entries(self) -> List[Dict[str, Any]]:
        """
        Payload for resubmission: touched entries only, without bookkeeping keys.

        Raises:
            NothingToSaveException: If no entry was edited.
        """
        payload = [
            {k: v for k, v in entry.items() if k not in BOOKKEEPING_KEYS}
            for entry in self._entries
            if entry["corrected"]
        ]
        if not payload:
            raise NothingToSaveException()
        return payload


def select_corrected(entries: Iterable[CorrectedEntry]) -> List[CorrectedEntry]:
    """
    Entries to resubmit: anything not explicitly flagged `corrected: false`.

    Raises:
        NothingToSaveException: If nothing remains.
    """
    selected = [entry for entry in entries if entry.corrected is not False]
    if not selected:
        raise NothingToSaveException()
    return selected
