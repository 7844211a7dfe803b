"""
Reconciliation Matcher.

The workflow only relies on the ReconciliationMatcher contract:

- `score(txn, entry)` returns a ScoreResult in [0, 1], or None when the pair
  is not a plausible match at all.
- `best_candidates(...)` proposes at most one company entry per bank
  transaction and never the same entry twice.

Candidate selection is deterministic. Bank transactions are visited in
ascending id order; for each one the highest score wins, ties go to the
smallest absolute date difference, then to the lexicographically smallest
company entry id.

WeightedMatcher is the default scorer: amount agreement, date proximity and
description similarity (rapidfuzz), weighted and summed.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rapidfuzz import fuzz

from ledgermatch.utils.parsing import normalize_text

SCORE_PRECISION = 4


@dataclass(frozen=True)
class LedgerSnapshot:
    """Read-only copy of a ledger row handed to matcher and detector code."""
    id: int
    date: date
    amount: float
    description: str
    transaction_type: Optional[str] = None
    category: Optional[str] = None


@dataclass
class ScoreResult:
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class MatchCandidate:
    bank_transaction_id: int
    company_entry_id: int
    score: float
    date_diff_days: int
    breakdown: Dict[str, float] = field(default_factory=dict)

    def sort_key(self) -> Tuple[float, int, str]:
        return (-self.score, self.date_diff_days, str(self.company_entry_id))


class ReconciliationMatcher(ABC):
    """Scores bank transaction / company entry pairs and selects candidates."""

    threshold: float = 0.0

    @abstractmethod
    def score(self, txn: LedgerSnapshot, entry: LedgerSnapshot) -> Optional[ScoreResult]:
        pass

    def best_candidates(
        self,
        transactions: Sequence[LedgerSnapshot],
        entries: Sequence[LedgerSnapshot],
        excluded_pairs: Optional[Set[Tuple[int, int]]] = None,
    ) -> List[MatchCandidate]:
        """
        Select at most one candidate per transaction, each entry used at most once.

        Args:
            transactions: Eligible bank transactions.
            entries: Eligible company entries.
            excluded_pairs: (transaction id, entry id) pairs never to propose,
                typically pairs a user already rejected.
        """
        excluded_pairs = excluded_pairs or set()
        claimed: Set[int] = set()
        candidates: List[MatchCandidate] = []

        for txn in sorted(transactions, key=lambda t: t.id):
            best: Optional[MatchCandidate] = None
            for entry in entries:
                if entry.id in claimed or (txn.id, entry.id) in excluded_pairs:
                    continue
                result = self.score(txn, entry)
                if result is None:
                    continue
                score = round(result.score, SCORE_PRECISION)
                if score < self.threshold:
                    continue
                candidate = MatchCandidate(
                    bank_transaction_id=txn.id,
                    company_entry_id=entry.id,
                    score=score,
                    date_diff_days=abs((txn.date - entry.date).days),
                    breakdown=result.breakdown,
                )
                if best is None or candidate.sort_key() < best.sort_key():
                    best = candidate
            if best is not None:
                claimed.add(best.company_entry_id)
                candidates.append(best)

        return candidates


@dataclass
class MatcherConfig:
    """Weights and limits for WeightedMatcher."""
    amount_exact_weight: float = 0.35
    amount_close_weight: float = 0.15
    date_same_day_weight: float = 0.25
    date_close_weight: float = 0.10
    description_weight: float = 0.30
    date_close_days: int = 3
    minimum_match_threshold: float = 0.65
    amount_tolerance: float = 0.01
    maximum_amount_diff_percent: float = 0.02
    maximum_date_diff_days: int = 30


class WeightedMatcher(ReconciliationMatcher):
    """
    Default scorer.

    A pair is only considered when both amounts have the same direction, are
    within the amount tolerance (absolute or relative) and the dates are at
    most `maximum_date_diff_days` apart.
    """

    def __init__(self, config: Optional[MatcherConfig] = None, threshold: Optional[float] = None):
        self.config = config or MatcherConfig()
        self.threshold = threshold if threshold is not None else self.config.minimum_match_threshold

    def score(self, txn: LedgerSnapshot, entry: LedgerSnapshot) -> Optional[ScoreResult]:
        cfg = self.config

        if (txn.amount >= 0) != (entry.amount >= 0):
            return None

        date_diff = abs((txn.date - entry.date).days)
        if date_diff > cfg.maximum_date_diff_days:
            return None

        breakdown: Dict[str, float] = {}
        amount_diff = abs(abs(txn.amount) - abs(entry.amount))
        largest = max(abs(txn.amount), abs(entry.amount))
        if amount_diff <= cfg.amount_tolerance:
            breakdown["amount"] = cfg.amount_exact_weight
        elif largest > 0 and amount_diff / largest <= cfg.maximum_amount_diff_percent:
            breakdown["amount"] = cfg.amount_close_weight
        else:
            return None

        if date_diff == 0:
            breakdown["date"] = cfg.date_same_day_weight
        elif date_diff <= cfg.date_close_days:
            breakdown["date"] = cfg.date_close_weight
        else:
            breakdown["date"] = 0.0

        similarity = description_similarity(txn.description, entry.description)
        breakdown["description"] = round(similarity * cfg.description_weight, SCORE_PRECISION)

        total = min(1.0, sum(breakdown.values()))
        return ScoreResult(score=total, breakdown=breakdown)


def description_similarity(left: Optional[str], right: Optional[str]) -> float:
    """Token-set similarity of two descriptions in [0, 1]."""
    a, b = normalize_text(left), normalize_text(right)
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100.0


def snapshot_rows(rows: Iterable) -> List[LedgerSnapshot]:
    """Snapshots from Transaction / CompanyEntry ORM rows."""
    return [
        LedgerSnapshot(
            id=row.id,
            date=row.date,
            amount=float(row.amount),
            description=row.description or "",
            transaction_type=row.transaction_type,
            category=row.category,
        )
        for row in rows
    ]
