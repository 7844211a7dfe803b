"""Tests for candidate scoring and selection."""
from __future__ import annotations

from datetime import date

import pytest

from ledgermatch.reconciler.matcher import (
    LedgerSnapshot,
    MatcherConfig,
    WeightedMatcher,
    description_similarity,
)

DAY = date(2026, 9, 10)


def snap(id, amount, on=DAY, description="Pagamento fornecedor ACME"):
    return LedgerSnapshot(id=id, date=on, amount=amount, description=description)


@pytest.fixture
def matcher() -> WeightedMatcher:
    return WeightedMatcher()


class TestScore:
    def test_exact_pair_scores_high(self, matcher):
        result = matcher.score(snap(1, -500.0), snap(1, -500.0))

        assert result.score == pytest.approx(0.9)
        assert result.breakdown["amount"] == 0.35
        assert result.breakdown["date"] == 0.25

    def test_opposite_directions_never_match(self, matcher):
        assert matcher.score(snap(1, -500.0), snap(1, 500.0)) is None

    def test_amount_outside_tolerance(self, matcher):
        assert matcher.score(snap(1, -500.0), snap(1, -600.0)) is None

    def test_close_amount_scores_lower(self, matcher):
        exact = matcher.score(snap(1, -500.0), snap(1, -500.0))
        close = matcher.score(snap(1, -500.0), snap(1, -505.0))

        assert close.breakdown["amount"] == 0.15
        assert close.score < exact.score

    def test_dates_too_far_apart(self, matcher):
        assert matcher.score(snap(1, -500.0), snap(1, -500.0, on=date(2026, 11, 1))) is None

    def test_description_similarity_ignores_accents_and_order(self):
        assert description_similarity("Pagamento Fornecedor", "fornecedor pagamento") == 1.0
        assert description_similarity("", "anything") == 0.0


class TestBestCandidates:
    def test_below_threshold_is_not_proposed(self):
        strict = WeightedMatcher(threshold=0.95)

        assert strict.best_candidates([snap(1, -500.0)], [snap(1, -500.0)]) == []

    def test_each_entry_is_claimed_once(self, matcher):
        transactions = [snap(1, -500.0), snap(2, -500.0)]
        entries = [snap(7, -500.0)]

        candidates = matcher.best_candidates(transactions, entries)

        assert len(candidates) == 1
        assert candidates[0].bank_transaction_id == 1

    def test_tie_goes_to_closest_date(self, matcher):
        txn = snap(1, -500.0, on=DAY)
        entries = [
            snap(3, -500.0, on=date(2026, 9, 13)),
            snap(4, -500.0, on=date(2026, 9, 12)),
        ]

        [candidate] = matcher.best_candidates([txn], entries)

        assert candidate.company_entry_id == 4
        assert candidate.date_diff_days == 2

    def test_full_tie_goes_to_lexicographically_smallest_id(self, matcher):
        entries = [snap(2, -500.0), snap(10, -500.0)]

        [candidate] = matcher.best_candidates([snap(1, -500.0)], entries)

        # "10" sorts before "2"
        assert candidate.company_entry_id == 10

    def test_selection_does_not_depend_on_input_order(self, matcher):
        transactions = [snap(5, -500.0), snap(3, -500.0)]
        entries = [snap(9, -500.0), snap(8, -500.0)]

        forward = matcher.best_candidates(transactions, entries)
        backward = matcher.best_candidates(list(reversed(transactions)), list(reversed(entries)))

        pairs = [(c.bank_transaction_id, c.company_entry_id) for c in forward]
        assert pairs == [(c.bank_transaction_id, c.company_entry_id) for c in backward]
        assert pairs == [(3, 8), (5, 9)]

    def test_excluded_pairs_are_skipped(self, matcher):
        candidates = matcher.best_candidates(
            [snap(1, -500.0)], [snap(7, -500.0)], excluded_pairs={(1, 7)}
        )

        assert candidates == []

    def test_custom_config(self):
        lenient = WeightedMatcher(MatcherConfig(maximum_amount_diff_percent=0.5, minimum_match_threshold=0.3))

        [candidate] = lenient.best_candidates([snap(1, -500.0)], [snap(2, -600.0)])

        assert candidate.breakdown["amount"] == 0.15
