"""
Transaction Matching Engine Tests
=================================

Purpose: Verify Excel records are paired with SAP documents by date, amount and name
Coverage: tolerance boundaries, date window, acceptance threshold, partition
completeness, verified lines, greedy order dependence, one-to-one strategy
"""

import pytest
from datetime import date, timedelta

from backoffice.config import MatchingConfig, STRATEGY_ONE_TO_ONE
from backoffice.models import SourceType, TransactionRecord
from backoffice.services.transaction_matcher import (
    TransactionMatcher, within_amount_tolerance, within_date_window, within_target_tolerance
)


def excel(record_id, client, amount, day=date(2024, 3, 5), is_pos=False):
    return TransactionRecord(record_id=record_id, date=day, client=client, amount=amount,
                             category='Virements', is_pos=is_pos)


def sap(record_id, client, amount, day=date(2024, 3, 5)):
    return TransactionRecord(record_id=record_id, date=day, client=client, amount=amount,
                             category='invoice', source_type=SourceType.SAP_INVOICE)


@pytest.mark.unit
class TestEligibility:

    @pytest.mark.parametrize("source,target,expected", [
        (1000, 1010, False),
        (1000, 1005, True),
        (500, 503, True),
        (500, 500, True),
        (990, 1000, False),
        (991, 1000, True),
        (0, 0, False),
        (100, 0, False),
    ])
    def test_amount_tolerance(self, source, target, expected):
        assert within_amount_tolerance(source, target, 0.01) is expected

    @pytest.mark.parametrize("amount,target,tolerance,expected", [
        (990, 1000, 0.01, True),
        (1010, 1000, 0.01, True),
        (989, 1000, 0.01, False),
        (750, 1000, 0.30, True),
        (1250, 1000, 0.30, True),
        (690, 1000, 0.30, False),
    ])
    def test_target_tolerance_is_inclusive_on_both_sides(self, amount, target, tolerance, expected):
        assert within_target_tolerance(amount, target, tolerance) is expected

    def test_date_window_is_symmetric_and_inclusive(self):
        day = date(2024, 3, 5)
        assert within_date_window(day, day + timedelta(days=50), 50)
        assert within_date_window(day, day - timedelta(days=50), 50)
        assert not within_date_window(day, day + timedelta(days=51), 50)

    def test_missing_date_is_never_in_window(self):
        assert not within_date_window(None, date(2024, 3, 5), 50)


@pytest.mark.unit
class TestTransactionMatcher:
    """Greedy best-candidate matching"""

    def test_end_to_end_single_match(self):
        """
        Given: A 500 EUR Excel line for "SARL Boulangerie Martin" and a 503 EUR SAP invoice
               for "Boulangerie Martin" two days later
        When: Matching with default settings
        Then: One match with confidence 1.0 and no discrepancies
        """
        matcher = TransactionMatcher()
        outcome = matcher.match(
            [excel('x1', 'SARL Boulangerie Martin', 500.0)],
            [sap('s1', 'Boulangerie Martin', 503.0, date(2024, 3, 7))],
        )

        assert len(outcome.matches) == 1
        match = outcome.matches[0]
        assert match.confidence_score == 1.0
        assert match.source_amount == 500.0
        assert match.target_amount == 503.0
        assert match.target_ref == 's1'
        assert match.source_record_id == 'x1'
        assert not match.is_resolved
        assert outcome.unmatched_source == []
        assert outcome.unmatched_target == []

    def test_score_must_exceed_threshold(self):
        matcher = TransactionMatcher()
        outcome = matcher.match(
            [excel('x1', 'Garage Leroy', 320.0)],
            [sap('s1', 'Cave Saint Jean', 320.0)],
        )
        assert outcome.matches == []
        assert [r.record_id for r in outcome.unmatched_source] == ['x1']

    def test_out_of_window_target_is_ignored(self):
        matcher = TransactionMatcher(date_window_days=50)
        outcome = matcher.match(
            [excel('x1', 'Dupont', 100.0, date(2024, 1, 1))],
            [sap('s1', 'Dupont', 100.0, date(2024, 2, 25))],
        )
        assert outcome.matches == []

    def test_pos_records_are_not_matched(self):
        matcher = TransactionMatcher()
        outcome = matcher.match(
            [excel('x1', 'Dupont', 100.0, is_pos=True)],
            [sap('s1', 'Dupont', 100.0)],
        )
        assert outcome.matches == []
        assert outcome.unmatched_source == []

    def test_source_one_percent_below_target_is_not_matched(self):
        """
        Given: A 990 EUR line and a 1000 EUR invoice for the same client
        When: Matching at 1% tolerance
        Then: The line stays unmatched, as 1000 against 1010 does
        """
        matcher = TransactionMatcher()
        outcome = matcher.match([excel('x1', 'Dupont', 990.0)], [sap('s1', 'Dupont', 1000.0)])

        assert outcome.matches == []
        assert [r.record_id for r in outcome.unmatched_source] == ['x1']

    def test_verified_records_are_set_aside(self):
        """
        Given: A sales line already verified by an earlier resolution, and its exact SAP twin
        When: Matching
        Then: The line is neither matched nor left unmatched, and the invoice stays open
        """
        verified = excel('x1', 'Dupont', 100.0)
        verified.verified = True
        verified.verified_at = '2024-04-02T10:00:00'
        matcher = TransactionMatcher()

        outcome = matcher.match([verified, excel('x2', 'Martin', 50.0)], [sap('s1', 'Dupont', 100.0)])

        assert outcome.matches == []
        assert [r.record_id for r in outcome.verified_source] == ['x1']
        assert [r.record_id for r in outcome.unmatched_source] == ['x2']
        assert [r.record_id for r in outcome.unmatched_target] == ['s1']

    def test_best_candidate_wins_and_first_seen_breaks_ties(self):
        matcher = TransactionMatcher()
        source = excel('x1', 'Dupont Freres', 100.0)

        best, score = matcher.find_best_candidate(source, [
            sap('s1', 'Dupont Frere', 100.0),
            sap('s2', 'Dupont Freres', 100.0),
            sap('s3', 'Dupont Freres', 100.0),
        ])
        assert best.record_id == 's2'
        assert score == 1.0

        best, _ = matcher.find_best_candidate(source, [
            sap('t1', 'SARL Dupont Freres Traiteur', 100.0),
            sap('t2', 'Dupont Freres Traiteur', 100.0),
        ])
        assert best.record_id == 't1'

    def test_partition_is_complete(self):
        """
        Given: A mix of matchable, unmatchable and POS records
        When: Matching
        Then: Every non-POS record is either matched or unmatched, never both
        """
        sources = [
            excel('x1', 'Dupont', 100.0),
            excel('x2', 'Martin', 200.0),
            excel('x3', 'Inconnu', 300.0),
            excel('x4', 'Caisse', 50.0, is_pos=True),
        ]
        targets = [sap('s1', 'Dupont', 100.0), sap('s2', 'Martin', 200.5)]

        outcome = TransactionMatcher().match(sources, targets)

        matched = {m.source_record_id for m in outcome.matches}
        unmatched = {r.record_id for r in outcome.unmatched_source}
        assert matched == {'x1', 'x2'}
        assert unmatched == {'x3'}
        assert matched.isdisjoint(unmatched)
        assert matched | unmatched == {'x1', 'x2', 'x3'}

    def test_greedy_lets_one_target_match_several_sources(self):
        targets = [sap('s1', 'Dupont', 100.0)]
        sources = [excel('x1', 'Dupont', 100.0), excel('x2', 'Dupont', 100.0)]

        outcome = TransactionMatcher().match(sources, targets)

        assert [m.target_ref for m in outcome.matches] == ['s1', 's1']

    def test_one_to_one_skips_claimed_targets(self):
        """
        Given: Two identical Excel lines and one SAP invoice
        When: Matching with the one_to_one strategy
        Then: The first line takes the invoice and the second is a discrepancy
        """
        targets = [sap('s1', 'Dupont', 100.0)]
        sources = [excel('x1', 'Dupont', 100.0), excel('x2', 'Dupont', 100.0)]

        outcome = TransactionMatcher(strategy=STRATEGY_ONE_TO_ONE).match(sources, targets)

        assert [m.source_record_id for m in outcome.matches] == ['x1']
        assert [r.record_id for r in outcome.unmatched_source] == ['x2']

    def test_unknown_strategy_is_rejected(self):
        with pytest.raises(ValueError):
            TransactionMatcher(strategy='hungarian')

    def test_from_config(self):
        config = MatchingConfig(date_window_days=10, amount_tolerance=0.05, acceptance_threshold=0.8)
        matcher = TransactionMatcher.from_config(config)

        assert matcher.date_window_days == 10
        assert matcher.amount_tolerance == 0.05
        assert matcher.acceptance_threshold == 0.8
