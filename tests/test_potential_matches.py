"""
Potential-Match Finder Tests
============================

Purpose: Verify suggestions offered to a human resolving a discrepancy
Coverage: wide amount tolerance, narrow date window, coarse tie band ranking, limit
"""

import pytest
from datetime import date

from backoffice.exceptions import NotFoundError
from backoffice.models import TransactionRecord
from backoffice.services.potential_match_finder import PotentialMatchFinder, rank_suggestions, suggest


def record(record_id, client, amount, day=date(2024, 3, 10)):
    return TransactionRecord(record_id=record_id, date=day, client=client, amount=amount)


@pytest.mark.unit
class TestRanking:

    def test_scores_within_tie_band_rank_by_amount(self):
        """
        Given: A 0.9 name match far off in amount and a 0.4 name match close in amount
        When: Ranking with the 0.6 tie band
        Then: The closer amount ranks first
        """
        ranked = rank_suggestions([
            {'id': 'a', 'score': 0.9, 'amountDifference': 200.0},
            {'id': 'b', 'score': 0.4, 'amountDifference': 5.0},
        ])
        assert [s['id'] for s in ranked] == ['b', 'a']

    def test_scores_outside_tie_band_rank_by_score(self):
        ranked = rank_suggestions([
            {'id': 'a', 'score': 0.1, 'amountDifference': 1.0},
            {'id': 'b', 'score': 1.0, 'amountDifference': 100.0},
        ])
        assert [s['id'] for s in ranked] == ['b', 'a']

    def test_suggest_filters_and_limits(self):
        anchor = record('sap', 'Hotel du Lac', 1000.0)
        candidates = [
            (record(f'c{i}', 'Hotel du Lac', 1000.0 + i * 10), {'id': f'c{i}'})
            for i in range(8)
        ]
        candidates.append((record('far', 'Hotel du Lac', 1000.0, date(2024, 4, 30)), {'id': 'far'}))
        candidates.append((record('cheap', 'Hotel du Lac', 500.0), {'id': 'cheap'}))

        suggestions = suggest(anchor, candidates, anchor_is_target=True)

        assert [s['id'] for s in suggestions] == ['c0', 'c1', 'c2', 'c3', 'c4']
        assert suggestions[0]['score'] == 1.0
        assert suggestions[0]['amountDifference'] == 0.0
        assert suggestions[0]['dateDifference'] == 0

    def test_wider_tolerance_than_matching(self):
        anchor = record('sap', 'Traiteur Inconnu', 760.0)
        suggestions = suggest(anchor, [(record('x', 'Inconnu Traiteur', 750.0), {'id': 'x'})], True)
        assert [s['id'] for s in suggestions] == ['x']

    @pytest.mark.parametrize("amount,offered", [
        (750.0, True),
        (710.0, True),
        (690.0, False),
        (1290.0, True),
        (1310.0, False),
    ])
    def test_tolerance_taken_on_sap_invoice(self, amount, offered):
        """
        Given: A 1000 EUR SAP invoice
        When: Looking for sales lines within 30%
        Then: Every line 300 EUR or less away is offered, below or above the invoice
        """
        anchor = record('sap', 'Hotel du Lac', 1000.0)
        suggestions = suggest(anchor, [(record('x', 'Hotel du Lac', amount), {'id': 'x'})], anchor_is_target=True)
        assert bool(suggestions) is offered

    @pytest.mark.parametrize("amount,offered", [
        (770.0, True),
        (760.0, False),
        (1420.0, True),
    ])
    def test_tolerance_taken_on_candidate_invoice(self, amount, offered):
        """A 1000 EUR sales line is offered any invoice it sits within 30% of"""
        anchor = record('line', 'Hotel du Lac', 1000.0)
        suggestions = suggest(anchor, [(record('sap', 'Hotel du Lac', amount), {'id': 'sap'})], anchor_is_target=False)
        assert bool(suggestions) is offered


@pytest.mark.database
class TestPotentialMatchFinder:

    def test_candidates_for_sap_discrepancy(self, seeded_repository, matching_config, march_ledger):
        """
        Given: SAP invoice sap-3 (Hotel du Lac, 2000) left unmatched
        When: Asking for suggestions
        Then: The Hotel du Lac SA sales line (1800, 8 days earlier) is proposed
        """
        finder = PotentialMatchFinder(seeded_repository, matching_config)

        candidates = finder.for_sap_discrepancy(march_ledger.id, 'sap-3')

        assert [c['client'] for c in candidates] == ['Hotel du Lac SA']
        assert candidates[0]['score'] == 0.9
        assert candidates[0]['amountDifference'] == 200.0
        assert candidates[0]['discrepancyId'].endswith(':Paiements CB Site:0')

    def test_candidates_for_excel_discrepancy(self, seeded_repository, matching_config, march_ledger):
        finder = PotentialMatchFinder(seeded_repository, matching_config)
        inconnu = march_ledger.excel_discrepancies['Virements'][0]

        candidates = finder.for_excel_discrepancy(march_ledger.id, inconnu.discrepancy_id)

        assert [c['id'] for c in candidates] == ['sap-4']

    def test_unknown_references(self, seeded_repository, matching_config, march_ledger):
        finder = PotentialMatchFinder(seeded_repository, matching_config)
        with pytest.raises(NotFoundError):
            finder.for_sap_discrepancy(march_ledger.id, 'sap-1')
        with pytest.raises(NotFoundError):
            finder.for_excel_discrepancy(march_ledger.id, 'nope')
