"""
Bank Reconciliation Service Tests
=================================

Purpose: Verify bank statement lines are tied to ledger records and merged safely
Coverage: automatic pass classification, repeated runs, manual matches,
status updates, bank discrepancy resolution
"""

import pytest

from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models import BankConfidence, BankMatchStatus, BankMatchType
from backoffice.services.bank_reconciliation import BankReconciliationService, classify_bank_match


@pytest.fixture
def bank_service(seeded_repository, matching_config):
    return BankReconciliationService(seeded_repository, matching_config)


def matches_by_ref(result):
    return {m['bankStatementRef']: m for m in result['matches']}


@pytest.mark.unit
class TestClassification:

    @pytest.mark.parametrize("score,expected", [
        (1.0, (BankMatchType.AMOUNT_AND_NAME, BankConfidence.HIGH)),
        (0.9, (BankMatchType.AMOUNT_AND_NAME, BankConfidence.HIGH)),
        (0.7, (BankMatchType.AMOUNT_AND_NAME, BankConfidence.MEDIUM)),
        (0.6, (BankMatchType.AMOUNT_ONLY, BankConfidence.LOW)),
        (0.0, (BankMatchType.AMOUNT_ONLY, BankConfidence.LOW)),
    ])
    def test_classify(self, score, expected):
        assert classify_bank_match(score, 0.6) == expected


@pytest.mark.database
class TestBankPass:

    def test_run_matches_statements(self, bank_service, march_ledger):
        """
        Given: Bank lines for a cheque deposit, a transfer and bank fees
        When: Running the bank pass
        Then: The deposit matches the Excel cheque by name, the transfer matches the open SAP
              invoice by amount only, and the fees stay unmatched
        """
        result = bank_service.run(march_ledger.id)
        matches = matches_by_ref(result)

        assert set(matches) == {'bank-1', 'bank-2'}
        assert matches['bank-1']['matchSource'] == 'excel'
        assert matches['bank-1']['matchType'] == BankMatchType.AMOUNT_AND_NAME
        assert matches['bank-1']['confidence'] == BankConfidence.HIGH
        assert matches['bank-1']['status'] == BankMatchStatus.PENDING
        assert matches['bank-1']['matchedTransaction']['client'] == 'SARL Boulangerie Martin'

        assert matches['bank-2']['matchSource'] == 'sap'
        assert matches['bank-2']['matchType'] == BankMatchType.AMOUNT_ONLY
        assert matches['bank-2']['confidence'] == BankConfidence.LOW
        assert matches['bank-2']['matchedTransaction']['recordId'] == 'sap-3'

        assert [d['bankStatementRef'] for d in result['discrepancies']] == ['bank-3']
        assert result['summary'] == {
            'totalTransactions': 3,
            'matchedCount': 2,
            'unmatchedCount': 1,
            'totalAmount': 2599.99,
            'matchedAmount': 2500.0,
        }

    def test_second_run_adds_nothing(self, bank_service, seeded_repository, march_ledger):
        bank_service.run(march_ledger.id)
        second = bank_service.run(march_ledger.id)

        assert second['addedCount'] == 0
        stored = seeded_repository.get_ledger(march_ledger.id)
        assert len(stored.bank_reconciliation['matches']) == 2

    def test_run_with_date_range(self, bank_service, seeded_repository, march_ledger):
        result = bank_service.run(march_ledger.id, {'start': '2024-03-01', 'end': '2024-03-20'})

        assert set(matches_by_ref(result)) == {'bank-1'}
        assert len(result['unfiltered']['matches']) == 2
        stored = seeded_repository.get_ledger(march_ledger.id)
        assert stored.bank_reconciliation['filteredView']['dateRange'] == {
            'start': '2024-03-01', 'end': '2024-03-20'
        }

    def test_unknown_ledger(self, bank_service):
        with pytest.raises(NotFoundError):
            bank_service.run('missing')

    def test_invalid_range(self, bank_service, march_ledger):
        with pytest.raises(ValidationError):
            bank_service.run(march_ledger.id, {'start': 'soon', 'end': 'later'})


@pytest.mark.database
class TestManualBankMatch:

    def test_manual_match_is_confirmed(self, bank_service, seeded_repository, march_ledger):
        """
        Given: Bank fees with no automatic match
        When: A human matches them manually
        Then: A confirmed manual match is stored and the line is no longer a discrepancy
        """
        bank_service.run(march_ledger.id)

        result = bank_service.match_to_bank(
            march_ledger.id, {'id': 'bank-3'}, {'client': 'Frais', 'amount': 99.99},
            resolution='Monthly account fees', match_date='2024-03-25'
        )

        assert result['match']['matchType'] == BankMatchType.MANUAL
        assert result['match']['status'] == BankMatchStatus.CONFIRMED
        assert result['match']['amount'] == 99.99
        assert result['summary']['unmatchedCount'] == 0

        stored = seeded_repository.get_ledger(march_ledger.id)
        assert stored.bank_reconciliation['discrepancies'] == []

    def test_manual_match_replaces_pending(self, bank_service, seeded_repository, march_ledger):
        bank_service.run(march_ledger.id)

        bank_service.match_to_bank(march_ledger.id, 'bank-2', {'recordId': 'other'})

        stored = seeded_repository.get_ledger(march_ledger.id)
        bank_2 = [m for m in stored.bank_reconciliation['matches'] if m['bankStatementRef'] == 'bank-2']
        assert len(bank_2) == 1
        assert bank_2[0]['matchType'] == BankMatchType.MANUAL

    def test_confirmed_match_cannot_be_replaced(self, bank_service, march_ledger):
        bank_service.match_to_bank(march_ledger.id, 'bank-3', {'recordId': 'a'})

        with pytest.raises(ConflictError):
            bank_service.match_to_bank(march_ledger.id, 'bank-3', {'recordId': 'b'})

    def test_automatic_pass_keeps_manual_match(self, bank_service, seeded_repository, march_ledger):
        bank_service.match_to_bank(march_ledger.id, 'bank-1', {'recordId': 'manual-choice'})

        bank_service.run(march_ledger.id)

        stored = seeded_repository.get_ledger(march_ledger.id)
        bank_1 = [m for m in stored.bank_reconciliation['matches'] if m['bankStatementRef'] == 'bank-1']
        assert len(bank_1) == 1
        assert bank_1[0]['matchedTransaction'] == {'recordId': 'manual-choice'}

    def test_unknown_statement(self, bank_service, march_ledger):
        with pytest.raises(NotFoundError):
            bank_service.match_to_bank(march_ledger.id, 'bank-99', {'recordId': 'a'})

    def test_sap_transaction_source(self, bank_service, march_ledger):
        result = bank_service.match_to_bank(march_ledger.id, 'bank-2', {'id': 'sap-3', 'DocTotal': 2000.0})
        assert result['match']['matchSource'] == 'sap'


@pytest.mark.database
class TestBankStatusAndResolution:

    def test_update_status(self, bank_service, seeded_repository, march_ledger):
        bank_service.run(march_ledger.id)

        match = bank_service.update_match_status(march_ledger.id, 'bank-1', BankMatchStatus.CONFIRMED)

        assert match['status'] == BankMatchStatus.CONFIRMED
        stored = seeded_repository.get_ledger(march_ledger.id)
        assert stored.bank_reconciliation['matches'][0]['status'] == BankMatchStatus.CONFIRMED

    def test_invalid_status(self, bank_service, march_ledger):
        with pytest.raises(ValidationError):
            bank_service.update_match_status(march_ledger.id, 'bank-1', 'approved')

    def test_status_of_unknown_match(self, bank_service, march_ledger):
        with pytest.raises(NotFoundError):
            bank_service.update_match_status(march_ledger.id, 'bank-3', BankMatchStatus.CONFIRMED)

    def test_resolved_discrepancy_survives_later_runs(self, bank_service, seeded_repository, march_ledger):
        """
        Given: Bank fees left unmatched by the first pass
        When: A human resolves them and the bank pass runs again
        Then: The discrepancy keeps its resolution and no duplicate match appears
        """
        bank_service.run(march_ledger.id)

        result = bank_service.resolve_discrepancy(
            march_ledger.id, 'bank-3', 'Bank fees', [{'client': 'Frais', 'amount': 99.99}]
        )
        assert result['discrepancy']['status'] == BankMatchStatus.RESOLVED

        bank_service.run(march_ledger.id)

        stored = seeded_repository.get_ledger(march_ledger.id)
        discrepancies = stored.bank_reconciliation['discrepancies']
        assert len(discrepancies) == 1
        assert discrepancies[0]['status'] == BankMatchStatus.RESOLVED
        assert discrepancies[0]['resolution'] == 'Bank fees'
        refs = [m['bankStatementRef'] for m in stored.bank_reconciliation['matches']]
        assert sorted(refs) == ['bank-1', 'bank-2', 'bank-3']

    def test_resolve_errors(self, bank_service, march_ledger):
        bank_service.run(march_ledger.id)

        with pytest.raises(NotFoundError):
            bank_service.resolve_discrepancy(march_ledger.id, 'bank-1', 'matched already', [])

        bank_service.resolve_discrepancy(march_ledger.id, 'bank-3', 'fees', [])
        with pytest.raises(ConflictError):
            bank_service.resolve_discrepancy(march_ledger.id, 'bank-3', 'fees', [])
