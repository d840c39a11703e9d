"""
Services package for the reconciliation back office

One module per reconciliation component: normalization, scoring, flattening,
matching, ledger storage, resolution, bank matching and suggestions.
"""

from .bank_reconciliation import BankReconciliationService
from .discrepancy_resolution import DiscrepancyResolutionService
from .ledger_repository import ReconciliationRepository
from .potential_match_finder import PotentialMatchFinder
from .reconciliation_service import ReconciliationService
from .sales_annotator import SalesRecordAnnotator
from .transaction_matcher import TransactionMatcher

__all__ = [
    'BankReconciliationService',
    'DiscrepancyResolutionService',
    'PotentialMatchFinder',
    'ReconciliationRepository',
    'ReconciliationService',
    'SalesRecordAnnotator',
    'TransactionMatcher',
]
