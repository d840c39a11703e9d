"""
Potential-Match Finder
Proposes candidates for a human resolving a discrepancy. Read-only.

Looser than the matching engine: a narrower date window (20 days) but a much wider
amount tolerance (30%). Nothing found here is ever accepted automatically.
"""

import logging
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backoffice.config import MatchingConfig
from backoffice.exceptions import NotFoundError
from backoffice.models import Discrepancy, SourceType, TransactionRecord, parse_date
from backoffice.services.fuzzy_matcher import score_normalized
from backoffice.services.ledger_repository import ReconciliationRepository
from backoffice.services.name_normalizer import normalize_company_name
from backoffice.services.record_flattener import sap_document_to_record
from backoffice.services.transaction_matcher import within_date_window, within_target_tolerance

logger = logging.getLogger(__name__)


def rank_suggestions(suggestions: List[Dict[str, Any]], tie_band: float = 0.6) -> List[Dict[str, Any]]:
    """Score descending; scores within tie_band of each other are ordered by amount closeness"""

    def compare(first, second):
        if abs(first['score'] - second['score']) <= tie_band:
            if first['amountDifference'] != second['amountDifference']:
                return -1 if first['amountDifference'] < second['amountDifference'] else 1
            return 0
        return -1 if first['score'] > second['score'] else 1

    return sorted(suggestions, key=cmp_to_key(compare))


def suggest(
    anchor: TransactionRecord,
    candidates: Sequence[Tuple[TransactionRecord, Dict[str, Any]]],
    anchor_is_target: bool,
    date_window_days: int = 20,
    amount_tolerance: float = 0.30,
    limit: int = 5,
    tie_band: float = 0.6,
) -> List[Dict[str, Any]]:
    """
    Rank candidates for one discrepancy.

    Args:
        anchor: the discrepancy being resolved
        candidates: (record, payload) pairs; payload is returned with score fields added
        anchor_is_target: True when the anchor is the SAP side. The tolerance is
            taken on the target amount only, unlike the matching engine
    """
    anchor_name = normalize_company_name(anchor.client)
    suggestions = []

    for record, payload in candidates:
        if not within_date_window(anchor.date, record.date, date_window_days):
            continue
        if anchor_is_target:
            eligible = within_target_tolerance(record.amount, anchor.amount, amount_tolerance)
        else:
            eligible = within_target_tolerance(anchor.amount, record.amount, amount_tolerance)
        if not eligible:
            continue

        suggestion = dict(payload)
        suggestion['score'] = round(score_normalized(anchor_name, normalize_company_name(record.client)), 4)
        suggestion['amountDifference'] = round(abs(anchor.amount - record.amount), 2)
        suggestion['dateDifference'] = abs((anchor.date - record.date).days)
        suggestions.append(suggestion)

    return rank_suggestions(suggestions, tie_band)[:limit]


def _discrepancy_record(discrepancy: Discrepancy) -> TransactionRecord:
    return TransactionRecord(
        record_id=discrepancy.discrepancy_id,
        date=parse_date(discrepancy.date),
        client=discrepancy.client,
        amount=discrepancy.amount,
        category=discrepancy.category,
        remarks=discrepancy.remarks,
        source_type=SourceType.EXCEL,
    )


class PotentialMatchFinder:
    """Suggestions for SAP and Excel discrepancies of a ledger"""

    def __init__(self, repository: ReconciliationRepository, config: Optional[MatchingConfig] = None):
        self.repository = repository
        self.config = config or MatchingConfig.from_env()

    def _suggest(self, anchor, candidates, anchor_is_target):
        return suggest(
            anchor,
            candidates,
            anchor_is_target,
            date_window_days=self.config.suggest_date_window_days,
            amount_tolerance=self.config.suggest_amount_tolerance,
            limit=self.config.suggest_limit,
            tie_band=self.config.suggest_tie_band,
        )

    def for_sap_discrepancy(self, ledger_id: str, sap_invoice_id: str) -> List[Dict[str, Any]]:
        """Unresolved Excel discrepancies that could explain an SAP document"""
        ledger = self.repository.get_ledger(ledger_id)
        document = ledger.find_sap_discrepancy(sap_invoice_id)
        if document is None:
            raise NotFoundError(
                f"SAP discrepancy not found: {sap_invoice_id}",
                {'analysisId': ledger.id, 'sapInvoiceId': sap_invoice_id}
            )

        candidates = [
            (_discrepancy_record(discrepancy), discrepancy.to_dict())
            for _, _, discrepancy in ledger.iter_discrepancies()
            if not discrepancy.resolved
        ]
        suggestions = self._suggest(sap_document_to_record(document), candidates, anchor_is_target=True)
        logger.info(
            f"[RECONCILIATION] {len(suggestions)} suggestions for SAP {sap_invoice_id} "
            f"out of {len(candidates)} open discrepancies"
        )
        return suggestions

    def for_excel_discrepancy(self, ledger_id: str, discrepancy_id: str) -> List[Dict[str, Any]]:
        """Unresolved SAP documents, from the extended window, that could explain an Excel line"""
        ledger = self.repository.get_ledger(ledger_id)
        discrepancy = next(
            (d for _, _, d in ledger.iter_discrepancies() if d.discrepancy_id == discrepancy_id),
            None
        )
        if discrepancy is None:
            raise NotFoundError(
                f"Discrepancy not found: {discrepancy_id}",
                {'analysisId': ledger.id, 'discrepancyId': discrepancy_id}
            )

        candidates = [
            (sap_document_to_record(document), dict(document))
            for document in ledger.extended_sap_discrepancies
            if not document.get('resolved')
        ]
        return self._suggest(_discrepancy_record(discrepancy), candidates, anchor_is_target=False)
