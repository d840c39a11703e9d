#!/usr/bin/env python3
"""
Reconciliation Service
Runs the Excel versus SAP comparison for a date range and stores the result as a ledger.

A ledger is created once per tenant and date range. Asking again for the same range
returns the stored ledger, with every resolution recorded on it since.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from backoffice.config import MatchingConfig
from backoffice.exceptions import ValidationError
from backoffice.models import ReconciliationLedger, parse_date
from backoffice.services.ledger_repository import ReconciliationRepository
from backoffice.services.pos_analysis import analyze_pos
from backoffice.services.reconciliation_ledger import build_ledger
from backoffice.services.record_flattener import (
    flatten_sales, is_pos_document, sap_document_to_record
)
from backoffice.services.sales_annotator import carry_over_verification
from backoffice.services.transaction_matcher import TransactionMatcher

logger = logging.getLogger(__name__)


def validate_date_range(date_range: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Normalize {start, end} to ISO dates, raising ValidationError when unusable"""
    if not isinstance(date_range, dict):
        raise ValidationError("dateRange with start and end is required")

    start = parse_date(date_range.get('start') or date_range.get('startDate'))
    end = parse_date(date_range.get('end') or date_range.get('endDate'))

    if start is None or end is None:
        raise ValidationError(
            "dateRange.start and dateRange.end must be valid dates",
            {'start': date_range.get('start'), 'end': date_range.get('end')}
        )
    if start > end:
        raise ValidationError(
            "dateRange.start must not be after dateRange.end",
            {'start': start.isoformat(), 'end': end.isoformat()}
        )
    return {'start': start.isoformat(), 'end': end.isoformat()}


class ReconciliationService:
    """Creates and reads reconciliation ledgers for one tenant"""

    def __init__(self, repository: ReconciliationRepository, config: Optional[MatchingConfig] = None):
        self.repository = repository
        self.config = config or MatchingConfig.from_env()
        self.matcher = TransactionMatcher.from_config(self.config)

    def _store_sales(self, excel_data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not isinstance(excel_data, list):
            raise ValidationError("excelData must be a list of daily sales documents")

        stored = []
        for position, document in enumerate(excel_data):
            if not isinstance(document, dict) or parse_date(document.get('date')) is None:
                raise ValidationError(
                    "Every daily sales document needs a valid date",
                    {'position': position}
                )
            previous = self.repository.find_daily_sales(parse_date(document['date']).isoformat())
            document = dict(document)
            if previous:
                kept = carry_over_verification(previous, document)
                if kept:
                    logger.info(f"[RECONCILIATION] Kept {kept} verified lines for {previous['date']}")
            stored.append(self.repository.upsert_daily_sales(document))
        return stored

    def compare_data(self, date_range: Dict[str, Any],
                     excel_data: Optional[List[Dict[str, Any]]] = None) -> Tuple[ReconciliationLedger, bool]:
        """
        Return the ledger for date_range, computing it on first request.

        Args:
            date_range: {start, end}
            excel_data: daily sales documents; stored before matching. When omitted
                the documents already stored for the range are used.

        Returns:
            (ledger, created) where created is False for an existing ledger
        """
        date_range = validate_date_range(date_range)

        existing = self.repository.find_ledger_by_range(date_range['start'], date_range['end'])
        if existing:
            logger.info(
                f"[RECONCILIATION] Returning existing ledger {existing.id} "
                f"for {date_range['start']}..{date_range['end']}"
            )
            return existing, False

        if excel_data is not None:
            sales_documents = self._store_sales(excel_data)
        else:
            sales_documents = self.repository.get_daily_sales(date_range['start'], date_range['end'])

        start = parse_date(date_range['start'])
        end = parse_date(date_range['end'])
        window = timedelta(days=self.config.date_window_days)
        extended_documents = self.repository.get_sap_documents(
            (start - window).isoformat(), (end + window).isoformat()
        )
        range_documents = [
            document for document in extended_documents
            if date_range['start'] <= (document.get('DocDate') or '') <= date_range['end']
        ]

        sales_records = flatten_sales(sales_documents)
        targets = [
            sap_document_to_record(document) for document in extended_documents
            if not is_pos_document(document)
        ]
        logger.info(
            f"[RECONCILIATION] Comparing {len(sales_records)} sales records against "
            f"{len(targets)} SAP documents ({len(range_documents)} in range)"
        )

        outcome = self.matcher.match(sales_records, targets)
        pos_analysis = analyze_pos(sales_records, [sap_document_to_record(d) for d in range_documents])

        ledger = build_ledger(
            tenant_id=self.repository.tenant_id,
            date_range=date_range,
            outcome=outcome,
            sap_documents=[d for d in range_documents if not is_pos_document(d)],
            extended_sap_documents=[d for d in extended_documents if not is_pos_document(d)],
            pos_analysis=pos_analysis,
        )

        stored = self.repository.create_ledger(ledger)
        return stored, stored.id == ledger.id

    def get_analysis(self, ledger_id: str) -> ReconciliationLedger:
        return self.repository.get_ledger(ledger_id)

    def get_by_range(self, date_range: Dict[str, Any]) -> Optional[ReconciliationLedger]:
        date_range = validate_date_range(date_range)
        return self.repository.find_ledger_by_range(date_range['start'], date_range['end'])

    def get_history(self, start: Optional[str] = None, end: Optional[str] = None,
                    page: int = 1, limit: int = 100) -> Dict[str, Any]:
        """Paginated ledger summaries, most recent first"""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", {'page': page, 'limit': limit})

        start_date = parse_date(start) if start else None
        end_date = parse_date(end) if end else None
        if (start and start_date is None) or (end and end_date is None):
            raise ValidationError("startDate and endDate must be valid dates", {'start': start, 'end': end})

        ledgers, total = self.repository.list_ledgers(
            start_date.isoformat() if start_date else None,
            end_date.isoformat() if end_date else None,
            page,
            limit,
        )

        analyses = []
        for ledger in ledgers:
            analyses.append({
                'analysisId': ledger.id,
                'dateRange': ledger.date_range,
                'performed': ledger.performed,
                'matchCount': ledger.match_count(),
                'discrepancyCount': ledger.discrepancy_count(),
                'unresolvedCount': sum(1 for _, _, d in ledger.iter_discrepancies() if not d.resolved),
                'sapDiscrepancyCount': len(ledger.sap_discrepancies),
                'posSummary': ledger.pos_analysis.get('summary'),
                'bankSummary': ledger.bank_reconciliation.get('summary'),
            })

        return {
            'analyses': analyses,
            'pagination': {
                'total': total,
                'page': page,
                'limit': limit,
                'pages': (total + limit - 1) // limit,
            },
        }
