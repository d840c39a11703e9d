#!/usr/bin/env python3
"""
Discrepancy Resolution Workflow
Manual overrides that move a discrepancy to a resolved match.

A discrepancy goes unresolved -> resolved exactly once. Resolving annotates the
discrepancy in place and appends matches under a synthetic category; nothing is
ever deleted, so the ledger keeps a full audit trail.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from backoffice.config import RESOLVED_EXCEL_CATEGORY, RESOLVED_SAP_CATEGORY
from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models import Discrepancy, Match, ReconciliationLedger, format_date, now_iso, parse_amount
from backoffice.services.ledger_repository import ReconciliationRepository
from backoffice.services.sales_annotator import SalesRecordAnnotator

logger = logging.getLogger(__name__)


def normalize_invoice_reference(invoice: Dict[str, Any]) -> Dict[str, Any]:
    """Accept either a raw SAP document or an already shaped reference"""
    if not isinstance(invoice, dict):
        raise ValidationError("Each matched invoice must be an object")

    target_ref = invoice.get('targetRef') or invoice.get('id') or invoice.get('DocEntry')
    if target_ref is None:
        raise ValidationError("Matched invoice is missing its reference", {'invoice': invoice})

    doc_num = invoice.get('docNum', invoice.get('DocNum'))
    return {
        'targetRef': str(target_ref),
        'targetAmount': parse_amount(invoice.get('targetAmount', invoice.get('DocTotal'))),
        'docNum': str(doc_num) if doc_num is not None else None,
        'docDate': format_date(invoice.get('docDate') or invoice.get('DocDate')),
        'targetCustomerName': invoice.get('targetCustomerName') or invoice.get('CardName') or '',
    }


class DiscrepancyResolutionService:
    """Resolve Excel-side and SAP-side discrepancies on a ledger"""

    def __init__(self, repository: ReconciliationRepository,
                 annotator: Optional[SalesRecordAnnotator] = None):
        self.repository = repository
        self.annotator = annotator or SalesRecordAnnotator(repository)

    def _find_excel_discrepancy(
        self,
        ledger: ReconciliationLedger,
        discrepancy_id: Optional[str],
        category: Optional[str],
        index: Optional[int],
    ) -> Tuple[str, int, Discrepancy]:
        if discrepancy_id:
            for item_category, item_index, discrepancy in ledger.iter_discrepancies():
                if discrepancy.discrepancy_id == discrepancy_id:
                    return item_category, item_index, discrepancy
            raise NotFoundError(
                f"Discrepancy not found: {discrepancy_id}",
                {'analysisId': ledger.id, 'discrepancyId': discrepancy_id}
            )

        if category is None or index is None:
            raise ValidationError("discrepancyId, or category and index, is required")

        try:
            index = int(index)
        except (TypeError, ValueError):
            raise ValidationError("index must be an integer", {'index': index})

        items = ledger.excel_discrepancies.get(category)
        if not items or index < 0 or index >= len(items):
            raise NotFoundError(
                f"Discrepancy not found: {category}[{index}]",
                {'analysisId': ledger.id, 'category': category, 'index': index}
            )
        return category, index, items[index]

    def resolve_excel_discrepancy(
        self,
        ledger_id: str,
        resolution: str,
        matched_invoices: List[Dict[str, Any]],
        discrepancy_id: Optional[str] = None,
        category: Optional[str] = None,
        index: Optional[int] = None,
        resolved_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Resolve an Excel discrepancy against one or more SAP documents.

        Returns:
            {'discrepancy': ..., 'newMatches': [...], 'category', 'index'}
        """
        if not matched_invoices:
            raise ValidationError("matchedInvoices must contain at least one invoice")
        references = [normalize_invoice_reference(invoice) for invoice in matched_invoices]

        ledger = self.repository.get_ledger(ledger_id)
        found_category, found_index, discrepancy = self._find_excel_discrepancy(
            ledger, discrepancy_id, category, index
        )
        if discrepancy.resolved:
            raise ConflictError(
                "Discrepancy is already resolved",
                {'discrepancyId': discrepancy.discrepancy_id, 'resolvedTimestamp': discrepancy.resolved_timestamp}
            )

        timestamp = now_iso()
        discrepancy.resolved = True
        discrepancy.resolution = resolution
        discrepancy.resolved_timestamp = timestamp
        discrepancy.resolved_by = resolved_by
        discrepancy.matched_invoices = [
            {key: reference[key] for key in ('targetRef', 'targetAmount', 'docNum', 'docDate')}
            for reference in references
        ]

        new_matches = []
        for reference in references:
            match = Match(
                date=discrepancy.date,
                source_client_name=discrepancy.client,
                target_customer_name=reference['targetCustomerName'],
                source_amount=discrepancy.amount,
                target_amount=reference['targetAmount'],
                category=RESOLVED_EXCEL_CATEGORY,
                confidence_score=1.0,
                remarks=discrepancy.remarks,
                is_resolved=True,
                resolution=resolution,
                source_record_id=discrepancy.discrepancy_id,
                target_ref=reference['targetRef'],
                doc_num=reference['docNum'],
                doc_date=reference['docDate'],
                matched_at=timestamp,
            )
            ledger.add_match(RESOLVED_EXCEL_CATEGORY, match)
            new_matches.append(match)

        self.repository.save_ledger(ledger)
        logger.info(
            f"[RECONCILIATION] Resolved discrepancy {discrepancy.discrepancy_id} on ledger {ledger.id} "
            f"with {len(references)} invoice(s)"
        )

        return {
            'discrepancy': discrepancy.to_dict(),
            'category': found_category,
            'index': found_index,
            'newMatches': [match.to_dict() for match in new_matches],
            'revision': ledger.revision,
        }

    def resolve_sap_discrepancy(
        self,
        ledger_id: str,
        sap_invoice_id: str,
        resolution: str,
        matched_transactions: List[Dict[str, Any]],
        resolved_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Resolve an SAP discrepancy against Excel sales lines.

        The ledger is saved first; the sales lines are then flagged verified one by one.
        A line that cannot be found is logged and skipped.
        """
        if not sap_invoice_id:
            raise ValidationError("sapInvoiceId is required")
        if not matched_transactions or not all(isinstance(t, dict) for t in matched_transactions):
            raise ValidationError("matchedTransactions must contain at least one transaction")

        ledger = self.repository.get_ledger(ledger_id)
        record = ledger.find_sap_discrepancy(sap_invoice_id)
        if record is None:
            raise NotFoundError(
                f"SAP discrepancy not found: {sap_invoice_id}",
                {'analysisId': ledger.id, 'sapInvoiceId': sap_invoice_id}
            )
        if record.get('resolved'):
            raise ConflictError(
                "SAP discrepancy is already resolved",
                {'sapInvoiceId': sap_invoice_id, 'resolvedTimestamp': record.get('resolvedTimestamp')}
            )

        timestamp = now_iso()
        annotation = {
            'resolved': True,
            'resolution': resolution,
            'resolvedTimestamp': timestamp,
            'resolvedBy': resolved_by,
            'matchedTransactions': matched_transactions,
        }
        record.update(annotation)
        # The extended list holds its own copy of the same document
        for extended in ledger.extended_sap_discrepancies:
            if str(extended.get('id')) == str(sap_invoice_id):
                extended.update(annotation)

        new_matches = []
        for transaction in matched_transactions:
            match = Match(
                date=format_date(record.get('DocDate')),
                source_client_name=record.get('CardName') or '',
                target_customer_name=transaction.get('client') or '',
                source_amount=parse_amount(record.get('DocTotal')),
                target_amount=parse_amount(transaction.get('amount')),
                category=RESOLVED_SAP_CATEGORY,
                confidence_score=1.0,
                remarks=transaction.get('remarks') or '',
                is_resolved=True,
                resolution=resolution,
                source_record_id=str(sap_invoice_id),
                target_ref=transaction.get('recordId') or transaction.get('discrepancyId'),
                doc_num=str(record['DocNum']) if record.get('DocNum') is not None else None,
                doc_date=format_date(record.get('DocDate')),
                matched_at=timestamp,
            )
            ledger.add_match(RESOLVED_SAP_CATEGORY, match)
            new_matches.append(match)

        self.repository.save_ledger(ledger)
        logger.info(f"[RECONCILIATION] Resolved SAP discrepancy {sap_invoice_id} on ledger {ledger.id}")

        verified = 0
        skipped = []
        for transaction in matched_transactions:
            try:
                if self.annotator.mark_verified(transaction):
                    verified += 1
                else:
                    skipped.append(transaction)
            except Exception as e:
                logger.warning(
                    f"[RECONCILIATION] Could not mark sales line verified for SAP {sap_invoice_id}: {e}"
                )
                skipped.append(transaction)

        return {
            'sapDiscrepancy': record,
            'newMatches': [match.to_dict() for match in new_matches],
            'verifiedCount': verified,
            'skippedVerifications': skipped,
            'revision': ledger.revision,
        }
