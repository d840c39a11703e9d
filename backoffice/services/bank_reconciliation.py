#!/usr/bin/env python3
"""
Bank Reconciliation Service
Ties bank statement lines to the Excel and SAP records of a ledger.

Automatic matches are proposed as pending and merged first-write-wins, so a manual
match or an earlier pass is never overwritten. Manual matches bypass scoring.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from backoffice.config import MatchingConfig, RESOLVED_EXCEL_CATEGORY, RESOLVED_SAP_CATEGORY
from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models import (
    BankConfidence, BankMatch, BankMatchStatus, BankMatchType, ReconciliationLedger,
    SourceType, TransactionRecord, format_date, now_iso, parse_amount
)
from backoffice.services.fuzzy_matcher import score_normalized
from backoffice.services.ledger_repository import ReconciliationRepository
from backoffice.services.name_normalizer import normalize_company_name
from backoffice.services.reconciliation_ledger import (
    excel_records_from_ledger, merge_bank_results, refresh_bank_views, statement_ref, stored_view_range
)
from backoffice.services.record_flattener import bank_statement_to_record, sap_document_to_record
from backoffice.services.reconciliation_service import validate_date_range
from backoffice.services.transaction_matcher import TransactionMatcher

logger = logging.getLogger(__name__)

MATCH_SOURCE_EXCEL = 'excel'
MATCH_SOURCE_SAP = 'sap'

HIGH_CONFIDENCE_SCORE = 0.9


@dataclass
class BankCandidate:
    record: TransactionRecord
    match_source: str


def classify_bank_match(name_score: float, threshold: float):
    """(matchType, confidence) for an amount-eligible candidate with this name score"""
    if name_score > threshold:
        if name_score >= HIGH_CONFIDENCE_SCORE:
            return BankMatchType.AMOUNT_AND_NAME, BankConfidence.HIGH
        return BankMatchType.AMOUNT_AND_NAME, BankConfidence.MEDIUM
    return BankMatchType.AMOUNT_ONLY, BankConfidence.LOW


def _match_source_of(transaction: Dict[str, Any]) -> str:
    source_type = str(transaction.get('sourceType') or '')
    if source_type.startswith('SAP') or transaction.get('DocTotal') is not None:
        return MATCH_SOURCE_SAP
    return MATCH_SOURCE_EXCEL


class BankReconciliationService:
    """Bank pass, manual bank matches and bank discrepancy resolution for one tenant"""

    def __init__(self, repository: ReconciliationRepository, config: Optional[MatchingConfig] = None):
        self.repository = repository
        self.config = config or MatchingConfig.from_env()
        self.matcher = TransactionMatcher(
            date_window_days=self.config.bank_date_window_days,
            amount_tolerance=self.config.bank_amount_tolerance,
            acceptance_threshold=self.config.acceptance_threshold,
        )

    def _candidates(self, ledger: ReconciliationLedger) -> List[BankCandidate]:
        candidates = [
            BankCandidate(record, MATCH_SOURCE_EXCEL)
            for record in excel_records_from_ledger(
                ledger, skip_categories=(RESOLVED_EXCEL_CATEGORY, RESOLVED_SAP_CATEGORY)
            )
        ]
        candidates.extend(
            BankCandidate(sap_document_to_record(document), MATCH_SOURCE_SAP)
            for document in ledger.sap_discrepancies
        )
        return candidates

    def _match_statement(self, statement: Dict[str, Any],
                         candidates: List[BankCandidate]) -> Optional[BankMatch]:
        bank_record = bank_statement_to_record(statement)
        label = normalize_company_name(bank_record.client)

        best = None
        best_score = -1.0
        for candidate in candidates:
            if not self.matcher.is_eligible(candidate.record, bank_record):
                continue
            score = score_normalized(label, normalize_company_name(candidate.record.client))
            if score > best_score:
                best, best_score = candidate, score

        if best is None:
            return None

        match_type, confidence = classify_bank_match(best_score, self.config.acceptance_threshold)
        transaction = best.record.to_dict()
        transaction['nameScore'] = round(best_score, 4)
        return BankMatch(
            bank_statement_ref=statement_ref(statement),
            matched_transaction=transaction,
            match_source=best.match_source,
            match_type=match_type,
            confidence=confidence,
            status=BankMatchStatus.PENDING,
            amount=bank_record.amount,
            date=format_date(statement.get('operationDate')),
            matched_at=now_iso(),
        )

    def run(self, ledger_id: str, date_range: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the automatic bank pass over all bank statements and merge into the ledger.

        Args:
            ledger_id: analysis to reconcile against
            date_range: optional {start, end} for the returned projection; omitted means all data
        """
        if date_range:
            date_range = validate_date_range(date_range)

        ledger = self.repository.get_ledger(ledger_id)
        statements = self.repository.get_bank_statements()
        candidates = self._candidates(ledger)

        new_matches = []
        for statement in statements:
            match = self._match_statement(statement, candidates)
            if match is not None:
                new_matches.append(match.to_dict())

        logger.info(
            f"[BANK_RECON] Ledger {ledger.id}: {len(statements)} statements, "
            f"{len(candidates)} candidates, {len(new_matches)} proposed matches"
        )

        result = merge_bank_results(ledger, new_matches, statements, date_range)
        self.repository.save_ledger(ledger)
        result['analysisId'] = ledger.id
        return result

    def _find_statement(self, statements: List[Dict[str, Any]], ref: str) -> Dict[str, Any]:
        for statement in statements:
            if statement_ref(statement) == ref:
                return statement
        raise NotFoundError(f"Bank statement not found: {ref}", {'bankStatementId': ref})

    def match_to_bank(
        self,
        ledger_id: str,
        bank_statement: Any,
        excel_match: Dict[str, Any],
        resolution: Optional[str] = None,
        match_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a confirmed manual match between a bank line and a transaction"""
        if isinstance(bank_statement, dict):
            ref = bank_statement.get('id') or bank_statement.get('bankStatementRef') or bank_statement.get('operationRef')
        else:
            ref = bank_statement
        if not ref:
            raise ValidationError("bankStatement is required")
        if not isinstance(excel_match, dict) or not excel_match:
            raise ValidationError("excelMatch is required")
        ref = str(ref)

        ledger = self.repository.get_ledger(ledger_id)
        statements = self.repository.get_bank_statements()
        statement = self._find_statement(statements, ref)

        bank = ledger.bank_reconciliation
        for existing in bank['matches']:
            if existing['bankStatementRef'] != ref:
                continue
            if existing['status'] != BankMatchStatus.PENDING:
                raise ConflictError(
                    f"Bank statement {ref} already has a {existing['status']} match",
                    {'bankStatementRef': ref, 'status': existing['status']}
                )
        bank['matches'] = [m for m in bank['matches'] if m['bankStatementRef'] != ref]

        match = BankMatch(
            bank_statement_ref=ref,
            matched_transaction=excel_match,
            match_source=_match_source_of(excel_match),
            match_type=BankMatchType.MANUAL,
            confidence=BankConfidence.HIGH,
            status=BankMatchStatus.CONFIRMED,
            amount=parse_amount(statement.get('amount')),
            date=format_date(match_date) or format_date(statement.get('operationDate')),
            resolution=resolution,
            matched_at=now_iso(),
        )
        bank['matches'].append(match.to_dict())

        refresh_bank_views(ledger, statements, stored_view_range(ledger))
        self.repository.save_ledger(ledger)
        logger.info(f"[BANK_RECON] Manual match recorded for bank statement {ref} on ledger {ledger.id}")

        return {'match': match.to_dict(), 'summary': bank['summary']}

    def update_match_status(self, ledger_id: str, bank_statement_ref: str, status: str) -> Dict[str, Any]:
        if status not in BankMatchStatus.ALL:
            raise ValidationError(
                f"Invalid status: {status}",
                {'allowed': list(BankMatchStatus.ALL)}
            )

        ledger = self.repository.get_ledger(ledger_id)
        for match in ledger.bank_reconciliation['matches']:
            if match['bankStatementRef'] == str(bank_statement_ref):
                match['status'] = status
                match['statusUpdatedAt'] = now_iso()
                self.repository.save_ledger(ledger)
                logger.info(f"[BANK_RECON] Bank match {bank_statement_ref} set to {status}")
                return match

        raise NotFoundError(
            f"Bank match not found: {bank_statement_ref}",
            {'analysisId': ledger.id, 'bankStatementRef': bank_statement_ref}
        )

    def resolve_discrepancy(
        self,
        ledger_id: str,
        bank_statement_id: str,
        resolution: str,
        matched_transactions: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Resolve an unmatched bank line in place and record the resolved match"""
        if not bank_statement_id:
            raise ValidationError("bankStatementId is required")
        matched_transactions = matched_transactions or []
        if not all(isinstance(t, dict) for t in matched_transactions):
            raise ValidationError("matchedTransactions must be a list of objects")

        ref = str(bank_statement_id)
        ledger = self.repository.get_ledger(ledger_id)
        bank = ledger.bank_reconciliation

        discrepancy = next((d for d in bank['discrepancies'] if d['bankStatementRef'] == ref), None)
        if discrepancy is None:
            raise NotFoundError(
                f"Bank discrepancy not found: {ref}",
                {'analysisId': ledger.id, 'bankStatementId': ref}
            )
        if discrepancy.get('status') == BankMatchStatus.RESOLVED:
            raise ConflictError("Bank discrepancy is already resolved", {'bankStatementId': ref})

        timestamp = now_iso()
        discrepancy.update({
            'status': BankMatchStatus.RESOLVED,
            'resolution': resolution,
            'resolvedTimestamp': timestamp,
            'matchedTransactions': matched_transactions,
        })

        if matched_transactions:
            match = BankMatch(
                bank_statement_ref=ref,
                matched_transaction=(
                    matched_transactions[0] if len(matched_transactions) == 1
                    else {'transactions': matched_transactions}
                ),
                match_source=_match_source_of(matched_transactions[0]),
                match_type=BankMatchType.MANUAL,
                confidence=BankConfidence.HIGH,
                status=BankMatchStatus.RESOLVED,
                amount=discrepancy.get('amount', 0.0),
                date=discrepancy.get('date'),
                resolution=resolution,
                matched_at=timestamp,
            )
            bank['matches'].append(match.to_dict())

        statements = self.repository.get_bank_statements()
        refresh_bank_views(ledger, statements, stored_view_range(ledger))
        self.repository.save_ledger(ledger)
        logger.info(f"[BANK_RECON] Resolved bank discrepancy {ref} on ledger {ledger.id}")

        return {'discrepancy': discrepancy, 'summary': bank['summary']}
