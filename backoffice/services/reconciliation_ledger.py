#!/usr/bin/env python3
"""
Reconciliation Ledger operations

Building a ledger from a matching pass, and merging bank reconciliation results
into the ledger's bank sub-ledger.

Bank merge rules:
- a new match whose bank statement is already matched is dropped (first write wins,
  so manual and earlier matches are never overwritten by a later automatic pass)
- discrepancies are rebuilt from scratch as "all statements minus matched ones";
  only entries a human resolved in place are carried over
- the full, unfiltered result is stored for future merges; a date-filtered
  projection is stored and returned alongside it for display
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from backoffice.config import VERIFIED_RESOLUTION
from backoffice.models import (
    BankMatchStatus, Discrepancy, ReconciliationLedger, TransactionRecord,
    SourceType, format_date, now_iso, parse_amount, parse_date
)
from backoffice.services.record_flattener import bank_statement_label, sap_document_id
from backoffice.services.transaction_matcher import MatchOutcome

logger = logging.getLogger(__name__)


def build_ledger(
    tenant_id: str,
    date_range: Dict[str, str],
    outcome: MatchOutcome,
    sap_documents: Sequence[Dict[str, Any]],
    extended_sap_documents: Sequence[Dict[str, Any]],
    pos_analysis: Dict[str, Any],
) -> ReconciliationLedger:
    """Assemble a new ledger from a matching pass.

    sap_documents and extended_sap_documents must already exclude POS documents;
    any document claimed by a match is left out of the SAP discrepancy lists.
    """
    ledger = ReconciliationLedger(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        date_range={'start': date_range['start'], 'end': date_range['end']},
        performed=now_iso(),
        pos_analysis=pos_analysis,
    )

    for match in outcome.matches:
        ledger.add_match(match.category, match)

    for record in outcome.unmatched_source:
        ledger.add_discrepancy(Discrepancy.from_record(record))

    for record in outcome.verified_source:
        discrepancy = Discrepancy.from_record(record)
        discrepancy.resolved = True
        discrepancy.resolution = VERIFIED_RESOLUTION
        discrepancy.resolved_timestamp = record.verified_at
        ledger.add_discrepancy(discrepancy)

    claimed = outcome.claimed_targets
    ledger.sap_discrepancies = [
        dict(document) for document in sap_documents
        if sap_document_id(document) not in claimed
    ]
    ledger.extended_sap_discrepancies = [
        dict(document) for document in extended_sap_documents
        if sap_document_id(document) not in claimed
    ]

    logger.info(
        f"[RECONCILIATION] Built ledger {ledger.id}: {ledger.match_count()} matches, "
        f"{ledger.discrepancy_count()} excel discrepancies, "
        f"{len(ledger.sap_discrepancies)} SAP discrepancies"
    )
    return ledger


def statement_ref(statement: Dict[str, Any]) -> str:
    return str(statement.get('id') or statement.get('operationRef'))


def _in_range(value: Optional[str], date_range: Optional[Dict[str, str]]) -> bool:
    if not date_range:
        return True
    day = format_date(value)
    if day is None:
        return False
    return date_range['start'] <= day <= date_range['end']


def bank_summary(statements: Sequence[Dict[str, Any]], matches: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    matched_refs = {match['bankStatementRef'] for match in matches}
    total_amount = 0.0
    matched_amount = 0.0
    matched_count = 0

    for statement in statements:
        amount = parse_amount(statement.get('amount'))
        total_amount += amount
        if statement_ref(statement) in matched_refs:
            matched_count += 1
            matched_amount += amount

    return {
        'totalTransactions': len(statements),
        'matchedCount': matched_count,
        'unmatchedCount': len(statements) - matched_count,
        'totalAmount': round(total_amount, 2),
        'matchedAmount': round(matched_amount, 2),
    }


def rebuild_bank_discrepancies(
    statements: Sequence[Dict[str, Any]],
    matches: Sequence[Dict[str, Any]],
    previous: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """All statements minus matched ones, plus discrepancies already resolved by hand"""
    resolved = [d for d in previous if d.get('status') == BankMatchStatus.RESOLVED]
    resolved_refs = {d['bankStatementRef'] for d in resolved}
    matched_refs = {match['bankStatementRef'] for match in matches}

    discrepancies = list(resolved)
    for statement in statements:
        ref = statement_ref(statement)
        if ref in matched_refs or ref in resolved_refs:
            continue
        discrepancies.append({
            'bankStatementRef': ref,
            'status': 'unmatched',
            'amount': parse_amount(statement.get('amount')),
            'date': format_date(statement.get('operationDate')),
            'description': bank_statement_label(statement),
            'bank': statement.get('bank'),
        })
    return discrepancies


def project_bank_view(
    bank_reconciliation: Dict[str, Any],
    statements: Sequence[Dict[str, Any]],
    date_range: Optional[Dict[str, str]],
) -> Dict[str, Any]:
    """Date-filtered projection of the bank sub-ledger; no range means all data"""
    in_range_statements = [s for s in statements if _in_range(s.get('operationDate'), date_range)]
    in_range_refs = {statement_ref(s) for s in in_range_statements}
    matches = [m for m in bank_reconciliation['matches'] if m['bankStatementRef'] in in_range_refs]
    discrepancies = [
        d for d in bank_reconciliation['discrepancies']
        if d['bankStatementRef'] in in_range_refs
    ]
    return {
        'dateRange': dict(date_range) if date_range else None,
        'matches': matches,
        'discrepancies': discrepancies,
        'summary': bank_summary(in_range_statements, matches),
    }


def stored_view_range(ledger: ReconciliationLedger) -> Optional[Dict[str, str]]:
    """Date range of the last filtered projection, if any"""
    view = ledger.bank_reconciliation.get('filteredView')
    return view.get('dateRange') if view else None


def refresh_bank_views(ledger: ReconciliationLedger, statements: Sequence[Dict[str, Any]],
                       date_range: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """Recompute discrepancies, summary and the filtered projection after any change"""
    bank = ledger.bank_reconciliation
    bank['discrepancies'] = rebuild_bank_discrepancies(statements, bank['matches'], bank['discrepancies'])
    bank['summary'] = bank_summary(statements, bank['matches'])
    bank['lastUpdated'] = now_iso()
    bank['filteredView'] = project_bank_view(bank, statements, date_range)
    return bank['filteredView']


def merge_bank_results(
    ledger: ReconciliationLedger,
    new_matches: Sequence[Dict[str, Any]],
    statements: Sequence[Dict[str, Any]],
    date_range: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """
    Merge freshly computed bank matches into the ledger.

    Args:
        ledger: ledger whose bank sub-ledger is updated in place
        new_matches: BankMatch dicts from the latest automatic pass
        statements: every bank statement of the tenant (unfiltered)
        date_range: optional display range for the filtered projection

    Returns:
        {'matches', 'discrepancies', 'summary', 'dateRange', 'unfiltered', 'addedCount', 'lastUpdated'}
    """
    bank = ledger.bank_reconciliation
    existing_refs = {match['bankStatementRef'] for match in bank['matches']}

    added = []
    for match in new_matches:
        ref = match['bankStatementRef']
        if ref in existing_refs:
            continue
        existing_refs.add(ref)
        added.append(match)

    bank['matches'] = list(bank['matches']) + added
    view = refresh_bank_views(ledger, statements, date_range)

    logger.info(
        f"[BANK_RECON] Ledger {ledger.id}: {len(added)} new bank matches, "
        f"{len(new_matches) - len(added)} already matched, "
        f"{len(bank['discrepancies'])} discrepancies"
    )

    return {
        'matches': view['matches'],
        'discrepancies': view['discrepancies'],
        'summary': view['summary'],
        'dateRange': view['dateRange'],
        'unfiltered': {
            'matches': bank['matches'],
            'discrepancies': bank['discrepancies'],
            'summary': bank['summary'],
        },
        'addedCount': len(added),
        'lastUpdated': bank['lastUpdated'],
    }


def excel_records_from_ledger(ledger: ReconciliationLedger,
                              skip_categories: Sequence[str] = ()) -> List[TransactionRecord]:
    """Excel-side lines of a ledger, matched or not, as comparable records"""
    records = []
    seen = set()
    for category, items in ledger.matches.items():
        if category in skip_categories:
            continue
        for position, match in enumerate(items):
            record_id = match.source_record_id or f"match:{category}:{position}"
            if record_id in seen:
                continue
            seen.add(record_id)
            records.append(TransactionRecord(
                record_id=record_id,
                date=parse_date(match.date),
                client=match.source_client_name,
                amount=match.source_amount,
                category=match.category,
                remarks=match.remarks,
                source_type=SourceType.EXCEL,
            ))

    for _, _, discrepancy in ledger.iter_discrepancies():
        if discrepancy.discrepancy_id in seen:
            continue
        seen.add(discrepancy.discrepancy_id)
        records.append(TransactionRecord(
            record_id=discrepancy.discrepancy_id,
            date=parse_date(discrepancy.date),
            client=discrepancy.client,
            amount=discrepancy.amount,
            category=discrepancy.category,
            remarks=discrepancy.remarks,
            source_type=SourceType.EXCEL,
        ))
    return records
