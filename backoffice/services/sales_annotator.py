"""
Sales Record Annotator
Writes verification flags back onto stored daily sales documents once a human
has tied one of their lines to an SAP document.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from backoffice.models import format_date, now_iso, parse_amount
from backoffice.services.fuzzy_matcher import score_names
from backoffice.services.record_flattener import (
    PAYMENT_CATEGORIES, POS_CATEGORIES, POS_FIELD, entry_amount
)

logger = logging.getLogger(__name__)


def _category_entries(document: Dict[str, Any], category: str) -> List[Any]:
    if category in POS_CATEGORIES:
        return (document.get(POS_FIELD) or {}).get(category) or []
    return document.get(category) or []


def _iter_entries(document: Dict[str, Any]) -> Iterator[Tuple[str, int, Dict[str, Any]]]:
    for category in PAYMENT_CATEGORIES + POS_CATEGORIES:
        for index, entry in enumerate(_category_entries(document, category)):
            if isinstance(entry, dict):
                yield category, index, entry


def carry_over_verification(previous: Dict[str, Any], replacement: Dict[str, Any]) -> int:
    """Keep verified flags when a day is re-imported with the same lines; returns lines kept"""
    kept = 0
    for category, index, old_entry in _iter_entries(previous):
        if not old_entry.get('verified'):
            continue
        new_entries = _category_entries(replacement, category)
        if index < len(new_entries) and isinstance(new_entries[index], dict):
            new_entry = new_entries[index]
            if new_entry.get('client') == old_entry.get('client'):
                new_entry['verified'] = True
                new_entry['verifiedAt'] = old_entry.get('verifiedAt')
                kept += 1
    return kept


class SalesRecordAnnotator:
    """Outbound port marking daily sales lines as verified"""

    def __init__(self, repository):
        self.repository = repository

    def _locate_entry(self, document: Dict[str, Any], reference: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record_id = reference.get('recordId') or reference.get('sourceRecordId')
        if record_id and str(record_id).count(':') >= 2:
            _, category, index = str(record_id).rsplit(':', 2)
            entries = _category_entries(document, category)
            if index.isdigit() and int(index) < len(entries):
                return entries[int(index)]

        client = reference.get('client')
        amount = parse_amount(reference.get('amount'))
        category = reference.get('category')
        for entry_category, _, entry in _iter_entries(document):
            if category and entry_category != category:
                continue
            if abs(entry_amount(entry) - amount) < 0.01 and score_names(entry.get('client'), client) == 1.0:
                return entry
        return None

    def mark_verified(self, reference: Dict[str, Any]) -> bool:
        """
        Flag the daily sales line described by reference as verified.

        Args:
            reference: {recordId?, date, client, amount, category?}

        Returns:
            True when a line was found and saved, False when nothing matched
        """
        sale_date = format_date(reference.get('date'))
        document = self.repository.find_daily_sales(sale_date) if sale_date else None
        if document is None:
            logger.warning(f"[RECONCILIATION] No daily sales document for {reference.get('date')}, skipping verification")
            return False

        entry = self._locate_entry(document, reference)
        if entry is None:
            logger.warning(
                f"[RECONCILIATION] Sales line not found on {sale_date} "
                f"({reference.get('client')} / {reference.get('amount')}), skipping verification"
            )
            return False

        entry['verified'] = True
        entry['verifiedAt'] = now_iso()
        self.repository.save_daily_sales(document)
        logger.info(f"[RECONCILIATION] Marked sales line verified on {sale_date}: {entry.get('client')}")
        return True
