#!/usr/bin/env python3
"""
Reconciliation Repository
Tenant-scoped storage for ledgers and the source feeds they are computed from.

Every entity is one JSON document per row. The reconciliation components receive
a repository instance instead of reaching for a global connection.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from backoffice.database import DatabaseManager, INTEGRITY_ERRORS
from backoffice.exceptions import ConflictError, NotFoundError
from backoffice.models import ReconciliationLedger, format_date, now_iso

logger = logging.getLogger(__name__)


def _load_document(value: Any) -> Dict[str, Any]:
    """JSONB columns come back as dicts, TEXT columns as strings"""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode('utf-8')
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _dump_document(document: Dict[str, Any]) -> str:
    return json.dumps(document, default=str)


class ReconciliationRepository:
    """Ledger, SAP document, bank statement and daily sales storage for one tenant"""

    def __init__(self, db_manager: DatabaseManager, tenant_id: str):
        self.db_manager = db_manager
        self.tenant_id = tenant_id

    # ========================================
    # LEDGERS
    # ========================================

    def _ledger_from_row(self, row: Optional[Dict[str, Any]]) -> Optional[ReconciliationLedger]:
        if not row:
            return None
        ledger = ReconciliationLedger.from_dict(_load_document(row['document']))
        ledger.revision = row['revision']
        return ledger

    def find_ledger_by_id(self, ledger_id: str) -> Optional[ReconciliationLedger]:
        row = self.db_manager.execute_query(
            """
            SELECT document, revision FROM reconciliation_ledgers
            WHERE id = %s AND tenant_id = %s
            """,
            (str(ledger_id), self.tenant_id),
            fetch_one=True
        )
        return self._ledger_from_row(row)

    def get_ledger(self, ledger_id: str) -> ReconciliationLedger:
        ledger = self.find_ledger_by_id(ledger_id)
        if ledger is None:
            raise NotFoundError(f"Analysis not found: {ledger_id}", {'analysisId': ledger_id})
        return ledger

    def find_ledger_by_range(self, start: str, end: str) -> Optional[ReconciliationLedger]:
        row = self.db_manager.execute_query(
            """
            SELECT document, revision FROM reconciliation_ledgers
            WHERE tenant_id = %s AND range_start = %s AND range_end = %s
            """,
            (self.tenant_id, start, end),
            fetch_one=True
        )
        return self._ledger_from_row(row)

    def create_ledger(self, ledger: ReconciliationLedger) -> ReconciliationLedger:
        """Insert a new ledger; if another request created this range first, return theirs"""
        ledger.revision = 0
        try:
            self.db_manager.execute_query(
                """
                INSERT INTO reconciliation_ledgers
                    (id, tenant_id, range_start, range_end, performed_at, revision, document)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    ledger.id,
                    self.tenant_id,
                    ledger.date_range['start'],
                    ledger.date_range['end'],
                    ledger.performed,
                    ledger.revision,
                    _dump_document(ledger.to_dict()),
                )
            )
        except INTEGRITY_ERRORS:
            logger.warning(
                f"[RECONCILIATION] Ledger for {ledger.date_range['start']}..{ledger.date_range['end']} "
                f"was created concurrently, returning the existing one"
            )
            existing = self.find_ledger_by_range(ledger.date_range['start'], ledger.date_range['end'])
            if existing is None:
                raise
            return existing

        logger.info(f"[RECONCILIATION] Created ledger {ledger.id} for tenant {self.tenant_id}")
        return ledger

    def save_ledger(self, ledger: ReconciliationLedger) -> ReconciliationLedger:
        """Compare-and-swap the whole ledger document on its revision"""
        new_revision = ledger.revision + 1
        document = ledger.to_dict()
        document['revision'] = new_revision

        updated = self.db_manager.execute_query(
            """
            UPDATE reconciliation_ledgers
            SET document = %s, revision = %s
            WHERE id = %s AND tenant_id = %s AND revision = %s
            """,
            (_dump_document(document), new_revision, ledger.id, self.tenant_id, ledger.revision)
        )

        if not updated:
            if self.find_ledger_by_id(ledger.id) is None:
                raise NotFoundError(f"Analysis not found: {ledger.id}", {'analysisId': ledger.id})
            raise ConflictError(
                "Analysis was modified by another request, reload and retry",
                {'analysisId': ledger.id, 'revision': ledger.revision}
            )

        ledger.revision = new_revision
        return ledger

    def list_ledgers(self, start: Optional[str] = None, end: Optional[str] = None,
                     page: int = 1, limit: int = 100) -> Tuple[List[ReconciliationLedger], int]:
        """Ledgers whose range lies within [start, end], most recent run first"""
        where_clauses = ["tenant_id = %s"]
        params: List[Any] = [self.tenant_id]

        if start:
            where_clauses.append("range_start >= %s")
            params.append(start)
        if end:
            where_clauses.append("range_end <= %s")
            params.append(end)

        where_sql = " AND ".join(where_clauses)

        total_row = self.db_manager.execute_query(
            f"SELECT COUNT(*) AS total FROM reconciliation_ledgers WHERE {where_sql}",
            tuple(params),
            fetch_one=True
        )
        total = total_row['total'] if total_row else 0

        offset = (page - 1) * limit
        rows = self.db_manager.execute_query(
            f"""
            SELECT document, revision FROM reconciliation_ledgers
            WHERE {where_sql}
            ORDER BY performed_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params + [limit, offset]),
            fetch_all=True
        )
        return [self._ledger_from_row(row) for row in rows], total

    # ========================================
    # SAP DOCUMENTS
    # ========================================

    def add_sap_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = dict(document)
        document['id'] = str(document.get('id') or uuid.uuid4())
        document['DocDate'] = format_date(document.get('DocDate'))
        self.db_manager.execute_query(
            """
            INSERT INTO sap_documents (id, tenant_id, doc_date, doc_type, document)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                document['id'],
                self.tenant_id,
                document['DocDate'],
                document.get('docType', 'invoice'),
                _dump_document(document),
            )
        )
        return document

    def get_sap_documents(self, start: str, end: str) -> List[Dict[str, Any]]:
        rows = self.db_manager.execute_query(
            """
            SELECT document FROM sap_documents
            WHERE tenant_id = %s AND doc_date >= %s AND doc_date <= %s
            ORDER BY doc_date, id
            """,
            (self.tenant_id, start, end),
            fetch_all=True
        )
        return [_load_document(row['document']) for row in rows]

    # ========================================
    # BANK STATEMENTS
    # ========================================

    def add_bank_statement(self, statement: Dict[str, Any]) -> Dict[str, Any]:
        statement = dict(statement)
        statement['id'] = str(statement.get('id') or uuid.uuid4())
        statement['operationDate'] = format_date(statement.get('operationDate'))
        self.db_manager.execute_query(
            """
            INSERT INTO bank_statements (id, tenant_id, operation_date, document)
            VALUES (%s, %s, %s, %s)
            """,
            (statement['id'], self.tenant_id, statement['operationDate'], _dump_document(statement))
        )
        return statement

    def get_bank_statements(self) -> List[Dict[str, Any]]:
        """Every bank statement line of the tenant; merges always work on full history"""
        rows = self.db_manager.execute_query(
            """
            SELECT document FROM bank_statements
            WHERE tenant_id = %s
            ORDER BY operation_date, id
            """,
            (self.tenant_id,),
            fetch_all=True
        )
        return [_load_document(row['document']) for row in rows]

    # ========================================
    # DAILY SALES
    # ========================================

    def upsert_daily_sales(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Store one daily sales document, replacing the one already held for that day"""
        document = dict(document)
        document.pop('_id', None)
        sale_date = format_date(document.get('date'))
        document['date'] = sale_date

        existing = self.find_daily_sales(sale_date)
        if existing:
            document['id'] = existing['id']
            self.save_daily_sales(document)
            return document

        document['id'] = str(document.get('id') or uuid.uuid4())
        try:
            self.db_manager.execute_query(
                """
                INSERT INTO daily_sales (id, tenant_id, sale_date, document, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (document['id'], self.tenant_id, sale_date, _dump_document(document), now_iso())
            )
        except INTEGRITY_ERRORS:
            existing = self.find_daily_sales(sale_date)
            document['id'] = existing['id']
            self.save_daily_sales(document)
        return document

    def save_daily_sales(self, document: Dict[str, Any]) -> None:
        self.db_manager.execute_query(
            """
            UPDATE daily_sales SET document = %s, updated_at = %s
            WHERE id = %s AND tenant_id = %s
            """,
            (_dump_document(document), now_iso(), document['id'], self.tenant_id)
        )

    def find_daily_sales(self, sale_date: str) -> Optional[Dict[str, Any]]:
        row = self.db_manager.execute_query(
            "SELECT document FROM daily_sales WHERE tenant_id = %s AND sale_date = %s",
            (self.tenant_id, sale_date),
            fetch_one=True
        )
        return _load_document(row['document']) if row else None

    def get_daily_sales(self, start: str, end: str) -> List[Dict[str, Any]]:
        rows = self.db_manager.execute_query(
            """
            SELECT document FROM daily_sales
            WHERE tenant_id = %s AND sale_date >= %s AND sale_date <= %s
            ORDER BY sale_date
            """,
            (self.tenant_id, start, end),
            fetch_all=True
        )
        return [_load_document(row['document']) for row in rows]
