#!/usr/bin/env python3
"""
Reconciliation data model

Transaction records are derived on the fly from the Excel, SAP and bank feeds.
Matches, discrepancies and bank matches live inside a ReconciliationLedger,
which is persisted as a single JSON document per tenant and date range.
Wire and storage keys are camelCase; attributes are snake_case.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


class SourceType:
    """Where a transaction record came from"""
    EXCEL = "Excel"
    SAP_INVOICE = "SAPInvoice"
    SAP_PAYMENT = "SAPPayment"
    BANK = "Bank"


class BankMatchType:
    AMOUNT_AND_NAME = "amount_and_name"
    AMOUNT_ONLY = "amount_only"
    MANUAL = "manual"


class BankConfidence:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BankMatchStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESOLVED = "resolved"

    ALL = (PENDING, CONFIRMED, RESOLVED)


def parse_date(value: Any) -> Optional[date]:
    """Parse a date from ISO strings, free-form strings, date or datetime objects

    Returns None when the value cannot be understood.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            try:
                return date_parser.parse(value, dayfirst=True).date()
            except (ValueError, OverflowError):
                logger.warning(f"Could not parse date: {value}")
                return None

    return None


def format_date(value: Any) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def parse_amount(value: Any) -> float:
    """Amounts that cannot be read become 0.0 so they fail tolerance checks downstream"""
    if value is None or value == '':
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        cleaned = str(value).replace(' ', '').replace('\u00a0', '').replace('€', '')
        # French exports write 1.234,56; the last separator is the decimal one
        if cleaned.rfind(',') > cleaned.rfind('.'):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
        return float(cleaned)
    except ValueError:
        logger.warning(f"Could not parse amount: {value}")
        return 0.0


def now_iso() -> str:
    return datetime.utcnow().isoformat()


@dataclass
class TransactionRecord:
    """A comparable, flat transaction derived from one of the source feeds"""
    record_id: str
    date: Optional[date]
    client: str
    amount: float
    category: str = ""
    remarks: str = ""
    source_type: str = SourceType.EXCEL
    is_pos: bool = False
    source_id: Optional[str] = None
    doc_num: Optional[str] = None
    verified: bool = False
    verified_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recordId': self.record_id,
            'date': self.date.isoformat() if self.date else None,
            'client': self.client,
            'amount': self.amount,
            'category': self.category,
            'remarks': self.remarks,
            'sourceType': self.source_type,
            'isPOS': self.is_pos,
            'sourceId': self.source_id,
            'docNum': self.doc_num,
            'verified': self.verified,
        }


@dataclass
class Match:
    """A source-side record paired with a target-side record"""
    date: Optional[str]
    source_client_name: str
    target_customer_name: str
    source_amount: float
    target_amount: float
    category: str
    confidence_score: float
    remarks: str = ""
    is_resolved: bool = False
    resolution: Optional[str] = None
    source_record_id: Optional[str] = None
    target_ref: Optional[str] = None
    doc_num: Optional[str] = None
    doc_date: Optional[str] = None
    matched_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'sourceClientName': self.source_client_name,
            'targetCustomerName': self.target_customer_name,
            'sourceAmount': self.source_amount,
            'targetAmount': self.target_amount,
            'category': self.category,
            'confidenceScore': round(self.confidence_score, 4),
            'remarks': self.remarks,
            'isResolved': self.is_resolved,
            'resolution': self.resolution,
            'sourceRecordId': self.source_record_id,
            'targetRef': self.target_ref,
            'docNum': self.doc_num,
            'docDate': self.doc_date,
            'matchedAt': self.matched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Match':
        return cls(
            date=data.get('date'),
            source_client_name=data.get('sourceClientName', ''),
            target_customer_name=data.get('targetCustomerName', ''),
            source_amount=data.get('sourceAmount', 0.0),
            target_amount=data.get('targetAmount', 0.0),
            category=data.get('category', ''),
            confidence_score=data.get('confidenceScore', 0.0),
            remarks=data.get('remarks', ''),
            is_resolved=data.get('isResolved', False),
            resolution=data.get('resolution'),
            source_record_id=data.get('sourceRecordId'),
            target_ref=data.get('targetRef'),
            doc_num=data.get('docNum'),
            doc_date=data.get('docDate'),
            matched_at=data.get('matchedAt'),
        )


@dataclass
class Discrepancy:
    """An Excel-side record that found no acceptable match, plus its resolution trail"""
    discrepancy_id: str
    date: Optional[str]
    client: str
    amount: float
    category: str
    remarks: str = ""
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_timestamp: Optional[str] = None
    resolved_by: Optional[str] = None
    matched_invoices: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: TransactionRecord) -> 'Discrepancy':
        return cls(
            discrepancy_id=record.record_id,
            date=record.date.isoformat() if record.date else None,
            client=record.client,
            amount=record.amount,
            category=record.category,
            remarks=record.remarks,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'discrepancyId': self.discrepancy_id,
            'date': self.date,
            'client': self.client,
            'amount': self.amount,
            'category': self.category,
            'remarks': self.remarks,
            'resolved': self.resolved,
            'resolution': self.resolution,
            'resolvedTimestamp': self.resolved_timestamp,
            'resolvedBy': self.resolved_by,
            'matchedInvoices': list(self.matched_invoices),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Discrepancy':
        return cls(
            discrepancy_id=data.get('discrepancyId', ''),
            date=data.get('date'),
            client=data.get('client', ''),
            amount=data.get('amount', 0.0),
            category=data.get('category', ''),
            remarks=data.get('remarks', ''),
            resolved=data.get('resolved', False),
            resolution=data.get('resolution'),
            resolved_timestamp=data.get('resolvedTimestamp'),
            resolved_by=data.get('resolvedBy'),
            matched_invoices=list(data.get('matchedInvoices') or []),
        )


@dataclass
class BankMatch:
    """A bank statement line paired with an Excel or SAP transaction"""
    bank_statement_ref: str
    matched_transaction: Dict[str, Any]
    match_source: str
    match_type: str
    confidence: str
    status: str
    amount: float
    date: Optional[str]
    resolution: Optional[str] = None
    matched_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bankStatementRef': self.bank_statement_ref,
            'matchedTransaction': self.matched_transaction,
            'matchSource': self.match_source,
            'matchType': self.match_type,
            'confidence': self.confidence,
            'status': self.status,
            'amount': self.amount,
            'date': self.date,
            'resolution': self.resolution,
            'matchedAt': self.matched_at,
        }


def empty_bank_reconciliation() -> Dict[str, Any]:
    return {
        'matches': [],
        'discrepancies': [],
        'summary': {
            'totalTransactions': 0,
            'matchedCount': 0,
            'unmatchedCount': 0,
            'totalAmount': 0.0,
            'matchedAmount': 0.0,
        },
        'lastUpdated': None,
        'filteredView': None,
    }


@dataclass
class ReconciliationLedger:
    """The persisted reconciliation result for one tenant and date range"""
    id: str
    tenant_id: str
    date_range: Dict[str, str]
    performed: str
    revision: int = 0
    matches: Dict[str, List[Match]] = field(default_factory=dict)
    excel_discrepancies: Dict[str, List[Discrepancy]] = field(default_factory=dict)
    sap_discrepancies: List[Dict[str, Any]] = field(default_factory=list)
    extended_sap_discrepancies: List[Dict[str, Any]] = field(default_factory=list)
    pos_analysis: Dict[str, Any] = field(default_factory=dict)
    bank_reconciliation: Dict[str, Any] = field(default_factory=empty_bank_reconciliation)

    def add_match(self, category: str, match: Match):
        self.matches.setdefault(category, []).append(match)

    def add_discrepancy(self, discrepancy: Discrepancy):
        self.excel_discrepancies.setdefault(discrepancy.category, []).append(discrepancy)

    def match_count(self) -> int:
        return sum(len(items) for items in self.matches.values())

    def discrepancy_count(self) -> int:
        return sum(len(items) for items in self.excel_discrepancies.values())

    def iter_discrepancies(self) -> Iterator[Tuple[str, int, Discrepancy]]:
        for category, items in self.excel_discrepancies.items():
            for index, discrepancy in enumerate(items):
                yield category, index, discrepancy

    def find_sap_discrepancy(self, sap_id: str) -> Optional[Dict[str, Any]]:
        for record in self.sap_discrepancies:
            if str(record.get('id')) == str(sap_id):
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON rendering; category maps become plain objects"""
        return {
            'analysisId': self.id,
            'tenantId': self.tenant_id,
            'dateRange': dict(self.date_range),
            'performed': self.performed,
            'revision': self.revision,
            'matches': {
                category: [m.to_dict() for m in items]
                for category, items in self.matches.items()
            },
            'excelDiscrepancies': {
                category: [d.to_dict() for d in items]
                for category, items in self.excel_discrepancies.items()
            },
            'sapDiscrepancies': self.sap_discrepancies,
            'extendedSapDiscrepancies': self.extended_sap_discrepancies,
            'posAnalysis': self.pos_analysis,
            'bankReconciliation': self.bank_reconciliation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReconciliationLedger':
        bank = empty_bank_reconciliation()
        bank.update(data.get('bankReconciliation') or {})
        return cls(
            id=data['analysisId'],
            tenant_id=data.get('tenantId', ''),
            date_range=dict(data.get('dateRange') or {}),
            performed=data.get('performed', ''),
            revision=data.get('revision', 0),
            matches={
                category: [Match.from_dict(m) for m in items]
                for category, items in (data.get('matches') or {}).items()
            },
            excel_discrepancies={
                category: [Discrepancy.from_dict(d) for d in items]
                for category, items in (data.get('excelDiscrepancies') or {}).items()
            },
            sap_discrepancies=list(data.get('sapDiscrepancies') or []),
            extended_sap_discrepancies=list(data.get('extendedSapDiscrepancies') or []),
            pos_analysis=data.get('posAnalysis') or {},
            bank_reconciliation=bank,
        )
