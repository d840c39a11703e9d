"""
Record Flattener
Turns nested daily sales documents, SAP documents and bank statement lines into
flat TransactionRecords the matching engine can compare.

A daily sales document looks like:

    {
        "date": "2024-03-01",
        "Paiements Espèces": [{"client": "Boulangerie Martin", "amount": 500, "remarks": ""}],
        "Virements": [{"client": "SARL Dupont", "bank": 1200.0, "amount": 1180.0}],
        "POS": {"Caisse CB": [{"client": "", "amount": 84.5}]}
    }
"""

import logging
from typing import Any, Dict, Iterable, List

from backoffice.models import (
    SourceType, TransactionRecord, format_date, parse_amount, parse_date
)

logger = logging.getLogger(__name__)

PAYMENT_CATEGORIES = (
    "Paiements Chèques",
    "Paiements Espèces",
    "Paiements CB Site",
    "Paiements CB Téléphone",
    "Virements",
    "Livraisons non payées",
)

POS_FIELD = "POS"
POS_CATEGORIES = ("Caisse Espèces", "Caisse chèques", "Caisse CB")

# Header and subtotal rows carried over from the Excel sheets
SENTINEL_LABELS = {
    "total",
    "client",
    "total especes",
    "total cheques",
    "total cb internet & phone",
}

POS_CARD_CODE = "C9999"


def is_sentinel_label(label: Any) -> bool:
    return str(label or "").strip().lower() in SENTINEL_LABELS


def document_key(document: Dict[str, Any]) -> str:
    """Stable identity of a daily sales document: its id, else its date"""
    key = document.get("_id") or document.get("id")
    if key:
        return str(key)
    return format_date(document.get("date")) or "undated"


def entry_amount(entry: Dict[str, Any]) -> float:
    """The bank-credited amount when present, else the declared amount, else 0"""
    bank_amount = parse_amount(entry.get("bank"))
    if bank_amount:
        return bank_amount
    return parse_amount(entry.get("amount"))


def _build_record(document, sale_date, category, index, entry, is_pos) -> TransactionRecord:
    return TransactionRecord(
        record_id=f"{document_key(document)}:{category}:{index}",
        date=sale_date,
        client=str(entry.get("client") or "").strip(),
        amount=entry_amount(entry),
        category=category,
        remarks=str(entry.get("remarks") or ""),
        source_type=SourceType.EXCEL,
        is_pos=is_pos,
        source_id=document_key(document),
        verified=bool(entry.get("verified")),
        verified_at=entry.get("verifiedAt"),
    )


def flatten_daily_sales(document: Dict[str, Any]) -> List[TransactionRecord]:
    """Flatten one daily sales document, skipping header and total rows.

    Line indexes are positions in the source list, so record ids stay stable
    even when sentinel rows sit between real entries.
    """
    sale_date = parse_date(document.get("date"))
    records = []

    for category in PAYMENT_CATEGORIES:
        for index, entry in enumerate(document.get(category) or []):
            if not isinstance(entry, dict) or is_sentinel_label(entry.get("client")):
                continue
            records.append(_build_record(document, sale_date, category, index, entry, False))

    pos = document.get(POS_FIELD) or {}
    for category in POS_CATEGORIES:
        for index, entry in enumerate(pos.get(category) or []):
            if not isinstance(entry, dict) or is_sentinel_label(entry.get("client")):
                continue
            records.append(_build_record(document, sale_date, category, index, entry, True))

    return records


def flatten_sales(documents: Iterable[Dict[str, Any]]) -> List[TransactionRecord]:
    records = []
    for document in documents:
        records.extend(flatten_daily_sales(document))
    logger.debug(f"Flattened {len(records)} sales records")
    return records


def is_pos_document(document: Dict[str, Any]) -> bool:
    """SAP documents booked at the shop counter are reconciled as daily totals"""
    return bool(
        document.get("CardCode") == POS_CARD_CODE
        or "comptoir" in str(document.get("CardName") or "").lower()
        or document.get("U_EPOSNo") is not None
        or document.get("isPOS")
    )


def sap_document_id(document: Dict[str, Any]) -> str:
    return str(document.get("id") or document.get("DocEntry") or document.get("DocNum"))


def sap_document_to_record(document: Dict[str, Any]) -> TransactionRecord:
    doc_type = str(document.get("docType") or "invoice").lower()
    return TransactionRecord(
        record_id=sap_document_id(document),
        date=parse_date(document.get("DocDate")),
        client=str(document.get("CardName") or "").strip(),
        amount=parse_amount(document.get("DocTotal")),
        category=doc_type,
        remarks=str(document.get("Comments") or ""),
        source_type=SourceType.SAP_PAYMENT if doc_type == "payment" else SourceType.SAP_INVOICE,
        is_pos=is_pos_document(document),
        source_id=sap_document_id(document),
        doc_num=str(document["DocNum"]) if document.get("DocNum") is not None else None,
    )


def bank_statement_label(statement: Dict[str, Any]) -> str:
    """Free text of a bank line, where the counterparty name usually hides"""
    parts = [statement.get("comment")]
    parts.extend(statement.get(f"detail{i}") for i in range(1, 6))
    return " ".join(str(part) for part in parts if part)


def bank_statement_to_record(statement: Dict[str, Any]) -> TransactionRecord:
    statement_id = str(statement.get("id") or statement.get("operationRef"))
    return TransactionRecord(
        record_id=statement_id,
        date=parse_date(statement.get("operationDate")),
        client=bank_statement_label(statement),
        amount=parse_amount(statement.get("amount")),
        category=str(statement.get("operationType") or ""),
        remarks=str(statement.get("operationRef") or ""),
        source_type=SourceType.BANK,
        source_id=statement_id,
    )
