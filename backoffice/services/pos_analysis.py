"""
POS Analysis
Compares counter (point-of-sale) takings per day between the Excel sheets and SAP.
POS lines are never matched one by one; only daily totals are compared.
"""

from typing import Any, Dict, List, Sequence

from backoffice.models import TransactionRecord


def _day_bucket(days: Dict[str, Dict[str, Any]], day: str) -> Dict[str, Any]:
    if day not in days:
        days[day] = {
            'date': day,
            'sapTotal': 0.0,
            'excelTotal': 0.0,
        }
    return days[day]


def analyze_pos(excel_records: Sequence[TransactionRecord],
                sap_records: Sequence[TransactionRecord]) -> Dict[str, Any]:
    """
    Build the POS section of a ledger from flattened records.

    Only records flagged is_pos are considered. Returns summary totals, the
    detail lines on both sides, and one comparison row per day sorted by date.
    """
    days: Dict[str, Dict[str, Any]] = {}
    excel_details: List[Dict[str, Any]] = []
    sap_details: List[Dict[str, Any]] = []

    for record in excel_records:
        if not record.is_pos or record.date is None:
            continue
        day = record.date.isoformat()
        _day_bucket(days, day)['excelTotal'] += record.amount
        excel_details.append({
            'date': day,
            'type': record.category,
            'client': record.client,
            'amount': round(record.amount, 2),
        })

    for record in sap_records:
        if not record.is_pos or record.date is None:
            continue
        day = record.date.isoformat()
        _day_bucket(days, day)['sapTotal'] += record.amount
        sap_details.append({
            'DocDate': day,
            'CardName': record.client,
            'DocTotal': round(record.amount, 2),
            'DocNum': record.doc_num or '',
        })

    daily_comparisons = []
    for day in sorted(days):
        bucket = days[day]
        daily_comparisons.append({
            'date': day,
            'sapTotal': round(bucket['sapTotal'], 2),
            'excelTotal': round(bucket['excelTotal'], 2),
            'difference': round(bucket['excelTotal'] - bucket['sapTotal'], 2),
        })

    sap_total = round(sum(day['sapTotal'] for day in daily_comparisons), 2)
    excel_total = round(sum(day['excelTotal'] for day in daily_comparisons), 2)

    return {
        'summary': {
            'sapPOSTotal': sap_total,
            'excelPOSTotal': excel_total,
            'difference': round(excel_total - sap_total, 2),
        },
        'sapDetails': sap_details,
        'excelDetails': excel_details,
        'dailyComparisons': daily_comparisons,
    }
