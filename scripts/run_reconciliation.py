#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Run a reconciliation for one tenant and date range from the command line

Usage:
    python scripts/run_reconciliation.py --tenant-id acme --start 2024-01-01 --end 2024-01-31 --bank
"""
import os
import sys
import json
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from backoffice.config import MatchingConfig
from backoffice.database import DatabaseManager
from backoffice.exceptions import ReconciliationError
from backoffice.services import BankReconciliationService, ReconciliationRepository, ReconciliationService


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description='Run Excel / SAP reconciliation for a date range')
    parser.add_argument('--tenant-id', required=True, help='Tenant ID')
    parser.add_argument('--start', required=True, help='Range start (YYYY-MM-DD)')
    parser.add_argument('--end', required=True, help='Range end (YYYY-MM-DD)')
    parser.add_argument('--excel-json', help='JSON file with daily sales documents to store first')
    parser.add_argument('--bank', action='store_true', help='Also run the bank reconciliation pass')
    args = parser.parse_args()

    print("=" * 80)
    print("RUN RECONCILIATION")
    print("=" * 80)

    excel_data = None
    if args.excel_json:
        with open(args.excel_json, encoding='utf-8') as f:
            excel_data = json.load(f)
        print(f"[INFO] Loaded {len(excel_data)} daily sales documents from {args.excel_json}")

    db_manager = DatabaseManager()
    db_manager.init_database()
    repository = ReconciliationRepository(db_manager, args.tenant_id)
    config = MatchingConfig.from_env()

    try:
        print(f"\n[1/2] Reconciling {args.start} .. {args.end} for tenant '{args.tenant_id}'...")
        service = ReconciliationService(repository, config)
        ledger, created = service.compare_data({'start': args.start, 'end': args.end}, excel_data)

        status = "created" if created else "already existed"
        print(f"[OK] Analysis {ledger.id} {status}")
        print(f"     Matches:             {ledger.match_count()}")
        print(f"     Excel discrepancies: {ledger.discrepancy_count()}")
        print(f"     SAP discrepancies:   {len(ledger.sap_discrepancies)}")
        pos_summary = ledger.pos_analysis.get('summary') or {}
        print(f"     POS difference:      {pos_summary.get('difference', 0.0):.2f}")

        if args.bank:
            print(f"\n[2/2] Running bank reconciliation...")
            bank_service = BankReconciliationService(repository, config)
            result = bank_service.run(ledger.id, {'start': args.start, 'end': args.end})
            summary = result['summary']
            print(f"[OK] {result['addedCount']} new bank matches")
            print(f"     Statements in range: {summary['totalTransactions']}")
            print(f"     Matched:             {summary['matchedCount']} ({summary['matchedAmount']:.2f})")
            print(f"     Unmatched:           {summary['unmatchedCount']}")
        else:
            print(f"\n[2/2] Bank reconciliation skipped (use --bank)")

    except ReconciliationError as e:
        print(f"\n[ERROR] {e.message}")
        if e.details:
            print(f"[DETAILS] {e.details}")
        sys.exit(1)

    print("\n" + "=" * 80)
    print("DONE")
    print("=" * 80)


if __name__ == '__main__':
    main()
