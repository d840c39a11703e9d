"""
Reconciliation back office

Matches daily sales sheets against SAP invoices and payments and against bank
statements, and keeps the results in one ledger per tenant and date range.
"""

__version__ = '1.0.0'
