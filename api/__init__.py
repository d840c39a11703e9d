"""
API Module - Reconciliation Routes

This package contains Flask blueprints for:
- Analysis: reconciliation runs, discrepancy resolution, bank matching (analysis_routes.py)
"""

__all__ = ['analysis_routes']
