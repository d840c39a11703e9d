"""
Reconciliation error taxonomy.

Each error carries the HTTP status the API layer answers with.
"""

from typing import Any, Optional


class ReconciliationError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code = 500
    error_code = 'reconciliation_error'

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {
            'success': False,
            'error': self.message,
            'code': self.error_code,
        }
        if self.details is not None:
            body['details'] = self.details
        return body


class NotFoundError(ReconciliationError):
    """Ledger, discrepancy, bank statement or SAP document not found"""

    status_code = 404
    error_code = 'not_found'


class ValidationError(ReconciliationError):
    """Missing or malformed input, rejected before any matching work"""

    status_code = 400
    error_code = 'validation_error'


class ConflictError(ReconciliationError):
    """Stale ledger revision, or a transition the state machine forbids"""

    status_code = 409
    error_code = 'conflict'
