"""
Middleware Module

Provides request validation decorators for Flask routes.
"""

from .tenant_validation import require_tenant_context

__all__ = [
    'require_tenant_context',
]
