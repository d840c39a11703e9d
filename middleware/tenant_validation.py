"""
Tenant Validation Middleware

Provides decorators for validating tenant context is properly set.
Prevents data leakage by ensuring every analysis request has explicit tenant context.
"""

import logging
from functools import wraps
from flask import request, jsonify

logger = logging.getLogger(__name__)


def require_tenant_context(f):
    """
    Decorator that validates tenant context is set for the current request.

    Usage:
        @analysis_bp.route('/compare', methods=['POST'])
        @require_tenant_context
        def compare():
            tenant_id = get_current_tenant_id()

    Returns:
        400 error if no tenant context is set
        Proceeds with request if tenant context exists
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from backoffice.tenant_context import get_current_tenant_id

        tenant_id = get_current_tenant_id()

        if not tenant_id:
            logger.error(
                f"[TENANT_VALIDATION] Tenant context missing | "
                f"Endpoint: {request.method} {request.path}"
            )

            return jsonify({
                'success': False,
                'error': 'tenant_context_required',
                'message': 'No tenant context available. Send an X-Tenant-ID header or select a tenant.'
            }), 400

        logger.debug(
            f"[TENANT_VALIDATION] Request authorized | "
            f"Endpoint: {request.method} {request.path} | "
            f"Tenant: {tenant_id}"
        )

        return f(*args, **kwargs)

    return decorated_function
