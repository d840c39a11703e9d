#!/usr/bin/env python3
"""
Tenant Context
Resolves which tenant a request acts for, and hands out tenant-scoped repositories
"""

from flask import session, g, request, current_app
from typing import Optional
import logging

from backoffice.services.ledger_repository import ReconciliationRepository

logger = logging.getLogger(__name__)


def get_current_tenant_id(strict: bool = False) -> Optional[str]:
    """
    Get the current tenant ID.

    Priority:
    1. Flask g object (set per request by middleware)
    2. Flask session (persists across requests)
    3. Request header (X-Tenant-ID for API calls)

    Args:
        strict: If True, raises ValueError when no tenant context exists

    Returns:
        str: Tenant ID if found
        None: If no tenant context and strict=False
    """
    try:
        if hasattr(g, 'tenant_id') and g.tenant_id:
            return g.tenant_id

        if 'tenant_id' in session and session['tenant_id']:
            tenant_id = session['tenant_id']
            g.tenant_id = tenant_id
            return tenant_id

        tenant_id = request.headers.get('X-Tenant-ID')
        if tenant_id:
            g.tenant_id = tenant_id
            return tenant_id

        if strict:
            raise ValueError("Tenant context not set. Provide an X-Tenant-ID header or a tenant session.")
        return None

    except RuntimeError:
        # Outside of Flask request context
        if strict:
            raise ValueError("Cannot get tenant context outside of Flask request context")
        logger.warning("[TENANT_CONTEXT] Called outside Flask context")
        return None


def get_repository() -> ReconciliationRepository:
    """Repository bound to the app's database and the current tenant"""
    return ReconciliationRepository(current_app.config['DB_MANAGER'], get_current_tenant_id(strict=True))
