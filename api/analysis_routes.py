"""
Analysis API Routes

REST endpoints for Excel / SAP / bank reconciliation:
running an analysis, resolving discrepancies, bank matching and suggestions.
"""

import logging
from flask import Blueprint, current_app, jsonify, request

from backoffice.exceptions import ReconciliationError, ValidationError
from backoffice.services import (
    BankReconciliationService,
    DiscrepancyResolutionService,
    PotentialMatchFinder,
    ReconciliationService,
)
from backoffice.tenant_context import get_repository
from middleware.tenant_validation import require_tenant_context

logger = logging.getLogger(__name__)

analysis_bp = Blueprint('analysis', __name__, url_prefix='/api/analysis')


def _matching_config():
    return current_app.config['MATCHING_CONFIG']


def _domain_error(error: ReconciliationError):
    logger.warning(f"[RECONCILIATION] {request.method} {request.path} rejected: {error.message}")
    return jsonify(error.to_dict()), error.status_code


def _unexpected_error(error: Exception, action: str):
    logger.error(f"[RECONCILIATION] Error while {action}: {error}", exc_info=True)
    return jsonify({
        'success': False,
        'error': str(error),
        'code': 'internal_error'
    }), 500


def _require(data: dict, field: str):
    value = data.get(field)
    if value in (None, ''):
        raise ValidationError(f"Missing required field: {field}")
    return value


@analysis_bp.route('/compare', methods=['POST'])
@require_tenant_context
def compare():
    """
    Run (or fetch) the reconciliation for a date range.

    Body:
        {"dateRange": {"start", "end"}, "excelData": [DailySalesDocument, ...]}

    Returns:
        {"success": true, "created": bool, "analysisId", "matches", "excelDiscrepancies",
         "sapDiscrepancies", "extendedSapDiscrepancies", "posAnalysis", ...}
    """
    try:
        data = request.get_json(silent=True) or {}
        service = ReconciliationService(get_repository(), _matching_config())
        ledger, created = service.compare_data(data.get('dateRange'), data.get('excelData'))

        response = ledger.to_dict()
        response['success'] = True
        response['created'] = created
        return jsonify(response), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'comparing data')


@analysis_bp.route('/resolve-discrepancy', methods=['POST'])
@require_tenant_context
def resolve_discrepancy():
    """
    Resolve an Excel discrepancy against SAP invoices.

    Body:
        {"analysisId", "discrepancyId" | ("category", "index"), "resolution", "matchedInvoices": [...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        service = DiscrepancyResolutionService(get_repository())
        result = service.resolve_excel_discrepancy(
            ledger_id=_require(data, 'analysisId'),
            resolution=data.get('resolution'),
            matched_invoices=data.get('matchedInvoices') or [],
            discrepancy_id=data.get('discrepancyId'),
            category=data.get('category'),
            index=data.get('index'),
            resolved_by=data.get('resolvedBy'),
        )
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'resolving discrepancy')


@analysis_bp.route('/resolve-sap-discrepancy', methods=['POST'])
@require_tenant_context
def resolve_sap_discrepancy():
    """
    Resolve an SAP discrepancy against Excel sales lines.

    Body:
        {"analysisId", "sapInvoiceId", "resolution", "matchedTransactions": [...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        service = DiscrepancyResolutionService(get_repository())
        result = service.resolve_sap_discrepancy(
            ledger_id=_require(data, 'analysisId'),
            sap_invoice_id=_require(data, 'sapInvoiceId'),
            resolution=data.get('resolution'),
            matched_transactions=data.get('matchedTransactions') or [],
            resolved_by=data.get('resolvedBy'),
        )
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'resolving SAP discrepancy')


@analysis_bp.route('/bank-reconciliation', methods=['POST'])
@require_tenant_context
def bank_reconciliation():
    """
    Run the bank pass for an analysis.

    Body:
        {"analysisId", "dateRange"?: {"start", "end"}}  (no dateRange means all data)
    """
    try:
        data = request.get_json(silent=True) or {}
        service = BankReconciliationService(get_repository(), _matching_config())
        result = service.run(_require(data, 'analysisId'), data.get('dateRange'))
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'running bank reconciliation')


@analysis_bp.route('/match-to-bank', methods=['POST'])
@require_tenant_context
def match_to_bank():
    """Manually match a bank statement line; bypasses scoring"""
    try:
        data = request.get_json(silent=True) or {}
        service = BankReconciliationService(get_repository(), _matching_config())
        result = service.match_to_bank(
            ledger_id=_require(data, 'analysisId'),
            bank_statement=_require(data, 'bankStatement'),
            excel_match=_require(data, 'excelMatch'),
            resolution=data.get('resolution'),
            match_date=data.get('date'),
        )
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'matching to bank')


@analysis_bp.route('/bank-match-status', methods=['POST'])
@require_tenant_context
def bank_match_status():
    """Body: {"analysisId", "bankStatementRef", "status": pending|confirmed|resolved}"""
    try:
        data = request.get_json(silent=True) or {}
        service = BankReconciliationService(get_repository(), _matching_config())
        match = service.update_match_status(
            _require(data, 'analysisId'),
            _require(data, 'bankStatementRef'),
            _require(data, 'status'),
        )
        return jsonify({'success': True, 'match': match}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'updating bank match status')


@analysis_bp.route('/resolve-bank-discrepancy', methods=['POST'])
@require_tenant_context
def resolve_bank_discrepancy():
    """Body: {"analysisId", "bankStatementId", "resolution", "matchedTransactions": [...]}"""
    try:
        data = request.get_json(silent=True) or {}
        service = BankReconciliationService(get_repository(), _matching_config())
        result = service.resolve_discrepancy(
            ledger_id=_require(data, 'analysisId'),
            bank_statement_id=_require(data, 'bankStatementId'),
            resolution=data.get('resolution'),
            matched_transactions=data.get('matchedTransactions') or [],
        )
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'resolving bank discrepancy')


@analysis_bp.route('/potential-matches', methods=['GET'])
@require_tenant_context
def potential_matches():
    """
    Suggest candidates for a discrepancy.

    Query:
        analysisId and either sapInvoiceId (Excel candidates) or discrepancyId (SAP candidates)
    """
    try:
        analysis_id = _require(request.args, 'analysisId')
        sap_invoice_id = request.args.get('sapInvoiceId')
        discrepancy_id = request.args.get('discrepancyId')

        finder = PotentialMatchFinder(get_repository(), _matching_config())
        if sap_invoice_id:
            candidates = finder.for_sap_discrepancy(analysis_id, sap_invoice_id)
        elif discrepancy_id:
            candidates = finder.for_excel_discrepancy(analysis_id, discrepancy_id)
        else:
            raise ValidationError("sapInvoiceId or discrepancyId is required")

        return jsonify({'success': True, 'candidates': candidates}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'finding potential matches')


@analysis_bp.route('/history', methods=['GET'])
@require_tenant_context
def history():
    """Query: start, end, page (default 1), limit (default 100)"""
    try:
        try:
            page = int(request.args.get('page', 1))
            limit = int(request.args.get('limit', 100))
        except ValueError:
            raise ValidationError("page and limit must be integers")

        service = ReconciliationService(get_repository(), _matching_config())
        result = service.get_history(
            start=request.args.get('start') or request.args.get('startDate'),
            end=request.args.get('end') or request.args.get('endDate'),
            page=page,
            limit=limit,
        )
        return jsonify({'success': True, **result}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'listing analysis history')


@analysis_bp.route('/by-range', methods=['GET'])
@require_tenant_context
def by_range():
    try:
        service = ReconciliationService(get_repository(), _matching_config())
        date_range = {'start': request.args.get('start'), 'end': request.args.get('end')}
        ledger = service.get_by_range(date_range)
        if ledger is None:
            return jsonify({
                'success': False,
                'error': 'No analysis found for this date range',
                'code': 'not_found',
                'details': date_range
            }), 404

        return jsonify({'success': True, **ledger.to_dict()}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'fetching analysis by range')


@analysis_bp.route('/<analysis_id>', methods=['GET'])
@require_tenant_context
def get_analysis(analysis_id):
    try:
        service = ReconciliationService(get_repository(), _matching_config())
        ledger = service.get_analysis(analysis_id)
        return jsonify({'success': True, **ledger.to_dict()}), 200

    except ReconciliationError as e:
        return _domain_error(e)
    except Exception as e:
        return _unexpected_error(e, 'fetching analysis')
