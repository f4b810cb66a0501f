"""Admin routes for the audit trail viewer and distribution previews."""

import logging

from flask import Blueprint, jsonify, request

from routes.auth import require_admin
from services.distribution_service import preview_distribution
from services.kyc_service import KycService
from utils.error_handling import ValidationError, create_error_response, create_success_response
from utils.security_utils import parse_positive_int

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)

MAX_AUDIT_ENTRIES = 500


@admin_bp.route('/admin/audit-entries', methods=['GET'])
@require_admin
def list_audit_entries(admin):
    """List persisted audit entries, newest first."""
    try:
        limit = parse_positive_int(request.args.get('limit', '100'))
        if limit is None or limit > MAX_AUDIT_ENTRIES:
            raise ValidationError('Invalid limit',
                                  field_errors={'limit': f'limit must be between 1 and {MAX_AUDIT_ENTRIES}'})

        entries = KycService().list_audit_entries(
            session_id=request.args.get('session_id'),
            limit=limit
        )
        return jsonify(create_success_response([e.to_dict() for e in entries], 'Audit entries retrieved')[0]), 200
    except Exception as e:
        body, status_code = create_error_response(e, admin.id, admin.username)
        return jsonify(body), status_code


@admin_bp.route('/admin/distributions/preview', methods=['POST'])
@require_admin
def distribution_preview(admin):
    """
    Preview a profit distribution.

    Expected input format:
    {
        "pool": 100000,
        "strategy": "standard|institutional_bonus|early_investor_bonus"
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('JSON data required')

        strategy = data.get('strategy') or 'standard'
        shares = preview_distribution(data.get('pool'), strategy)
        logger.info("Admin %s previewed %s distribution", admin.username, strategy)
        return jsonify(create_success_response({
            'pool': data.get('pool'),
            'strategy': strategy,
            'shares': [s.to_dict() for s in shares]
        }, 'Distribution preview computed')[0]), 200
    except Exception as e:
        body, status_code = create_error_response(e, admin.id, admin.username)
        return jsonify(body), status_code
