"""
Identity verification (KYC) routes.

Members register provider sessions and look up their own verification status
and results; the identity provider reports progress through the signed webhook.
"""

import logging

from flask import Blueprint, request, jsonify, current_app

from routes.auth import require_member
from services.kyc_service import KycService
from utils.audit_logger import audit_logger
from utils.crypto_utils import verify_webhook_signature
from utils.error_handling import (
    AuthorizationError, ValidationError, SignatureError, create_error_response, create_success_response
)
from utils.security_utils import rate_limit_api, rate_limit_webhook

kyc_bp = Blueprint('kyc', __name__)
logger = logging.getLogger(__name__)


def _respond(payload):
    body, status_code = payload
    return jsonify(body), status_code


def _kyc_service() -> KycService:
    return KycService(
        require_documents=current_app.config.get('KYC_REQUIRE_DOCUMENTS', True),
        min_risk_score=current_app.config.get('KYC_MIN_RISK_SCORE', 70)
    )


@kyc_bp.route('/kyc/sessions', methods=['POST'])
@rate_limit_api
@require_member
def start_session(member):
    """
    Register a verification session created with the identity provider.

    Expected input format:
    {
        "sessionId": "provider session id",
        "verificationUrl": "https://...",   (optional)
        "email": "investor@example.com"     (optional, defaults to the member's email)
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError('JSON data required')
        record = _kyc_service().start_session(
            data.get('sessionId'),
            verification_url=data.get('verificationUrl'),
            member=member,
            email=data.get('email')
        )
        return _respond(create_success_response(record.to_dict(), 'Verification session started', 201))
    except Exception as e:
        return _respond(create_error_response(e, member.id, member.username))


def _ensure_subject(member, record) -> None:
    """Raise AuthorizationError unless the member owns the record or is an admin."""
    if not member.is_admin and not record.belongs_to(member):
        raise AuthorizationError('Members can only view their own verification')


@kyc_bp.route('/kyc/status', methods=['POST'])
@rate_limit_api
@require_member
def check_status(member):
    """
    Verification status by ``email`` or ``sessionId``; ``not_started`` when none exists.

    Without either field the caller's own email is used. Members may only
    look up their own verification; admins may look up anyone's.
    """
    try:
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError('JSON data required')

        email = data.get('email')
        session_id = data.get('sessionId')
        if not email and not session_id:
            email = member.email
        if isinstance(email, str) and not session_id and not member.is_admin:
            if not member.email or email.strip().lower() != member.email.strip().lower():
                raise AuthorizationError('Members can only view their own verification')

        record = _kyc_service().check_status(email=email, session_id=session_id)
        if record is None:
            return _respond(create_success_response({'status': 'not_started'}, 'No verification found'))
        _ensure_subject(member, record)
        return _respond(create_success_response(record.to_dict(), 'Verification status retrieved'))
    except Exception as e:
        return _respond(create_error_response(e, member.id, member.username))


@kyc_bp.route('/kyc/sessions/<session_id>/results', methods=['GET'])
@rate_limit_api
@require_member
def session_results(member, session_id):
    """Documents, biometrics, compliance checks and risk score reported for a session."""
    try:
        results = _kyc_service().get_session_results(session_id)
        _ensure_subject(member, results.record)
        return _respond(create_success_response(results.to_dict(), 'Verification results retrieved'))
    except Exception as e:
        return _respond(create_error_response(e, member.id, member.username))


def _verify_signature(raw_body: bytes) -> None:
    """Raise SignatureError unless the webhook body carries a valid HMAC."""
    secret = current_app.config.get('KYC_WEBHOOK_SECRET')
    if not secret:
        if current_app.config.get('KYC_WEBHOOK_ALLOW_UNSIGNED'):
            logger.warning("KYC_WEBHOOK_SECRET not set; accepting unsigned webhook")
            return
        audit_logger.log_invalid_signature('secret_not_configured')
        raise SignatureError('Webhook signature verification is not configured')

    header = current_app.config.get('KYC_SIGNATURE_HEADER', 'X-Didit-Signature')
    signature = request.headers.get(header)
    if not signature:
        audit_logger.log_invalid_signature('missing_signature')
        raise SignatureError('Missing webhook signature')
    if not verify_webhook_signature(raw_body, signature, secret):
        audit_logger.log_invalid_signature('signature_mismatch')
        raise SignatureError()


@kyc_bp.route('/webhooks/didit', methods=['POST'])
@rate_limit_webhook
def didit_webhook():
    """
    Identity provider webhook.

    Responds 200 when processed, 400 for a malformed payload, 401 for a bad
    signature, 404 for an unknown session and 500 when processing fails.
    """
    try:
        raw_body = request.get_data(cache=True)
        _verify_signature(raw_body)

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError('Webhook body must be a JSON object')

        applied = _kyc_service().handle_webhook_event(payload)
        return _respond(create_success_response(
            {'sessionId': payload.get('sessionId'), 'event': payload.get('event'), 'applied': applied},
            'Webhook processed'
        ))
    except Exception as e:
        return _respond(create_error_response(e))
