"""
Audit logging for governance and identity-verification operations.

This module provides structured logging for security-relevant events including
proposal management, vote casting, KYC webhook processing, rate limiting and
errors. Logs are formatted as JSON for easy parsing and analysis by monitoring
tools.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from flask import request, has_request_context
from config import Config


# Define audit event types
class AuditEventType:
    """Enumeration of audit event types."""
    # Authentication events
    AUTH_SUCCESS = "auth.success"
    AUTH_FAILURE = "auth.failure"

    # Governance operations
    PROPOSAL_CREATE = "governance.proposal.create"
    PROPOSAL_DELETE = "governance.proposal.delete"
    PROPOSAL_CLOSE = "governance.proposal.close"
    PROPOSAL_ARCHIVE = "governance.proposal.archive"
    PROPOSAL_ACTIVATE = "governance.proposal.activate"
    VOTE_CAST = "governance.vote.cast"
    VOTE_REJECTED = "governance.vote.rejected"

    # KYC operations
    KYC_SESSION_START = "kyc.session.start"
    KYC_WEBHOOK_RECEIVED = "kyc.webhook.received"
    KYC_WEBHOOK_PROCESSED = "kyc.webhook.processed"
    KYC_DECISION = "kyc.decision"

    # Security events
    RATE_LIMIT_HIT = "security.rate_limit"
    INVALID_SIGNATURE = "security.invalid_signature"


class AuditLogger:
    """
    Centralized audit logger for security events.

    Logs are structured JSON with consistent fields:
    - timestamp: ISO8601 timestamp
    - event_type: Type of event (see AuditEventType)
    - user_id: Member ID if authenticated
    - username: Username if known
    - ip_address: Client IP address
    - data: Event-specific data
    - status: success/failure
    - message: Human-readable message
    """

    def __init__(self):
        """Initialize the audit logger."""
        self.logger = logging.getLogger('audit')
        self.logger.setLevel(getattr(logging, Config.LOG_LEVEL, logging.INFO))

        if Config.AUDIT_LOG_FILE:
            handler = logging.FileHandler(Config.AUDIT_LOG_FILE)
        else:
            handler = logging.StreamHandler(sys.stdout)

        if Config.LOG_FORMAT == 'json':
            formatter = JSONFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )

        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def _get_request_context(self) -> Dict[str, Any]:
        """Extract request context information."""
        context = {}

        if has_request_context():
            context['ip_address'] = request.remote_addr
            context['user_agent'] = request.headers.get('User-Agent', 'Unknown')
            context['method'] = request.method
            context['path'] = request.path
            context['endpoint'] = request.endpoint

        return context

    def log_event(
        self,
        event_type: str,
        status: str = 'success',
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        message: Optional[str] = None,
        **data
    ):
        """
        Log an audit event.

        Args:
            event_type: Type of event (use AuditEventType constants)
            status: 'success' or 'failure'
            user_id: Member ID if applicable
            username: Username if known
            message: Human-readable message
            **data: Additional event-specific data
        """
        event = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'event_type': event_type,
            'status': status,
        }

        event.update(self._get_request_context())

        if user_id:
            event['user_id'] = user_id
        if username:
            event['username'] = username

        if message:
            event['message'] = message

        if data:
            event['data'] = data

        line = json.dumps(event, default=str) if Config.LOG_FORMAT == 'json' else str(event)
        if status == 'failure' or event_type.startswith('error.'):
            self.logger.warning(line)
        else:
            self.logger.info(line)

    # Convenience methods for common events

    def log_auth_success(self, user_id: int, username: str, method: str = 'api_key'):
        """Log successful authentication."""
        self.log_event(
            AuditEventType.AUTH_SUCCESS,
            user_id=user_id,
            username=username,
            message=f'Member {username} authenticated successfully',
            auth_method=method
        )

    def log_auth_failure(self, username: Optional[str] = None, reason: str = 'invalid_credentials'):
        """Log failed authentication attempt."""
        self.log_event(
            AuditEventType.AUTH_FAILURE,
            status='failure',
            username=username,
            message=f'Authentication failed: {reason}',
            reason=reason
        )

    def log_proposal_event(self, event_type: str, proposal_id: int, username: Optional[str] = None, **details):
        """Log a proposal lifecycle change."""
        self.log_event(
            event_type,
            username=username,
            message=f'Proposal {proposal_id}: {event_type.rsplit(".", 1)[-1]}',
            proposal_id=proposal_id,
            **details
        )

    def log_vote(self, proposal_id: int, voter_id: str, vote_type: str, weight: int):
        """Log an accepted vote."""
        self.log_event(
            AuditEventType.VOTE_CAST,
            username=voter_id,
            message=f'Vote cast on proposal {proposal_id}',
            proposal_id=proposal_id,
            vote_type=vote_type,
            vote_weight=weight
        )

    def log_vote_rejected(self, proposal_id, voter_id: str, reason: str):
        """Log a rejected vote attempt."""
        self.log_event(
            AuditEventType.VOTE_REJECTED,
            status='failure',
            username=voter_id,
            message=f'Vote rejected on proposal {proposal_id}: {reason}',
            proposal_id=proposal_id,
            reason=reason
        )

    def log_kyc_decision(self, session_id: str, status: str):
        """Log the final decision derived for a verification session."""
        self.log_event(
            AuditEventType.KYC_DECISION,
            status='failure' if status == 'declined' else 'success',
            message=f'KYC verification for session {session_id}: {status}',
            session_id=session_id,
            decision=status
        )

    def log_invalid_signature(self, reason: str):
        """Log a webhook rejected for its signature."""
        self.log_event(
            AuditEventType.INVALID_SIGNATURE,
            status='failure',
            message=f'Webhook signature rejected: {reason}',
            reason=reason
        )

    def log_rate_limit_hit(self, limit_type: str, username: Optional[str] = None):
        """Log rate limit violation."""
        self.log_event(
            AuditEventType.RATE_LIMIT_HIT,
            status='failure',
            username=username,
            message=f'Rate limit exceeded: {limit_type}',
            limit_type=limit_type
        )

    def log_error(self, error_type: str, message: str, **details):
        """Log error event."""
        event_type = f"error.{error_type}"
        self.log_event(
            event_type,
            status='failure',
            message=message,
            **details
        )


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
        }

        # If the message is already JSON (from audit logger), parse it
        try:
            message_data = json.loads(record.getMessage())
            log_data.update(message_data)
        except (json.JSONDecodeError, ValueError, TypeError):
            log_data['message'] = record.getMessage()

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


# Global audit logger instance
audit_logger = AuditLogger()
