"""
Standardized error handling utilities for the governance service.

This module provides consistent error response formatting, custom exception classes,
and error logging for all API endpoints.
"""

from typing import Optional, Tuple, Dict, Any

from utils.audit_logger import audit_logger


# Custom exception classes for domain-specific errors
class PlatformError(Exception):
    """Base exception for all governance service errors."""

    def __init__(self, message: str, error_code: str = 'INTERNAL_ERROR', status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(PlatformError):
    """
    Exception raised for input validation failures.

    ``field_errors`` maps every invalid field to its message so a form can
    highlight all problems at once.
    """

    def __init__(self, message: str = 'Validation failed', field_errors: Optional[Dict[str, str]] = None,
                 error_code: str = 'VALIDATION_ERROR'):
        super().__init__(message, error_code, 400)
        self.field_errors = field_errors or {}


class AuthenticationError(PlatformError):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = 'Authentication required', error_code: str = 'AUTH_ERROR'):
        super().__init__(message, error_code, 401)


class AuthorizationError(PlatformError):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = 'Not allowed', error_code: str = 'AUTHORIZATION_ERROR'):
        super().__init__(message, error_code, 403)


class SignatureError(PlatformError):
    """Exception raised when a webhook signature cannot be verified."""

    def __init__(self, message: str = 'Invalid signature', error_code: str = 'INVALID_SIGNATURE'):
        super().__init__(message, error_code, 401)


class ResourceNotFoundError(PlatformError):
    """Exception raised when a requested resource is not found."""

    def __init__(self, message: str, error_code: str = 'NOT_FOUND'):
        super().__init__(message, error_code, 404)


class ProposalNotFoundError(ResourceNotFoundError):
    def __init__(self, proposal_id):
        super().__init__(f'Proposal {proposal_id} not found', 'PROPOSAL_NOT_FOUND')
        self.proposal_id = proposal_id


class SessionNotFoundError(ResourceNotFoundError):
    def __init__(self, session_id):
        super().__init__(f'Verification session {session_id} not found', 'SESSION_NOT_FOUND')
        self.session_id = session_id


class ConflictError(PlatformError):
    """Exception raised when a request violates a business rule."""

    def __init__(self, message: str, error_code: str = 'CONFLICT'):
        super().__init__(message, error_code, 409)


class DuplicateVoteError(ConflictError):
    def __init__(self, proposal_id, voter_id):
        super().__init__(f'{voter_id} has already voted on proposal {proposal_id}', 'DUPLICATE_VOTE')
        self.proposal_id = proposal_id
        self.voter_id = voter_id


class VotingClosedError(ConflictError):
    def __init__(self, proposal_id, reason: str):
        super().__init__(f'Voting is closed for proposal {proposal_id}: {reason}', 'VOTING_CLOSED')
        self.proposal_id = proposal_id


class VotingStillOpenError(ConflictError):
    def __init__(self, proposal_id):
        super().__init__(f'Voting on proposal {proposal_id} has not ended yet', 'VOTING_STILL_OPEN')
        self.proposal_id = proposal_id


class ImmutableProposalError(ConflictError):
    def __init__(self, proposal_id):
        super().__init__(f'Proposal {proposal_id} has votes and cannot be deleted', 'IMMUTABLE_PROPOSAL')
        self.proposal_id = proposal_id


class InvalidProposalStateError(ConflictError):
    def __init__(self, proposal_id, message: str):
        super().__init__(message, 'INVALID_PROPOSAL_STATE')
        self.proposal_id = proposal_id


class PersistenceError(PlatformError):
    """Exception raised for transient store failures; callers may retry."""

    def __init__(self, message: str, error_code: str = 'PERSISTENCE_ERROR'):
        super().__init__(message, error_code, 503)


class RateLimitError(PlatformError):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, message: str = 'Rate limit exceeded', error_code: str = 'RATE_LIMIT_EXCEEDED'):
        super().__init__(message, error_code, 429)


def create_error_response(
    error: Exception,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    include_details: bool = False
) -> Tuple[Dict[str, Any], int]:
    """
    Create a standardized error response with logging.

    Args:
        error: The exception that occurred
        user_id: Optional member ID for logging
        username: Optional username for logging
        include_details: Whether to include technical details (only in development)

    Returns:
        Tuple of (response dict, status code)
    """
    if isinstance(error, PlatformError):
        status_code = error.status_code
        error_code = error.error_code
        message = error.message

        if status_code >= 500:
            audit_logger.log_error(
                'application',
                message=message,
                user_id=user_id,
                username=username,
                error_code=error_code
            )

        response = {
            'success': False,
            'error': message,
            'error_code': error_code
        }

        if isinstance(error, ValidationError) and error.field_errors:
            response['field_errors'] = error.field_errors

    # Handle unexpected exceptions
    else:
        status_code = 500
        error_code = 'INTERNAL_ERROR'

        audit_logger.log_error(
            'application',
            message=f'Unexpected error: {str(error)}',
            user_id=user_id,
            username=username,
            error_code=error_code,
            error_type=type(error).__name__
        )

        # Don't expose internal error details to users in production
        if include_details:
            message = str(error)
        else:
            message = 'An internal error occurred. Please try again later.'

        response = {
            'success': False,
            'error': message,
            'error_code': error_code
        }

    return response, status_code


def create_success_response(
    data: Optional[Any] = None,
    message: str = 'Operation successful',
    status_code: int = 200
) -> Tuple[Dict[str, Any], int]:
    """
    Create a standardized success response.

    Args:
        data: Optional data payload
        message: Success message
        status_code: HTTP status code (default 200)

    Returns:
        Tuple of (response dict, status code)
    """
    response = {
        'success': True,
        'message': message
    }

    if data is not None:
        response['data'] = data

    return response, status_code
