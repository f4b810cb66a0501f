"""API key authentication decorators shared by the blueprints."""

import logging
from functools import wraps

from flask import request, jsonify

from services.auth_service import authenticate_request

logger = logging.getLogger(__name__)


def _auth_error(message: str, status_code: int):
    error_code = 'AUTH_REQUIRED' if status_code == 401 else 'AUTHORIZATION_ERROR'
    return jsonify({
        'success': False,
        'error': message,
        'error_code': error_code
    }), status_code


def require_member(f):
    """Authenticate the X-API-KEY header and pass the member to the view."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = request.headers.get('X-API-KEY')
        if not api_key:
            return _auth_error('API key required', 401)

        member, message = authenticate_request(api_key)
        if not member:
            return _auth_error(message, 403)

        return f(member, *args, **kwargs)
    return decorated_function


def require_admin(f):
    """Like require_member, but the member must be an administrator."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = request.headers.get('X-API-KEY')
        if not api_key:
            return _auth_error('Authentication required', 401)

        member, message = authenticate_request(api_key, require_admin=True)
        if not member:
            return _auth_error(message, 403)

        logger.info("Admin %s authenticated for %s", member.username, request.path)
        return f(member, *args, **kwargs)
    return decorated_function
