"""
Security utilities for the governance service.

This module provides rate limiting for API and webhook endpoints, numeric
input parsing and the security headers added to every response.
"""

import functools
import re
import time
from collections import defaultdict, deque
from typing import Optional

from flask import request, jsonify, current_app

from config import Config
from utils.audit_logger import audit_logger
from utils.error_handling import RateLimitError, create_error_response

_ASCII_DIGITS = re.compile(r'[0-9]+')


def parse_positive_int(value) -> Optional[int]:
    """
    Return ``value`` as a positive int, or None if it is not one.

    Accepts ints, integral floats and strings of ASCII digits. Booleans and
    other numeral systems (``'²'``, ``'٣'``) are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    if isinstance(value, str) and _ASCII_DIGITS.fullmatch(value.strip()):
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


class RateLimiter:
    """Simple in-memory rate limiter for API endpoints."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed per window
            window_seconds: Time window in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests = defaultdict(deque)

    def is_allowed(self, identifier: str, now: float = None) -> bool:
        """
        Check if request is allowed for given identifier.

        Args:
            identifier: Unique identifier (e.g., IP address, member ID)
            now: Current time in seconds, defaults to time.time()

        Returns:
            True if request is allowed, False otherwise
        """
        now = time.time() if now is None else now
        window_start = now - self.window_seconds

        # Clean old requests
        while self.requests[identifier] and self.requests[identifier][0] < window_start:
            self.requests[identifier].popleft()

        if len(self.requests[identifier]) < self.max_requests:
            self.requests[identifier].append(now)
            return True

        return False


api_rate_limiter = RateLimiter(
    max_requests=Config.RATE_LIMIT_API_REQUESTS,
    window_seconds=Config.RATE_LIMIT_API_WINDOW
)
webhook_rate_limiter = RateLimiter(
    max_requests=Config.RATE_LIMIT_WEBHOOK_REQUESTS,
    window_seconds=Config.RATE_LIMIT_WEBHOOK_WINDOW
)


def _client_ip() -> str:
    return request.environ.get('HTTP_X_FORWARDED_FOR', request.environ.get('REMOTE_ADDR', 'unknown'))


def _rate_limited(limiter: RateLimiter, limit_type: str):
    def decorator(f):
        @functools.wraps(f)
        def decorated_function(*args, **kwargs):
            # Skip rate limiting in testing mode
            if current_app.config.get('TESTING') or not current_app.config.get('RATE_LIMIT_ENABLED', True):
                return f(*args, **kwargs)

            if not limiter.is_allowed(_client_ip()):
                audit_logger.log_rate_limit_hit(limit_type, username=None)
                body, status_code = create_error_response(
                    RateLimitError('Rate limit exceeded. Please try again later.')
                )
                return jsonify(body), status_code

            return f(*args, **kwargs)
        return decorated_function
    return decorator


rate_limit_api = _rate_limited(api_rate_limiter, 'api')
rate_limit_webhook = _rate_limited(webhook_rate_limiter, 'webhook')


def add_security_headers(response):
    """
    Add security headers to Flask response.

    Args:
        response: Flask response object

    Returns:
        Response object with security headers added
    """
    if not current_app.config.get('SECURITY_HEADERS_ENABLED', True):
        return response

    # Prevent clickjacking
    response.headers['X-Frame-Options'] = 'DENY'

    # Prevent MIME type sniffing
    response.headers['X-Content-Type-Options'] = 'nosniff'

    # Strict transport security (HTTPS only)
    max_age = current_app.config.get('HSTS_MAX_AGE', Config.HSTS_MAX_AGE)
    response.headers['Strict-Transport-Security'] = f'max-age={max_age}; includeSubDomains'

    response.headers['Content-Security-Policy'] = current_app.config.get('CSP_POLICY', Config.CSP_POLICY)
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    return response
