"""
Cryptographic utilities for API key handling and webhook signatures.

This module provides secure API key generation and hashing for member
authentication, and HMAC-SHA256 signing/verification of identity-provider
webhook payloads.
"""

import base64
import hashlib
import hmac
import secrets
from typing import Optional, Union

from config import Config

SIGNATURE_PREFIX = 'sha256='


def generate_api_key(size: Optional[int] = None) -> str:
    """
    Generate a secure, random API key.

    Creates a cryptographically secure random API key from ``API_KEY_LENGTH``
    random bytes (32 by default, about 256 bits of entropy) encoded as base64url
    (URL-safe base64 without padding).

    Args:
        size: Number of random bytes, defaults to Config.API_KEY_LENGTH

    Returns:
        str: A base64url-encoded API key string (approximately 43 characters by default)
    """
    return base64.urlsafe_b64encode(secrets.token_bytes(size or Config.API_KEY_LENGTH)).decode().rstrip('=')


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key for secure storage.

    Uses SHA256 to create a one-way hash of the API key for database storage.
    This prevents API key exposure if the database is compromised while still
    allowing authentication by hashing the provided key and comparing.

    Args:
        api_key (str): The plaintext API key to hash

    Returns:
        str: The SHA256 hash of the API key as a hexadecimal string
    """
    return hashlib.sha256(api_key.encode()).hexdigest()


def compute_webhook_signature(payload: Union[bytes, str], secret: str) -> str:
    """
    Compute the HMAC-SHA256 signature of a raw webhook body.

    Args:
        payload: The raw request body exactly as received
        secret: The shared secret configured with the identity provider

    Returns:
        str: Lowercase hexadecimal digest
    """
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: Union[bytes, str], signature: Optional[str], secret: str) -> bool:
    """
    Verify a webhook signature against the shared secret.

    SECURITY: Uses constant-time comparison to prevent timing attacks.
    An optional ``sha256=`` prefix on the provided signature is accepted.

    Args:
        payload: The raw request body exactly as received
        signature: Value of the signature header (may be None)
        secret: The shared secret

    Returns:
        bool: True only when a signature is present and matches
    """
    if not signature or not secret:
        return False

    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_webhook_signature(payload, secret)
    return hmac.compare_digest(provided.lower().encode('utf-8'), expected.encode('utf-8'))
