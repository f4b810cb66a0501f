"""
Authentication service for API key based member lookup.

Members authenticate with the ``X-API-KEY`` header. Only the SHA256 hash of
each key is stored; a request is authenticated by hashing the presented key
and looking the member up by that hash.
"""

from typing import Optional, Tuple

from db.session_manager import read_scope
from models.member import Member
from utils.audit_logger import audit_logger
from utils.crypto_utils import hash_api_key


def get_member_by_api_key(api_key: str) -> Optional[Member]:
    """
    Retrieve a member by their API key.

    This function hashes the provided API key and looks up the member by the
    hash.

    Args:
        api_key (str): The plaintext API key to look up

    Returns:
        Optional[Member]: The Member object if found, None otherwise
    """
    if not api_key:
        return None
    with read_scope() as session:
        member = Member.query.filter_by(api_key_hash=hash_api_key(api_key)).first()
        # Detached so later commits in the same request do not expire it
        if member is not None:
            session.expunge(member)
        return member


def authenticate_request(api_key: Optional[str], require_admin: bool = False) -> Tuple[Optional[Member], str]:
    """
    Authenticate a request from its API key.

    Args:
        api_key: Value of the X-API-KEY header
        require_admin: Also require the member to be an administrator

    Returns:
        Tuple[Optional[Member], str]: (member, message); member is None on failure
    """
    if not api_key:
        audit_logger.log_auth_failure(reason='missing_api_key')
        return None, 'API key required'

    member = get_member_by_api_key(api_key)
    if member is None:
        audit_logger.log_auth_failure(reason='invalid_api_key')
        return None, 'Invalid API key'

    if require_admin and not member.is_admin:
        audit_logger.log_auth_failure(username=member.username, reason='admin_required')
        return None, 'Admin access required'

    audit_logger.log_auth_success(member.id, member.username)
    return member, 'Authenticated'
