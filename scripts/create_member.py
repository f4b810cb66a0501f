#!/usr/bin/env python3
"""
Admin script to provision a member and print its API key.

Usage:
    python3 scripts/create_member.py <username> [token-balance] [--admin] [--institutional] [--early]

The API key is shown once; only its SHA256 hash is stored.

Example:
    python3 scripts/create_member.py alice 250000
    python3 scripts/create_member.py treasurer 0 --admin
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app import app  # noqa: E402
from db.session_manager import session_scope  # noqa: E402
from models.member import Member, InvestorTier  # noqa: E402
from utils.crypto_utils import generate_api_key, hash_api_key  # noqa: E402

FLAGS = {'--admin', '--institutional', '--early'}


def create_member(username: str, token_balance: int = 0, is_admin: bool = False,
                  institutional: bool = False, early_investor: bool = False) -> str:
    """Create the member and return its plaintext API key."""
    api_key = generate_api_key()
    with app.app_context():
        with session_scope() as session:
            if session.query(Member.id).filter_by(username=username).first():
                raise ValueError(f"Member {username} already exists")
            session.add(Member(
                username=username,
                api_key_hash=hash_api_key(api_key),
                token_balance=token_balance,
                is_admin=is_admin,
                tier=InvestorTier.INSTITUTIONAL if institutional else InvestorTier.RETAIL,
                early_investor=early_investor,
            ))
    return api_key


def main():
    args = [a for a in sys.argv[1:] if a not in FLAGS]
    flags = {a for a in sys.argv[1:] if a in FLAGS}
    if not args or any(a.startswith('--') for a in args):
        print("Usage: python3 scripts/create_member.py <username> [token-balance] [--admin] [--institutional] [--early]")
        sys.exit(1)

    username = args[0]
    try:
        balance = int(args[1]) if len(args) > 1 else 0
    except ValueError:
        print(f"Token balance must be an integer, got {args[1]!r}")
        sys.exit(1)
    if balance < 0:
        print("Token balance cannot be negative")
        sys.exit(1)

    try:
        api_key = create_member(
            username,
            balance,
            is_admin='--admin' in flags,
            institutional='--institutional' in flags,
            early_investor='--early' in flags,
        )
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Member {username} created (balance {balance})")
    print("API key (store it now, it cannot be shown again):")
    print(api_key)


if __name__ == "__main__":
    main()
