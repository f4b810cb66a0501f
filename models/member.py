"""
Member model for database operations.

A member is an authenticated platform identity (investor or administrator).
The username doubles as the voter identity on governance proposals, and the
token balance is the point-in-time stand-in for the external token ledger
consulted when a vote is cast.
"""

import enum

from sqlalchemy import Enum

from db.database import db
from utils.time_utils import utcnow


class InvestorTier(enum.Enum):
    """Enumeration for investor tiers."""
    RETAIL = "retail"
    INSTITUTIONAL = "institutional"


class Member(db.Model):
    """
    Member model for database operations.

    Attributes:
        id (int): Primary key
        username (str): Unique identifier, used as the voter id
        wallet_address (str, optional): Settlement wallet
        api_key_hash (str): SHA256 hash of the member's API key
        token_balance (int): Current token balance in base units
        tier (InvestorTier): Investor tier used by distribution strategies
        early_investor (bool): Early investor flag used by distribution strategies
        is_admin (bool): Grants access to administrative endpoints
    """

    __tablename__ = 'members'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(254), nullable=True)
    wallet_address = db.Column(db.String(100), unique=True, nullable=True)
    api_key_hash = db.Column(db.String(64), unique=True, nullable=False)
    token_balance = db.Column(db.BigInteger, nullable=False, default=0)
    tier = db.Column(Enum(InvestorTier, name="investor_tier", native_enum=False),
                     nullable=False, default=InvestorTier.RETAIL)
    early_investor = db.Column(db.Boolean, nullable=False, default=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def __init__(self, username: str, api_key_hash: str, token_balance: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.username = username
        self.api_key_hash = api_key_hash
        self.token_balance = token_balance

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'username': self.username,
            'walletAddress': self.wallet_address,
            'tokenBalance': self.token_balance,
            'tier': self.tier.value if self.tier else None,
            'earlyInvestor': bool(self.early_investor),
            'isAdmin': bool(self.is_admin),
        }

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, username='{self.username}', balance={self.token_balance})>"
