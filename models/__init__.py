from .member import Member, InvestorTier
from .proposal import (
    Proposal, Vote, ArchivedProposal, ProposalCategory, ProposalStatus, VoteType, CLOSED_STATUSES
)
from .verification import (
    VerificationRecord, VerificationSession, DocumentResult, BiometricResult,
    SessionStatus, VerificationStatus, DocumentStatus, TERMINAL_SESSION_STATUSES
)
from .audit_entry import AuditEntry

__all__ = [
    'Member', 'InvestorTier',
    'Proposal', 'Vote', 'ArchivedProposal', 'ProposalCategory', 'ProposalStatus', 'VoteType',
    'CLOSED_STATUSES',
    'VerificationRecord', 'VerificationSession', 'DocumentResult', 'BiometricResult',
    'SessionStatus', 'VerificationStatus', 'DocumentStatus', 'TERMINAL_SESSION_STATUSES',
    'AuditEntry',
]
