"""
Governance proposal and vote models.

Proposals carry their own vote tallies; the tallies are only ever changed by
SQL-side increments issued together with the insert of a Vote row, so a
proposal's tallies always equal the sum of its votes' weights per type.
Archived proposals are written to a separate table as read-only snapshots.
"""

import enum

from sqlalchemy import Enum, CheckConstraint, UniqueConstraint, event

from db.database import db
from utils.error_handling import ConflictError
from utils.time_utils import utcnow, isoformat


class ProposalCategory(enum.Enum):
    """Enumeration for proposal categories."""
    TREASURY = "treasury"
    TECHNICAL = "technical"
    GOVERNANCE = "governance"
    COMMUNITY = "community"


class ProposalStatus(enum.Enum):
    """Enumeration for proposal lifecycle states."""
    PENDING = "pending"
    ACTIVE = "active"
    PASSED = "passed"
    REJECTED = "rejected"


CLOSED_STATUSES = (ProposalStatus.PASSED, ProposalStatus.REJECTED)


class VoteType(enum.Enum):
    """Enumeration for vote choices."""
    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


class Proposal(db.Model):
    """
    Governance proposal.

    Attributes:
        id (int): Primary key
        title (str): Short title, non-empty
        description (str): Full description, non-empty
        category (ProposalCategory): Proposal category
        status (ProposalStatus): Lifecycle state
        start_date, end_date (datetime): Voting window, end after start
        quorum (int): Minimum total vote weight for a valid outcome
        votes_for, votes_against, votes_abstain (int): Weighted tallies
        created_by (str): Username of the submitter
        archived_at (datetime, optional): Set once a snapshot was archived
    """

    __tablename__ = 'proposals'
    __table_args__ = (
        CheckConstraint('end_date > start_date', name='ck_proposal_window'),
        CheckConstraint('quorum > 0', name='ck_proposal_quorum'),
        CheckConstraint('votes_for >= 0 AND votes_against >= 0 AND votes_abstain >= 0',
                        name='ck_proposal_tallies'),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(Enum(ProposalCategory, name="proposal_category", native_enum=False), nullable=False)
    status = db.Column(Enum(ProposalStatus, name="proposal_status", native_enum=False),
                       nullable=False, default=ProposalStatus.PENDING)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    quorum = db.Column(db.BigInteger, nullable=False)
    votes_for = db.Column(db.BigInteger, nullable=False, default=0)
    votes_against = db.Column(db.BigInteger, nullable=False, default=0)
    votes_abstain = db.Column(db.BigInteger, nullable=False, default=0)
    created_by = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    proposed_changes = db.Column(db.Text, nullable=True)
    implementation_timeline = db.Column(db.Text, nullable=True)
    expected_impact = db.Column(db.Text, nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    votes = db.relationship('Vote', back_populates='proposal', lazy='dynamic')

    @property
    def total_votes(self) -> int:
        return (self.votes_for or 0) + (self.votes_against or 0) + (self.votes_abstain or 0)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'category': self.category.value,
            'status': self.status.value,
            'startDate': isoformat(self.start_date),
            'endDate': isoformat(self.end_date),
            'quorum': self.quorum,
            'votesFor': self.votes_for,
            'votesAgainst': self.votes_against,
            'votesAbstain': self.votes_abstain,
            'createdBy': self.created_by,
            'createdAt': isoformat(self.created_at),
            'proposedChanges': self.proposed_changes,
            'implementationTimeline': self.implementation_timeline,
            'expectedImpact': self.expected_impact,
            'archived': self.archived_at is not None,
            'archivedAt': isoformat(self.archived_at),
        }

    def __repr__(self) -> str:
        return f"<Proposal(id={self.id}, title='{self.title[:20]}', status={self.status})>"


class Vote(db.Model):
    """
    A single weighted vote. Immutable once written.

    The (proposal_id, voter_id) unique constraint is what makes a racing
    duplicate cast fail inside the database.
    """

    __tablename__ = 'votes'
    __table_args__ = (
        UniqueConstraint('proposal_id', 'voter_id', name='uq_vote_proposal_voter'),
        CheckConstraint('vote_weight > 0', name='ck_vote_weight'),
    )

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.Integer, db.ForeignKey('proposals.id'), nullable=False, index=True)
    voter_id = db.Column(db.String(100), nullable=False, index=True)
    vote_type = db.Column(Enum(VoteType, name="vote_type", native_enum=False), nullable=False)
    vote_weight = db.Column(db.BigInteger, nullable=False)
    transaction_hash = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    proposal = db.relationship('Proposal', back_populates='votes')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'proposalId': self.proposal_id,
            'voterId': self.voter_id,
            'voteType': self.vote_type.value,
            'voteWeight': self.vote_weight,
            'transactionHash': self.transaction_hash,
            'createdAt': isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Vote(proposal_id={self.proposal_id}, voter='{self.voter_id}', {self.vote_type})>"


class ArchivedProposal(db.Model):
    """Read-only snapshot of a closed proposal."""

    __tablename__ = 'proposals_archive'

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(db.Integer, unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(Enum(ProposalCategory, name="proposal_category", native_enum=False), nullable=False)
    status = db.Column(Enum(ProposalStatus, name="proposal_status", native_enum=False), nullable=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    quorum = db.Column(db.BigInteger, nullable=False)
    votes_for = db.Column(db.BigInteger, nullable=False)
    votes_against = db.Column(db.BigInteger, nullable=False)
    votes_abstain = db.Column(db.BigInteger, nullable=False)
    quorum_met = db.Column(db.Boolean, nullable=False)
    created_by = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    proposed_changes = db.Column(db.Text, nullable=True)
    implementation_timeline = db.Column(db.Text, nullable=True)
    expected_impact = db.Column(db.Text, nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    archived_by = db.Column(db.String(100), nullable=True)

    @classmethod
    def snapshot(cls, proposal: Proposal, quorum_met: bool, archived_at, archived_by=None) -> 'ArchivedProposal':
        return cls(
            proposal_id=proposal.id,
            title=proposal.title,
            description=proposal.description,
            category=proposal.category,
            status=proposal.status,
            start_date=proposal.start_date,
            end_date=proposal.end_date,
            quorum=proposal.quorum,
            votes_for=proposal.votes_for,
            votes_against=proposal.votes_against,
            votes_abstain=proposal.votes_abstain,
            quorum_met=quorum_met,
            created_by=proposal.created_by,
            created_at=proposal.created_at,
            proposed_changes=proposal.proposed_changes,
            implementation_timeline=proposal.implementation_timeline,
            expected_impact=proposal.expected_impact,
            archived_at=archived_at,
            archived_by=archived_by,
        )

    def to_dict(self) -> dict:
        return {
            'id': self.proposal_id,
            'title': self.title,
            'description': self.description,
            'category': self.category.value,
            'status': self.status.value,
            'startDate': isoformat(self.start_date),
            'endDate': isoformat(self.end_date),
            'quorum': self.quorum,
            'votesFor': self.votes_for,
            'votesAgainst': self.votes_against,
            'votesAbstain': self.votes_abstain,
            'quorumMet': self.quorum_met,
            'createdBy': self.created_by,
            'createdAt': isoformat(self.created_at),
            'proposedChanges': self.proposed_changes,
            'implementationTimeline': self.implementation_timeline,
            'expectedImpact': self.expected_impact,
            'archived': True,
            'archivedAt': isoformat(self.archived_at),
            'archivedBy': self.archived_by,
        }


@event.listens_for(Vote, 'before_update')
@event.listens_for(Vote, 'before_delete')
@event.listens_for(ArchivedProposal, 'before_update')
@event.listens_for(ArchivedProposal, 'before_delete')
def _reject_mutation(mapper, connection, target):
    raise ConflictError(f'{type(target).__name__} records are immutable', 'IMMUTABLE_RECORD')
