# Governance service for the proposal lifecycle and vote tallying

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update, delete
from sqlalchemy.exc import IntegrityError

from config import Config
from db.session_manager import session_scope, read_scope, detach
from models.member import Member
from models.proposal import (
    Proposal, Vote, ArchivedProposal, ProposalCategory, ProposalStatus, VoteType, CLOSED_STATUSES
)
from services.outcome import ProposalOutcome, compute_proposal_outcome, PASSED
from utils.audit_logger import audit_logger, AuditEventType
from utils.error_handling import (
    PlatformError, ValidationError, AuthenticationError, ProposalNotFoundError,
    DuplicateVoteError, VotingClosedError, VotingStillOpenError, ImmutableProposalError,
    InvalidProposalStateError,
)
from utils.notifications import ChangeNotifier, change_notifier
from utils.security_utils import parse_positive_int
from utils.time_utils import utcnow, as_utc, parse_timestamp

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = (ProposalStatus.PENDING, ProposalStatus.ACTIVE)

TALLY_COLUMNS = {
    VoteType.FOR: Proposal.votes_for,
    VoteType.AGAINST: Proposal.votes_against,
    VoteType.ABSTAIN: Proposal.votes_abstain,
}

OPTIONAL_TEXT_FIELDS = {
    'proposedChanges': 'proposed_changes',
    'implementationTimeline': 'implementation_timeline',
    'expectedImpact': 'expected_impact',
}


def _parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def validate_proposal_input(data: Dict[str, Any], default_quorum: int, title_max_length: int) -> Dict[str, Any]:
    """
    Validate and normalise proposal fields.

    Every field is checked so the caller receives all problems at once.

    Returns:
        Column values ready for a Proposal row

    Raises:
        ValidationError: with one entry per invalid field
    """
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    title = data.get('title')
    title = title.strip() if isinstance(title, str) else ''
    if not title:
        errors['title'] = 'Title is required'
    elif len(title) > title_max_length:
        errors['title'] = f'Title must be no more than {title_max_length} characters long'
    cleaned['title'] = title

    description = data.get('description')
    description = description.strip() if isinstance(description, str) else ''
    if not description:
        errors['description'] = 'Description is required'
    cleaned['description'] = description

    category = _parse_enum(ProposalCategory, data.get('category'))
    if category is None:
        allowed = ', '.join(c.value for c in ProposalCategory)
        errors['category'] = f'Category must be one of: {allowed}'
    cleaned['category'] = category

    status_value = data.get('status') or ProposalStatus.PENDING.value
    status = _parse_enum(ProposalStatus, status_value)
    if status not in CREATABLE_STATUSES:
        errors['status'] = 'Status must be pending or active'
    cleaned['status'] = status

    start_date = parse_timestamp(data.get('startDate'))
    if start_date is None:
        errors['startDate'] = 'Start date must be an ISO-8601 timestamp'
    end_date = parse_timestamp(data.get('endDate'))
    if end_date is None:
        errors['endDate'] = 'End date must be an ISO-8601 timestamp'
    elif start_date is not None and end_date <= start_date:
        errors['endDate'] = 'End date must be after start date'
    cleaned['start_date'] = start_date
    cleaned['end_date'] = end_date

    raw_quorum = data.get('quorum')
    if raw_quorum is None or raw_quorum == '':
        cleaned['quorum'] = default_quorum
    else:
        quorum = parse_positive_int(raw_quorum)
        if quorum is None:
            errors['quorum'] = 'Quorum must be a positive integer'
        cleaned['quorum'] = quorum

    for field, column in OPTIONAL_TEXT_FIELDS.items():
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            errors[field] = f'{field} must be text'
            continue
        cleaned[column] = value.strip() if value and value.strip() else None

    if errors:
        raise ValidationError('Proposal validation failed', field_errors=errors)

    return cleaned


class MemberTokenLedger:
    """
    Token balance lookup backed by the members table.

    Stands in for the external token ledger; the balance read at cast time
    becomes the vote's weight snapshot.
    """

    def balance_of(self, voter_id: str) -> int:
        with read_scope():
            member = Member.query.filter_by(username=voter_id).first()
            return int(member.token_balance or 0) if member else 0


def resolve_vote_weight(balance: int, requested=None) -> int:
    """
    Derive the vote weight from the voter's balance at cast time.

    Without an explicit request the whole balance is used; an explicit weight
    must be a positive integer not exceeding the balance.
    """
    if balance <= 0:
        raise ValidationError('Voting requires a positive token balance',
                              field_errors={'voteWeight': 'No voting power at this time'})
    if requested is None:
        return balance
    weight = parse_positive_int(requested)
    if weight is None:
        raise ValidationError('Invalid vote weight',
                              field_errors={'voteWeight': 'Vote weight must be a positive integer'})
    if weight > balance:
        raise ValidationError('Invalid vote weight',
                              field_errors={'voteWeight': f'Vote weight exceeds token balance of {balance}'})
    return weight


class GovernanceService:
    """
    Service for governance proposals and votes.
    Handles proposal creation, vote casting, closing, archiving and deletion.
    """
    DEFAULT_QUORUM = Config.PROPOSAL_DEFAULT_QUORUM
    TITLE_MAX_LENGTH = Config.PROPOSAL_TITLE_MAX_LENGTH

    def __init__(self, notifier: Optional[ChangeNotifier] = None, clock=utcnow, ledger=None):
        self.notifier = notifier if notifier is not None else change_notifier
        self.clock = clock
        self.ledger = ledger if ledger is not None else MemberTokenLedger()

    def _now(self):
        return as_utc(self.clock())

    # --- Proposals ---

    def create_proposal(self, data: Dict[str, Any], created_by: Optional[str]) -> Proposal:
        """
        Create a proposal with zeroed tallies.

        Raises:
            AuthenticationError: no authenticated submitter
            ValidationError: listing every invalid field
        """
        if not created_by:
            raise AuthenticationError('Creating a proposal requires an authenticated member')

        values = validate_proposal_input(data, self.DEFAULT_QUORUM, self.TITLE_MAX_LENGTH)

        with session_scope() as session:
            proposal = Proposal(
                created_by=created_by,
                votes_for=0,
                votes_against=0,
                votes_abstain=0,
                created_at=self._now(),
                **values
            )
            session.add(proposal)
            detach(session, proposal)

        audit_logger.log_proposal_event(AuditEventType.PROPOSAL_CREATE, proposal.id, username=created_by,
                                        category=proposal.category.value, status=proposal.status.value)
        self.notifier.publish('proposal.created', proposal.to_dict())
        return proposal

    def get_proposal(self, proposal_id) -> Proposal:
        with read_scope() as session:
            proposal = session.get(Proposal, proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            return proposal

    def list_proposals(self, status: Optional[str] = None, include_archived: bool = False) -> List[Proposal]:
        """List proposals newest first, optionally filtered by status."""
        query = Proposal.query
        if status:
            parsed = _parse_enum(ProposalStatus, status)
            if parsed is None:
                raise ValidationError('Invalid status filter', field_errors={'status': f'Unknown status {status}'})
            query = query.filter(Proposal.status == parsed)
        if not include_archived:
            query = query.filter(Proposal.archived_at.is_(None))
        with read_scope():
            return query.order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()

    def list_archived_proposals(self) -> List[ArchivedProposal]:
        with read_scope():
            return ArchivedProposal.query.order_by(ArchivedProposal.archived_at.desc()).all()

    def get_results(self, proposal_id) -> Tuple[Proposal, ProposalOutcome]:
        proposal = self.get_proposal(proposal_id)
        return proposal, compute_proposal_outcome(proposal)

    def delete_proposal(self, proposal_id, deleted_by: Optional[str] = None) -> None:
        """
        Delete a proposal that has never received a vote.

        Raises:
            ProposalNotFoundError: unknown id
            ImmutableProposalError: votes have been cast
        """
        with session_scope() as session:
            proposal = session.get(Proposal, proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            if proposal.total_votes > 0 or self._has_any_vote(session, proposal_id):
                raise ImmutableProposalError(proposal_id)

            # Guarded on the tallies so a vote committed in between wins
            result = session.execute(
                delete(Proposal)
                .where(Proposal.id == proposal_id)
                .where(Proposal.votes_for == 0)
                .where(Proposal.votes_against == 0)
                .where(Proposal.votes_abstain == 0)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ImmutableProposalError(proposal_id)
            session.expunge(proposal)

        audit_logger.log_proposal_event(AuditEventType.PROPOSAL_DELETE, proposal_id, username=deleted_by)
        self.notifier.publish('proposal.deleted', {'id': proposal_id})

    def close_proposal(self, proposal_id, closed_by: Optional[str] = None) -> Tuple[Proposal, ProposalOutcome]:
        """
        Finalise an active proposal whose voting window has ended.

        A proposal that missed its quorum is rejected.
        """
        now = self._now()
        with session_scope() as session:
            proposal = session.get(Proposal, proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            if proposal.status in CLOSED_STATUSES:
                raise InvalidProposalStateError(proposal_id, f'Proposal {proposal_id} is already closed')
            if proposal.status != ProposalStatus.ACTIVE:
                raise InvalidProposalStateError(proposal_id, 'Only active proposals can be closed')
            if now <= as_utc(proposal.end_date):
                raise VotingStillOpenError(proposal_id)

            outcome = compute_proposal_outcome(proposal)
            final_status = ProposalStatus.PASSED if outcome.outcome == PASSED else ProposalStatus.REJECTED

            result = session.execute(
                update(Proposal)
                .where(Proposal.id == proposal_id)
                .where(Proposal.status == ProposalStatus.ACTIVE)
                .values(status=final_status, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidProposalStateError(proposal_id, f'Proposal {proposal_id} was closed concurrently')
            detach(session, proposal, refresh=True)

        audit_logger.log_proposal_event(AuditEventType.PROPOSAL_CLOSE, proposal_id, username=closed_by,
                                        outcome=final_status.value, quorum_met=outcome.quorum_met)
        self.notifier.publish('proposal.updated', proposal.to_dict())
        return proposal, outcome

    def activate_due_proposals(self) -> int:
        """Move pending proposals whose voting window has opened to active."""
        now = self._now()
        with session_scope() as session:
            result = session.execute(
                update(Proposal)
                .where(Proposal.status == ProposalStatus.PENDING)
                .where(Proposal.start_date <= now)
                .where(Proposal.end_date > now)
                .values(status=ProposalStatus.ACTIVE, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            activated = result.rowcount

        if activated:
            logger.info("Activated %d pending proposal(s)", activated)
            audit_logger.log_event(AuditEventType.PROPOSAL_ACTIVATE, message=f'Activated {activated} proposal(s)',
                                   activated=activated)
            self.notifier.publish('proposal.updated', {'activated': activated})
        return activated

    def archive_proposal(self, proposal_id, archived_by: Optional[str] = None) -> ArchivedProposal:
        """Write a read-only snapshot of a closed proposal."""
        now = self._now()
        with session_scope() as session:
            proposal = session.get(Proposal, proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(proposal_id)
            if proposal.status not in CLOSED_STATUSES:
                raise InvalidProposalStateError(proposal_id, 'Only passed or rejected proposals can be archived')
            already = session.query(ArchivedProposal.id).filter_by(proposal_id=proposal_id).first()
            if proposal.archived_at is not None or already is not None:
                raise InvalidProposalStateError(proposal_id, f'Proposal {proposal_id} is already archived')

            outcome = compute_proposal_outcome(proposal)
            snapshot = ArchivedProposal.snapshot(proposal, outcome.quorum_met, now, archived_by)
            session.add(snapshot)
            proposal.archived_at = now
            detach(session, snapshot)

        audit_logger.log_proposal_event(AuditEventType.PROPOSAL_ARCHIVE, proposal_id, username=archived_by)
        self.notifier.publish('proposal.archived', snapshot.to_dict())
        return snapshot

    # --- Votes ---

    @staticmethod
    def _has_any_vote(session, proposal_id) -> bool:
        return session.query(Vote.id).filter_by(proposal_id=proposal_id).first() is not None

    @staticmethod
    def _has_voted(session, proposal_id, voter_id) -> bool:
        return session.query(Vote.id).filter_by(proposal_id=proposal_id, voter_id=voter_id).first() is not None

    def cast_vote(self, proposal_id, voter_id: Optional[str], vote_type, vote_weight,
                  transaction_hash: Optional[str] = None) -> Vote:
        """
        Record a vote and add its weight to the proposal's tally.

        Preconditions are checked in order: proposal exists, voting open,
        voter has not voted. The vote insert and the SQL-side tally increment
        commit together or not at all.

        Raises:
            AuthenticationError, ValidationError, ProposalNotFoundError,
            VotingClosedError, DuplicateVoteError
        """
        if not voter_id:
            raise AuthenticationError('Voting requires an authenticated member')

        errors = {}
        parsed_type = vote_type if isinstance(vote_type, VoteType) else _parse_enum(VoteType, vote_type)
        if parsed_type is None:
            errors['voteType'] = 'Vote type must be one of: for, against, abstain'
        weight = parse_positive_int(vote_weight)
        if weight is None:
            errors['voteWeight'] = 'Vote weight must be a positive integer'
        if errors:
            raise ValidationError('Vote validation failed', field_errors=errors)

        now = self._now()
        try:
            with session_scope() as session:
                proposal = session.get(Proposal, proposal_id)
                if proposal is None:
                    raise ProposalNotFoundError(proposal_id)
                self._ensure_voting_open(proposal, now)
                if self._has_voted(session, proposal_id, voter_id):
                    raise DuplicateVoteError(proposal_id, voter_id)

                vote = Vote(
                    proposal_id=proposal_id,
                    voter_id=voter_id,
                    vote_type=parsed_type,
                    vote_weight=weight,
                    transaction_hash=transaction_hash,
                    created_at=now,
                )
                session.add(vote)
                try:
                    session.flush()
                except IntegrityError as e:
                    # A concurrent cast by the same voter committed first
                    raise DuplicateVoteError(proposal_id, voter_id) from e

                column = TALLY_COLUMNS[parsed_type]
                result = session.execute(
                    update(Proposal)
                    .where(Proposal.id == proposal_id)
                    .where(Proposal.status == ProposalStatus.ACTIVE)
                    .values({column: column + weight, Proposal.updated_at: now})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise VotingClosedError(proposal_id, 'proposal was closed while voting')

                session.refresh(proposal)
                tallies = proposal.to_dict()
                detach(session, vote)
        except PlatformError as e:
            if not isinstance(e, ValidationError):
                audit_logger.log_vote_rejected(proposal_id, voter_id, e.error_code)
            raise

        audit_logger.log_vote(proposal_id, voter_id, parsed_type.value, weight)
        self.notifier.publish('vote.cast', {'vote': vote.to_dict(), 'proposal': tallies})
        return vote

    def cast_member_vote(self, proposal_id, voter_id: Optional[str], vote_type, requested_weight=None,
                         transaction_hash: Optional[str] = None) -> Vote:
        """Cast a vote weighted by the voter's token balance at this moment."""
        if not voter_id:
            raise AuthenticationError('Voting requires an authenticated member')
        weight = resolve_vote_weight(self.ledger.balance_of(voter_id), requested_weight)
        return self.cast_vote(proposal_id, voter_id, vote_type, weight, transaction_hash=transaction_hash)

    @staticmethod
    def _ensure_voting_open(proposal: Proposal, now) -> None:
        if proposal.status != ProposalStatus.ACTIVE:
            raise VotingClosedError(proposal.id, f'status is {proposal.status.value}')
        if now < as_utc(proposal.start_date):
            raise VotingClosedError(proposal.id, 'voting has not started')
        if now > as_utc(proposal.end_date):
            raise VotingClosedError(proposal.id, 'voting has ended')

    def list_votes(self, voter_id: str) -> List[Vote]:
        """All votes cast by ``voter_id``, newest first."""
        if not voter_id:
            raise ValidationError('User ID is required', field_errors={'userId': 'User ID is required'})
        with read_scope():
            return Vote.query.filter_by(voter_id=voter_id).order_by(Vote.created_at.desc(), Vote.id.desc()).all()
