"""Tests for the proposal lifecycle and vote tallying."""

import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from datetime import timedelta
from unittest.mock import patch, MagicMock

import pytest

from conftest import NOW, fixed_clock, create_member, create_proposal_row, reload, proposal_input
from models.proposal import Proposal, Vote, ArchivedProposal, ProposalStatus, VoteType
from services.governance_service import GovernanceService, MemberTokenLedger, resolve_vote_weight
from utils.error_handling import (
    ValidationError, AuthenticationError, ProposalNotFoundError, DuplicateVoteError,
    VotingClosedError, VotingStillOpenError, ImmutableProposalError, InvalidProposalStateError,
)
from utils.notifications import ChangeNotifier


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def service(app, notifier):
    return GovernanceService(notifier=notifier, clock=fixed_clock())


def active_proposal(**kwargs):
    return create_proposal_row(now=NOW, **kwargs)


# --- CreateProposal ---

def test_create_proposal_starts_with_zero_tallies(service):
    proposal = service.create_proposal(proposal_input(quorum=None), 'alice')

    assert proposal.id is not None
    assert proposal.status == ProposalStatus.PENDING
    assert proposal.quorum == GovernanceService.DEFAULT_QUORUM
    assert (proposal.votes_for, proposal.votes_against, proposal.votes_abstain) == (0, 0, 0)
    assert reload(Proposal, proposal.id).created_by == 'alice'


def test_create_proposal_trims_text_and_accepts_active_status(service):
    proposal = service.create_proposal(proposal_input(title='  Fund the audit  ', status='active'), 'alice')
    assert proposal.title == 'Fund the audit'
    assert proposal.status == ProposalStatus.ACTIVE


def test_create_proposal_reports_every_invalid_field(service):
    with pytest.raises(ValidationError) as exc:
        service.create_proposal({
            'title': '   ',
            'description': '',
            'category': 'marketing',
            'startDate': 'yesterday',
            'endDate': '2026-03-15T00:00:00Z',
            'quorum': 0,
            'status': 'passed',
        }, 'alice')

    assert set(exc.value.field_errors) == {'title', 'description', 'category', 'startDate', 'quorum', 'status'}
    assert Proposal.query.count() == 0


def test_create_proposal_rejects_non_ascii_quorum_alongside_other_fields(service):
    with pytest.raises(ValidationError) as exc:
        service.create_proposal(proposal_input(title='', quorum='²'), 'alice')

    assert set(exc.value.field_errors) == {'title', 'quorum'}
    assert Proposal.query.count() == 0


@pytest.mark.parametrize("end", ['2026-03-01T00:00:00Z', '2026-02-28T00:00:00Z'])
def test_create_proposal_rejects_end_not_after_start(service, end):
    with pytest.raises(ValidationError) as exc:
        service.create_proposal(proposal_input(endDate=end), 'alice')
    assert 'endDate' in exc.value.field_errors


def test_create_proposal_rejects_overlong_title(service):
    with pytest.raises(ValidationError) as exc:
        service.create_proposal(proposal_input(title='x' * 201), 'alice')
    assert 'title' in exc.value.field_errors


def test_create_proposal_requires_authenticated_creator(service):
    with pytest.raises(AuthenticationError):
        service.create_proposal(proposal_input(), None)


def test_create_proposal_publishes_created_event(service, notifier):
    received = []
    notifier.subscribe('proposal.created', lambda topic, payload: received.append(payload))

    proposal = service.create_proposal(proposal_input(), 'alice')

    assert received == [proposal.to_dict()]


# --- CastVote ---

def test_cast_vote_records_vote_and_increments_tally(service):
    proposal_id = active_proposal()

    vote = service.cast_vote(proposal_id, 'bob', 'for', 250, transaction_hash='0xabc')

    assert vote.vote_type == VoteType.FOR
    assert vote.vote_weight == 250
    proposal = reload(Proposal, proposal_id)
    assert (proposal.votes_for, proposal.votes_against, proposal.votes_abstain) == (250, 0, 0)


def test_cast_vote_tallies_each_type_separately(service):
    proposal_id = active_proposal()
    service.cast_vote(proposal_id, 'bob', 'for', 600)
    service.cast_vote(proposal_id, 'carol', 'against', 300)
    service.cast_vote(proposal_id, 'dave', 'abstain', 200)

    proposal = reload(Proposal, proposal_id)
    assert (proposal.votes_for, proposal.votes_against, proposal.votes_abstain) == (600, 300, 200)
    _, outcome = service.get_results(proposal_id)
    assert outcome.quorum_met is True
    assert outcome.outcome == 'passed'


def test_second_vote_by_same_voter_is_rejected_and_tallies_unchanged(service):
    proposal_id = active_proposal()
    service.cast_vote(proposal_id, 'bob', 'for', 100)

    with pytest.raises(DuplicateVoteError):
        service.cast_vote(proposal_id, 'bob', 'against', 500)

    proposal = reload(Proposal, proposal_id)
    assert (proposal.votes_for, proposal.votes_against) == (100, 0)
    assert Vote.query.filter_by(proposal_id=proposal_id, voter_id='bob').count() == 1


def test_racing_duplicate_is_stopped_by_unique_constraint(service):
    """A duplicate that slips past the existence check must still fail atomically."""
    proposal_id = active_proposal()
    service.cast_vote(proposal_id, 'bob', 'for', 100)

    with patch.object(GovernanceService, '_has_voted', return_value=False):
        with pytest.raises(DuplicateVoteError):
            service.cast_vote(proposal_id, 'bob', 'for', 100)

    proposal = reload(Proposal, proposal_id)
    assert proposal.votes_for == 100
    assert Vote.query.filter_by(proposal_id=proposal_id).count() == 1


def test_many_voters_sum_exactly(service):
    proposal_id = active_proposal()
    weights = [17, 250, 1, 9999, 42, 3, 780]
    for index, weight in enumerate(weights):
        service.cast_vote(proposal_id, f'voter{index}', 'for', weight)

    assert reload(Proposal, proposal_id).votes_for == sum(weights)


def test_vote_on_missing_proposal(service):
    with pytest.raises(ProposalNotFoundError):
        service.cast_vote(999, 'bob', 'for', 1)


@pytest.mark.parametrize("status", [ProposalStatus.PENDING, ProposalStatus.PASSED, ProposalStatus.REJECTED])
def test_vote_requires_active_status(service, status):
    proposal_id = active_proposal(status=status)
    with pytest.raises(VotingClosedError):
        service.cast_vote(proposal_id, 'bob', 'for', 1)


def test_vote_outside_window_is_closed(service):
    before = active_proposal(start=NOW + timedelta(hours=1), end=NOW + timedelta(days=1))
    after = active_proposal(start=NOW - timedelta(days=2), end=NOW - timedelta(days=1))

    with pytest.raises(VotingClosedError):
        service.cast_vote(before, 'bob', 'for', 1)
    with pytest.raises(VotingClosedError):
        service.cast_vote(after, 'bob', 'for', 1)
    assert Vote.query.count() == 0


def test_vote_fields_are_validated_before_lookup(service):
    with pytest.raises(ValidationError):
        service.cast_vote(999, 'bob', 'maybe', -1)


@pytest.mark.parametrize("vote_type, weight", [
    ('maybe', 10), ('for', 0), ('for', -5), ('for', 1.5), ('for', True), ('for', '²'), ('for', '٣'),
])
def test_invalid_vote_fields(service, vote_type, weight):
    proposal_id = active_proposal()
    with pytest.raises(ValidationError):
        service.cast_vote(proposal_id, 'bob', vote_type, weight)


def test_vote_requires_voter(service):
    proposal_id = active_proposal()
    with pytest.raises(AuthenticationError):
        service.cast_vote(proposal_id, None, 'for', 1)


def test_cast_vote_publishes_after_commit(service, notifier):
    proposal_id = active_proposal()
    received = []
    notifier.subscribe('vote.cast', lambda topic, payload: received.append(payload))

    service.cast_vote(proposal_id, 'bob', 'against', 7)

    assert received[0]['vote']['voterId'] == 'bob'
    assert received[0]['proposal']['votesAgainst'] == 7


def test_failing_subscriber_does_not_undo_vote(service, notifier):
    proposal_id = active_proposal()
    notifier.subscribe('*', MagicMock(side_effect=RuntimeError('subscriber down')))

    service.cast_vote(proposal_id, 'bob', 'for', 5)

    assert reload(Proposal, proposal_id).votes_for == 5


# --- Vote weight ---

def test_resolve_vote_weight_defaults_to_balance():
    assert resolve_vote_weight(500) == 500
    assert resolve_vote_weight(500, 200) == 200


@pytest.mark.parametrize("balance, requested", [(0, None), (500, 501), (500, 0), (500, 'lots')])
def test_resolve_vote_weight_rejects(balance, requested):
    with pytest.raises(ValidationError):
        resolve_vote_weight(balance, requested)


def test_member_vote_uses_ledger_balance(app, notifier):
    create_member('bob', token_balance=750)
    service = GovernanceService(notifier=notifier, clock=fixed_clock(), ledger=MemberTokenLedger())
    proposal_id = active_proposal()

    vote = service.cast_member_vote(proposal_id, 'bob', 'for')

    assert vote.vote_weight == 750
    assert reload(Proposal, proposal_id).votes_for == 750


def test_member_vote_without_balance_is_rejected(service):
    proposal_id = active_proposal()
    service.ledger = MagicMock(balance_of=MagicMock(return_value=0))
    with pytest.raises(ValidationError):
        service.cast_member_vote(proposal_id, 'bob', 'for')


# --- DeleteProposal ---

def test_delete_proposal_without_votes(service, notifier):
    proposal_id = active_proposal()
    received = []
    notifier.subscribe('proposal.deleted', lambda topic, payload: received.append(payload))

    service.delete_proposal(proposal_id, deleted_by='admin')

    assert reload(Proposal, proposal_id) is None
    assert received == [{'id': proposal_id}]


def test_delete_proposal_with_votes_is_immutable(service):
    proposal_id = active_proposal()
    service.cast_vote(proposal_id, 'bob', 'abstain', 1)

    with pytest.raises(ImmutableProposalError):
        service.delete_proposal(proposal_id)
    assert reload(Proposal, proposal_id) is not None


def test_delete_proposal_with_nonzero_tallies_is_immutable(service):
    proposal_id = active_proposal(votes_against=3)
    with pytest.raises(ImmutableProposalError):
        service.delete_proposal(proposal_id)


def test_delete_missing_proposal(service):
    with pytest.raises(ProposalNotFoundError):
        service.delete_proposal(12345)


# --- CloseProposal / ActivateDueProposals ---

def ended_proposal(**tallies):
    return active_proposal(start=NOW - timedelta(days=7), end=NOW - timedelta(minutes=1), **tallies)


def test_close_before_end_is_rejected(service):
    proposal_id = active_proposal()
    with pytest.raises(VotingStillOpenError):
        service.close_proposal(proposal_id)


def test_close_passes_when_quorum_met_and_majority_for(service):
    proposal_id = ended_proposal(votes_for=600, votes_against=300, votes_abstain=200)

    proposal, outcome = service.close_proposal(proposal_id, closed_by='admin')

    assert proposal.status == ProposalStatus.PASSED
    assert outcome.outcome == 'passed'
    assert reload(Proposal, proposal_id).status == ProposalStatus.PASSED


def test_close_without_quorum_rejects(service):
    proposal_id = ended_proposal(votes_for=600, votes_against=300, votes_abstain=50)

    proposal, outcome = service.close_proposal(proposal_id)

    assert outcome.quorum_met is False
    assert proposal.status == ProposalStatus.REJECTED


def test_close_twice_is_invalid(service):
    proposal_id = ended_proposal(votes_for=2000)
    service.close_proposal(proposal_id)
    with pytest.raises(InvalidProposalStateError):
        service.close_proposal(proposal_id)


def test_close_pending_is_invalid(service):
    proposal_id = active_proposal(status=ProposalStatus.PENDING)
    with pytest.raises(InvalidProposalStateError):
        service.close_proposal(proposal_id)


def test_activate_due_proposals(service):
    due = active_proposal(status=ProposalStatus.PENDING)
    future = active_proposal(status=ProposalStatus.PENDING,
                             start=NOW + timedelta(days=1), end=NOW + timedelta(days=2))
    lapsed = active_proposal(status=ProposalStatus.PENDING,
                             start=NOW - timedelta(days=2), end=NOW - timedelta(days=1))

    assert service.activate_due_proposals() == 1

    assert reload(Proposal, due).status == ProposalStatus.ACTIVE
    assert reload(Proposal, future).status == ProposalStatus.PENDING
    assert reload(Proposal, lapsed).status == ProposalStatus.PENDING
    assert service.activate_due_proposals() == 0


# --- ArchiveProposal / queries ---

def test_archive_requires_closed_proposal(service):
    proposal_id = active_proposal()
    with pytest.raises(InvalidProposalStateError):
        service.archive_proposal(proposal_id)


def test_archive_writes_snapshot_and_hides_from_default_list(service):
    proposal_id = ended_proposal(votes_for=1500)
    service.close_proposal(proposal_id)

    snapshot = service.archive_proposal(proposal_id, archived_by='admin')

    assert snapshot.proposal_id == proposal_id
    assert snapshot.quorum_met is True
    assert snapshot.status == ProposalStatus.PASSED
    assert [p.id for p in service.list_proposals()] == []
    assert [p.id for p in service.list_proposals(include_archived=True)] == [proposal_id]
    assert [a.proposal_id for a in service.list_archived_proposals()] == [proposal_id]


def test_archive_twice_is_invalid(service):
    proposal_id = ended_proposal(votes_for=1500)
    service.close_proposal(proposal_id)
    service.archive_proposal(proposal_id)

    with pytest.raises(InvalidProposalStateError):
        service.archive_proposal(proposal_id)
    assert ArchivedProposal.query.count() == 1


def test_list_proposals_filters_by_status(service):
    active_id = active_proposal()
    active_proposal(status=ProposalStatus.PENDING)

    assert [p.id for p in service.list_proposals(status='active')] == [active_id]
    with pytest.raises(ValidationError):
        service.list_proposals(status='draft')


def test_get_missing_proposal(service):
    with pytest.raises(ProposalNotFoundError):
        service.get_proposal(404)


def test_list_votes_for_voter(service):
    first = active_proposal()
    second = active_proposal()
    service.cast_vote(first, 'bob', 'for', 1)
    service.cast_vote(second, 'bob', 'against', 2)
    service.cast_vote(first, 'carol', 'for', 3)

    votes = service.list_votes('bob')

    assert sorted(v.proposal_id for v in votes) == [first, second]
    with pytest.raises(ValidationError):
        service.list_votes('')
