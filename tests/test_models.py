import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import create_proposal_row
from models.audit_entry import AuditEntry
from models.proposal import Proposal, Vote, VoteType
from services.governance_service import GovernanceService
from utils.error_handling import ConflictError


def test_votes_are_immutable(db_session):
    proposal_id = create_proposal_row()
    GovernanceService().cast_vote(proposal_id, 'bob', 'for', 10)

    vote = db_session.query(Vote).filter_by(voter_id='bob').one()
    vote.vote_weight = 1000
    with pytest.raises(ConflictError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(db_session.query(Vote).filter_by(voter_id='bob').one())
    with pytest.raises(ConflictError):
        db_session.flush()
    db_session.rollback()


def test_unique_vote_per_voter(db_session):
    proposal_id = create_proposal_row()
    db_session.add(Vote(proposal_id=proposal_id, voter_id='bob', vote_type=VoteType.FOR, vote_weight=1))
    db_session.add(Vote(proposal_id=proposal_id, voter_id='bob', vote_type=VoteType.AGAINST, vote_weight=1))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_audit_entries_are_append_only(db_session):
    db_session.add(AuditEntry(action='WEBHOOK_RECEIVED', description='received', metadata_json={'a': 1}))
    db_session.commit()

    entry = db_session.query(AuditEntry).one()
    entry.description = 'rewritten'
    with pytest.raises(ConflictError):
        db_session.flush()
    db_session.rollback()


def test_proposal_to_dict_uses_camel_case(db_session):
    proposal = db_session.get(Proposal, create_proposal_row(votes_for=5, votes_abstain=2))
    data = proposal.to_dict()
    assert data['votesFor'] == 5
    assert data['votesAbstain'] == 2
    assert data['archived'] is False
    assert data['startDate'].endswith('+00:00')
    assert proposal.total_votes == 7
