"""
Governance routes for proposals and votes.

All responses use the ``{success, data|error}`` envelope. Reads are public;
creating proposals and voting require a member API key, and lifecycle
management requires an administrator.
"""

import logging

from flask import Blueprint, request, jsonify

from routes.auth import require_member, require_admin
from services.governance_service import GovernanceService
from utils.error_handling import (
    ValidationError, AuthorizationError, create_error_response, create_success_response
)
from utils.security_utils import parse_positive_int, rate_limit_api

governance_bp = Blueprint('governance', __name__)
logger = logging.getLogger(__name__)


def _respond(payload):
    body, status_code = payload
    return jsonify(body), status_code


def _error(error, member=None):
    if member is not None:
        return _respond(create_error_response(error, member.id, member.username))
    return _respond(create_error_response(error))


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('JSON data required')
    return data


def _flag(value) -> bool:
    return str(value).lower() in ('1', 'true', 'yes')


@governance_bp.route('/proposals', methods=['GET'])
@rate_limit_api
def list_proposals():
    try:
        proposals = GovernanceService().list_proposals(
            status=request.args.get('status'),
            include_archived=_flag(request.args.get('include_archived', 'false'))
        )
        return _respond(create_success_response([p.to_dict() for p in proposals], 'Proposals retrieved'))
    except Exception as e:
        return _error(e)


@governance_bp.route('/proposals/archive', methods=['GET'])
@rate_limit_api
def list_archived_proposals():
    try:
        archived = GovernanceService().list_archived_proposals()
        return _respond(create_success_response([a.to_dict() for a in archived], 'Archived proposals retrieved'))
    except Exception as e:
        return _error(e)


@governance_bp.route('/proposals/<int:proposal_id>', methods=['GET'])
@rate_limit_api
def get_proposal(proposal_id):
    try:
        proposal = GovernanceService().get_proposal(proposal_id)
        return _respond(create_success_response(proposal.to_dict(), 'Proposal retrieved'))
    except Exception as e:
        return _error(e)


@governance_bp.route('/proposals/<int:proposal_id>/results', methods=['GET'])
@rate_limit_api
def get_results(proposal_id):
    """Current tallies with the outcome derived from them."""
    try:
        proposal, outcome = GovernanceService().get_results(proposal_id)
        data = {
            'proposalId': proposal.id,
            'status': proposal.status.value,
            'quorum': proposal.quorum,
            'votesFor': proposal.votes_for,
            'votesAgainst': proposal.votes_against,
            'votesAbstain': proposal.votes_abstain,
            **outcome.to_dict()
        }
        return _respond(create_success_response(data, 'Results computed'))
    except Exception as e:
        return _error(e)


@governance_bp.route('/proposal', methods=['POST'])
@rate_limit_api
@require_member
def create_proposal(member):
    """
    Create a proposal.

    Expected input format:
    {
        "title": "string",
        "description": "string",
        "category": "treasury|technical|governance|community",
        "startDate": "ISO-8601",
        "endDate": "ISO-8601",
        "quorum": 1000000,
        "status": "pending|active"
    }
    """
    try:
        proposal = GovernanceService().create_proposal(_json_body(), member.username)
        return _respond(create_success_response(proposal.to_dict(), 'Proposal created', 201))
    except Exception as e:
        return _error(e, member)


@governance_bp.route('/vote', methods=['POST'])
@rate_limit_api
@require_member
def cast_vote(member):
    """
    Cast a vote as the authenticated member.

    Expected input format:
    {
        "proposalId": 1,
        "voteType": "for|against|abstain",
        "voteWeight": 100,          (optional, defaults to the full balance)
        "transactionHash": "0x..."  (optional)
    }
    """
    try:
        data = _json_body()
        voter_id = data.get('voterId') or data.get('userId')
        if voter_id and voter_id != member.username:
            raise AuthorizationError('Members can only vote on their own behalf')

        proposal_id = parse_positive_int(data.get('proposalId'))
        if proposal_id is None:
            raise ValidationError('Vote validation failed',
                                  field_errors={'proposalId': 'proposalId must be an integer'})

        vote = GovernanceService().cast_member_vote(
            proposal_id,
            member.username,
            data.get('voteType'),
            requested_weight=data.get('voteWeight'),
            transaction_hash=data.get('transactionHash')
        )
        return _respond(create_success_response(vote.to_dict(), 'Vote recorded', 201))
    except Exception as e:
        return _error(e, member)


@governance_bp.route('/votes', methods=['GET'])
@rate_limit_api
@require_member
def list_votes(member):
    """Votes cast by ``userId`` (defaults to the caller; other members need admin)."""
    try:
        voter_id = request.args.get('userId') or member.username
        if voter_id != member.username and not member.is_admin:
            raise AuthorizationError('Members can only list their own votes')
        votes = GovernanceService().list_votes(voter_id)
        return _respond(create_success_response([v.to_dict() for v in votes], 'Votes retrieved'))
    except Exception as e:
        return _error(e, member)


# --- Admin lifecycle management ---

@governance_bp.route('/proposals/<int:proposal_id>', methods=['DELETE'])
@require_admin
def delete_proposal(admin, proposal_id):
    try:
        GovernanceService().delete_proposal(proposal_id, deleted_by=admin.username)
        logger.info("Admin %s deleted proposal %s", admin.username, proposal_id)
        return _respond(create_success_response({'id': proposal_id}, 'Proposal deleted'))
    except Exception as e:
        return _error(e, admin)


@governance_bp.route('/proposals/<int:proposal_id>/close', methods=['POST'])
@require_admin
def close_proposal(admin, proposal_id):
    try:
        proposal, outcome = GovernanceService().close_proposal(proposal_id, closed_by=admin.username)
        data = proposal.to_dict()
        data.update(outcome.to_dict())
        return _respond(create_success_response(data, f'Proposal {proposal.status.value}'))
    except Exception as e:
        return _error(e, admin)


@governance_bp.route('/proposals/<int:proposal_id>/archive', methods=['POST'])
@require_admin
def archive_proposal(admin, proposal_id):
    try:
        snapshot = GovernanceService().archive_proposal(proposal_id, archived_by=admin.username)
        return _respond(create_success_response(snapshot.to_dict(), 'Proposal archived'))
    except Exception as e:
        return _error(e, admin)


@governance_bp.route('/proposals/activate', methods=['POST'])
@require_admin
def activate_due_proposals(admin):
    """Activate pending proposals whose voting window has opened; for external schedulers."""
    try:
        activated = GovernanceService().activate_due_proposals()
        return _respond(create_success_response({'activated': activated}, 'Due proposals activated'))
    except Exception as e:
        return _error(e, admin)
