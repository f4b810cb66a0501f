"""
Proposal outcome computation.

The outcome is always re-derived from the persisted tallies and the quorum;
no cached outcome is ever treated as the source of truth.
"""

from typing import NamedTuple

PASSED = 'passed'
REJECTED = 'rejected'
PENDING = 'pending'


class ProposalOutcome(NamedTuple):
    """Result of evaluating a proposal's tallies against its quorum."""
    quorum_met: bool
    outcome: str
    total_votes: int

    def to_dict(self) -> dict:
        return {
            'quorumMet': self.quorum_met,
            'outcome': self.outcome,
            'totalVotes': self.total_votes,
        }


def compute_outcome(votes_for: int, votes_against: int, votes_abstain: int, quorum: int) -> ProposalOutcome:
    """
    Apply the quorum and simple-majority rule.

    Abstentions count toward the quorum but not toward the for/against
    comparison. A tie is a rejection.

    Args:
        votes_for: Weighted votes in favour
        votes_against: Weighted votes against
        votes_abstain: Weighted abstentions
        quorum: Minimum total weight for the result to be valid

    Returns:
        ProposalOutcome with ``outcome`` one of 'passed', 'rejected', 'pending'
    """
    total = votes_for + votes_against + votes_abstain
    quorum_met = total >= quorum

    if not quorum_met:
        return ProposalOutcome(False, PENDING, total)
    if votes_for > votes_against:
        return ProposalOutcome(True, PASSED, total)
    return ProposalOutcome(True, REJECTED, total)


def compute_proposal_outcome(proposal) -> ProposalOutcome:
    """Evaluate a Proposal (or any object with the tally attributes)."""
    return compute_outcome(
        proposal.votes_for or 0,
        proposal.votes_against or 0,
        proposal.votes_abstain or 0,
        proposal.quorum,
    )
