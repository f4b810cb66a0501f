"""
Centralized pytest configuration for governance service tests.

This module provides standardized fixtures and utilities for all test modules,
ensuring consistent database setup, client configuration, and resource cleanup.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to Python path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
os.environ.setdefault('FLASK_ENV', 'testing')

from config import TestingConfig  # noqa: E402
from db.database import db  # noqa: E402
from db.session_manager import session_scope  # noqa: E402
from models.member import Member, InvestorTier  # noqa: E402
from models.proposal import Proposal, ProposalCategory, ProposalStatus  # noqa: E402
from utils.crypto_utils import generate_api_key, hash_api_key, compute_webhook_signature  # noqa: E402
from utils.time_utils import utcnow  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def fixed_clock(moment=NOW):
    return lambda: moment


@pytest.fixture(scope="function")
def app():
    """
    Create a Flask app for testing with fresh in-memory database.

    Each test gets a clean database and an active application context.
    """
    from app import create_app

    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def db_session(app):
    """Provide the database session bound to the test app context."""
    yield db.session


@pytest.fixture(scope="function")
def client(app):
    """Create a test client for HTTP endpoint testing."""
    return app.test_client()


def create_member(username='alice', token_balance=0, is_admin=False, tier=InvestorTier.RETAIL,
                  early_investor=False, email=None):
    """
    Create a member directly in the database.

    Returns:
        The member's plaintext API key
    """
    api_key = generate_api_key()
    with session_scope() as session:
        session.add(Member(
            username=username,
            api_key_hash=hash_api_key(api_key),
            token_balance=token_balance,
            is_admin=is_admin,
            tier=tier,
            early_investor=early_investor,
            email=email or f'{username}@example.com',
        ))
    return api_key


def create_proposal_row(status=ProposalStatus.ACTIVE, quorum=1000, start=None, end=None,
                        votes_for=0, votes_against=0, votes_abstain=0, created_by='alice', now=None):
    """
    Insert a proposal directly, bypassing validation.

    The voting window defaults to one hour before ``now`` until one day after.

    Returns:
        The new proposal id
    """
    now = now or utcnow()
    proposal = Proposal(
        title='Allocate treasury reserve',
        description='Move part of the reserve into the operating budget.',
        category=ProposalCategory.TREASURY,
        status=status,
        start_date=start or now - timedelta(hours=1),
        end_date=end or now + timedelta(days=1),
        quorum=quorum,
        votes_for=votes_for,
        votes_against=votes_against,
        votes_abstain=votes_abstain,
        created_by=created_by,
    )
    with session_scope() as session:
        session.add(proposal)
        session.flush()
        proposal_id = proposal.id
    return proposal_id


def reload(model, ident):
    """Fetch a fresh copy of a row, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, ident)


def sign_body(body: bytes, secret=TestingConfig.KYC_WEBHOOK_SECRET) -> str:
    return compute_webhook_signature(body, secret)


def proposal_input(**overrides):
    data = {
        'title': 'Fund the audit',
        'description': 'Commission an external security audit.',
        'category': 'technical',
        'startDate': '2026-03-01T00:00:00Z',
        'endDate': '2026-03-15T00:00:00Z',
        'quorum': 1000,
    }
    data.update(overrides)
    return data


def webhook_payload(session_id='sess-1', event='session_started', status='in_progress', **data):
    return {
        'sessionId': session_id,
        'status': status,
        'event': event,
        'timestamp': '2026-03-02T12:00:00Z',
        'data': data,
    }


def passing_verification_data(risk_score=85):
    return {
        'documents': [
            {'id': 'doc-passport', 'type': 'passport', 'status': 'verified', 'confidence': 0.98,
             'extractedData': {'documentNumber': 'X1234567'}},
        ],
        'biometrics': {
            'faceMatch': {'confidence': 0.95, 'verified': True},
            'livenessCheck': {'score': 0.97, 'passed': True},
        },
        'complianceChecks': {
            'amlScreening': {'passed': True, 'riskLevel': 'low', 'matches': []},
            'sanctionsCheck': {'passed': True, 'matches': []},
            'pepCheck': {'passed': True, 'matches': []},
        },
        'riskScore': risk_score,
        'extractedPersonalInfo': {'firstName': 'Ada', 'lastName': 'Lovelace'},
        'extractedAddress': {'city': 'London', 'country': 'GB'},
    }
