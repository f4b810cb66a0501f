"""Integration tests for the KYC endpoints and the signed provider webhook."""

# pylint: disable=redefined-outer-name

import json
import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from flask.testing import FlaskClient

from conftest import create_member, sign_body, webhook_payload, passing_verification_data
from models.audit_entry import AuditEntry
from models.verification import VerificationRecord, VerificationStatus

WEBHOOK_URL = '/webhooks/didit'


@pytest.fixture
def member_key(app):
    return create_member('ada', token_balance=10, email='ada@example.com')


@pytest.fixture
def admin_key(app):
    return create_member('compliance', is_admin=True)


@pytest.fixture
def other_key(app):
    return create_member('mallory', email='mallory@example.com')


@pytest.fixture
def started_session(client: FlaskClient, member_key):
    rv = client.post('/kyc/sessions', json={'sessionId': 'sess-1', 'verificationUrl': 'https://verify.example/s1'},
                     headers={'X-API-KEY': member_key})
    assert rv.status_code == 201
    return 'sess-1'


def post_webhook(client, payload, signature=None, sign=True):
    body = json.dumps(payload).encode()
    headers = {'Content-Type': 'application/json'}
    if signature is not None:
        headers['X-Didit-Signature'] = signature
    elif sign:
        headers['X-Didit-Signature'] = sign_body(body)
    return client.post(WEBHOOK_URL, data=body, headers=headers)


def test_start_session_and_check_status(client: FlaskClient, member_key, started_session):
    rv = client.post('/kyc/status', json={'email': 'ada@example.com'}, headers={'X-API-KEY': member_key})
    assert rv.status_code == 200
    data = rv.get_json()['data']
    assert data['sessionId'] == started_session
    assert data['status'] == 'pending'


def test_status_without_verification_is_not_started(client: FlaskClient, member_key):
    rv = client.post('/kyc/status', json={}, headers={'X-API-KEY': member_key})
    assert rv.get_json()['data'] == {'status': 'not_started'}


def test_status_rejects_non_string_email(client: FlaskClient, admin_key):
    rv = client.post('/kyc/status', json={'email': ['ada@example.com']}, headers={'X-API-KEY': admin_key})
    assert rv.status_code == 400


def test_start_session_requires_api_key(client: FlaskClient, app):
    assert client.post('/kyc/sessions', json={'sessionId': 'x'}).status_code == 401


def test_duplicate_session_is_a_conflict(client: FlaskClient, member_key, started_session):
    rv = client.post('/kyc/sessions', json={'sessionId': started_session}, headers={'X-API-KEY': member_key})
    assert rv.status_code == 409


def test_signed_webhook_is_processed(client: FlaskClient, started_session):
    payload = webhook_payload(started_session, event='verification_completed', status='completed',
                              **passing_verification_data())

    rv = post_webhook(client, payload)

    assert rv.status_code == 200
    assert rv.get_json()['data']['applied'] is True
    record = VerificationRecord.query.filter_by(provider_session_id=started_session).one()
    assert record.status == VerificationStatus.APPROVED


def test_signature_prefix_is_accepted(client: FlaskClient, started_session):
    payload = webhook_payload(started_session)
    body = json.dumps(payload).encode()
    rv = client.post(WEBHOOK_URL, data=body, headers={
        'Content-Type': 'application/json',
        'X-Didit-Signature': 'sha256=' + sign_body(body),
    })
    assert rv.status_code == 200


def test_missing_signature_is_rejected(client: FlaskClient, started_session):
    rv = post_webhook(client, webhook_payload(started_session), sign=False)
    assert rv.status_code == 401
    assert rv.get_json()['error_code'] == 'INVALID_SIGNATURE'
    assert AuditEntry.query.count() == 0


def test_bad_signature_is_rejected(client: FlaskClient, started_session):
    rv = post_webhook(client, webhook_payload(started_session), signature='0' * 64)
    assert rv.status_code == 401


def test_signature_over_different_body_is_rejected(client: FlaskClient, started_session):
    signature = sign_body(json.dumps(webhook_payload(started_session, event='session_expired')).encode())
    rv = post_webhook(client, webhook_payload(started_session), signature=signature)
    assert rv.status_code == 401


def test_missing_secret_rejects_unless_unsigned_allowed(client: FlaskClient, app, started_session):
    app.config['KYC_WEBHOOK_SECRET'] = ''
    assert post_webhook(client, webhook_payload(started_session), sign=False).status_code == 401

    app.config['KYC_WEBHOOK_ALLOW_UNSIGNED'] = True
    assert post_webhook(client, webhook_payload(started_session), sign=False).status_code == 200


def test_malformed_json_is_bad_request(client: FlaskClient, app):
    body = b'{not json'
    rv = client.post(WEBHOOK_URL, data=body, headers={
        'Content-Type': 'application/json',
        'X-Didit-Signature': sign_body(body),
    })
    assert rv.status_code == 400


def test_invalid_payload_is_bad_request(client: FlaskClient, started_session):
    rv = post_webhook(client, {'sessionId': started_session, 'event': 'session_started', 'status': 'bogus'})
    assert rv.status_code == 400
    assert 'status' in rv.get_json()['field_errors']


def test_unknown_session_is_not_found(client: FlaskClient, app):
    rv = post_webhook(client, webhook_payload('ghost'))
    assert rv.status_code == 404
    assert [e.action for e in AuditEntry.query.order_by(AuditEntry.id)] == ['WEBHOOK_RECEIVED', 'WEBHOOK_ERROR']


def test_wrong_method_is_not_allowed(client: FlaskClient, app):
    assert client.get(WEBHOOK_URL).status_code == 405


def test_webhook_replay_is_idempotent(client: FlaskClient, member_key, started_session):
    payload = webhook_payload(started_session, event='document_uploaded', documents=[
        {'id': 'd1', 'type': 'passport', 'status': 'verified'},
    ])
    assert post_webhook(client, payload).status_code == 200
    assert post_webhook(client, payload).status_code == 200

    rv = client.post('/kyc/status', json={'sessionId': started_session}, headers={'X-API-KEY': member_key})
    assert rv.get_json()['data']['status'] == 'pending'


def complete_verification(client, session_id):
    payload = webhook_payload(session_id, event='verification_completed', status='completed',
                              **passing_verification_data())
    assert post_webhook(client, payload).status_code == 200


def test_status_requires_api_key(client: FlaskClient, started_session):
    complete_verification(client, started_session)

    rv = client.post('/kyc/status', json={'email': 'ada@example.com'})

    assert rv.status_code == 401
    assert 'data' not in rv.get_json()


def test_status_of_another_member_is_forbidden(client: FlaskClient, other_key, started_session):
    complete_verification(client, started_session)

    by_email = client.post('/kyc/status', json={'email': 'ada@example.com'}, headers={'X-API-KEY': other_key})
    by_session = client.post('/kyc/status', json={'sessionId': started_session}, headers={'X-API-KEY': other_key})

    for rv in (by_email, by_session):
        assert rv.status_code == 403
        assert 'data' not in rv.get_json()
        assert 'Lovelace' not in rv.get_data(as_text=True)


def test_unknown_email_of_another_member_is_forbidden(client: FlaskClient, other_key):
    rv = client.post('/kyc/status', json={'email': 'nobody@example.com'}, headers={'X-API-KEY': other_key})
    assert rv.status_code == 403


def test_owner_and_admin_see_full_status(client: FlaskClient, member_key, admin_key, started_session):
    complete_verification(client, started_session)

    own = client.post('/kyc/status', json={}, headers={'X-API-KEY': member_key})
    admin = client.post('/kyc/status', json={'email': 'ada@example.com'}, headers={'X-API-KEY': admin_key})

    for rv in (own, admin):
        assert rv.status_code == 200
        data = rv.get_json()['data']
        assert data['status'] == 'approved'
        assert data['extractedData']['personalInfo']['lastName'] == 'Lovelace'


def test_session_results(client: FlaskClient, member_key, started_session):
    complete_verification(client, started_session)

    rv = client.get(f'/kyc/sessions/{started_session}/results', headers={'X-API-KEY': member_key})

    assert rv.status_code == 200
    data = rv.get_json()['data']
    assert data['sessionId'] == started_session
    assert data['sessionStatus'] == 'completed'
    assert data['status'] == 'approved'
    assert data['riskScore'] == 85
    assert data['complianceChecks']['sanctionsCheck']['passed'] is True
    assert [d['documentId'] for d in data['documents']] == ['doc-passport']
    assert data['biometrics'] == {
        'faceMatch': {'confidence': 0.95, 'verified': True},
        'livenessCheck': {'score': 0.97, 'passed': True},
    }


def test_session_results_before_any_event(client: FlaskClient, member_key, started_session):
    rv = client.get(f'/kyc/sessions/{started_session}/results', headers={'X-API-KEY': member_key})

    data = rv.get_json()['data']
    assert data['status'] == 'pending'
    assert data['documents'] == []
    assert data['biometrics'] is None
    assert data['riskScore'] is None


def test_session_results_access(client: FlaskClient, other_key, admin_key, started_session):
    url = f'/kyc/sessions/{started_session}/results'
    complete_verification(client, started_session)

    assert client.get(url).status_code == 401
    assert client.get(url, headers={'X-API-KEY': other_key}).status_code == 403
    assert client.get(url, headers={'X-API-KEY': admin_key}).status_code == 200
    assert client.get('/kyc/sessions/ghost/results', headers={'X-API-KEY': admin_key}).status_code == 404


def test_malformed_biometrics_are_bad_request(client: FlaskClient, started_session):
    data = passing_verification_data()
    data['biometrics'] = {'faceMatch': 'yes', 'livenessCheck': True}

    rv = post_webhook(client, webhook_payload(started_session, event='verification_completed',
                                              status='completed', **data))

    assert rv.status_code == 400
    assert set(rv.get_json()['field_errors']) == {'data.biometrics.faceMatch', 'data.biometrics.livenessCheck'}
    record = VerificationRecord.query.filter_by(provider_session_id=started_session).one()
    assert record.status == VerificationStatus.PENDING
