# KYC service driving identity verification from provider webhooks

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from config import Config
from db.session_manager import session_scope, read_scope, detach, upsert
from models.audit_entry import AuditEntry
from models.member import Member
from models.verification import (
    VerificationRecord, VerificationSession, DocumentResult, BiometricResult,
    SessionStatus, VerificationStatus, DocumentStatus,
)
from utils.audit_logger import audit_logger, AuditEventType
from utils.error_handling import ValidationError, ConflictError, SessionNotFoundError, PersistenceError
from utils.time_utils import utcnow, as_utc, isoformat, parse_timestamp

logger = logging.getLogger(__name__)

WEBHOOK_RECEIVED = 'WEBHOOK_RECEIVED'
WEBHOOK_ERROR = 'WEBHOOK_ERROR'

SESSION_STARTED = 'session_started'
DOCUMENT_UPLOADED = 'document_uploaded'
VERIFICATION_COMPLETED = 'verification_completed'
SESSION_EXPIRED = 'session_expired'

EVENT_STATUSES = ('pending', 'in_progress', 'completed', 'failed')
COMPLIANCE_CHECKS = ('amlScreening', 'sanctionsCheck', 'pepCheck')

OPEN_SESSION_STATUSES = (SessionStatus.PENDING, SessionStatus.IN_PROGRESS)

EXPIRED_REASON = 'Session expired'
FAILED_CHECKS_REASON = 'Verification checks failed'


@dataclass
class DocumentPayload:
    document_id: str
    document_type: Optional[str]
    status: DocumentStatus
    confidence: Optional[float] = None
    extracted_data: Dict[str, Any] = field(default_factory=dict)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class WebhookEvent:
    """A validated identity-provider webhook payload."""
    session_id: str
    status: str
    event: str
    timestamp: Optional[Any]
    data: Dict[str, Any]
    documents: List[DocumentPayload]

    @classmethod
    def from_payload(cls, payload) -> 'WebhookEvent':
        """
        Validate a decoded webhook body.

        Unknown event names are accepted here so they can be ignored later;
        structurally invalid payloads raise ValidationError listing every
        offending field.
        """
        if not isinstance(payload, dict):
            raise ValidationError('Webhook payload must be a JSON object')

        errors: Dict[str, str] = {}

        session_id = payload.get('sessionId')
        if not isinstance(session_id, str) or not session_id.strip():
            errors['sessionId'] = 'sessionId is required'

        event = payload.get('event')
        if not isinstance(event, str) or not event:
            errors['event'] = 'event is required'

        status = payload.get('status')
        if status not in EVENT_STATUSES:
            errors['status'] = f"status must be one of: {', '.join(EVENT_STATUSES)}"

        raw_timestamp = payload.get('timestamp')
        timestamp = parse_timestamp(raw_timestamp)
        if raw_timestamp is not None and timestamp is None:
            errors['timestamp'] = 'timestamp must be an ISO-8601 string'

        data = payload.get('data') or {}
        if not isinstance(data, dict):
            errors['data'] = 'data must be an object'
            data = {}

        documents = []
        raw_documents = data.get('documents') or []
        if not isinstance(raw_documents, list):
            errors['data.documents'] = 'documents must be a list'
            raw_documents = []
        for index, doc in enumerate(raw_documents):
            key = f'data.documents[{index}]'
            if not isinstance(doc, dict) or not doc.get('id'):
                errors[key] = 'document id is required'
                continue
            try:
                doc_status = DocumentStatus(doc.get('status'))
            except ValueError:
                errors[key] = 'document status must be verified, rejected or pending'
                continue
            if doc.get('confidence') is not None and not _is_number(doc['confidence']):
                errors[key] = 'document confidence must be a number'
                continue
            if doc.get('extractedData') is not None and not isinstance(doc['extractedData'], dict):
                errors[key] = 'document extractedData must be an object'
                continue
            documents.append(DocumentPayload(
                document_id=str(doc['id']),
                document_type=doc.get('type'),
                status=doc_status,
                confidence=doc.get('confidence'),
                extracted_data=doc.get('extractedData') or {},
            ))

        risk_score = data.get('riskScore')
        if risk_score is not None and (not _is_number(risk_score) or not 0 <= risk_score <= 100):
            errors['data.riskScore'] = 'riskScore must be a number between 0 and 100'

        for key in ('biometrics', 'complianceChecks', 'extractedPersonalInfo', 'extractedAddress'):
            if data.get(key) is not None and not isinstance(data[key], dict):
                errors[f'data.{key}'] = f'{key} must be an object'

        biometrics = data.get('biometrics') if isinstance(data.get('biometrics'), dict) else {}
        for key, score in (('faceMatch', 'confidence'), ('livenessCheck', 'score')):
            check = biometrics.get(key)
            if check is None:
                continue
            if not isinstance(check, dict):
                errors[f'data.biometrics.{key}'] = f'{key} must be an object'
            elif check.get(score) is not None and not _is_number(check[score]):
                errors[f'data.biometrics.{key}.{score}'] = f'{score} must be a number'

        compliance = data.get('complianceChecks') if isinstance(data.get('complianceChecks'), dict) else {}
        for name in COMPLIANCE_CHECKS:
            if compliance.get(name) is not None and not isinstance(compliance[name], dict):
                errors[f'data.complianceChecks.{name}'] = f'{name} must be an object'

        if errors:
            raise ValidationError('Malformed webhook payload', field_errors=errors)

        return cls(
            session_id=session_id.strip(),
            status=status,
            event=event,
            timestamp=timestamp,
            data=data,
            documents=documents,
        )


@dataclass
class VerificationSnapshot:
    """Accumulated sub-results of a verification session."""
    document_statuses: List[DocumentStatus] = field(default_factory=list)
    face_match_verified: bool = False
    liveness_passed: bool = False
    compliance: Optional[Dict[str, Any]] = None
    risk_score: Optional[float] = None


@dataclass
class SessionResults:
    """Everything the provider has reported for one session."""
    record: VerificationRecord
    session: VerificationSession
    documents: List[DocumentResult]
    biometrics: Optional[BiometricResult] = None

    def to_dict(self) -> dict:
        return {
            'sessionId': self.session.session_id,
            'sessionStatus': self.session.status.value,
            'status': self.record.status.value,
            'declineReason': self.record.decline_reason,
            'documents': [document.to_dict() for document in self.documents],
            'biometrics': self.biometrics.to_dict() if self.biometrics is not None else None,
            'complianceChecks': self.record.compliance_data,
            'riskScore': self.record.risk_score,
            'completedAt': isoformat(self.record.completed_at),
        }


def _check_passed(
compliance: Optional[Dict[str, Any]], name: str) -> bool:
    check = (compliance or {}).get(name)
    return isinstance(check, dict) and check.get('passed') is True


def determine_final_status(snapshot: VerificationSnapshot, event_status: Optional[str],
                           require_documents: bool = True,
                           min_risk_score: float = 70) -> VerificationStatus:
    """
    Derive the verification decision from accumulated sub-results.

    Approved only when documents, biometrics, compliance and risk all pass.
    Otherwise a ``completed`` event declines and anything else stays pending.

    Args:
        snapshot: Every sub-result persisted for the session so far
        event_status: Top-level status of the triggering event
        require_documents: When True an empty document set does not count as verified
        min_risk_score: Lowest acceptable aggregate risk score
    """
    if snapshot.document_statuses:
        documents_verified = all(s == DocumentStatus.VERIFIED for s in snapshot.document_statuses)
    else:
        documents_verified = not require_documents

    biometrics_verified = snapshot.face_match_verified and snapshot.liveness_passed
    compliance_passed = all(_check_passed(snapshot.compliance, name) for name in COMPLIANCE_CHECKS)
    risk_acceptable = snapshot.risk_score is not None and snapshot.risk_score >= min_risk_score

    if documents_verified and biometrics_verified and compliance_passed and risk_acceptable:
        return VerificationStatus.APPROVED
    if event_status == 'completed':
        return VerificationStatus.DECLINED
    return VerificationStatus.PENDING


class KycService:
    """
    Service for identity verification sessions.
    Handles session creation, status lookups and provider webhook events.
    """

    def __init__(self, clock=utcnow, require_documents: Optional[bool] = None,
                 min_risk_score: Optional[float] = None):
        self.clock = clock
        self.require_documents = Config.KYC_REQUIRE_DOCUMENTS if require_documents is None else require_documents
        self.min_risk_score = Config.KYC_MIN_RISK_SCORE if min_risk_score is None else min_risk_score
        self._handlers = {
            SESSION_STARTED: self._on_session_started,
            DOCUMENT_UPLOADED: self._on_document_uploaded,
            VERIFICATION_COMPLETED: self._on_verification_completed,
            SESSION_EXPIRED: self._on_session_expired,
        }

    def _now(self):
        return as_utc(self.clock())

    # --- Sessions ---

    def start_session(self, provider_session_id: str, verification_url: Optional[str] = None,
                      member: Optional[Member] = None, email: Optional[str] = None) -> VerificationRecord:
        """
        Register a provider session and its pending verification record.

        Raises:
            ValidationError: missing session id or subject
            ConflictError: the provider session id is already registered
        """
        errors = {}
        if not isinstance(provider_session_id, str) or not provider_session_id.strip():
            errors['sessionId'] = 'sessionId is required'
        email = email.strip().lower() if isinstance(email, str) and email.strip() else None
        if email is None and member is not None and member.email:
            email = member.email.strip().lower()
        if member is None and email is None:
            errors['email'] = 'email is required'
        if errors:
            raise ValidationError('Invalid verification session', field_errors=errors)

        provider_session_id = provider_session_id.strip()
        now = self._now()
        with session_scope() as session:
            existing = session.query(VerificationSession.id).filter_by(session_id=provider_session_id).first()
            if existing is not None:
                raise ConflictError(f'Verification session {provider_session_id} already exists',
                                    'DUPLICATE_SESSION')
            record = VerificationRecord(
                member_id=member.id if member is not None else None,
                email=email,
                provider_session_id=provider_session_id,
                verification_url=verification_url,
                status=VerificationStatus.PENDING,
                created_at=now,
            )
            record.session = VerificationSession(
                session_id=provider_session_id,
                status=SessionStatus.PENDING,
                created_at=now,
            )
            session.add(record)
            try:
                session.flush()
            except IntegrityError as e:
                raise ConflictError(f'Verification session {provider_session_id} already exists',
                                    'DUPLICATE_SESSION') from e
            detach(session, record.session, record)

        audit_logger.log_event(
            AuditEventType.KYC_SESSION_START,
            username=member.username if member is not None else None,
            message=f'Verification session {provider_session_id} started',
            session_id=provider_session_id
        )
        return record

    def check_status(self, email: Optional[str] = None, session_id: Optional[str] = None) -> Optional[VerificationRecord]:
        """
        Return the record for a session, or the latest record for an email.

        Returns None when no verification has been started.
        """
        if not email and not session_id:
            raise ValidationError('email or sessionId is required',
                                  field_errors={'email': 'email or sessionId is required'})
        for name, value in (('email', email), ('sessionId', session_id)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f'{name} must be a string', field_errors={name: f'{name} must be a string'})
        with read_scope() as session:
            query = session.query(VerificationRecord)
            if session_id:
                query = query.filter(VerificationRecord.provider_session_id == session_id)
            else:
                query = query.filter(VerificationRecord.email == email.strip().lower())
            return query.order_by(VerificationRecord.created_at.desc(), VerificationRecord.id.desc()).first()

    def get_session(self, session_id: str) -> VerificationSession:
        with read_scope() as session:
            verification_session = session.query(VerificationSession).filter_by(session_id=session_id).one_or_none()
            if verification_session is None:
                raise SessionNotFoundError(session_id)
            return verification_session

    def list_documents(self, session_id: str) -> List[DocumentResult]:
        with read_scope() as session:
            return (session.query(DocumentResult)
                    .filter_by(session_id=session_id)
                    .order_by(DocumentResult.document_id)
                    .all())

    def get_session_results(self, session_id: str) -> 'SessionResults':
        """
        Collect every sub-result recorded for a session.

        Raises:
            SessionNotFoundError: unknown session id
        """
        verification_session = self.get_session(session_id)
        documents = self.list_documents(session_id)
        with read_scope() as session:
            biometrics = session.query(BiometricResult).filter_by(session_id=session_id).one_or_none()
            return SessionResults(
                record=verification_session.record,
                session=verification_session,
                documents=documents,
                biometrics=biometrics,
            )

    # --- Audit trail ---

    def record_audit_entry(self, action: str, description: str, metadata=None,
                           session_id: Optional[str] = None) -> AuditEntry:
        """Commit an audit entry in its own transaction."""
        with session_scope() as session:
            entry = AuditEntry(
                action=action,
                description=description,
                metadata_json=metadata,
                session_id=session_id,
                created_at=self._now(),
            )
            session.add(entry)
            return detach(session, entry)

    def list_audit_entries(self, session_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        with read_scope() as session:
            query = session.query(AuditEntry)
            if session_id:
                query = query.filter(AuditEntry.session_id == session_id)
            return query.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).limit(limit).all()

    # --- Webhooks ---

    def handle_webhook_event(self, payload) -> bool:
        """
        Apply one provider webhook event.

        The receipt is audited before dispatch. Any failure rolls the event
        back, is audited as WEBHOOK_ERROR and re-raised.

        Returns:
            True if the event changed state, False if it was ignored

        Raises:
            ValidationError: malformed payload
            SessionNotFoundError: unknown session id
            PersistenceError: store failure
        """
        session_id = payload.get('sessionId') if isinstance(payload, dict) else None
        event_name = payload.get('event') if isinstance(payload, dict) else None
        if not isinstance(session_id, str):
            session_id = None

        self.record_audit_entry(
            WEBHOOK_RECEIVED,
            f'Didit webhook received: {event_name}',
            metadata=payload,
            session_id=session_id,
        )
        audit_logger.log_event(AuditEventType.KYC_WEBHOOK_RECEIVED, message=f'Webhook {event_name} received',
                               session_id=session_id, webhook_event=event_name)

        try:
            event = WebhookEvent.from_payload(payload)
            decision = None
            with session_scope() as session:
                verification_session = (session.query(VerificationSession)
                                        .filter_by(session_id=event.session_id)
                                        .one_or_none())
                if verification_session is None:
                    raise SessionNotFoundError(event.session_id)

                if verification_session.is_terminal:
                    logger.info("Ignoring %s for session %s in terminal state %s",
                                event.event, event.session_id, verification_session.status.value)
                    return False

                handler = self._handlers.get(event.event)
                if handler is None:
                    logger.warning("Unknown webhook event %r for session %s", event.event, event.session_id)
                    return False

                applied = handler(session, verification_session, event)
                if applied and event.event in (VERIFICATION_COMPLETED, SESSION_EXPIRED):
                    decision = verification_session.record.status
        except Exception as e:
            logger.error("Webhook processing failed for session %s: %s", session_id, e)
            self._record_failure(e, payload, session_id)
            raise

        audit_logger.log_event(AuditEventType.KYC_WEBHOOK_PROCESSED, message=f'Webhook {event.event} processed',
                               session_id=event.session_id, applied=applied)
        if decision is not None:
            self._notify_decision(event.session_id, decision)
        return applied

    def _record_failure(self, error: Exception, payload, session_id: Optional[str]) -> None:
        audit_logger.log_error('webhook', message=f'Webhook processing failed: {error}', session_id=session_id)
        try:
            self.record_audit_entry(
                WEBHOOK_ERROR,
                f'Webhook processing failed: {error}',
                metadata={'error': str(error), 'errorType': type(error).__name__, 'payload': payload},
                session_id=session_id,
            )
        except PersistenceError:
            logger.exception("Could not record webhook failure for session %s", session_id)

    def _notify_decision(self, session_id: str, status: VerificationStatus) -> None:
        audit_logger.log_kyc_decision(session_id, status.value)
        if status == VerificationStatus.DECLINED:
            logger.warning("High-priority: KYC declined for session %s", session_id)
        else:
            logger.info("KYC session %s finished with status %s", session_id, status.value)

    def _event_time(self, event: WebhookEvent):
        return event.timestamp or self._now()

    def _transition(self, session, session_id: str, to_status: SessionStatus, from_statuses, when) -> bool:
        """Conditionally move a session between states; True if the row changed."""
        result = session.execute(
            update(VerificationSession)
            .where(VerificationSession.session_id == session_id)
            .where(VerificationSession.status.in_(from_statuses))
            .values(status=to_status, last_event_at=when, updated_at=self._now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _upsert_documents(self, session, event: WebhookEvent, when) -> None:
        for doc in event.documents:
            upsert(
                session, DocumentResult,
                {
                    'document_type': doc.document_type,
                    'status': doc.status,
                    'confidence_score': doc.confidence,
                    'verification_data': doc.extracted_data,
                    'uploaded_at': when,
                    'verified_at': when if doc.status == DocumentStatus.VERIFIED else None,
                },
                session_id=event.session_id,
                document_id=doc.document_id,
            )

    def _on_session_started(self, session, verification_session, event: WebhookEvent) -> bool:
        when = self._event_time(event)
        moved = self._transition(session, event.session_id, SessionStatus.IN_PROGRESS,
                                 (SessionStatus.PENDING,), when)
        if not moved:
            logger.debug("Session %s already started", event.session_id)
        return moved

    def _on_document_uploaded(self, session, verification_session, event: WebhookEvent) -> bool:
        when = self._event_time(event)
        # Guard first so a concurrently expired session is left untouched
        if not self._transition(session, event.session_id, SessionStatus.IN_PROGRESS, OPEN_SESSION_STATUSES, when):
            return False
        self._upsert_documents(session, event, when)
        return True

    def _on_verification_completed(self, session, verification_session, event: WebhookEvent) -> bool:
        when = self._event_time(event)
        if not self._transition(session, event.session_id, SessionStatus.COMPLETED, OPEN_SESSION_STATUSES, when):
            return False

        data = event.data
        self._upsert_documents(session, event, when)

        biometrics = data.get('biometrics')
        if biometrics:
            face_match = biometrics.get('faceMatch') or {}
            liveness = biometrics.get('livenessCheck') or {}
            upsert(
                session, BiometricResult,
                {
                    'face_match_confidence': face_match.get('confidence'),
                    'face_match_verified': face_match.get('verified') is True,
                    'liveness_score': liveness.get('score'),
                    'liveness_passed': liveness.get('passed') is True,
                    'biometric_data': biometrics,
                },
                session_id=event.session_id,
            )

        record = verification_session.record
        if data.get('riskScore') is not None:
            record.risk_score = data['riskScore']
        if data.get('complianceChecks') is not None:
            record.compliance_data = data['complianceChecks']
        if data.get('extractedPersonalInfo') is not None or data.get('extractedAddress') is not None:
            record.extracted_data = {
                'personalInfo': data.get('extractedPersonalInfo'),
                'address': data.get('extractedAddress'),
            }
        record.verification_data = data

        status = determine_final_status(
            self._snapshot(session, event.session_id, record),
            event.status,
            require_documents=self.require_documents,
            min_risk_score=self.min_risk_score,
        )
        record.status = status
        if status == VerificationStatus.PENDING:
            record.decline_reason = None
            record.completed_at = None
        else:
            record.decline_reason = FAILED_CHECKS_REASON if status == VerificationStatus.DECLINED else None
            record.completed_at = when
        session.flush()
        return True

    def _on_session_expired(self, session, verification_session, event: WebhookEvent) -> bool:
        when = self._event_time(event)
        if not self._transition(session, event.session_id, SessionStatus.EXPIRED, OPEN_SESSION_STATUSES, when):
            return False
        record = verification_session.record
        record.status = VerificationStatus.DECLINED
        record.decline_reason = EXPIRED_REASON
        record.completed_at = when
        session.flush()
        return True

    @staticmethod
    def _snapshot(session, session_id: str, record: VerificationRecord) -> VerificationSnapshot:
        statuses = [row.status for row in session.query(DocumentResult.status).filter_by(session_id=session_id)]
        biometric = session.query(BiometricResult).filter_by(session_id=session_id).one_or_none()
        return VerificationSnapshot(
            document_statuses=statuses,
            face_match_verified=bool(biometric and biometric.face_match_verified),
            liveness_passed=bool(biometric and biometric.liveness_passed),
            compliance=record.compliance_data,
            risk_score=record.risk_score,
        )
