"""
Identity verification (KYC) models.

A VerificationRecord is the member-facing KYC outcome. It is linked to exactly
one VerificationSession, identified by the session id issued by the external
identity provider. Sub-results arrive through webhooks and accumulate in
DocumentResult and BiometricResult rows; compliance screenings and the risk
score are stored on the record itself.
"""

import enum

from sqlalchemy import Enum, UniqueConstraint

from db.database import db
from utils.time_utils import utcnow, isoformat


class SessionStatus(enum.Enum):
    """Verification session states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_SESSION_STATUSES = (SessionStatus.COMPLETED, SessionStatus.EXPIRED)


class VerificationStatus(enum.Enum):
    """Derived KYC decision for a member."""
    NOT_STARTED = "not_started"
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class DocumentStatus(enum.Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"
    PENDING = "pending"


class VerificationRecord(db.Model):
    """
    KYC verification record.

    The status column is written only by the webhook state machine; there is
    no client-facing path that sets it directly.
    """

    __tablename__ = 'kyc_verifications'

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True, index=True)
    email = db.Column(db.String(254), nullable=True, index=True)
    provider_session_id = db.Column(db.String(128), unique=True, nullable=False)
    verification_url = db.Column(db.String(500), nullable=True)
    status = db.Column(Enum(VerificationStatus, name="verification_status", native_enum=False),
                       nullable=False, default=VerificationStatus.PENDING)
    decline_reason = db.Column(db.String(255), nullable=True)
    risk_score = db.Column(db.Float, nullable=True)
    compliance_data = db.Column(db.JSON, nullable=True)
    extracted_data = db.Column(db.JSON, nullable=True)
    verification_data = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    session = db.relationship('VerificationSession', back_populates='record', uselist=False)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'memberId': self.member_id,
            'email': self.email,
            'sessionId': self.provider_session_id,
            'verificationUrl': self.verification_url,
            'status': self.status.value,
            'declineReason': self.decline_reason,
            'riskScore': self.risk_score,
            'complianceData': self.compliance_data,
            'extractedData': self.extracted_data,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
            'completedAt': isoformat(self.completed_at),
        }

    def belongs_to(self, member) -> bool:
        """True if ``member`` is the subject of this verification."""
        if self.member_id is not None and self.member_id == member.id:
            return True
        return bool(self.email and member.email and self.email == member.email.strip().lower())

    def __repr__(self) -> str:
        return f"<VerificationRecord(id={self.id}, session='{self.provider_session_id}', status={self.status})>"


class VerificationSession(db.Model):
    """Provider-side session driven by webhook events."""

    __tablename__ = 'kyc_sessions'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(128), unique=True, nullable=False)
    verification_id = db.Column(db.Integer, db.ForeignKey('kyc_verifications.id'), unique=True, nullable=False)
    status = db.Column(Enum(SessionStatus, name="session_status", native_enum=False),
                       nullable=False, default=SessionStatus.PENDING)
    last_event_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    record = db.relationship('VerificationRecord', back_populates='session')

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def to_dict(self) -> dict:
        return {
            'sessionId': self.session_id,
            'status': self.status.value,
            'lastEventAt': isoformat(self.last_event_at),
        }

    def __repr__(self) -> str:
        return f"<VerificationSession(session='{self.session_id}', status={self.status})>"


class DocumentResult(db.Model):
    """Per-document verification result, keyed by (session_id, document_id)."""

    __tablename__ = 'kyc_documents'
    __table_args__ = (
        UniqueConstraint('session_id', 'document_id', name='uq_kyc_document'),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(128), db.ForeignKey('kyc_sessions.session_id'), nullable=False, index=True)
    document_id = db.Column(db.String(128), nullable=False)
    document_type = db.Column(db.String(50), nullable=True)
    status = db.Column(Enum(DocumentStatus, name="document_status", native_enum=False), nullable=False)
    confidence_score = db.Column(db.Float, nullable=True)
    verification_data = db.Column(db.JSON, nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            'documentId': self.document_id,
            'type': self.document_type,
            'status': self.status.value,
            'confidence': self.confidence_score,
            'uploadedAt': isoformat(self.uploaded_at),
            'verifiedAt': isoformat(self.verified_at),
        }


class BiometricResult(db.Model):
    """Face-match and liveness result; at most one per session."""

    __tablename__ = 'kyc_biometrics'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(128), db.ForeignKey('kyc_sessions.session_id'), unique=True, nullable=False)
    face_match_confidence = db.Column(db.Float, nullable=True)
    face_match_verified = db.Column(db.Boolean, nullable=False, default=False)
    liveness_score = db.Column(db.Float, nullable=True)
    liveness_passed = db.Column(db.Boolean, nullable=False, default=False)
    biometric_data = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            'faceMatch': {
                'confidence': self.face_match_confidence,
                'verified': bool(self.face_match_verified),
            },
            'livenessCheck': {
                'score': self.liveness_score,
                'passed': bool(self.liveness_passed),
            },
        }
