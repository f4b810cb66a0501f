"""
Persisted audit trail.

Audit entries are written in their own transaction so they survive even when
the operation they describe is rolled back. Rows are append-only.
"""

from sqlalchemy import event

from db.database import db
from utils.error_handling import ConflictError
from utils.time_utils import utcnow, isoformat


class AuditEntry(db.Model):
    """
    Append-only audit entry.

    Attributes:
        action (str): Machine-readable action, e.g. WEBHOOK_RECEIVED
        description (str): Human-readable description
        metadata_json (dict): Raw payload or error details
        session_id (str, optional): Verification session the entry relates to
    """

    __tablename__ = 'audit_entries'

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    metadata_json = db.Column('metadata', db.JSON, nullable=True)
    session_id = db.Column(db.String(128), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'action': self.action,
            'description': self.description,
            'metadata': self.metadata_json,
            'sessionId': self.session_id,
            'createdAt': isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<AuditEntry(id={self.id}, action='{self.action}', session='{self.session_id}')>"


@event.listens_for(AuditEntry, 'before_update')
@event.listens_for(AuditEntry, 'before_delete')
def _reject_mutation(mapper, connection, target):
    raise ConflictError('Audit entries are append-only', 'IMMUTABLE_RECORD')
