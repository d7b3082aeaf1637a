"""
AuditLog Model for AppBase.

Represents an audit log entry for a privileged action. Entries are added to
the same storage transaction as the action, so an aborted action leaves no
audit trail either.
"""

import uuid

from appbase.models import db, DateTimeUTC, utcnow, isoformat


class AuditLog(db.Model):
    """
    SQLAlchemy model representing an audit log entry.

    Attributes:
        id: Unique UUID identifier
        principal_id: Acting principal (NULL for system and anonymous actions)
        username: Username at time of action (denormalized)
        role: Role at time of action
        action: Specific action performed (e.g. 'content.approve')
        action_category: Category of the action ('auth', 'content', ...)
        resource_type: Type of resource affected
        resource_id: ID of the affected resource
        details: JSON string with additional context
        ip_address: IP address of the request
        created_at: Timestamp when the action occurred
    """

    __tablename__ = 'audit_logs'

    VALID_CATEGORIES = [
        'auth',        # Login, logout, elevation, credential changes
        'principals',  # Principal administration
        'content',     # Lifecycle transitions and edits
        'media',       # Media uploads and links
        'inspector',   # Record Inspector writes
        'settings',    # Settings and tag registry
        'system',      # CLI and bootstrap
    ]

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    principal_id = db.Column(db.String(36), nullable=True, index=True)
    username = db.Column(db.String(100), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    action_category = db.Column(db.String(50), nullable=False, index=True)
    resource_type = db.Column(db.String(50), nullable=True)
    resource_id = db.Column(db.String(64), nullable=True, index=True)
    details = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    created_at = db.Column(DateTimeUTC(), default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'principal_id': self.principal_id,
            'username': self.username,
            'role': self.role,
            'action': self.action,
            'action_category': self.action_category,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': self.details,
            'ip_address': self.ip_address,
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<AuditLog {self.action} by {self.username}>'
