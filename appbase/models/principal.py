"""
Principal Model for AppBase.

Represents an operator account. The role is a closed tag (admin or
contributor); what a contributor may do beyond their own drafts is carried
as an explicit set of permission scopes.
"""

import uuid

from werkzeug.security import generate_password_hash, check_password_hash

from appbase.models import db, DateTimeUTC, JSONList, utcnow, isoformat


ROLE_ADMIN = 'admin'
ROLE_CONTRIBUTOR = 'contributor'
VALID_ROLES = (ROLE_ADMIN, ROLE_CONTRIBUTOR)

SCOPE_CAN_APPROVE = 'can-approve'
VALID_SCOPES = (SCOPE_CAN_APPROVE,)

# Granted to a session (never stored on a principal) by re-entering the password
SCOPE_INSPECT_RESTRICTED = 'inspect-restricted'


class Principal(db.Model):
    """
    SQLAlchemy model representing an authenticated actor.

    Principals are never hard-deleted; content and media keep pointing at
    their owner, so deactivation flips ``is_active`` instead.

    Attributes:
        id: Unique UUID identifier
        username: Login name, unique within the role namespace
        password_hash: Werkzeug password hash (never serialized)
        role: 'admin' or 'contributor'
        scopes: Permission scopes (contributors only), e.g. ['can-approve']
        is_active: False once the account is deactivated
        last_login_at: Timestamp of the last successful login
        created_at: Timestamp when the principal was created
        updated_at: Timestamp of the last credential or profile change
    """

    __tablename__ = 'principals'
    __table_args__ = (
        db.UniqueConstraint('role', 'username', name='uq_principals_role_username'),
    )

    ROLE_ADMIN = ROLE_ADMIN
    ROLE_CONTRIBUTOR = ROLE_CONTRIBUTOR

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = db.Column(db.String(100), nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, index=True)
    scopes = db.Column(JSONList(), nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(DateTimeUTC(), nullable=True)
    created_at = db.Column(DateTimeUTC(), default=utcnow)
    updated_at = db.Column(DateTimeUTC(), nullable=True)

    def set_password(self, password):
        """Hash and store a new password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Constant-time comparison of a candidate password against the stored hash."""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    def has_scope(self, scope):
        return scope in (self.scopes or [])

    def to_dict(self):
        """
        Serialize the principal for API responses.

        The password hash is never included.
        """
        return {
            'id': self.id,
            'username': self.username,
            'role': self.role,
            'scopes': list(self.scopes or []),
            'is_active': self.is_active,
            'last_login_at': isoformat(self.last_login_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Principal {self.role}:{self.username}>'


class Setting(db.Model):
    """Per-instance key/value setting (e.g. the contributor login prefix)."""

    __tablename__ = 'settings'

    CONTRIBUTOR_PATH_PREFIX = 'contributor_path_prefix'

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(DateTimeUTC(), default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'key': self.key,
            'value': self.value,
            'updated_at': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<Setting {self.key}>'
