"""
ManagementSession Model for AppBase.

Represents a signed login session on one of the management surfaces.
The session record is the source of truth: the signed token only carries
its id, so revoking a session (deleting the row) immediately invalidates
the token.

Features:
- 256-bit random session ids
- Sliding expiry capped by an absolute lifetime
- Session-bound CSRF secret
- Short-lived elevation for restricted Record Inspector fields
"""

import secrets
from datetime import timedelta

from appbase.models import db, DateTimeUTC, JSONList, utcnow, isoformat


class ManagementSession(db.Model):
    """
    SQLAlchemy model representing an operator session.

    Attributes:
        id: Random session id, embedded as the ``sid`` claim of the signed token
        principal_id: Principal who owns the session
        role: Role snapshot taken at login
        scopes: Scope snapshot taken at login
        csrf_secret: Token that must accompany every mutating request
        issued_at: Timestamp when the session was created
        expires_at: Sliding expiry, pushed forward on activity
        absolute_expires_at: Hard cap on the session lifetime
        elevated_until: End of the current elevation window, if any
        last_active: Timestamp of the last validated request
        ip_address: Client address at login
        user_agent: Client user agent at login
    """

    __tablename__ = 'sessions'

    id = db.Column(db.String(64), primary_key=True)
    principal_id = db.Column(
        db.String(36),
        db.ForeignKey('principals.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    role = db.Column(db.String(20), nullable=False)
    scopes = db.Column(JSONList(), nullable=False, default=list)
    csrf_secret = db.Column(db.String(64), nullable=False)
    issued_at = db.Column(DateTimeUTC(), nullable=False, default=utcnow)
    expires_at = db.Column(DateTimeUTC(), nullable=False)
    absolute_expires_at = db.Column(DateTimeUTC(), nullable=False)
    elevated_until = db.Column(DateTimeUTC(), nullable=True)
    last_active = db.Column(DateTimeUTC(), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    @classmethod
    def generate_id(cls):
        """Generate a session id with 256 bits of randomness."""
        return secrets.token_urlsafe(32)

    @classmethod
    def generate_csrf_secret(cls):
        return secrets.token_urlsafe(32)

    @classmethod
    def create(cls, principal, ttl_seconds, max_lifetime_seconds, ip_address=None, user_agent=None):
        """
        Build a new session for a principal (not yet added to any transaction).

        Args:
            principal: The authenticated Principal
            ttl_seconds: Sliding expiry window
            max_lifetime_seconds: Absolute lifetime cap
            ip_address: Client IP address
            user_agent: Client user agent string
        """
        now = utcnow()
        absolute = now + timedelta(seconds=max_lifetime_seconds)
        return cls(
            id=cls.generate_id(),
            principal_id=principal.id,
            role=principal.role,
            scopes=list(principal.scopes or []),
            csrf_secret=cls.generate_csrf_secret(),
            issued_at=now,
            expires_at=min(now + timedelta(seconds=ttl_seconds), absolute),
            absolute_expires_at=absolute,
            last_active=now,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )

    def is_expired(self, now=None):
        now = now or utcnow()
        return now > self.expires_at or now > self.absolute_expires_at

    def is_elevated(self, now=None):
        if self.elevated_until is None:
            return False
        return (now or utcnow()) < self.elevated_until

    def refresh(self, ttl_seconds, now=None):
        """Push the sliding expiry forward, never past the absolute cap."""
        now = now or utcnow()
        self.last_active = now
        self.expires_at = min(now + timedelta(seconds=ttl_seconds), self.absolute_expires_at)

    def to_dict(self):
        """Serialize the session. The id and CSRF secret are never included."""
        return {
            'principal_id': self.principal_id,
            'role': self.role,
            'scopes': list(self.scopes or []),
            'issued_at': isoformat(self.issued_at),
            'expires_at': isoformat(self.expires_at),
            'absolute_expires_at': isoformat(self.absolute_expires_at),
            'elevated_until': isoformat(self.elevated_until),
            'last_active': isoformat(self.last_active),
            'ip_address': self.ip_address,
        }

    def __repr__(self):
        return f'<ManagementSession principal={self.principal_id} role={self.role}>'
