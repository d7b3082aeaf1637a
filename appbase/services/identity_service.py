"""
Identity & Session Manager for AppBase.

Authenticates operators, issues signed session tokens and validates them on
every management request.

Key features:
- Per-role login IP allowlists, checked before any credential work
- Constant-time password checks, including for unknown usernames
- Session tokens signed with Flask-JWT-Extended; the token carries only the
  session id, the stored session and principal are authoritative
- Sliding expiry capped by an absolute lifetime
- Session-bound CSRF tokens for mutating requests
- Short-lived elevation for restricted Record Inspector fields
- Secret URL prefixes resolving to a management surface
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from flask import current_app
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from werkzeug.security import check_password_hash, generate_password_hash

from appbase.errors import AuthError, AuthErrorKind, AuthzError
from appbase.models import ManagementSession, Principal, Setting, utcnow
from appbase.models.principal import ROLE_ADMIN, ROLE_CONTRIBUTOR, VALID_ROLES
from appbase.storage import KeyRange, PRINCIPALS, SESSIONS, SETTINGS, storage
from appbase.utils.audit import log_action


logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    """Result of a successful login."""

    token: str
    csrf_token: str
    session: ManagementSession
    principal: Principal

    def to_dict(self):
        return {
            'csrf_token': self.csrf_token,
            'principal': self.principal.to_dict(),
            'session': self.session.to_dict(),
        }


@dataclass
class SessionContext:
    """A validated session, with the principal as currently stored."""

    session_id: str
    session: ManagementSession
    principal: Principal
    elevated: bool = False

    @property
    def role(self):
        return self.principal.role

    def to_dict(self):
        result = self.session.to_dict()
        result['elevated'] = self.elevated
        return result


def _compare(candidate: Optional[str], expected: Optional[str]) -> bool:
    if not candidate or not expected:
        return False
    return hmac.compare_digest(candidate.encode('utf-8'), expected.encode('utf-8'))


def revoke_sessions(txn, principal_id):
    """
    Delete every session of a principal inside an open transaction.

    Args:
        txn: Open storage Transaction
        principal_id: Principal whose sessions are revoked

    Returns:
        Number of sessions deleted
    """
    sessions = list(txn.scan_index(SESSIONS, 'by_principal', KeyRange(exact=principal_id)))
    for session in sessions:
        txn.delete(SESSIONS, session.id)
    return len(sessions)


class IdentityService:
    """
    Identity & Session Manager.

    Usage:
        issued = IdentityService.authenticate('admin', 'alice', 'secret', ip_address='127.0.0.1')
        context = IdentityService.validate(issued.token)
        IdentityService.invalidate(session_id=context.session_id)
    """

    _dummy_hash = None

    @classmethod
    def _get_dummy_hash(cls):
        if cls._dummy_hash is None:
            cls._dummy_hash = generate_password_hash('appbase-unknown-principal')
        return cls._dummy_hash

    @staticmethod
    def ip_allowed(role: str, ip_address: Optional[str]) -> bool:
        """
        Check a login address against the role's allowlist.

        The allowlist is a comma-separated list of addresses; '*' accepts any
        address and an empty list accepts none.
        """
        key = 'ADMIN_LOGIN_ACCEPT_IP' if role == ROLE_ADMIN else 'CONTRIBUTOR_LOGIN_ACCEPT_IP'
        raw = current_app.config.get(key) or ''
        entries = [entry.strip() for entry in raw.split(',') if entry.strip()]
        if '*' in entries:
            return True
        return ip_address is not None and ip_address in entries

    @classmethod
    def authenticate(cls, role: str, username: str, password: str,
                     ip_address: Optional[str] = None,
                     user_agent: Optional[str] = None) -> IssuedSession:
        """
        Verify credentials for a role and open a new session.

        Raises:
            AuthError(IP_NOT_ALLOWED): Address not on the role's allowlist
            AuthError(INVALID_CREDENTIALS): Unknown user or wrong password
            AuthError(ACCOUNT_DISABLED): Correct password, deactivated account
        """
        if role not in VALID_ROLES:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        if not cls.ip_allowed(role, ip_address):
            logger.warning(f'Blocked {role} login for "{username}" from {ip_address}')
            raise AuthError(AuthErrorKind.IP_NOT_ALLOWED)

        with storage.begin_transaction() as txn:
            principal = txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=(role, username or '')))

            if principal is None:
                check_password_hash(cls._get_dummy_hash(), password or '')
                logger.warning(f'Failed {role} login for unknown user "{username}" from {ip_address}')
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

            if not principal.check_password(password or ''):
                logger.warning(f'Failed {role} login for "{username}" from {ip_address}')
                log_action(txn, 'auth.login_failed', 'auth', principal=principal,
                           resource_type='principal', resource_id=principal.id,
                           ip_address=ip_address)
                txn.commit()
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

            if not principal.is_active:
                logger.warning(f'Login attempt for deactivated {role} "{username}"')
                raise AuthError(AuthErrorKind.ACCOUNT_DISABLED)

            issued = cls._open_session(txn, principal, ip_address, user_agent)
            principal.last_login_at = utcnow()
            txn.put(PRINCIPALS, principal.id, principal)
            log_action(txn, 'auth.login', 'auth', principal=principal,
                       resource_type='principal', resource_id=principal.id,
                       ip_address=ip_address)
            txn.commit()

        logger.info(f'{role} "{username}" logged in')
        return issued

    @classmethod
    def _open_session(cls, txn, principal, ip_address=None, user_agent=None) -> IssuedSession:
        config = current_app.config
        max_lifetime = config['SESSION_MAX_LIFETIME_SECONDS']
        session = ManagementSession.create(
            principal,
            ttl_seconds=config['SESSION_TTL_SECONDS'],
            max_lifetime_seconds=max_lifetime,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        txn.put(SESSIONS, session.id, session)
        token = create_access_token(
            identity=principal.id,
            additional_claims={'sid': session.id},
            expires_delta=timedelta(seconds=max_lifetime),
        )
        return IssuedSession(token=token, csrf_token=session.csrf_secret,
                             session=session, principal=principal)

    @classmethod
    def issue_session(cls, principal: Principal, ip_address: Optional[str] = None,
                      user_agent: Optional[str] = None) -> IssuedSession:
        """Open a session for an already authenticated principal."""
        with storage.begin_transaction() as txn:
            issued = cls._open_session(txn, principal, ip_address, user_agent)
            txn.commit()
        return issued

    @classmethod
    def validate(cls, token: str, csrf_token: Optional[str] = None,
                 mutating: bool = False) -> SessionContext:
        """
        Validate a session token and refresh its sliding expiry.

        Role and scopes come from the stored principal; nothing in the
        token is trusted beyond the session id and subject.

        Raises:
            AuthError(EXPIRED): Token or session past its expiry
            AuthError(INVALID): Bad signature, unknown or revoked session,
                                subject mismatch, role changed since login
            AuthError(ACCOUNT_DISABLED): Principal deactivated
            AuthError(CSRF_MISMATCH): Mutating request without the session's CSRF token
        """
        try:
            claims = decode_token(token)
        except ExpiredSignatureError:
            raise AuthError(AuthErrorKind.EXPIRED)
        except (InvalidTokenError, JWTExtendedException) as e:
            logger.warning(f'Rejected session token: {e}')
            raise AuthError(AuthErrorKind.INVALID)

        session_id = claims.get('sid')
        subject = claims.get('sub')
        if not session_id or not subject:
            raise AuthError(AuthErrorKind.INVALID)

        now = utcnow()
        with storage.begin_transaction() as txn:
            session = txn.get(SESSIONS, session_id)
            if session is None:
                raise AuthError(AuthErrorKind.INVALID)

            if session.is_expired(now):
                txn.delete(SESSIONS, session_id)
                txn.commit()
                raise AuthError(AuthErrorKind.EXPIRED)

            if session.principal_id != subject:
                logger.warning(f'Session subject mismatch for principal {subject}')
                raise AuthError(AuthErrorKind.INVALID)

            principal = txn.get(PRINCIPALS, session.principal_id)
            if principal is None or principal.role != session.role:
                raise AuthError(AuthErrorKind.INVALID)

            if not principal.is_active:
                raise AuthError(AuthErrorKind.ACCOUNT_DISABLED)

            if mutating and not _compare(csrf_token, session.csrf_secret):
                logger.warning(f'CSRF token mismatch for {principal.role} "{principal.username}"')
                raise AuthError(AuthErrorKind.CSRF_MISMATCH)

            session.scopes = list(principal.scopes or [])
            session.refresh(current_app.config['SESSION_TTL_SECONDS'], now)
            txn.put(SESSIONS, session.id, session)
            txn.commit()

        return SessionContext(
            session_id=session.id,
            session=session,
            principal=principal,
            elevated=principal.is_admin and session.is_elevated(now),
        )

    @classmethod
    def invalidate(cls, session_id: Optional[str] = None,
                   principal_id: Optional[str] = None) -> int:
        """
        Revoke a single session (logout) or every session of a principal.

        Returns:
            Number of sessions deleted
        """
        if session_id is None and principal_id is None:
            raise ValueError('session_id or principal_id is required')

        count = 0
        with storage.begin_transaction() as txn:
            if session_id is not None and txn.delete(SESSIONS, session_id):
                count += 1
            if principal_id is not None:
                count += revoke_sessions(txn, principal_id)
            txn.commit()
        return count

    @classmethod
    def logout(cls, context: SessionContext) -> None:
        with storage.begin_transaction() as txn:
            txn.delete(SESSIONS, context.session_id)
            log_action(txn, 'auth.logout', 'auth', principal=context.principal,
                       resource_type='principal', resource_id=context.principal.id)
            txn.commit()

    @classmethod
    def elevate(cls, context: SessionContext, password: str):
        """
        Grant the session the restricted-inspector scope after re-entering the password.

        Returns:
            The end of the elevation window
        """
        if not context.principal.is_admin:
            raise AuthzError('admin_only')

        with storage.begin_transaction() as txn:
            principal = txn.get(PRINCIPALS, context.principal.id)
            if principal is None or not principal.check_password(password or ''):
                logger.warning(f'Failed elevation for "{context.principal.username}"')
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

            session = txn.get(SESSIONS, context.session_id)
            if session is None:
                raise AuthError(AuthErrorKind.INVALID)

            minutes = current_app.config['ELEVATION_MINUTES']
            session.elevated_until = min(utcnow() + timedelta(minutes=minutes),
                                         session.absolute_expires_at)
            txn.put(SESSIONS, session.id, session)
            log_action(txn, 'auth.elevate', 'auth', principal=principal,
                       resource_type='principal', resource_id=principal.id)
            txn.commit()

        context.session = session
        context.elevated = True
        return session.elevated_until

    @staticmethod
    def read_contributor_prefix(txn=None) -> str:
        """Current contributor prefix: the stored setting, else the configured default."""
        if txn is None:
            with storage.begin_transaction() as own_txn:
                setting = own_txn.get(SETTINGS, Setting.CONTRIBUTOR_PATH_PREFIX)
        else:
            setting = txn.get(SETTINGS, Setting.CONTRIBUTOR_PATH_PREFIX)
        if setting is not None and setting.value:
            return setting.value
        return current_app.config['DEFAULT_CONTRIBUTOR_URL_PREFIX']

    @classmethod
    def resolve_surface(cls, prefix: str) -> Optional[str]:
        """
        Map a secret URL prefix to the role whose surface it opens.

        Returns:
            'admin', 'contributor', or None for an unknown prefix
        """
        admin_match = _compare(prefix, current_app.config.get('ADMIN_URL_PREFIX'))
        contributor_match = _compare(prefix, cls.read_contributor_prefix())
        if admin_match:
            return ROLE_ADMIN
        if contributor_match:
            return ROLE_CONTRIBUTOR
        return None
