"""
Principal Service for AppBase.

Operator account administration and instance settings:
- Creating, listing and updating principals (Admin surface and CLI)
- Self-service password and username changes
- The contributor surface's secret URL prefix

Credential changes and deactivation revoke the principal's sessions in the
same transaction as the change.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from flask import current_app

from appbase.config import URL_PREFIX_PATTERN
from appbase.errors import NotFoundError, ValidationError, ValidationErrorKind
from appbase.models import Principal, Setting, utcnow
from appbase.models.principal import ROLE_CONTRIBUTOR, VALID_ROLES, VALID_SCOPES
from appbase.services.identity_service import IdentityService, revoke_sessions
from appbase.storage import KeyRange, PRINCIPALS, SETTINGS, storage
from appbase.utils.audit import log_action


logger = logging.getLogger(__name__)

USERNAME_MAX_LENGTH = 100
PREFIX_MIN_LENGTH = 8


def _bad_field(field, message):
    return ValidationError(ValidationErrorKind.BAD_FIELD, message, field=field)


class PrincipalService:
    """
    Principal administration and settings.

    Usage:
        principal = PrincipalService.create_principal('admin', 'alice', 'a-long-password')
        PrincipalService.update_principal(admin, principal.id, is_active=False)
    """

    @staticmethod
    def validate_username(username: Optional[str]) -> str:
        username = (username or '').strip()
        if not username:
            raise _bad_field('username', 'Username is required')
        if len(username) > USERNAME_MAX_LENGTH:
            raise _bad_field('username', f'Username must be at most {USERNAME_MAX_LENGTH} characters')
        return username

    @staticmethod
    def validate_password(password: Optional[str]) -> str:
        min_length = current_app.config['PASSWORD_MIN_LENGTH']
        if not password or len(password) < min_length:
            raise _bad_field('password', f'Password must be at least {min_length} characters')
        return password

    @staticmethod
    def validate_scopes(role: str, scopes) -> List[str]:
        scopes = list(scopes or [])
        unknown = [scope for scope in scopes if scope not in VALID_SCOPES]
        if unknown:
            raise _bad_field('scopes', f"Unknown scopes: {', '.join(unknown)}")
        if scopes and role != ROLE_CONTRIBUTOR:
            raise _bad_field('scopes', 'Scopes only apply to contributors')
        return sorted(set(scopes))

    @staticmethod
    def _username_taken(txn, role, username, exclude_id=None) -> bool:
        existing = txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=(role, username)))
        return existing is not None and existing.id != exclude_id

    @classmethod
    def create_principal(cls, role: str, username: str, password: str, scopes=None,
                         actor: Optional[Principal] = None) -> Principal:
        """
        Create a principal.

        Raises:
            ValidationError(BAD_FIELD): Invalid role, username, password or scopes,
                                        or username already taken for the role
        """
        if role not in VALID_ROLES:
            raise _bad_field('role', f"Role must be one of: {', '.join(VALID_ROLES)}")
        username = cls.validate_username(username)
        cls.validate_password(password)
        scopes = cls.validate_scopes(role, scopes)

        with storage.begin_transaction() as txn:
            if cls._username_taken(txn, role, username):
                raise _bad_field('username', 'Username is already taken')

            principal = Principal(id=str(uuid.uuid4()), username=username, role=role,
                                  scopes=scopes, is_active=True, created_at=utcnow())
            principal.set_password(password)
            txn.put(PRINCIPALS, principal.id, principal)
            log_action(txn, 'principal.create', 'principals' if actor else 'system',
                       principal=actor, username=None if actor else 'system',
                       resource_type='principal', resource_id=principal.id,
                       details={'role': role, 'username': username, 'scopes': scopes})
            txn.commit()

        logger.info(f'Created {role} "{username}"')
        return principal

    @staticmethod
    def list_principals(role: Optional[str] = None) -> List[Principal]:
        with storage.begin_transaction() as txn:
            if role:
                return list(txn.scan_index(PRINCIPALS, 'by_role', KeyRange(exact=role)))
            return list(txn.scan_index(PRINCIPALS, 'by_created'))

    @staticmethod
    def get_principal(principal_id: str) -> Principal:
        with storage.begin_transaction() as txn:
            principal = txn.get(PRINCIPALS, principal_id)
        if principal is None:
            raise NotFoundError('Principal not found')
        return principal

    @staticmethod
    def find_principal(role: str, username: str) -> Optional[Principal]:
        with storage.begin_transaction() as txn:
            return txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=(role, username)))

    @classmethod
    def update_principal(cls, actor: Optional[Principal], principal_id: str,
                         username: Optional[str] = None, password: Optional[str] = None,
                         is_active: Optional[bool] = None, scopes=None) -> Dict[str, Any]:
        """
        Update a principal's username, password, active flag or scopes.

        A password change or deactivation revokes every session of the
        principal. Scope changes take effect on the next request since
        sessions re-read scopes from the principal.

        Returns:
            Dict with keys 'principal' and 'revoked_sessions'
        """
        with storage.begin_transaction() as txn:
            principal = txn.get(PRINCIPALS, principal_id)
            if principal is None:
                raise NotFoundError('Principal not found')

            changes = {}
            revoke = False

            if username is not None:
                username = cls.validate_username(username)
                if username != principal.username:
                    if cls._username_taken(txn, principal.role, username, exclude_id=principal.id):
                        raise _bad_field('username', 'Username is already taken')
                    changes['username'] = {'before': principal.username, 'after': username}
                    principal.username = username

            if password is not None:
                principal.set_password(cls.validate_password(password))
                changes['password'] = 'changed'
                revoke = True

            if scopes is not None:
                scopes = cls.validate_scopes(principal.role, scopes)
                changes['scopes'] = {'before': list(principal.scopes or []), 'after': scopes}
                principal.scopes = scopes

            if is_active is not None and bool(is_active) != principal.is_active:
                if actor is not None and actor.id == principal.id and not is_active:
                    raise _bad_field('is_active', 'You cannot deactivate your own account')
                changes['is_active'] = {'before': principal.is_active, 'after': bool(is_active)}
                principal.is_active = bool(is_active)
                revoke = revoke or not principal.is_active

            principal.updated_at = utcnow()
            txn.put(PRINCIPALS, principal.id, principal)
            revoked = revoke_sessions(txn, principal.id) if revoke else 0
            log_action(txn, 'principal.update', 'principals', principal=actor,
                       resource_type='principal', resource_id=principal.id,
                       details={'changes': changes, 'revoked_sessions': revoked})
            txn.commit()

        return {'principal': principal, 'revoked_sessions': revoked}

    @classmethod
    def change_password(cls, principal_id: str, current_password: str, new_password: str) -> int:
        """
        Self-service password change.

        Every session of the principal, including the one making the change,
        is revoked. Returns the number of revoked sessions.
        """
        cls.validate_password(new_password)
        with storage.begin_transaction() as txn:
            principal = txn.get(PRINCIPALS, principal_id)
            if principal is None:
                raise NotFoundError('Principal not found')
            if not principal.check_password(current_password or ''):
                raise _bad_field('current_password', 'Current password is incorrect')

            principal.set_password(new_password)
            principal.updated_at = utcnow()
            txn.put(PRINCIPALS, principal.id, principal)
            revoked = revoke_sessions(txn, principal.id)
            log_action(txn, 'auth.password_change', 'auth', principal=principal,
                       resource_type='principal', resource_id=principal.id,
                       details={'revoked_sessions': revoked})
            txn.commit()

        logger.info(f'Password changed for {principal.role} "{principal.username}"')
        return revoked

    @classmethod
    def change_username(cls, principal_id: str, new_username: str) -> Principal:
        """Self-service username change within the principal's role namespace."""
        new_username = cls.validate_username(new_username)
        with storage.begin_transaction() as txn:
            principal = txn.get(PRINCIPALS, principal_id)
            if principal is None:
                raise NotFoundError('Principal not found')
            if cls._username_taken(txn, principal.role, new_username, exclude_id=principal.id):
                raise _bad_field('username', 'Username is already taken')

            old_username = principal.username
            principal.username = new_username
            principal.updated_at = utcnow()
            txn.put(PRINCIPALS, principal.id, principal)
            log_action(txn, 'auth.username_change', 'auth', principal=principal,
                       resource_type='principal', resource_id=principal.id,
                       details={'before': old_username, 'after': new_username})
            txn.commit()
        return principal

    @staticmethod
    def validate_contributor_prefix(prefix: Optional[str]) -> str:
        """
        Check a candidate contributor surface prefix.

        Raises:
            ValidationError(BAD_FIELD): Prefix shorter than 8 characters, using
                                        characters other than letters, digits,
                                        '_' and '-', or equal to the admin prefix
        """
        prefix = (prefix or '').strip()
        if len(prefix) < PREFIX_MIN_LENGTH or not URL_PREFIX_PATTERN.match(prefix):
            raise _bad_field(
                'contributor_path_prefix',
                f'Prefix must be at least {PREFIX_MIN_LENGTH} characters of letters, '
                f'numbers, underscores and hyphens'
            )
        if prefix == current_app.config.get('ADMIN_URL_PREFIX'):
            raise _bad_field('contributor_path_prefix', 'Prefix must differ from the admin prefix')
        return prefix

    @staticmethod
    def get_contributor_prefix() -> str:
        return IdentityService.read_contributor_prefix()

    @classmethod
    def set_contributor_prefix(cls, actor: Optional[Principal], prefix: str) -> str:
        """Change the contributor surface's secret URL prefix."""
        prefix = cls.validate_contributor_prefix(prefix)

        with storage.begin_transaction() as txn:
            setting = txn.get(SETTINGS, Setting.CONTRIBUTOR_PATH_PREFIX)
            if setting is None:
                setting = Setting(key=Setting.CONTRIBUTOR_PATH_PREFIX, value=prefix)
            else:
                setting.value = prefix
            txn.put(SETTINGS, setting.key, setting)
            log_action(txn, 'settings.contributor_prefix', 'settings', principal=actor,
                       resource_type='setting', resource_id=setting.key)
            txn.commit()

        logger.info('Contributor URL prefix changed')
        return prefix
