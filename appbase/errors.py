"""
AppBase Error Taxonomy.

Every failure surfaced by the services carries a stable ``code`` and an HTTP
status so the routes can translate it without inspecting internals:

- AuthError: session and login failures
- AuthzError: policy denials
- TransitionError: lifecycle state machine failures (including stale writes)
- ValidationError: bad input and blocked fields
- StorageError: transaction conflicts and storage outages
- NotFoundError: missing records
"""

from enum import Enum
from typing import Any, Dict, Optional


class AppBaseError(Exception):
    """Base class for all AppBase service errors."""

    status_code = 500
    default_message = 'An unexpected error occurred'

    def __init__(self, kind: Optional[Enum] = None, message: Optional[str] = None, **details):
        self.kind = kind
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value if self.kind is not None else 'error'

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        """
        Serialize the error for API responses.

        Args:
            include_details: Include internal details such as field names.
                             Only enabled on Admin surfaces.
        """
        result = {
            'status': 'error',
            'error': self.message,
            'code': self.code,
        }
        if self.retryable:
            result['retryable'] = True
        if include_details and self.details:
            result['details'] = self.details
        return result

    def __repr__(self):
        return f'<{type(self).__name__} {self.code}: {self.message}>'


class AuthErrorKind(Enum):
    INVALID_CREDENTIALS = 'invalid_credentials'
    IP_NOT_ALLOWED = 'ip_not_allowed'
    ACCOUNT_DISABLED = 'account_disabled'
    EXPIRED = 'expired'
    INVALID = 'invalid_session'
    CSRF_MISMATCH = 'csrf_mismatch'


_AUTH_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: 'Invalid username or password',
    AuthErrorKind.IP_NOT_ALLOWED: 'Login is not permitted from this address',
    AuthErrorKind.ACCOUNT_DISABLED: 'Account has been deactivated',
    AuthErrorKind.EXPIRED: 'Session has expired',
    AuthErrorKind.INVALID: 'Invalid or expired session',
    AuthErrorKind.CSRF_MISMATCH: 'CSRF token missing or invalid',
}


class AuthError(AppBaseError):
    """Authentication or session validation failure."""

    status_code = 401

    def __init__(self, kind: AuthErrorKind, message: Optional[str] = None, **details):
        super().__init__(kind, message or _AUTH_MESSAGES[kind], **details)
        if kind in (AuthErrorKind.IP_NOT_ALLOWED, AuthErrorKind.CSRF_MISMATCH):
            self.status_code = 403


class AuthzErrorKind(Enum):
    DENIED = 'denied'


class AuthzError(AppBaseError):
    """The authorization policy denied the action."""

    status_code = 403
    default_message = 'You do not have permission to perform this action'

    def __init__(self, reason: Optional[str] = None, **details):
        super().__init__(AuthzErrorKind.DENIED, self.default_message, **details)
        self.reason = reason or 'denied'

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        result = super().to_dict(include_details)
        if include_details:
            result['reason'] = self.reason
        return result


class TransitionErrorKind(Enum):
    INVALID_TRANSITION = 'invalid_transition'
    STALE_WRITE = 'stale_write'


class TransitionError(AppBaseError):
    """A lifecycle transition could not be applied."""

    def __init__(self, kind: TransitionErrorKind, message: Optional[str] = None, **details):
        if message is None:
            if kind is TransitionErrorKind.STALE_WRITE:
                message = 'The item was modified by someone else. Reload it and try again.'
            else:
                message = 'This action is not available for the item in its current state'
        super().__init__(kind, message, **details)
        self.status_code = 409 if kind is TransitionErrorKind.STALE_WRITE else 422

    @property
    def retryable(self) -> bool:
        return self.kind is TransitionErrorKind.STALE_WRITE


class ValidationErrorKind(Enum):
    BAD_FIELD = 'bad_field'
    SENSITIVE_FIELD_BLOCKED = 'sensitive_field_blocked'


class ValidationError(AppBaseError):
    """Input failed validation."""

    status_code = 400

    def __init__(self, kind: ValidationErrorKind, message: Optional[str] = None,
                 field: Optional[str] = None, **details):
        if message is None:
            if kind is ValidationErrorKind.SENSITIVE_FIELD_BLOCKED:
                message = 'One or more fields cannot be modified'
            else:
                message = 'Invalid input'
        if field is not None:
            details['field'] = field
        super().__init__(kind, message, **details)
        self.field = field


class StorageErrorKind(Enum):
    CONFLICT = 'storage_conflict'
    IO_FAILURE = 'storage_unavailable'


class StorageError(AppBaseError):
    """The storage engine could not complete a transaction."""

    status_code = 503

    def __init__(self, kind: StorageErrorKind, message: Optional[str] = None, **details):
        if message is None:
            if kind is StorageErrorKind.CONFLICT:
                message = 'A concurrent update conflicted with this request. Please retry.'
            else:
                message = 'Storage is temporarily unavailable. Please retry.'
        super().__init__(kind, message, **details)

    @property
    def retryable(self) -> bool:
        return True


class NotFoundErrorKind(Enum):
    NOT_FOUND = 'not_found'


class NotFoundError(AppBaseError):
    """The requested record does not exist (or is not visible to the caller)."""

    status_code = 404
    default_message = 'The requested resource was not found'

    def __init__(self, message: Optional[str] = None, **details):
        super().__init__(NotFoundErrorKind.NOT_FOUND, message, **details)
