"""
AppBase Authorization Policy.

A single pure decision function gates every operator action:

    decision = decide(principal, Action.APPROVE, item)
    if not decision:
        raise AuthzError(decision.reason)

Rules, first match wins:
1. Inactive or missing principal: deny.
2. Record Inspector actions: Admin only; secret and system fields are never
   writable, restricted fields need an elevated session.
3. Admin: allow.
4. Contributor self-service: create content, manage own media, view the
   review queue with the 'can-approve' scope.
5. Contributor on an owned item: read, edit while Draft, submit, withdraw,
   revise, delete while Draft or Rejected; approve/reject need 'can-approve'.
6. Contributor on another's item: read while pending approval,
   approve/reject with 'can-approve'.
Anything else is denied.

Usage:
    from appbase.utils.permissions import decide, Action, require_action

    @blueprint.route('/review-queue')
    @login_required
    @require_action(Action.VIEW_REVIEW_QUEUE)
    def review_queue():
        ...
"""

from dataclasses import dataclass
from enum import Enum
from functools import wraps

from flask import g

from appbase.errors import AuthzError
from appbase.models import ContentItem
from appbase.models.principal import SCOPE_CAN_APPROVE


class Action(str, Enum):
    CREATE = 'create'
    READ = 'read'
    EDIT = 'edit'
    SUBMIT = 'submit'
    WITHDRAW = 'withdraw'
    APPROVE = 'approve'
    REJECT = 'reject'
    REVISE = 'revise'
    DELETE = 'delete'
    VIEW_REVIEW_QUEUE = 'view_review_queue'
    MANAGE_MEDIA = 'manage_media'
    MANAGE_PRINCIPALS = 'manage_principals'
    MANAGE_SETTINGS = 'manage_settings'
    MANAGE_TAGS = 'manage_tags'
    LIST_ALL_CONTENT = 'list_all_content'
    INSPECT_READ = 'inspect_read'
    INSPECT_WRITE = 'inspect_write'


# Field sensitivity levels used by the Record Inspector
SENSITIVITY_NONE = 'none'
SENSITIVITY_RESTRICTED = 'restricted'
SENSITIVITY_SYSTEM = 'system'
SENSITIVITY_SECRET = 'secret'

INSPECTOR_ACTIONS = (Action.INSPECT_READ, Action.INSPECT_WRITE)
APPROVAL_ACTIONS = (Action.APPROVE, Action.REJECT)
ADMIN_ONLY_ACTIONS = (
    Action.MANAGE_PRINCIPALS,
    Action.MANAGE_SETTINGS,
    Action.MANAGE_TAGS,
    Action.LIST_ALL_CONTENT,
)


@dataclass(frozen=True)
class Decision:
    """Outcome of a policy check. Truthy when allowed."""

    allowed: bool
    reason: str = ''

    def __bool__(self):
        return self.allowed


ALLOW = Decision(True, 'allowed')


def _deny(reason):
    return Decision(False, reason)


def _decide_inspector(principal, action, field, elevated):
    if not principal.is_admin:
        return _deny('inspector_admin_only')
    if field is None:
        return ALLOW
    sensitivity = getattr(field, 'sensitivity', SENSITIVITY_NONE)
    if sensitivity == SENSITIVITY_SECRET:
        return _deny('secret_field')
    if action == Action.INSPECT_WRITE:
        if sensitivity == SENSITIVITY_SYSTEM:
            return _deny('system_field')
        if sensitivity == SENSITIVITY_RESTRICTED and not elevated:
            return _deny('elevation_required')
    return ALLOW


def _decide_owned_item(principal, action, item):
    status = item.status
    if action in (Action.READ, Action.SUBMIT, Action.WITHDRAW, Action.REVISE):
        return ALLOW
    if action == Action.EDIT:
        if status == ContentItem.STATUS_DRAFT:
            return ALLOW
        return _deny('not_draft')
    if action == Action.DELETE:
        if status in (ContentItem.STATUS_DRAFT, ContentItem.STATUS_REJECTED):
            return ALLOW
        return _deny('not_deletable')
    if action in APPROVAL_ACTIONS:
        if principal.has_scope(SCOPE_CAN_APPROVE):
            return ALLOW
        return _deny('missing_scope')
    return _deny('default_deny')


def _decide_foreign_item(principal, action, item):
    if action == Action.READ and item.status == ContentItem.STATUS_PENDING_APPROVAL:
        if principal.has_scope(SCOPE_CAN_APPROVE):
            return ALLOW
        return _deny('missing_scope')
    if action in APPROVAL_ACTIONS:
        if principal.has_scope(SCOPE_CAN_APPROVE):
            return ALLOW
        return _deny('missing_scope')
    return _deny('not_owner')


def decide(principal, action, resource=None, elevated=False):
    """
    Decide whether a principal may perform an action.

    Args:
        principal: The acting Principal (role and scopes re-read from storage)
        action: An Action
        resource: The ContentItem or MediaAsset acted on, a Record Inspector
                  field spec for inspector actions, or None
        elevated: Whether the session holds the 'inspect-restricted' scope

    Returns:
        Decision(allowed, reason)
    """
    if principal is None or not principal.is_active:
        return _deny('inactive')

    if action in INSPECTOR_ACTIONS:
        return _decide_inspector(principal, action, resource, elevated)

    if principal.is_admin:
        return ALLOW

    if action in ADMIN_ONLY_ACTIONS:
        return _deny('admin_only')

    if action == Action.CREATE:
        return ALLOW

    if action == Action.VIEW_REVIEW_QUEUE:
        if principal.has_scope(SCOPE_CAN_APPROVE):
            return ALLOW
        return _deny('missing_scope')

    if action == Action.MANAGE_MEDIA:
        if resource is None or resource.owner_id == principal.id:
            return ALLOW
        return _deny('not_owner')

    if isinstance(resource, ContentItem):
        if resource.owner_id == principal.id:
            return _decide_owned_item(principal, action, resource)
        return _decide_foreign_item(principal, action, resource)

    return _deny('default_deny')


def authorize(principal, action, resource=None, elevated=False):
    """Raise AuthzError unless decide() allows the action."""
    decision = decide(principal, action, resource, elevated=elevated)
    if not decision:
        raise AuthzError(decision.reason, action=action.value)
    return decision


def require_action(action):
    """
    Decorator to require a resource-less policy permission.

    Must be applied after @login_required so that g.current_principal is set.

    Args:
        action: The Action to check

    Returns:
        Decorator function
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            authorize(getattr(g, 'current_principal', None), action)
            return f(*args, **kwargs)
        return decorated_function
    return decorator
