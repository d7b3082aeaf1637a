"""
AppBase Audit Logging Utilities.

Audit entries are written into the storage transaction of the action they
record, so they commit or vanish together with it.

Usage:
    from appbase.utils.audit import log_action

    with storage.begin_transaction() as txn:
        ...
        log_action(
            txn,
            action='content.approve',
            action_category='content',
            principal=approver,
            resource_type='content_item',
            resource_id=item.id,
            details={'revision': item.revision},
        )
        txn.commit()
"""

import json
import uuid
from datetime import date, datetime
from typing import Any, Optional

from flask import g, has_request_context

from appbase.models import AuditLog
from appbase.storage import AUDIT_LOGS
from appbase.utils.auth import get_client_ip


# Re-export action categories from the AuditLog model for convenience
ACTION_CATEGORIES = AuditLog.VALID_CATEGORIES


def log_action(
    txn,
    action: str,
    action_category: str,
    principal=None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[dict] = None,
    username: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit log entry to a storage transaction.

    The acting principal and client IP default to the ones of the current
    request when called inside one.

    Args:
        txn: Open storage Transaction
        action: Specific action performed (e.g. 'content.submit')
        action_category: One of ACTION_CATEGORIES
        principal: Acting Principal (None for system or anonymous actions)
        resource_type: Type of resource affected
        resource_id: ID of the affected resource
        details: Additional context, JSON-serialized before storage
        username: Username override (e.g. for failed logins)
        ip_address: IP address override

    Returns:
        The AuditLog entry (not yet committed)

    Raises:
        ValueError: If action_category is not in ACTION_CATEGORIES
    """
    if action_category not in ACTION_CATEGORIES:
        raise ValueError(
            f"Invalid action_category '{action_category}'. "
            f"Must be one of: {', '.join(ACTION_CATEGORIES)}"
        )

    if has_request_context():
        if principal is None:
            principal = getattr(g, 'current_principal', None)
        if ip_address is None:
            ip_address = get_client_ip()

    details_json = None
    if details is not None:
        try:
            details_json = json.dumps(details, default=_json_serializer)
        except (TypeError, ValueError) as e:
            details_json = json.dumps({'_serialization_error': str(e)})

    entry = AuditLog(
        id=str(uuid.uuid4()),
        principal_id=principal.id if principal is not None else None,
        username=username or (principal.username if principal is not None else 'anonymous'),
        role=principal.role if principal is not None else None,
        action=action,
        action_category=action_category,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details_json,
        ip_address=ip_address,
    )
    txn.put(AUDIT_LOGS, entry.id, entry)
    return entry


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return str(obj)
