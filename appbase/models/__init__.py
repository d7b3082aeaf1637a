"""
AppBase Models Package.

SQLAlchemy models for the AppBase content backend including:
- Principals (Admin and Contributor accounts)
- Settings (per-instance key/value configuration)
- Management Sessions (signed session records)
- Content Items (approval lifecycle records)
- Content Index Entries (tag and keyword index rows)
- Review Queue Entries (pending approval queue)
- Available Tags (tag registry)
- Media Assets and content links
- Audit Logs (privileged action tracking)
"""

import json
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import DateTime as _SADateTime, Text as _SAText
from sqlalchemy.types import TypeDecorator


class DateTimeUTC(TypeDecorator):
    """DateTime type that ensures values are always timezone-aware (UTC).

    SQLite stores datetimes as naive strings.  This TypeDecorator adds UTC
    timezone info when reading and strips it when writing, so Python code
    can safely compare with ``datetime.now(timezone.utc)``.
    """

    impl = _SADateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc)
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
        return value


class JSONList(TypeDecorator):
    """List of strings stored as a JSON text column."""

    impl = _SAText
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return '[]'
        return json.dumps(list(value))

    def process_result_value(self, value, dialect):
        if not value:
            return []
        return json.loads(value)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    All models should inherit from db.Model which uses this Base class.
    """
    pass


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value else None


# SQLAlchemy database instance
db = SQLAlchemy(model_class=Base)


# Import models after db is defined to avoid circular imports
from appbase.models.principal import Principal, Setting
from appbase.models.session import ManagementSession
from appbase.models.content import (
    ContentItem,
    ContentIndexEntry,
    ReviewQueueEntry,
    AvailableTag,
)
from appbase.models.media import MediaAsset, ContentMediaLink
from appbase.models.audit_log import AuditLog

__all__ = [
    'db',
    'Base',
    'DateTimeUTC',
    'JSONList',
    'utcnow',
    'isoformat',
    'Principal',
    'Setting',
    'ManagementSession',
    'ContentItem',
    'ContentIndexEntry',
    'ReviewQueueEntry',
    'AvailableTag',
    'MediaAsset',
    'ContentMediaLink',
    'AuditLog',
]
