"""
Record Inspector schemas.

Each inspectable family declares its fields explicitly, with a type and a
sensitivity. Nothing is reflected from the models: a column that is not
declared here cannot be read or written through the inspector.

Sensitivity:
- none: readable and writable by Admins
- restricted: writable only from an elevated session
- system: read-only, maintained by the application
- secret: never read, never written
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from appbase import storage
from appbase.errors import ValidationError, ValidationErrorKind
from appbase.models.principal import VALID_ROLES, VALID_SCOPES
from appbase.utils.permissions import (
    SENSITIVITY_NONE,
    SENSITIVITY_RESTRICTED,
    SENSITIVITY_SECRET,
    SENSITIVITY_SYSTEM,
)


SCHEMA_VERSION = 1

BLOCKED_SENSITIVITIES = (SENSITIVITY_SECRET, SENSITIVITY_SYSTEM)


@dataclass(frozen=True)
class FieldSpec:
    """
    A declared inspector field.

    Attributes:
        name: Model attribute name
        type: 'string', 'text', 'integer', 'boolean', 'datetime' or 'string_list'
        sensitivity: 'none', 'restricted', 'system' or 'secret'
        nullable: Whether None is an accepted value
        choices: Accepted values (for strings and string list items)
    """

    name: str
    type: str = 'string'
    sensitivity: str = SENSITIVITY_NONE
    nullable: bool = False
    choices: Optional[Tuple[str, ...]] = None

    @property
    def readable(self):
        return self.sensitivity != SENSITIVITY_SECRET

    @property
    def blocked(self):
        return self.sensitivity in BLOCKED_SENSITIVITIES

    def to_dict(self):
        result = {
            'name': self.name,
            'type': self.type,
            'sensitivity': self.sensitivity,
            'nullable': self.nullable,
        }
        if self.choices:
            result['choices'] = list(self.choices)
        return result

    def _bad(self, message):
        return ValidationError(ValidationErrorKind.BAD_FIELD, message, field=self.name)

    def coerce(self, value):
        """
        Validate a submitted value against the declared type.

        Raises:
            ValidationError(BAD_FIELD): Wrong type or value outside the choices
        """
        if value is None:
            if self.nullable:
                return None
            raise self._bad(f'{self.name} cannot be null')

        if self.type in ('string', 'text'):
            if not isinstance(value, str):
                raise self._bad(f'{self.name} must be a string')
            if self.choices and value not in self.choices:
                raise self._bad(f"{self.name} must be one of: {', '.join(self.choices)}")
            return value

        if self.type == 'integer':
            if isinstance(value, bool) or not isinstance(value, int):
                raise self._bad(f'{self.name} must be an integer')
            return value

        if self.type == 'boolean':
            if not isinstance(value, bool):
                raise self._bad(f'{self.name} must be a boolean')
            return value

        if self.type == 'datetime':
            if not isinstance(value, str):
                raise self._bad(f'{self.name} must be an ISO 8601 timestamp')
            try:
                parsed = datetime.fromisoformat(value)
            except ValueError:
                raise self._bad(f'{self.name} must be an ISO 8601 timestamp')
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        if self.type == 'string_list':
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise self._bad(f'{self.name} must be a list of strings')
            if self.choices:
                unknown = [v for v in value if v not in self.choices]
                if unknown:
                    raise self._bad(f"Unknown {self.name}: {', '.join(unknown)}")
            return list(value)

        raise self._bad(f'{self.name} has an unsupported type')

    def serialize(self, value):
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (list, tuple)):
            return list(value)
        return value


@dataclass(frozen=True)
class FamilySchema:
    """Declared, versioned field list of an inspectable family."""

    family: str
    key: str
    fields: Tuple[FieldSpec, ...]
    version: int = SCHEMA_VERSION
    writable: bool = True
    deletable: bool = False
    description: str = ''

    def field(self, name) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def serialize(self, record) -> Dict[str, Any]:
        """Field map of a record; secret fields are left out entirely."""
        return {
            spec.name: spec.serialize(getattr(record, spec.name))
            for spec in self.fields
            if spec.readable
        }

    def summary(self):
        return {
            'family': self.family,
            'version': self.version,
            'writable': self.writable,
            'deletable': self.deletable,
            'description': self.description,
        }

    def to_dict(self):
        result = self.summary()
        result['key'] = self.key
        result['fields'] = [spec.to_dict() for spec in self.fields if spec.readable]
        return result


def _system(name, type='string', nullable=True):
    return FieldSpec(name, type, SENSITIVITY_SYSTEM, nullable=nullable)


SCHEMAS: Dict[str, FamilySchema] = {schema.family: schema for schema in (
    FamilySchema(storage.PRINCIPALS, 'id', (
        _system('id', nullable=False),
        FieldSpec('username'),
        FieldSpec('password_hash', sensitivity=SENSITIVITY_SECRET),
        FieldSpec('role', sensitivity=SENSITIVITY_RESTRICTED, choices=VALID_ROLES),
        FieldSpec('scopes', 'string_list', SENSITIVITY_RESTRICTED, choices=VALID_SCOPES),
        FieldSpec('is_active', 'boolean', SENSITIVITY_RESTRICTED),
        _system('last_login_at', 'datetime'),
        _system('created_at', 'datetime'),
        _system('updated_at', 'datetime'),
    ), description='Operator accounts'),
    FamilySchema(storage.SESSIONS, 'id', (
        FieldSpec('id', sensitivity=SENSITIVITY_SECRET),
        _system('principal_id'),
        _system('role'),
        _system('scopes', 'string_list'),
        FieldSpec('csrf_secret', sensitivity=SENSITIVITY_SECRET),
        _system('issued_at', 'datetime'),
        _system('expires_at', 'datetime'),
        _system('absolute_expires_at', 'datetime'),
        _system('elevated_until', 'datetime'),
        _system('last_active', 'datetime'),
        _system('ip_address'),
        _system('user_agent'),
    ), writable=False, description='Management sessions'),
    FamilySchema(storage.CONTENT_ITEMS, 'id', (
        _system('id', nullable=False),
        _system('owner_id'),
        FieldSpec('title'),
        FieldSpec('slug'),
        FieldSpec('summary', 'text'),
        FieldSpec('body', 'text'),
        FieldSpec('tags', 'string_list'),
        FieldSpec('search_keywords', 'string_list'),
        FieldSpec('cover_image', nullable=True),
        _system('status'),
        _system('revision', 'integer'),
        _system('approver_id'),
        FieldSpec('rejection_reason', 'text', nullable=True),
        _system('created_at', 'datetime'),
        _system('updated_at', 'datetime'),
        _system('submitted_at', 'datetime'),
        _system('published_at', 'datetime'),
    ), deletable=True, description='Content items'),
    FamilySchema(storage.MEDIA_ASSETS, 'id', (
        _system('id', nullable=False),
        _system('owner_id'),
        _system('storage_path'),
        FieldSpec('original_filename'),
        FieldSpec('mime_type', nullable=True),
        _system('file_size', 'integer'),
        FieldSpec('summary', 'text'),
        FieldSpec('tags', 'string_list'),
        _system('uploaded_at', 'datetime'),
    ), deletable=True, description='Uploaded media'),
    FamilySchema(storage.SETTINGS, 'key', (
        _system('key', nullable=False),
        FieldSpec('value', 'text', SENSITIVITY_RESTRICTED),
        _system('updated_at', 'datetime'),
    ), description='Instance settings'),
    FamilySchema(storage.AVAILABLE_TAGS, 'tag', (
        _system('tag', nullable=False),
        _system('created_at', 'datetime'),
    ), writable=False, description='Tag registry'),
    FamilySchema(storage.REVIEW_QUEUE, 'content_id', (
        _system('content_id', nullable=False),
        _system('owner_id'),
        _system('title'),
        _system('submitted_at', 'datetime'),
        _system('similar_content_ids', 'string_list'),
    ), writable=False, description='Pending approval queue'),
    FamilySchema(storage.AUDIT_LOGS, 'id', (
        _system('id', nullable=False),
        _system('principal_id'),
        _system('username'),
        _system('role'),
        _system('action'),
        _system('action_category'),
        _system('resource_type'),
        _system('resource_id'),
        _system('details', 'text'),
        _system('ip_address'),
        _system('created_at', 'datetime'),
    ), writable=False, description='Audit trail'),
)}


def get_schema(family: str) -> Optional[FamilySchema]:
    return SCHEMAS.get(family)
