"""
Record Inspector for AppBase.

Schema-aware raw access to stored records for Admins. Every family is read
and written through its declared schema (appbase.schema), never through
model reflection.

Write checks run in a fixed order:
1. Secret and system fields: SENSITIVE_FIELD_BLOCKED, whoever the caller is
2. Policy: Admin only
3. Unknown fields and type errors: BAD_FIELD
4. Restricted fields: require an elevated session

Deletes are limited to content items and media assets and remove their
dependent records in the same transaction; dependencies() previews them.

Writes keep the application's own invariants: content items get a new
revision and fresh index rows, deactivating a principal or changing its
role revokes its sessions, and the contributor prefix setting is validated
like any other prefix change.
"""

import logging
from typing import Any, Dict, Optional

from appbase.errors import (
    AuthzError,
    NotFoundError,
    StorageError,
    StorageErrorKind,
    TransitionError,
    TransitionErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from appbase.models import ContentItem, Setting, utcnow
from appbase.models.principal import ROLE_ADMIN
from appbase.schema import SCHEMAS, get_schema
from appbase.services.identity_service import revoke_sessions
from appbase.services.lifecycle_service import (
    item_dependents,
    prepare_fields,
    purge_item,
    rewrite_index_entries,
    unique_slug,
)
from appbase.services.media_service import media_dependents, purge_media, remove_media_file
from appbase.services.principal_service import PrincipalService
from appbase.storage import (
    CONTENT_ITEMS,
    MEDIA_ASSETS,
    PRINCIPALS,
    REVIEW_QUEUE,
    SETTINGS,
    KeyRange,
    storage,
)
from appbase.utils.audit import log_action
from appbase.utils.permissions import Action, authorize, decide
from appbase.utils.text import expand_tags


logger = logging.getLogger(__name__)


def _schema_or_404(family: str):
    schema = get_schema(family)
    if schema is None:
        raise NotFoundError(f'Unknown record family: {family}')
    return schema


class RecordInspector:
    """
    Generic read/write facade over the declared families.

    Usage:
        RecordInspector.browse(admin, 'content_items', page=1, per_page=50)
        RecordInspector.write(admin, 'principals', principal_id, {'is_active': False},
                              elevated=context.elevated)
    """

    @staticmethod
    def list_families(principal):
        authorize(principal, Action.INSPECT_READ)
        return [schema.summary() for schema in SCHEMAS.values()]

    @staticmethod
    def list_fields(principal, family: str) -> Dict[str, Any]:
        authorize(principal, Action.INSPECT_READ)
        return _schema_or_404(family).to_dict()

    @staticmethod
    def browse(principal, family: str, page=1, per_page=50) -> Dict[str, Any]:
        """Paginated field maps of a family in primary key order."""
        authorize(principal, Action.INSPECT_READ)
        schema = _schema_or_404(family)
        try:
            page = max(int(page or 1), 1)
            per_page = min(max(int(per_page or 50), 1), 200)
        except (TypeError, ValueError):
            raise ValidationError(ValidationErrorKind.BAD_FIELD,
                                  'page and per_page must be integers', field='page')

        with storage.begin_transaction() as txn:
            total = txn.count_index(family, 'primary')
            records = list(txn.scan_index(family, 'primary', limit=per_page,
                                          offset=(page - 1) * per_page))

        return {
            'family': family,
            'schema_version': schema.version,
            'records': [schema.serialize(record) for record in records],
            'page': page,
            'per_page': per_page,
            'total': total,
        }

    @staticmethod
    def read(principal, family: str, key) -> Dict[str, Any]:
        authorize(principal, Action.INSPECT_READ)
        schema = _schema_or_404(family)
        with storage.begin_transaction() as txn:
            record = txn.get(family, key)
        if record is None:
            raise NotFoundError('Record not found')
        return schema.serialize(record)

    @classmethod
    def write(cls, principal, family: str, key, fields: Dict[str, Any],
              expected_revision: Optional[int] = None, elevated: bool = False) -> Dict[str, Any]:
        """
        Write declared fields of one record.

        Raises:
            ValidationError(SENSITIVE_FIELD_BLOCKED): A secret or system field was named,
                                                      or the family is read-only
            AuthzError: Caller is not an Admin, or a restricted field was named
                        without an elevated session
            ValidationError(BAD_FIELD): Unknown field or invalid value
            NotFoundError: Unknown family or record
            TransitionError(STALE_WRITE): Content item changed since expected_revision
        """
        schema = _schema_or_404(family)
        fields = fields or {}

        blocked = sorted(
            name for name in fields
            if not schema.writable or (schema.field(name) is not None and schema.field(name).blocked)
        )
        if blocked:
            logger.warning(f'Blocked inspector write to {family}: {", ".join(blocked)}')
            raise ValidationError(ValidationErrorKind.SENSITIVE_FIELD_BLOCKED, fields=blocked)

        authorize(principal, Action.INSPECT_WRITE)

        if not fields:
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'No fields to write')

        values = {}
        for name, value in fields.items():
            spec = schema.field(name)
            if spec is None:
                raise ValidationError(ValidationErrorKind.BAD_FIELD, f'Unknown field: {name}', field=name)
            values[name] = spec.coerce(value)
            decision = decide(principal, Action.INSPECT_WRITE, spec, elevated=elevated)
            if not decision:
                raise AuthzError(decision.reason, field=name)

        try:
            with storage.begin_transaction() as txn:
                record = txn.get(family, key)
                if record is None:
                    raise NotFoundError('Record not found')

                before = schema.serialize(record)
                apply = _APPLIERS.get(family, _apply_plain)
                extra = apply(txn, record, values, expected_revision) or {}
                txn.put(family, key, record)

                changes = {
                    name: {'before': before.get(name), 'after': schema.field(name).serialize(getattr(record, name))}
                    for name in values
                }
                changes.update(extra)
                log_action(txn, 'inspector.write', 'inspector', principal=principal,
                           resource_type=family, resource_id=str(key),
                           details={'changes': changes})
                txn.commit()
        except StorageError as e:
            if family == CONTENT_ITEMS and e.kind is StorageErrorKind.CONFLICT:
                raise TransitionError(TransitionErrorKind.STALE_WRITE) from e
            raise

        logger.info(f'Inspector write to {family}/{key}: {", ".join(sorted(values))}')
        return schema.serialize(record)

    @staticmethod
    def _deletable_schema(family: str):
        schema = _schema_or_404(family)
        if not schema.writable or not schema.deletable:
            logger.warning(f'Blocked inspector delete in {family}')
            raise ValidationError(ValidationErrorKind.SENSITIVE_FIELD_BLOCKED,
                                  'Records of this family cannot be deleted', family=family)
        return schema

    @classmethod
    def dependencies(cls, principal, family: str, key) -> Dict[str, Any]:
        """Preview the records a delete of this record would also remove."""
        cls._deletable_schema(family)
        authorize(principal, Action.INSPECT_WRITE)
        with storage.begin_transaction() as txn:
            record = txn.get(family, key)
            if record is None:
                raise NotFoundError('Record not found')
            dependents = _DEPENDENTS[family](txn, key)
        return {'family': family, 'key': key, 'dependents': _describe(dependents)}

    @classmethod
    def delete(cls, principal, family: str, key,
               expected_revision: Optional[int] = None) -> Dict[str, Any]:
        """
        Delete one record together with its dependents.

        Content items take their index rows, queue entry and media links with
        them; media assets take their content links and, once committed, their
        stored file.

        Raises:
            ValidationError(SENSITIVE_FIELD_BLOCKED): The family does not allow deletes
            AuthzError: Caller is not an Admin
            NotFoundError: Unknown family or record
            TransitionError(STALE_WRITE): Content item changed since expected_revision
        """
        cls._deletable_schema(family)
        authorize(principal, Action.INSPECT_WRITE)

        try:
            with storage.begin_transaction() as txn:
                record = txn.get(family, key)
                if record is None:
                    raise NotFoundError('Record not found')
                if family == CONTENT_ITEMS:
                    if expected_revision is not None and record.revision != expected_revision:
                        raise TransitionError(TransitionErrorKind.STALE_WRITE,
                                              expected_revision=expected_revision,
                                              current_revision=record.revision)
                    dependents = item_dependents(txn, key)
                    purge_item(txn, record)
                else:
                    dependents = media_dependents(txn, key)
                    purge_media(txn, record)

                log_action(txn, 'inspector.delete', 'inspector', principal=principal,
                           resource_type=family, resource_id=str(key),
                           details={'dependents': len(dependents)})
                txn.commit()
        except StorageError as e:
            if family == CONTENT_ITEMS and e.kind is StorageErrorKind.CONFLICT:
                raise TransitionError(TransitionErrorKind.STALE_WRITE) from e
            raise

        if family == MEDIA_ASSETS:
            remove_media_file(record.storage_path)
        logger.info(f'Inspector delete of {family}/{key} with {len(dependents)} dependents')
        return {'family': family, 'key': key, 'deleted': True, 'dependents': _describe(dependents)}


def _describe(dependents):
    return [{'family': family, 'key': list(key) if isinstance(key, tuple) else key}
            for family, key in dependents]


def _apply_plain(txn, record, values, expected_revision):
    for name, value in values.items():
        setattr(record, name, value)


def _apply_content_item(txn, item: ContentItem, values, expected_revision):
    if expected_revision is not None and item.revision != expected_revision:
        raise TransitionError(TransitionErrorKind.STALE_WRITE,
                              expected_revision=expected_revision,
                              current_revision=item.revision)

    editable = {name: value for name, value in values.items() if name != 'rejection_reason'}
    fields = prepare_fields(editable, partial=True) if editable else {}
    for name, value in fields.items():
        if name != 'slug':
            setattr(item, name, value)
    if 'slug' in values:
        item.slug = unique_slug(txn, fields.get('slug') or item.slug, exclude_id=item.id)
    if 'rejection_reason' in values:
        item.rejection_reason = values['rejection_reason']

    item.revision = item.revision + 1
    item.updated_at = utcnow()
    rewrite_index_entries(txn, item)

    if item.status == ContentItem.STATUS_PENDING_APPROVAL and 'title' in fields:
        entry = txn.get(REVIEW_QUEUE, item.id)
        if entry is not None:
            entry.title = item.title
            txn.put(REVIEW_QUEUE, item.id, entry)
    return {'revision': item.revision}


def _apply_principal(txn, principal, values, expected_revision):
    role = values.get('role', principal.role)
    username = values.get('username', principal.username)
    if (role, username) != (principal.role, principal.username):
        username = PrincipalService.validate_username(username)
        values['username'] = username
        existing = txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=(role, username)))
        if existing is not None and existing.id != principal.id:
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'Username is already taken',
                                  field='username')

    revoke = ('role' in values and role != principal.role) or values.get('is_active') is False
    _apply_plain(txn, principal, values, expected_revision)
    if principal.role == ROLE_ADMIN:
        principal.scopes = []
    else:
        principal.scopes = PrincipalService.validate_scopes(principal.role, principal.scopes)
    principal.updated_at = utcnow()

    if revoke:
        return {'revoked_sessions': revoke_sessions(txn, principal.id)}
    return None


def _apply_media(txn, asset, values, expected_revision):
    if 'tags' in values:
        values['tags'] = expand_tags(values['tags'])
    _apply_plain(txn, asset, values, expected_revision)


def _apply_setting(txn, setting, values, expected_revision):
    if setting.key == Setting.CONTRIBUTOR_PATH_PREFIX and 'value' in values:
        values['value'] = PrincipalService.validate_contributor_prefix(values['value'])
    _apply_plain(txn, setting, values, expected_revision)


_APPLIERS = {
    CONTENT_ITEMS: _apply_content_item,
    PRINCIPALS: _apply_principal,
    MEDIA_ASSETS: _apply_media,
    SETTINGS: _apply_setting,
}

_DEPENDENTS = {
    CONTENT_ITEMS: item_dependents,
    MEDIA_ASSETS: media_dependents,
}
