"""
Tests for the AppBase Record Inspector.

Tests:
- Family listing, schemas and browsing (secret fields hidden)
- Blocked writes to secret and system fields, whoever the caller is
- Restricted fields and session elevation
- Writes that keep application invariants (revisions, index rows, sessions)
- Deletes with dependency previews, limited to content items and media
"""

import json
from pathlib import Path

import pytest

from appbase.errors import (
    AuthzError,
    NotFoundError,
    TransitionError,
    TransitionErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from appbase.services.identity_service import IdentityService
from appbase.services.lifecycle_service import LifecycleService
from appbase.services.media_service import MediaService
from appbase.services.public_query_service import PublicQueryService
from appbase.services.record_inspector import RecordInspector
from appbase.storage import (
    AUDIT_LOGS,
    CONTENT_INDEX,
    CONTENT_ITEMS,
    CONTENT_MEDIA_LINKS,
    MEDIA_ASSETS,
    REVIEW_QUEUE,
    KeyRange,
    storage,
)
from appbase.tests.conftest import create_test_item, publish_item
from appbase.tests.test_media import make_upload


class TestBrowse:
    """Tests for list_families(), browse() and read()."""

    def test_list_families(self, app, admin):
        families = {entry['family'] for entry in RecordInspector.list_families(admin)}
        assert {'principals', 'content_items', 'sessions', 'settings'} <= families

    def test_contributor_cannot_browse(self, app, contributor):
        with pytest.raises(AuthzError):
            RecordInspector.browse(contributor, 'principals')

    def test_browse_hides_secret_fields(self, app, admin, contributor):
        listing = RecordInspector.browse(admin, 'principals')
        assert listing['total'] == 2
        for record in listing['records']:
            assert 'password_hash' not in record
            assert 'username' in record

    def test_sessions_hide_id_and_csrf(self, app, admin):
        IdentityService.issue_session(admin)
        record = RecordInspector.browse(admin, 'sessions')['records'][0]
        assert 'id' not in record
        assert 'csrf_secret' not in record
        assert record['principal_id'] == admin.id

    def test_read_single_record(self, app, admin, contributor):
        item = create_test_item(contributor)
        record = RecordInspector.read(admin, 'content_items', item.id)
        assert record['title'] == 'Hello World'
        assert record['revision'] == 0

    def test_unknown_family(self, app, admin):
        with pytest.raises(NotFoundError):
            RecordInspector.browse(admin, 'content_index_entries')


class TestBlockedFields:
    """Secret and system fields are never writable."""

    @pytest.mark.parametrize('caller', ['admin', 'contributor'])
    def test_password_hash_blocked_for_any_role(self, app, admin, contributor, caller):
        principal = admin if caller == 'admin' else contributor
        with pytest.raises(ValidationError) as exc_info:
            RecordInspector.write(principal, 'principals', contributor.id,
                                  {'password_hash': 'x'}, elevated=True)
        assert exc_info.value.kind is ValidationErrorKind.SENSITIVE_FIELD_BLOCKED
        assert exc_info.value.details['fields'] == ['password_hash']

    def test_system_field_blocked(self, app, admin, contributor):
        item = create_test_item(contributor)
        with pytest.raises(ValidationError) as exc_info:
            RecordInspector.write(admin, 'content_items', item.id, {'status': 'published'})
        assert exc_info.value.kind is ValidationErrorKind.SENSITIVE_FIELD_BLOCKED

    def test_read_only_family(self, app, admin):
        with pytest.raises(ValidationError) as exc_info:
            RecordInspector.write(admin, 'audit_logs', 'any', {'action': 'x'})
        assert exc_info.value.kind is ValidationErrorKind.SENSITIVE_FIELD_BLOCKED


class TestWrites:
    """Tests for RecordInspector.write()."""

    def test_contributor_denied(self, app, contributor):
        item = create_test_item(contributor)
        with pytest.raises(AuthzError):
            RecordInspector.write(contributor, 'content_items', item.id, {'title': 'x'})

    def test_unknown_field(self, app, admin, contributor):
        with pytest.raises(ValidationError) as exc_info:
            RecordInspector.write(admin, 'principals', contributor.id, {'nickname': 'x'})
        assert exc_info.value.kind is ValidationErrorKind.BAD_FIELD

    def test_bad_type(self, app, admin, contributor):
        with pytest.raises(ValidationError):
            RecordInspector.write(admin, 'principals', contributor.id, {'is_active': 'maybe'},
                                  elevated=True)

    def test_content_write_bumps_revision_and_index(self, app, admin, contributor):
        item = create_test_item(contributor, tags=['old'])
        record = RecordInspector.write(admin, 'content_items', item.id,
                                       {'title': 'Fixed', 'tags': ['new']}, expected_revision=0)

        assert record['title'] == 'Fixed'
        assert record['revision'] == 1
        with storage.begin_transaction() as txn:
            values = [row.value for row in
                      txn.scan_index(CONTENT_INDEX, 'by_content', KeyRange(exact=item.id))]
        assert values == ['new']

    def test_published_write_is_live_and_audited(self, app, admin, contributor):
        item = publish_item(contributor, admin, title='Original')
        RecordInspector.write(admin, 'content_items', item.id, {'title': 'Corrected'}, expected_revision=2)

        assert PublicQueryService.get_by_id(item.id).title == 'Corrected'
        with storage.begin_transaction() as txn:
            entries = [entry for entry in txn.scan_index(AUDIT_LOGS, 'by_resource', KeyRange(exact=item.id))
                       if entry.action == 'inspector.write']
        assert json.loads(entries[0].details)['changes']['title'] == {'before': 'Original', 'after': 'Corrected'}

    def test_content_write_stale_revision(self, app, admin, contributor):
        item = create_test_item(contributor)
        with pytest.raises(TransitionError) as exc_info:
            RecordInspector.write(admin, 'content_items', item.id, {'title': 'x'}, expected_revision=3)
        assert exc_info.value.kind is TransitionErrorKind.STALE_WRITE

    def test_restricted_field_requires_elevation(self, app, admin, contributor):
        with pytest.raises(AuthzError) as exc_info:
            RecordInspector.write(admin, 'principals', contributor.id, {'is_active': False})
        assert exc_info.value.reason == 'elevation_required'

    def test_elevated_deactivation_revokes_sessions(self, app, admin, contributor):
        issued = IdentityService.issue_session(contributor)
        record = RecordInspector.write(admin, 'principals', contributor.id, {'is_active': False},
                                       elevated=True)

        assert record['is_active'] is False
        with storage.begin_transaction() as txn:
            assert txn.get('sessions', issued.session.id) is None

    def test_contributor_prefix_setting_validated(self, app, admin):
        with pytest.raises(ValidationError):
            RecordInspector.write(admin, 'settings', 'contributor_path_prefix', {'value': 'short'},
                                  elevated=True)

    def test_missing_record(self, app, admin):
        with pytest.raises(NotFoundError):
            RecordInspector.write(admin, 'media_assets', 'missing', {'summary': 'x'})


class TestDeletes:
    """Tests for RecordInspector.dependencies() and delete()."""

    def test_preview_lists_content_dependents(self, app, admin, contributor):
        item = create_test_item(contributor, tags=['a'])
        LifecycleService.submit(contributor, item.id, 0)
        asset = MediaService.register_upload(contributor, make_upload())
        MediaService.link_to_content(contributor, asset.id, item.id)

        preview = RecordInspector.dependencies(admin, 'content_items', item.id)
        families = sorted(entry['family'] for entry in preview['dependents'])
        assert families == ['content_index_entries', 'content_media_links', 'review_queue']
        assert {'family': 'content_media_links', 'key': [item.id, asset.id]} in preview['dependents']

    def test_delete_content_item_with_dependents(self, app, admin, contributor):
        item = create_test_item(contributor, tags=['a'])
        LifecycleService.submit(contributor, item.id, 0)
        asset = MediaService.register_upload(contributor, make_upload())
        MediaService.link_to_content(contributor, asset.id, item.id)

        result = RecordInspector.delete(admin, 'content_items', item.id, expected_revision=1)

        assert result['deleted'] is True
        assert len(result['dependents']) == 3
        with storage.begin_transaction() as txn:
            assert txn.get(CONTENT_ITEMS, item.id) is None
            assert txn.get(REVIEW_QUEUE, item.id) is None
            assert txn.count_index(CONTENT_INDEX, 'by_content', KeyRange(exact=item.id)) == 0
            assert txn.get(CONTENT_MEDIA_LINKS, (item.id, asset.id)) is None
            assert txn.get(MEDIA_ASSETS, asset.id) is not None
            actions = [entry.action for entry in txn.scan_index(AUDIT_LOGS, 'by_resource',
                                                                  KeyRange(exact=item.id))]
        assert 'inspector.delete' in actions

    def test_delete_media_removes_file(self, app, admin, contributor):
        asset = MediaService.register_upload(contributor, make_upload())
        path = Path(app.config['MEDIA_PATH']) / asset.storage_path

        RecordInspector.delete(admin, 'media_assets', asset.id)

        assert not path.exists()
        with pytest.raises(NotFoundError):
            MediaService.get_media(admin, asset.id)

    def test_stale_content_delete(self, app, admin, contributor):
        item = create_test_item(contributor)
        with pytest.raises(TransitionError) as exc_info:
            RecordInspector.delete(admin, 'content_items', item.id, expected_revision=4)
        assert exc_info.value.kind is TransitionErrorKind.STALE_WRITE

    @pytest.mark.parametrize('family', ['principals', 'sessions', 'settings', 'audit_logs', 'review_queue'])
    def test_protected_families_blocked_for_any_caller(self, app, admin, contributor, family):
        for principal in (admin, contributor):
            with pytest.raises(ValidationError) as exc_info:
                RecordInspector.delete(principal, family, contributor.id)
            assert exc_info.value.kind is ValidationErrorKind.SENSITIVE_FIELD_BLOCKED
            with pytest.raises(ValidationError):
                RecordInspector.dependencies(principal, family, contributor.id)

    def test_contributor_cannot_delete(self, app, contributor):
        item = create_test_item(contributor)
        with pytest.raises(AuthzError):
            RecordInspector.delete(contributor, 'content_items', item.id)
        with pytest.raises(AuthzError):
            RecordInspector.dependencies(contributor, 'content_items', item.id)

    def test_delete_missing_record(self, app, admin):
        with pytest.raises(NotFoundError):
            RecordInspector.delete(admin, 'media_assets', 'missing')
