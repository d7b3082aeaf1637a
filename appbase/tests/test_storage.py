"""
Tests for the AppBase Storage Engine.

Tests:
- get/put/delete inside a transaction
- Uncommitted transactions leave no trace
- Index scans with key ranges and limits
- Published-only index predicates
- Optimistic concurrency conflicts on content items
"""

import pytest

from appbase.errors import StorageError, StorageErrorKind
from appbase.models import AvailableTag, ContentItem, utcnow
from appbase.storage import (
    AVAILABLE_TAGS,
    CONTENT_ITEMS,
    PRINCIPALS,
    KeyRange,
    get_family,
    storage,
)
from appbase.tests.conftest import create_test_item, publish_item


class TestTransactions:
    """Tests for transaction commit and abort."""

    def test_put_and_get_after_commit(self, app):
        with storage.begin_transaction() as txn:
            txn.put(AVAILABLE_TAGS, 'news', AvailableTag(tag='news', created_at=utcnow()))
            txn.commit()

        with storage.begin_transaction() as txn:
            assert txn.get(AVAILABLE_TAGS, 'news') is not None

    def test_abort_discards_writes(self, app):
        """Leaving the block without commit leaves no visible effect."""
        with storage.begin_transaction() as txn:
            txn.put(AVAILABLE_TAGS, 'draft-tag', AvailableTag(tag='draft-tag'))

        with storage.begin_transaction() as txn:
            assert txn.get(AVAILABLE_TAGS, 'draft-tag') is None

    def test_records_readable_after_block(self, app, contributor):
        """Records returned from a closed transaction keep their loaded fields."""
        item = create_test_item(contributor, title='Readable')
        with storage.begin_transaction() as txn:
            loaded = txn.get(CONTENT_ITEMS, item.id)
        assert loaded.title == 'Readable'
        assert loaded.revision == 0

    def test_delete_returns_false_for_missing(self, app):
        with storage.begin_transaction() as txn:
            assert txn.delete(AVAILABLE_TAGS, 'missing') is False

    def test_put_rejects_wrong_type(self, app):
        with storage.begin_transaction() as txn:
            with pytest.raises(TypeError):
                txn.put(CONTENT_ITEMS, 'x', AvailableTag(tag='x'))

    def test_put_rejects_mismatched_key(self, app):
        with storage.begin_transaction() as txn:
            with pytest.raises(ValueError):
                txn.put(AVAILABLE_TAGS, 'one', AvailableTag(tag='two'))

    def test_closed_transaction_cannot_be_used(self, app):
        txn = storage.begin_transaction()
        txn.commit()
        with pytest.raises(RuntimeError):
            txn.get(AVAILABLE_TAGS, 'news')

    def test_unknown_family(self, app):
        with pytest.raises(ValueError):
            get_family('nope')


class TestIndexScans:
    """Tests for scan_index, first and count_index."""

    def test_scan_by_role(self, app, admin, contributor, approver):
        with storage.begin_transaction() as txn:
            names = [p.username for p in txn.scan_index(PRINCIPALS, 'by_role', KeyRange(exact='contributor'))]
        assert names == ['editor', 'writer']

    def test_first_by_role_username(self, app, admin):
        with storage.begin_transaction() as txn:
            found = txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=('admin', 'root-admin')))
            missing = txn.first(PRINCIPALS, 'by_role_username', KeyRange(exact=('contributor', 'root-admin')))
        assert found.id == admin.id
        assert missing is None

    def test_limit_and_offset(self, app):
        with storage.begin_transaction() as txn:
            for tag in ('a', 'b', 'c', 'd'):
                txn.put(AVAILABLE_TAGS, tag, AvailableTag(tag=tag))
            txn.commit()

        with storage.begin_transaction() as txn:
            page = [t.tag for t in txn.scan_index(AVAILABLE_TAGS, 'by_tag', limit=2, offset=1)]
            total = txn.count_index(AVAILABLE_TAGS, 'by_tag')
        assert page == ['b', 'c']
        assert total == 4

    def test_range_bounds(self, app):
        with storage.begin_transaction() as txn:
            for tag in ('a', 'b', 'c'):
                txn.put(AVAILABLE_TAGS, tag, AvailableTag(tag=tag))
            txn.commit()

        with storage.begin_transaction() as txn:
            tags = [t.tag for t in txn.scan_index(AVAILABLE_TAGS, 'by_tag', KeyRange(low='b', high='c'))]
        assert tags == ['b']

    def test_published_index_excludes_other_statuses(self, app, contributor, admin):
        create_test_item(contributor, title='Still a draft')
        published = publish_item(contributor, admin, title='Out there')

        with storage.begin_transaction() as txn:
            ids = [item.id for item in txn.scan_index(CONTENT_ITEMS, 'published_by_date')]
            all_ids = [item.id for item in txn.scan_index(CONTENT_ITEMS, 'by_created')]
        assert ids == [published.id]
        assert len(all_ids) == 2

    def test_tag_index_intersects_values(self, app, contributor, admin):
        both = publish_item(contributor, admin, title='Both', tags=['python', 'flask'])
        publish_item(contributor, admin, title='One', tags=['python'])

        with storage.begin_transaction() as txn:
            ids = [item.id for item in txn.scan_index(
                CONTENT_ITEMS, 'published_by_tag', KeyRange(values=('python', 'flask')))]
        assert ids == [both.id]


class TestOptimisticConcurrency:
    """Concurrent writers of the same content item."""

    def test_interleaved_writer_conflicts(self, app, contributor):
        """The second of two transactions on the same base revision fails."""
        item = create_test_item(contributor)

        first = storage.begin_transaction()
        second = storage.begin_transaction()
        mine = first.get(CONTENT_ITEMS, item.id)
        theirs = second.get(CONTENT_ITEMS, item.id)

        theirs.title = 'Theirs'
        theirs.revision = theirs.revision + 1
        second.put(CONTENT_ITEMS, item.id, theirs)
        second.commit()

        mine.title = 'Mine'
        mine.revision = mine.revision + 1
        first.put(CONTENT_ITEMS, item.id, mine)
        with pytest.raises(StorageError) as exc_info:
            first.commit()
        assert exc_info.value.kind is StorageErrorKind.CONFLICT
        assert first.closed

        with storage.begin_transaction() as txn:
            stored = txn.get(CONTENT_ITEMS, item.id)
        assert stored.title == 'Theirs'
        assert stored.revision == 1
        assert stored.status == ContentItem.STATUS_DRAFT
