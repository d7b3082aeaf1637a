"""
Tests for the AppBase Content Lifecycle Engine.

Tests:
- Draft creation and editing
- Submit / withdraw / approve / reject / revise transitions and guards
- Revision checks (STALE_WRITE) including concurrent approvals
- Review queue maintenance and similar-content annotations
- Deletion rules
"""

import pytest

from appbase.errors import (
    AuthzError,
    NotFoundError,
    TransitionError,
    TransitionErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from appbase.models import ContentItem
from appbase.services import lifecycle_service
from appbase.services.lifecycle_service import LifecycleService
from appbase.services.public_query_service import PublicQueryService
from appbase.storage import CONTENT_INDEX, CONTENT_ITEMS, REVIEW_QUEUE, KeyRange, storage
from appbase.tests.conftest import create_test_item, publish_item


def _error(result, error_type, kind=None):
    assert result['success'] is False
    assert isinstance(result['error'], error_type)
    if kind is not None:
        assert result['error'].kind is kind
    return result['error']


def _public_ids():
    return [item.id for item in PublicQueryService.list_published()['items']]


class TestCreateDraft:
    """Tests for LifecycleService.create_draft()."""

    def test_create_draft(self, app, contributor):
        result = LifecycleService.create_draft(contributor, {
            'title': '<em>Hello</em> World',
            'body': 'Some <b>body</b>',
            'tags': ['Tech/Python'],
            'search_keywords': ['Flask'],
        })

        assert result['success'] is True
        item = result['item']
        assert item.status == ContentItem.STATUS_DRAFT
        assert item.revision == 0
        assert item.owner_id == contributor.id
        assert item.title == 'Hello World'
        assert item.slug == 'hello-world'
        assert item.body == 'Some &lt;b&gt;body&lt;/b&gt;'
        assert item.tags == ['tech', 'python', 'tech/python']
        assert item.search_keywords == ['flask']

    def test_create_writes_index_rows(self, app, contributor):
        item = create_test_item(contributor, tags=['a/b'], search_keywords=['kw'])
        with storage.begin_transaction() as txn:
            rows = {(row.kind, row.value) for row in
                    txn.scan_index(CONTENT_INDEX, 'by_content', KeyRange(exact=item.id))}
        assert rows == {('tag', 'a'), ('tag', 'b'), ('tag', 'a/b'), ('keyword', 'kw')}

    def test_duplicate_slugs_get_suffix(self, app, contributor):
        first = create_test_item(contributor, title='Same')
        second = create_test_item(contributor, title='Same')
        assert first.slug == 'same'
        assert second.slug == 'same-2'

    def test_title_required(self, app, contributor):
        result = LifecycleService.create_draft(contributor, {'title': '  '})
        error = _error(result, ValidationError, ValidationErrorKind.BAD_FIELD)
        assert error.field == 'title'

    def test_unknown_field_rejected(self, app, contributor):
        result = LifecycleService.create_draft(contributor, {'title': 'x', 'status': 'published'})
        _error(result, ValidationError, ValidationErrorKind.BAD_FIELD)

    @pytest.mark.parametrize('field, value', [
        ('body', 5),
        ('slug', 7),
        ('summary', ['a']),
        ('title', {'text': 'x'}),
    ])
    def test_non_string_text_field_rejected(self, app, contributor, field, value):
        data = {'title': 'x', field: value}
        result = LifecycleService.create_draft(contributor, data)
        error = _error(result, ValidationError, ValidationErrorKind.BAD_FIELD)
        assert error.field == field

    def test_non_list_tags_rejected(self, app, contributor):
        result = LifecycleService.create_draft(contributor, {'title': 'x', 'tags': 3})
        assert _error(result, ValidationError, ValidationErrorKind.BAD_FIELD).field == 'tags'


class TestUpdateDraft:
    """Tests for LifecycleService.update_draft()."""

    def test_update_bumps_revision(self, app, contributor):
        item = create_test_item(contributor)
        result = LifecycleService.update_draft(contributor, item.id, 0, {'title': 'New title', 'tags': ['x']})

        assert result['success'] is True
        assert result['item'].revision == 1
        assert result['item'].title == 'New title'
        assert result['item'].tags == ['x']

    def test_update_with_old_revision_is_stale(self, app, contributor):
        item = create_test_item(contributor)
        LifecycleService.update_draft(contributor, item.id, 0, {'title': 'One'})
        result = LifecycleService.update_draft(contributor, item.id, 0, {'title': 'Two'})

        error = _error(result, TransitionError, TransitionErrorKind.STALE_WRITE)
        assert error.status_code == 409
        assert error.retryable is True

    def test_foreign_draft_not_editable(self, app, contributor, other_contributor):
        item = create_test_item(contributor)
        result = LifecycleService.update_draft(other_contributor, item.id, 0, {'title': 'Mine now'})
        assert _error(result, AuthzError).reason == 'not_owner'

    def test_pending_item_not_editable(self, app, contributor):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        result = LifecycleService.update_draft(contributor, item.id, 1, {'title': 'Sneaky'})
        assert _error(result, AuthzError).reason == 'not_draft'

    def test_missing_item(self, app, contributor):
        result = LifecycleService.update_draft(contributor, 'missing', 0, {'title': 'x'})
        _error(result, NotFoundError)


class TestSubmitAndWithdraw:
    """Tests for submit() and withdraw()."""

    def test_submit_enqueues(self, app, contributor):
        item = create_test_item(contributor)
        result = LifecycleService.submit(contributor, item.id, 0)

        assert result['item'].status == ContentItem.STATUS_PENDING_APPROVAL
        assert result['item'].revision == 1
        assert result['item'].submitted_at is not None
        with storage.begin_transaction() as txn:
            assert txn.get(REVIEW_QUEUE, item.id) is not None

    def test_only_owner_submits(self, app, contributor, admin):
        item = create_test_item(contributor)
        result = LifecycleService.submit(admin, item.id, 0)
        assert _error(result, AuthzError).reason == 'not_owner'

    def test_withdraw_dequeues(self, app, contributor):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        result = LifecycleService.withdraw(contributor, item.id, 1)

        assert result['item'].status == ContentItem.STATUS_DRAFT
        assert result['item'].revision == 2
        with storage.begin_transaction() as txn:
            assert txn.get(REVIEW_QUEUE, item.id) is None

    def test_submit_twice_is_invalid_transition(self, app, contributor):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        result = LifecycleService.submit(contributor, item.id, 1)
        error = _error(result, TransitionError, TransitionErrorKind.INVALID_TRANSITION)
        assert error.status_code == 422

    def test_similar_titles_annotated(self, app, contributor, other_contributor, admin):
        original = create_test_item(other_contributor, title='Flask tips and tricks')
        LifecycleService.submit(other_contributor, original.id, 0)
        item = create_test_item(contributor, title='Flask Tips and Tricks')
        LifecycleService.submit(contributor, item.id, 0)

        entries = LifecycleService.list_review_queue(admin)
        entry = next(entry for entry in entries if entry.content_id == item.id)
        assert entry.similar_content_ids == [original.id]

    def test_foreign_drafts_not_annotated(self, app, contributor, other_contributor, admin):
        create_test_item(other_contributor, title='Flask tips and tricks')
        rejected = create_test_item(other_contributor, title='Flask tips and tricks again')
        LifecycleService.submit(other_contributor, rejected.id, 0)
        LifecycleService.reject(admin, rejected.id, 1, 'Duplicate')
        item = create_test_item(contributor, title='Flask Tips and Tricks')
        LifecycleService.submit(contributor, item.id, 0)

        entries = LifecycleService.list_review_queue(admin)
        assert [entry.similar_content_ids for entry in entries] == [[]]

    def test_published_items_annotated(self, app, contributor, other_contributor, admin):
        original = publish_item(other_contributor, admin, title='Flask tips and tricks')
        item = create_test_item(contributor, title='Flask Tips and Tricks')
        LifecycleService.submit(contributor, item.id, 0)

        assert LifecycleService.list_review_queue(admin)[0].similar_content_ids == [original.id]

    def test_failing_detector_does_not_block(self, app, contributor, monkeypatch):
        def broken(item, candidates):
            raise RuntimeError('detector down')

        monkeypatch.setattr(LifecycleService, 'detector', staticmethod(broken))
        item = create_test_item(contributor)
        result = LifecycleService.submit(contributor, item.id, 0)
        assert result['success'] is True


class TestApproveAndReject:
    """Tests for approve() and reject()."""

    def test_publication_scenario(self, app, contributor, admin):
        """Draft (0) -> pending (1) -> published (2) -> revised (3) leaves the public API."""
        item = create_test_item(contributor)
        assert item.revision == 0

        item = LifecycleService.submit(contributor, item.id, 0)['item']
        assert (item.status, item.revision) == (ContentItem.STATUS_PENDING_APPROVAL, 1)
        assert _public_ids() == []

        item = LifecycleService.approve(admin, item.id, 1)['item']
        assert (item.status, item.revision) == (ContentItem.STATUS_PUBLISHED, 2)
        assert item.approver_id == admin.id
        assert _public_ids() == [item.id]

        item = LifecycleService.revise(contributor, item.id, 2, {'title': 'Hello again'})['item']
        assert (item.status, item.revision) == (ContentItem.STATUS_PENDING_APPROVAL, 3)
        assert item.published_at is None
        assert _public_ids() == []

        item = LifecycleService.approve(admin, item.id, 3)['item']
        assert _public_ids() == [item.id]
        assert PublicQueryService.get_by_id(item.id).title == 'Hello again'

    def test_two_admins_approve_same_revision(self, app, contributor, admin, second_admin):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)

        first = LifecycleService.approve(admin, item.id, 1)
        second = LifecycleService.approve(second_admin, item.id, 1)

        assert first['success'] is True
        assert first['item'].revision == 2
        _error(second, TransitionError, TransitionErrorKind.STALE_WRITE)
        with storage.begin_transaction() as txn:
            stored = txn.get(CONTENT_ITEMS, item.id)
        assert stored.approver_id == admin.id
        assert stored.revision == 2

    def test_approval_interleaved_with_another_admin(self, app, contributor, admin, second_admin, monkeypatch):
        """A second approval committing inside the first one's transaction wins; the first is stale."""
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)

        real_decide = lifecycle_service.decide
        inner = []

        def decide_then_race(principal, *args, **kwargs):
            if principal.id == admin.id and not inner:
                inner.append(LifecycleService.approve(second_admin, item.id, 1))
            return real_decide(principal, *args, **kwargs)

        monkeypatch.setattr(lifecycle_service, 'decide', decide_then_race)
        outer = LifecycleService.approve(admin, item.id, 1)

        assert inner[0]['success'] is True
        assert inner[0]['item'].approver_id == second_admin.id
        _error(outer, TransitionError, TransitionErrorKind.STALE_WRITE)
        with storage.begin_transaction() as txn:
            stored = txn.get(CONTENT_ITEMS, item.id)
            assert txn.get(REVIEW_QUEUE, item.id) is None
        assert (stored.status, stored.revision) == (ContentItem.STATUS_PUBLISHED, 2)
        assert stored.approver_id == second_admin.id

    def test_contributor_without_scope_cannot_approve(self, app, contributor, other_contributor):
        mine = create_test_item(contributor, title='Mine')
        theirs = create_test_item(other_contributor, title='Theirs')
        LifecycleService.submit(contributor, mine.id, 0)
        LifecycleService.submit(other_contributor, theirs.id, 0)

        for item_id in (mine.id, theirs.id):
            result = LifecycleService.approve(contributor, item_id, 1)
            assert _error(result, AuthzError).reason == 'missing_scope'
            result = LifecycleService.reject(contributor, item_id, 1, 'no')
            assert _error(result, AuthzError).reason == 'missing_scope'

    def test_approver_scope_publishes_foreign_item(self, app, contributor, approver):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        result = LifecycleService.approve(approver, item.id, 1)
        assert result['item'].status == ContentItem.STATUS_PUBLISHED

    def test_approver_cannot_approve_own_item(self, app, approver):
        item = create_test_item(approver)
        LifecycleService.submit(approver, item.id, 0)
        result = LifecycleService.approve(approver, item.id, 1)
        assert _error(result, AuthzError).reason == 'self_approval'

    def test_reject_requires_reason(self, app, contributor, admin):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        result = LifecycleService.reject(admin, item.id, 1, '   ')
        assert _error(result, ValidationError).field == 'reason'

    def test_reject_then_revise(self, app, contributor, admin):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)
        rejected = LifecycleService.reject(admin, item.id, 1, 'Needs sources')['item']

        assert rejected.status == ContentItem.STATUS_REJECTED
        assert rejected.rejection_reason == 'Needs sources'

        revised = LifecycleService.revise(contributor, item.id, 2)['item']
        assert revised.status == ContentItem.STATUS_PENDING_APPROVAL
        assert revised.rejection_reason is None

    def test_approve_draft_is_invalid(self, app, contributor, admin):
        item = create_test_item(contributor)
        result = LifecycleService.approve(admin, item.id, 0)
        _error(result, TransitionError, TransitionErrorKind.INVALID_TRANSITION)

    def test_revise_draft_is_invalid(self, app, contributor):
        item = create_test_item(contributor)
        result = LifecycleService.revise(contributor, item.id, 0)
        _error(result, TransitionError, TransitionErrorKind.INVALID_TRANSITION)


class TestDelete:
    """Tests for delete_item()."""

    def test_delete_draft_removes_index_rows(self, app, contributor):
        item = create_test_item(contributor, tags=['gone'])
        assert LifecycleService.delete_item(contributor, item.id)['success'] is True

        with storage.begin_transaction() as txn:
            assert txn.get(CONTENT_ITEMS, item.id) is None
            assert txn.count_index(CONTENT_INDEX, 'by_content', KeyRange(exact=item.id)) == 0

    def test_contributor_cannot_delete_published(self, app, contributor, admin):
        item = publish_item(contributor, admin)
        result = LifecycleService.delete_item(contributor, item.id)
        assert _error(result, AuthzError).reason == 'not_deletable'

    def test_admin_deletes_published(self, app, contributor, admin):
        item = publish_item(contributor, admin)
        assert LifecycleService.delete_item(admin, item.id, expected_revision=2)['success'] is True
        assert _public_ids() == []

    def test_delete_with_stale_revision(self, app, contributor):
        item = create_test_item(contributor)
        result = LifecycleService.delete_item(contributor, item.id, expected_revision=5)
        _error(result, TransitionError, TransitionErrorKind.STALE_WRITE)


class TestListing:
    """Tests for the management listings."""

    def test_list_own_items(self, app, contributor, other_contributor):
        create_test_item(contributor, title='One')
        create_test_item(contributor, title='Two')
        create_test_item(other_contributor, title='Other')

        listing = LifecycleService.list_own_items(contributor)
        assert listing['total'] == 2
        assert {item.title for item in listing['items']} == {'One', 'Two'}

    def test_list_all_admin_only(self, app, contributor, admin):
        create_test_item(contributor)
        assert LifecycleService.list_all_items(admin, status='draft')['total'] == 1
        with pytest.raises(AuthzError):
            LifecycleService.list_all_items(contributor)

    def test_review_queue_requires_scope(self, app, contributor, approver):
        item = create_test_item(contributor)
        LifecycleService.submit(contributor, item.id, 0)

        assert [entry.content_id for entry in LifecycleService.list_review_queue(approver)] == [item.id]
        with pytest.raises(AuthzError):
            LifecycleService.list_review_queue(contributor)

    def test_foreign_pending_item_needs_approver(self, app, contributor, other_contributor, approver):
        item = create_test_item(other_contributor)
        LifecycleService.submit(other_contributor, item.id, 0)

        assert _error(LifecycleService.get_item(contributor, item.id), AuthzError).reason == 'missing_scope'
        assert LifecycleService.get_item(approver, item.id)['item'].id == item.id


class TestCheckSimilar:
    """Tests for LifecycleService.check_similar()."""

    def test_matches_pending_and_published_titles(self, app, contributor, other_contributor, admin):
        pending = create_test_item(other_contributor, title='Deploying Flask apps')
        LifecycleService.submit(other_contributor, pending.id, 0)
        published = publish_item(other_contributor, admin, title='Deploying Flask Apps')
        create_test_item(other_contributor, title='Deploying flask apps')

        similar = LifecycleService.check_similar(contributor, title='Deploying Flask apps')
        assert {item.id for item in similar} == {pending.id, published.id}

    def test_tags_check(self, app, contributor, other_contributor, admin):
        tagged = publish_item(other_contributor, admin, title='Unrelated', tags=['lang/python'])
        publish_item(other_contributor, admin, title='Other', tags=['rust'])

        similar = LifecycleService.check_similar(contributor, tags=['python'], check='tags')
        assert [item.id for item in similar] == [tagged.id]

    def test_both_requires_title_and_tags(self, app, contributor, other_contributor, admin):
        both = publish_item(other_contributor, admin, title='Flask caching guide', tags=['flask'])
        publish_item(other_contributor, admin, title='Flask caching guide', slug='guide-2', tags=['redis'])

        similar = LifecycleService.check_similar(contributor, title='Flask caching guide',
                                                 tags='flask', check='both')
        assert [item.id for item in similar] == [both.id]

    def test_excludes_item_being_edited(self, app, contributor, admin):
        item = publish_item(contributor, admin, title='My only post')
        assert LifecycleService.check_similar(contributor, title='My only post', exclude_id=item.id) == []

    def test_unknown_check_rejected(self, app, contributor):
        with pytest.raises(ValidationError) as exc_info:
            LifecycleService.check_similar(contributor, title='x', check='body')
        assert exc_info.value.field == 'check'

    def test_non_string_title_rejected(self, app, contributor):
        with pytest.raises(ValidationError) as exc_info:
            LifecycleService.check_similar(contributor, title=5)
        assert exc_info.value.field == 'title'
