"""
Content Lifecycle Engine for AppBase.

The approval state machine for content items:

    draft --submit--> pending_approval --approve--> published
                      pending_approval --reject---> rejected
                      pending_approval --withdraw-> draft
    published/rejected --revise--> pending_approval

Key features:
- Every operation is one storage transaction covering the item, its tag and
  keyword index rows, its review-queue entry and the audit entry
- Callers pass the revision they last saw; a mismatch, or a concurrent
  writer committing first, yields a STALE_WRITE result and nothing changes
- Authorization through the shared policy, plus the lifecycle guards
  (submit/withdraw by the owner only, no self-approval by contributors)
- Advisory similar-content detection on submission and revision

Results are explicit values, in the same shape for every operation:

    result = LifecycleService.approve(admin, item_id, expected_revision=1)
    if not result['success']:
        raise result['error']
    item = result['item']
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from appbase.errors import (
    AppBaseError,
    AuthzError,
    NotFoundError,
    StorageError,
    StorageErrorKind,
    TransitionError,
    TransitionErrorKind,
    ValidationError,
    ValidationErrorKind,
)
from appbase.models import ContentIndexEntry, ContentItem, ReviewQueueEntry, utcnow
from appbase.services.similarity import default_detector
from appbase.storage import (
    CONTENT_INDEX,
    CONTENT_ITEMS,
    CONTENT_MEDIA_LINKS,
    REVIEW_QUEUE,
    KeyRange,
    storage,
)
from appbase.utils.audit import log_action
from appbase.utils.permissions import Action, authorize, decide
from appbase.utils.text import (
    expand_tags,
    normalize_keywords,
    sanitize_markdown,
    slugify,
    strip_html,
)


logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 300
EDITABLE_FIELDS = ('title', 'slug', 'summary', 'body', 'tags', 'search_keywords', 'cover_image')
TEXT_FIELDS = ('title', 'slug', 'summary', 'body')
LIST_FIELDS = ('tags', 'search_keywords')
SIMILARITY_CHECKS = ('title', 'tags', 'both')


def _bad_field(field, message):
    return ValidationError(ValidationErrorKind.BAD_FIELD, message, field=field)


def prepare_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalize editable content fields.

    Titles and summaries are stripped of HTML, bodies are escaped outside
    code fences, tags are expanded and keywords normalized.

    Args:
        data: Raw field values
        partial: Only validate the fields present (updates)

    Raises:
        ValidationError(BAD_FIELD): Unknown field or invalid value
    """
    data = data or {}
    unknown = [key for key in data if key not in EDITABLE_FIELDS]
    if unknown:
        raise _bad_field(unknown[0], f'Unknown field: {unknown[0]}')

    for name in TEXT_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, str):
            raise _bad_field(name, f'{name.capitalize()} must be a string')
    for name in LIST_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, (str, list)):
            raise _bad_field(name, f'{name} must be a list or a comma-separated string')

    fields = {}
    if 'title' in data or not partial:
        title = strip_html(data.get('title')).strip()
        if not title:
            raise _bad_field('title', 'Title is required')
        if len(title) > TITLE_MAX_LENGTH:
            raise _bad_field('title', f'Title must be at most {TITLE_MAX_LENGTH} characters')
        fields['title'] = title
    if data.get('slug'):
        fields['slug'] = slugify(data['slug'])
    if 'summary' in data:
        fields['summary'] = strip_html(data['summary']).strip()
    if 'body' in data:
        fields['body'] = sanitize_markdown(data['body'])
    if 'tags' in data:
        fields['tags'] = expand_tags(data['tags'])
    if 'search_keywords' in data:
        fields['search_keywords'] = normalize_keywords(data['search_keywords'])
    if 'cover_image' in data:
        cover = data['cover_image']
        if cover is not None and not isinstance(cover, str):
            raise _bad_field('cover_image', 'Cover image must be a string')
        fields['cover_image'] = (cover or '').strip() or None
    return fields


def unique_slug(txn, base: str, exclude_id: Optional[str] = None) -> str:
    """Return base, or base-2, base-3, ... whichever is not taken."""
    candidate = base
    suffix = 2
    while True:
        existing = txn.first(CONTENT_ITEMS, 'by_slug', KeyRange(exact=candidate))
        if existing is None or existing.id == exclude_id:
            return candidate
        candidate = f'{base}-{suffix}'
        suffix += 1


def rewrite_index_entries(txn, item: ContentItem) -> None:
    """Bring the tag and keyword index rows of an item in line with its fields."""
    desired = {(ContentIndexEntry.KIND_TAG, tag) for tag in item.tags or []}
    desired |= {(ContentIndexEntry.KIND_KEYWORD, kw) for kw in item.search_keywords or []}

    existing = list(txn.scan_index(CONTENT_INDEX, 'by_content', KeyRange(exact=item.id)))
    current = set()
    for entry in existing:
        pair = (entry.kind, entry.value)
        if pair in desired:
            current.add(pair)
        else:
            txn.delete(CONTENT_INDEX, (entry.content_id, entry.kind, entry.value))

    for kind, value in sorted(desired - current):
        txn.put(CONTENT_INDEX, (item.id, kind, value),
                ContentIndexEntry(content_id=item.id, kind=kind, value=value))


def item_dependents(txn, content_id: str):
    """Records removed together with a content item: index rows, queue entry and media links."""
    dependents = [(CONTENT_INDEX, (entry.content_id, entry.kind, entry.value))
                  for entry in txn.scan_index(CONTENT_INDEX, 'by_content', KeyRange(exact=content_id))]
    if txn.get(REVIEW_QUEUE, content_id) is not None:
        dependents.append((REVIEW_QUEUE, content_id))
    dependents.extend((CONTENT_MEDIA_LINKS, (link.content_id, link.media_id))
                      for link in txn.scan_index(CONTENT_MEDIA_LINKS, 'by_content',
                                                 KeyRange(exact=content_id)))
    return dependents


def purge_item(txn, item: ContentItem) -> int:
    """
    Delete an item and its dependents inside an open transaction.

    Media assets are only unlinked, never deleted.

    Returns:
        Number of media links removed
    """
    unlinked = 0
    for family, key in item_dependents(txn, item.id):
        txn.delete(family, key)
        if family == CONTENT_MEDIA_LINKS:
            unlinked += 1
    txn.delete(CONTENT_ITEMS, item.id)
    return unlinked


def _paginate(page, per_page, max_per_page=100):
    try:
        page = max(int(page or 1), 1)
        per_page = min(max(int(per_page or 20), 1), max_per_page)
    except (TypeError, ValueError):
        raise _bad_field('page', 'page and per_page must be integers')
    return page, per_page


class LifecycleService:
    """
    Content lifecycle operations.

    Every operation takes the acting principal as stored (role and scopes
    re-read at session validation) and returns a dict with keys:
    - success: bool
    - item: The ContentItem after the operation (if successful)
    - error: An AppBaseError describing the failure (if unsuccessful)
    """

    # Pluggable: any callable (item, candidates) -> list of ids
    detector = default_detector

    SIMILARITY_SCAN_LIMIT = 500

    @staticmethod
    def _result(item=None, error: Optional[AppBaseError] = None) -> Dict[str, Any]:
        return {
            'success': error is None,
            'item': item,
            'error': error,
        }

    @classmethod
    def _stale(cls, item_id, expected, actual=None):
        logger.warning(f'Stale write on content {item_id}: expected revision {expected}, found {actual}')
        return cls._result(error=TransitionError(
            TransitionErrorKind.STALE_WRITE,
            expected_revision=expected,
            current_revision=actual,
        ))

    @staticmethod
    def _apply_fields(txn, item: ContentItem, fields: Dict[str, Any]) -> None:
        for key, value in fields.items():
            if key != 'slug':
                setattr(item, key, value)
        if 'slug' in fields:
            item.slug = unique_slug(txn, fields['slug'], exclude_id=item.id)
        if 'tags' in fields or 'search_keywords' in fields:
            rewrite_index_entries(txn, item)

    @classmethod
    def _similarity_candidates(cls, txn):
        """Pending and published items; drafts and rejected items stay private to their owners."""
        candidates = []
        for status in (ContentItem.STATUS_PENDING_APPROVAL, ContentItem.STATUS_PUBLISHED):
            candidates.extend(txn.scan_index(CONTENT_ITEMS, 'by_status', KeyRange(exact=status),
                                             limit=cls.SIMILARITY_SCAN_LIMIT))
        return candidates

    @classmethod
    def _enqueue(cls, txn, item: ContentItem) -> None:
        candidates = cls._similarity_candidates(txn)
        try:
            similar = list(cls.detector(item, candidates))
        except Exception as e:
            logger.warning(f'Similarity detection failed for content {item.id}: {e}')
            similar = []

        entry = txn.get(REVIEW_QUEUE, item.id)
        if entry is None:
            entry = ReviewQueueEntry(content_id=item.id)
        entry.owner_id = item.owner_id
        entry.title = item.title
        entry.submitted_at = item.submitted_at
        entry.similar_content_ids = similar
        txn.put(REVIEW_QUEUE, item.id, entry)

    @staticmethod
    def _dequeue(txn, item: ContentItem) -> None:
        txn.delete(REVIEW_QUEUE, item.id)

    @classmethod
    def _run(cls, principal, item_id: str, expected_revision, action: Action, from_statuses,
             mutate, audit_action: str, owner_only: bool = False) -> Dict[str, Any]:
        """
        Execute one transition as a single transaction.

        Order of checks: existence, policy, lifecycle guards, revision,
        current state. The mutation runs only when all pass.
        """
        if expected_revision is None:
            return cls._result(error=_bad_field('expected_revision', 'expected_revision is required'))

        try:
            with storage.begin_transaction() as txn:
                item = txn.get(CONTENT_ITEMS, item_id)
                if item is None:
                    return cls._result(error=NotFoundError('Content item not found'))

                decision = decide(principal, action, item)
                if not decision:
                    return cls._result(error=AuthzError(decision.reason, action=action.value))
                if owner_only and item.owner_id != principal.id:
                    return cls._result(error=AuthzError('not_owner', action=action.value))
                if (action in (Action.APPROVE, Action.REJECT) and not principal.is_admin
                        and item.owner_id == principal.id):
                    return cls._result(error=AuthzError('self_approval', action=action.value))

                if item.revision != expected_revision:
                    return cls._stale(item_id, expected_revision, item.revision)

                if item.status not in from_statuses:
                    return cls._result(error=TransitionError(
                        TransitionErrorKind.INVALID_TRANSITION,
                        status=item.status,
                        action=action.value,
                    ))

                previous_status = item.status
                now = utcnow()
                mutate(txn, item, now)
                item.revision = item.revision + 1
                item.updated_at = now
                txn.put(CONTENT_ITEMS, item.id, item)
                log_action(txn, audit_action, 'content', principal=principal,
                           resource_type='content_item', resource_id=item.id,
                           details={'from': previous_status, 'to': item.status,
                                    'revision': item.revision})
                txn.commit()
        except StorageError as e:
            if e.kind is StorageErrorKind.CONFLICT:
                return cls._stale(item_id, expected_revision)
            raise
        except ValidationError as e:
            return cls._result(error=e)

        logger.info(f'{audit_action}: content {item.id} now {item.status} rev {item.revision}')
        return cls._result(item=item)

    @classmethod
    def create_draft(cls, principal, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new draft owned by the principal, at revision 0."""
        decision = decide(principal, Action.CREATE)
        if not decision:
            return cls._result(error=AuthzError(decision.reason, action=Action.CREATE.value))
        try:
            fields = prepare_fields(data)
        except ValidationError as e:
            return cls._result(error=e)

        now = utcnow()
        item = ContentItem(
            id=str(uuid.uuid4()),
            owner_id=principal.id,
            title=fields['title'],
            summary=fields.get('summary', ''),
            body=fields.get('body', ''),
            tags=fields.get('tags', []),
            search_keywords=fields.get('search_keywords', []),
            cover_image=fields.get('cover_image'),
            status=ContentItem.STATUS_DRAFT,
            revision=0,
            created_at=now,
            updated_at=now,
        )

        with storage.begin_transaction() as txn:
            item.slug = unique_slug(txn, fields.get('slug') or slugify(item.title))
            txn.put(CONTENT_ITEMS, item.id, item)
            rewrite_index_entries(txn, item)
            log_action(txn, 'content.create', 'content', principal=principal,
                       resource_type='content_item', resource_id=item.id,
                       details={'title': item.title, 'slug': item.slug})
            txn.commit()

        logger.info(f'content.create: {item.id} by {principal.username}')
        return cls._result(item=item)

    @classmethod
    def update_draft(cls, principal, item_id: str, expected_revision,
                     data: Dict[str, Any]) -> Dict[str, Any]:
        """Edit the fields of a draft."""
        try:
            fields = prepare_fields(data, partial=True)
        except ValidationError as e:
            return cls._result(error=e)

        def mutate(txn, item, now):
            cls._apply_fields(txn, item, fields)

        return cls._run(principal, item_id, expected_revision, Action.EDIT,
                        (ContentItem.STATUS_DRAFT,), mutate, 'content.update')

    @classmethod
    def submit(cls, principal, item_id: str, expected_revision) -> Dict[str, Any]:
        """Owner submits a draft for approval."""
        def mutate(txn, item, now):
            item.status = ContentItem.STATUS_PENDING_APPROVAL
            item.submitted_at = now
            item.approver_id = None
            item.rejection_reason = None
            cls._enqueue(txn, item)

        return cls._run(principal, item_id, expected_revision, Action.SUBMIT,
                        (ContentItem.STATUS_DRAFT,), mutate, 'content.submit', owner_only=True)

    @classmethod
    def withdraw(cls, principal, item_id: str, expected_revision) -> Dict[str, Any]:
        """Owner pulls a pending item back to draft."""
        def mutate(txn, item, now):
            item.status = ContentItem.STATUS_DRAFT
            item.submitted_at = None
            cls._dequeue(txn, item)

        return cls._run(principal, item_id, expected_revision, Action.WITHDRAW,
                        (ContentItem.STATUS_PENDING_APPROVAL,), mutate, 'content.withdraw',
                        owner_only=True)

    @classmethod
    def approve(cls, principal, item_id: str, expected_revision) -> Dict[str, Any]:
        """Publish a pending item."""
        def mutate(txn, item, now):
            item.status = ContentItem.STATUS_PUBLISHED
            item.approver_id = principal.id
            item.rejection_reason = None
            item.published_at = now
            cls._dequeue(txn, item)

        return cls._run(principal, item_id, expected_revision, Action.APPROVE,
                        (ContentItem.STATUS_PENDING_APPROVAL,), mutate, 'content.approve')

    @classmethod
    def reject(cls, principal, item_id: str, expected_revision, reason: str) -> Dict[str, Any]:
        """Decline a pending item. A reason is required."""
        reason = strip_html(reason).strip()
        if not reason:
            return cls._result(error=_bad_field('reason', 'A rejection reason is required'))

        def mutate(txn, item, now):
            item.status = ContentItem.STATUS_REJECTED
            item.approver_id = principal.id
            item.rejection_reason = reason
            cls._dequeue(txn, item)

        return cls._run(principal, item_id, expected_revision, Action.REJECT,
                        (ContentItem.STATUS_PENDING_APPROVAL,), mutate, 'content.reject')

    @classmethod
    def revise(cls, principal, item_id: str, expected_revision,
               data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send a published or rejected item back for approval, optionally with new fields.

        A revised published item leaves the public API until it is approved again.
        """
        try:
            fields = prepare_fields(data, partial=True) if data else {}
        except ValidationError as e:
            return cls._result(error=e)

        def mutate(txn, item, now):
            cls._apply_fields(txn, item, fields)
            item.status = ContentItem.STATUS_PENDING_APPROVAL
            item.submitted_at = now
            item.published_at = None
            item.approver_id = None
            item.rejection_reason = None
            cls._enqueue(txn, item)

        return cls._run(principal, item_id, expected_revision, Action.REVISE,
                        (ContentItem.STATUS_PUBLISHED, ContentItem.STATUS_REJECTED),
                        mutate, 'content.revise')

    @classmethod
    def delete_item(cls, principal, item_id: str, expected_revision=None) -> Dict[str, Any]:
        """
        Delete an item with its index rows, queue entry and media links.

        Media assets themselves are never deleted here.
        """
        try:
            with storage.begin_transaction() as txn:
                item = txn.get(CONTENT_ITEMS, item_id)
                if item is None:
                    return cls._result(error=NotFoundError('Content item not found'))

                decision = decide(principal, Action.DELETE, item)
                if not decision:
                    return cls._result(error=AuthzError(decision.reason, action=Action.DELETE.value))

                if expected_revision is not None and item.revision != expected_revision:
                    return cls._stale(item_id, expected_revision, item.revision)

                unlinked = purge_item(txn, item)
                log_action(txn, 'content.delete', 'content', principal=principal,
                           resource_type='content_item', resource_id=item.id,
                           details={'title': item.title, 'status': item.status,
                                    'unlinked_media': unlinked})
                txn.commit()
        except StorageError as e:
            if e.kind is StorageErrorKind.CONFLICT:
                return cls._stale(item_id, expected_revision)
            raise

        logger.info(f'content.delete: {item_id} by {principal.username}')
        return cls._result(item=item)

    @classmethod
    def get_item(cls, principal, item_id: str) -> Dict[str, Any]:
        with storage.begin_transaction() as txn:
            item = txn.get(CONTENT_ITEMS, item_id)
        if item is None:
            return cls._result(error=NotFoundError('Content item not found'))
        decision = decide(principal, Action.READ, item)
        if not decision:
            return cls._result(error=AuthzError(decision.reason, action=Action.READ.value))
        return cls._result(item=item)

    @staticmethod
    def list_own_items(principal, page=1, per_page=20) -> Dict[str, Any]:
        """List the principal's own items, most recently updated first."""
        page, per_page = _paginate(page, per_page)
        key_range = KeyRange(exact=principal.id)
        with storage.begin_transaction() as txn:
            total = txn.count_index(CONTENT_ITEMS, 'by_owner', key_range)
            items = list(txn.scan_index(CONTENT_ITEMS, 'by_owner', key_range,
                                        limit=per_page, offset=(page - 1) * per_page))
        return {'items': items, 'page': page, 'per_page': per_page, 'total': total}

    @staticmethod
    def list_all_items(principal, status=None, page=1, per_page=20) -> Dict[str, Any]:
        """Admin listing of every item, optionally filtered by status."""
        authorize(principal, Action.LIST_ALL_CONTENT)
        page, per_page = _paginate(page, per_page)
        if status is not None and status not in ContentItem.VALID_STATUSES:
            raise _bad_field('status', f'Unknown status: {status}')
        with storage.begin_transaction() as txn:
            if status:
                key_range = KeyRange(exact=status)
                total = txn.count_index(CONTENT_ITEMS, 'by_status', key_range)
                items = list(txn.scan_index(CONTENT_ITEMS, 'by_status', key_range,
                                            limit=per_page, offset=(page - 1) * per_page))
            else:
                total = txn.count_index(CONTENT_ITEMS, 'by_created')
                items = list(txn.scan_index(CONTENT_ITEMS, 'by_created',
                                            limit=per_page, offset=(page - 1) * per_page))
        return {'items': items, 'page': page, 'per_page': per_page, 'total': total}

    @staticmethod
    def list_review_queue(principal):
        """Pending items, oldest submission first."""
        authorize(principal, Action.VIEW_REVIEW_QUEUE)
        with storage.begin_transaction() as txn:
            return list(txn.scan_index(REVIEW_QUEUE, 'by_submitted'))

    @classmethod
    def check_similar(cls, principal, title: str = '', tags=None, check: str = 'title',
                      exclude_id: Optional[str] = None) -> List[ContentItem]:
        """
        Look for pending or published items resembling a post before it is submitted.

        Args:
            principal: Acting principal
            title: Candidate title, compared with the configured detector
            tags: Candidate tags; any shared tag counts as a match
            check: 'title', 'tags' or 'both' (title and tags must both match)
            exclude_id: Item to leave out, usually the one being edited

        Returns:
            Matching items, most similar title first
        """
        authorize(principal, Action.CREATE)
        if check not in SIMILARITY_CHECKS:
            raise _bad_field('check', f"check must be one of: {', '.join(SIMILARITY_CHECKS)}")
        if title is not None and not isinstance(title, str):
            raise _bad_field('title', 'Title must be a string')
        if tags is not None and not isinstance(tags, (str, list)):
            raise _bad_field('tags', 'tags must be a list or a comma-separated string')

        candidate_item = ContentItem(id=exclude_id or '', title=strip_html(title or '').strip())
        wanted_tags = set(expand_tags(tags))

        with storage.begin_transaction() as txn:
            candidates = [candidate for candidate in cls._similarity_candidates(txn)
                          if candidate.id != exclude_id]

        by_title = []
        if check in ('title', 'both') and candidate_item.title:
            by_title = list(cls.detector(candidate_item, candidates))
        by_tags = set()
        if check in ('tags', 'both') and wanted_tags:
            by_tags = {candidate.id for candidate in candidates
                       if wanted_tags.intersection(candidate.tags or [])}

        if check == 'title':
            matched = by_title
        elif check == 'tags':
            matched = [candidate.id for candidate in candidates if candidate.id in by_tags]
        else:
            matched = [content_id for content_id in by_title if content_id in by_tags]

        items = {candidate.id: candidate for candidate in candidates}
        return [items[content_id] for content_id in matched if content_id in items]
