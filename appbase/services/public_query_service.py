"""
Public Query Facade for AppBase.

Read-only access for anonymous readers. Every query runs over a
``published_*`` index, whose predicate restricts results to published
items inside the query itself, so no draft, pending or rejected item can
be returned whatever the filter.
"""

from typing import Any, Dict, List, Optional

from flask import current_app

from appbase.errors import NotFoundError, ValidationError, ValidationErrorKind
from appbase.models import ContentItem
from appbase.storage import AVAILABLE_TAGS, CONTENT_ITEMS, KeyRange, storage
from appbase.utils.text import normalize_keywords, normalize_tag


SEARCH_TYPES = ('id', 'tag', 'title', 'keyword')


class PublicQueryService:
    """
    Published content queries.

    Usage:
        page = PublicQueryService.list_published({'tag': 'news'}, page=1, per_page=20)
        item = PublicQueryService.get_by_slug('hello-world')
    """

    @staticmethod
    def get_by_slug(slug: str) -> ContentItem:
        with storage.begin_transaction() as txn:
            item = txn.first(CONTENT_ITEMS, 'published_by_slug', KeyRange(exact=slug))
        if item is None:
            raise NotFoundError('Post not found')
        return item

    @staticmethod
    def get_by_id(item_id: str) -> ContentItem:
        with storage.begin_transaction() as txn:
            item = txn.first(CONTENT_ITEMS, 'published_by_id', KeyRange(exact=item_id))
        if item is None:
            raise NotFoundError('Post not found')
        return item

    @staticmethod
    def _select_index(query_filter: Dict[str, Any]):
        """Pick the published index and key range for a listing filter."""
        tags = []
        raw_tags = query_filter.get('tags')
        if raw_tags:
            if isinstance(raw_tags, str):
                raw_tags = raw_tags.split(',')
            tags = [normalize_tag(tag) for tag in raw_tags if isinstance(tag, str)]
        if query_filter.get('tag'):
            tags.insert(0, normalize_tag(query_filter['tag']))
        tags = [tag for tag in dict.fromkeys(tags) if tag]

        if query_filter.get('keyword'):
            keywords = normalize_keywords([query_filter['keyword']])
            if tags:
                raise ValidationError(ValidationErrorKind.BAD_FIELD,
                                      'Filter by tag or keyword, not both', field='keyword')
            return 'published_by_keyword', KeyRange(values=tuple(keywords))
        if tags:
            return 'published_by_tag', KeyRange(values=tuple(tags))
        return 'published_by_date', None

    @classmethod
    def list_published(cls, query_filter: Optional[Dict[str, Any]] = None,
                       page=1, per_page=None) -> Dict[str, Any]:
        """
        List published items, newest first.

        Args:
            query_filter: Optional dict with one of
                          'tag' (single tag), 'tags' (every tag must match),
                          'keyword' (single keyword)
            page: 1-based page number
            per_page: Page size, capped at PUBLIC_MAX_PAGE_SIZE
        """
        index_name, key_range = cls._select_index(query_filter or {})
        return cls._page(index_name, key_range, page, per_page)

    @staticmethod
    def _search_index(search_type: str, query: str):
        if search_type == 'id':
            return 'published_by_id', KeyRange(exact=query.strip())
        if search_type == 'tag':
            return 'published_by_tag', KeyRange(values=(normalize_tag(query),))
        if search_type == 'keyword':
            return 'published_by_keyword', KeyRange(values=tuple(normalize_keywords([query])))
        return 'published_by_title', KeyRange(exact=query.strip())

    @classmethod
    def search_published(cls, search_type: str, query: str, page=1, per_page=None) -> Dict[str, Any]:
        """
        Search published items by id, tag, title fragment or keyword.

        Used by contributors looking for posts to link or reference.

        Raises:
            ValidationError(BAD_FIELD): Unknown search type or empty query
        """
        if search_type not in SEARCH_TYPES:
            raise ValidationError(ValidationErrorKind.BAD_FIELD,
                                  f"Search type must be one of: {', '.join(SEARCH_TYPES)}", field='by')
        if not isinstance(query, str) or not query.strip():
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'Search query is required', field='q')
        index_name, key_range = cls._search_index(search_type, query)
        if not key_range.exact and not any(key_range.values):
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'Search query is required', field='q')
        return cls._page(index_name, key_range, page, per_page)

    @staticmethod
    def _page(index_name, key_range, page, per_page) -> Dict[str, Any]:
        config = current_app.config
        try:
            page = max(int(page or 1), 1)
            per_page = min(max(int(per_page or config['PUBLIC_PAGE_SIZE']), 1),
                           config['PUBLIC_MAX_PAGE_SIZE'])
        except (TypeError, ValueError):
            raise ValidationError(ValidationErrorKind.BAD_FIELD,
                                  'page and per_page must be integers', field='page')

        with storage.begin_transaction() as txn:
            total = txn.count_index(CONTENT_ITEMS, index_name, key_range)
            items = list(txn.scan_index(CONTENT_ITEMS, index_name, key_range,
                                        limit=per_page, offset=(page - 1) * per_page))

        return {
            'items': items,
            'page': page,
            'per_page': per_page,
            'total': total,
            'pages': (total + per_page - 1) // per_page,
        }

    @staticmethod
    def list_available_tags() -> List[str]:
        with storage.begin_transaction() as txn:
            return [entry.tag for entry in txn.scan_index(AVAILABLE_TAGS, 'by_tag')]
