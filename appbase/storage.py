"""
AppBase Storage Engine.

Transactional, indexed key-value access over the SQLAlchemy models. Every
service mutation goes through a Transaction:

    txn = storage.begin_transaction()
    try:
        item = txn.get('content_items', item_id)
        item.title = 'New title'
        txn.put('content_items', item_id, item)
        txn.commit()
    except StorageError:
        ...  # txn is already aborted

Each transaction owns its own SQLAlchemy Session, so nothing read in one
transaction is visible to, or cached for, another. Records with a
``revision`` column are written with ``WHERE revision = <value read>``; a
concurrent writer that got there first makes the whole commit fail with
StorageError(CONFLICT).

Indexes are declared per family. An index may carry a fixed predicate that
is part of every scan over it; the ``published_*`` indexes on content items
use this to restrict results to published records at the query level.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import Text, cast, func, inspect as sa_inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from appbase.errors import StorageError, StorageErrorKind
from appbase.models import (
    db,
    AuditLog,
    AvailableTag,
    ContentIndexEntry,
    ContentItem,
    ContentMediaLink,
    ManagementSession,
    MediaAsset,
    Principal,
    ReviewQueueEntry,
    Setting,
)


logger = logging.getLogger(__name__)


# Family names
PRINCIPALS = 'principals'
SESSIONS = 'sessions'
SETTINGS = 'settings'
CONTENT_ITEMS = 'content_items'
CONTENT_INDEX = 'content_index_entries'
REVIEW_QUEUE = 'review_queue'
AVAILABLE_TAGS = 'available_tags'
MEDIA_ASSETS = 'media_assets'
CONTENT_MEDIA_LINKS = 'content_media_links'
AUDIT_LOGS = 'audit_logs'


@dataclass(frozen=True)
class KeyRange:
    """
    Range over an index key.

    Attributes:
        exact: Match records whose index key equals this value
        low: Inclusive lower bound
        high: Exclusive upper bound
        values: Match records carrying every one of these values
                (only meaningful for multi-valued indexes such as tags)
    """

    exact: Any = None
    low: Any = None
    high: Any = None
    values: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class IndexDefinition:
    """
    Named, ordered access path over one family.

    Attributes:
        name: Index name used by scan_index
        order_by: Ordering clauses; scans are always ordered by these
        key_column: Column compared against KeyRange.exact/low/high
        predicate: Fixed clauses applied to every scan over this index
        matcher: Custom KeyRange -> clauses translation (overrides key_column)
    """

    name: str
    order_by: Tuple[Any, ...]
    key_column: Any = None
    predicate: Tuple[Any, ...] = ()
    matcher: Optional[Callable[[KeyRange], List[Any]]] = None

    def clauses(self, key_range: Optional[KeyRange]) -> List[Any]:
        result = list(self.predicate)
        if key_range is None:
            return result
        if self.matcher is not None:
            result.extend(self.matcher(key_range))
            return result
        if self.key_column is None:
            raise ValueError(f'Index "{self.name}" does not accept a key range')
        if key_range.exact is not None:
            result.append(self.key_column == key_range.exact)
        if key_range.low is not None:
            result.append(self.key_column >= key_range.low)
        if key_range.high is not None:
            result.append(self.key_column < key_range.high)
        return result


@dataclass(frozen=True)
class Family:
    """A record family: one model class plus its named indexes."""

    name: str
    model: type
    indexes: Dict[str, IndexDefinition] = field(default_factory=dict)

    @property
    def primary_key_columns(self):
        return sa_inspect(self.model).primary_key

    def normalize_key(self, key) -> Tuple[Any, ...]:
        return tuple(key) if isinstance(key, (tuple, list)) else (key,)

    def identity_of(self, record) -> Tuple[Any, ...]:
        mapper = sa_inspect(self.model)
        return tuple(getattr(record, mapper.get_property_by_column(col).key)
                     for col in mapper.primary_key)

    def assign_key(self, record, key):
        mapper = sa_inspect(self.model)
        for col, value in zip(mapper.primary_key, self.normalize_key(key)):
            setattr(record, mapper.get_property_by_column(col).key, value)

    def index(self, index_name: str) -> IndexDefinition:
        if index_name == 'primary':
            return IndexDefinition(name='primary', order_by=tuple(self.primary_key_columns),
                                   key_column=self.primary_key_columns[0])
        try:
            return self.indexes[index_name]
        except KeyError:
            raise ValueError(f'Unknown index "{index_name}" for family "{self.name}"') from None


_PUBLISHED = (ContentItem.status == ContentItem.STATUS_PUBLISHED,)
_PUBLISHED_ORDER = (ContentItem.published_at.desc(), ContentItem.id)


def _index_entry_matcher(kind):
    def matcher(key_range: KeyRange):
        values = key_range.values or ((key_range.exact,) if key_range.exact is not None else ())
        return [
            ContentItem.id.in_(
                select(ContentIndexEntry.content_id).where(
                    ContentIndexEntry.kind == kind,
                    ContentIndexEntry.value == value,
                )
            )
            for value in values
        ]
    return matcher


def _title_matcher(key_range: KeyRange):
    return [func.lower(ContentItem.title).contains((key_range.exact or '').lower(), autoescape=True)]


def _media_tag_matcher(key_range: KeyRange):
    clauses = [cast(MediaAsset.tags, Text).contains(json.dumps(tag), autoescape=True)
               for tag in key_range.values]
    if key_range.exact is not None:
        clauses.append(MediaAsset.owner_id == key_range.exact)
    return clauses


def _role_username_matcher(key_range: KeyRange):
    role, username = key_range.exact
    return [Principal.role == role, Principal.username == username]


def _build_families() -> Dict[str, Family]:
    families = [
        Family(PRINCIPALS, Principal, {
            'by_role': IndexDefinition('by_role', (Principal.username,), key_column=Principal.role),
            'by_role_username': IndexDefinition('by_role_username', (Principal.username,),
                                                matcher=_role_username_matcher),
            'by_created': IndexDefinition('by_created', (Principal.created_at, Principal.id)),
        }),
        Family(SESSIONS, ManagementSession, {
            'by_principal': IndexDefinition('by_principal', (ManagementSession.issued_at,),
                                            key_column=ManagementSession.principal_id),
        }),
        Family(SETTINGS, Setting),
        Family(CONTENT_ITEMS, ContentItem, {
            'by_owner': IndexDefinition('by_owner', (ContentItem.updated_at.desc(), ContentItem.id),
                                        key_column=ContentItem.owner_id),
            'by_slug': IndexDefinition('by_slug', (ContentItem.slug,), key_column=ContentItem.slug),
            'by_status': IndexDefinition('by_status', (ContentItem.created_at, ContentItem.id),
                                         key_column=ContentItem.status),
            'by_created': IndexDefinition('by_created', (ContentItem.created_at.desc(), ContentItem.id)),
            'published_by_date': IndexDefinition('published_by_date', _PUBLISHED_ORDER,
                                                 key_column=ContentItem.published_at,
                                                 predicate=_PUBLISHED),
            'published_by_slug': IndexDefinition('published_by_slug', (ContentItem.slug,),
                                                 key_column=ContentItem.slug, predicate=_PUBLISHED),
            'published_by_id': IndexDefinition('published_by_id', (ContentItem.id,),
                                               key_column=ContentItem.id, predicate=_PUBLISHED),
            'published_by_tag': IndexDefinition('published_by_tag', _PUBLISHED_ORDER,
                                                predicate=_PUBLISHED,
                                                matcher=_index_entry_matcher(ContentIndexEntry.KIND_TAG)),
            'published_by_keyword': IndexDefinition('published_by_keyword', _PUBLISHED_ORDER,
                                                    predicate=_PUBLISHED,
                                                    matcher=_index_entry_matcher(ContentIndexEntry.KIND_KEYWORD)),
            'published_by_title': IndexDefinition('published_by_title', _PUBLISHED_ORDER,
                                                  predicate=_PUBLISHED, matcher=_title_matcher),
        }),
        Family(CONTENT_INDEX, ContentIndexEntry, {
            'by_content': IndexDefinition('by_content', (ContentIndexEntry.kind, ContentIndexEntry.value),
                                          key_column=ContentIndexEntry.content_id),
        }),
        Family(REVIEW_QUEUE, ReviewQueueEntry, {
            'by_submitted': IndexDefinition('by_submitted', (ReviewQueueEntry.submitted_at,
                                                             ReviewQueueEntry.content_id),
                                            key_column=ReviewQueueEntry.submitted_at),
            'by_owner': IndexDefinition('by_owner', (ReviewQueueEntry.submitted_at,),
                                        key_column=ReviewQueueEntry.owner_id),
        }),
        Family(AVAILABLE_TAGS, AvailableTag, {
            'by_tag': IndexDefinition('by_tag', (AvailableTag.tag,), key_column=AvailableTag.tag),
        }),
        Family(MEDIA_ASSETS, MediaAsset, {
            'by_owner': IndexDefinition('by_owner', (MediaAsset.uploaded_at.desc(), MediaAsset.id),
                                        key_column=MediaAsset.owner_id),
            'by_tag': IndexDefinition('by_tag', (MediaAsset.uploaded_at.desc(), MediaAsset.id),
                                      matcher=_media_tag_matcher),
        }),
        Family(CONTENT_MEDIA_LINKS, ContentMediaLink, {
            'by_content': IndexDefinition('by_content', (ContentMediaLink.media_id,),
                                          key_column=ContentMediaLink.content_id),
            'by_media': IndexDefinition('by_media', (ContentMediaLink.content_id,),
                                        key_column=ContentMediaLink.media_id),
        }),
        Family(AUDIT_LOGS, AuditLog, {
            'by_date': IndexDefinition('by_date', (AuditLog.created_at.desc(), AuditLog.id)),
            'by_resource': IndexDefinition('by_resource', (AuditLog.created_at.desc(),),
                                           key_column=AuditLog.resource_id),
        }),
    ]
    return {family.name: family for family in families}


FAMILIES: Dict[str, Family] = _build_families()


def get_family(name: str) -> Family:
    try:
        return FAMILIES[name]
    except KeyError:
        raise ValueError(f'Unknown record family "{name}"') from None


class Transaction:
    """
    A unit of work against the storage engine.

    Writes are buffered in the transaction's own Session and applied by
    commit() all at once, or not at all. A transaction is single-use:
    after commit() or abort() it is closed.
    """

    BATCH_SIZE = 100

    def __init__(self, session: Session):
        self._session = session
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except StaleDataError as e:
            self.abort()
            logger.warning(f'Optimistic concurrency conflict: {e}')
            raise StorageError(StorageErrorKind.CONFLICT) from e
        except IntegrityError as e:
            self.abort()
            logger.warning(f'Integrity conflict: {e.orig}')
            raise StorageError(StorageErrorKind.CONFLICT) from e
        except SQLAlchemyError as e:
            self.abort()
            logger.error(f'Storage failure: {e}')
            raise StorageError(StorageErrorKind.IO_FAILURE) from e

    def _check_open(self):
        if self._closed:
            raise RuntimeError('Transaction is closed')

    def get(self, family: str, key) -> Optional[Any]:
        """Return the record stored under key, or None."""
        self._check_open()
        fam = get_family(family)
        key = fam.normalize_key(key)
        with self._translate_errors():
            return self._session.get(fam.model, key if len(key) > 1 else key[0])

    def put(self, family: str, key, record) -> None:
        """Insert or update a record under key."""
        self._check_open()
        fam = get_family(family)
        if not isinstance(record, fam.model):
            raise TypeError(f'Family "{family}" stores {fam.model.__name__} records')
        key = fam.normalize_key(key)
        identity = fam.identity_of(record)
        if all(part is None for part in identity):
            fam.assign_key(record, key)
        elif identity != key:
            raise ValueError(f'Record key {identity!r} does not match {key!r}')
        self._session.add(record)

    def delete(self, family: str, key) -> bool:
        """Delete the record stored under key. Returns False if there was none."""
        record = self.get(family, key)
        if record is None:
            return False
        self._session.delete(record)
        return True

    def scan_index(self, family: str, index_name: str, key_range: Optional[KeyRange] = None,
                   limit: Optional[int] = None, offset: int = 0) -> Iterator[Any]:
        """
        Lazily iterate the records of a family in index order.

        Each call issues a fresh query, so iterating twice restarts the scan.

        Args:
            family: Family name
            index_name: Index declared for the family, or 'primary'
            key_range: Optional KeyRange over the index key
            limit: Maximum number of records
            offset: Number of records to skip
        """
        self._check_open()
        fam = get_family(family)
        index = fam.index(index_name)
        stmt = select(fam.model).where(*index.clauses(key_range)).order_by(*index.order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._iterate(stmt)

    def _iterate(self, stmt) -> Iterator[Any]:
        with self._translate_errors():
            result = self._session.scalars(stmt.execution_options(yield_per=self.BATCH_SIZE))
            try:
                for record in result:
                    yield record
            finally:
                result.close()

    def first(self, family: str, index_name: str, key_range: Optional[KeyRange] = None) -> Optional[Any]:
        """Return the first record of an index scan, or None."""
        records = list(self.scan_index(family, index_name, key_range, limit=1))
        return records[0] if records else None

    def count_index(self, family: str, index_name: str, key_range: Optional[KeyRange] = None) -> int:
        """Count the records a scan over the index would return."""
        self._check_open()
        fam = get_family(family)
        index = fam.index(index_name)
        stmt = select(func.count()).select_from(fam.model).where(*index.clauses(key_range))
        with self._translate_errors():
            return self._session.scalar(stmt) or 0

    def commit(self) -> None:
        """Apply all buffered writes atomically."""
        self._check_open()
        with self._translate_errors():
            self._session.commit()
        self._close()

    def abort(self) -> None:
        """Discard all buffered writes. Safe to call more than once."""
        if self._closed:
            return
        # close() detaches records before rolling back, so records already
        # handed to the caller stay readable
        self._close()

    def _close(self):
        self._closed = True
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # Uncommitted work never survives the block
        self.abort()
        return False


class StorageEngine:
    """Factory for transactions over the application's database."""

    def __init__(self, database):
        self._db = database

    def begin_transaction(self) -> Transaction:
        session = Session(bind=self._db.engine, expire_on_commit=False, autoflush=True)
        return Transaction(session)

    def initialize_schema(self) -> None:
        """Create every table that does not exist yet."""
        self._db.create_all()

    @staticmethod
    def families() -> List[str]:
        return list(FAMILIES)


storage = StorageEngine(db)
