"""
Content Models for AppBase.

Content items move through the approval lifecycle
(draft -> pending_approval -> published/rejected). The ``revision`` column
is the optimistic-concurrency token: SQLAlchemy issues every UPDATE with
``WHERE revision = <value read>`` and the services bump it on each
content-changing write.
"""

import uuid

from appbase.models import db, DateTimeUTC, JSONList, utcnow, isoformat


class ContentItem(db.Model):
    """
    SQLAlchemy model representing a content item (post).

    Status Values:
        - 'draft': Being written by its owner
        - 'pending_approval': Waiting in the review queue
        - 'published': Visible through the public API
        - 'rejected': Declined by an approver, with a reason

    Attributes:
        id: Unique UUID identifier
        owner_id: Principal who created the item (immutable)
        title: Plain-text title
        slug: Unique URL slug
        summary: Plain-text summary
        body: Markdown body (HTML escaped outside code fences)
        tags: Normalized tags including hierarchical expansions
        search_keywords: Normalized keywords for the keyword index
        cover_image: Optional cover image path or URL
        status: Current lifecycle status
        revision: Optimistic concurrency counter, starts at 0
        approver_id: Principal who made the last approval decision
        rejection_reason: Reason given on rejection
        created_at / updated_at / submitted_at / published_at: Timestamps
    """

    __tablename__ = 'content_items'

    STATUS_DRAFT = 'draft'
    STATUS_PENDING_APPROVAL = 'pending_approval'
    STATUS_PUBLISHED = 'published'
    STATUS_REJECTED = 'rejected'

    VALID_STATUSES = [
        STATUS_DRAFT,
        STATUS_PENDING_APPROVAL,
        STATUS_PUBLISHED,
        STATUS_REJECTED,
    ]

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(36), db.ForeignKey('principals.id'), nullable=False, index=True)

    title = db.Column(db.String(300), nullable=False)
    slug = db.Column(db.String(320), unique=True, nullable=False, index=True)
    summary = db.Column(db.Text, nullable=False, default='')
    body = db.Column(db.Text, nullable=False, default='')
    tags = db.Column(JSONList(), nullable=False, default=list)
    search_keywords = db.Column(JSONList(), nullable=False, default=list)
    cover_image = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(30), nullable=False, default=STATUS_DRAFT, index=True)
    revision = db.Column(db.Integer, nullable=False, default=0)

    approver_id = db.Column(db.String(36), db.ForeignKey('principals.id'), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(DateTimeUTC(), default=utcnow, index=True)
    updated_at = db.Column(DateTimeUTC(), default=utcnow)
    submitted_at = db.Column(DateTimeUTC(), nullable=True)
    published_at = db.Column(DateTimeUTC(), nullable=True, index=True)

    __table_args__ = (
        db.Index('ix_content_items_status_published_at', 'status', 'published_at'),
    )

    # The application sets revision explicitly; SQLAlchemy only checks it.
    __mapper_args__ = {
        'version_id_col': revision,
        'version_id_generator': False,
    }

    def is_published(self):
        return self.status == self.STATUS_PUBLISHED

    def to_dict(self):
        """Serialize the item for management API responses."""
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'title': self.title,
            'slug': self.slug,
            'summary': self.summary,
            'body': self.body,
            'tags': list(self.tags or []),
            'search_keywords': list(self.search_keywords or []),
            'cover_image': self.cover_image,
            'status': self.status,
            'revision': self.revision,
            'approver_id': self.approver_id,
            'rejection_reason': self.rejection_reason,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
            'submitted_at': isoformat(self.submitted_at),
            'published_at': isoformat(self.published_at),
        }

    def to_public_dict(self, include_body=True):
        """Serialize the item for the public API (no workflow fields)."""
        result = {
            'id': self.id,
            'title': self.title,
            'slug': self.slug,
            'summary': self.summary,
            'tags': list(self.tags or []),
            'cover_image': self.cover_image,
            'published_at': isoformat(self.published_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_body:
            result['body'] = self.body
        return result

    def __repr__(self):
        return f'<ContentItem {self.slug} status={self.status} rev={self.revision}>'


class ContentIndexEntry(db.Model):
    """
    Tag and keyword index row for a content item.

    Rows are rewritten in the same transaction as the item they describe.
    """

    __tablename__ = 'content_index_entries'

    KIND_TAG = 'tag'
    KIND_KEYWORD = 'keyword'

    content_id = db.Column(
        db.String(36),
        db.ForeignKey('content_items.id', ondelete='CASCADE'),
        primary_key=True
    )
    kind = db.Column(db.String(20), primary_key=True)
    value = db.Column(db.String(200), primary_key=True)

    __table_args__ = (
        db.Index('ix_content_index_entries_kind_value', 'kind', 'value'),
    )

    def __repr__(self):
        return f'<ContentIndexEntry {self.kind}={self.value} content={self.content_id}>'


class ReviewQueueEntry(db.Model):
    """
    Pending approval queue entry.

    Exists exactly while its content item is pending approval. The similar
    content ids are advisory only.
    """

    __tablename__ = 'review_queue'

    content_id = db.Column(
        db.String(36),
        db.ForeignKey('content_items.id', ondelete='CASCADE'),
        primary_key=True
    )
    owner_id = db.Column(db.String(36), db.ForeignKey('principals.id'), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    submitted_at = db.Column(DateTimeUTC(), nullable=False, default=utcnow, index=True)
    similar_content_ids = db.Column(JSONList(), nullable=False, default=list)

    def to_dict(self):
        return {
            'content_id': self.content_id,
            'owner_id': self.owner_id,
            'title': self.title,
            'submitted_at': isoformat(self.submitted_at),
            'similar_content_ids': list(self.similar_content_ids or []),
        }

    def __repr__(self):
        return f'<ReviewQueueEntry content={self.content_id}>'


class AvailableTag(db.Model):
    """Registry entry for a suggested tag."""

    __tablename__ = 'available_tags'

    tag = db.Column(db.String(200), primary_key=True)
    created_at = db.Column(DateTimeUTC(), default=utcnow)

    def to_dict(self):
        return {'tag': self.tag, 'created_at': isoformat(self.created_at)}

    def __repr__(self):
        return f'<AvailableTag {self.tag}>'
