"""
Media Models for AppBase.

Media assets are owned by their uploader and only referenced by content
items, so removing a content item drops the link rows, never the asset.
"""

import uuid

from appbase.models import db, DateTimeUTC, JSONList, utcnow, isoformat


class MediaAsset(db.Model):
    """
    SQLAlchemy model representing an uploaded media file.

    Attributes:
        id: Unique UUID identifier
        owner_id: Principal who uploaded the file
        storage_path: Path of the stored file relative to MEDIA_PATH
        original_filename: Filename supplied by the client
        mime_type: MIME type declared by the client
        file_size: Size in bytes
        summary: Free-text description
        tags: Normalized tags for media search
        uploaded_at: Timestamp of the upload
    """

    __tablename__ = 'media_assets'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = db.Column(db.String(36), db.ForeignKey('principals.id'), nullable=False, index=True)
    storage_path = db.Column(db.String(500), nullable=False)
    original_filename = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    summary = db.Column(db.Text, nullable=False, default='')
    tags = db.Column(JSONList(), nullable=False, default=list)
    uploaded_at = db.Column(DateTimeUTC(), default=utcnow, index=True)

    def to_dict(self, linked_content_ids=None):
        result = {
            'id': self.id,
            'owner_id': self.owner_id,
            'storage_path': self.storage_path,
            'original_filename': self.original_filename,
            'mime_type': self.mime_type,
            'file_size': self.file_size,
            'summary': self.summary,
            'tags': list(self.tags or []),
            'uploaded_at': isoformat(self.uploaded_at),
        }
        if linked_content_ids is not None:
            result['linked_content_ids'] = list(linked_content_ids)
        return result

    def __repr__(self):
        return f'<MediaAsset {self.original_filename}>'


class ContentMediaLink(db.Model):
    """Reference from a content item to a media asset it embeds."""

    __tablename__ = 'content_media_links'

    content_id = db.Column(
        db.String(36),
        db.ForeignKey('content_items.id', ondelete='CASCADE'),
        primary_key=True
    )
    media_id = db.Column(
        db.String(36),
        db.ForeignKey('media_assets.id', ondelete='CASCADE'),
        primary_key=True,
        index=True
    )
    created_at = db.Column(DateTimeUTC(), default=utcnow)

    def __repr__(self):
        return f'<ContentMediaLink content={self.content_id} media={self.media_id}>'
