"""
Media Service for AppBase.

Uploaded files are stored under MEDIA_PATH, one directory per owner. The
declared MIME type and the size are recorded as given; validating them is
left to the deployment (reverse proxy or scanner).

Content items only reference media: unlinking or deleting an item never
removes a file, and deleting an asset drops its links first.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app
from werkzeug.utils import secure_filename

from appbase.errors import AuthzError, NotFoundError, ValidationError, ValidationErrorKind
from appbase.models import ContentMediaLink, MediaAsset, utcnow
from appbase.storage import CONTENT_ITEMS, CONTENT_MEDIA_LINKS, MEDIA_ASSETS, KeyRange, storage
from appbase.utils.audit import log_action
from appbase.utils.permissions import Action, authorize
from appbase.utils.text import expand_tags, normalize_tag, strip_html


logger = logging.getLogger(__name__)


def _media_root() -> Path:
    return Path(current_app.config['MEDIA_PATH'])


def _linked_content_ids(txn, media_id) -> List[str]:
    links = txn.scan_index(CONTENT_MEDIA_LINKS, 'by_media', KeyRange(exact=media_id))
    return [link.content_id for link in links]


def media_dependents(txn, media_id: str):
    """Content links removed together with a media asset."""
    return [(CONTENT_MEDIA_LINKS, (link.content_id, link.media_id))
            for link in txn.scan_index(CONTENT_MEDIA_LINKS, 'by_media', KeyRange(exact=media_id))]


def purge_media(txn, asset: MediaAsset) -> int:
    """Delete an asset and its content links inside an open transaction; returns the links removed."""
    links = media_dependents(txn, asset.id)
    for family, key in links:
        txn.delete(family, key)
    txn.delete(MEDIA_ASSETS, asset.id)
    return len(links)


def remove_media_file(storage_path: str) -> None:
    """Remove a stored file once the deleting transaction has committed."""
    path = _media_root() / storage_path
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning(f'Media file already missing: {path}')


class MediaService:
    """
    Media asset management.

    Usage:
        asset = MediaService.register_upload(principal, request.files['file'], summary='Cover')
        MediaService.link_to_content(principal, asset.id, item.id)
    """

    @staticmethod
    def register_upload(principal, file_storage, summary: str = '', tags=None) -> MediaAsset:
        """
        Store an uploaded file and record it as a media asset.

        Args:
            principal: Uploading principal (becomes the owner)
            file_storage: werkzeug FileStorage from request.files
            summary: Free-text description
            tags: Tags for media search
        """
        authorize(principal, Action.MANAGE_MEDIA)
        if file_storage is None or not file_storage.filename:
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'A file is required', field='file')

        media_id = str(uuid.uuid4())
        filename = secure_filename(file_storage.filename) or 'upload'
        relative_path = Path(principal.id) / f'{media_id}_{filename}'
        target = _media_root() / relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        file_storage.save(str(target))

        asset = MediaAsset(
            id=media_id,
            owner_id=principal.id,
            storage_path=relative_path.as_posix(),
            original_filename=file_storage.filename[:255],
            mime_type=file_storage.mimetype or None,
            file_size=target.stat().st_size,
            summary=strip_html(summary).strip(),
            tags=expand_tags(tags),
            uploaded_at=utcnow(),
        )

        try:
            with storage.begin_transaction() as txn:
                txn.put(MEDIA_ASSETS, asset.id, asset)
                log_action(txn, 'media.upload', 'media', principal=principal,
                           resource_type='media', resource_id=asset.id,
                           details={'filename': asset.original_filename, 'size': asset.file_size})
                txn.commit()
        except Exception:
            target.unlink(missing_ok=True)
            raise

        logger.info(f'Stored media {asset.id} ({asset.file_size} bytes) for {principal.username}')
        return asset

    @staticmethod
    def list_own_media(principal) -> List[Dict[str, Any]]:
        authorize(principal, Action.MANAGE_MEDIA)
        with storage.begin_transaction() as txn:
            assets = list(txn.scan_index(MEDIA_ASSETS, 'by_owner', KeyRange(exact=principal.id)))
            return [asset.to_dict(_linked_content_ids(txn, asset.id)) for asset in assets]

    @staticmethod
    def search_media(principal, tag: str) -> List[Dict[str, Any]]:
        """
        Find media carrying a tag, newest upload first.

        Contributors search their own uploads; Admins search every asset.

        Raises:
            ValidationError(BAD_FIELD): Missing or empty tag
        """
        authorize(principal, Action.MANAGE_MEDIA)
        tag = normalize_tag(tag) if isinstance(tag, str) else ''
        if not tag:
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'A tag is required', field='tag')
        owner_id = None if principal.is_admin else principal.id
        with storage.begin_transaction() as txn:
            assets = list(txn.scan_index(MEDIA_ASSETS, 'by_tag', KeyRange(exact=owner_id, values=(tag,))))
            return [asset.to_dict(_linked_content_ids(txn, asset.id)) for asset in assets]

    @staticmethod
    def get_media(principal, media_id: str) -> Dict[str, Any]:
        with storage.begin_transaction() as txn:
            asset = txn.get(MEDIA_ASSETS, media_id)
            if asset is None:
                raise NotFoundError('Media not found')
            authorize(principal, Action.MANAGE_MEDIA, asset)
            return asset.to_dict(_linked_content_ids(txn, asset.id))

    @staticmethod
    def _load_pair(txn, principal, media_id, content_id):
        asset = txn.get(MEDIA_ASSETS, media_id)
        if asset is None:
            raise NotFoundError('Media not found')
        authorize(principal, Action.MANAGE_MEDIA, asset)

        item = txn.get(CONTENT_ITEMS, content_id)
        if item is None:
            raise NotFoundError('Content item not found')
        if not principal.is_admin and item.owner_id != principal.id:
            raise AuthzError('not_owner')
        return asset, item

    @classmethod
    def link_to_content(cls, principal, media_id: str, content_id: str) -> Dict[str, Any]:
        with storage.begin_transaction() as txn:
            asset, item = cls._load_pair(txn, principal, media_id, content_id)
            key = (item.id, asset.id)
            if txn.get(CONTENT_MEDIA_LINKS, key) is None:
                txn.put(CONTENT_MEDIA_LINKS, key,
                        ContentMediaLink(content_id=item.id, media_id=asset.id, created_at=utcnow()))
                log_action(txn, 'media.link', 'media', principal=principal,
                           resource_type='media', resource_id=asset.id,
                           details={'content_id': item.id})
            txn.commit()
        return {'media_id': media_id, 'content_id': content_id}

    @classmethod
    def unlink_from_content(cls, principal, media_id: str, content_id: str) -> None:
        with storage.begin_transaction() as txn:
            asset, item = cls._load_pair(txn, principal, media_id, content_id)
            if not txn.delete(CONTENT_MEDIA_LINKS, (item.id, asset.id)):
                raise NotFoundError('Media is not linked to this content item')
            log_action(txn, 'media.unlink', 'media', principal=principal,
                       resource_type='media', resource_id=asset.id,
                       details={'content_id': item.id})
            txn.commit()

    @staticmethod
    def delete_media(principal, media_id: str) -> Optional[str]:
        """
        Delete an asset, its content links and its file.

        Returns:
            The storage path of the removed file
        """
        with storage.begin_transaction() as txn:
            asset = txn.get(MEDIA_ASSETS, media_id)
            if asset is None:
                raise NotFoundError('Media not found')
            authorize(principal, Action.MANAGE_MEDIA, asset)

            unlinked = purge_media(txn, asset)
            log_action(txn, 'media.delete', 'media', principal=principal,
                       resource_type='media', resource_id=media_id,
                       details={'filename': asset.original_filename, 'unlinked': unlinked})
            txn.commit()

        remove_media_file(asset.storage_path)
        return asset.storage_path
