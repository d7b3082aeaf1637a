"""
Tag registry service for AppBase.

The registry holds the suggested tags offered to authors and listed by the
public API. Registering a hierarchical tag registers its whole expansion.
"""

import logging
from typing import List

from appbase.errors import NotFoundError, ValidationError, ValidationErrorKind
from appbase.models import AvailableTag, utcnow
from appbase.storage import AVAILABLE_TAGS, storage
from appbase.utils.audit import log_action
from appbase.utils.permissions import Action, authorize
from appbase.utils.text import expand_tags, normalize_tag


logger = logging.getLogger(__name__)


class TagService:

    @staticmethod
    def list_tags() -> List[AvailableTag]:
        with storage.begin_transaction() as txn:
            return list(txn.scan_index(AVAILABLE_TAGS, 'by_tag'))

    @staticmethod
    def add_tag(principal, tag: str) -> List[str]:
        """
        Register a tag and its hierarchical expansion.

        Returns:
            The tags that were newly added
        """
        authorize(principal, Action.MANAGE_TAGS)
        if not normalize_tag(tag):
            raise ValidationError(ValidationErrorKind.BAD_FIELD, 'Tag is required', field='tag')

        added = []
        with storage.begin_transaction() as txn:
            for value in expand_tags([tag]):
                if txn.get(AVAILABLE_TAGS, value) is None:
                    txn.put(AVAILABLE_TAGS, value, AvailableTag(tag=value, created_at=utcnow()))
                    added.append(value)
            if added:
                log_action(txn, 'tags.add', 'settings', principal=principal,
                           resource_type='tag', resource_id=normalize_tag(tag),
                           details={'added': added})
            txn.commit()
        return added

    @staticmethod
    def delete_tag(principal, tag: str) -> None:
        """Remove a single tag from the registry. Content keeps its tags."""
        authorize(principal, Action.MANAGE_TAGS)
        value = normalize_tag(tag)
        with storage.begin_transaction() as txn:
            if not txn.delete(AVAILABLE_TAGS, value):
                raise NotFoundError('Tag not found')
            log_action(txn, 'tags.delete', 'settings', principal=principal,
                       resource_type='tag', resource_id=value)
            txn.commit()
        logger.info(f'Removed tag "{value}"')
