"""
AppBase Services Package.

Business logic for the content backend:
- identity_service: Login, signed sessions, elevation and surface resolution
- principal_service: Principal administration and settings
- lifecycle_service: The content approval state machine
- similarity: Advisory similar-content detection
- record_inspector: Schema-aware raw record access for Admins
- public_query_service: Published content for anonymous readers
- tag_service: Tag registry
- media_service: Media uploads and content links
"""

from appbase.services.identity_service import IdentityService, IssuedSession, SessionContext
from appbase.services.principal_service import PrincipalService
from appbase.services.lifecycle_service import LifecycleService
from appbase.services.record_inspector import RecordInspector
from appbase.services.public_query_service import PublicQueryService
from appbase.services.tag_service import TagService
from appbase.services.media_service import MediaService

__all__ = [
    'IdentityService',
    'IssuedSession',
    'SessionContext',
    'PrincipalService',
    'LifecycleService',
    'RecordInspector',
    'PublicQueryService',
    'TagService',
    'MediaService',
]
