"""
AppBase Routes Package

Blueprint registration for all route modules:
- Management: parent blueprint for /management/<surface_prefix>, which
  resolves the secret prefix to a role before any child route runs
- Auth: login, logout, own account, elevation
- Content: content lifecycle and review queue
- Media: media assets and content links
- Admin: principals, settings and tag registry (Admin surface only)
- Inspector: Record Inspector (Admin surface only)
- Public: read-only published content API
"""

from appbase.routes.management import management_bp
from appbase.routes.auth import auth_bp
from appbase.routes.content import content_bp
from appbase.routes.media import media_bp
from appbase.routes.admin import admin_bp
from appbase.routes.inspector import inspector_bp
from appbase.routes.public import public_bp

# Children share the parent's surface resolution
management_bp.register_blueprint(auth_bp)
management_bp.register_blueprint(content_bp)
management_bp.register_blueprint(media_bp)
management_bp.register_blueprint(admin_bp)
management_bp.register_blueprint(inspector_bp)

__all__ = ['management_bp', 'public_bp']
