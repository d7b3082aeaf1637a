"""
AppBase Utility Functions.

This package contains utility functions and decorators used across AppBase:
- auth: Session extraction, login_required and surface gating
- permissions: The authorization policy (decide)
- audit: Audit logging helpers
- text: Tag, keyword and Markdown normalization
"""

from appbase.utils.auth import login_required, get_current_principal, require_admin_surface
from appbase.utils.permissions import Action, Decision, decide, authorize, require_action

__all__ = [
    # Auth
    'login_required',
    'get_current_principal',
    'require_admin_surface',
    # Permissions
    'Action',
    'Decision',
    'decide',
    'authorize',
    'require_action',
]
