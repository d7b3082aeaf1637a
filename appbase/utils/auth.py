"""
AppBase Authentication Utilities.

Request-side glue between Flask and the Identity & Session Manager.

Features:
- @login_required decorator for management routes
- Session token from the session cookie or an Authorization: Bearer header
- CSRF token from the X-CSRF-Token header or csrf_token form field
- Surface binding: a session is only valid on its own role's secret prefix
- Current principal and session retrieval via Flask's g object

Usage:
    from appbase.utils.auth import login_required, get_current_principal

    @blueprint.route('/me')
    @login_required
    def me():
        principal = get_current_principal()
        return jsonify({'principal': principal.to_dict()})
"""

from functools import wraps

from flask import abort, current_app, g, request

from appbase.errors import AuthError, AuthErrorKind
from appbase.models.principal import ROLE_ADMIN


SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')


def get_current_principal():
    """
    Get the currently authenticated principal.

    Returns:
        Principal stored by @login_required, or None
    """
    return getattr(g, 'current_principal', None)


def get_current_session():
    """
    Get the current session context.

    Returns:
        SessionContext stored by @login_required, or None
    """
    return getattr(g, 'current_session', None)


def get_surface_role():
    """Role of the management surface addressed by the current URL prefix."""
    return getattr(g, 'surface_role', None)


def _extract_token():
    """
    Extract the session token from the cookie or the Authorization header.

    Returns:
        Token string if present, None otherwise
    """
    token = request.cookies.get(current_app.config['SESSION_TOKEN_COOKIE'])
    if token:
        return token

    auth_header = request.headers.get('Authorization')
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None

    return parts[1]


def _extract_csrf_token():
    token = request.headers.get(current_app.config['CSRF_HEADER_NAME'])
    if token:
        return token
    if request.form:
        return request.form.get('csrf_token')
    return None


def login_required(f):
    """
    Decorator to require a valid management session.

    The decorator checks:
    1. A session token is present (cookie or Bearer header)
    2. The token validates against its stored session and principal
    3. Mutating requests carry the session's CSRF token
    4. The session belongs to the role of the addressed surface

    A session used on the other role's surface answers 404, the same as an
    unknown prefix. Other failures raise AuthError and are rendered by the
    application's error handler.

    Args:
        f: The route function to wrap

    Returns:
        Decorated function that enforces authentication
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from appbase.services.identity_service import IdentityService

        token = _extract_token()
        if not token:
            raise AuthError(AuthErrorKind.INVALID, 'Authentication required')

        mutating = request.method not in SAFE_METHODS
        context = IdentityService.validate(
            token,
            csrf_token=_extract_csrf_token() if mutating else None,
            mutating=mutating,
        )

        if context.principal.role != get_surface_role():
            abort(404)

        g.current_principal = context.principal
        g.current_session = context

        return f(*args, **kwargs)

    return decorated_function


def require_admin_surface():
    """
    before_request hook hiding a blueprint on every surface but the Admin one.

    On the contributor surface the routes answer 404, as if they did not exist.
    """
    if get_surface_role() != ROLE_ADMIN:
        abort(404)


def get_client_ip():
    """
    Get the client's IP address from the request.

    X-Forwarded-For is honoured only when TRUST_PROXY_HEADERS is enabled,
    since the address feeds the login IP allowlist.

    Returns:
        Client IP address string
    """
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for and current_app.config.get('TRUST_PROXY_HEADERS'):
        # Take the first IP in the list (client's original IP)
        return forwarded_for.split(',')[0].strip()

    return request.remote_addr


def get_user_agent():
    """
    Get the client's user agent string from the request.

    Returns:
        User agent string, truncated to 500 characters
    """
    user_agent = request.headers.get('User-Agent', '')
    return user_agent[:500] if user_agent else None
