"""
AppBase Authentication Routes

Blueprint for session endpoints on a management surface:
- POST /login: Login with username/password for the surface's role
- POST /logout: End the current session
- GET /me: Current principal and session
- PUT /password: Change own password (ends every session)
- PUT /username: Change own username
- POST /elevate: Re-enter the password to unlock restricted inspector fields

All endpoints live under /management/<surface_prefix>.
"""

from flask import Blueprint, current_app, g, jsonify

from appbase.errors import ValidationError, ValidationErrorKind
from appbase.extensions import limiter
from appbase.models import isoformat
from appbase.routes.management import get_json_body
from appbase.services.identity_service import IdentityService
from appbase.services.principal_service import PrincipalService
from appbase.utils.auth import (
    get_client_ip,
    get_current_principal,
    get_current_session,
    get_surface_role,
    get_user_agent,
    login_required,
)


auth_bp = Blueprint('auth', __name__)


def _require_string(data, field):
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise ValidationError(ValidationErrorKind.BAD_FIELD, f'{field} is required', field=field)
    return value


def _cookie_path():
    return f'/management/{g.surface_prefix}'


def _clear_session_cookie(response):
    response.delete_cookie(current_app.config['SESSION_TOKEN_COOKIE'], path=_cookie_path())
    return response


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    """
    Login with username and password.

    The role is fixed by the surface: the same credentials cannot be used on
    the other role's prefix.

    Request Body:
        {
            "username": "alice" (required),
            "password": "..." (required),
            "bearer": false (optional, also return the token in the body)
        }

    Returns:
        200: Session cookie set
            {
                "message": "Login successful",
                "principal": { principal data },
                "session": { session data },
                "csrf_token": "..."
            }
        401: Invalid credentials or deactivated account
        403: Login not permitted from this address
    """
    data = get_json_body()
    username = _require_string(data, 'username')
    password = _require_string(data, 'password')

    issued = IdentityService.authenticate(
        get_surface_role(),
        username,
        password,
        ip_address=get_client_ip(),
        user_agent=get_user_agent(),
    )

    body = issued.to_dict()
    body['message'] = 'Login successful'
    if data.get('bearer') is True:
        body['token'] = issued.token

    config = current_app.config
    response = jsonify(body)
    response.set_cookie(
        config['SESSION_TOKEN_COOKIE'],
        issued.token,
        max_age=config['SESSION_MAX_LIFETIME_SECONDS'],
        path=_cookie_path(),
        secure=config['SESSION_COOKIE_SECURE'],
        httponly=config['SESSION_COOKIE_HTTPONLY'],
        samesite=config['SESSION_COOKIE_SAMESITE'],
    )
    return response, 200


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    IdentityService.logout(get_current_session())
    return _clear_session_cookie(jsonify({'message': 'Logged out successfully'})), 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def get_me():
    """Current principal and session (the session id and CSRF token are never returned)."""
    return jsonify({
        'principal': get_current_principal().to_dict(),
        'session': get_current_session().to_dict(),
    }), 200


@auth_bp.route('/password', methods=['PUT'])
@login_required
def change_password():
    """
    Change own password.

    Every session of the principal, this one included, is revoked; the
    client has to log in again.

    Request Body:
        {
            "current_password": "..." (required),
            "new_password": "..." (required)
        }
    """
    data = get_json_body()
    revoked = PrincipalService.change_password(
        get_current_principal().id,
        _require_string(data, 'current_password'),
        _require_string(data, 'new_password'),
    )
    response = jsonify({'message': 'Password changed successfully', 'revoked_sessions': revoked})
    return _clear_session_cookie(response), 200


@auth_bp.route('/username', methods=['PUT'])
@login_required
def change_username():
    data = get_json_body()
    principal = PrincipalService.change_username(
        get_current_principal().id,
        _require_string(data, 'username'),
    )
    return jsonify({'message': 'Username changed', 'principal': principal.to_dict()}), 200


@auth_bp.route('/elevate', methods=['POST'])
@login_required
def elevate():
    """
    Unlock restricted Record Inspector fields for ELEVATION_MINUTES.

    Request Body:
        {
            "password": "..." (required)
        }
    """
    data = get_json_body()
    elevated_until = IdentityService.elevate(get_current_session(), _require_string(data, 'password'))
    return jsonify({'message': 'Session elevated', 'elevated_until': isoformat(elevated_until)}), 200
