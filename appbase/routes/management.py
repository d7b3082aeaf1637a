"""
AppBase Management Surface

Parent blueprint for every operator endpoint. It is registered under
/management/<surface_prefix>; the prefix is resolved against the secret
admin and contributor prefixes before any route runs, and an unknown
prefix answers 404 for every path beneath it.

Child blueprints (auth, content, media, admin, inspector) are nested into
this one in appbase.routes.
"""

from flask import Blueprint, abort, g, request

from appbase.errors import ValidationError, ValidationErrorKind
from appbase.services.identity_service import IdentityService


management_bp = Blueprint('management', __name__)


@management_bp.url_value_preprocessor
def resolve_surface(endpoint, values):
    prefix = values.pop('surface_prefix', None) if values else None
    role = IdentityService.resolve_surface(prefix or '')
    if role is None:
        abort(404)
    g.surface_role = role
    g.surface_prefix = prefix


def get_json_body():
    """
    Return the JSON request body as a dict.

    Raises:
        ValidationError(BAD_FIELD): Body missing or not a JSON object
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'Request body must be a JSON object')
    return data


def get_expected_revision(data):
    """
    Read the caller's expected revision from a request body or the query string.

    Raises:
        ValidationError(BAD_FIELD): Missing or not an integer
    """
    value = data.get('expected_revision') if data else None
    if value is None:
        value = request.args.get('expected_revision')
    if value is None:
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'expected_revision is required',
                              field='expected_revision')
    try:
        if isinstance(value, bool):
            raise ValueError(value)
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'expected_revision must be an integer',
                              field='expected_revision')


def unwrap(result):
    """Return the item of a successful lifecycle result, raise its error otherwise."""
    if not result['success']:
        raise result['error']
    return result['item']
