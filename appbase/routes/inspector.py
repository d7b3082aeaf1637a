"""
AppBase Record Inspector Routes

Blueprint for raw, schema-aware record access on the Admin surface:
- GET /inspector: Declared families
- GET /inspector/<family>: Schema and a page of records
- GET /inspector/<family>/<key>: One record
- PUT /inspector/<family>/<key>: Write declared fields of one record
- DELETE /inspector/<family>/<key>: Delete a record and its dependents
- GET /inspector/dependencies/<family>/<key>: Records a delete would also remove

Restricted fields are only writable from an elevated session (see
POST /elevate); secret and system fields are never writable.
"""

from flask import Blueprint, jsonify, request

from appbase.errors import ValidationError, ValidationErrorKind
from appbase.routes.management import get_expected_revision, get_json_body
from appbase.services.record_inspector import RecordInspector
from appbase.utils.auth import get_current_principal, get_current_session, login_required, require_admin_surface


inspector_bp = Blueprint('inspector', __name__, url_prefix='/inspector')
inspector_bp.before_request(require_admin_surface)


@inspector_bp.route('', methods=['GET'])
@login_required
def list_families():
    return jsonify({'families': RecordInspector.list_families(get_current_principal())}), 200


@inspector_bp.route('/dependencies/<family>/<path:key>', methods=['GET'])
@login_required
def record_dependencies(family, key):
    return jsonify(RecordInspector.dependencies(get_current_principal(), family, key)), 200


@inspector_bp.route('/<family>', methods=['GET'])
@login_required
def browse_family(family):
    """
    Browse a family in primary key order.

    Query Parameters:
        page: Page number (default 1)
        per_page: Records per page (default 50, max 200)
    """
    principal = get_current_principal()
    listing = RecordInspector.browse(
        principal,
        family,
        page=request.args.get('page', 1),
        per_page=request.args.get('per_page', 50),
    )
    listing['schema'] = RecordInspector.list_fields(principal, family)
    return jsonify(listing), 200


@inspector_bp.route('/<family>/<path:key>', methods=['GET'])
@login_required
def read_record(family, key):
    return jsonify({'record': RecordInspector.read(get_current_principal(), family, key)}), 200


@inspector_bp.route('/<family>/<path:key>', methods=['PUT'])
@login_required
def write_record(family, key):
    """
    Write fields of one record.

    Request Body:
        {
            "fields": { "field": value, ... } (required),
            "expected_revision": 3 (optional, content items)
        }

    Returns:
        200: { "record": { record data } }
        400: sensitive_field_blocked or bad_field
        403: Restricted field without an elevated session
        409: stale_write
    """
    data = get_json_body()
    fields = data.get('fields')
    if not isinstance(fields, dict):
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'fields must be an object', field='fields')

    expected_revision = data.get('expected_revision')
    if expected_revision is not None and (isinstance(expected_revision, bool)
                                          or not isinstance(expected_revision, int)):
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'expected_revision must be an integer',
                              field='expected_revision')

    record = RecordInspector.write(
        get_current_principal(),
        family,
        key,
        fields,
        expected_revision=expected_revision,
        elevated=get_current_session().elevated,
    )
    return jsonify({'message': 'Record updated', 'record': record}), 200


@inspector_bp.route('/<family>/<path:key>', methods=['DELETE'])
@login_required
def delete_record(family, key):
    """
    Delete one record and the records depending on it.

    Only content items and media assets can be deleted. Content items accept
    an optional "expected_revision" in the body or query string.

    Returns:
        200: { "family", "key", "deleted": true, "dependents": [ { family, key } ] }
        400: sensitive_field_blocked for other families
        409: stale_write
    """
    data = request.get_json(silent=True) or {}
    expected_revision = None
    if 'expected_revision' in data or 'expected_revision' in request.args:
        expected_revision = get_expected_revision(data)
    result = RecordInspector.delete(get_current_principal(), family, key,
                                    expected_revision=expected_revision)
    return jsonify(result), 200
