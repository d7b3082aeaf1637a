"""
AppBase Admin Routes

Blueprint for Admin-only management, hidden (404) on the contributor surface:
- GET /principals: List principals (?role=admin|contributor)
- POST /principals: Create a principal
- GET /principals/<id>: Get a principal
- PATCH /principals/<id>: Update username, password, scopes or active flag
- GET /settings: Instance settings
- PUT /settings: Change the contributor surface prefix
- GET /tags: Tag registry
- POST /tags: Register a tag (and its hierarchical expansion)
- DELETE /tags/<tag>: Remove a tag
"""

from flask import Blueprint, jsonify, request

from appbase.errors import ValidationError, ValidationErrorKind
from appbase.routes.management import get_json_body
from appbase.services.principal_service import PrincipalService
from appbase.services.tag_service import TagService
from appbase.utils.auth import get_current_principal, login_required, require_admin_surface
from appbase.utils.permissions import Action, require_action


admin_bp = Blueprint('admin', __name__)
admin_bp.before_request(require_admin_surface)


@admin_bp.route('/principals', methods=['GET'])
@login_required
@require_action(Action.MANAGE_PRINCIPALS)
def list_principals():
    principals = PrincipalService.list_principals(role=request.args.get('role'))
    return jsonify({'principals': [p.to_dict() for p in principals]}), 200


@admin_bp.route('/principals', methods=['POST'])
@login_required
@require_action(Action.MANAGE_PRINCIPALS)
def create_principal():
    """
    Create a principal.

    Request Body:
        {
            "role": "admin" | "contributor" (required),
            "username": "..." (required),
            "password": "..." (required),
            "scopes": ["can-approve"] (optional, contributors only)
        }
    """
    data = get_json_body()
    principal = PrincipalService.create_principal(
        data.get('role'),
        data.get('username'),
        data.get('password'),
        scopes=data.get('scopes'),
        actor=get_current_principal(),
    )
    return jsonify({'message': 'Principal created', 'principal': principal.to_dict()}), 201


@admin_bp.route('/principals/<principal_id>', methods=['GET'])
@login_required
@require_action(Action.MANAGE_PRINCIPALS)
def get_principal(principal_id):
    return jsonify({'principal': PrincipalService.get_principal(principal_id).to_dict()}), 200


@admin_bp.route('/principals/<principal_id>', methods=['PATCH'])
@login_required
@require_action(Action.MANAGE_PRINCIPALS)
def update_principal(principal_id):
    data = get_json_body()
    is_active = data.get('is_active')
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'is_active must be a boolean', field='is_active')
    result = PrincipalService.update_principal(
        get_current_principal(),
        principal_id,
        username=data.get('username'),
        password=data.get('password'),
        is_active=is_active,
        scopes=data.get('scopes'),
    )
    return jsonify({
        'message': 'Principal updated',
        'principal': result['principal'].to_dict(),
        'revoked_sessions': result['revoked_sessions'],
    }), 200


@admin_bp.route('/settings', methods=['GET'])
@login_required
@require_action(Action.MANAGE_SETTINGS)
def get_settings():
    return jsonify({'contributor_path_prefix': PrincipalService.get_contributor_prefix()}), 200


@admin_bp.route('/settings', methods=['PUT'])
@login_required
@require_action(Action.MANAGE_SETTINGS)
def update_settings():
    data = get_json_body()
    prefix = PrincipalService.set_contributor_prefix(get_current_principal(),
                                                     data.get('contributor_path_prefix'))
    return jsonify({'message': 'Settings updated', 'contributor_path_prefix': prefix}), 200


@admin_bp.route('/tags', methods=['GET'])
@login_required
@require_action(Action.MANAGE_TAGS)
def list_tags():
    return jsonify({'tags': [tag.to_dict() for tag in TagService.list_tags()]}), 200


@admin_bp.route('/tags', methods=['POST'])
@login_required
def add_tag():
    data = get_json_body()
    added = TagService.add_tag(get_current_principal(), data.get('tag') or '')
    return jsonify({'message': 'Tag registered', 'added': added}), 201


@admin_bp.route('/tags/<path:tag>', methods=['DELETE'])
@login_required
def delete_tag(tag):
    TagService.delete_tag(get_current_principal(), tag)
    return jsonify({'message': 'Tag removed'}), 200
