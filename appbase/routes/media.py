"""
AppBase Media Routes

Blueprint for media assets on a management surface:
- GET /media: Own media with linked content ids
- POST /media: Upload a file (multipart: file, summary, tags)
- GET /media/search: Media carrying a tag
- GET /media/<id>: Get a media asset
- DELETE /media/<id>: Delete a media asset and its file
- POST /media/<id>/links: Link to a content item
- DELETE /media/<id>/links/<content_id>: Unlink from a content item
"""

from flask import Blueprint, jsonify, request

from appbase.errors import ValidationError, ValidationErrorKind
from appbase.routes.management import get_json_body
from appbase.services.media_service import MediaService
from appbase.utils.auth import get_current_principal, login_required


media_bp = Blueprint('media', __name__)


@media_bp.route('/media', methods=['GET'])
@login_required
def list_media():
    return jsonify({'media': MediaService.list_own_media(get_current_principal())}), 200


@media_bp.route('/media', methods=['POST'])
@login_required
def upload_media():
    """
    Upload a media file.

    Form Fields:
        file: The file (required)
        summary: Description (optional)
        tags: Comma-separated tags (optional)
        csrf_token: CSRF token, unless sent as a header

    Returns:
        201: { "media": { media data } }
    """
    asset = MediaService.register_upload(
        get_current_principal(),
        request.files.get('file'),
        summary=request.form.get('summary', ''),
        tags=request.form.get('tags', ''),
    )
    return jsonify({'message': 'Media uploaded', 'media': asset.to_dict([])}), 201


@media_bp.route('/media/search', methods=['GET'])
@login_required
def search_media():
    """
    Find media by tag.

    Query Parameters:
        tag: Tag to look for (required); Admins search every asset,
             contributors their own
    """
    return jsonify({'media': MediaService.search_media(get_current_principal(),
                                                       request.args.get('tag', ''))}), 200


@media_bp.route('/media/<media_id>', methods=['GET'])
@login_required
def get_media(media_id):
    return jsonify({'media': MediaService.get_media(get_current_principal(), media_id)}), 200


@media_bp.route('/media/<media_id>', methods=['DELETE'])
@login_required
def delete_media(media_id):
    MediaService.delete_media(get_current_principal(), media_id)
    return jsonify({'message': 'Media deleted'}), 200


@media_bp.route('/media/<media_id>/links', methods=['POST'])
@login_required
def link_media(media_id):
    data = get_json_body()
    content_id = data.get('content_id')
    if not isinstance(content_id, str) or not content_id:
        raise ValidationError(ValidationErrorKind.BAD_FIELD, 'content_id is required', field='content_id')
    link = MediaService.link_to_content(get_current_principal(), media_id, content_id)
    return jsonify({'message': 'Media linked', 'link': link}), 200


@media_bp.route('/media/<media_id>/links/<content_id>', methods=['DELETE'])
@login_required
def unlink_media(media_id, content_id):
    MediaService.unlink_from_content(get_current_principal(), media_id, content_id)
    return jsonify({'message': 'Media unlinked'}), 200
