"""
AppBase Content Routes

Blueprint for the content lifecycle on a management surface:
- GET /content: Own items (Admins: ?scope=all, optionally &status=...)
- POST /content: Create a draft
- GET /content/<id>: Get an item
- PUT /content/<id>: Edit a draft
- DELETE /content/<id>: Delete an item
- POST /content/<id>/submit | withdraw | approve | reject | revise
- GET /content/search: Published posts by id, tag, title or keyword
- POST /content/check-similar: Pending or published posts resembling a new one
- GET /review-queue: Items waiting for approval

Every state-changing call takes the revision the client last saw as
"expected_revision"; a 409 stale_write means the item changed in between.
"""

from flask import Blueprint, jsonify, request

from appbase.routes.management import get_expected_revision, get_json_body, unwrap
from appbase.services.lifecycle_service import LifecycleService
from appbase.services.public_query_service import PublicQueryService
from appbase.utils.auth import get_current_principal, login_required
from appbase.utils.permissions import Action, require_action


content_bp = Blueprint('content', __name__)


def _page_response(listing):
    return jsonify({
        'items': [item.to_dict() for item in listing['items']],
        'page': listing['page'],
        'per_page': listing['per_page'],
        'total': listing['total'],
    })


@content_bp.route('/content', methods=['GET'])
@login_required
def list_content():
    """
    List content items.

    Query Parameters:
        scope: 'own' (default) or 'all' (Admins only)
        status: Filter by status (with scope=all)
        page, per_page: Pagination
    """
    principal = get_current_principal()
    page = request.args.get('page', 1)
    per_page = request.args.get('per_page', 20)
    if request.args.get('scope') == 'all':
        listing = LifecycleService.list_all_items(principal, status=request.args.get('status'),
                                                  page=page, per_page=per_page)
    else:
        listing = LifecycleService.list_own_items(principal, page=page, per_page=per_page)
    return _page_response(listing), 200


@content_bp.route('/content', methods=['POST'])
@login_required
def create_content():
    """
    Create a draft owned by the caller.

    Request Body:
        {
            "title": "..." (required),
            "slug", "summary", "body", "tags", "search_keywords", "cover_image" (optional)
        }

    Returns:
        201: { "item": { item data, "revision": 0 } }
    """
    item = unwrap(LifecycleService.create_draft(get_current_principal(), get_json_body()))
    return jsonify({'message': 'Draft created', 'item': item.to_dict()}), 201


@content_bp.route('/content/search', methods=['GET'])
@login_required
def search_content():
    """
    Search published posts, e.g. to reference or link them.

    Query Parameters:
        by: 'id', 'tag', 'title' or 'keyword' (default 'title')
        q: Search term (required)
        page, per_page: Pagination
    """
    listing = PublicQueryService.search_published(
        request.args.get('by', 'title'),
        request.args.get('q', ''),
        page=request.args.get('page', 1),
        per_page=request.args.get('per_page'),
    )
    return _page_response(listing), 200


@content_bp.route('/content/check-similar', methods=['POST'])
@login_required
def check_similar_content():
    """
    Look for existing posts resembling one about to be written or submitted.

    Request Body:
        {
            "title": "..." (optional),
            "tags": ["..."] (optional),
            "check": "title" | "tags" | "both" (default "title"),
            "exclude_id": "..." (optional, the item being edited)
        }

    Returns:
        200: { "similar": [ { id, title, slug, status } ] }
    """
    data = get_json_body()
    items = LifecycleService.check_similar(
        get_current_principal(),
        title=data.get('title') or '',
        tags=data.get('tags'),
        check=data.get('check') or 'title',
        exclude_id=data.get('exclude_id'),
    )
    similar = [{'id': item.id, 'title': item.title, 'slug': item.slug, 'status': item.status}
               for item in items]
    return jsonify({'similar': similar}), 200


@content_bp.route('/content/<item_id>', methods=['GET'])
@login_required
def get_content(item_id):
    item = unwrap(LifecycleService.get_item(get_current_principal(), item_id))
    return jsonify({'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>', methods=['PUT'])
@login_required
def update_content(item_id):
    data = get_json_body()
    expected_revision = get_expected_revision(data)
    fields = {key: value for key, value in data.items() if key != 'expected_revision'}
    item = unwrap(LifecycleService.update_draft(get_current_principal(), item_id,
                                                expected_revision, fields))
    return jsonify({'message': 'Draft updated', 'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>', methods=['DELETE'])
@login_required
def delete_content(item_id):
    data = request.get_json(silent=True) or {}
    expected_revision = None
    if 'expected_revision' in data or 'expected_revision' in request.args:
        expected_revision = get_expected_revision(data)
    unwrap(LifecycleService.delete_item(get_current_principal(), item_id, expected_revision))
    return jsonify({'message': 'Content item deleted'}), 200


@content_bp.route('/content/<item_id>/submit', methods=['POST'])
@login_required
def submit_content(item_id):
    data = get_json_body()
    item = unwrap(LifecycleService.submit(get_current_principal(), item_id, get_expected_revision(data)))
    return jsonify({'message': 'Submitted for approval', 'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>/withdraw', methods=['POST'])
@login_required
def withdraw_content(item_id):
    data = get_json_body()
    item = unwrap(LifecycleService.withdraw(get_current_principal(), item_id, get_expected_revision(data)))
    return jsonify({'message': 'Withdrawn to draft', 'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>/approve', methods=['POST'])
@login_required
def approve_content(item_id):
    data = get_json_body()
    item = unwrap(LifecycleService.approve(get_current_principal(), item_id, get_expected_revision(data)))
    return jsonify({'message': 'Published', 'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>/reject', methods=['POST'])
@login_required
def reject_content(item_id):
    """
    Reject a pending item.

    Request Body:
        {
            "expected_revision": 1 (required),
            "reason": "..." (required)
        }
    """
    data = get_json_body()
    item = unwrap(LifecycleService.reject(get_current_principal(), item_id,
                                          get_expected_revision(data), data.get('reason')))
    return jsonify({'message': 'Rejected', 'item': item.to_dict()}), 200


@content_bp.route('/content/<item_id>/revise', methods=['POST'])
@login_required
def revise_content(item_id):
    """
    Send a published or rejected item back for approval.

    Request Body:
        {
            "expected_revision": 2 (required),
            "fields": { "title": "...", ... } (optional)
        }
    """
    data = get_json_body()
    fields = data.get('fields') if isinstance(data.get('fields'), dict) else None
    item = unwrap(LifecycleService.revise(get_current_principal(), item_id,
                                          get_expected_revision(data), fields))
    return jsonify({'message': 'Submitted for approval', 'item': item.to_dict()}), 200


@content_bp.route('/review-queue', methods=['GET'])
@login_required
@require_action(Action.VIEW_REVIEW_QUEUE)
def review_queue():
    entries = LifecycleService.list_review_queue(get_current_principal())
    return jsonify({'entries': [entry.to_dict() for entry in entries]}), 200
