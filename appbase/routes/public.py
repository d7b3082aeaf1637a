"""
AppBase Public API Routes

Read-only, unauthenticated endpoints for published content:
- GET /posts: Published items, newest first (?tag=, ?tags=a,b, ?keyword=, ?page=, ?per_page=)
- GET /posts/<id>: One published item
- GET /posts/slug/<slug>: One published item by slug
- GET /tags: Available tags

Items that are not published answer 404 exactly like unknown ones.
"""

from flask import Blueprint, jsonify, request

from appbase.services.public_query_service import PublicQueryService


public_bp = Blueprint('public', __name__)


@public_bp.route('/posts', methods=['GET'])
def list_posts():
    query_filter = {
        'tag': request.args.get('tag'),
        'tags': request.args.get('tags'),
        'keyword': request.args.get('keyword'),
    }
    listing = PublicQueryService.list_published(
        {key: value for key, value in query_filter.items() if value},
        page=request.args.get('page', 1),
        per_page=request.args.get('per_page'),
    )
    return jsonify({
        'posts': [item.to_public_dict(include_body=False) for item in listing['items']],
        'page': listing['page'],
        'per_page': listing['per_page'],
        'total': listing['total'],
        'pages': listing['pages'],
    }), 200


@public_bp.route('/posts/<item_id>', methods=['GET'])
def get_post(item_id):
    return jsonify({'post': PublicQueryService.get_by_id(item_id).to_public_dict()}), 200


@public_bp.route('/posts/slug/<slug>', methods=['GET'])
def get_post_by_slug(slug):
    return jsonify({'post': PublicQueryService.get_by_slug(slug).to_public_dict()}), 200


@public_bp.route('/tags', methods=['GET'])
def list_tags():
    return jsonify({'tags': PublicQueryService.list_available_tags()}), 200
