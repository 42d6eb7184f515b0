"""Public catalog JSON API."""
from flask import Blueprint, jsonify, request

from storefront.database import get_session
from storefront.services import catalog_service

catalog_api_bp = Blueprint('catalog_api', __name__, url_prefix='/api')

PER_PAGE = 24


@catalog_api_bp.route('/categories', methods=['GET'])
def categories():
    return jsonify({'success': True, 'data': catalog_service.list_categories(get_session())})


@catalog_api_bp.route('/products', methods=['GET'])
def products():
    page = request.args.get('page', 1, type=int) or 1
    products, total = catalog_service.list_products(
        get_session(),
        category=request.args.get('category'),
        search=request.args.get('q'),
        sort=request.args.get('sort', 'name'),
        page=page,
        per_page=PER_PAGE,
    )
    return jsonify({
        'success': True,
        'data': [p.to_dict() for p in products],
        'pagination': {
            'page': max(page, 1),
            'per_page': PER_PAGE,
            'total': total,
            'pages': (total + PER_PAGE - 1) // PER_PAGE,
        },
    })


@catalog_api_bp.route('/products/<slug>', methods=['GET'])
def product_detail(slug):
    product = catalog_service.get_product_by_slug(get_session(), slug)
    return jsonify({'success': True, 'data': product.to_dict()})
