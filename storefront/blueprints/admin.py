"""
Admin Blueprint - back-office JSON API.

Routes:
- /admin/session                      - CSRF token + login state
- /admin/login, /admin/logout         - Admin authentication
- /admin/orders[/<id>[/status]]       - Orders and status edits
- /admin/products[/<id>[/stock]]      - Catalog and stock
- /admin/categories                   - Categories
- /admin/promos[/<id>]                - Promo codes
- /admin/stock-movements, /admin/low-stock
- /admin/audit                        - Audit trail
"""
from datetime import datetime, timezone

from flask import Blueprint, request, session, jsonify, g
from flask_wtf.csrf import generate_csrf

from storefront.database import get_session
from storefront.decorators.admin_security import admin_required
from storefront.exceptions import BusinessLogicError, NotFoundError
from storefront.models import AdminUser, AuditAction, Order, OrderStatus
from storefront.services import audit_service, catalog_service, fulfillment_service, promo_service

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

ORDERS_PER_PAGE = 50


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data


def _ok(data=None, status_code=200, **extra):
    body = {'success': True, 'data': data}
    body.update(extra)
    return jsonify(body), status_code


# =====================================================
# AUTHENTICATION
# =====================================================

@admin_bp.route('/session', methods=['GET'])
def session_state():
    return _ok({'authenticated': bool(session.get('admin_user_id')), 'csrf_token': generate_csrf()})


@admin_bp.route('/login', methods=['POST'])
def login():
    session_db = get_session()
    data = _payload()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise BusinessLogicError('Email and password are required')

    admin_user = session_db.query(AdminUser).filter_by(email=email).first()
    if not admin_user or not admin_user.check_password(password):
        return jsonify({'success': False, 'error': 'Invalid email or password'}), 401

    session.clear()
    session['admin_user_id'] = admin_user.id
    session.permanent = True

    admin_user.last_login = datetime.now(timezone.utc)
    audit_service.log_action(session_db, AuditAction.ADMIN_LOGIN, 'admin_user', admin_user.id,
                             actor=admin_user.email)
    session_db.commit()

    return _ok({'email': admin_user.email, 'name': admin_user.name})


@admin_bp.route('/logout', methods=['POST'])
def logout():
    session.pop('admin_user_id', None)
    return _ok()


# =====================================================
# ORDERS
# =====================================================

@admin_bp.route('/orders', methods=['GET'])
@admin_required
def orders_list():
    session_db = get_session()
    query = session_db.query(Order)

    status = request.args.get('status')
    if status:
        parsed = OrderStatus.parse(status)
        if parsed is None:
            raise BusinessLogicError('Invalid status')
        query = query.filter(Order.status == parsed)

    search = (request.args.get('q') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            Order.order_number.ilike(pattern) | Order.customer_name.ilike(pattern)
            | Order.customer_email.ilike(pattern)
        )

    page = max(request.args.get('page', 1, type=int) or 1, 1)
    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * ORDERS_PER_PAGE)
        .limit(ORDERS_PER_PAGE)
        .all()
    )
    return _ok([o.to_dict(include_items=False) for o in orders],
               pagination={'page': page, 'per_page': ORDERS_PER_PAGE, 'total': total})


@admin_bp.route('/orders/<int:order_id>', methods=['GET'])
@admin_required
def order_detail(order_id):
    order = get_session().get(Order, order_id)
    if not order:
        raise NotFoundError('Order not found')
    return _ok(order.to_dict())


@admin_bp.route('/orders/<int:order_id>/status', methods=['PUT'])
@admin_required
def order_update_status(order_id):
    order = fulfillment_service.update_order_status(
        get_session(), order_id, _payload().get('status'), actor=g.admin.email
    )
    return _ok({'status': order.status.value, 'label': order.status_label})


# =====================================================
# CATALOG & STOCK
# =====================================================

@admin_bp.route('/products', methods=['POST'])
@admin_required
def product_create():
    product = catalog_service.create_product(get_session(), _payload(), actor=g.admin.email)
    return _ok(product.to_dict(), 201)


@admin_bp.route('/products/<int:product_id>', methods=['PUT'])
@admin_required
def product_update(product_id):
    product = catalog_service.update_product(get_session(), product_id, _payload(), actor=g.admin.email)
    return _ok(product.to_dict())


@admin_bp.route('/products/<int:product_id>/stock', methods=['PUT'])
@admin_required
def product_update_stock(product_id):
    data = _payload()
    product = catalog_service.set_stock(
        get_session(), product_id, data.get('stock'), reason=data.get('reason'), actor=g.admin.email
    )
    return _ok({'stock': product.stock})


@admin_bp.route('/categories', methods=['POST'])
@admin_required
def category_create():
    data = _payload()
    try:
        display_order = int(data.get('display_order') or 0)
    except (TypeError, ValueError):
        raise BusinessLogicError('Invalid display order')
    category = catalog_service.create_category(get_session(), data.get('name'), display_order,
                                               actor=g.admin.email)
    return _ok(category.to_dict(), 201)


@admin_bp.route('/stock-movements', methods=['GET'])
@admin_required
def stock_movements():
    movements = catalog_service.list_stock_movements(
        get_session(),
        product_id=request.args.get('product_id', type=int),
        limit=min(request.args.get('limit', 100, type=int) or 100, 500),
    )
    return _ok([m.to_dict() for m in movements])


@admin_bp.route('/low-stock', methods=['GET'])
@admin_required
def low_stock():
    return _ok([p.to_dict() for p in catalog_service.low_stock_products(get_session())])


# =====================================================
# PROMO CODES
# =====================================================

@admin_bp.route('/promos', methods=['GET'])
@admin_required
def promos_list():
    return _ok([p.to_dict() for p in promo_service.list_promos(get_session())])


@admin_bp.route('/promos', methods=['POST'])
@admin_required
def promo_create():
    promo = promo_service.create_promo(get_session(), _payload(), actor=g.admin.email)
    return _ok(promo.to_dict(), 201)


@admin_bp.route('/promos/<int:promo_id>', methods=['PUT'])
@admin_required
def promo_update(promo_id):
    promo = promo_service.update_promo(get_session(), promo_id, _payload(), actor=g.admin.email)
    return _ok(promo.to_dict())


@admin_bp.route('/promos/<int:promo_id>', methods=['DELETE'])
@admin_required
def promo_delete(promo_id):
    promo_service.delete_promo(get_session(), promo_id, actor=g.admin.email)
    return _ok()


# =====================================================
# AUDIT
# =====================================================

@admin_bp.route('/audit', methods=['GET'])
@admin_required
def audit_log():
    action = request.args.get('action')
    action_filter = None
    if action:
        try:
            action_filter = AuditAction(action.upper())
        except ValueError:
            raise BusinessLogicError('Unknown audit action')

    entries = audit_service.get_audit_logs(
        get_session(),
        limit=min(request.args.get('limit', 100, type=int) or 100, 500),
        offset=max(request.args.get('offset', 0, type=int) or 0, 0),
        action_filter=action_filter,
        resource_type_filter=request.args.get('resource_type'),
    )
    return _ok([e.to_dict() for e in entries])
