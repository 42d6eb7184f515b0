"""
Catalog service - categories, products and stock.

Public reads go through the Redis cache; every back-office mutation writes its
audit entry in the same transaction and drops the cached catalog.
"""
import logging
from typing import Optional

from flask import current_app
from sqlalchemy import or_

from storefront.exceptions import BusinessLogicError, NotFoundError
from storefront.models import Category, Product, StockMovement, StockMovementReason, AuditAction
from storefront.services import audit_service
from storefront.services.cache_service import get_cache
from storefront.utils.money import to_money, optional_money
from storefront.utils.text import slugify

logger = logging.getLogger(__name__)

CACHE_MODULE = 'catalog'
PRODUCT_SORTS = {
    'name': Product.name.asc(),
    'price_asc': Product.price.asc(),
    'price_desc': Product.price.desc(),
    'newest': Product.created_at.desc(),
}
STOCK_REASONS = {
    StockMovementReason.ADJUSTMENT, StockMovementReason.RESTOCK, StockMovementReason.LOSS,
}
PRODUCT_FIELDS = (
    'name', 'short_description', 'price', 'promo_price', 'category_id',
    'stock_alert_threshold', 'images', 'is_active', 'is_featured',
)


def _invalidate_catalog_cache():
    get_cache().invalidate_module(CACHE_MODULE)


def _commit(session):
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


# =====================================================
# PUBLIC READS
# =====================================================

def list_categories(session):
    """Categories ordered for display, as dicts (cached)."""
    def loader():
        categories = session.query(Category).order_by(Category.display_order, Category.name).all()
        return [c.to_dict() for c in categories]

    ttl = current_app.config.get('CACHE_CATALOG_TTL', 60)
    return get_cache().memoize(CACHE_MODULE, 'categories', loader, ttl)


def list_products(session, category: Optional[str] = None, search: Optional[str] = None,
                  sort: str = 'name', page: int = 1, per_page: int = 24):
    """Active products, filtered and paginated. Returns (products, total)."""
    query = session.query(Product).filter(Product.is_active.is_(True))

    if category:
        query = query.join(Category).filter(Category.slug == category)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.short_description.ilike(pattern)))

    total = query.count()
    order_by = PRODUCT_SORTS.get(sort, PRODUCT_SORTS['name'])
    page = max(page, 1)
    products = query.order_by(order_by, Product.id).offset((page - 1) * per_page).limit(per_page).all()
    return products, total


def get_product_by_slug(session, slug: str) -> Product:
    product = session.query(Product).filter_by(slug=slug, is_active=True).first()
    if not product:
        raise NotFoundError('Product not found')
    return product


# =====================================================
# BACK-OFFICE
# =====================================================

def _unique_slug(session, model, base: str, exclude_id: Optional[int] = None) -> str:
    base = base or 'item'
    slug, counter = base, 2
    while True:
        query = session.query(model.id).filter(model.slug == slug)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if not query.first():
            return slug
        slug = f"{base}-{counter}"
        counter += 1


def create_category(session, name: str, display_order: int = 0, actor: Optional[str] = None) -> Category:
    name = (name or '').strip()
    if not name:
        raise BusinessLogicError('Category name is required')

    category = Category(
        name=name,
        slug=_unique_slug(session, Category, slugify(name)),
        display_order=display_order,
    )
    session.add(category)
    session.flush()
    audit_service.log_action(session, AuditAction.CATEGORY_CREATE, 'category', category.id,
                             {'name': name}, actor=actor)
    _commit(session)
    _invalidate_catalog_cache()
    return category


def _clean_product_values(session, data: dict) -> dict:
    values = {}
    for field in PRODUCT_FIELDS:
        if field not in data:
            continue
        value = data[field]
        try:
            if field == 'price':
                value = to_money(value)
                if value <= 0:
                    raise BusinessLogicError('Price must be greater than 0')
            elif field == 'promo_price':
                value = optional_money(value)
            elif field in ('category_id', 'stock_alert_threshold'):
                value = int(value) if value not in (None, '') else None
        except ValueError:
            raise BusinessLogicError(f'Invalid value for {field}')
        values[field] = value

    if values.get('category_id') is not None and not session.get(Category, values['category_id']):
        raise NotFoundError('Category not found')
    if 'name' in values:
        values['name'] = (values['name'] or '').strip()
        if not values['name']:
            raise BusinessLogicError('Product name is required')
    return values


def create_product(session, data: dict, actor: Optional[str] = None) -> Product:
    """Create a product. `stock` is opening stock, recorded as a restock movement."""
    values = _clean_product_values(session, data)
    if 'name' not in values or 'price' not in values:
        raise BusinessLogicError('Name and price are required')
    if values.get('promo_price') is not None and values['promo_price'] >= values['price']:
        raise BusinessLogicError('Promo price must be lower than price')

    try:
        stock = int(data.get('stock', 0))
    except (TypeError, ValueError):
        raise BusinessLogicError('Invalid stock')
    if stock < 0:
        raise BusinessLogicError('Invalid stock')

    if values.get('stock_alert_threshold') is None:
        values['stock_alert_threshold'] = current_app.config.get('LOW_STOCK_THRESHOLD', 5)
    values.setdefault('images', [])

    product = Product(
        slug=_unique_slug(session, Product, slugify(data.get('slug') or values['name'])),
        stock=stock,
        **values,
    )
    session.add(product)
    session.flush()
    if stock:
        session.add(StockMovement(product_id=product.id, quantity_change=stock,
                                  reason=StockMovementReason.RESTOCK))
    audit_service.log_action(session, AuditAction.PRODUCT_CREATE, 'product', product.id,
                             {'name': product.name, 'price': product.price, 'stock': stock}, actor=actor)
    _commit(session)
    _invalidate_catalog_cache()
    logger.info(f"[CATALOG] Product created: {product.slug}")
    return product


def update_product(session, product_id: int, data: dict, actor: Optional[str] = None) -> Product:
    """Edit product fields. Stock is changed through `set_stock` only."""
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')

    values = _clean_product_values(session, data)
    price = values.get('price', product.price)
    promo_price = values.get('promo_price', product.promo_price)
    if promo_price is not None and promo_price >= price:
        raise BusinessLogicError('Promo price must be lower than price')

    changes = {}
    for field, value in values.items():
        if getattr(product, field) != value:
            changes[field] = {'from': getattr(product, field), 'to': value}
            setattr(product, field, value)

    if 'name' in values and changes.get('name'):
        product.slug = _unique_slug(session, Product, slugify(values['name']), exclude_id=product.id)

    if changes:
        audit_service.log_action(session, AuditAction.PRODUCT_UPDATE, 'product', product.id,
                                 changes, actor=actor)
    _commit(session)
    _invalidate_catalog_cache()
    return product


def set_stock(session, product_id: int, new_stock, reason: Optional[str] = None,
              actor: Optional[str] = None) -> Product:
    """Overwrite on-hand stock, recording the signed difference as a movement."""
    try:
        new_stock = int(new_stock)
    except (TypeError, ValueError):
        raise BusinessLogicError('Invalid stock')
    if new_stock < 0:
        raise BusinessLogicError('Invalid stock')

    reason = reason or StockMovementReason.ADJUSTMENT
    if reason not in STOCK_REASONS:
        raise BusinessLogicError('Invalid stock movement reason')

    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError('Product not found')

    previous = product.stock
    change = new_stock - previous
    product.stock = new_stock
    if change:
        session.add(StockMovement(product_id=product.id, quantity_change=change, reason=reason))
    audit_service.log_action(session, AuditAction.STOCK_UPDATE, 'product', product.id,
                             {'name': product.name, 'from': previous, 'to': new_stock, 'reason': reason},
                             actor=actor)
    _commit(session)
    _invalidate_catalog_cache()
    return product


def list_stock_movements(session, product_id: Optional[int] = None, limit: int = 100):
    query = session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def low_stock_products(session):
    """Active products at or under their alert threshold."""
    return (
        session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock <= Product.stock_alert_threshold)
        .order_by(Product.stock, Product.name)
        .all()
    )
