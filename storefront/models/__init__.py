"""Models package - exports all SQLAlchemy models."""
# Catalog
from storefront.models.category import Category
from storefront.models.product import Product

# Orders
from storefront.models.order import Order, OrderItem, OrderStatus, DeliveryMethod, ORDER_STATUS_LABELS
from storefront.models.promo_code import PromoCode, DiscountType
from storefront.models.stock_movement import StockMovement, StockMovementReason

# Back-office
from storefront.models.admin_user import AdminUser
from storefront.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Category', 'Product',
    'Order', 'OrderItem', 'OrderStatus', 'DeliveryMethod', 'ORDER_STATUS_LABELS',
    'PromoCode', 'DiscountType',
    'StockMovement', 'StockMovementReason',
    'AdminUser', 'AuditLog', 'AuditAction',
]
