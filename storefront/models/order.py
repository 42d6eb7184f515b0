"""Order and OrderItem models."""
import enum
import json
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class OrderStatus(enum.Enum):
    """Order status enum."""
    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    READY = "ready"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value):
        """Return the member for a value like 'paid' or 'PAID', or None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


ORDER_STATUS_LABELS = {
    OrderStatus.PENDING: 'En attente',
    OrderStatus.PAID: 'Payée',
    OrderStatus.PREPARING: 'En préparation',
    OrderStatus.READY: 'Prête',
    OrderStatus.SHIPPED: 'Expédiée',
    OrderStatus.DELIVERED: 'Livrée',
    OrderStatus.CANCELLED: 'Annulée',
}


class DeliveryMethod(enum.Enum):
    """How the customer receives the order."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Order(Base):
    """Order (commande). Totals are frozen at creation time."""

    __tablename__ = 'orders'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=True)
    delivery_method = Column(Enum(DeliveryMethod, name='delivery_method'), nullable=False)
    shipping_address = Column(Text, nullable=True)
    status = Column(Enum(OrderStatus, name='order_status'), nullable=False,
                    default=OrderStatus.PENDING, index=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    promo_code = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    payment_session_id = Column(String(255), nullable=True, index=True)
    payment_reference = Column(String(255), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan',
                         order_by='OrderItem.id')

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status={self.status.value})>"

    @property
    def status_label(self):
        return ORDER_STATUS_LABELS.get(self.status, self.status.value)

    @property
    def shipping_address_dict(self):
        """Decoded shipping address, or None for pickup orders."""
        if not self.shipping_address:
            return None
        try:
            return json.loads(self.shipping_address)
        except ValueError:
            return {'address': self.shipping_address}

    @property
    def shipping_address_line(self):
        addr = self.shipping_address_dict
        if not addr:
            return ''
        parts = [addr.get('address', ''), f"{addr.get('postal_code', '')} {addr.get('city', '')}".strip()]
        return ', '.join(p for p in parts if p)

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'status': self.status.value,
            'status_label': self.status_label,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_phone': self.customer_phone,
            'delivery_method': self.delivery_method.value,
            'shipping_address': self.shipping_address_dict,
            'subtotal': float(self.subtotal),
            'shipping_cost': float(self.shipping_cost),
            'discount': float(self.discount),
            'total': float(self.total),
            'promo_code': self.promo_code,
            'notes': self.notes,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


class OrderItem(Base):
    """Order line snapshot (immutable once created)."""

    __tablename__ = 'order_item'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, qty={self.quantity})>"

    def to_dict(self):
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': float(self.unit_price),
            'total_price': float(self.total_price),
        }
