"""Stock Movement model."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class StockMovementReason:
    """Common movement reasons."""
    SALE = 'sale'
    ADJUSTMENT = 'adjustment'
    RESTOCK = 'restock'
    LOSS = 'loss'


class StockMovement(Base):
    """Stock Movement (mouvement de stock). Append-only ledger, never updated."""

    __tablename__ = 'stock_movement'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    quantity_change = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')
    order = relationship('Order')

    def __repr__(self):
        return f"<StockMovement(id={self.id}, product_id={self.product_id}, change={self.quantity_change})>"

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product.name if self.product else None,
            'quantity_change': self.quantity_change,
            'reason': self.reason,
            'order_id': self.order_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
