"""Promo code model."""
import enum
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, Enum
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class DiscountType(enum.Enum):
    """Discount rule applied by a promo code."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromoCode(Base):
    """Promo code (code promo). `code` is always stored uppercase."""

    __tablename__ = 'promo_code'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(30), nullable=False, unique=True, index=True)
    discount_type = Column(Enum(DiscountType, name='discount_type'), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0, server_default='0')
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<PromoCode(code='{self.code}', type={self.discount_type.value}, value={self.discount_value})>"

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'discount_type': self.discount_type.value,
            'discount_value': float(self.discount_value),
            'min_order_amount': float(self.min_order_amount) if self.min_order_amount is not None else None,
            'max_uses': self.max_uses,
            'current_uses': self.current_uses,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
        }
