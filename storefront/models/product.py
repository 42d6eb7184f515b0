"""Product model."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime, ForeignKey, JSON,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK

PLACEHOLDER_IMAGE = '/images/placeholder-product.jpg'
IMAGE_SIZES = ('thumbnail', 'medium', 'large', 'original')


class Product(Base):
    """Product model. `stock` is the authoritative on-hand quantity."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    category_id = Column(BigInteger, ForeignKey('category.id'), nullable=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(220), nullable=False, unique=True)
    short_description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    promo_price = Column(Numeric(10, 2), nullable=True)
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    stock_alert_threshold = Column(Integer, nullable=False, default=5, server_default='5')
    images = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship('Category', back_populates='products')

    def __repr__(self):
        return f"<Product(id={self.id}, slug='{self.slug}', stock={self.stock})>"

    @property
    def effective_price(self):
        """Unit price a customer pays right now."""
        return self.promo_price if self.promo_price is not None else self.price

    def image(self, size: str = 'medium') -> str:
        """
        Path of the first product image in the requested size.

        Uploaded images live under /uploads/ with one file per size
        (`name-thumbnail.jpg`, `name-medium.jpg`, ...); anything else is
        returned untouched.
        """
        if not self.images:
            return PLACEHOLDER_IMAGE
        img = self.images[0]
        if not img.startswith('/uploads/') or '.' not in img:
            return img

        base, extension = img.rsplit('.', 1)
        for suffix in IMAGE_SIZES:
            if base.endswith(f'-{suffix}'):
                base = base[:-len(suffix) - 1]
                break
        return f"{base}-{size}.{extension}"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'short_description': self.short_description,
            'category': self.category.slug if self.category else None,
            'price': float(self.price),
            'promo_price': float(self.promo_price) if self.promo_price is not None else None,
            'stock': self.stock,
            'image': self.image('medium'),
            'images': list(self.images or []),
            'is_featured': self.is_featured,
        }
