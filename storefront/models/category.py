"""Category model."""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class Category(Base):
    """Product Category."""

    __tablename__ = 'category'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(120), nullable=False, unique=True)
    display_order = Column(Integer, nullable=False, default=0, server_default='0')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    products = relationship('Product', back_populates='category')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'display_order': self.display_order,
        }

    def __repr__(self):
        return f"<Category(id={self.id}, slug='{self.slug}')>"
