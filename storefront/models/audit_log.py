"""
Audit Log model for tracking back-office mutations.
"""
from sqlalchemy import Column, String, Text, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from storefront.database import Base, BigIntPK


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Orders
    ORDER_STATUS_UPDATE = "ORDER_STATUS_UPDATE"
    ORDERS_EXPIRED = "ORDERS_EXPIRED"

    # Catalog
    CATEGORY_CREATE = "CATEGORY_CREATE"
    PRODUCT_CREATE = "PRODUCT_CREATE"
    PRODUCT_UPDATE = "PRODUCT_UPDATE"
    STOCK_UPDATE = "STOCK_UPDATE"

    # Promo codes
    PROMO_CREATE = "PROMO_CREATE"
    PROMO_UPDATE = "PROMO_UPDATE"
    PROMO_DELETE = "PROMO_DELETE"

    # Back-office access
    ADMIN_LOGIN = "ADMIN_LOGIN"


class AuditLog(Base):
    """Audit log for back-office actions. Append-only."""
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    admin_email = Column(String(255), nullable=False, default='')
    action = Column(SQLEnum(AuditAction, name='audit_action'), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'order', 'product', 'promo_code'
    resource_id = Column(String(64))
    details = Column(Text)  # JSON with additional details
    ip_address = Column(String(45))  # IPv4 or IPv6
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self):
        return f"<AuditLog {self.action.value} by {self.admin_email} at {self.created_at}>"

    def to_dict(self):
        return {
            'id': self.id,
            'admin_email': self.admin_email,
            'action': self.action.value,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
