"""
Cart value objects.

The cart lives in the visitor's session as plain JSON (amounts as strings) and
is rebuilt into these dataclasses for every request.
"""
import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from storefront.utils.money import ZERO, round_money


@dataclass
class CartItem:
    product_id: int
    name: str
    slug: str
    image: str
    price: Decimal
    promo_price: Optional[Decimal]
    quantity: int
    stock: int

    @property
    def unit_price(self) -> Decimal:
        return self.promo_price if self.promo_price is not None else self.price

    @property
    def line_total(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)

    def to_session(self) -> dict:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'slug': self.slug,
            'image': self.image,
            'price': str(self.price),
            'promo_price': str(self.promo_price) if self.promo_price is not None else None,
            'quantity': self.quantity,
            'stock': self.stock,
        }

    @classmethod
    def from_session(cls, data: dict) -> 'CartItem':
        promo = data.get('promo_price')
        return cls(
            product_id=int(data['product_id']),
            name=data.get('name', ''),
            slug=data.get('slug', ''),
            image=data.get('image', ''),
            price=Decimal(str(data['price'])),
            promo_price=Decimal(str(promo)) if promo is not None else None,
            quantity=int(data['quantity']),
            stock=int(data.get('stock', 0)),
        )

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'slug': self.slug,
            'image': self.image,
            'price': float(self.price),
            'promo_price': float(self.promo_price) if self.promo_price is not None else None,
            'quantity': self.quantity,
            'stock': self.stock,
            'line_total': float(self.line_total),
        }


@dataclass
class Cart:
    items: List[CartItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    discount: Decimal = ZERO
    promo_code: Optional[str] = None
    total: Decimal = ZERO
    delivery_method: str = 'pickup'
    pending_order: Optional[dict] = None

    def find(self, product_id: int) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def recalculate(self) -> None:
        """Recompute derived totals. Discount and shipping are never derived here."""
        self.subtotal = round_money(sum((i.unit_price * i.quantity for i in self.items), ZERO))
        total = round_money(self.subtotal + self.shipping_cost - self.discount)
        self.total = total if total > ZERO else ZERO

    def fingerprint(self, customer_email: str = '') -> str:
        """Stable hash of what a checkout of this cart would order."""
        payload = {
            'items': sorted((i.product_id, i.quantity) for i in self.items),
            'promo_code': self.promo_code,
            'discount': str(self.discount),
            'delivery_method': self.delivery_method,
            'email': (customer_email or '').strip().lower(),
        }
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode('utf-8')).hexdigest()

    def to_session(self) -> dict:
        return {
            'items': [i.to_session() for i in self.items],
            'subtotal': str(self.subtotal),
            'shipping_cost': str(self.shipping_cost),
            'discount': str(self.discount),
            'promo_code': self.promo_code,
            'total': str(self.total),
            'delivery_method': self.delivery_method,
            'pending_order': self.pending_order,
        }

    @classmethod
    def from_session(cls, data: Optional[dict]) -> 'Cart':
        if not data:
            return cls()
        cart = cls(
            items=[CartItem.from_session(i) for i in data.get('items', [])],
            shipping_cost=Decimal(str(data.get('shipping_cost', '0.00'))),
            discount=Decimal(str(data.get('discount', '0.00'))),
            promo_code=data.get('promo_code'),
            delivery_method=data.get('delivery_method') or 'pickup',
            pending_order=data.get('pending_order'),
        )
        cart.recalculate()
        return cart

    def to_dict(self) -> dict:
        """Shape returned by the cart JSON API."""
        return {
            'items': [i.to_dict() for i in self.items],
            'item_count': self.item_count,
            'subtotal': float(self.subtotal),
            'shipping_cost': float(self.shipping_cost),
            'discount': float(self.discount),
            'promo_code': self.promo_code,
            'total': float(self.total),
            'delivery_method': self.delivery_method,
        }
