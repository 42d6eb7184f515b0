"""
Cart service - per-visitor cart kept in the Flask session.

Every mutation works on a fresh copy of the stored cart and only writes it back
after it succeeded, so a rejected add/update/promo leaves the cart untouched.
"""
import logging
from typing import Optional

from flask import session as flask_session

from storefront.cart import Cart, CartItem
from storefront.exceptions import BusinessLogicError, NotFoundError, InsufficientStockError
from storefront.models import Product, DeliveryMethod
from storefront.services import promo_service
from storefront.services.checkout_service import calculate_shipping

logger = logging.getLogger(__name__)

SESSION_KEY = 'cart'
MAX_LINE_QUANTITY = 99


class SessionCartStore:
    """Reads and writes the serialized cart in the signed Flask session."""

    def __init__(self, key: str = SESSION_KEY):
        self.key = key

    def load(self) -> Optional[dict]:
        return flask_session.get(self.key)

    def save(self, data: dict) -> None:
        flask_session[self.key] = data
        flask_session.modified = True


class MemoryCartStore:
    """Dict-backed store for scripts and unit tests."""

    def __init__(self, data: Optional[dict] = None):
        self.data = data

    def load(self) -> Optional[dict]:
        return self.data

    def save(self, data: dict) -> None:
        self.data = data


class CartService:
    """Cart operations for the current visitor."""

    def __init__(self, db_session, store=None):
        self.db_session = db_session
        self.store = store or SessionCartStore()

    def get(self) -> Cart:
        return Cart.from_session(self.store.load())

    def _save(self, cart: Cart) -> Cart:
        cart.recalculate()
        if cart.delivery_method == DeliveryMethod.DELIVERY.value:
            cart.shipping_cost = calculate_shipping(cart.subtotal, cart.delivery_method)
            cart.recalculate()
        self.store.save(cart.to_session())
        return cart

    def _get_active_product(self, product_id: int) -> Product:
        product = self.db_session.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError('Product not found')
        return product

    def add(self, product_id: int, quantity: int = 1) -> Cart:
        if quantity < 1:
            raise BusinessLogicError('Quantity must be at least 1')

        product = self._get_active_product(product_id)
        cart = self.get()
        item = cart.find(product.id)
        existing = item.quantity if item else 0

        if existing + quantity > product.stock:
            raise InsufficientStockError(product.name, existing + quantity, product.stock)

        if item:
            item.quantity = existing + quantity
            item.stock = product.stock
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                name=product.name,
                slug=product.slug,
                image=product.image('thumbnail'),
                price=product.price,
                promo_price=product.promo_price,
                quantity=quantity,
                stock=product.stock,
            ))

        logger.info(f"[CART] +{quantity} x product {product.id}")
        return self._save(cart)

    def update(self, product_id: int, quantity: int) -> Cart:
        cart = self.get()
        item = cart.find(product_id)
        if item is None:
            raise NotFoundError('Item not found in cart')

        if quantity <= 0:
            cart.items.remove(item)
            return self._save(cart)

        product = self._get_active_product(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(product.name, quantity, product.stock)

        item.quantity = quantity
        item.stock = product.stock
        return self._save(cart)

    def remove(self, product_id: int) -> Cart:
        cart = self.get()
        cart.items = [i for i in cart.items if i.product_id != product_id]
        return self._save(cart)

    def apply_promo(self, code: str) -> Cart:
        cart = self.get()
        promo, discount = promo_service.evaluate_promo(self.db_session, code, cart.subtotal)

        cart.promo_code = promo.code
        cart.discount = discount
        logger.info(f"[CART] Promo {promo.code} applied: -{discount}")
        return self._save(cart)

    def set_delivery_method(self, method: str) -> Cart:
        try:
            method = DeliveryMethod(method).value
        except ValueError:
            raise BusinessLogicError('Invalid delivery method')

        cart = self.get()
        cart.delivery_method = method
        cart.shipping_cost = calculate_shipping(cart.subtotal, method)
        return self._save(cart)

    def remember_pending_order(self, order_id: int, fingerprint: str) -> None:
        cart = self.get()
        cart.pending_order = {'id': order_id, 'fingerprint': fingerprint}
        self._save(cart)

    def clear(self) -> Cart:
        cart = Cart()
        self.store.save(cart.to_session())
        return cart
