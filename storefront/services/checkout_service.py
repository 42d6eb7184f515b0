"""
Checkout orchestration.

Turns the visitor's cart into a durable `pending` Order priced from live
catalog data, then opens a hosted payment session for it.
"""
import json
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context

from storefront.cart import Cart
from storefront.exceptions import EmptyCartError, OutOfStockError, PaymentProviderError
from storefront.models import Order, OrderItem, OrderStatus, DeliveryMethod, Product
from storefront.services import promo_service
from storefront.services.payment_provider import LineItem, get_payment_provider
from storefront.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal('50.00')
DEFAULT_DELIVERY_FEE = Decimal('5.90')
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def _setting(name, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def calculate_shipping(subtotal: Decimal, delivery_method: str) -> Decimal:
    """pickup: free. delivery: free from the threshold up, flat fee below it."""
    if delivery_method != DeliveryMethod.DELIVERY.value:
        return ZERO
    threshold = Decimal(str(_setting('FREE_SHIPPING_THRESHOLD', DEFAULT_FREE_SHIPPING_THRESHOLD)))
    if subtotal >= threshold:
        return ZERO
    return round_money(Decimal(str(_setting('DELIVERY_FEE', DEFAULT_DELIVERY_FEE))))


def generate_order_number(now: Optional[datetime] = None, prefix: Optional[str] = None) -> str:
    """Human readable number: <PREFIX>-YYYYMMDD-XXXX."""
    now = now or datetime.now(timezone.utc)
    prefix = prefix or _setting('ORDER_NUMBER_PREFIX', 'IGR')
    suffix = ''.join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


@dataclass
class CustomerInfo:
    name: str
    email: str
    phone: Optional[str] = None
    delivery_method: str = DeliveryMethod.PICKUP.value
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_delivery(self) -> bool:
        return self.delivery_method == DeliveryMethod.DELIVERY.value

    def shipping_address_json(self) -> Optional[str]:
        if not self.is_delivery:
            return None
        return json.dumps({
            'address': self.address or '',
            'city': self.city or '',
            'postal_code': self.postal_code or '',
        })


@dataclass
class CheckoutResult:
    order: Order
    redirect_url: str
    fingerprint: str
    reused: bool = False


def _load_live_lines(session, cart: Cart):
    """Reload each product. Any missing, inactive or short line aborts the checkout."""
    lines = []
    for item in cart.items:
        product = session.get(Product, item.product_id)
        if not product or not product.is_active or product.stock < item.quantity:
            raise OutOfStockError(product.name if product else item.name)
        lines.append((product, item.quantity, product.effective_price))
    return lines


def _unique_order_number(session) -> str:
    for _ in range(5):
        number = generate_order_number()
        if not session.query(Order.id).filter_by(order_number=number).first():
            return number
    raise RuntimeError('Could not allocate a unique order number')


def _find_reusable_order(session, cart: Cart, fingerprint: str, lines) -> Optional[Order]:
    pending = cart.pending_order or {}
    if not pending.get('id') or pending.get('fingerprint') != fingerprint:
        return None
    order = session.get(Order, pending['id'])
    if order is None or order.status != OrderStatus.PENDING:
        return None
    # Reuse only while the order still matches live prices.
    live = sorted((product.id, qty, price) for product, qty, price in lines)
    frozen = sorted((item.product_id, item.quantity, item.unit_price) for item in order.items)
    if live != frozen:
        return None
    return order


def _payment_line_items(order: Order):
    """Line items for the hosted page. Their sum is always the order total."""
    if order.discount > 0:
        # Item prices must not be negative: a discounted order goes as a single line.
        return [LineItem(name=f'Commande {order.order_number}', unit_price=order.total, sku=order.order_number)]

    items = [
        LineItem(name=line.product_name, unit_price=line.unit_price, quantity=line.quantity,
                 sku=str(line.product_id))
        for line in order.items
    ]
    if order.shipping_cost > 0:
        items.append(LineItem(name='Frais de livraison', unit_price=order.shipping_cost, sku='shipping'))
    return items


def _open_payment_session(order: Order, provider, now: datetime):
    base_url = _setting('APP_URL', '')
    ttl = int(_setting('PAYMENT_SESSION_TTL_MINUTES', 30))
    try:
        return provider.create_session(
            line_items=_payment_line_items(order),
            customer_email=order.customer_email,
            success_url=f"{base_url}/confirmation?order={order.order_number}",
            cancel_url=f"{base_url}/cart?cancelled=true",
            metadata={
                'order_id': order.id,
                'order_number': order.order_number,
                'delivery_method': order.delivery_method.value,
            },
            expires_at=now + timedelta(minutes=ttl),
        )
    except PaymentProviderError as e:
        e.order_id = order.id
        raise
    except Exception as e:
        logger.exception(f"[CHECKOUT] Payment provider failure for order {order.order_number}")
        raise PaymentProviderError(order_id=order.id) from e


def checkout(session, cart: Cart, customer: CustomerInfo, provider=None,
             now: Optional[datetime] = None) -> CheckoutResult:
    """
    Create (or reuse) a pending Order for the cart and open a payment session.

    Raises:
        EmptyCartError: cart has no items
        OutOfStockError: a product is gone, inactive or short; nothing is written
        PromoError: only when PROMO_REVALIDATE_AT_CHECKOUT is on
        PaymentProviderError: the Order is committed and stays pending
    """
    from storefront.blueprints.metrics import orders_created_total

    if not cart.items:
        raise EmptyCartError()

    provider = provider or get_payment_provider()
    now = now or datetime.now(timezone.utc)

    lines = _load_live_lines(session, cart)

    cart.delivery_method = customer.delivery_method
    fingerprint = cart.fingerprint(customer.email)

    order = _find_reusable_order(session, cart, fingerprint, lines)
    reused = order is not None

    if order is None:
        subtotal = round_money(sum((price * qty for _, qty, price in lines), ZERO))
        shipping_cost = calculate_shipping(subtotal, customer.delivery_method)
        discount = cart.discount
        promo_code = cart.promo_code

        if promo_code and _setting('PROMO_REVALIDATE_AT_CHECKOUT', False):
            promo, discount = promo_service.evaluate_promo(session, promo_code, subtotal, now)
            promo_code = promo.code

        total = round_money(subtotal + shipping_cost - discount)
        if total < ZERO:
            total = ZERO

        try:
            order = Order(
                order_number=_unique_order_number(session),
                customer_name=customer.name,
                customer_email=customer.email,
                customer_phone=customer.phone,
                delivery_method=DeliveryMethod(customer.delivery_method),
                shipping_address=customer.shipping_address_json(),
                status=OrderStatus.PENDING,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                discount=discount,
                total=total,
                promo_code=promo_code,
                notes=customer.notes,
            )
            for product, qty, price in lines:
                order.items.append(OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=qty,
                    unit_price=price,
                    total_price=round_money(price * qty),
                ))
            session.add(order)
            session.commit()
        except Exception:
            session.rollback()
            raise

        orders_created_total.inc()
        logger.info(f"[CHECKOUT] Order {order.order_number} created (pending), total {order.total}")
    else:
        logger.info(f"[CHECKOUT] Reusing pending order {order.order_number} for repeated submission")

    payment_session = _open_payment_session(order, provider, now)

    order.payment_session_id = payment_session.id
    session.commit()

    return CheckoutResult(order=order, redirect_url=payment_session.redirect_url,
                          fingerprint=fingerprint, reused=reused)
