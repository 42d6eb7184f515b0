"""
Checkout blueprint - form submission, provider redirect and return page.

Routes:
- GET  /cart          current cart (the page the form flow bounces back to)
- POST /checkout      create the pending order, 302 to the hosted payment page
- GET  /confirmation  provider return URL: reconcile, clear the cart, summary
"""
from flask import Blueprint, current_app, jsonify, redirect, request

from storefront.database import get_session
from storefront.exceptions import (
    EmptyCartError, NotFoundError, OutOfStockError, PaymentProviderError, PromoError, StorefrontError
)
from storefront.forms.checkout_forms import CheckoutForm
from storefront.models import Order, OrderStatus
from storefront.services import checkout_service, fulfillment_service
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CustomerInfo

checkout_bp = Blueprint('checkout', __name__)


def _strip(value):
    value = (value or '').strip()
    return value or None


def _back_to_cart(code: str):
    from storefront.blueprints.metrics import checkout_failures_total
    checkout_failures_total.labels(reason=code).inc()
    return redirect(f'/cart?error={code}')


@checkout_bp.route('/cart', methods=['GET'])
def cart_page():
    cart = CartService(get_session()).get()
    return jsonify({
        'success': True,
        'data': cart.to_dict(),
        'error': request.args.get('error'),
        'cancelled': request.args.get('cancelled') == 'true',
    })


@checkout_bp.route('/checkout', methods=['POST'])
def process_checkout():
    session_db = get_session()
    cart_service = CartService(session_db)
    cart = cart_service.get()

    if not cart.items:
        return _back_to_cart('empty')

    form = CheckoutForm()
    if not form.validate_on_submit():
        current_app.logger.info(f"[CHECKOUT] Invalid form: {form.errors}")
        return _back_to_cart('form')

    customer = CustomerInfo(
        name=form.customer_name.data.strip(),
        email=form.customer_email.data.strip(),
        phone=_strip(form.customer_phone.data),
        delivery_method=form.delivery_method.data,
        address=_strip(form.shipping_address.data),
        city=_strip(form.shipping_city.data),
        postal_code=_strip(form.shipping_postal_code.data),
        notes=_strip(form.notes.data),
    )

    try:
        result = checkout_service.checkout(session_db, cart, customer)
    except PaymentProviderError as e:
        current_app.logger.error(f"[CHECKOUT] Payment session failed for order {e.order_id}")
        if e.order_id:
            cart_service.remember_pending_order(e.order_id, cart.fingerprint(customer.email))
        return _back_to_cart(e.code)
    except (EmptyCartError, OutOfStockError, PromoError) as e:
        current_app.logger.info(f"[CHECKOUT] Checkout refused: {e.message}")
        return _back_to_cart(e.code)
    except Exception as e:
        current_app.logger.exception(f"[CHECKOUT] Unexpected error: {e}")
        return _back_to_cart('server')

    cart_service.remember_pending_order(result.order.id, result.fingerprint)
    return redirect(result.redirect_url)


@checkout_bp.route('/confirmation', methods=['GET'])
def confirmation():
    session_db = get_session()
    order_number = request.args.get('order', '').strip()
    payment_id = request.args.get('payment_id') or request.args.get('collection_id')

    order = session_db.query(Order).filter_by(order_number=order_number).first() if order_number else None
    if order is None:
        raise NotFoundError('Order not found')

    if order.status == OrderStatus.PENDING and payment_id:
        try:
            fulfillment_service.reconcile_return(session_db, order, payment_id)
        except StorefrontError as e:
            # The webhook will retry; the page still answers
            current_app.logger.warning(f"[CHECKOUT] Return reconciliation for {order.order_number} failed: {e.message}")
        session_db.refresh(order)

    if order.status not in (OrderStatus.PENDING, OrderStatus.CANCELLED):
        CartService(session_db).clear()

    return jsonify({'success': True, 'data': order.to_dict()})
