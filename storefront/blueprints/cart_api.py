"""
Cart JSON API consumed by the storefront cart widget.

Every response uses the {success, data, error?, message?} envelope; errors are
raised as StorefrontError and rendered by the app-level handler.
"""
from flask import Blueprint, jsonify, request

from storefront.database import get_session
from storefront.exceptions import BusinessLogicError
from storefront.services.cart_service import CartService, MAX_LINE_QUANTITY
from storefront.utils.money import format_price

cart_api_bp = Blueprint('cart_api', __name__, url_prefix='/api/cart')


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    return data


def _parse_int(value, field, minimum, maximum) -> int:
    if isinstance(value, bool):
        raise BusinessLogicError(f'Invalid {field}')
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f'Invalid {field}')
    if isinstance(value, float) and value != number:
        raise BusinessLogicError(f'Invalid {field}')
    if number < minimum or number > maximum:
        raise BusinessLogicError(f'{field} must be between {minimum} and {maximum}')
    return number


def _product_id(data: dict) -> int:
    value = data.get('product_id', data.get('productId'))
    return _parse_int(value, 'product_id', 1, 2 ** 63 - 1)


def _ok(cart, message=None):
    body = {'success': True, 'data': cart.to_dict()}
    if message:
        body['message'] = message
    return jsonify(body)


def _service() -> CartService:
    return CartService(get_session())


@cart_api_bp.route('', methods=['GET'])
def get_cart():
    return _ok(_service().get())


@cart_api_bp.route('/add', methods=['POST'])
def add():
    data = _payload()
    product_id = _product_id(data)
    quantity = _parse_int(data.get('quantity', 1), 'quantity', 1, MAX_LINE_QUANTITY)

    cart = _service().add(product_id, quantity)
    item = cart.find(product_id)
    return _ok(cart, f'{item.name} added to cart')


@cart_api_bp.route('/update', methods=['PUT'])
def update():
    data = _payload()
    product_id = _product_id(data)
    quantity = _parse_int(data.get('quantity'), 'quantity', 0, MAX_LINE_QUANTITY)
    return _ok(_service().update(product_id, quantity))


@cart_api_bp.route('/remove', methods=['DELETE'])
def remove():
    data = _payload()
    return _ok(_service().remove(_product_id(data)))


@cart_api_bp.route('/promo', methods=['POST'])
def apply_promo():
    code = (_payload().get('code') or '').strip()
    if not code:
        raise BusinessLogicError('Promo code is required')

    cart = _service().apply_promo(code)
    return _ok(cart, f'Code "{cart.promo_code}" applied: -{format_price(cart.discount)}')


@cart_api_bp.route('/shipping', methods=['POST'])
def set_shipping():
    method = _payload().get('delivery_method') or ''
    return _ok(_service().set_delivery_method(method))
