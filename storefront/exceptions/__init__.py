"""Custom exceptions for the storefront application."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    code = 'server'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['success'] = False
        rv['error'] = self.message
        return rv


class BusinessLogicError(StorefrontError):
    """Exception raised for business logic violations."""
    code = 'invalid'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


def _fmt_qty(value):
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class InsufficientStockError(BusinessLogicError):
    """Raised when a cart mutation asks for more units than are in stock."""
    code = 'stock'

    def __init__(self, product_name, required, available):
        message = (
            f"Insufficient stock for {product_name}: "
            f"{_fmt_qty(required)} requested, {_fmt_qty(available)} available"
        )
        super().__init__(message, status_code=409, payload={'available': int(available)})
        self.product_name = product_name
        self.required = required
        self.available = available


class OutOfStockError(BusinessLogicError):
    """Raised at checkout/fulfillment time when live stock cannot cover an order line."""
    code = 'stock'

    def __init__(self, product_name, message=None):
        super().__init__(message or f'"{product_name}" is no longer available in the requested quantity',
                         status_code=409)
        self.product_name = product_name


class EmptyCartError(BusinessLogicError):
    """Raised when checking out an empty cart."""
    code = 'empty'

    def __init__(self, message="Your cart is empty"):
        super().__init__(message)


class PromoError(BusinessLogicError):
    """Base class for promo code rejections."""
    code = 'promo'


class InvalidPromoError(PromoError):
    def __init__(self, message="Invalid promo code"):
        super().__init__(message)


class ExpiredPromoError(PromoError):
    def __init__(self, message="This promo code has expired"):
        super().__init__(message)


class PromoExhaustedError(PromoError):
    def __init__(self, message="This promo code has reached its usage limit"):
        super().__init__(message)


class MinimumNotMetError(PromoError):
    def __init__(self, minimum):
        super().__init__(f"Minimum order amount for this code: {minimum:.2f}")
        self.minimum = minimum


class PaymentProviderError(StorefrontError):
    """Raised when the hosted payment provider call fails."""
    code = 'payment'

    def __init__(self, message="Payment provider unavailable", order_id=None):
        super().__init__(message, 502)
        self.order_id = order_id


class InvalidWebhookSignatureError(StorefrontError):
    """Raised when a webhook payload fails signature verification or parsing."""
    code = 'signature'

    def __init__(self, message="Invalid webhook signature"):
        super().__init__(message, 400)
