import hashlib
import hmac
import json
from decimal import Decimal

import pytest

from config import TestConfig
from storefront import create_app
from storefront.database import db_session, create_all, drop_all
from storefront.models import (
    AdminUser, Category, Product, PromoCode, DiscountType
)
from storefront.services.cart_service import CartService, MemoryCartStore
from storefront.services import checkout_service
from storefront.services.checkout_service import CustomerInfo
from storefront.services.payment_provider import (
    EVENT_IGNORED, PaymentEvent, PaymentProvider, PaymentSession
)

WEBHOOK_SECRET = TestConfig.PAYMENT_WEBHOOK_SECRET


class FakePaymentProvider(PaymentProvider):
    """In-memory provider: records sessions, answers payment lookups from a dict."""

    def __init__(self, webhook_secret=WEBHOOK_SECRET):
        super().__init__(webhook_secret)
        self.sessions = []
        self.payments = {}
        self.fail_next = False

    def create_session(self, line_items, customer_email, success_url, cancel_url, metadata, expires_at):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError('provider down')
        session_id = f"pref-{len(self.sessions) + 1}"
        self.sessions.append({
            'id': session_id,
            'line_items': line_items,
            'customer_email': customer_email,
            'success_url': success_url,
            'cancel_url': cancel_url,
            'metadata': metadata,
            'expires_at': expires_at,
        })
        return PaymentSession(id=session_id, redirect_url=f"https://pay.test/checkout/{session_id}")

    def get_payment(self, reference):
        return self.payments.get(reference, PaymentEvent(type=EVENT_IGNORED, reference=reference))

    def parse_event(self, payload):
        return PaymentEvent(
            type=payload.get('type', EVENT_IGNORED),
            order_id=payload.get('order_id'),
            reference=payload.get('reference'),
        )


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def webhook_body(**payload) -> bytes:
    return json.dumps(payload).encode('utf-8')


@pytest.fixture(scope='function')
def app():
    """Fresh application and in-memory database per test."""
    app = create_app(TestConfig)
    app.extensions['payment_provider'] = FakePaymentProvider()

    # Requests reuse this app context, so they share the test's scoped session
    with app.app_context():
        create_all()
        yield app
        db_session.remove()
        drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session shared with the app."""
    yield db_session
    db_session.rollback()


@pytest.fixture(scope='function')
def provider(app):
    return app.extensions['payment_provider']


@pytest.fixture(scope='function')
def category(session):
    category = Category(name='Macarons', slug='macarons', display_order=1)
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def product(session, category):
    """10.00 each, 10 in stock."""
    product = Product(
        category_id=category.id,
        name='Macaron framboise',
        slug='macaron-framboise',
        price=Decimal('10.00'),
        stock=10,
        stock_alert_threshold=2,
        images=[],
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def promo_product(session, category):
    """18.00 reduced from 22.00, 5 in stock."""
    product = Product(
        category_id=category.id,
        name='Coffret dégustation',
        slug='coffret-degustation',
        price=Decimal('22.00'),
        promo_price=Decimal('18.00'),
        stock=5,
        stock_alert_threshold=1,
        images=['/uploads/products/coffret-medium.jpg'],
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def save10(session):
    promo = PromoCode(
        code='SAVE10',
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal('10'),
        min_order_amount=Decimal('15.00'),
    )
    session.add(promo)
    session.commit()
    return promo


@pytest.fixture(scope='function')
def cart_service(session):
    """Cart service over a plain dict instead of the Flask session."""
    return CartService(session, MemoryCartStore())


@pytest.fixture(scope='function')
def customer():
    return CustomerInfo(
        name='Camille Martin',
        email='camille@example.com',
        phone='0612345678',
    )


@pytest.fixture(scope='function')
def admin_user(session):
    admin = AdminUser(email='gerant@example.com', name='Gérant')
    admin.set_password('motdepasse-solide')
    session.add(admin)
    session.commit()
    return admin


@pytest.fixture(scope='function')
def admin_client(client, admin_user):
    """Client logged into the back-office."""
    with client.session_transaction() as sess:
        sess['admin_user_id'] = admin_user.id
    return client


@pytest.fixture(scope='function')
def place_order(session, cart_service, provider):
    """Check out a fresh cart made of (product, quantity) lines. Returns the pending order."""
    def _place(*lines, delivery_method='pickup', email='camille@example.com', promo=None):
        cart_service.clear()
        for product, quantity in lines:
            cart_service.add(product.id, quantity)
        if promo:
            cart_service.apply_promo(promo)
        customer = CustomerInfo(
            name='Camille Martin',
            email=email,
            phone='0612345678',
            delivery_method=delivery_method,
            address='12 rue des Lilas' if delivery_method == 'delivery' else None,
            city='Paris' if delivery_method == 'delivery' else None,
            postal_code='75014' if delivery_method == 'delivery' else None,
        )
        result = checkout_service.checkout(session, cart_service.get(), customer, provider)
        return result.order
    return _place


@pytest.fixture(scope='function')
def mail_spy(mocker):
    """Patch the order emails; returns the confirmation mock."""
    mocker.patch('storefront.services.email_service.send_admin_alert', return_value=True)
    mocker.patch('storefront.services.email_service.send_low_stock_alert', return_value=True)
    return mocker.patch('storefront.services.email_service.send_order_confirmation', return_value=True)
