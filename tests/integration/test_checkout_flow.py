"""
Integration tests for the checkout form, the provider redirect and the return page.
"""

from storefront.models import Order, OrderStatus, Product
from storefront.services.payment_provider import EVENT_COMPLETED, PaymentEvent

CHECKOUT_FORM = {
    'customer_name': 'Camille Martin',
    'customer_email': 'camille@example.com',
    'customer_phone': '0612345678',
    'delivery_method': 'pickup',
    'shipping_address': '',
    'shipping_city': '',
    'shipping_postal_code': '',
    'notes': '',
}


def fill_cart(client, product, quantity):
    response = client.post('/api/cart/add', json={'product_id': product.id, 'quantity': quantity})
    assert response.status_code == 200


def submit(client, **overrides):
    form = dict(CHECKOUT_FORM)
    form.update(overrides)
    return client.post('/checkout', data=form)


def redirected_to(response, path):
    return response.status_code == 302 and response.headers['Location'].endswith(path)


class TestCheckoutSubmission:
    """POST /checkout."""

    def test_redirects_to_payment_page(self, client, session, product, provider, save10):
        fill_cart(client, product, 2)
        client.post('/api/cart/promo', json={'code': 'SAVE10'})

        response = submit(client)

        assert response.status_code == 302
        assert response.headers['Location'] == 'https://pay.test/checkout/pref-1'

        order = session.query(Order).one()
        assert order.status == OrderStatus.PENDING
        assert float(order.total) == 18.0
        assert order.customer_email == 'camille@example.com'
        assert order.payment_session_id == 'pref-1'

    def test_delivery_order(self, client, session, promo_product):
        fill_cart(client, promo_product, 1)

        response = submit(client, delivery_method='delivery', shipping_address='12 rue des Lilas',
                          shipping_city='Paris', shipping_postal_code='75014')

        assert response.status_code == 302
        order = session.query(Order).one()
        assert float(order.shipping_cost) == 5.9
        assert float(order.total) == 23.9
        assert order.shipping_address_dict['city'] == 'Paris'

    def test_empty_cart(self, client, session):
        response = submit(client)

        assert redirected_to(response, '/cart?error=empty')
        assert session.query(Order).count() == 0

    def test_invalid_form(self, client, session, product):
        fill_cart(client, product, 1)

        response = submit(client, customer_email='pas-un-email')

        assert redirected_to(response, '/cart?error=form')
        assert session.query(Order).count() == 0

    def test_delivery_requires_address(self, client, session, product):
        fill_cart(client, product, 1)

        response = submit(client, delivery_method='delivery')

        assert redirected_to(response, '/cart?error=form')

    def test_out_of_stock(self, client, session, product):
        fill_cart(client, product, 3)
        product_id = product.id
        session.get(Product, product_id).stock = 1
        session.commit()

        response = submit(client)

        assert redirected_to(response, '/cart?error=stock')
        assert session.query(Order).count() == 0

    def test_provider_failure_keeps_order_for_retry(self, client, session, product, provider):
        fill_cart(client, product, 1)
        provider.fail_next = True

        first = submit(client)
        assert redirected_to(first, '/cart?error=payment')
        assert session.query(Order).one().status == OrderStatus.PENDING

        second = submit(client)
        assert second.headers['Location'] == 'https://pay.test/checkout/pref-1'
        assert session.query(Order).count() == 1

    def test_double_submission_reuses_order(self, client, session, product, provider):
        fill_cart(client, product, 2)

        first = submit(client)
        second = submit(client)

        assert first.status_code == second.status_code == 302
        assert session.query(Order).count() == 1
        assert len(provider.sessions) == 2

    def test_changed_email_creates_new_order(self, client, session, product):
        fill_cart(client, product, 2)

        submit(client)
        submit(client, customer_email='dominique@example.com')

        assert session.query(Order).count() == 2


class TestConfirmation:
    """GET /confirmation (provider return URL)."""

    def test_confirms_payment_and_clears_cart(self, client, session, product, provider, mail_spy):
        fill_cart(client, product, 2)
        submit(client)
        order = session.query(Order).one()
        order_id, order_number, product_id = order.id, order.order_number, product.id
        provider.payments['pay-1'] = PaymentEvent(type=EVENT_COMPLETED, order_id=order_id, reference='pay-1')

        response = client.get(f'/confirmation?order={order_number}&payment_id=pay-1')

        assert response.status_code == 200
        assert response.json['data']['status'] == 'paid'
        assert session.get(Product, product_id).stock == 8
        assert client.get('/api/cart').json['data']['items'] == []
        mail_spy.assert_called_once()

    def test_return_after_webhook_is_a_no_op(self, client, session, product, provider, mail_spy):
        """Webhook first, return URL second: still one decrement."""
        fill_cart(client, product, 2)
        submit(client)
        order = session.query(Order).one()
        order_id, order_number, product_id = order.id, order.order_number, product.id

        from storefront.services import fulfillment_service
        fulfillment_service.mark_order_paid(session, order_id, 'pay-1')
        provider.payments['pay-1'] = PaymentEvent(type=EVENT_COMPLETED, order_id=order_id, reference='pay-1')

        response = client.get(f'/confirmation?order={order_number}&collection_id=pay-1')

        assert response.json['data']['status'] == 'paid'
        assert session.get(Product, product_id).stock == 8
        assert mail_spy.call_count == 1

    def test_pending_order_keeps_cart(self, client, session, product):
        fill_cart(client, product, 1)
        submit(client)
        order_number = session.query(Order).one().order_number

        response = client.get(f'/confirmation?order={order_number}')

        assert response.json['data']['status'] == 'pending'
        assert client.get('/api/cart').json['data']['item_count'] == 1

    def test_unknown_order(self, client):
        assert client.get('/confirmation?order=IGR-00000000-ZZZZ').status_code == 404

    def test_cancelled_return(self, client):
        response = client.get('/cart?cancelled=true')

        assert response.status_code == 200
        assert response.json['cancelled'] is True
