"""
Integration tests for the cart JSON API and the public catalog API.
"""

from decimal import Decimal

import pytest

from storefront.models import PromoCode, DiscountType


def add(client, product_id, quantity=1):
    return client.post('/api/cart/add', json={'product_id': product_id, 'quantity': quantity})


class TestCartApi:
    """Cart widget endpoints, cart kept in the session cookie."""

    def test_empty_cart(self, client):
        response = client.get('/api/cart')

        assert response.status_code == 200
        assert response.json == {
            'success': True,
            'data': {
                'items': [], 'item_count': 0, 'subtotal': 0.0, 'shipping_cost': 0.0,
                'discount': 0.0, 'promo_code': None, 'total': 0.0, 'delivery_method': 'pickup',
            },
        }

    def test_add(self, client, product):
        response = add(client, product.id, 2)

        assert response.status_code == 200
        body = response.json
        assert body['success'] is True
        assert body['message'] == 'Macaron framboise added to cart'
        assert body['data']['subtotal'] == 20.0
        assert body['data']['items'][0]['line_total'] == 20.0

    def test_cart_persists_between_requests(self, client, product):
        add(client, product.id, 2)
        add(client, product.id, 1)

        data = client.get('/api/cart').json['data']
        assert data['item_count'] == 3
        assert data['total'] == 30.0

    def test_add_accepts_camel_case_id(self, client, product):
        response = client.post('/api/cart/add', json={'productId': product.id})

        assert response.status_code == 200
        assert response.json['data']['items'][0]['quantity'] == 1

    def test_add_form_encoded(self, client, product):
        response = client.post('/api/cart/add', data={'product_id': str(product.id), 'quantity': '2'})

        assert response.status_code == 200
        assert response.json['data']['item_count'] == 2

    @pytest.mark.parametrize('quantity', ['abc', True, 0, 100, 1.5, None])
    def test_add_invalid_quantity(self, client, product, quantity):
        response = add(client, product.id, quantity)

        assert response.status_code == 400
        assert response.json['success'] is False

    def test_add_missing_product_id(self, client):
        response = client.post('/api/cart/add', json={'quantity': 1})
        assert response.status_code == 400

    def test_add_unknown_product(self, client):
        response = add(client, 4242)

        assert response.status_code == 404
        assert response.json['success'] is False

    def test_add_beyond_stock(self, client, product):
        response = add(client, product.id, 11)

        assert response.status_code == 409
        assert response.json['available'] == 10
        assert client.get('/api/cart').json['data']['items'] == []

    def test_update(self, client, product):
        add(client, product.id, 1)
        response = client.put('/api/cart/update', json={'product_id': product.id, 'quantity': 4})

        assert response.status_code == 200
        assert response.json['data']['subtotal'] == 40.0

    def test_update_zero_removes(self, client, product):
        add(client, product.id, 1)
        response = client.put('/api/cart/update', json={'product_id': product.id, 'quantity': 0})

        assert response.json['data']['items'] == []

    def test_update_missing_line(self, client, product):
        response = client.put('/api/cart/update', json={'product_id': product.id, 'quantity': 2})
        assert response.status_code == 404

    def test_remove(self, client, product, promo_product):
        add(client, product.id, 1)
        add(client, promo_product.id, 1)

        response = client.delete('/api/cart/remove', json={'product_id': product.id})

        assert response.status_code == 200
        assert [i['slug'] for i in response.json['data']['items']] == ['coffret-degustation']


class TestCartPromoApi:

    def test_apply_code(self, client, product, save10):
        """2 x 10.00, SAVE10 -> 18.00."""
        add(client, product.id, 2)
        response = client.post('/api/cart/promo', json={'code': 'save10'})

        assert response.status_code == 200
        data = response.json['data']
        assert data['promo_code'] == 'SAVE10'
        assert data['discount'] == 2.0
        assert data['total'] == 18.0
        assert response.json['message'] == 'Code "SAVE10" applied: -2,00 €'

    def test_exhausted_code(self, client, session, product):
        session.add(PromoCode(code='FINI', discount_type=DiscountType.FIXED, discount_value=Decimal('5'),
                              max_uses=1, current_uses=1))
        session.commit()
        add(client, product.id, 2)

        response = client.post('/api/cart/promo', json={'code': 'FINI'})

        assert response.status_code == 400
        assert response.json['error'] == 'This promo code has reached its usage limit'
        assert client.get('/api/cart').json['data']['discount'] == 0.0

    def test_missing_code(self, client, product):
        add(client, product.id, 1)
        assert client.post('/api/cart/promo', json={}).status_code == 400


class TestCartShippingApi:

    def test_delivery_fee(self, client, promo_product):
        """18.00 delivered -> 23.90."""
        add(client, promo_product.id, 1)
        response = client.post('/api/cart/shipping', json={'delivery_method': 'delivery'})

        data = response.json['data']
        assert data['shipping_cost'] == 5.9
        assert data['total'] == 23.9

    def test_invalid_method(self, client):
        response = client.post('/api/cart/shipping', json={'delivery_method': 'teleport'})
        assert response.status_code == 400


class TestCatalogApi:

    def test_products(self, client, product, promo_product):
        response = client.get('/api/products?sort=price_asc')

        assert response.status_code == 200
        assert [p['slug'] for p in response.json['data']] == ['macaron-framboise', 'coffret-degustation']
        assert response.json['pagination']['total'] == 2

    def test_product_detail(self, client, promo_product):
        data = client.get('/api/products/coffret-degustation').json['data']

        assert data['price'] == 22.0
        assert data['promo_price'] == 18.0
        assert data['category'] == 'macarons'

    def test_unknown_product(self, client):
        assert client.get('/api/products/nope').status_code == 404

    def test_categories(self, client, category):
        assert client.get('/api/categories').json['data'][0]['slug'] == 'macarons'

    def test_health(self, client):
        assert client.get('/health').json['status'] == 'healthy'

    def test_metrics(self, client):
        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'orders_paid_total' in response.data
