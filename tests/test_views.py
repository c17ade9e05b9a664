import json

import pytest

from apps.core.models import SecurityEvent
from conftest import ITEMS, stripe_event


def post_json(client, url, data, method='post', **extra):
    return getattr(client, method)(url, data=json.dumps(data), content_type='application/json', **extra)


class TestCartApi:

    def test_add_and_fetch(self, client, services):
        response = post_json(client, '/api/cart/u1/add', {'item': dict(ITEMS[0])})
        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['cart']['totals']['total'] == 200.0

        response = client.get('/api/cart/u1')
        assert response.json()['cart']['items'][0]['id'] == 'prod-shirt'

    def test_invalid_json(self, client, services):
        response = client.post('/api/cart/u1/add', data='{oops', content_type='application/json')
        assert response.status_code == 400
        assert response.json()['code'] == 'INVALID_JSON'

    def test_update_requires_fields(self, client, services):
        response = post_json(client, '/api/cart/u1/update', {'quantity': 1}, method='put')
        assert response.status_code == 400
        assert response.json()['fields'] == ['cartItemId']

    def test_invalid_discount_code(self, client, services):
        post_json(client, '/api/cart/u1/add', dict(ITEMS[0]))
        response = post_json(client, '/api/cart/u1/apply-discount', {'code': 'NOPE'})
        assert response.status_code == 400
        assert response.json() == {
            'success': False,
            'error': 'Invalid discount code',
            'code': 'INVALID_DISCOUNT_CODE',
            'reason': 'INVALID',
        }

    def test_remove_from_missing_cart(self, client, services):
        response = client.delete('/api/cart/ghost/remove/cart_1')
        assert response.status_code == 404
        assert response.json()['code'] == 'CART_NOT_FOUND'

    def test_unexpected_errors_become_json_500(self, client, services, monkeypatch):
        def explode(user_id):
            raise RuntimeError('boom')

        monkeypatch.setattr(services.carts, 'get_cart', explode)
        response = client.get('/api/cart/u1')
        assert response.status_code == 500
        assert response.json()['code'] == 'INTERNAL_ERROR'


def test_validate_discount_endpoint(client, services, subscriber):
    subscriber(code='WELCOME10')
    response = post_json(client, '/api/discounts/validate', {'code': 'welcome10'})
    assert response.json() == {
        'success': True,
        'valid': True,
        'code': 'WELCOME10',
        'percentage': 10,
        'expiresAt': None,
    }


def test_subscribe_endpoint(client, services):
    response = post_json(client, '/api/discounts/subscribe', {'email': 'reader@example.com', 'source': 'popup'})
    assert response.status_code == 201
    code = response.json()['discountCode']

    response = post_json(client, '/api/discounts/subscribe', {'email': 'reader@example.com'})
    assert response.status_code == 200
    assert response.json()['discountCode'] == code
    assert post_json(client, '/api/discounts/validate', {'code': code}).json()['valid'] is True


class TestOrdersApi:

    def test_create_and_read_with_email(self, client, services):
        response = post_json(client, '/api/orders/create', {
            'customer': {'name': 'Ana Berg', 'email': 'ana@example.com'},
            'items': ITEMS,
            'shipping': 49,
        })
        assert response.status_code == 201
        order_id = response.json()['order']['orderId']

        assert client.get(f'/api/orders/{order_id}').status_code == 404
        response = client.get(f'/api/orders/{order_id}', {'email': 'ana@example.com'})
        assert response.status_code == 200
        assert response.json()['order']['totals']['total'] == 249.0

    def test_status_change_needs_staff(self, client, services, make_order):
        order_id = make_order()['orderId']
        response = post_json(client, f'/api/orders/{order_id}/status', {'status': 'processing'})
        assert response.status_code == 403
        assert response.json()['code'] == 'ADMIN_REQUIRED'

    @pytest.mark.django_db
    def test_staff_status_change(self, admin_client, services, make_order):
        order_id = make_order()['orderId']
        response = post_json(admin_client, f'/api/orders/{order_id}/status', {'status': 'shipped'})
        assert response.status_code == 409
        response = post_json(admin_client, f'/api/orders/{order_id}/status', {'status': 'processing'})
        assert response.json()['order']['status'] == 'processing'


class TestPaymentsApi:

    def test_config(self, client, services, settings):
        settings.STRIPE_PUBLIC_KEY = 'pk_test_123'
        body = client.get('/api/payments/config').json()
        assert body['publishableKey'] == 'pk_test_123'
        assert body['currency'] == 'SEK'

    @pytest.mark.django_db
    def test_amount_mismatch_is_logged(self, client, services, make_order):
        order_id = make_order()['orderId']
        response = post_json(client, '/api/payments/create-intent', {
            'orderId': order_id, 'amount': 1, 'currency': 'sek',
        })
        assert response.json()['amount'] == 249.0
        assert SecurityEvent.objects.filter(event_type='amount_mismatch').count() == 1

    def test_webhook_acknowledges_events(self, client, services, make_order):
        order_id = make_order()['orderId']
        payload = stripe_event('payment_intent.succeeded', {
            'id': 'pi_1', 'status': 'succeeded', 'metadata': {'orderId': order_id},
        })
        response = client.post('/api/payments/webhook', data=payload, content_type='application/json')
        assert response.status_code == 200
        assert response.json() == {'received': True, 'handled': True}
        assert services.orders.get_order(order_id)['paymentStatus'] == 'succeeded'

    @pytest.mark.django_db
    def test_webhook_rejects_bad_signature(self, client, services):
        payload = stripe_event('payment_intent.succeeded', {'id': 'pi_1'})
        response = client.post(
            '/api/payments/webhook', data=payload, content_type='application/json',
            HTTP_STRIPE_SIGNATURE='invalid',
        )
        assert response.status_code == 400
        assert SecurityEvent.objects.filter(event_type='webhook_signature_invalid').count() == 1

    def test_webhook_handler_errors_still_return_200(self, client, services, monkeypatch):
        def explode(intent):
            raise RuntimeError('store down')

        monkeypatch.setattr(services.payments, 'handle_payment_failed', explode)
        payload = stripe_event('payment_intent.payment_failed', {'id': 'pi_1'})
        response = client.post('/api/payments/webhook', data=payload, content_type='application/json')
        assert response.status_code == 200
        assert response.json()['received'] is True

    def test_unknown_intent_is_404(self, client, services):
        response = client.get('/api/payments/status/pi_missing')
        assert response.status_code == 404
        assert response.json()['code'] == 'PAYMENT_INTENT_NOT_FOUND'


class TestCheckoutApi:

    def test_email_capture_and_recover(self, client, services):
        response = post_json(client, '/api/checkout/email-capture', {
            'email': 'ana@example.com',
            'cart': {'items': ITEMS, 'totals': {'total': 249}},
        })
        checkout_id = response.json()['checkoutId']

        response = client.get(f'/api/checkout/recover/{checkout_id}')
        assert response.status_code == 200
        assert response.json()['email'] == 'ana@example.com'

    @pytest.mark.django_db
    def test_processing_needs_staff(self, client, admin_client, services):
        assert post_json(client, '/api/checkout/process', {}).status_code == 403
        response = post_json(admin_client, '/api/checkout/process', {'dryRun': True})
        assert response.status_code == 200
        assert response.json()['processed'] == 0

    def test_used_retry_link_is_gone(self, client, services, make_order):
        order = make_order()
        failed = services.checkouts.record_failed_checkout(order, 'pi_1', 'declined')
        url = f"/api/payment-failure/recover/{failed['retryToken']}"
        assert client.get(url).status_code == 200
        response = client.get(url)
        assert response.status_code == 410
        assert response.json()['code'] == 'RETRY_TOKEN_USED'


class TestReviewsApi:

    def test_create_general_review(self, client, services):
        response = post_json(client, '/api/reviews/', {
            'productId': 'general',
            'rating': 4,
            'comment': 'Fast delivery',
            'customerName': 'Ana',
            'customerEmail': 'ana@example.com',
            'reviewSource': 'manual',
        })
        assert response.status_code == 201
        assert response.json()['review']['status'] == 'pending'

    def test_pending_reviews_are_hidden(self, client, services):
        review = services.reviews.create_review({
            'productId': 'general',
            'rating': 4,
            'comment': 'Fast delivery',
            'customerName': 'Ana',
            'customerEmail': 'ana@example.com',
            'reviewSource': 'manual',
        })
        assert client.get(f"/api/reviews/{review['id']}").status_code == 404
        assert client.get('/api/reviews/', {'status': 'pending'}).json()['reviews'] == []
