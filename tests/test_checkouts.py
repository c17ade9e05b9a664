from datetime import timedelta

import pytest

from apps.checkouts.services import CheckoutService
from apps.core.clock import utcnow
from apps.core.errors import Conflict, Gone, NotFound, ValidationFailed
from conftest import FailingMailer

CART = {
    'items': [{'id': 'prod-shirt', 'name': 'Oxford Shirt', 'price': 100, 'quantity': 2}],
    'totals': {'subtotal': 200, 'total': 249},
}


def later(minutes):
    return utcnow() + timedelta(minutes=minutes)


@pytest.fixture
def checkouts(services):
    return services.checkouts


class TestCaptureEmail:

    def test_creates_pending_record(self, checkouts):
        checkout = checkouts.capture_email(' Ana@Example.com ', CART, user_id='u1', language='en')
        assert checkout['id'].startswith('checkout_')
        assert checkout['email'] == 'ana@example.com'
        assert checkout['status'] == 'pending'
        assert checkout['total'] == 249.0
        assert checkout['emailSent'] is False

    def test_refreshes_existing_pending_record(self, checkouts, store):
        first = checkouts.capture_email('ana@example.com', CART)
        second = checkouts.capture_email('ana@example.com', {**CART, 'totals': {'total': 100}})
        assert first['id'] == second['id']
        assert store.count('abandoned_checkouts') == 1
        assert store.find_one('abandoned_checkouts', {'id': first['id']})['total'] == 100.0

    @pytest.mark.parametrize('email, cart, code', [
        ('not-an-email', CART, 'INVALID_EMAIL'),
        (None, CART, 'INVALID_EMAIL'),
        ('ana@example.com', {'items': []}, 'EMPTY_CART'),
        ('ana@example.com', None, 'EMPTY_CART'),
    ])
    def test_rejects_bad_input(self, checkouts, email, cart, code):
        with pytest.raises(ValidationFailed) as excinfo:
            checkouts.capture_email(email, cart)
        assert excinfo.value.code == code


class TestAbandonedReminders:

    def test_two_stage_schedule(self, checkouts, store, mailoutbox):
        checkout = checkouts.capture_email('ana@example.com', CART)

        summary = checkouts.process_abandoned_checkouts(now=later(9))
        assert summary['sent'] == 0
        assert mailoutbox == []

        summary = checkouts.process_abandoned_checkouts(now=later(11))
        assert summary['sent'] == 1
        assert summary['results'][0]['stage'] == 1
        assert len(mailoutbox) == 1
        assert f"recover={checkout['id']}" in mailoutbox[0].body

        summary = checkouts.process_abandoned_checkouts(now=later(12))
        assert summary['sent'] == 0
        assert len(mailoutbox) == 1

        summary = checkouts.process_abandoned_checkouts(now=later(21))
        assert summary['sent'] == 1
        assert summary['results'][0]['stage'] == 2
        assert len(mailoutbox) == 2

        summary = checkouts.process_abandoned_checkouts(now=later(60))
        assert summary['processed'] == 0

        saved = store.find_one('abandoned_checkouts', {'id': checkout['id']})
        assert saved['emailSent'] is True
        assert saved['secondEmailSent'] is True

    def test_dry_run_sends_nothing(self, checkouts, store, mailoutbox):
        checkout = checkouts.capture_email('ana@example.com', CART)
        summary = checkouts.process_abandoned_checkouts(now=later(11), dry_run=True)
        assert summary['results'][0]['status'] == 'would_send'
        assert mailoutbox == []
        assert store.find_one('abandoned_checkouts', {'id': checkout['id']})['emailSent'] is False

    def test_send_failure_releases_stage(self, store, checkouts):
        checkout = checkouts.capture_email('ana@example.com', CART)
        broken = CheckoutService(store, FailingMailer())

        summary = broken.process_abandoned_checkouts(now=later(11))
        assert summary['errors'] == 1
        saved = store.find_one('abandoned_checkouts', {'id': checkout['id']})
        assert saved['emailSent'] is False
        assert 'emailSentAt' not in saved
        assert saved['lastEmailError'] == 'SMTP unavailable'

        # La siguiente pasada lo reintenta con un mailer sano
        assert checkouts.process_abandoned_checkouts(now=later(11))['sent'] == 1

    def test_completed_checkouts_are_not_reminded(self, checkouts, mailoutbox):
        checkouts.capture_email('ana@example.com', CART)
        assert checkouts.complete_abandoned_checkouts('ANA@example.com', 'ORD-1') == 1
        assert checkouts.process_abandoned_checkouts(now=later(11))['processed'] == 0
        assert mailoutbox == []


class TestRecoverCheckout:

    def test_counts_recoveries(self, checkouts):
        checkout = checkouts.capture_email('ana@example.com', CART)
        checkouts.recover_checkout(checkout['id'])
        recovered = checkouts.recover_checkout(checkout['id'])
        assert recovered['recoveryCount'] == 2
        assert recovered['cart'] == CART

    def test_unknown_and_completed(self, checkouts):
        with pytest.raises(NotFound):
            checkouts.recover_checkout('checkout_missing')
        checkout = checkouts.capture_email('ana@example.com', CART)
        checkouts.complete_abandoned_checkouts('ana@example.com', 'ORD-1')
        with pytest.raises(Conflict):
            checkouts.recover_checkout(checkout['id'])


class TestFailedCheckouts:

    @pytest.fixture
    def failed(self, checkouts, make_order):
        order = make_order()
        return checkouts.record_failed_checkout(order, 'pi_1', 'Your card was declined.')

    def test_one_record_per_order(self, checkouts, failed, store):
        order = store.find_one('orders', {'orderId': failed['orderId']})
        again = checkouts.record_failed_checkout(order, 'pi_2', 'Insufficient funds')
        assert again['id'] == failed['id']
        assert again['paymentIntentId'] == 'pi_2'
        assert store.count('failed_checkouts') == 1

    def test_failing_again_after_recovery_gets_a_fresh_link(self, checkouts, failed, store, mailoutbox):
        checkouts.process_failed_checkouts(now=later(4))
        checkouts.recover_failed_checkout(failed['retryToken'])

        order = store.find_one('orders', {'orderId': failed['orderId']})
        again = checkouts.record_failed_checkout(order, 'pi_2', 'Insufficient funds')
        assert again['id'] == failed['id']
        assert again['retryToken'] != failed['retryToken']
        assert again['emailSent'] is False
        assert 'retryTokenUsedAt' not in store.find_one('failed_checkouts', {'id': failed['id']})

        summary = checkouts.process_failed_checkouts(now=later(8))
        assert summary['sent'] == 1
        assert len(mailoutbox) == 2
        assert f"retry={again['retryToken']}" in mailoutbox[1].body
        assert checkouts.recover_failed_checkout(again['retryToken'])['orderId'] == failed['orderId']

    def test_failure_email_after_threshold(self, checkouts, failed, mailoutbox):
        assert checkouts.process_failed_checkouts(now=later(2))['processed'] == 0

        summary = checkouts.process_failed_checkouts(now=later(4))
        assert summary['sent'] == 1
        assert len(mailoutbox) == 1
        assert f"retry={failed['retryToken']}" in mailoutbox[0].body

        assert checkouts.process_failed_checkouts(now=later(10))['processed'] == 0
        assert len(mailoutbox) == 1

    def test_paid_orders_are_closed_instead_of_emailed(self, checkouts, failed, store, mailoutbox):
        store.update('orders', {'orderId': failed['orderId']}, {'paymentStatus': 'succeeded'})
        summary = checkouts.process_failed_checkouts(now=later(4))
        assert summary['results'][0]['status'] == 'completed'
        assert mailoutbox == []
        assert store.find_one('failed_checkouts', {'id': failed['id']})['status'] == 'completed'

    def test_disabled_by_setting(self, checkouts, failed, settings, mailoutbox):
        settings.ENABLE_PAYMENT_FAILURE_EMAIL = False
        assert checkouts.process_failed_checkouts(now=later(4))['processed'] == 0
        assert mailoutbox == []

    def test_retry_token_is_single_use(self, checkouts, failed):
        recovered = checkouts.recover_failed_checkout(failed['retryToken'])
        assert recovered['orderId'] == failed['orderId']
        assert recovered['cart']['items']

        with pytest.raises(Gone) as excinfo:
            checkouts.recover_failed_checkout(failed['retryToken'])
        assert excinfo.value.code == 'RETRY_TOKEN_USED'
        assert excinfo.value.status == 410

    def test_retry_token_errors(self, checkouts, failed):
        with pytest.raises(ValidationFailed):
            checkouts.recover_failed_checkout('')
        with pytest.raises(NotFound):
            checkouts.recover_failed_checkout('not-a-token')
        checkouts.complete_failed_checkouts(failed['orderId'])
        with pytest.raises(Conflict):
            checkouts.recover_failed_checkout(failed['retryToken'])

    def test_completed_order_is_not_recorded_again(self, checkouts, failed, store):
        checkouts.complete_failed_checkouts(failed['orderId'])
        order = store.find_one('orders', {'orderId': failed['orderId']})
        assert checkouts.record_failed_checkout(order, 'pi_3') is None
        assert store.count('failed_checkouts') == 1
