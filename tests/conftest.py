import copy
import json

import pytest
from django.apps import apps

from apps.core.emails import EmailResult, Mailer
from apps.core.errors import NotFound
from apps.core.services import build_services
from apps.core.store import MemoryDocumentStore
from apps.payments.gateway import WebhookSignatureError

ITEMS = [
    {'id': 'prod-shirt', 'name': 'Oxford Shirt', 'price': 100, 'quantity': 2},
]


class FakeGateway:
    """Stripe en memoria: guarda intents, reembolsos y clientes."""

    configured = True
    verifies_webhooks = False

    def __init__(self):
        self.intents = {}
        self.refunds = []
        self.customers = {}
        self.calls = []
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f'{prefix}_{self._counter:04d}'

    def create_payment_intent(self, amount, currency, metadata=None, customer=None,
                              receipt_email=None, idempotency_key=None):
        self.calls.append('create')
        intent_id = self._next_id('pi_test')
        self.intents[intent_id] = {
            'id': intent_id,
            'object': 'payment_intent',
            'amount': amount,
            'currency': currency,
            'metadata': dict(metadata or {}),
            'customer': customer,
            'receipt_email': receipt_email,
            'status': 'requires_payment_method',
            'client_secret': f'{intent_id}_secret',
        }
        return copy.deepcopy(self.intents[intent_id])

    def _intent(self, payment_intent_id):
        if payment_intent_id not in self.intents:
            raise NotFound('Payment intent not found', code='PAYMENT_INTENT_NOT_FOUND')
        return self.intents[payment_intent_id]

    def retrieve_payment_intent(self, payment_intent_id):
        self.calls.append('retrieve')
        return copy.deepcopy(self._intent(payment_intent_id))

    def update_payment_intent(self, payment_intent_id, **fields):
        self.calls.append('update')
        self._intent(payment_intent_id).update(copy.deepcopy(fields))
        return copy.deepcopy(self.intents[payment_intent_id])

    def confirm_payment_intent(self, payment_intent_id, **fields):
        self.calls.append('confirm')
        self._intent(payment_intent_id)['status'] = 'succeeded'
        return copy.deepcopy(self.intents[payment_intent_id])

    def cancel_payment_intent(self, payment_intent_id):
        self._intent(payment_intent_id)['status'] = 'canceled'
        return copy.deepcopy(self.intents[payment_intent_id])

    def retrieve_latest_charge(self, payment_intent_id):
        intent = self._intent(payment_intent_id)
        refunded = sum(r['amount'] for r in self.refunds if r['payment_intent'] == payment_intent_id)
        return {
            'id': f'ch_{payment_intent_id}',
            'object': 'charge',
            'payment_intent': payment_intent_id,
            'amount': intent['amount'],
            'amount_refunded': refunded,
            'metadata': dict(intent['metadata']),
        }

    def create_refund(self, payment_intent_id, amount=None, reason=None):
        intent = self._intent(payment_intent_id)
        refund = {
            'id': self._next_id('re_test'),
            'payment_intent': payment_intent_id,
            'amount': amount or intent['amount'],
            'reason': reason,
            'status': 'succeeded',
        }
        self.refunds.append(refund)
        return dict(refund)

    def find_or_create_customer(self, email, name=None):
        if email not in self.customers:
            self.customers[email] = self._next_id('cus_test')
        return self.customers[email]

    def construct_event(self, payload, signature):
        if signature == 'invalid':
            raise WebhookSignatureError('Invalid signature')
        return json.loads(payload)

    def set_status(self, payment_intent_id, status, **extra):
        intent = self._intent(payment_intent_id)
        intent['status'] = status
        intent.update(extra)
        return copy.deepcopy(intent)


class FailingMailer(Mailer):
    """Todos los envíos fallan como si el SMTP estuviera caído."""

    def _fail(self, *args, **kwargs):
        return EmailResult(success=False, error='SMTP unavailable')

    send_order_confirmation = _fail
    send_order_status_updated = _fail
    send_abandoned_checkout = _fail
    send_payment_failed = _fail


def stripe_event(event_type, obj, event_id='evt_test_1'):
    return json.dumps({
        'id': event_id,
        'type': event_type,
        'data': {'object': obj},
    }).encode()


@pytest.fixture
def store():
    return MemoryDocumentStore(database='test')


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(store, gateway, mailoutbox, settings):
    settings.FRONTEND_URL = 'https://shop.example.com'
    settings.ENABLE_PAYMENT_FAILURE_EMAIL = True
    built = build_services(store=store, gateway=gateway, mailer=Mailer())
    config = apps.get_app_config('core')
    previous = config.services
    config.services = built
    yield built
    config.services = previous


@pytest.fixture
def subscriber(store):
    def create(code='WELCOME10', used=False, expires_at=None, email='reader@example.com'):
        return store.insert('subscribers', {
            'email': email,
            'discountCode': code,
            'discountCodeUsed': used,
            'discountCodeExpiresAt': expires_at,
        })
    return create


@pytest.fixture
def make_order(services):
    def create(email='ana@example.com', items=None, **extra):
        data = {
            'customer': {'name': 'Ana Berg', 'email': email},
            'items': copy.deepcopy(items or ITEMS),
            'shipping': 49,
        }
        data.update(extra)
        return services.orders.create_order(data)
    return create
