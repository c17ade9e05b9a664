"""
Cliente de Stripe.

Envuelve el SDK oficial y devuelve dicts planos para que el resto del
código (y los tests) no dependan de los objetos de Stripe. Los errores del
SDK se traducen a `GatewayError`; un intent inexistente a `NotFound`.
"""
import json
import logging

import stripe
from django.conf import settings

from apps.core.errors import GatewayError, NotFound

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Firma del webhook ausente o inválida."""


def _plain(obj):
    if obj is None:
        return None
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return dict(obj)


class StripeGateway:

    def __init__(self, secret_key='', webhook_secret=''):
        self.secret_key = secret_key or ''
        self.webhook_secret = (webhook_secret or '').strip()
        if not self.secret_key:
            logger.warning("STRIPE_SECRET_KEY no configurada, los pagos fallarán.")
        if not self.webhook_secret:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET no configurado, los webhooks se aceptarán sin verificar firma."
            )

    @classmethod
    def from_settings(cls):
        return cls(
            secret_key=getattr(settings, 'STRIPE_SECRET_KEY', ''),
            webhook_secret=getattr(settings, 'STRIPE_WEBHOOK_SECRET', ''),
        )

    @property
    def configured(self):
        return bool(self.secret_key)

    @property
    def verifies_webhooks(self):
        return bool(self.webhook_secret)

    def _call(self, description, func, *args, **kwargs):
        if not self.secret_key:
            raise GatewayError('Stripe secret key is not configured', message='Payment provider not configured')
        try:
            return _plain(func(*args, api_key=self.secret_key, **kwargs))
        except stripe.InvalidRequestError as exc:
            if getattr(exc, 'code', None) == 'resource_missing':
                raise NotFound('Payment intent not found', code='PAYMENT_INTENT_NOT_FOUND') from exc
            logger.error("Stripe %s rechazado: %s", description, exc)
            raise GatewayError(str(exc)) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe %s falló: %s", description, exc)
            raise GatewayError(str(exc)) from exc

    # -- Payment intents ----------------------------------------------------

    def create_payment_intent(self, amount, currency, metadata=None, customer=None,
                              receipt_email=None, idempotency_key=None) -> dict:
        params = {
            'amount': amount,
            'currency': currency.lower(),
            'metadata': metadata or {},
            'automatic_payment_methods': {'enabled': True},
        }
        if customer:
            params['customer'] = customer
        if receipt_email:
            params['receipt_email'] = receipt_email
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        return self._call('PaymentIntent.create', stripe.PaymentIntent.create, **params)

    def retrieve_payment_intent(self, payment_intent_id) -> dict:
        return self._call('PaymentIntent.retrieve', stripe.PaymentIntent.retrieve, payment_intent_id)

    def update_payment_intent(self, payment_intent_id, **fields) -> dict:
        return self._call('PaymentIntent.modify', stripe.PaymentIntent.modify, payment_intent_id, **fields)

    def confirm_payment_intent(self, payment_intent_id, **fields) -> dict:
        return self._call('PaymentIntent.confirm', stripe.PaymentIntent.confirm, payment_intent_id, **fields)

    def cancel_payment_intent(self, payment_intent_id) -> dict:
        return self._call('PaymentIntent.cancel', stripe.PaymentIntent.cancel, payment_intent_id)

    def retrieve_latest_charge(self, payment_intent_id):
        intent = self._call(
            'PaymentIntent.retrieve', stripe.PaymentIntent.retrieve,
            payment_intent_id, expand=['latest_charge'],
        )
        charge = intent.get('latest_charge')
        return charge if isinstance(charge, dict) else None

    # -- Reembolsos y clientes ----------------------------------------------

    def create_refund(self, payment_intent_id, amount=None, reason=None) -> dict:
        params = {'payment_intent': payment_intent_id}
        if amount:
            params['amount'] = amount
        if reason:
            params['reason'] = reason
        return self._call('Refund.create', stripe.Refund.create, **params)

    def find_or_create_customer(self, email, name=None) -> str:
        existing = self._call('Customer.list', stripe.Customer.list, email=email, limit=1)
        data = (existing or {}).get('data') or []
        if data:
            return data[0]['id']
        params = {'email': email}
        if name:
            params['name'] = name
        created = self._call('Customer.create', stripe.Customer.create, **params)
        return created['id']

    # -- Webhooks -----------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """
        Verifica y decodifica un evento. Sin secreto configurado se acepta sin
        verificar (sólo desarrollo local) y se deja constancia en el log.
        """
        if not self.webhook_secret:
            logger.warning("Webhook Stripe aceptado sin verificar firma (sin secreto configurado).")
            try:
                return json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise WebhookSignatureError('Invalid payload') from exc
        if not signature:
            raise WebhookSignatureError('Missing Stripe-Signature header')
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureError('Invalid payload') from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError('Invalid signature') from exc
        return _plain(event)
