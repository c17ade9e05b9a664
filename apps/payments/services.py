"""
Máquina de estados de pago.

El webhook de Stripe es la fuente de verdad. Las llamadas del frontend
(confirm / payment-failed) son orientativas: consultan primero el estado
local y no reprocesan pagos ya `succeeded`, `processing` o `canceled`.

Efectos de `payment_intent.succeeded` (idempotentes):
  - paymentStatus → succeeded y status pending/processing → processing,
    con una sola entrada "Payment Confirmed" en el timeline
  - email de confirmación una única vez (marca emailSent reclamada antes de enviar)
  - checkouts abandonados/fallidos del pedido → completed
  - código de descuento → usado
Si el pedido no existe no se crea nada.
"""
import logging
import secrets
import time
from datetime import timedelta

from django.conf import settings

from apps.cart.totals import items_subtotal
from apps.core.clock import now_iso, to_iso, utcnow
from apps.core.errors import Conflict, GatewayError, NotFound, ValidationFailed
from apps.core.money import as_number, from_cents, number_or, to_cents
from apps.orders.services import ORDERS, customer_name, timeline_entry

logger = logging.getLogger(__name__)

# Estados locales que el frontend no puede volver a procesar
SHORT_CIRCUIT_STATUSES = ('succeeded', 'processing', 'canceled')
# Estados de los que un pago ya no retrocede
SETTLED_STATUSES = ('succeeded', 'refunded', 'partially_refunded')
CONFIRMABLE_INTENT_STATUSES = ('requires_payment_method', 'requires_confirmation', 'requires_action')
# Diferencia máxima (en céntimos) tolerada entre el importe del cliente y el del servidor
AMOUNT_TOLERANCE_CENTS = 1


def new_temp_order_id():
    return f"TEMP-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def is_temp_order_id(order_id):
    return str(order_id or '').startswith('TEMP-')


def _metadata(intent):
    return (intent or {}).get('metadata') or {}


def _last_error_message(intent):
    error = (intent or {}).get('last_payment_error') or {}
    return error.get('message') or error.get('code') or ''


class PaymentService:

    def __init__(self, store, gateway, discounts, checkouts, mailer):
        self.store = store
        self.gateway = gateway
        self.discounts = discounts
        self.checkouts = checkouts
        self.mailer = mailer

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _find_order(self, order_id=None, payment_intent_id=None):
        order = None
        if order_id and not is_temp_order_id(order_id):
            order = self.store.find_one(ORDERS, {'orderId': order_id})
        if order is None and payment_intent_id:
            order = self.store.find_one(ORDERS, {'paymentIntentId': payment_intent_id})
        return order

    def _order_for_intent(self, intent):
        return self._find_order(_metadata(intent).get('orderId'), intent.get('id'))

    def _expected_total(self, data, order):
        """
        Total recalculado en servidor, o None si no hay con qué recalcularlo.
        Un código de descuento inválido es error (DiscountCodeError).
        """
        items = data.get('items')
        if isinstance(items, list) and items:
            computed = self.discounts.calculate_order_totals(
                items_subtotal(items),
                data.get('shipping', 0),
                data.get('tax', 0),
                data.get('discountCode'),
            )
            return computed['totals']['total']
        if order is not None:
            return as_number((order.get('totals') or {}).get('total'))
        return None

    def _checked_amount(self, data, order):
        """Importe a cobrar (unidades mayores) y si se corrigió el del cliente."""
        amount = as_number(data.get('amount'))
        expected = self._expected_total(data, order)
        if expected is None:
            return amount, False
        if amount is None or abs(to_cents(amount) - to_cents(expected)) > AMOUNT_TOLERANCE_CENTS:
            logger.warning(
                "Importe del cliente %s no coincide con el calculado %s (orden %s); se usa el del servidor",
                data.get('amount'), expected, data.get('orderId'),
            )
            return expected, amount is not None
        return amount, False

    # -----------------------------------------------------------------------
    # Endpoints del frontend
    # -----------------------------------------------------------------------

    def config(self) -> dict:
        return {
            'publishableKey': settings.STRIPE_PUBLIC_KEY,
            'configured': self.gateway.configured,
            'webhookConfigured': self.gateway.verifies_webhooks,
            'currency': settings.DEFAULT_CURRENCY,
        }

    def create_intent(self, data) -> dict:
        currency = (data.get('currency') or '').strip().lower()
        if not currency:
            raise ValidationFailed('Currency is required', fields=['currency'])
        order_id = data.get('orderId') or new_temp_order_id()
        order = self._find_order(order_id)
        amount, adjusted = self._checked_amount(data, order)
        if amount is None or amount <= 0:
            raise ValidationFailed('Amount must be greater than 0', fields=['amount'])

        customer = data.get('customer') if isinstance(data.get('customer'), dict) else {}
        email = (customer.get('email') or data.get('email') or '').strip().lower()
        customer_id = None
        if email:
            # El cliente de Stripe es opcional: sin él el intent se crea igual
            try:
                customer_id = self.gateway.find_or_create_customer(email, customer.get('name'))
            except GatewayError as exc:
                logger.warning("No se pudo obtener el cliente Stripe de %s: %s", email, exc)

        metadata = {'orderId': order_id}
        if email:
            metadata['customerEmail'] = email
        if data.get('discountCode'):
            metadata['discountCode'] = str(data['discountCode']).strip().upper()

        intent = self.gateway.create_payment_intent(
            amount=to_cents(amount),
            currency=currency,
            metadata=metadata,
            customer=customer_id,
            receipt_email=email or None,
        )

        if order is not None:
            self.store.update(
                ORDERS,
                {'orderId': order['orderId'], 'paymentStatus': {'$nin': list(SETTLED_STATUSES)}},
                {'paymentIntentId': intent['id'], 'paymentStatus': 'pending', 'updatedAt': now_iso()},
            )
        logger.info("PaymentIntent %s creado para %s (%s %s)", intent['id'], order_id, amount, currency)
        return {
            'clientSecret': intent.get('client_secret'),
            'paymentIntentId': intent['id'],
            'amount': amount,
            'currency': currency,
            'orderId': order_id,
            'amountAdjusted': adjusted,
        }

    def update_intent(self, data) -> dict:
        """Vincula el intent al pedido definitivo (antes TEMP-…) y ajusta el importe."""
        payment_intent_id = data.get('paymentIntentId')
        if not payment_intent_id:
            raise ValidationFailed('paymentIntentId is required', fields=['paymentIntentId'])
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.get('status') not in CONFIRMABLE_INTENT_STATUSES:
            raise Conflict(
                f"Payment intent can no longer be updated ({intent.get('status')})",
                code='PAYMENT_INTENT_NOT_UPDATABLE',
                status=intent.get('status'),
            )

        order_id = data.get('orderId') or _metadata(intent).get('orderId')
        order = self._find_order(order_id)
        fields = {'metadata': {**_metadata(intent), 'orderId': order_id}}
        amount, adjusted = self._checked_amount(data, order)
        if amount is not None:
            if amount <= 0:
                raise ValidationFailed('Amount must be greater than 0', fields=['amount'])
            fields['amount'] = to_cents(amount)

        updated = self.gateway.update_payment_intent(payment_intent_id, **fields)
        if order is not None:
            self.store.update(
                ORDERS,
                {'orderId': order['orderId'], 'paymentStatus': {'$nin': list(SETTLED_STATUSES)}},
                {'paymentIntentId': payment_intent_id, 'paymentStatus': 'pending', 'updatedAt': now_iso()},
            )
        return {
            'paymentIntentId': payment_intent_id,
            'orderId': order_id,
            'amount': from_cents(updated.get('amount')),
            'status': updated.get('status'),
            'amountAdjusted': adjusted,
        }

    def _already_processed(self, order):
        status = (order or {}).get('paymentStatus')
        if status not in SHORT_CIRCUIT_STATUSES:
            return None
        return {
            'alreadyProcessed': True,
            'alreadyConfirmed': status == 'succeeded',
            'status': status,
            'orderId': order.get('orderId'),
            'message': f'Payment already {status}',
        }

    def confirm(self, data) -> dict:
        payment_intent_id = data.get('paymentIntentId')
        if not payment_intent_id:
            raise ValidationFailed('paymentIntentId is required', fields=['paymentIntentId'])

        order = self._find_order(data.get('orderId'), payment_intent_id)
        already = self._already_processed(order)
        if already:
            return already

        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.get('status') == 'requires_confirmation':
            intent = self.gateway.confirm_payment_intent(payment_intent_id)

        status = intent.get('status')
        self.apply_intent(intent)
        return {
            'status': status,
            'paymentIntentId': payment_intent_id,
            'orderId': (order or {}).get('orderId') or _metadata(intent).get('orderId'),
            'requiresAction': status == 'requires_action',
            'waitForWebhook': status == 'processing',
            'shouldNotConfirm': status in ('succeeded', 'processing', 'canceled'),
        }

    def report_payment_failed(self, data) -> dict:
        """Aviso del frontend; se contrasta con Stripe antes de marcar nada."""
        payment_intent_id = data.get('paymentIntentId')
        if not payment_intent_id:
            raise ValidationFailed('paymentIntentId is required', fields=['paymentIntentId'])

        order = self._find_order(data.get('orderId'), payment_intent_id)
        already = self._already_processed(order)
        if already:
            return already

        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.get('status') in ('succeeded', 'processing', 'canceled'):
            self.apply_intent(intent)
            return {'status': intent['status'], 'paymentIntentId': payment_intent_id, 'recorded': False}

        if not intent.get('last_payment_error') and data.get('error'):
            intent = {**intent, 'last_payment_error': {'message': str(data['error'])[:500]}}
        if not _metadata(intent).get('orderId') and order is not None:
            intent = {**intent, 'metadata': {**_metadata(intent), 'orderId': order['orderId']}}
        recorded = self.handle_payment_failed(intent)
        return {'status': 'failed', 'paymentIntentId': payment_intent_id, 'recorded': recorded}

    def status(self, payment_intent_id) -> dict:
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        order = self._order_for_intent(intent)
        status = intent.get('status')
        local = (order or {}).get('paymentStatus')
        can_confirm = status in CONFIRMABLE_INTENT_STATUSES
        return {
            'paymentIntentId': intent['id'],
            'status': status,
            'amount': from_cents(intent.get('amount')),
            'currency': intent.get('currency'),
            'orderId': (order or {}).get('orderId') or _metadata(intent).get('orderId'),
            'orderPaymentStatus': local,
            'canConfirm': can_confirm,
            'isProcessing': status == 'processing',
            'isCompleted': status in ('succeeded', 'canceled'),
            'safeToConfirm': can_confirm and local not in SHORT_CIRCUIT_STATUSES,
            'lastPaymentError': _last_error_message(intent) or None,
        }

    def refund(self, data) -> dict:
        payment_intent_id = data.get('paymentIntentId')
        order = None
        if not payment_intent_id and data.get('orderId'):
            order = self._find_order(data['orderId'])
            if order is None:
                raise NotFound('Order not found', code='ORDER_NOT_FOUND')
            payment_intent_id = order.get('paymentIntentId')
        if not payment_intent_id:
            raise ValidationFailed('paymentIntentId or orderId is required', fields=['paymentIntentId'])

        amount = as_number(data.get('amount'))
        if amount is not None and amount <= 0:
            raise ValidationFailed('Refund amount must be greater than 0', fields=['amount'])

        refund = self.gateway.create_refund(
            payment_intent_id,
            amount=to_cents(amount) if amount is not None else None,
            reason=data.get('reason'),
        )
        logger.info("Reembolso %s creado para %s", refund.get('id'), payment_intent_id)

        charge = self.gateway.retrieve_latest_charge(payment_intent_id)
        if charge:
            self.handle_charge_refunded(charge)
        return {
            'refundId': refund.get('id'),
            'status': refund.get('status'),
            'amount': from_cents(refund.get('amount')),
            'paymentIntentId': payment_intent_id,
        }

    # -----------------------------------------------------------------------
    # Webhook y reconciliación
    # -----------------------------------------------------------------------

    def handle_webhook(self, payload, signature) -> dict:
        """
        Verifica y procesa un evento. La firma inválida se propaga
        (WebhookSignatureError → 400); cualquier error interno se registra y
        se responde igualmente como recibido para no provocar reintentos.
        """
        event = self.gateway.construct_event(payload, signature)
        event_type = event.get('type', '')
        obj = (event.get('data') or {}).get('object') or {}
        handlers = {
            'payment_intent.succeeded': self.handle_payment_succeeded,
            'payment_intent.payment_failed': self.handle_payment_failed,
            'payment_intent.canceled': self.handle_payment_canceled,
            'payment_intent.processing': self.handle_payment_processing,
            'charge.refunded': self.handle_charge_refunded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Webhook Stripe: evento %s ignorado", event_type)
            return {'received': True, 'handled': False}
        try:
            handler(obj)
        except Exception:
            logger.exception("Webhook Stripe: error procesando %s (%s)", event_type, event.get('id'))
            return {'received': True, 'handled': False}
        return {'received': True, 'handled': True}

    def apply_intent(self, intent):
        """Aplica el estado de un intent recuperado con los mismos handlers del webhook."""
        status = intent.get('status')
        if status == 'succeeded':
            return self.handle_payment_succeeded(intent)
        if status == 'processing':
            return self.handle_payment_processing(intent)
        if status == 'canceled':
            return self.handle_payment_canceled(intent)
        if status == 'requires_payment_method' and intent.get('last_payment_error'):
            return self.handle_payment_failed(intent)
        return False

    def reconcile(self, hours=24, order_id=None, dry_run=False) -> list:
        """Consulta en Stripe los pedidos con pago pendiente y aplica su estado."""
        query = {
            'paymentStatus': {'$in': ['pending', 'processing']},
            'paymentIntentId': {'$exists': True, '$ne': None},
        }
        if order_id:
            query['orderId'] = order_id
        else:
            query['createdAt'] = {'$gte': to_iso(utcnow() - timedelta(hours=hours))}

        results = []
        for order in self.store.find(ORDERS, query):
            entry = {'orderId': order['orderId'], 'paymentIntentId': order['paymentIntentId']}
            try:
                intent = self.gateway.retrieve_payment_intent(order['paymentIntentId'])
            except Exception as exc:
                logger.exception("Reconciliación: error consultando %s", order['paymentIntentId'])
                entry.update(status='error', error=str(exc))
                results.append(entry)
                continue
            entry['status'] = intent.get('status')
            if dry_run:
                entry['changed'] = False
            else:
                entry['changed'] = bool(self.apply_intent(intent))
            results.append(entry)
        return results

    # -----------------------------------------------------------------------
    # Transiciones
    # -----------------------------------------------------------------------

    def handle_payment_succeeded(self, intent) -> bool:
        order = self._order_for_intent(intent)
        if order is None:
            logger.warning(
                "Pago %s confirmado para la orden %s, que no existe; no se crea ninguna",
                intent.get('id'), _metadata(intent).get('orderId'),
            )
            return False

        order_id = order['orderId']
        timestamp = now_iso()
        transitioned = self.store.update(
            ORDERS,
            {'orderId': order_id, 'paymentStatus': {'$nin': list(SETTLED_STATUSES)}},
            {
                '$set': {
                    'paymentStatus': 'succeeded',
                    'paymentIntentId': intent.get('id'),
                    'paidAt': timestamp,
                    'updatedAt': timestamp,
                },
                '$push': {'timeline': timeline_entry('processing', 'Payment Confirmed')},
            },
        )

        if transitioned:
            self.store.update(
                ORDERS,
                {'orderId': order_id, 'status': {'$in': ['pending', 'processing']}},
                {'status': 'processing'},
            )
            logger.info("Orden %s pagada (%s)", order_id, intent.get('id'))
            email = (order.get('customer') or {}).get('email')
            self.checkouts.complete_abandoned_checkouts(email, order_id)
            self.checkouts.complete_failed_checkouts(order_id)
            code = (order.get('appliedDiscount') or {}).get('code')
            if code:
                self.discounts.mark_discount_code_as_used(code, order_id)
        else:
            logger.info("Orden %s ya estaba pagada; evento %s sin cambios", order_id, intent.get('id'))

        self._send_confirmation_once(order_id)
        return bool(transitioned)

    def _send_confirmation_once(self, order_id):
        claimed = self.store.update(
            ORDERS,
            {'orderId': order_id, 'paymentStatus': 'succeeded', 'emailSent': {'$ne': True}},
            {'emailSent': True, 'emailSentAt': now_iso()},
        )
        if not claimed:
            return False

        order = self.store.find_one(ORDERS, {'orderId': order_id})
        email = (order.get('customer') or {}).get('email')
        result = self.mailer.send_order_confirmation(
            email, customer_name(order), order, language=order.get('language'),
        )
        if result.success:
            return True

        logger.error("Email de confirmación de %s no enviado: %s", order_id, result.error)
        self.store.update(
            ORDERS,
            {'orderId': order_id},
            {'$set': {'emailSent': False, 'emailError': result.error}, '$unset': {'emailSentAt': ''}},
        )
        return False

    def handle_payment_failed(self, intent) -> bool:
        order = self._order_for_intent(intent)
        if order is None:
            logger.warning("Pago fallido %s sin orden asociada", intent.get('id'))
            return False

        order_id = order['orderId']
        message = _last_error_message(intent)
        transitioned = self.store.update(
            ORDERS,
            {'orderId': order_id, 'paymentStatus': {'$nin': list(SETTLED_STATUSES) + ['failed', 'canceled']}},
            {
                '$set': {'paymentStatus': 'failed', 'lastPaymentError': message, 'updatedAt': now_iso()},
                '$push': {'timeline': timeline_entry('payment_failed', 'Payment Failed')},
            },
        )
        if not transitioned:
            logger.info(
                "Orden %s: fallo de pago ignorado (estado %s)", order_id, order.get('paymentStatus'),
            )
            return False
        logger.info("Orden %s: pago fallido (%s)", order_id, message or 'sin detalle')
        self.checkouts.record_failed_checkout(order, intent.get('id'), message)
        return True

    def handle_payment_canceled(self, intent) -> bool:
        order = self._order_for_intent(intent)
        if order is None:
            return False
        transitioned = self.store.update(
            ORDERS,
            {'orderId': order['orderId'], 'paymentStatus': {'$nin': list(SETTLED_STATUSES) + ['canceled']}},
            {
                '$set': {'paymentStatus': 'canceled', 'updatedAt': now_iso()},
                '$push': {'timeline': timeline_entry('payment_canceled', 'Payment Canceled')},
            },
        )
        return bool(transitioned)

    def handle_payment_processing(self, intent) -> bool:
        order = self._order_for_intent(intent)
        if order is None:
            return False
        return bool(self.store.update(
            ORDERS,
            {'orderId': order['orderId'], 'paymentStatus': {'$in': ['pending', 'failed']}},
            {'paymentStatus': 'processing', 'paymentIntentId': intent.get('id'), 'updatedAt': now_iso()},
        ))

    def handle_charge_refunded(self, charge) -> bool:
        payment_intent_id = charge.get('payment_intent')
        order = self._find_order(_metadata(charge).get('orderId'), payment_intent_id)
        if order is None:
            logger.warning("Reembolso de %s sin orden asociada", payment_intent_id)
            return False

        refunded_cents = int(number_or(charge.get('amount_refunded')))
        charged_cents = int(number_or(charge.get('amount')))
        status = 'refunded' if refunded_cents >= charged_cents else 'partially_refunded'
        refunded = from_cents(refunded_cents)
        timestamp = now_iso()
        entry = timeline_entry('refunded', 'Refunded')
        entry['amount'] = refunded
        transitioned = self.store.update(
            ORDERS,
            {'orderId': order['orderId'], 'refundedAmount': {'$ne': refunded}},
            {
                '$set': {
                    'paymentStatus': status,
                    'refundedAmount': refunded,
                    'refundedAt': timestamp,
                    'updatedAt': timestamp,
                },
                '$push': {'timeline': entry},
            },
        )
        if transitioned:
            logger.info("Orden %s: %s (%s)", order['orderId'], status, refunded)
        return bool(transitioned)
