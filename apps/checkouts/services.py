"""
Checkouts abandonados y pagos fallidos.

Ambos escáneres son de sondeo: los lanza un disparador externo (cron →
management command o endpoint). En cada pasada:
  1. Se buscan candidatos pendientes y aún no (del todo) avisados.
  2. El tiempo transcurrido se recalcula al procesar cada registro.
  3. Se reclama la etapa con un update condicional (emailSent != true) y
     sólo quien la reclama envía; si el envío falla la marca se libera.
"""
import logging
import secrets
import time
from datetime import timedelta

from django.conf import settings

from apps.core.clock import now_iso, parse_iso, to_iso, utcnow
from apps.core.errors import Conflict, Gone, NotFound, ValidationFailed
from apps.core.money import number_or, round_currency

logger = logging.getLogger(__name__)

ABANDONED = 'abandoned_checkouts'
FAILED = 'failed_checkouts'
ORDERS = 'orders'

# Tope de registros cerrados por llamada al completar en bloque
COMPLETE_BATCH_LIMIT = 100


def new_checkout_id():
    return f"checkout_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def new_retry_token():
    return secrets.token_urlsafe(32)


def minutes_since(value, now):
    moment = parse_iso(value)
    if moment is None:
        return None
    return (now - moment).total_seconds() / 60


def _cart_total(cart):
    totals = (cart or {}).get('totals') or {}
    return round_currency(number_or(totals.get('total')))


def _tally(summary, status):
    if status == 'sent':
        summary['sent'] += 1
    elif status == 'error':
        summary['errors'] += 1
    else:
        summary['skipped'] += 1


class CheckoutService:

    def __init__(self, store, mailer):
        self.store = store
        self.mailer = mailer

    # -----------------------------------------------------------------------
    # Checkout abandonado
    # -----------------------------------------------------------------------

    def capture_email(self, email, cart, user_id=None, language=None) -> dict:
        """Registra (o refresca) el checkout pendiente de un email."""
        email = (email or '').strip().lower() if isinstance(email, str) else ''
        if '@' not in email:
            raise ValidationFailed('A valid email is required', fields=['email'], code='INVALID_EMAIL')
        cart = cart if isinstance(cart, dict) else {}
        items = cart.get('items') or []
        if not items:
            raise ValidationFailed('Cart is empty', fields=['cart.items'], code='EMPTY_CART')

        timestamp = now_iso()
        changes = {
            'cart': cart,
            'total': _cart_total(cart),
            'lastActivityAt': timestamp,
            'updatedAt': timestamp,
        }
        if user_id:
            changes['userId'] = user_id
        if language:
            changes['language'] = language

        existing = self.store.find_one(ABANDONED, {'email': email, 'status': 'pending'})
        if existing:
            self.store.update(ABANDONED, {'id': existing['id']}, changes)
            existing.update(changes)
            return existing

        checkout = {
            'id': new_checkout_id(),
            'email': email,
            'userId': user_id,
            'status': 'pending',
            'emailSent': False,
            'secondEmailSent': False,
            'recoveryCount': 0,
            'createdAt': timestamp,
            **changes,
        }
        created = self.store.insert(ABANDONED, checkout)
        logger.info("Checkout %s registrado para %s", checkout['id'], email)
        return created

    def recover_checkout(self, checkout_id) -> dict:
        checkout = self.store.find_one(ABANDONED, {'id': checkout_id})
        if not checkout:
            raise NotFound('Checkout not found', code='CHECKOUT_NOT_FOUND')
        if checkout.get('status') == 'completed':
            raise Conflict('Checkout already completed', code='CHECKOUT_COMPLETED')
        timestamp = now_iso()
        self.store.update(
            ABANDONED,
            {'id': checkout_id},
            {'$set': {'recoveredAt': timestamp, 'updatedAt': timestamp}, '$inc': {'recoveryCount': 1}},
        )
        return self.store.find_one(ABANDONED, {'id': checkout_id})

    def complete_abandoned_checkouts(self, email, order_id=None) -> int:
        email = (email or '').strip().lower()
        if not email:
            return 0
        completed = 0
        while completed < COMPLETE_BATCH_LIMIT:
            timestamp = now_iso()
            matched = self.store.update(
                ABANDONED,
                {'email': email, 'status': 'pending'},
                {'status': 'completed', 'completedAt': timestamp, 'orderId': order_id, 'updatedAt': timestamp},
            )
            if not matched:
                break
            completed += matched
        if completed:
            logger.info("%s checkout(s) abandonado(s) completado(s) para %s", completed, email)
        return completed

    def _abandoned_candidates(self, now):
        first_cutoff = to_iso(now - timedelta(minutes=settings.ABANDONED_CHECKOUT_FIRST_MINUTES))
        return self.store.find(ABANDONED, {
            'status': 'pending',
            'secondEmailSent': {'$ne': True},
            '$or': [
                {'lastActivityAt': {'$lt': first_cutoff}},
                {'lastActivityAt': {'$exists': False}, 'createdAt': {'$lt': first_cutoff}},
            ],
        })

    def _stage_for(self, checkout, now):
        elapsed = minutes_since(checkout.get('lastActivityAt') or checkout.get('createdAt'), now)
        if elapsed is None:
            return None, None
        if not checkout.get('emailSent'):
            if elapsed >= settings.ABANDONED_CHECKOUT_FIRST_MINUTES:
                return 1, elapsed
        elif not checkout.get('secondEmailSent'):
            if elapsed >= settings.ABANDONED_CHECKOUT_SECOND_MINUTES:
                return 2, elapsed
        return None, elapsed

    def process_abandoned_checkouts(self, now=None, dry_run=False) -> dict:
        now = now or utcnow()
        summary = {'processed': 0, 'sent': 0, 'skipped': 0, 'errors': 0, 'results': []}

        for checkout in self._abandoned_candidates(now):
            summary['processed'] += 1
            stage, elapsed = self._stage_for(checkout, now)
            entry = {'id': checkout['id'], 'email': checkout.get('email'), 'stage': stage,
                     'minutesElapsed': int(elapsed) if elapsed is not None else None}
            if stage is None:
                entry['status'] = 'skipped'
                summary['skipped'] += 1
            elif dry_run:
                entry['status'] = 'would_send'
            else:
                entry['status'] = self._send_abandoned_stage(checkout, stage)
                _tally(summary, entry['status'])
            summary['results'].append(entry)

        if summary['processed']:
            logger.info(
                "Checkouts abandonados: %s procesados, %s enviados, %s omitidos, %s errores",
                summary['processed'], summary['sent'], summary['skipped'], summary['errors'],
            )
        return summary

    def _send_abandoned_stage(self, checkout, stage):
        flag, stamp = ('emailSent', 'emailSentAt') if stage == 1 else ('secondEmailSent', 'secondEmailSentAt')
        claim = {'id': checkout['id'], 'status': 'pending', flag: {'$ne': True}}
        if stage == 2:
            claim['emailSent'] = True

        if not self.store.update(ABANDONED, claim, {flag: True, stamp: now_iso()}):
            return 'claimed_elsewhere'

        result = self.mailer.send_abandoned_checkout(
            checkout['email'], checkout, stage=stage, language=checkout.get('language'),
        )
        if result.success:
            return 'sent'

        logger.error(
            "Fallo enviando recordatorio %s del checkout %s: %s", stage, checkout['id'], result.error,
        )
        self.store.update(
            ABANDONED,
            {'id': checkout['id']},
            {'$set': {flag: False, 'lastEmailError': result.error}, '$unset': {stamp: ''}},
        )
        return 'error'

    # -----------------------------------------------------------------------
    # Pago fallido
    # -----------------------------------------------------------------------

    def record_failed_checkout(self, order, payment_intent_id, error_message=''):
        """
        Un registro activo por pedido. Si ya existe uno fallido se actualiza con
        el último intento; si el pedido ya se completó no se crea nada.

        Si el enlace del registro ya se usó o ya se avisó por email, el nuevo
        fallo rota el token y reinicia el aviso: cada fallo posterior a una
        recuperación tiene su propio enlace y su propio email.
        """
        order_id = order.get('orderId')
        if self.store.find_one(FAILED, {'orderId': order_id, 'status': 'completed'}):
            logger.info("Orden %s ya completada; no se registra checkout fallido", order_id)
            return None

        timestamp = now_iso()
        existing = self.store.find_one(FAILED, {'orderId': order_id, 'status': 'failed'})
        if existing:
            changes = {'paymentIntentId': payment_intent_id, 'lastError': error_message, 'updatedAt': timestamp}
            unset = {}
            if existing.get('retryTokenUsedAt') or existing.get('emailSent'):
                changes.update({'retryToken': new_retry_token(), 'emailSent': False, 'createdAt': timestamp})
                unset = {'retryTokenUsedAt': '', 'emailSentAt': ''}
                logger.info("Orden %s falló de nuevo; nuevo enlace de reintento", order_id)
            update = {'$set': changes, '$unset': unset} if unset else changes
            self.store.update(FAILED, {'id': existing['id']}, update)
            existing.update(changes)
            for key in unset:
                existing.pop(key, None)
            return existing

        customer = order.get('customer') or {}
        failed = {
            'id': new_checkout_id(),
            'orderId': order_id,
            'paymentIntentId': payment_intent_id,
            'email': (customer.get('email') or '').lower(),
            'name': customer.get('name') or '',
            'language': order.get('language'),
            'cart': {'items': order.get('items') or [], 'totals': order.get('totals') or {}},
            'total': round_currency(number_or((order.get('totals') or {}).get('total'))),
            'status': 'failed',
            'retryToken': new_retry_token(),
            'emailSent': False,
            'lastError': error_message,
            'createdAt': timestamp,
            'updatedAt': timestamp,
        }
        created = self.store.insert(FAILED, failed)
        logger.info("Checkout fallido registrado para la orden %s", order_id)
        return created

    def complete_failed_checkouts(self, order_id) -> int:
        if not order_id:
            return 0
        completed = 0
        while completed < COMPLETE_BATCH_LIMIT:
            timestamp = now_iso()
            matched = self.store.update(
                FAILED,
                {'orderId': order_id, 'status': 'failed'},
                {'status': 'completed', 'completedAt': timestamp, 'updatedAt': timestamp},
            )
            if not matched:
                break
            completed += matched
        return completed

    def recover_failed_checkout(self, retry_token) -> dict:
        if not retry_token:
            raise ValidationFailed('Retry token is required', code='MISSING_RETRY_TOKEN')
        failed = self.store.find_one(FAILED, {'retryToken': retry_token})
        if not failed:
            raise NotFound('Checkout not found', code='CHECKOUT_NOT_FOUND')
        if failed.get('status') == 'completed':
            raise Conflict('Checkout already completed', code='CHECKOUT_COMPLETED')

        used_at = now_iso()
        claimed = self.store.update(
            FAILED,
            {'retryToken': retry_token, 'retryTokenUsedAt': {'$exists': False}},
            {'retryTokenUsedAt': used_at, 'updatedAt': used_at},
        )
        if not claimed:
            raise Gone('Retry link has already been used', code='RETRY_TOKEN_USED')
        failed['retryTokenUsedAt'] = used_at
        return failed

    def process_failed_checkouts(self, now=None, dry_run=False) -> dict:
        now = now or utcnow()
        summary = {'processed': 0, 'sent': 0, 'skipped': 0, 'errors': 0, 'results': []}
        if not settings.ENABLE_PAYMENT_FAILURE_EMAIL:
            logger.info("Emails de pago fallido desactivados (ENABLE_PAYMENT_FAILURE_EMAIL)")
            return summary

        threshold = settings.PAYMENT_FAILURE_EMAIL_MINUTES
        cutoff = to_iso(now - timedelta(minutes=threshold))
        candidates = self.store.find(FAILED, {
            'status': 'failed',
            'emailSent': {'$ne': True},
            'createdAt': {'$lt': cutoff},
        })

        for failed in candidates:
            summary['processed'] += 1
            entry = {'id': failed['id'], 'orderId': failed.get('orderId'), 'email': failed.get('email')}
            elapsed = minutes_since(failed.get('createdAt'), now)
            order = self.store.find_one(ORDERS, {'orderId': failed.get('orderId')})

            if order and order.get('paymentStatus') == 'succeeded':
                # Pagó después del fallo: no se avisa
                self.complete_failed_checkouts(failed.get('orderId'))
                entry['status'] = 'completed'
                summary['skipped'] += 1
            elif elapsed is None or elapsed < threshold or not failed.get('email'):
                entry['status'] = 'skipped'
                summary['skipped'] += 1
            elif dry_run:
                entry['status'] = 'would_send'
            else:
                entry['status'] = self._send_failure_email(failed)
                _tally(summary, entry['status'])
            summary['results'].append(entry)

        if summary['processed']:
            logger.info(
                "Pagos fallidos: %s procesados, %s enviados, %s omitidos, %s errores",
                summary['processed'], summary['sent'], summary['skipped'], summary['errors'],
            )
        return summary

    def _send_failure_email(self, failed):
        claimed = self.store.update(
            FAILED,
            {'id': failed['id'], 'status': 'failed', 'emailSent': {'$ne': True}},
            {'emailSent': True, 'emailSentAt': now_iso()},
        )
        if not claimed:
            return 'claimed_elsewhere'

        result = self.mailer.send_payment_failed(
            failed['email'], failed.get('name') or '', failed, language=failed.get('language'),
        )
        if result.success:
            return 'sent'

        logger.error("Fallo enviando email de pago fallido %s: %s", failed['id'], result.error)
        self.store.update(
            FAILED,
            {'id': failed['id']},
            {'$set': {'emailSent': False, 'lastEmailError': result.error}, '$unset': {'emailSentAt': ''}},
        )
        return 'error'
