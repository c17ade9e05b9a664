"""
Motor de descuentos.

Los códigos viven en los registros de suscriptores (`subscribers`):
  discountCode, discountCodeUsed, discountCodeExpiresAt,
  discountCodeUsedAt, discountCodeUsedInOrder

Un código es usable si no está usado y no ha expirado. Todo código válido
da un 10 % fijo sobre el subtotal (antes de envío e impuestos). Marcarlo
como usado es irreversible y sólo ocurre tras confirmar el pago.
"""
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings

from apps.core.clock import now_iso, parse_iso, to_iso, utcnow
from apps.core.errors import StoreError, ValidationFailed
from apps.core.money import floor_currency, number_or, round_currency

logger = logging.getLogger(__name__)

SUBSCRIBERS = 'subscribers'
DISCOUNT_PERCENTAGE = 10

SUBSCRIBE_SOURCES = ('popup', 'footer', 'checkout', 'hub', 'newsletter')
# Orígenes que reciben código de bienvenida
CODE_SOURCES = ('popup',)
CODE_ALPHABET = string.ascii_uppercase + string.digits

ERROR_MESSAGES = {
    'REQUIRED': 'Discount code is required',
    'INVALID': 'Invalid discount code',
    'ALREADY_USED': 'This discount code has already been used',
    'EXPIRED': 'This discount code has expired',
}


@dataclass
class DiscountValidation:
    valid: bool
    code: str = ''
    percentage: float = 0
    expires_at: str = None
    error: str = ''

    @property
    def message(self):
        return ERROR_MESSAGES.get(self.error, '')

    def as_dict(self):
        if not self.valid:
            return {'valid': False, 'error': self.error, 'message': self.message}
        return {
            'valid': True,
            'code': self.code,
            'percentage': self.percentage,
            'expiresAt': self.expires_at,
        }


class DiscountCodeError(ValidationFailed):
    """Código inválido al calcular totales: error duro, nunca descuento 0 silencioso."""
    code = 'INVALID_DISCOUNT_CODE'

    def __init__(self, validation: DiscountValidation):
        self.validation = validation
        super().__init__(validation.message, reason=validation.error)


def normalize_code(code) -> str:
    if code is None:
        return ''
    return str(code).strip().upper()


def generate_discount_code() -> str:
    """PREFIJO-XXXXXX, ya normalizado (mayúsculas)."""
    suffix = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(6))
    return normalize_code(f"{settings.DISCOUNT_CODE_PREFIX}-{suffix}")


def calculate_discount_amount(subtotal, percentage) -> float:
    """
    Importe del descuento: subtotal * pct/100 con pct acotado a [0, 100],
    nunca mayor que el subtotal y redondeado a 2 decimales.
    """
    subtotal = max(0.0, number_or(subtotal))
    percentage = min(100.0, max(0.0, number_or(percentage)))
    amount = min(subtotal * percentage / 100, subtotal)
    rounded = round_currency(amount)
    if rounded > subtotal:
        rounded = floor_currency(subtotal)
    return rounded


class DiscountService:

    def __init__(self, store):
        self.store = store

    def validate_discount_code(self, code) -> DiscountValidation:
        normalized = normalize_code(code)
        if not normalized:
            return DiscountValidation(valid=False, error='REQUIRED')

        subscriber = self.store.find_one(SUBSCRIBERS, {'discountCode': normalized})
        if not subscriber:
            return DiscountValidation(valid=False, code=normalized, error='INVALID')

        if subscriber.get('discountCodeUsed'):
            return DiscountValidation(valid=False, code=normalized, error='ALREADY_USED')

        expires_at = subscriber.get('discountCodeExpiresAt')
        expires = parse_iso(expires_at)
        if expires is not None and expires < utcnow():
            return DiscountValidation(valid=False, code=normalized, error='EXPIRED')

        return DiscountValidation(
            valid=True,
            code=normalized,
            percentage=DISCOUNT_PERCENTAGE,
            expires_at=expires_at,
        )

    def calculate_order_totals(self, subtotal, shipping=0, tax=0, code=None) -> dict:
        """
        Totales del pedido con el descuento aplicado sobre el subtotal.
        Cada campo se redondea por separado. Código inválido → DiscountCodeError.
        """
        subtotal = number_or(subtotal)
        shipping = number_or(shipping)
        tax = number_or(tax)
        discount = 0.0
        applied = None

        if normalize_code(code):
            validation = self.validate_discount_code(code)
            if not validation.valid:
                raise DiscountCodeError(validation)
            discount = calculate_discount_amount(subtotal, validation.percentage)
            applied = {
                'code': validation.code,
                'percentage': validation.percentage,
                'amount': discount,
                'appliedAt': now_iso(),
            }

        totals = {
            'subtotal': round_currency(subtotal),
            'discount': round_currency(discount),
            'discountedSubtotal': round_currency(subtotal - discount),
            'shipping': round_currency(shipping),
            'tax': round_currency(tax),
        }
        # El total sale de los campos ya redondeados: la suma cuadra exacta
        totals['total'] = round_currency(totals['discountedSubtotal'] + totals['shipping'] + totals['tax'])
        return {'totals': totals, 'appliedDiscount': applied}

    def mark_discount_code_as_used(self, code, order_id) -> bool:
        """
        Marca el código como usado en `order_id`. Sólo se llama con el pago
        confirmado; un fallo del store se registra y no revierte nada.
        """
        normalized = normalize_code(code)
        if not normalized:
            return False
        try:
            matched = self.store.update(
                SUBSCRIBERS,
                {'discountCode': normalized, 'discountCodeUsed': {'$ne': True}},
                {
                    'discountCodeUsed': True,
                    'discountCodeUsedAt': now_iso(),
                    'discountCodeUsedInOrder': order_id,
                },
            )
        except StoreError:
            logger.exception(
                "No se pudo marcar el código %s como usado (orden %s)", normalized, order_id,
            )
            return False
        if matched:
            logger.info("Código %s marcado como usado en la orden %s", normalized, order_id)
        else:
            logger.warning(
                "Código %s no encontrado o ya usado al cerrar la orden %s", normalized, order_id,
            )
        return bool(matched)

    # -----------------------------------------------------------------------
    # Alta de suscriptores
    # -----------------------------------------------------------------------

    def subscribe(self, email, name=None, source='popup') -> dict:
        """
        Alta (o actualización) de un suscriptor por email. Las altas desde el
        popup reciben un código de bienvenida; a quien ya tiene uno nunca se
        le emite otro.
        """
        email = email.strip().lower() if isinstance(email, str) else ''
        if '@' not in email or '.' not in email.rsplit('@', 1)[-1]:
            raise ValidationFailed('A valid email is required', fields=['email'], code='INVALID_EMAIL')
        if source not in SUBSCRIBE_SOURCES:
            raise ValidationFailed('Invalid subscription source', fields=['source'], code='INVALID_SOURCE')
        name = name.strip() if isinstance(name, str) else ''

        timestamp = now_iso()
        existing = self.store.find_one(SUBSCRIBERS, {'email': email})
        if existing is None:
            self.store.insert(SUBSCRIBERS, {
                'email': email,
                'name': name,
                'source': source,
                'unsubscribed': False,
                'createdAt': timestamp,
                'updatedAt': timestamp,
            })
            logger.info("Nuevo suscriptor %s (%s)", email, source)
        else:
            changes = {'source': source, 'updatedAt': timestamp}
            if name:
                changes['name'] = name
            self.store.update(SUBSCRIBERS, {'email': email}, changes)

        if source in CODE_SOURCES:
            self._issue_code(email)

        subscriber = self.store.find_one(SUBSCRIBERS, {'email': email}) or {}
        return {
            'email': email,
            'isNewSubscriber': existing is None,
            'discountCode': subscriber.get('discountCode'),
            'discountCodeExpiresAt': subscriber.get('discountCodeExpiresAt'),
            'discountCodeUsed': bool(subscriber.get('discountCodeUsed')),
        }

    def _issue_code(self, email):
        code = generate_discount_code()
        while self.store.find_one(SUBSCRIBERS, {'discountCode': code}):
            code = generate_discount_code()

        expires_at = None
        if settings.DISCOUNT_CODE_VALID_DAYS > 0:
            expires_at = to_iso(utcnow() + timedelta(days=settings.DISCOUNT_CODE_VALID_DAYS))
        # Sólo si aún no tiene código: dos altas simultáneas no emiten dos
        issued = self.store.update(
            SUBSCRIBERS,
            {'email': email, 'discountCode': None},
            {
                'discountCode': code,
                'discountCodeUsed': False,
                'discountCodeExpiresAt': expires_at,
                'discountCodeIssuedAt': now_iso(),
            },
        )
        if issued:
            logger.info("Código %s emitido para %s", code, email)
        return bool(issued)
